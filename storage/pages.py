"""Page decoding for Btree images.

Leaf and internal pages share one structure: a header, a slot array of
2-byte absolute offsets growing forward from the header, and variable-length
items packed at the tail of the page, starting at `upper`:

    [header][slot_0][slot_1]...[slot_n-1] ... free ... [item][item]...[item]
            ^header_size                 ^lower       ^upper         ^page_size

Leaf item at a slot offset o:
    inline:   [len:2][kind:1 = 0x01][data:len]
    overflow: [pad:2][kind:1 = 0x03][pad:1][first_page:4][total_len:4]
    The high bit of kind (0x80) marks a deleted item.

Internal item at a slot offset o:
    [len:2][kind:1][pad:1][child_page:4][record_count:4][key:len]
    With kind 0x03 the key bytes are themselves an overflow item.
"""

import logging
from typing import Callable, Self, TypeVar

from pydantic import BaseModel, ConfigDict

from exceptions import FieldOutOfBounds, UnexpectedPageType, UnknownLeafItemKind
from models.metadata import BtreeMeta, FormatProfile
from models.storage import (
    SLOT_FMT,
    SLOT_SIZE,
    Diagnostic,
    Endianness,
    HeaderLayout,
    InlineField,
    InternalEntry,
    LeafEntry,
    OverflowRef,
    PageHeader,
    PageType,
)
from storage.pager import ByteSource

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 65536

B_KEYDATA = 0x01
B_OVERFLOW = 0x03
DELETED_FLAG = 0x80
KIND_MASK = 0x7F

# [len:2][kind:1]
ITEM_HEADER_FMT = "HB"
ITEM_HEADER_SIZE = 3

# [pad:1][first_page:4][total_len:4] following the item header
OVERFLOW_REF_FMT = "II"
OVERFLOW_ITEM_SIZE = 12

# [len:2][kind:1][pad:1][child_page:4][record_count:4]
INTERNAL_ITEM_FMT = "HBBII"
INTERNAL_ITEM_SIZE = 12

EntryT = TypeVar("EntryT")


def probe_format(source: ByteSource, header_layout: HeaderLayout | None = None) -> FormatProfile:
    """Read page 0 and derive the format profile for the whole image."""
    head = source.read(0, MAX_PAGE_SIZE)
    meta = BtreeMeta.from_bytes(head)
    if meta.page_size < len(head):
        # Re-read with exactly one page so the tail is only seen when the page holds it
        meta = BtreeMeta.from_bytes(head[: meta.page_size])

    profile = FormatProfile.from_meta(meta, header_layout)
    logger.debug(
        "probed %s: %s-endian page_size=%d root=%d last_pgno=%d version=%d layout=%s",
        source.source_id,
        profile.endianness.byteorder,
        profile.page_size,
        profile.btree_root,
        profile.last_pgno,
        profile.version,
        profile.header_layout.value,
    )
    if meta.pgno != 0:
        logger.warning("meta page records pgno=%d, expected 0", meta.pgno)
    if meta.encrypted:
        logger.warning("image carries encryption fields (alg=%d); values are returned as stored", meta.encrypt_alg)
    return profile


def decode_page_header(
    data: bytes | memoryview, profile: FormatProfile, page_no: int | None = None, verify_bounds: bool = True
) -> PageHeader:
    return PageHeader.from_bytes(
        data, profile.endianness, profile.header_layout, verify_bounds=verify_bounds, page_no=page_no
    )


def read_slots(data: bytes | memoryview, header: PageHeader, endianness: Endianness) -> list[int]:
    """Read the slot array [header_size, lower) as absolute byte offsets."""
    return [
        endianness.unpack_from(SLOT_FMT, data, position)[0]
        for position in range(header.header_size, header.header_size + header.slot_count * SLOT_SIZE, SLOT_SIZE)
    ]


def slot_in_bounds(offset: int, header: PageHeader, page_size: int) -> bool:
    """An item must start in the packed region and leave room for its header."""
    return header.upper <= offset and offset + ITEM_HEADER_SIZE <= page_size


def _field_out_of_bounds(what: str, end: int, size: int, offset: int, page_no: int | None) -> FieldOutOfBounds:
    return FieldOutOfBounds(f"{what} ends at {end}, past page end {size}", page_no=page_no, offset=offset)


def decode_leaf_entry(
    data: bytes | memoryview,
    offset: int,
    endianness: Endianness,
    slot_index: int = 0,
    page_no: int | None = None,
) -> LeafEntry:
    """Decode the leaf item at an absolute offset."""
    size = len(data)
    if offset + ITEM_HEADER_SIZE > size:
        raise _field_out_of_bounds("item header", offset + ITEM_HEADER_SIZE, size, offset, page_no)

    length, kind_raw = endianness.unpack_from(ITEM_HEADER_FMT, data, offset)
    deleted = bool(kind_raw & DELETED_FLAG)
    kind = kind_raw & KIND_MASK

    if kind == B_KEYDATA:
        start = offset + ITEM_HEADER_SIZE
        end = start + length
        if end > size:
            raise _field_out_of_bounds("inline item", end, size, offset, page_no)
        field = InlineField(data=memoryview(data)[start:end])
    elif kind == B_OVERFLOW:
        if offset + OVERFLOW_ITEM_SIZE > size:
            raise _field_out_of_bounds("overflow reference", offset + OVERFLOW_ITEM_SIZE, size, offset, page_no)
        first_page, total_len = endianness.unpack_from(OVERFLOW_REF_FMT, data, offset + 4)
        field = OverflowRef(first_page=first_page, total_len=total_len)
    else:
        raise UnknownLeafItemKind(f"unknown leaf item kind {kind}", page_no=page_no, offset=offset)

    return LeafEntry(deleted=deleted, field=field, offset=offset, slot_index=slot_index)


def decode_internal_entry(
    data: bytes | memoryview,
    offset: int,
    endianness: Endianness,
    slot_index: int = 0,
    page_no: int | None = None,
) -> InternalEntry:
    """Decode the internal item at an absolute offset."""
    size = len(data)
    if offset + INTERNAL_ITEM_SIZE > size:
        raise _field_out_of_bounds("internal item", offset + INTERNAL_ITEM_SIZE, size, offset, page_no)

    length, kind_raw, _pad, child_page, record_count = endianness.unpack_from(INTERNAL_ITEM_FMT, data, offset)
    deleted = bool(kind_raw & DELETED_FLAG)
    kind = kind_raw & KIND_MASK
    start = offset + INTERNAL_ITEM_SIZE

    if kind == B_KEYDATA:
        end = start + length
        if end > size:
            raise _field_out_of_bounds("separator key", end, size, offset, page_no)
        key = InlineField(data=memoryview(data)[start:end])
    elif kind == B_OVERFLOW:
        if start + OVERFLOW_ITEM_SIZE > size:
            raise _field_out_of_bounds("separator overflow reference", start + OVERFLOW_ITEM_SIZE, size, offset, page_no)
        first_page, total_len = endianness.unpack_from(OVERFLOW_REF_FMT, data, start + 4)
        key = OverflowRef(first_page=first_page, total_len=total_len)
    else:
        raise UnknownLeafItemKind(f"unknown internal item kind {kind}", page_no=page_no, offset=offset)

    return InternalEntry(
        deleted=deleted,
        child_page=child_page,
        record_count=record_count,
        key=key,
        offset=offset,
        slot_index=slot_index,
    )


def _decode_slots(
    data: bytes | memoryview,
    header: PageHeader,
    endianness: Endianness,
    page_no: int,
    decode: Callable[..., EntryT],
) -> tuple[list[EntryT], list[Diagnostic]]:
    """Decode every in-bounds slot; out-of-bounds offsets are skipped, never fatal."""
    entries: list[EntryT] = []
    skipped: list[Diagnostic] = []
    page_size = len(data)

    for slot_index, offset in enumerate(read_slots(data, header, endianness)):
        if not slot_in_bounds(offset, header, page_size):
            diagnostic = Diagnostic(
                kind=FieldOutOfBounds.__name__,
                message=f"slot offset {offset} outside [{header.upper}, {page_size - ITEM_HEADER_SIZE}]",
                page_no=page_no,
                offset=offset,
                slot_index=slot_index,
            )
            logger.warning("skip bad slot: %s", diagnostic)
            skipped.append(diagnostic)
            continue
        entries.append(decode(data, offset, endianness, slot_index=slot_index, page_no=page_no))

    return entries, skipped


def _require_type(header: PageHeader, expected: PageType, page_no: int) -> None:
    if header.page_type is not expected:
        raise UnexpectedPageType(
            f"expected {expected.name} page, got {header.page_type.name} (code 0x{header.type_code:02x})",
            page_no=page_no,
        )


class LeafPage(BaseModel):
    """Decoded slots of one leaf page, in slot order, before pairing."""

    model_config = ConfigDict(frozen=True)

    page_no: int
    header: PageHeader
    entries: list[LeafEntry] = []
    skipped: list[Diagnostic] = []

    @classmethod
    def from_bytes(cls, data: bytes | memoryview, page_no: int, profile: FormatProfile) -> Self:
        header = decode_page_header(data, profile, page_no)
        _require_type(header, PageType.LEAF, page_no)
        entries, skipped = _decode_slots(data, header, profile.endianness, page_no, decode_leaf_entry)
        return cls(page_no=page_no, header=header, entries=entries, skipped=skipped)


class InternalPage(BaseModel):
    """Decoded routing entries of one internal page."""

    model_config = ConfigDict(frozen=True)

    page_no: int
    header: PageHeader
    entries: list[InternalEntry] = []
    skipped: list[Diagnostic] = []

    @property
    def children(self) -> list[int]:
        """Child page numbers, left to right, tombstones excluded."""
        return [entry.child_page for entry in self.entries if not entry.deleted]

    @property
    def separators(self) -> list[InlineField | OverflowRef]:
        return [entry.key for entry in self.entries if not entry.deleted]

    @classmethod
    def from_bytes(cls, data: bytes | memoryview, page_no: int, profile: FormatProfile) -> Self:
        header = decode_page_header(data, profile, page_no)
        _require_type(header, PageType.INTERNAL, page_no)
        entries, skipped = _decode_slots(data, header, profile.endianness, page_no, decode_internal_entry)
        return cls(page_no=page_no, header=header, entries=entries, skipped=skipped)


def describe_page(data: bytes | memoryview, page_no: int, profile: FormatProfile) -> LeafPage | InternalPage | PageHeader:
    """Decode a page as far as its type allows; used for inspection."""
    header = decode_page_header(data, profile, page_no)
    match header.page_type:
        case PageType.LEAF:
            return LeafPage.from_bytes(data, page_no, profile)
        case PageType.INTERNAL:
            return InternalPage.from_bytes(data, page_no, profile)
        case _:
            return header

