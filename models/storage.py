"""Storage-related models: page headers, slot entries and recovered records.

Byte order is decided per file, so every format string below is written
without a prefix and combined with an Endianness at unpack time.

Struct format reference (https://docs.python.org/3/library/struct.html):
    B  = unsigned char (1 byte)
    H  = unsigned short (2 bytes)
    I  = unsigned int (4 bytes)
"""

import struct
from enum import Enum, IntEnum
from typing import Any, Protocol, Self

from pydantic import BaseModel, ConfigDict, field_validator

from exceptions import FormatError, HeaderInvariantViolation, ShortPage

# Native header: [lsn_file:4][lsn_offset:4][pgno:4][prev:4][next:4][entries:2][hf_offset:2][level:1][type:1]
ENTRIES_HEADER_FMT = "IIIIIHHBB"
ENTRIES_HEADER_SIZE = 26

# Generic header: [lsn_file:4][lsn_offset:4][pgno:4][prev:4][next:4][flags:4][lower:2][upper:2]
LOWER_UPPER_HEADER_FMT = "IIIIIIHH"
LOWER_UPPER_HEADER_SIZE = 28

SLOT_FMT = "H"
SLOT_SIZE = 2

PAGE_TYPE_MASK = 0x1F


class Endianness(Enum):
    """Byte order of a database image; values are struct prefixes."""

    LITTLE = "<"
    BIG = ">"

    @property
    def byteorder(self) -> str:
        return "little" if self is Endianness.LITTLE else "big"

    def unpack_from(self, fmt: str, data: Any, offset: int = 0) -> tuple:
        return struct.unpack_from(self.value + fmt, data, offset)

    def pack(self, fmt: str, *values: Any) -> bytes:
        return struct.pack(self.value + fmt, *values)


class HeaderLayout(Enum):
    """Which of the two page header encodings a file uses."""

    LOWER_UPPER = "lower_upper"
    ENTRIES = "entries"

    @property
    def header_size(self) -> int:
        if self is HeaderLayout.ENTRIES:
            return ENTRIES_HEADER_SIZE
        return LOWER_UPPER_HEADER_SIZE


class PageType(IntEnum):
    """Canonical page type codes.

    The flags-word encoding stores exactly these codes in its low 5 bits. The
    type-byte encoding uses BDB's own numbering (leaf 5, overflow 7), which is
    mapped onto the same members. Unknown codes become OTHER; the raw value is
    kept on PageHeader.type_code.
    """

    OTHER = -1
    LEAF = 0x02
    INTERNAL = 0x03
    OVERFLOW = 0x04
    META = 0x09

    @classmethod
    def from_flags(cls, flags: int) -> "PageType":
        code = flags & PAGE_TYPE_MASK
        if code in (cls.LEAF, cls.INTERNAL, cls.OVERFLOW, cls.META):
            return cls(code)
        return cls.OTHER

    @classmethod
    def from_type_byte(cls, code: int) -> "PageType":
        return _TYPE_BYTE_CODES.get(code, cls.OTHER)

    def raw_code(self, layout: HeaderLayout) -> int:
        """On-disk code for this type under the given header layout."""
        if self is PageType.OTHER:
            raise ValueError("OTHER has no on-disk code")
        if layout is HeaderLayout.ENTRIES:
            return next(code for code, page_type in _TYPE_BYTE_CODES.items() if page_type is self)
        return int(self)


_TYPE_BYTE_CODES = {
    0x09: PageType.META,
    0x03: PageType.INTERNAL,
    0x05: PageType.LEAF,
    0x07: PageType.OVERFLOW,
}


class PageHeader(BaseModel):
    """Fixed-layout header common to every page kind.

    Layout LOWER_UPPER (28 bytes):
        offset  size  field
        ------  ----  -----
        0       4     lsn_file
        4       4     lsn_offset
        8       4     pgno
        12      4     prev
        16      4     next
        20      4     flags (page type = low 5 bits)
        24      2     lower (end of slot array)
        26      2     upper (start of packed item data)

    Layout ENTRIES (26 bytes, native BDB):
        0..20 as above, then entries:2 @20, hf_offset:2 @22, level:1 @24, type:1 @25.
        lower is derived as 26 + 2 * entries and upper is hf_offset.
    """

    model_config = ConfigDict(frozen=True)

    layout: HeaderLayout
    lsn_file: int = 0
    lsn_offset: int = 0
    pgno: int
    prev: int = 0
    next: int = 0
    type_code: int
    lower: int
    upper: int
    level: int = 0
    flags: int | None = None  # only carried by the LOWER_UPPER layout

    @property
    def page_type(self) -> PageType:
        if self.layout is HeaderLayout.ENTRIES:
            return PageType.from_type_byte(self.type_code)
        return PageType.from_flags(self.type_code)

    @property
    def header_size(self) -> int:
        return self.layout.header_size

    @property
    def slot_count(self) -> int:
        return max(0, (self.lower - self.header_size) // SLOT_SIZE)

    def payload_length(self, page_size: int) -> int:
        """Bytes of chained payload an overflow page contributes."""
        region = page_size - self.header_size
        # BDB keeps the used length of an overflow page in hf_offset (OV_LEN)
        if self.layout is HeaderLayout.ENTRIES and 0 < self.upper <= region:
            return self.upper
        return region

    def check_bounds(self, page_size: int) -> None:
        """Enforce header_size <= lower <= upper <= page_size."""
        if not self.header_size <= self.lower <= self.upper <= page_size:
            raise HeaderInvariantViolation(
                f"bounds violated: header_size={self.header_size} lower={self.lower} "
                f"upper={self.upper} page_size={page_size}",
                page_no=self.pgno,
            )

    def to_bytes(self, endianness: Endianness) -> bytes:
        """Serialize to bytes. See class docstring for layout details."""
        head = (self.lsn_file, self.lsn_offset, self.pgno, self.prev, self.next)
        if self.layout is HeaderLayout.ENTRIES:
            return endianness.pack(ENTRIES_HEADER_FMT, *head, self.slot_count, self.upper, self.level, self.type_code)
        flags = self.flags if self.flags is not None else self.type_code
        return endianness.pack(LOWER_UPPER_HEADER_FMT, *head, flags, self.lower, self.upper)

    @classmethod
    def from_bytes(
        cls,
        data: bytes | memoryview,
        endianness: Endianness,
        layout: HeaderLayout,
        verify_bounds: bool = True,
        page_no: int | None = None,
    ) -> Self:
        """Deserialize from a page buffer.

        Bounds are only verified for leaf and internal pages, whose slot
        arrays are about to be trusted.
        """
        if len(data) < layout.header_size:
            raise ShortPage(
                f"page buffer too short: expected at least {layout.header_size} bytes, got {len(data)}",
                page_no=page_no,
            )

        if layout is HeaderLayout.ENTRIES:
            lsn_file, lsn_offset, pgno, prev, next_pgno, entries, hf_offset, level, type_code = endianness.unpack_from(
                ENTRIES_HEADER_FMT, data
            )
            header = cls(
                layout=layout,
                lsn_file=lsn_file,
                lsn_offset=lsn_offset,
                pgno=pgno,
                prev=prev,
                next=next_pgno,
                type_code=type_code,
                lower=ENTRIES_HEADER_SIZE + SLOT_SIZE * entries,
                upper=hf_offset,
                level=level,
            )
        else:
            lsn_file, lsn_offset, pgno, prev, next_pgno, flags, lower, upper = endianness.unpack_from(
                LOWER_UPPER_HEADER_FMT, data
            )
            header = cls(
                layout=layout,
                lsn_file=lsn_file,
                lsn_offset=lsn_offset,
                pgno=pgno,
                prev=prev,
                next=next_pgno,
                type_code=flags & PAGE_TYPE_MASK,
                lower=lower,
                upper=upper,
                flags=flags,
            )

        if verify_bounds and header.page_type in (PageType.LEAF, PageType.INTERNAL):
            try:
                header.check_bounds(len(data))
            except HeaderInvariantViolation as exc:
                if page_no is not None:
                    exc.page_no = page_no
                raise
        return header


class ChainReader(Protocol):
    def read(self, ref: "OverflowRef", page_no: int | None = None) -> bytes: ...


class InlineField(BaseModel):
    """Item bytes stored on the leaf page itself.

    `data` is a view into the page buffer, valid for as long as that page's
    bytes are alive. materialize() returns an owned copy.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    data: memoryview

    def try_borrow(self) -> memoryview | None:
        return self.data

    def materialize(self, reader: ChainReader | None = None, page_no: int | None = None) -> bytes:
        return bytes(self.data)


class OverflowRef(BaseModel):
    """Reference to an item stored on a chain of overflow pages."""

    model_config = ConfigDict(frozen=True)

    first_page: int
    total_len: int

    def try_borrow(self) -> memoryview | None:
        return None

    def materialize(self, reader: ChainReader, page_no: int | None = None) -> bytes:
        return reader.read(self, page_no=page_no)


class LeafEntry(BaseModel):
    """One decoded leaf slot: a key or a value, possibly a tombstone."""

    model_config = ConfigDict(frozen=True)

    deleted: bool = False
    field: InlineField | OverflowRef
    offset: int
    slot_index: int


class InternalEntry(BaseModel):
    """One decoded internal slot: separator key plus child pointer."""

    model_config = ConfigDict(frozen=True)

    deleted: bool = False
    child_page: int
    record_count: int = 0
    key: InlineField | OverflowRef
    offset: int
    slot_index: int


class Provenance(BaseModel):
    """Where a recovered record was found."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    page_no: int
    slot_index: int


class RecordPair(BaseModel):
    """A recovered key/value record.

    Holds owned bytes: inline views and overflow reads are both copied on the
    way in, so a pair outlives the page buffer it came from.
    """

    model_config = ConfigDict(frozen=True)

    key: bytes
    value: bytes
    provenance: Provenance

    @field_validator("key", "value", mode="before")
    @classmethod
    def ensure_bytes(cls, v: bytes | bytearray | memoryview | str) -> bytes:
        if isinstance(v, str):
            return v.encode("utf-8")
        if isinstance(v, (bytearray, memoryview)):
            return bytes(v)
        return v


class Diagnostic(BaseModel):
    """A location skipped during recovery and the reason why."""

    model_config = ConfigDict(frozen=True)

    kind: str
    message: str
    page_no: int | None = None
    offset: int | None = None
    slot_index: int | None = None

    @classmethod
    def from_error(cls, exc: FormatError, slot_index: int | None = None) -> Self:
        return cls(
            kind=type(exc).__name__,
            message=exc.message,
            page_no=exc.page_no,
            offset=exc.offset,
            slot_index=slot_index,
        )

    def __str__(self) -> str:
        parts = [f"{self.kind}: {self.message}"]
        if self.page_no is not None:
            parts.append(f"page={self.page_no}")
        if self.slot_index is not None:
            parts.append(f"slot={self.slot_index}")
        if self.offset is not None:
            parts.append(f"offset={self.offset}")
        return " ".join(parts)
