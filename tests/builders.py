"""Synthetic Btree images for tests.

Pages are assembled with the same models the reader decodes them with, so a
test describes a tree by its items and lets the builder do the byte packing.
"""

from models.metadata import BtreeMeta
from models.storage import Endianness, HeaderLayout, PageHeader, PageType
from storage.pages import B_KEYDATA, B_OVERFLOW, DELETED_FLAG, INTERNAL_ITEM_FMT, ITEM_HEADER_FMT


class ImageBuilder:
    """Collects pages by number and renders a full image with build()."""

    def __init__(
        self,
        page_size: int = 512,
        endianness: Endianness = Endianness.LITTLE,
        layout: HeaderLayout = HeaderLayout.LOWER_UPPER,
        version: int | None = None,
    ):
        self.page_size = page_size
        self.endianness = endianness
        self.layout = layout
        if version is None:
            version = 9 if layout is HeaderLayout.ENTRIES else 1
        self.version = version
        self.pages: dict[int, bytes] = {}

    # Items

    def inline(self, data: bytes, deleted: bool = False) -> bytes:
        kind = B_KEYDATA | (DELETED_FLAG if deleted else 0)
        return self.endianness.pack(ITEM_HEADER_FMT, len(data), kind) + data

    def overflow_item(self, first_page: int, total_len: int, deleted: bool = False) -> bytes:
        kind = B_OVERFLOW | (DELETED_FLAG if deleted else 0)
        return self.endianness.pack("HBBII", 0, kind, 0, first_page, total_len)

    def internal_item(self, key: bytes, child_page: int, record_count: int = 0, deleted: bool = False) -> bytes:
        kind = B_KEYDATA | (DELETED_FLAG if deleted else 0)
        return self.endianness.pack(INTERNAL_ITEM_FMT, len(key), kind, 0, child_page, record_count) + key

    # Pages

    def slotted_page(
        self,
        page_no: int,
        page_type: PageType,
        items: list[bytes],
        extra_slots: list[int] | None = None,
        replace_slots: dict[int, int] | None = None,
        level: int = 1,
    ) -> bytes:
        page = bytearray(self.page_size)
        offsets = []
        position = self.page_size
        for item in items:
            position -= len(item)
            page[position : position + len(item)] = item
            offsets.append(position)

        for index, offset in (replace_slots or {}).items():
            offsets[index] = offset
        offsets.extend(extra_slots or [])

        header_size = self.layout.header_size
        header = PageHeader(
            layout=self.layout,
            pgno=page_no,
            type_code=page_type.raw_code(self.layout),
            lower=header_size + 2 * len(offsets),
            upper=position,
            level=level,
        )
        page[:header_size] = header.to_bytes(self.endianness)
        for index, offset in enumerate(offsets):
            start = header_size + 2 * index
            page[start : start + 2] = self.endianness.pack("H", offset)
        return bytes(page)

    def leaf(self, page_no: int, items: list[bytes], **kwargs) -> None:
        self.pages[page_no] = self.slotted_page(page_no, PageType.LEAF, items, **kwargs)

    def leaf_pairs(self, page_no: int, pairs: list[tuple[bytes, bytes]]) -> None:
        items = []
        for key, value in pairs:
            items += [self.inline(key), self.inline(value)]
        self.leaf(page_no, items)

    def internal(self, page_no: int, children: list[tuple[bytes, int]], level: int = 2, **kwargs) -> None:
        items = [self.internal_item(key, child) for key, child in children]
        self.pages[page_no] = self.slotted_page(page_no, PageType.INTERNAL, items, level=level, **kwargs)

    def overflow_page(self, page_no: int, payload: bytes, next_page: int = 0, page_type: PageType = PageType.OVERFLOW) -> None:
        header_size = self.layout.header_size
        # OV_LEN lives in hf_offset on the native layout
        upper = len(payload) if self.layout is HeaderLayout.ENTRIES else self.page_size
        header = PageHeader(
            layout=self.layout,
            pgno=page_no,
            next=next_page,
            type_code=page_type.raw_code(self.layout),
            lower=header_size,
            upper=upper,
        )
        page = bytearray(self.page_size)
        page[:header_size] = header.to_bytes(self.endianness)
        page[header_size : header_size + len(payload)] = payload
        self.pages[page_no] = bytes(page)

    def overflow_chain(self, first_page: int, data: bytes) -> int:
        """Spread data over consecutive overflow pages; returns the page count."""
        region = self.page_size - self.layout.header_size
        chunks = [data[start : start + region] for start in range(0, len(data), region)] or [b""]
        for index, chunk in enumerate(chunks):
            next_page = first_page + index + 1 if index + 1 < len(chunks) else 0
            self.overflow_page(first_page + index, chunk, next_page)
        return len(chunks)

    def raw(self, page_no: int, data: bytes) -> None:
        self.pages[page_no] = data.ljust(self.page_size, b"\x00")

    # Image

    def meta(self, last_pgno: int, root: int = 1, **kwargs) -> BtreeMeta:
        return BtreeMeta(
            endianness=self.endianness,
            version=self.version,
            page_size=self.page_size,
            last_pgno=last_pgno,
            root=root,
            **kwargs,
        )

    def build(self, root: int = 1, last_pgno: int | None = None, page_count: int | None = None, **meta_fields) -> bytes:
        if last_pgno is None:
            last_pgno = max(self.pages, default=1)
        if page_count is None:
            page_count = last_pgno + 1

        image = bytearray(self.meta(last_pgno, root, **meta_fields).to_bytes())
        for page_no in range(1, page_count):
            image += self.pages.get(page_no, bytes(self.page_size))
        return bytes(image)
