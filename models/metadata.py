"""Btree meta page (page 0) and the format profile derived from it.

The meta page is decoded in whichever byte order makes the magic at offset
12 read as BTREE_MAGIC; every other page of the file is then read in that
same order.

Struct format reference (https://docs.python.org/3/library/struct.html):
    B   = unsigned char (1 byte)
    I   = unsigned int (4 bytes)
    20s = 20-byte string (file uid)
"""

from typing import ClassVar, Self

from pydantic import BaseModel, ConfigDict, field_validator

from exceptions import ImplausiblePageSize, MagicNotFound, ShortPage
from models.storage import Endianness, HeaderLayout, PageType

BTREE_MAGIC = 0x00053162
MAGIC_OFFSET = 12

# Meta layout (92 bytes):
#   [lsn_file:4][lsn_offset:4][pgno:4][magic:4][version:4][page_size:4]
#   [encrypt_alg:1][page_type:1][metaflags:1][unused:1]
#   [free:4][last_pgno:4][unused:4][key_count:4][record_count:4][flags:4][uid:20]
#   [unused:4][minkey:4][re_len:4][re_pad:4][root:4]
META_FMT = "IIIIIIBBBBIIIIII20sIIIII"
META_SIZE = 92

# Encryption tail, present when the page is at least 516 bytes long
CRYPTO_MAGIC_OFFSET = 460
IV_OFFSET = 476
IV_SIZE = 16
CHECKSUM_OFFSET = 496
CHECKSUM_SIZE = 20
META_TAIL_END = CHECKSUM_OFFSET + CHECKSUM_SIZE

MIN_META_PAGE_SIZE = 512
PAGE_SIZE_UNIT = 512

# Btree meta versions written by BDB releases whose pages carry the native
# entries/hf_offset header. Any other version is read with the generic
# lower/upper header.
NATIVE_LAYOUT_VERSIONS = frozenset({8, 9, 10})

BDB_RELEASES = {
    8: "3.1-4.2",
    9: "4.3-5.x",
    10: "6.x",
}


def _page_size_plausible(page_size: int) -> bool:
    return page_size != 0 and page_size % PAGE_SIZE_UNIT == 0


def detect_endianness(data: bytes | memoryview) -> Endianness:
    """Return the byte order in which the Btree magic reads correctly."""
    if len(data) < MAGIC_OFFSET + 4:
        raise MagicNotFound("buffer too short to hold the Btree magic", page_no=0)

    for endianness in (Endianness.LITTLE, Endianness.BIG):
        (magic,) = endianness.unpack_from("I", data, MAGIC_OFFSET)
        if magic == BTREE_MAGIC:
            return endianness

    raise MagicNotFound(
        f"Btree magic 0x{BTREE_MAGIC:08x} not found in either byte order",
        page_no=0,
        offset=MAGIC_OFFSET,
    )


class BtreeMeta(BaseModel):
    """Btree metadata stored on page 0.

    This is the first thing read from an image. It fixes the byte order and
    page size for the rest of the read and names the root of the tree.

    Fields:
        page_size: Bytes per page (non-zero multiple of 512)
        last_pgno: Highest allocated page number
        root: Page number of the Btree root
        key_count / record_count: Cached statistics, often 0
        crypto_magic / iv / checksum: Encryption-era tail, surfaced only
    """

    model_config = ConfigDict(frozen=True)

    SIZE: ClassVar[int] = META_SIZE

    endianness: Endianness = Endianness.LITTLE
    lsn_file: int = 0
    lsn_offset: int = 0
    pgno: int = 0
    magic: int = BTREE_MAGIC
    version: int = 9
    page_size: int = 4096
    encrypt_alg: int = 0
    page_type: int = PageType.META
    metaflags: int = 0
    free: int = 0
    last_pgno: int = 0
    key_count: int = 0
    record_count: int = 0
    flags: int = 0
    uid: bytes = b"\x00" * 20
    minkey: int = 2
    re_len: int = 0
    re_pad: int = 0x20
    root: int = 1
    crypto_magic: int = 0
    iv: bytes = b"\x00" * IV_SIZE
    checksum: bytes = b"\x00" * CHECKSUM_SIZE

    @field_validator("page_size")
    @classmethod
    def validate_page_size(cls, v: int) -> int:
        if not _page_size_plausible(v):
            raise ValueError(f"Page size must be a non-zero multiple of {PAGE_SIZE_UNIT}, got {v}")
        return v

    @property
    def encrypted(self) -> bool:
        return self.encrypt_alg != 0 or self.crypto_magic != 0

    @property
    def header_layout(self) -> HeaderLayout:
        """Page header encoding implied by the meta version."""
        if self.version in NATIVE_LAYOUT_VERSIONS:
            return HeaderLayout.ENTRIES
        return HeaderLayout.LOWER_UPPER

    @property
    def bdb_release(self) -> str | None:
        return BDB_RELEASES.get(self.version)

    def to_bytes(self, page_size: int | None = None) -> bytes:
        """Serialize to a full page in this meta's byte order."""
        size = page_size or self.page_size
        data = self.endianness.pack(
            META_FMT,
            self.lsn_file,
            self.lsn_offset,
            self.pgno,
            self.magic,
            self.version,
            self.page_size,
            self.encrypt_alg,
            self.page_type,
            self.metaflags,
            0,
            self.free,
            self.last_pgno,
            0,
            self.key_count,
            self.record_count,
            self.flags,
            self.uid,
            0,
            self.minkey,
            self.re_len,
            self.re_pad,
            self.root,
        )
        page = bytearray(data.ljust(size, b"\x00"))
        if size >= META_TAIL_END:
            page[CRYPTO_MAGIC_OFFSET : CRYPTO_MAGIC_OFFSET + 4] = self.endianness.pack("I", self.crypto_magic)
            page[IV_OFFSET : IV_OFFSET + IV_SIZE] = self.iv
            page[CHECKSUM_OFFSET:META_TAIL_END] = self.checksum
        return bytes(page)

    @classmethod
    def from_bytes(cls, data: bytes | memoryview) -> Self:
        """Deserialize page 0, detecting byte order and validating page size."""
        if len(data) < MIN_META_PAGE_SIZE:
            raise ShortPage(
                f"meta page too short: expected at least {MIN_META_PAGE_SIZE} bytes, got {len(data)}",
                page_no=0,
            )

        endianness = detect_endianness(data)
        (
            lsn_file,
            lsn_offset,
            pgno,
            magic,
            version,
            page_size,
            encrypt_alg,
            page_type,
            metaflags,
            _unused1,
            free,
            last_pgno,
            _unused2,
            key_count,
            record_count,
            flags,
            uid,
            _unused3,
            minkey,
            re_len,
            re_pad,
            root,
        ) = endianness.unpack_from(META_FMT, data)

        if not _page_size_plausible(page_size):
            raise ImplausiblePageSize(f"implausible page size {page_size}", page_no=0, offset=20)

        crypto_magic = 0
        iv = b"\x00" * IV_SIZE
        checksum = b"\x00" * CHECKSUM_SIZE
        if len(data) >= META_TAIL_END:
            (crypto_magic,) = endianness.unpack_from("I", data, CRYPTO_MAGIC_OFFSET)
            iv = bytes(data[IV_OFFSET : IV_OFFSET + IV_SIZE])
            checksum = bytes(data[CHECKSUM_OFFSET:META_TAIL_END])

        return cls(
            endianness=endianness,
            lsn_file=lsn_file,
            lsn_offset=lsn_offset,
            pgno=pgno,
            magic=magic,
            version=version,
            page_size=page_size,
            encrypt_alg=encrypt_alg,
            page_type=page_type,
            metaflags=metaflags,
            free=free,
            last_pgno=last_pgno,
            key_count=key_count,
            record_count=record_count,
            flags=flags,
            uid=uid,
            minkey=minkey,
            re_len=re_len,
            re_pad=re_pad,
            root=root,
            crypto_magic=crypto_magic,
            iv=iv,
            checksum=checksum,
        )


class FormatProfile(BaseModel):
    """Geometry and byte order fixed for the whole read of one image."""

    model_config = ConfigDict(frozen=True)

    page_size: int
    endianness: Endianness
    btree_root: int
    version: int
    last_pgno: int
    header_layout: HeaderLayout
    bdb_release: str | None = None
    meta: BtreeMeta

    @classmethod
    def from_meta(cls, meta: BtreeMeta, header_layout: HeaderLayout | None = None) -> Self:
        return cls(
            page_size=meta.page_size,
            endianness=meta.endianness,
            btree_root=meta.root,
            version=meta.version,
            last_pgno=meta.last_pgno,
            header_layout=header_layout or meta.header_layout,
            bdb_release=meta.bdb_release,
            meta=meta,
        )

    def page_offset(self, page_no: int) -> int:
        return page_no * self.page_size
