"""Unit tests for the Btree image models."""

import pytest
from pydantic import ValidationError

from exceptions import FormatError, HeaderInvariantViolation, ImplausiblePageSize, MagicNotFound, ShortPage
from models import (
    BTREE_MAGIC,
    BtreeMeta,
    Diagnostic,
    Endianness,
    FormatProfile,
    HeaderLayout,
    PageHeader,
    PageType,
    Provenance,
    ReaderConfig,
    RecordPair,
    WalletRecord,
    read_compact_size,
    split_wallet_key,
    write_compact_size,
)
from models.metadata import detect_endianness
from models.wallet import make_wallet_key


class TestBtreeMeta:
    """Tests for meta page decoding and format probing."""

    def test_little_endian_probe(self):
        meta = BtreeMeta(page_size=4096, last_pgno=2, root=1)
        restored = BtreeMeta.from_bytes(meta.to_bytes())

        assert restored.endianness is Endianness.LITTLE
        assert restored.magic == BTREE_MAGIC
        assert restored.page_size == 4096
        assert restored.last_pgno == 2
        assert restored.root == 1

    def test_big_endian_probe(self):
        meta = BtreeMeta(endianness=Endianness.BIG, page_size=8192, last_pgno=7, root=3)
        data = meta.to_bytes()
        # Magic stored most significant byte first
        assert data[12:16] == b"\x00\x05\x31\x62"

        restored = BtreeMeta.from_bytes(data)
        assert restored.endianness is Endianness.BIG
        assert restored.page_size == 8192
        assert restored.root == 3

    def test_magic_missing_in_both_orders(self):
        with pytest.raises(MagicNotFound) as exc_info:
            BtreeMeta.from_bytes(bytes(4096))
        assert exc_info.value.page_no == 0

    def test_detect_endianness_short_buffer(self):
        with pytest.raises(MagicNotFound):
            detect_endianness(b"\x00" * 8)

    def test_implausible_page_size(self):
        data = bytearray(BtreeMeta(page_size=4096).to_bytes())
        data[20:24] = Endianness.LITTLE.pack("I", 1000)
        with pytest.raises(ImplausiblePageSize):
            BtreeMeta.from_bytes(bytes(data))

    def test_zero_page_size(self):
        data = bytearray(BtreeMeta(page_size=4096).to_bytes())
        data[20:24] = b"\x00\x00\x00\x00"
        with pytest.raises(ImplausiblePageSize):
            BtreeMeta.from_bytes(bytes(data))

    def test_short_meta_page(self):
        with pytest.raises(ShortPage):
            BtreeMeta.from_bytes(BtreeMeta().to_bytes()[:100])

    def test_validator_rejects_bad_page_size(self):
        with pytest.raises(ValidationError):
            BtreeMeta(page_size=100)

    def test_header_layout_from_version(self):
        assert BtreeMeta(version=9).header_layout is HeaderLayout.ENTRIES
        assert BtreeMeta(version=10).header_layout is HeaderLayout.ENTRIES
        assert BtreeMeta(version=1).header_layout is HeaderLayout.LOWER_UPPER

    def test_bdb_release_label(self):
        assert BtreeMeta(version=9).bdb_release == "4.3-5.x"
        assert BtreeMeta(version=1).bdb_release is None

    def test_encryption_tail_surfaced(self):
        meta = BtreeMeta(page_size=4096, encrypt_alg=1, crypto_magic=0x1234, iv=b"\x01" * 16)
        restored = BtreeMeta.from_bytes(meta.to_bytes())

        assert restored.encrypted
        assert restored.crypto_magic == 0x1234
        assert restored.iv == b"\x01" * 16

    def test_profile_from_meta(self):
        meta = BtreeMeta(version=9, page_size=4096, last_pgno=5, root=2)
        profile = FormatProfile.from_meta(meta)

        assert profile.btree_root == 2
        assert profile.header_layout is HeaderLayout.ENTRIES
        assert profile.page_offset(3) == 3 * 4096

    def test_profile_layout_override(self):
        meta = BtreeMeta(version=9)
        profile = FormatProfile.from_meta(meta, HeaderLayout.LOWER_UPPER)
        assert profile.header_layout is HeaderLayout.LOWER_UPPER


class TestPageHeader:
    """Tests for both page header encodings."""

    def test_lower_upper_layout(self):
        header = PageHeader(
            layout=HeaderLayout.LOWER_UPPER,
            pgno=3,
            prev=2,
            next=4,
            type_code=PageType.LEAF,
            lower=28 + 2 * 4,
            upper=400,
        )
        data = header.to_bytes(Endianness.LITTLE).ljust(512, b"\x00")
        restored = PageHeader.from_bytes(data, Endianness.LITTLE, HeaderLayout.LOWER_UPPER)

        assert restored.page_type is PageType.LEAF
        assert restored.pgno == 3
        assert restored.prev == 2
        assert restored.next == 4
        assert restored.slot_count == 4
        assert restored.header_size == 28

    def test_flags_high_bits_ignored_for_type(self):
        header = PageHeader(
            layout=HeaderLayout.LOWER_UPPER, pgno=1, type_code=0, flags=0x100 | PageType.INTERNAL, lower=28, upper=512
        )
        data = header.to_bytes(Endianness.BIG).ljust(512, b"\x00")
        restored = PageHeader.from_bytes(data, Endianness.BIG, HeaderLayout.LOWER_UPPER)

        assert restored.page_type is PageType.INTERNAL
        assert restored.flags == 0x100 | PageType.INTERNAL

    def test_entries_layout(self):
        header = PageHeader(
            layout=HeaderLayout.ENTRIES,
            pgno=1,
            type_code=PageType.LEAF.raw_code(HeaderLayout.ENTRIES),
            lower=26 + 2 * 3,
            upper=300,
            level=1,
        )
        data = header.to_bytes(Endianness.LITTLE)
        assert len(data) == 26
        assert data[25] == 5

        restored = PageHeader.from_bytes(data.ljust(512, b"\x00"), Endianness.LITTLE, HeaderLayout.ENTRIES)
        assert restored.page_type is PageType.LEAF
        assert restored.slot_count == 3
        assert restored.upper == 300
        assert restored.level == 1

    def test_type_byte_codes(self):
        assert PageType.from_type_byte(3) is PageType.INTERNAL
        assert PageType.from_type_byte(5) is PageType.LEAF
        assert PageType.from_type_byte(7) is PageType.OVERFLOW
        assert PageType.from_type_byte(9) is PageType.META
        assert PageType.from_type_byte(0) is PageType.OTHER

    def test_short_page(self):
        with pytest.raises(ShortPage):
            PageHeader.from_bytes(b"\x00" * 20, Endianness.LITTLE, HeaderLayout.LOWER_UPPER)

    def test_lower_past_upper(self):
        header = PageHeader(layout=HeaderLayout.LOWER_UPPER, pgno=1, type_code=PageType.LEAF, lower=300, upper=200)
        data = header.to_bytes(Endianness.LITTLE).ljust(512, b"\x00")
        with pytest.raises(HeaderInvariantViolation) as exc_info:
            PageHeader.from_bytes(data, Endianness.LITTLE, HeaderLayout.LOWER_UPPER, page_no=1)
        assert exc_info.value.page_no == 1

    def test_upper_past_page_end(self):
        header = PageHeader(layout=HeaderLayout.LOWER_UPPER, pgno=1, type_code=PageType.LEAF, lower=28, upper=600)
        data = header.to_bytes(Endianness.LITTLE).ljust(512, b"\x00")
        with pytest.raises(HeaderInvariantViolation):
            PageHeader.from_bytes(data, Endianness.LITTLE, HeaderLayout.LOWER_UPPER)

    def test_bounds_not_checked_for_overflow_pages(self):
        header = PageHeader(layout=HeaderLayout.LOWER_UPPER, pgno=1, type_code=PageType.OVERFLOW, lower=0, upper=0)
        data = header.to_bytes(Endianness.LITTLE).ljust(512, b"\x00")
        restored = PageHeader.from_bytes(data, Endianness.LITTLE, HeaderLayout.LOWER_UPPER)
        assert restored.page_type is PageType.OVERFLOW

    def test_overflow_payload_length(self):
        native = PageHeader(layout=HeaderLayout.ENTRIES, pgno=1, type_code=7, lower=26, upper=100)
        generic = PageHeader(layout=HeaderLayout.LOWER_UPPER, pgno=1, type_code=4, lower=28, upper=512)

        assert native.payload_length(512) == 100
        assert generic.payload_length(512) == 512 - 28


class TestRecords:
    """Tests for recovered record models."""

    def test_record_pair_copies_views(self):
        buffer = bytearray(b"keyvalue")
        pair = RecordPair(
            key=memoryview(buffer)[:3],
            value=memoryview(buffer)[3:],
            provenance=Provenance(source_id="x", page_no=1, slot_index=0),
        )
        buffer[:3] = b"XXX"

        assert pair.key == b"key"
        assert pair.value == b"value"

    def test_diagnostic_from_error(self):
        diagnostic = Diagnostic.from_error(FormatError("bad thing", page_no=4, offset=12), slot_index=2)

        assert diagnostic.kind == "FormatError"
        assert diagnostic.page_no == 4
        assert str(diagnostic) == "FormatError: bad thing page=4 slot=2 offset=12"

    def test_format_error_location(self):
        assert str(FormatError("oops", page_no=3)) == "oops (page=3)"
        assert str(FormatError("oops")) == "oops"

    def test_reader_config_defaults(self):
        config = ReaderConfig()
        assert config.max_depth == 32
        assert config.header_layout is None

    def test_reader_config_rejects_zero_depth(self):
        with pytest.raises(ValidationError):
            ReaderConfig(max_depth=0)


class TestCompactSize:
    """Tests for the wallet key length prefix."""

    @pytest.mark.parametrize(
        "value,width",
        [
            (0, 1),
            (252, 1),
            (253, 3),
            (65535, 3),
            (65536, 5),
            (2**32 - 1, 5),
            (2**32, 9),
        ],
    )
    def test_boundaries(self, value, width):
        encoded = write_compact_size(value)
        assert len(encoded) == width
        assert read_compact_size(encoded) == (value, width)

    def test_marker_bytes(self):
        assert write_compact_size(253)[0] == 0xFD
        assert write_compact_size(65536)[0] == 0xFE
        assert write_compact_size(2**32)[0] == 0xFF

    def test_truncated(self):
        assert read_compact_size(b"") is None
        assert read_compact_size(b"\xfd\x01") is None
        assert read_compact_size(b"\xfe\x00\x00") is None

    def test_offset(self):
        assert read_compact_size(b"\x00\x05", offset=1) == (5, 1)

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            write_compact_size(-1)
        with pytest.raises(ValueError):
            write_compact_size(2**64)


class TestWalletKeys:
    """Tests for tag/suffix splitting of wallet keys."""

    def test_split(self):
        assert split_wallet_key(b"\x04name\x01\x02") == ("name", b"\x01\x02")

    def test_tag_only(self):
        assert split_wallet_key(b"\x07version") == ("version", b"")

    def test_tag_runs_past_key(self):
        assert split_wallet_key(b"\x09name") is None

    def test_empty_key(self):
        assert split_wallet_key(b"") is None

    def test_invalid_utf8(self):
        assert split_wallet_key(b"\x02\xff\xfe") is None

    def test_make_wallet_key(self):
        key = make_wallet_key("key", b"\x21" * 33)
        assert key[:4] == b"\x03key"
        assert split_wallet_key(key) == ("key", b"\x21" * 33)

    def test_wallet_record_from_pair(self):
        pair = RecordPair(
            key=make_wallet_key("name", b"addr"),
            value=b"label",
            provenance=Provenance(source_id="x", page_no=1, slot_index=0),
        )
        record = WalletRecord.from_pair(pair)

        assert record.tag == "name"
        assert record.key_suffix == b"addr"
        assert record.value == b"label"
        assert record.provenance.page_no == 1

    def test_untagged_key(self):
        assert WalletRecord.from_key_value(b"\xfd", b"v") is None
