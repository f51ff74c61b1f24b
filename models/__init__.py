"""Pydantic models for Berkeley DB Btree images and the records recovered from them."""

from models.config import ReaderConfig, SalvageMode, Traversal
from models.metadata import BTREE_MAGIC, BtreeMeta, FormatProfile
from models.storage import (
    Diagnostic,
    Endianness,
    HeaderLayout,
    InlineField,
    InternalEntry,
    LeafEntry,
    OverflowRef,
    PageHeader,
    PageType,
    Provenance,
    RecordPair,
)
from models.wallet import WalletRecord, read_compact_size, split_wallet_key, write_compact_size

__all__ = [
    "BTREE_MAGIC",
    "BtreeMeta",
    "Diagnostic",
    "Endianness",
    "FormatProfile",
    "HeaderLayout",
    "InlineField",
    "InternalEntry",
    "LeafEntry",
    "OverflowRef",
    "PageHeader",
    "PageType",
    "Provenance",
    "ReaderConfig",
    "RecordPair",
    "SalvageMode",
    "Traversal",
    "WalletRecord",
    "read_compact_size",
    "split_wallet_key",
    "write_compact_size",
]
