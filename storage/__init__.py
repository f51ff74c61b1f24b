"""Storage layer: byte sources, page decoding, traversal and recovery."""

from storage.btree import BTreeWalker, LeafVisit
from storage.consistency import ConsistencyDriver, RecoveryResult
from storage.leaf import LeafExtraction, LeafPageExtractor
from storage.overflow import OverflowChainReader
from storage.pager import ByteSource, FileSource, MemorySource, Pager, open_source
from storage.pages import InternalPage, LeafPage, probe_format
from storage.policy import DriverState, RecoveryContext
from storage.recordmap import MapEntry, RecordMap

__all__ = [
    "BTreeWalker",
    "ByteSource",
    "ConsistencyDriver",
    "DriverState",
    "FileSource",
    "InternalPage",
    "LeafExtraction",
    "LeafPage",
    "LeafPageExtractor",
    "LeafVisit",
    "MapEntry",
    "MemorySource",
    "OverflowChainReader",
    "Pager",
    "RecordMap",
    "RecoveryContext",
    "RecoveryResult",
    "open_source",
    "probe_format",
]
