"""Leaf page extraction: slot entries to key/value records.

A Btree leaf stores each record as two adjacent slots, key then value. No
marker ties them together; slot order is the only evidence. Tombstoned
entries are dropped before pairing, and a key left without a value at the
end of the page is discarded.
"""

import logging
from dataclasses import dataclass, field

from models.metadata import FormatProfile
from models.storage import Diagnostic, LeafEntry, Provenance, RecordPair
from storage.overflow import OverflowChainReader
from storage.pager import Pager
from storage.pages import LeafPage

logger = logging.getLogger(__name__)


@dataclass
class LeafExtraction:
    """Records recovered from one leaf page."""

    page_no: int
    pairs: list[RecordPair] = field(default_factory=list)
    skipped: list[Diagnostic] = field(default_factory=list)
    discarded_key: bool = False


class LeafPageExtractor:
    """Turns one leaf page into ordered RecordPairs.

    A page is extracted as a whole: any decoding or overflow fault propagates
    and no pairs from that page are returned. Only out-of-bounds slot offsets
    are tolerated here, reported in LeafExtraction.skipped.
    """

    def __init__(self, pager: Pager, profile: FormatProfile, overflow: OverflowChainReader | None = None):
        self.pager = pager
        self.profile = profile
        self.overflow = overflow or OverflowChainReader(pager, profile)

    def extract(self, page_no: int, data: bytes | memoryview | None = None) -> LeafExtraction:
        if data is None:
            data = self.pager.read_page(page_no)

        leaf = LeafPage.from_bytes(data, page_no, self.profile)
        live = [entry for entry in leaf.entries if not entry.deleted]

        extraction = LeafExtraction(page_no=page_no, skipped=list(leaf.skipped))
        for key_entry, value_entry in zip(live[0::2], live[1::2]):
            extraction.pairs.append(
                RecordPair(
                    key=self._materialize(key_entry, page_no),
                    value=self._materialize(value_entry, page_no),
                    provenance=Provenance(
                        source_id=self.pager.source_id,
                        page_no=page_no,
                        slot_index=key_entry.slot_index,
                    ),
                )
            )

        if len(live) % 2:
            extraction.discarded_key = True
            logger.debug("page %d: discarding unpaired trailing key at slot %d", page_no, live[-1].slot_index)

        return extraction

    def _materialize(self, entry: LeafEntry, page_no: int) -> bytes:
        return entry.field.materialize(self.overflow, page_no=page_no)
