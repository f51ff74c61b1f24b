"""ConsistencyDriver: the entry point that runs a whole recovery.

    START -> PROBING_FORMAT -> TRAVERSING -> (DECODING -> EXTRACTING)* -> DONE
                                                                       -> PARTIAL_DONE (BEST_EFFORT, faults seen)
                                                                       -> ABORTED (an error escaped)

The image is never modified, so a driver can be run any number of times;
each run of records() starts from scratch with a fresh context.
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field

from exceptions import FormatError, RootOutOfRange, TruncatedImage
from models.config import ReaderConfig, SalvageMode, Traversal
from models.metadata import FormatProfile
from models.storage import Diagnostic, RecordPair
from storage.btree import BTreeWalker
from storage.pager import ByteSource, Pager
from storage.pages import probe_format
from storage.policy import DriverState, RecoveryContext
from storage.recordmap import RecordMap

logger = logging.getLogger(__name__)


@dataclass
class RecoveryResult:
    """Outcome of a completed pass."""

    records: RecordMap
    profile: FormatProfile
    state: DriverState
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return self.state is DriverState.PARTIAL_DONE


class ConsistencyDriver:
    """Composes probe, traversal and extraction under one SalvageMode."""

    def __init__(self, source: ByteSource, config: ReaderConfig | None = None, **overrides):
        config = config or ReaderConfig()
        if overrides:
            config = ReaderConfig.model_validate({**config.model_dump(), **overrides})
        self.source = source
        self.config = config
        self._context = RecoveryContext(self.config.mode)
        self._profile: FormatProfile | None = None

    @property
    def mode(self) -> SalvageMode:
        return self.config.mode

    @property
    def state(self) -> DriverState:
        return self._context.state

    @property
    def diagnostics(self) -> list[Diagnostic]:
        """Diagnostics of the most recent run."""
        return list(self._context.diagnostics)

    @property
    def profile(self) -> FormatProfile:
        if self._profile is None:
            self._profile = self.probe()
        return self._profile

    def probe(self) -> FormatProfile:
        """Read the meta page and check the image can hold the tree it declares."""
        profile = probe_format(self.source, self.config.header_layout)

        page_count = self.source.size // profile.page_size
        if page_count < profile.last_pgno + 1:
            raise TruncatedImage(
                f"image holds {page_count} pages but meta declares last_pgno={profile.last_pgno}",
                page_no=profile.last_pgno,
            )
        if not 1 <= profile.btree_root <= profile.last_pgno:
            raise RootOutOfRange(
                f"root page {profile.btree_root} outside [1, {profile.last_pgno}]",
                page_no=profile.btree_root,
            )
        return profile

    def pager(self, profile: FormatProfile) -> Pager:
        return Pager(self.source, profile.page_size, cache=self.config.cache_pages)

    def records(self) -> Iterator[RecordPair]:
        """Lazily yield every recoverable record in traversal order."""
        context = RecoveryContext(self.config.mode)
        self._context = context
        emitted = 0

        try:
            context.transition(DriverState.PROBING_FORMAT)
            profile = self.probe()
            self._profile = profile

            pager = self.pager(profile)
            walker = BTreeWalker(pager, profile, context, max_depth=self.config.max_depth)
            context.transition(DriverState.TRAVERSING)
            leaves = walker.scan_leaves() if self.config.traversal is Traversal.SCAN else walker.iter_leaves()
            for pair in walker.walk(leaves):
                emitted += 1
                yield pair
        except FormatError as exc:
            context.abort()
            logger.error("recovery of %s aborted: %s", self.source.source_id, exc)
            raise

        state = context.finish()
        logger.info(
            "recovered %d records from %s (%s, %d diagnostics, %d pages skipped)",
            emitted,
            self.source.source_id,
            state.value,
            len(context.diagnostics),
            context.skipped_pages,
        )

    def build_map(self) -> RecordMap:
        """Run a full pass and collect records into a map (last write wins)."""
        return RecordMap(self.records())

    def recover(self) -> RecoveryResult:
        records = self.build_map()
        return RecoveryResult(
            records=records,
            profile=self.profile,
            state=self.state,
            diagnostics=self.diagnostics,
        )
