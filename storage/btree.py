"""Read-only Btree traversal.

Internal pages hold (separator key, child page) entries; the separators are
only routing information and are never emitted. Traversal is depth-first
and left to right from the root, so leaves come out in key order. Each leaf
is handed to the LeafPageExtractor.

Faults on the root page mean there is no tree to walk and always propagate.
Faults anywhere below it go through the RecoveryContext, which either aborts
or skips the page together with everything under it.
"""

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from exceptions import CyclicReference, FormatError, UnexpectedPageType
from models.config import DEFAULT_MAX_DEPTH
from models.metadata import FormatProfile
from models.storage import PageHeader, PageType, RecordPair
from storage.leaf import LeafPageExtractor
from storage.pager import Pager
from storage.pages import InternalPage, decode_page_header
from storage.policy import DriverState, RecoveryContext

logger = logging.getLogger(__name__)


@dataclass
class LeafVisit:
    """A leaf page reached by traversal."""

    page_no: int
    data: bytes | memoryview
    header: PageHeader
    depth: int


class BTreeWalker:
    """Walks the on-disk tree from the profile's root page."""

    def __init__(
        self,
        pager: Pager,
        profile: FormatProfile,
        context: RecoveryContext | None = None,
        extractor: LeafPageExtractor | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ):
        self.pager = pager
        self.profile = profile
        self.context = context or RecoveryContext()
        self.extractor = extractor or LeafPageExtractor(pager, profile)
        self.max_depth = max_depth

    def _fault(self, exc: FormatError, depth: int) -> None:
        # Only the first visit to the root is fatal; a pointer back to it is a cycle
        if depth == 0:
            raise exc
        self.context.handle(exc)

    def iter_leaves(self) -> Iterator[LeafVisit]:
        """Yield every reachable leaf page in key order."""
        root = self.profile.btree_root
        # Stack of (page_no, depth); children pushed right to left so the leftmost pops first
        stack: list[tuple[int, int]] = [(root, 0)]
        visited: set[int] = set()

        while stack:
            page_no, depth = stack.pop()
            self.context.transition(DriverState.DECODING)
            try:
                if page_no in visited:
                    raise CyclicReference(f"page {page_no} reached twice during traversal", page_no=page_no)
                if depth > self.max_depth:
                    raise CyclicReference(f"tree deeper than {self.max_depth} levels", page_no=page_no)
                visited.add(page_no)

                data = self.pager.read_page(page_no)
                header = decode_page_header(data, self.profile, page_no)
                if header.page_type is PageType.INTERNAL:
                    internal = InternalPage.from_bytes(data, page_no, self.profile)
                elif header.page_type is not PageType.LEAF:
                    raise UnexpectedPageType(
                        f"expected LEAF or INTERNAL page, got {header.page_type.name} (code 0x{header.type_code:02x})",
                        page_no=page_no,
                    )
            except FormatError as exc:
                self._fault(exc, depth)
                continue

            if header.page_type is PageType.LEAF:
                yield LeafVisit(page_no=page_no, data=data, header=header, depth=depth)
                continue

            self.context.note(internal.skipped)
            children = internal.children
            logger.debug("internal page %d: %d children at depth %d", page_no, len(children), depth)
            stack.extend((child, depth + 1) for child in reversed(children))

    def scan_leaves(self) -> Iterator[LeafVisit]:
        """Yield every leaf page 1..last_pgno in page order, ignoring tree structure."""
        for page_no in range(1, self.profile.last_pgno + 1):
            self.context.transition(DriverState.DECODING)
            try:
                data = self.pager.read_page(page_no)
                header = decode_page_header(data, self.profile, page_no, verify_bounds=False)
                if header.page_type is not PageType.LEAF:
                    continue
                header = decode_page_header(data, self.profile, page_no)
            except FormatError as exc:
                self.context.handle(exc)
                continue

            yield LeafVisit(page_no=page_no, data=data, header=header, depth=0)

    def walk(self, leaves: Iterable[LeafVisit] | None = None) -> Iterator[RecordPair]:
        """Extract records from leaves (default: tree traversal) in order."""
        for visit in self.iter_leaves() if leaves is None else leaves:
            self.context.transition(DriverState.EXTRACTING)
            try:
                extraction = self.extractor.extract(visit.page_no, visit.data)
            except FormatError as exc:
                self.context.handle(exc)
                continue

            self.context.note(extraction.skipped)
            yield from extraction.pairs

    def tree_height(self) -> int:
        """Return the number of levels from the root down the leftmost path."""
        height = 0
        page_no = self.profile.btree_root

        while True:
            height += 1
            if height > self.max_depth:
                raise CyclicReference(f"tree deeper than {self.max_depth} levels", page_no=page_no)

            data = self.pager.read_page(page_no)
            header = decode_page_header(data, self.profile, page_no)
            if header.page_type is PageType.LEAF:
                return height
            if header.page_type is not PageType.INTERNAL:
                raise UnexpectedPageType(f"unexpected page type: {header.page_type.name}", page_no=page_no)

            children = InternalPage.from_bytes(data, page_no, self.profile).children
            if not children:
                return height
            page_no = children[0]
