"""Fault policy and run state for one recovery pass.

Two levels of failure exist. Bad slot offsets inside a leaf page are always
tolerated and only noted. Everything else below the meta page goes through
RecoveryContext.handle(), the one place that decides between aborting the
read and skipping the offending page or subtree.
"""

import logging
from collections.abc import Iterable
from enum import Enum

from exceptions import FormatError, StructuralError
from models.config import SalvageMode
from models.storage import Diagnostic

logger = logging.getLogger(__name__)


class DriverState(Enum):
    START = "start"
    PROBING_FORMAT = "probing_format"
    TRAVERSING = "traversing"
    DECODING = "decoding"
    EXTRACTING = "extracting"
    DONE = "done"
    PARTIAL_DONE = "partial_done"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (DriverState.DONE, DriverState.PARTIAL_DONE, DriverState.ABORTED)


class RecoveryContext:
    """Mutable state of a single pass: current state, diagnostics, skip count."""

    def __init__(self, mode: SalvageMode = SalvageMode.CONSERVATIVE):
        self.mode = mode
        self.state = DriverState.START
        self.diagnostics: list[Diagnostic] = []
        self.skipped_pages = 0

    def transition(self, state: DriverState) -> None:
        if self.state.terminal:
            raise RuntimeError(f"recovery already finished in state {self.state.value}")
        self.state = state

    def note(self, diagnostics: Iterable[Diagnostic]) -> None:
        """Record faults that were tolerated locally."""
        self.diagnostics.extend(diagnostics)

    def handle(self, exc: FormatError) -> None:
        """Re-raise exc under CONSERVATIVE (or if structural), else record it.

        Must be called from an except block; the caller skips the page or
        subtree when this returns.
        """
        if isinstance(exc, StructuralError) or self.mode is SalvageMode.CONSERVATIVE:
            raise exc

        diagnostic = Diagnostic.from_error(exc)
        self.diagnostics.append(diagnostic)
        self.skipped_pages += 1
        logger.warning("skipping after fault: %s", diagnostic)

    def abort(self) -> None:
        self.state = DriverState.ABORTED

    def finish(self) -> DriverState:
        if self.mode is SalvageMode.BEST_EFFORT and self.diagnostics:
            self.state = DriverState.PARTIAL_DONE
        else:
            self.state = DriverState.DONE
        return self.state
