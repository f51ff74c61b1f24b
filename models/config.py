"""Reader configuration.

A ReaderConfig is passed to the ConsistencyDriver once per read. It holds
the salvage policy plus the few knobs that change how pages are reached.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, field_validator

from models.storage import HeaderLayout

DEFAULT_MAX_DEPTH = 32


class SalvageMode(Enum):
    """How structural faults below the meta page are handled.

    CONSERVATIVE aborts the read on the first fault. BEST_EFFORT records a
    diagnostic, skips the offending page or subtree and carries on.
    """

    CONSERVATIVE = "conservative"
    BEST_EFFORT = "best-effort"


class Traversal(Enum):
    """How leaf pages are reached."""

    TREE = "tree"  # root-to-leaf, left to right
    SCAN = "scan"  # every page 1..last_pgno in page order


class ReaderConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: SalvageMode = SalvageMode.CONSERVATIVE
    traversal: Traversal = Traversal.TREE
    header_layout: HeaderLayout | None = None  # None = decide from the meta version
    max_depth: int = DEFAULT_MAX_DEPTH
    cache_pages: bool = False

    @field_validator("max_depth")
    @classmethod
    def validate_max_depth(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_depth must be at least 1, got {v}")
        return v
