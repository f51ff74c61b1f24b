"""Exceptions raised while decoding a Berkeley DB Btree image.

StructuralError subclasses mean there is no usable format profile (or no
usable tree) and are fatal in every salvage mode. Every other FormatError is
a per-page fault whose handling depends on the selected SalvageMode.
"""


class FormatError(Exception):
    """Base class for on-disk format faults.

    Carries the page number and byte offset of the fault when known so callers
    can report exactly where a partial recovery lost data.
    """

    def __init__(self, message: str, page_no: int | None = None, offset: int | None = None):
        super().__init__(message)
        self.message = message
        self.page_no = page_no
        self.offset = offset

    def __str__(self) -> str:
        location = []
        if self.page_no is not None:
            location.append(f"page={self.page_no}")
        if self.offset is not None:
            location.append(f"offset={self.offset}")
        if location:
            return f"{self.message} ({', '.join(location)})"
        return self.message


class StructuralError(FormatError):
    """Top-level file structure is unusable."""


class MagicNotFound(StructuralError):
    pass


class ImplausiblePageSize(StructuralError):
    pass


class TruncatedImage(StructuralError):
    """Image holds fewer pages than the meta page declares."""


class RootOutOfRange(StructuralError):
    pass


class ShortPage(FormatError):
    """Buffer is smaller than the minimum header size."""


class HeaderInvariantViolation(FormatError):
    pass


class UnexpectedPageType(FormatError):
    pass


class TruncatedOverflowChain(FormatError):
    pass


class FieldOutOfBounds(FormatError):
    pass


class UnknownLeafItemKind(FormatError):
    pass


class PageOutOfRange(FormatError):
    """A page pointer refers past the end of the image."""


class CyclicReference(FormatError):
    """A page was reached twice on one path (chain loop or tree cycle)."""


class KeyNotFound(Exception):
    pass


class DecoderNotRegistered(Exception):
    pass
