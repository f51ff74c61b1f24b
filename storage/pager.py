"""Read-only, page-addressable access to a database image.

Two byte sources are provided:
    MemorySource: the whole image held in memory (also used for stdin)
    FileSource:   an open file read on demand with seek/read

A Pager wraps either one once the page size is known and serves pages by
number: page N occupies bytes [N * page_size, (N + 1) * page_size).
"""

import logging
import sys
from pathlib import Path
from typing import BinaryIO, Protocol, Self

from exceptions import PageOutOfRange

logger = logging.getLogger(__name__)

STDIN_PATH = "-"


class ByteSource(Protocol):
    """Anything that can serve byte ranges of an immutable image."""

    @property
    def source_id(self) -> str: ...

    @property
    def size(self) -> int: ...

    def read(self, offset: int, length: int) -> bytes | memoryview: ...

    def close(self) -> None: ...


class MemorySource:
    """Image held in memory. Reads return zero-copy views."""

    def __init__(self, data: bytes | bytearray | memoryview, source_id: str = "<memory>"):
        self._data = memoryview(bytes(data))
        self._source_id = source_id

    @property
    def source_id(self) -> str:
        return self._source_id

    @property
    def size(self) -> int:
        return len(self._data)

    def read(self, offset: int, length: int) -> memoryview:
        return self._data[offset : offset + length]

    def close(self) -> None:
        """Nothing to release."""

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class FileSource:
    """Image read from an open file on demand."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"Database file not found: {self.path}")
        self._file: BinaryIO | None = open(self.path, "rb")
        self._size = self.path.stat().st_size

    @property
    def source_id(self) -> str:
        return str(self.path)

    @property
    def size(self) -> int:
        return self._size

    def read(self, offset: int, length: int) -> bytes:
        if self._file is None:
            raise RuntimeError("FileSource is closed")
        self._file.seek(offset)
        return self._file.read(length)

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def open_source(path: Path | str) -> MemorySource | FileSource:
    """Open a path as a byte source; "-" reads standard input into memory.

    Page access needs random seeking, so stdin is always materialized first.
    """
    if str(path) == STDIN_PATH:
        data = sys.stdin.buffer.read()
        logger.debug("read %d bytes from stdin", len(data))
        return MemorySource(data, source_id="<stdin>")
    return FileSource(path)


class Pager:
    """Serves fixed-size pages of a byte source.

    Pages are never written. With cache=True each page is read from the
    source at most once.
    """

    def __init__(self, source: ByteSource, page_size: int, cache: bool = False):
        self.source = source
        self.page_size = page_size
        self._cache: dict[int, bytes | memoryview] | None = {} if cache else None

    @property
    def source_id(self) -> str:
        return self.source.source_id

    @property
    def page_count(self) -> int:
        """Number of whole pages in the image."""
        return self.source.size // self.page_size

    def _page_offset(self, page_no: int) -> int:
        """Calculate byte offset for a page number."""
        return page_no * self.page_size

    def read_page(self, page_no: int) -> bytes | memoryview:
        """Read the bytes of one page."""
        if self._cache is not None and page_no in self._cache:
            return self._cache[page_no]

        if page_no < 0 or page_no >= self.page_count:
            raise PageOutOfRange(
                f"page {page_no} is beyond the end of the image ({self.page_count} pages)",
                page_no=page_no,
            )

        data = self.source.read(self._page_offset(page_no), self.page_size)
        if len(data) < self.page_size:
            raise PageOutOfRange(f"incomplete page read at page {page_no}", page_no=page_no)

        if self._cache is not None:
            self._cache[page_no] = data
        return data
