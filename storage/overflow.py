"""Overflow chain reassembly.

Items too large for a leaf page live on a singly linked chain of overflow
pages. Each page contributes the payload that follows its header; `next`
names the following page and 0 ends the chain.
"""

import logging

from exceptions import CyclicReference, TruncatedOverflowChain, UnexpectedPageType
from models.metadata import FormatProfile
from models.storage import OverflowRef, PageHeader, PageType
from storage.pager import Pager

logger = logging.getLogger(__name__)


class OverflowChainReader:
    """Materializes OverflowRefs against one image.

    Key and value fields are read independently; each call walks its own
    chain from scratch.
    """

    def __init__(self, pager: Pager, profile: FormatProfile):
        self.pager = pager
        self.profile = profile

    def read(self, ref: OverflowRef, page_no: int | None = None) -> bytes:
        """Return exactly ref.total_len bytes.

        `page_no` is the page holding the reference, used only in errors.
        """
        out = bytearray()
        origin = f" referenced from page {page_no}" if page_no is not None else ""
        remaining = ref.total_len
        current = ref.first_page
        visited: set[int] = set()

        while remaining > 0:
            if current in visited:
                raise CyclicReference(
                    f"overflow chain from page {ref.first_page}{origin} revisits page {current}",
                    page_no=current,
                )
            visited.add(current)

            page = self.pager.read_page(current)
            header = PageHeader.from_bytes(page, self.profile.endianness, self.profile.header_layout, page_no=current)
            if header.page_type is not PageType.OVERFLOW:
                raise UnexpectedPageType(
                    f"overflow chain from page {ref.first_page}{origin} reached a {header.page_type.name} page "
                    f"(code 0x{header.type_code:02x})",
                    page_no=current,
                )

            start = header.header_size
            take = min(remaining, header.payload_length(self.profile.page_size))
            out += page[start : start + take]
            remaining -= take

            if remaining == 0:
                break
            if header.next == 0:
                raise TruncatedOverflowChain(
                    f"overflow chain from page {ref.first_page}{origin} ended early (need {remaining} more bytes "
                    f"of {ref.total_len})",
                    page_no=current,
                )
            current = header.next

        logger.debug("read %d overflow bytes from chain at page %d (%d pages)", ref.total_len, ref.first_page, len(visited))
        return bytes(out)
