# src/watermeter_nfc/nfc/pages.py
# Page-granular reads into a growing tag buffer.
from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Tuple

from PyQt5 import QtCore

from ..constants import MAX_PAGE, PAGE_SIZE, PAGES_PER_READ
from ..utils.log import get_logger
from .errors import TransportError

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChunkBackoff:
    """Ordered chunk sizes (bytes) tried after a bulk read failed."""
    chunk_sizes: Tuple[int, ...] = (64, 32, 16)
    retry_delay_ms: int = 5


def pages_for(byte_count: int) -> int:
    """Whole pages needed for byte_count bytes."""
    return (max(0, byte_count) + PAGE_SIZE - 1) // PAGE_SIZE


class PageReader:
    """
    Reads tag pages through a transport and appends them to one buffer.

    The transport is any object with `read_pages(start_page, byte_count) -> bytes`
    raising TransportError on failure. Buffer index 0 is `origin_page`; the
    buffer always holds whole pages and never shrinks.
    """

    def __init__(self, transport, origin_page: int = 3, pages_per_exchange: int = PAGES_PER_READ,
                 sleep_ms: Callable[[int], None] = QtCore.QThread.msleep):
        self.transport = transport
        self.origin_page = origin_page
        self.pages_per_exchange = max(1, pages_per_exchange)
        self._sleep_ms = sleep_ms
        self._buffer = bytearray()

    # ---------- state ----------
    @property
    def buffer(self) -> bytes:
        return bytes(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer)

    @property
    def next_page(self) -> int:
        return self.origin_page + len(self._buffer) // PAGE_SIZE

    # ---------- reads ----------
    def read(self, start_page: int, byte_count: int) -> bytes:
        """Read whole pages covering byte_count bytes from start_page and append them.

        One transport exchange per `pages_per_exchange` pages. On any failure
        raises TransportError and leaves the buffer unchanged."""
        n_pages = pages_for(byte_count)
        if n_pages == 0:
            return b""
        if start_page + n_pages - 1 > MAX_PAGE:
            raise TransportError(f"page range {start_page}+{n_pages} beyond page 0x{MAX_PAGE:02X}")

        scratch = bytearray()
        page = start_page
        left = n_pages
        while left > 0:
            group = min(self.pages_per_exchange, left)
            want = group * PAGE_SIZE
            try:
                data = self.transport.read_pages(page, want)
            except TransportError:
                raise
            except Exception as e:
                raise TransportError(f"read of page 0x{page:02X} failed: {e}") from e
            if data is None or len(data) < want:
                got = 0 if data is None else len(data)
                raise TransportError(f"short read at page 0x{page:02X}: {got}/{want} bytes")
            scratch.extend(data[:want])
            page += group
            left -= group

        self._buffer.extend(scratch)
        logger.debug("Read pages 0x%02X..0x%02X (%d bytes), buffer now %d bytes",
                     start_page, page - 1, len(scratch), len(self._buffer))
        return bytes(scratch)

    def read_next(self, byte_count: int) -> bytes:
        """Read the pages directly after the buffered range."""
        return self.read(self.next_page, byte_count)

    def read_with_backoff(self, byte_count: int, backoff: ChunkBackoff) -> int:
        """Read byte_count more bytes, retrying with smaller chunks on failure.

        Returns the number of bytes appended. Partial progress counts as success;
        raises TransportError only when nothing could be read."""
        try:
            return len(self.read_next(byte_count))
        except TransportError as e:
            logger.warning("Bulk read of %d bytes failed (%s), retrying in chunks", byte_count, e)

        got = 0
        remaining = pages_for(byte_count) * PAGE_SIZE
        for size in backoff.chunk_sizes:
            while remaining > 0:
                want = min(size, remaining)
                if backoff.retry_delay_ms:
                    self._sleep_ms(backoff.retry_delay_ms)
                try:
                    n = len(self.read_next(want))
                except TransportError as e:
                    logger.debug("Chunk of %d bytes failed at page 0x%02X: %s", want, self.next_page, e)
                    break
                got += n
                remaining -= n
            if remaining <= 0:
                break

        if got == 0:
            raise TransportError(f"no data readable after page 0x{self.next_page - 1:02X}")
        if remaining > 0:
            logger.info("Read %d of %d requested bytes", got, byte_count)
        return got
