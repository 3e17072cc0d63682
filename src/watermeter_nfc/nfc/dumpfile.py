# src/watermeter_nfc/nfc/dumpfile.py
# Binary page dumps: page 0 first, 4 bytes per page, unreadable pages as 00 00 00 00.
from __future__ import annotations
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from ..constants import PAGE_SIZE, TAG_KIND_TYPE_2
from ..utils.log import get_logger
from .errors import TransportError

logger = get_logger(__name__)


class DumpTransport:
    """Serves read_pages() from a page dump held in memory.

    Reads past the end of the dump fail like a tag without that many pages."""

    def __init__(self, memory: bytes, uid: Optional[bytes] = None, tag_kind: str = TAG_KIND_TYPE_2):
        self.memory = bytes(memory)
        self._uid = uid
        self.tag_kind = tag_kind
        self.calls: List[Tuple[int, int]] = []

    @classmethod
    def from_file(cls, path: str | Path) -> "DumpTransport":
        data = Path(path).read_bytes()
        logger.debug("Loaded dump %s (%d bytes, %d pages)", path, len(data), len(data) // PAGE_SIZE)
        return cls(data)

    @property
    def page_count(self) -> int:
        return len(self.memory) // PAGE_SIZE

    def read_pages(self, start_page: int, byte_count: int) -> bytes:
        self.calls.append((start_page, byte_count))
        begin = start_page * PAGE_SIZE
        end = begin + byte_count
        if begin < 0 or end > len(self.memory):
            raise TransportError(f"pages 0x{start_page:02X}+{byte_count}B outside dump of {self.page_count} pages")
        return self.memory[begin:end]

    def uid(self) -> Optional[bytes]:
        return self._uid

    def close(self) -> None:
        pass


def iter_pages(transport, start: int, end: int) -> Iterator[Tuple[int, Optional[bytes]]]:
    """Yield (page, 4 bytes or None) for start..end inclusive, one page per read."""
    for p in range(start, end + 1):
        try:
            yield p, transport.read_pages(p, PAGE_SIZE)[:PAGE_SIZE]
        except TransportError as e:
            logger.debug("Page %02d unreadable: %s", p, e)
            yield p, None


def dump_pages(transport, start: int, end: int, outfile: str | Path) -> Tuple[bytes, List[int]]:
    """Read a page range and save it; returns (data, unreadable pages)."""
    out = bytearray()
    missing: List[int] = []
    for p, data4 in iter_pages(transport, start, end):
        if data4 is None:
            missing.append(p)
            data4 = b"\x00" * PAGE_SIZE
        out.extend(data4)
    Path(outfile).write_bytes(bytes(out))
    logger.info("Saved %d bytes to %s (%d unreadable pages)", len(out), outfile, len(missing))
    return bytes(out), missing
