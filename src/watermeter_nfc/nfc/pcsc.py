# src/watermeter_nfc/nfc/pcsc.py
# PC/SC helpers for detecting readers, connecting, and reading Type 2 tag pages.
from __future__ import annotations
import time
from typing import List, Optional, Tuple

try:
    from smartcard.System import readers
except Exception:
    readers = None  # pyscard not available

from ..constants import PAGE_SIZE, PAGES_PER_READ, TAG_KIND_MIFARE_CLASSIC, TAG_KIND_TYPE_2
from ..utils.log import get_logger
from .errors import TransportError

logger = get_logger(__name__)

SW_OK = (0x90, 0x00)


def list_readers() -> List:
    """Return available PC/SC readers."""
    if readers is None:
        logger.error("pyscard not found - install 'pyscard' and PC/SC drivers.")
        return []
    try:
        return readers()
    except Exception as e:
        logger.debug("Reader listing failed: %s", e)
        return []


def connect_reader(index: int = 0):
    """Create connection object to reader `index` (not yet connected)."""
    rlist = list_readers()
    if len(rlist) <= index:
        return None
    return rlist[index].createConnection()


def wait_for_card(timeout_s: float = 30.0, poll_interval_s: float = 0.5, index: int = 0):
    """Connect to reader `index` once a tag is on it; None after `timeout_s`."""
    conn = connect_reader(index)
    if conn is None:
        return None
    deadline = time.monotonic() + timeout_s
    attempts = 0
    while True:
        attempts += 1
        try:
            conn.connect()  # raises while no tag is present
            logger.debug("Tag connected after %d attempt(s)", attempts)
            return conn
        except Exception as e:
            if time.monotonic() + poll_interval_s > deadline:
                logger.debug("No tag within %.1fs: %s", timeout_s, e)
                return None
            time.sleep(poll_interval_s)


def read_atr(conn) -> bytes:
    """Return ATR bytes of the connected card (already connected)."""
    atr = conn.getATR()
    return bytes(atr) if atr else b""


def read_uid(conn) -> Tuple[Optional[bytes], int, int]:
    """
    Read the card UID with the PC/SC GET DATA pseudo-APDU:
    FF CA 00 00 00  -> returns UID, SW1, SW2
    Not all readers/cards support this.
    """
    try:
        data, sw1, sw2 = conn.transmit([0xFF, 0xCA, 0x00, 0x00, 0x00])
        if (sw1, sw2) == SW_OK:
            return bytes(data), sw1, sw2
        return None, sw1, sw2
    except Exception as e:
        logger.debug("UID read failed: %s", e)
        return None, 0x6F, 0x00  # 6F00 = generic error


def guess_tag_type(uid: Optional[bytes]) -> str:
    """4-byte UIDs are MIFARE Classic, everything else is treated as Type 2."""
    if uid is not None and len(uid) == 4:
        return TAG_KIND_MIFARE_CLASSIC
    return TAG_KIND_TYPE_2


def _cmd_read_page_group(page: int, length: int = PAGE_SIZE * PAGES_PER_READ) -> list:
    # READ BINARY: FF B0 00 <page> <len>; the tag answers a READ with 4 pages
    return [0xFF, 0xB0, 0x00, page & 0xFF, length & 0xFF]


class PcscTransport:
    """Page transport over a connected PC/SC card connection."""

    def __init__(self, conn):
        self.conn = conn

    def read_pages(self, start_page: int, byte_count: int) -> bytes:
        """Read byte_count bytes from start_page, one READ (16 bytes) per 4 pages."""
        step = PAGE_SIZE * PAGES_PER_READ
        out = bytearray()
        page = start_page
        while len(out) < byte_count:
            try:
                data, sw1, sw2 = self.conn.transmit(_cmd_read_page_group(page))
            except Exception as e:
                raise TransportError(f"READ failed for page 0x{page:02X}: {e}") from e
            if (sw1, sw2) != SW_OK:
                raise TransportError(f"READ failed for page 0x{page:02X}: SW1/SW2={sw1:02X}/{sw2:02X}")
            if not data:
                raise TransportError(f"READ returned no data for page 0x{page:02X}")
            out.extend(bytes(data)[:step])
            page += PAGES_PER_READ
        return bytes(out[:byte_count])

    def uid(self) -> Optional[bytes]:
        uid, _, _ = read_uid(self.conn)
        return uid

    def close(self) -> None:
        try:
            self.conn.disconnect()
        except Exception as e:
            logger.debug("Disconnect failed: %s", e)
