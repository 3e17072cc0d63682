# src/watermeter_nfc/nfc/tlv.py
# NDEF TLV location in the Type 2 tag data area (page 4 onwards).
from __future__ import annotations
import enum
from dataclasses import dataclass
from typing import Optional

from ..constants import (
    EXTENDED_LENGTH_MAX,
    EXTENDED_LENGTH_MIN,
    INNER_TLV_LENGTH_MAX,
    PAGE_SIZE,
    TLV_LENGTH_EXTENDED,
    TLV_NDEF,
)
from ..utils.hexfmt import fmt_hex
from ..utils.log import get_logger
from .errors import FormatError

logger = get_logger(__name__)

MIN_WINDOW = 6          # bytes 0..5 must be present to test both TLV positions
OFFSET_TLV_POS = 5      # NDEF TLV behind a leading 5-byte TLV (e.g. lock control)


class TlvKind(enum.Enum):
    FIXED = "fixed"
    EXTENDED_AMBIGUOUS = "extended_ambiguous"


@dataclass(frozen=True)
class TlvDescriptor:
    """
    Location of the NDEF message inside the scan window.

    Attributes
    ----------
    message_length : int
        Declared (or inferred) NDEF message length in bytes.
    payload_start_offset : int
        Offset of the first message byte, relative to the start of the scan
        window (page 4), not to the whole tag buffer.
    kind : TlvKind
        FIXED for a plain one-byte length, EXTENDED_AMBIGUOUS when the length
        byte was 0xFF and had to be interpreted.
    """
    message_length: int
    payload_start_offset: int
    kind: TlvKind

    @property
    def end_offset(self) -> int:
        return self.payload_start_offset + self.message_length


def _resolve_ff_length(window: bytes) -> TlvDescriptor:
    """03 FF ...: extended length, two adjacent TLVs, or a literal 255."""
    if len(window) < 4:
        raise FormatError("not enough data for extended length TLV")
    hi, lo = window[2], window[3]
    candidate = (hi << 8) | lo
    logger.debug("03 FF followed by %02X %02X (candidate length %d)", hi, lo, candidate)

    if hi == TLV_NDEF:
        # 03 FF 03 <len>: a second NDEF TLV right after the first
        if 0 < lo <= INNER_TLV_LENGTH_MAX:
            return TlvDescriptor(lo, 4, TlvKind.EXTENDED_AMBIGUOUS)
        return TlvDescriptor(TLV_LENGTH_EXTENDED, 2, TlvKind.EXTENDED_AMBIGUOUS)

    if EXTENDED_LENGTH_MIN <= candidate <= EXTENDED_LENGTH_MAX:
        return TlvDescriptor(candidate, 4, TlvKind.EXTENDED_AMBIGUOUS)

    # 0xFF taken as a plain length of 255
    return TlvDescriptor(TLV_LENGTH_EXTENDED, 2, TlvKind.EXTENDED_AMBIGUOUS)


def locate_tlv(window: bytes) -> TlvDescriptor:
    """Find the NDEF TLV in the first bytes of the data area.

    `window` starts at page 4. Raises FormatError when no known layout matches."""
    window = bytes(window)
    logger.debug("TLV window: %s", fmt_hex(window))
    if len(window) < MIN_WINDOW:
        raise FormatError(f"TLV window too short ({len(window)} bytes)")

    if window[0] == TLV_NDEF:
        if window[1] != TLV_LENGTH_EXTENDED:
            return TlvDescriptor(window[1], 2, TlvKind.FIXED)
        return _resolve_ff_length(window)

    if window[OFFSET_TLV_POS] == TLV_NDEF:
        if len(window) < OFFSET_TLV_POS + 2:
            raise FormatError("not enough data for NDEF TLV at offset 5")
        return TlvDescriptor(window[OFFSET_TLV_POS + 1], OFFSET_TLV_POS + 2, TlvKind.FIXED)

    raise FormatError("no TLV found")


def is_ndef_formatted(window: bytes) -> bool:
    """A blank (erased) data area reads as FF FF FF FF on page 4."""
    first = bytes(window[:PAGE_SIZE])
    return len(first) == PAGE_SIZE and first != b"\xFF" * PAGE_SIZE


def data_area_capacity(cc: bytes) -> Optional[int]:
    """Data area size in bytes from the capability container (CC byte 2 * 8).

    Returns None when the CC is missing or does not carry the NDEF magic 0xE1."""
    if len(cc) < 3 or cc[0] != 0xE1 or cc[2] == 0:
        return None
    return cc[2] * 8
