# src/watermeter_nfc/nfc/ndef.py
# NDEF record boundary heuristics and a small record decoder.
from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from ..constants import (
    NDEF_FLAG_CF,
    NDEF_FLAG_IL,
    NDEF_FLAG_MB,
    NDEF_FLAG_ME,
    NDEF_FLAG_SR,
    NDEF_TNF_MASK,
    NDEF_TNF_MAX,
    NDEF_TNF_WELL_KNOWN,
    RECORD_PAYLOAD_LENGTH_MAX,
    RECORD_TYPE_LENGTH_MAX,
    TLV_NDEF,
)
from ..utils.log import get_logger

logger = get_logger(__name__)

STRATEGY_DIRECT_RECORD = "direct-record"
STRATEGY_INNER_TLV = "inner-tlv"


# ---------- Models ----------

@dataclass(frozen=True)
class RecordCandidate:
    """
    Position where header bytes plausibly start a short NDEF record.

    Attributes
    ---------
    offset : int
        Index of the flags byte.
    type_length : int
        TYPE LENGTH field (<= 8).
    payload_length : int
        One-byte PAYLOAD LENGTH field (1..199).
    total_size : int
        Header + type + payload (+ ID) bytes.
    """
    offset: int
    type_length: int
    payload_length: int
    total_size: int

    @property
    def end(self) -> int:
        return self.offset + self.total_size


@dataclass(frozen=True)
class Reconstruction:
    """Bytes recovered by one record-boundary strategy."""
    strategy: str
    data: bytes
    expected_size: int
    offset: int = 0

    @property
    def shortfall(self) -> int:
        return max(0, self.expected_size - len(self.data))


@dataclass(frozen=True)
class NdefRecord:
    tnf: int
    type: bytes
    id: bytes
    payload: bytes
    message_begin: bool = False
    message_end: bool = False
    truncated: bool = False

    def text(self) -> Optional[str]:
        """Text of a well-known 'T' record, otherwise None."""
        if self.tnf != NDEF_TNF_WELL_KNOWN or self.type != b"T" or not self.payload:
            return None
        status = self.payload[0]
        lang_len = status & 0x3F
        utf16 = (status & 0x80) != 0
        return self.payload[1 + lang_len:].decode("utf-16" if utf16 else "utf-8", errors="replace")


# ---------- Candidate scan ----------

def record_candidate_at(data: bytes, offset: int) -> Optional[RecordCandidate]:
    """Return a RecordCandidate if the bytes at `offset` look like a short record header."""
    if offset + 3 > len(data):
        return None
    flags = data[offset]
    if (flags & NDEF_TNF_MASK) > NDEF_TNF_MAX or not (flags & NDEF_FLAG_SR):
        return None
    type_length = data[offset + 1]
    payload_length = data[offset + 2]
    if type_length > RECORD_TYPE_LENGTH_MAX:
        return None
    if not (0 < payload_length < RECORD_PAYLOAD_LENGTH_MAX):
        return None
    total = 3 + type_length + payload_length
    if flags & NDEF_FLAG_IL:
        if offset + 3 >= len(data):
            return None
        total += 1 + data[offset + 3]
    return RecordCandidate(offset, type_length, payload_length, total)


def find_record_candidate(data: bytes, start: int = 0) -> Optional[RecordCandidate]:
    """First plausible record header at or after `start`."""
    for off in range(start, len(data)):
        cand = record_candidate_at(data, off)
        if cand is not None:
            return cand
    return None


def declared_record_size(data: bytes) -> Optional[int]:
    """Record size announced by the header at data[0], short or long form.

    Unlike record_candidate_at() there are no plausibility bounds on the lengths."""
    if len(data) < 3:
        return None
    flags = data[0]
    if (flags & NDEF_TNF_MASK) > NDEF_TNF_MAX:
        return None
    i = 2
    if flags & NDEF_FLAG_SR:
        payload_len = data[i]; i += 1
    else:
        if len(data) < 6:
            return None
        payload_len = int.from_bytes(data[i:i + 4], "big"); i += 4
    size = i + data[1] + payload_len
    if flags & NDEF_FLAG_IL:
        if len(data) <= i:
            return None
        size += 1 + data[i]
    return size


def find_inner_tlvs(data: bytes) -> List[Tuple[int, bytes]]:
    """All `03 <len>` sub-TLVs in discovery order as (offset, value) pairs.

    A value running past the end of data is cut to what exists."""
    out: List[Tuple[int, bytes]] = []
    i = 0
    n = len(data)
    while i + 1 < n:
        if data[i] == TLV_NDEF and data[i + 1] > 0:
            length = data[i + 1]
            value = bytes(data[i + 2:i + 2 + length])
            if value:
                out.append((i, value))
                i += 2 + length
                continue
        i += 1
    return out


# ---------- Strategies (pure: payload bytes -> Reconstruction) ----------

def direct_record_scan(payload: bytes) -> Optional[Reconstruction]:
    """Slice from the first plausible record header; expected size from its header."""
    cand = find_record_candidate(payload)
    if cand is None:
        return None
    logger.debug("Record candidate at %d: type_len=%d payload_len=%d total=%d",
                 cand.offset, cand.type_length, cand.payload_length, cand.total_size)
    return Reconstruction(
        strategy=STRATEGY_DIRECT_RECORD,
        data=bytes(payload[cand.offset:cand.end]),
        expected_size=cand.total_size,
        offset=cand.offset,
    )


def inner_tlv_scan(payload: bytes) -> Optional[Reconstruction]:
    """Rebuild a message split over several `03 <len>` sub-TLVs."""
    tlvs = find_inner_tlvs(payload)
    if not tlvs:
        return None
    first_off, first = tlvs[0]
    declared = declared_record_size(first)
    if declared is None or declared <= len(first):
        expected = declared if declared is not None else len(first)
        return Reconstruction(STRATEGY_INNER_TLV, first[:expected], expected, first_off)

    joined = bytearray(first)
    for _, value in tlvs[1:]:
        if len(joined) >= declared:
            break
        joined.extend(value)
    logger.debug("Inner TLVs: %d found, joined %d of %d bytes", len(tlvs), len(joined), declared)
    return Reconstruction(STRATEGY_INNER_TLV, bytes(joined[:declared]), declared, first_off)


Strategy = Callable[[bytes], Optional[Reconstruction]]

DEFAULT_STRATEGIES: Tuple[Strategy, ...] = (direct_record_scan, inner_tlv_scan)


def reconstruct(payload: bytes, strategies=DEFAULT_STRATEGIES) -> Optional[Reconstruction]:
    """Run strategies in order; the first one that finds anything wins."""
    for strategy in strategies:
        rec = strategy(payload)
        if rec is not None:
            return rec
    return None


# --- NDEF message decode ---
def decode_ndef_message(ndef: bytes) -> List[NdefRecord]:
    """Decode short and long records until the data ends or the ME flag is seen.

    A record whose payload runs past the end keeps the bytes that exist and is
    marked truncated."""
    out: List[NdefRecord] = []
    i = 0
    n = len(ndef)
    while i < n:
        hdr = ndef[i]; i += 1
        tnf = hdr & NDEF_TNF_MASK
        sr = (hdr & NDEF_FLAG_SR) != 0
        il = (hdr & NDEF_FLAG_IL) != 0
        if tnf > NDEF_TNF_MAX or (hdr & NDEF_FLAG_CF):
            # chunked records are not produced by meters; stop here
            break

        if i >= n: break
        type_len = ndef[i]; i += 1

        if sr:
            if i >= n: break
            payload_len = ndef[i]; i += 1
        else:
            if i + 3 >= n: break
            payload_len = int.from_bytes(ndef[i:i + 4], "big")
            i += 4

        id_len = 0
        if il:
            if i >= n: break
            id_len = ndef[i]; i += 1

        type_field = bytes(ndef[i:i + type_len]); i += type_len
        id_field = bytes(ndef[i:i + id_len]); i += id_len
        payload = bytes(ndef[i:i + payload_len]); i += payload_len

        out.append(NdefRecord(
            tnf=tnf,
            type=type_field,
            id=id_field,
            payload=payload,
            message_begin=(hdr & NDEF_FLAG_MB) != 0,
            message_end=(hdr & NDEF_FLAG_ME) != 0,
            truncated=i > n,
        ))
        if hdr & NDEF_FLAG_ME:
            break
    return out


def report_payload(message: bytes) -> bytes:
    """Payload of the first record, unwrapped for Text records.

    Falls back to the message bytes when no record can be decoded."""
    records = decode_ndef_message(message)
    if not records or not records[0].payload:
        logger.debug("No NDEF record decoded, using %d raw bytes", len(message))
        return bytes(message)
    first = records[0]
    if first.truncated and record_candidate_at(message, 0) is None:
        # header bytes were report text, not a record
        logger.debug("No plausible record header, using %d raw bytes", len(message))
        return bytes(message)
    if first.truncated:
        logger.warning("First NDEF record truncated: %d bytes of payload", len(first.payload))
    text = first.text()
    if text is not None:
        return text.encode("utf-8")
    return first.payload
