# src/watermeter_nfc/nfc/assembler.py
"""
NDEF message reconstruction from a Type 2 tag.

Flow for one tag event:

1. initial read (pages 3..6 by default), TLV located in the page-4 window
2. grow the buffer to cover the declared message, at least `read_floor` bytes
3. narrow the message to what the tag delivered (soft TruncationError)
4. trim to the message bytes
5. record boundary strategies (direct record scan, inner TLV scan)

Only the initial read and TLV location can fail hard. A growth read that
yields nothing degrades to truncation; steps 3 to 5 never raise.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..constants import CC_PAGE, DATA_START_PAGE, PAGE_SIZE
from ..utils.hexfmt import fmt_hex
from ..utils.log import get_logger
from .errors import FormatError, TransportError, TruncationError
from .ndef import DEFAULT_STRATEGIES, STRATEGY_DIRECT_RECORD, Reconstruction, Strategy, reconstruct
from .pages import ChunkBackoff, PageReader
from .tlv import TlvDescriptor, data_area_capacity, is_ndef_formatted, locate_tlv

logger = get_logger(__name__)


@dataclass
class AssembledMessage:
    descriptor: TlvDescriptor
    payload: bytes
    strategy: Optional[str] = None
    truncated: bool = False
    warnings: List[TruncationError] = field(default_factory=list)


class MessageAssembler:
    def __init__(self, reader: PageReader, *, read_floor: int = 128, gap_margin: int = 16,
                 backoff: ChunkBackoff = ChunkBackoff(),
                 strategies: Sequence[Strategy] = DEFAULT_STRATEGIES):
        self.reader = reader
        self.read_floor = read_floor
        self.gap_margin = gap_margin
        self.backoff = backoff
        self.strategies = tuple(strategies)

    # ---------- buffer views ----------
    @property
    def _window_origin(self) -> int:
        """Buffer index of page 4."""
        return (DATA_START_PAGE - self.reader.origin_page) * PAGE_SIZE

    def window(self) -> bytes:
        return self.reader.buffer[self._window_origin:]

    def capability_container(self) -> bytes:
        if self.reader.origin_page > CC_PAGE:
            return b""
        cc_at = (CC_PAGE - self.reader.origin_page) * PAGE_SIZE
        return self.reader.buffer[cc_at:cc_at + PAGE_SIZE]

    # ---------- steps ----------
    def locate(self) -> TlvDescriptor:
        window = self.window()
        if not is_ndef_formatted(window):
            raise FormatError("not NDEF formatted")
        desc = locate_tlv(window)
        logger.debug("TLV: length=%d start=%d kind=%s",
                     desc.message_length, desc.payload_start_offset, desc.kind.value)
        if desc.message_length == 0:
            raise FormatError("empty NDEF message")
        return desc

    def _read_target(self, desc: TlvDescriptor) -> tuple[int, int]:
        """(bytes still missing for the declared message, bytes to request)."""
        available = len(self.window())
        remaining = desc.end_offset - available
        target = max(remaining, self.read_floor)
        capacity = data_area_capacity(self.capability_container())
        if capacity is not None:
            target = min(target, max(0, capacity - available))
        return remaining, target

    def grow(self, desc: TlvDescriptor) -> None:
        remaining, target = self._read_target(desc)
        logger.debug("Need %d more bytes, requesting %d", remaining, target)
        if target <= 0:
            return
        try:
            self.reader.read_with_backoff(target, self.backoff)
        except TransportError as e:
            if remaining > 0:
                logger.warning("No data past page 0x%02X (%s)", self.reader.next_page - 1, e)
            else:
                logger.debug("Extra read failed, declared message already buffered")

    def trim(self, desc: TlvDescriptor) -> AssembledMessage:
        window = self.window()
        start = desc.payload_start_offset
        if len(window) < start:
            raise FormatError(f"only {len(window)} bytes, TLV header needs {start}")

        length = desc.message_length
        warnings: List[TruncationError] = []
        if len(window) < start + length:
            available = len(window) - start
            warn = TruncationError(length, available)
            logger.warning("%s, continuing with shortened message", warn)
            warnings.append(warn)
            length = available

        return AssembledMessage(
            descriptor=desc,
            payload=bytes(window[start:start + length]),
            truncated=bool(warnings),
            warnings=warnings,
        )

    def _fill_record_gap(self, desc: TlvDescriptor, rec: Reconstruction) -> Reconstruction:
        """Extend a direct-record match that runs past the trimmed message."""
        begin = desc.payload_start_offset + rec.offset
        end = begin + rec.expected_size
        if len(self.window()) < end:
            gap = end - len(self.window())
            request = gap + self.gap_margin
            capacity = data_area_capacity(self.capability_container())
            if capacity is not None:
                request = max(gap, min(request, capacity - len(self.window())))
            try:
                self.reader.read_next(request)
            except TransportError as e:
                logger.debug("Gap read of %d bytes failed (%s), retrying for the gap only", request, e)
                try:
                    self.reader.read_with_backoff(gap, self.backoff)
                except TransportError as e:
                    logger.warning("Record needs %d more bytes, read failed (%s), keeping partial record", gap, e)
        data = self.window()[begin:end]
        if len(data) < rec.expected_size:
            logger.warning("Record incomplete: %d of %d bytes", len(data), rec.expected_size)
        return Reconstruction(rec.strategy, bytes(data), rec.expected_size, rec.offset)

    def refine(self, msg: AssembledMessage) -> AssembledMessage:
        rec = reconstruct(msg.payload, self.strategies)
        if rec is None:
            logger.debug("No record boundary found, keeping trimmed message")
            return msg
        if rec.strategy == STRATEGY_DIRECT_RECORD and rec.shortfall:
            rec = self._fill_record_gap(msg.descriptor, rec)
        logger.debug("Strategy %s: %d bytes (%s)", rec.strategy, len(rec.data), fmt_hex(rec.data[:8]))
        msg.payload = rec.data
        msg.strategy = rec.strategy
        return msg

    def assemble(self) -> AssembledMessage:
        """Reconstruct the NDEF message from a reader that already holds the initial read."""
        desc = self.locate()
        self.grow(desc)
        msg = self.trim(desc)
        return self.refine(msg)


def read_message(reader: PageReader, initial_read_bytes: int = 16, **kwargs) -> AssembledMessage:
    """Initial read at the reader's origin page, then assemble."""
    reader.read(reader.origin_page, initial_read_bytes)
    return MessageAssembler(reader, **kwargs).assemble()
