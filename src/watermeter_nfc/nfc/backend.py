# src/watermeter_nfc/nfc/backend.py
from __future__ import annotations
from typing import Callable, Optional

from ..config.settings import Settings, TagSettings
from ..constants import TAG_KIND_MIFARE_CLASSIC, TAG_KIND_TYPE_2
from ..meter.report import Reading, decode_report
from ..utils.hexfmt import fmt_hex
from ..utils.log import get_logger
from .assembler import AssembledMessage, read_message
from .errors import TagError
from .ndef import report_payload
from .pages import ChunkBackoff, PageReader
from .pcsc import PcscTransport, guess_tag_type, list_readers, wait_for_card

logger = get_logger(__name__)


def read_meter(transport, tag: TagSettings = TagSettings(), tag_kind: str = TAG_KIND_TYPE_2,
               sleep_ms: Optional[Callable[[int], None]] = None) -> Reading:
    """Reconstruct the NDEF message from `transport` and decode the meter report.

    Raises TransportError/FormatError when nothing usable came off the tag and
    ParseError when the report has no complete line."""
    kwargs = {} if sleep_ms is None else {"sleep_ms": sleep_ms}
    reader = PageReader(transport, origin_page=tag.origin_page,
                        pages_per_exchange=tag.pages_per_exchange, **kwargs)
    msg: AssembledMessage = read_message(
        reader,
        initial_read_bytes=tag.initial_read_bytes,
        read_floor=tag.read_floor,
        gap_margin=tag.gap_margin,
        backoff=ChunkBackoff(tag.chunk_sizes, tag.retry_delay_ms),
    )
    logger.debug("Message: %d bytes via %s%s", len(msg.payload), msg.strategy or "trim",
                 " (truncated)" if msg.truncated else "")
    return decode_report(report_payload(msg.payload), tag_kind=tag_kind)


class NFCBackend:
    """
    One tag-present event start to finish: connect, identify, read, decode.

    Progress goes to `logging` and, as short tagged lines, to `on_log`.
    """
    def __init__(self, settings: Optional[Settings] = None,
                 on_log: Optional[Callable[[str], None]] = None):
        self.settings = settings or Settings()
        self.on_log = on_log or (lambda m: None)

    def _log(self, msg: str):
        self.on_log(msg)

    def read_transport(self, transport) -> Optional[Reading]:
        """Read one meter through an already connected transport; None = no reading this cycle."""
        uid = transport.uid()
        tag_kind = getattr(transport, "tag_kind", None) or guess_tag_type(uid)
        if uid:
            self._log(f"[OK] UID: {fmt_hex(uid)} ({tag_kind})")
        if tag_kind == TAG_KIND_MIFARE_CLASSIC:
            self._log("[ERROR] MIFARE Classic tags are not supported.")
            logger.warning("Unsupported tag kind %s", tag_kind)
            return None
        try:
            reading = read_meter(transport, self.settings.tag, tag_kind)
        except TagError as e:
            self._log(f"[ERROR] {type(e).__name__}: {e}")
            logger.error("No reading this cycle: %s: %s", type(e).__name__, e)
            return None

        self._log(f"[OK] {reading.device_name} S/N {reading.serial_number or '(none)'}")
        for w in reading.warnings:
            self._log(f"[WARN] {w}")
        logger.info("Reading: %s", reading.to_json())
        return reading

    def read_card(self) -> Optional[Reading]:
        """Wait for a tag on the configured PC/SC reader and read it."""
        rs = self.settings.reader
        if not list_readers():
            self._log("[ERROR] No PC/SC reader found.")
            return None
        conn = wait_for_card(rs.connect_timeout_s, rs.poll_interval_s, rs.reader_index)
        if conn is None:
            self._log("[INFO] No card detected. Place a tag on the reader and try again.")
            return None
        transport = PcscTransport(conn)
        try:
            return self.read_transport(transport)
        finally:
            transport.close()
