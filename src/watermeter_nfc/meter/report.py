# src/watermeter_nfc/meter/report.py
# Water meter report text -> Reading.
from __future__ import annotations
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..constants import (
    REPORT_CRC_MARKER,
    REPORT_FIELD_KEYS,
    REPORT_KEY_BATTERY,
    REPORT_KEY_SERIAL,
    REPORT_KEY_VOLUME,
    REPORT_LINE_SEP,
    TAG_KIND_TYPE_2,
    VOLUME_DECIMALS,
    VOLUME_UNIT,
)
from ..nfc.errors import ParseError
from ..utils.log import get_logger

logger = get_logger(__name__)

# plain decimal, optional exponent; no digit separators, inf or nan
_VOLUME_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


@dataclass(frozen=True)
class HistoryEntry:
    date: str
    volume: str


@dataclass
class Reading:
    """
    One decoded meter report.

    `fields` keeps the recognised keys (Vol, Temp, FVol, RVol, KVol, KDate,
    Time) in the order they appeared on the tag. `warnings` holds soft
    ParseErrors (e.g. an unparsable volume).
    """
    device_name: str
    serial_number: str = ""
    serial_number_lower: str = ""
    tag_kind: str = ""
    battery: Optional[str] = None
    fields: Dict[str, str] = field(default_factory=dict)
    history: List[HistoryEntry] = field(default_factory=list)
    volume_numeric: Optional[float] = None
    warnings: List[ParseError] = field(default_factory=list, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "Name": self.device_name,
            "SN": self.serial_number,
            "NFC_Id": self.serial_number,
            "NFC_Typ": self.tag_kind,
        }
        if self.battery is not None:
            out["Battery"] = self.battery
        out.update(self.fields)
        out["history"] = [{"date": h.date, "volume": h.volume} for h in self.history]
        return out

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


def format_volume(value: Optional[float]) -> str:
    if value is None:
        return "–"
    return f"{value:.{VOLUME_DECIMALS}f} {VOLUME_UNIT}"


def ascii_lower(s: str) -> str:
    """Lower-case A-Z only; everything else passes through."""
    return "".join(chr(ord(c) + 32) if "A" <= c <= "Z" else c for c in s)


def is_date_key(key: str) -> bool:
    """YYYY-MM-DD shape: 10 chars with '-' at positions 4 and 7."""
    return len(key) == 10 and key[4] == "-" and key[7] == "-"


def parse_volume(value: str) -> float:
    """'123.456 m³' -> 123.456. Raises ParseError if the number is not parsable."""
    numeric = value
    unit_pos = numeric.find(" " + VOLUME_UNIT)
    if unit_pos != -1:
        numeric = numeric[:unit_pos]
    if not _VOLUME_RE.fullmatch(numeric):
        raise ParseError(f"Failed to parse volume: {value!r}", field=REPORT_KEY_VOLUME)
    return float(numeric)


def report_lines(text: str) -> List[str]:
    """CRLF-terminated lines; an unterminated tail (partial read) is dropped."""
    parts = text.split(REPORT_LINE_SEP)
    return parts[:-1]


def decode_report(payload: bytes, tag_kind: str = TAG_KIND_TYPE_2) -> Reading:
    """Decode the report text stored in the first NDEF record.

    Raises ParseError only when there is not a single complete line."""
    text = bytes(payload).decode("utf-8", errors="replace")
    crc_pos = text.find(REPORT_CRC_MARKER)
    if crc_pos != -1:
        text = text[:crc_pos]

    lines = report_lines(text)
    if not lines:
        raise ParseError("report has no complete lines")

    reading = Reading(device_name=lines[0])
    vol_value: Optional[str] = None

    for line in lines[1:]:
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip(" \t")
        value = value.strip(" \t")

        if is_date_key(key):
            reading.history.append(HistoryEntry(date=key, volume=value))
        elif key in REPORT_FIELD_KEYS:
            reading.fields[key] = value
            if key == REPORT_KEY_VOLUME:
                vol_value = value
        elif key == REPORT_KEY_SERIAL:
            reading.serial_number = value
            reading.tag_kind = tag_kind
        elif key == REPORT_KEY_BATTERY:
            reading.battery = value
        else:
            logger.debug("Ignoring report key %r", key)

    reading.serial_number_lower = ascii_lower(reading.serial_number)

    if vol_value:
        try:
            reading.volume_numeric = parse_volume(vol_value)
        except ParseError as e:
            logger.warning("%s", e)
            reading.warnings.append(e)

    return reading
