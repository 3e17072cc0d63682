# tests/conftest.py
# In-memory tag images and transports; nothing here needs a reader.
from __future__ import annotations
from typing import Optional, Set

import pytest

from watermeter_nfc.nfc.dumpfile import DumpTransport
from watermeter_nfc.nfc.errors import TransportError

SAMPLE_REPORT = (
    "DeviceX\r\n"
    "S/N: 12345ABC\r\n"
    "Vol: 123.456 m³\r\n"
    "Battery: 87%\r\n"
    "2024-01-01: 100.000\r\n"
).encode("utf-8")

# UID (pages 0..2 incl. lock bytes) + CC for 144 bytes of user memory
HEADER_PAGES = bytes.fromhex("04A1B2C3 D4E5F680 97480000 E1101200".replace(" ", ""))


def text_record(text: bytes, lang: bytes = b"en") -> bytes:
    """Short, well-known Text record (MB|ME|SR, TNF=1)."""
    payload = bytes([len(lang)]) + lang + text
    assert len(payload) < 256
    return bytes([0xD1, 0x01, len(payload)]) + b"T" + payload


def build_tag(data_area: bytes, total_pages: int = 45, header: bytes = HEADER_PAGES) -> bytes:
    """Tag memory image: header pages 0..3 then data_area from page 4, zero padded."""
    mem = bytearray(header + data_area)
    size = total_pages * 4
    assert len(mem) <= size, "data does not fit the tag"
    mem.extend(b"\x00" * (size - len(mem)))
    return bytes(mem)


class FlakyTransport(DumpTransport):
    """DumpTransport that also fails for selected pages or oversized requests."""

    def __init__(self, memory: bytes, *, bad_pages: Optional[Set[int]] = None,
                 max_bytes: Optional[int] = None, **kwargs):
        super().__init__(memory, **kwargs)
        self.bad_pages = set(bad_pages or ())
        self.max_bytes = max_bytes

    def read_pages(self, start_page: int, byte_count: int) -> bytes:
        if self.max_bytes is not None and byte_count > self.max_bytes:
            self.calls.append((start_page, byte_count))
            raise TransportError(f"request of {byte_count} bytes too large")
        pages = range(start_page, start_page + (byte_count + 3) // 4)
        if self.bad_pages.intersection(pages):
            self.calls.append((start_page, byte_count))
            raise TransportError(f"NAK at page 0x{start_page:02X}")
        return super().read_pages(start_page, byte_count)


@pytest.fixture
def sample_report() -> bytes:
    return SAMPLE_REPORT


@pytest.fixture
def sample_tag() -> bytes:
    """Tag with the sample report in a plain 03 <len> TLV followed by a terminator."""
    record = text_record(SAMPLE_REPORT)
    return build_tag(bytes([0x03, len(record)]) + record + b"\xFE")


@pytest.fixture
def make_tag():
    return build_tag


@pytest.fixture
def make_record():
    return text_record


@pytest.fixture
def flaky_transport():
    return FlakyTransport


@pytest.fixture
def no_sleep():
    slept = []
    return slept.append, slept


class FakeConnection:
    """PC/SC connection answering READ BINARY (FF B0) and GET DATA UID (FF CA) from a memory image."""

    def __init__(self, memory: bytes, uid: bytes = b"\x04\x11\x22\x33\x44\x55\x66"):
        self.memory = memory
        self._uid = uid
        self.apdus = []
        self.disconnected = False

    def transmit(self, apdu):
        self.apdus.append(list(apdu))
        if apdu[:2] == [0xFF, 0xCA]:
            return list(self._uid), 0x90, 0x00
        if apdu[:2] == [0xFF, 0xB0]:
            page = apdu[3]
            data = self.memory[page * 4:page * 4 + 16]
            if len(data) < 16:
                return [], 0x6A, 0x82
            return list(data), 0x90, 0x00
        return [], 0x6D, 0x00

    def disconnect(self):
        self.disconnected = True
