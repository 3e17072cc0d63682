# tests/test_ndef.py
import pytest

from watermeter_nfc.meter.report import decode_report
from watermeter_nfc.nfc.ndef import (
    STRATEGY_DIRECT_RECORD,
    STRATEGY_INNER_TLV,
    declared_record_size,
    decode_ndef_message,
    direct_record_scan,
    find_inner_tlvs,
    find_record_candidate,
    inner_tlv_scan,
    reconstruct,
    record_candidate_at,
    report_payload,
)

# long-form record (SR clear), type 'a', payload 'abcdefghij': no byte looks
# like a short record header, so only the inner TLV scan can find it
LONG_RECORD = bytes.fromhex("C1010000000A61") + b"abcdefghij"


# ---------- candidates ----------

def test_candidate_bounds():
    assert record_candidate_at(bytes.fromhex("D10150"), 0).total_size == 3 + 1 + 0x50
    assert record_candidate_at(bytes.fromhex("D101C7"), 0).total_size == 3 + 1 + 199
    assert record_candidate_at(bytes.fromhex("D101C8"), 0) is None      # payload >= 200
    assert record_candidate_at(bytes.fromhex("D10100"), 0) is None      # empty payload
    assert record_candidate_at(bytes.fromhex("D10910"), 0) is None      # type length > 8
    assert record_candidate_at(bytes.fromhex("D70110"), 0) is None      # TNF 7
    assert record_candidate_at(bytes.fromhex("C10110"), 0) is None      # not a short record
    assert record_candidate_at(bytes.fromhex("D101"), 0) is None        # header cut off


def test_candidate_with_id_field():
    cand = record_candidate_at(bytes.fromhex("D9010502"), 0)
    assert cand.total_size == 3 + 1 + 5 + 1 + 2


def test_find_candidate_skips_garbage(make_record):
    rec = make_record(b"hello")
    cand = find_record_candidate(b"\x00\x00" + rec)
    assert cand.offset == 2
    assert cand.end == 2 + len(rec)


def test_declared_record_size():
    assert declared_record_size(LONG_RECORD[:8]) == len(LONG_RECORD)
    assert declared_record_size(bytes.fromhex("D101DC")) == 3 + 1 + 220
    assert declared_record_size(bytes.fromhex("C10100")) is None
    assert declared_record_size(b"") is None


# ---------- strategies ----------

def test_direct_record_scan_exact(make_record):
    rec = make_record(b"DeviceX\r\n")
    out = direct_record_scan(b"\x00" + rec + b"\xFE\x00")
    assert out.strategy == STRATEGY_DIRECT_RECORD
    assert out.data == rec
    assert out.offset == 1
    assert out.shortfall == 0


def test_direct_record_scan_reports_shortfall(make_record):
    rec = make_record(b"DeviceX\r\nS/N: 1\r\n")
    out = direct_record_scan(rec[:10])
    assert out.data == rec[:10]
    assert out.expected_size == len(rec)
    assert out.shortfall == len(rec) - 10


def test_direct_record_scan_none():
    assert direct_record_scan(b"hello") is None
    assert direct_record_scan(b"") is None


def test_find_inner_tlvs():
    data = b"\x03\x02ab\x00\x03\x03cde\x03\x05fg"
    assert find_inner_tlvs(data) == [(0, b"ab"), (5, b"cde"), (10, b"fg")]


def test_inner_tlv_scan_single():
    out = inner_tlv_scan(b"\x03\x05hello\x00\x00")
    assert out.strategy == STRATEGY_INNER_TLV
    assert out.data == b"hello"


def test_inner_tlv_scan_concatenates_split_record():
    payload = (b"\x03\x08" + LONG_RECORD[:8] + b"\x03\x09" + LONG_RECORD[8:] + b"\x00\x00")
    out = inner_tlv_scan(payload)
    assert out.data == LONG_RECORD
    assert out.expected_size == len(LONG_RECORD)
    assert decode_ndef_message(out.data)[0].payload == b"abcdefghij"


def test_inner_tlv_scan_stops_when_candidates_run_out():
    out = inner_tlv_scan(b"\x03\x08" + LONG_RECORD[:8])
    assert out.data == LONG_RECORD[:8]
    assert out.shortfall == len(LONG_RECORD) - 8


def test_reconstruct_prefers_direct_record(make_record):
    rec = make_record(b"abc")
    payload = rec + b"\x03\x05hello"
    assert reconstruct(payload).strategy == STRATEGY_DIRECT_RECORD


def test_reconstruct_falls_back_to_inner_tlv():
    out = reconstruct(b"\x03\x08" + LONG_RECORD[:8] + b"\x03\x09" + LONG_RECORD[8:])
    assert out.strategy == STRATEGY_INNER_TLV
    assert out.data == LONG_RECORD


def test_reconstruct_custom_order(make_record):
    payload = make_record(b"abc") + b"\x03\x05hello"
    out = reconstruct(payload, strategies=(inner_tlv_scan, direct_record_scan))
    assert out.strategy == STRATEGY_INNER_TLV


def test_reconstruct_nothing():
    assert reconstruct(b"hello world") is None


# ---------- record decode ----------

def test_decode_two_records(make_record):
    first = bytearray(make_record(b"one"))
    first[0] = 0x91                     # MB, SR, TNF=1
    second = bytes.fromhex("52 0A 03".replace(" ", "")) + b"text/plain" + b"two"   # ME, SR, TNF=2
    records = decode_ndef_message(bytes(first) + second)
    assert len(records) == 2
    assert records[0].message_begin and not records[0].message_end
    assert records[0].text() == "one"
    assert records[1].type == b"text/plain"
    assert records[1].payload == b"two"
    assert records[1].text() is None


def test_decode_marks_truncated(make_record):
    rec = make_record(b"hello world")
    records = decode_ndef_message(rec[:10])
    assert records[0].truncated
    assert records[0].payload == rec[4:10]


def test_report_payload_unwraps_text(make_record, sample_report):
    assert report_payload(make_record(sample_report)) == sample_report


def test_report_payload_utf16_text():
    text = "Vol: 1 m³\r\n".encode("utf-16")
    payload = bytes([0x82]) + b"de" + text
    rec = bytes([0xD1, 0x01, len(payload)]) + b"T" + payload
    assert report_payload(rec) == "Vol: 1 m³\r\n".encode("utf-8")


def test_report_payload_mime_record():
    rec = bytes([0xD2, 0x0A, 0x05]) + b"text/plain" + b"hello"
    assert report_payload(rec) == b"hello"


def test_report_payload_plain_text_passes_through(sample_report):
    assert report_payload(sample_report) == sample_report


def test_report_payload_truncated_text(make_record):
    rec = make_record(b"hello world")
    assert report_payload(rec[:10]) == b"hel"


@pytest.mark.parametrize("data", [b"", b"\xD1", b"\xFF\xFF\xFF"])
def test_report_payload_degenerate(data):
    assert report_payload(data) == data


def test_long_short_record_is_missed_by_direct_scan(make_record):
    """Known risk: a short Text record with a 200..255 byte payload fails the
    candidate bounds at offset 0, and the scan locks onto the 'T' byte.

    Kept as observed behaviour; the record itself decodes fine."""
    report = b"DeviceX\r\nS/N: 1\r\n" + b"".join(b"2024-01-%02d: 100.000\r\n" % d for d in range(1, 11))
    rec = make_record(report)
    assert 200 <= rec[2] < 256
    assert record_candidate_at(rec, 0) is None

    out = direct_record_scan(rec)
    assert out.offset == 3
    assert decode_report(report_payload(out.data)).device_name == "eviceX"
    assert decode_report(report_payload(rec)).device_name == "DeviceX"
