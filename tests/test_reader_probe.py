# tests/test_reader_probe.py
# Hardware smoke test for a PC/SC reader with a meter tag on it:
# - list readers
# - wait for a tag
# - print ATR and UID
# - read and decode the meter report

import sys

import pytest

from watermeter_nfc.nfc.backend import NFCBackend
from watermeter_nfc.nfc.pcsc import PcscTransport, list_readers, read_atr, read_uid, wait_for_card
from watermeter_nfc.utils.hexfmt import fmt_hex


@pytest.mark.hardware
def test_reader_probe_interactive():
    """Interactive probe: skip if no reader; waits up to 30s for a tag."""
    rlist = list_readers()
    if not rlist:
        pytest.skip("No PC/SC reader found. Install drivers / start pcscd.")

    print(f"[INFO] Found readers: {[str(r) for r in rlist]}")
    print("[INFO] Waiting for a tag (30s timeout). Hold the reader to the meter...")

    conn = wait_for_card(timeout_s=30.0, poll_interval_s=0.5)
    if conn is None:
        pytest.skip("No tag detected within timeout.")

    print(f"[OK] ATR: {fmt_hex(read_atr(conn))}")
    uid, sw1, sw2 = read_uid(conn)
    if uid is not None:
        print(f"[OK] UID: {fmt_hex(uid)}  (SW={sw1:02X}{sw2:02X})")
    else:
        print(f"[WARN] UID command not supported or failed (SW={sw1:02X}{sw2:02X}).")

    reading = NFCBackend(on_log=print).read_transport(PcscTransport(conn))
    if reading is None:
        pytest.skip("Tag on the reader carries no meter report.")
    print(reading.to_json())
    assert reading.device_name


if __name__ == "__main__":
    # standalone run without pytest
    if not list_readers():
        print("[ERROR] No PC/SC reader found.")
        sys.exit(0)
    conn = wait_for_card(timeout_s=30.0, poll_interval_s=0.5)
    if conn is None:
        print("[WARN] No tag detected within timeout.")
        sys.exit(0)
    r = NFCBackend(on_log=print).read_transport(PcscTransport(conn))
    print(r.to_json() if r else "[WARN] No reading.")
