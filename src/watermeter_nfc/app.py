# src/watermeter_nfc/app.py
# Command line entry: read / watch / dump / decode.
from __future__ import annotations
import argparse
import signal
import sys
import traceback
from typing import Optional

from PyQt5 import QtCore

from .config.settings import ConfigError, Settings, load_settings
from .meter.publisher import ReadingPublisher
from .meter.report import Reading, format_volume
from .nfc.backend import NFCBackend
from .nfc.dumpfile import DumpTransport, dump_pages
from .nfc.pcsc import PcscTransport, list_readers, wait_for_card
from .utils.hexfmt import fmt_pages
from .utils.log import configure_logging, get_logger

APP_TITLE = "watermeter-nfc"
APP_VERSION = "0.4.0"
ERROR_LOG = "watermeter_error.log"

logger = get_logger(__name__)


def _print_log(msg: str):
    print(msg, file=sys.stderr)


def _emit(reading: Reading):
    print(reading.to_json(), flush=True)
    if reading.volume_numeric is not None:
        print(f"[OK] Volume: {format_volume(reading.volume_numeric)}", file=sys.stderr)


# ---------- watch mode ----------
class MeterWatcher(QtCore.QObject):
    """Reads the meter when a tag arrives and every update interval while it stays."""

    def __init__(self, backend: NFCBackend, publisher: ReadingPublisher,
                 parent: Optional[QtCore.QObject] = None):
        super().__init__(parent)
        self.backend = backend
        self.publisher = publisher
        self.card_present = False

        self.timer = QtCore.QTimer(self)
        self.timer.setInterval(int(backend.settings.reader.update_interval_s * 1000))
        self.timer.timeout.connect(self.on_update)

    def start(self):
        from .nfc.presence import QtPresenceBridge, start_presence_monitor

        rs = self.backend.settings.reader
        rlist = list_readers()
        reader_name = str(rlist[rs.reader_index]) if len(rlist) > rs.reader_index else None

        self._bridge = QtPresenceBridge(self)
        self._bridge.presenceChanged.connect(self.on_card_presence_changed)
        self._monitor, self._observer = start_presence_monitor(self._bridge, reader_name)
        self.timer.start()
        logger.info("Watching for meter tags (update interval %ss)",
                    self.backend.settings.reader.update_interval_s)

    def stop(self):
        from .nfc.presence import stop_presence_monitor

        self.timer.stop()
        if getattr(self, "_monitor", None) is not None:
            stop_presence_monitor(self._monitor, self._observer)
            self._monitor = None

    @QtCore.pyqtSlot(bool)
    def on_card_presence_changed(self, present: bool):
        self.card_present = present
        logger.info("Tag %s", "present" if present else "removed")
        if present:
            self.read_now()

    @QtCore.pyqtSlot()
    def on_update(self):
        if self.card_present:
            self.read_now()

    def read_now(self):
        rs = self.backend.settings.reader
        conn = wait_for_card(rs.poll_interval_s * 2, rs.poll_interval_s, rs.reader_index)
        if conn is None:
            logger.info("Tag gone before it could be read")
            return
        transport = PcscTransport(conn)
        try:
            self.publisher.publish(self.backend.read_transport(transport))
        finally:
            transport.close()


def cmd_watch(settings: Settings, args) -> int:
    app = QtCore.QCoreApplication(sys.argv[:1])
    if not list_readers():
        print("[ERROR] No PC/SC reader found.", file=sys.stderr)
        return 1
    publisher = ReadingPublisher()
    publisher.jsonChanged.connect(lambda s: print(s, flush=True))
    watcher = MeterWatcher(NFCBackend(settings, on_log=_print_log), publisher)
    watcher.start()

    signal.signal(signal.SIGINT, lambda *a: app.quit())
    # let the interpreter run signal handlers while Qt owns the loop
    tick = QtCore.QTimer()
    tick.start(250)
    tick.timeout.connect(lambda: None)
    try:
        return app.exec_()
    finally:
        watcher.stop()


# ---------- one-shot commands ----------
def cmd_read(settings: Settings, args) -> int:
    backend = NFCBackend(settings, on_log=_print_log)
    reading = backend.read_card()
    if reading is None:
        return 2
    _emit(reading)
    return 0


def cmd_decode(settings: Settings, args) -> int:
    transport = DumpTransport.from_file(args.dumpfile)
    reading = NFCBackend(settings, on_log=_print_log).read_transport(transport)
    if reading is None:
        return 2
    _emit(reading)
    return 0


def cmd_dump(settings: Settings, args) -> int:
    if args.start < 0 or args.end < args.start:
        print("[ERROR] Invalid range. Ensure 0 <= start <= end.", file=sys.stderr)
        return 1
    if not list_readers():
        print("[ERROR] No PC/SC reader found.", file=sys.stderr)
        return 1
    rs = settings.reader
    conn = wait_for_card(rs.connect_timeout_s, rs.poll_interval_s, rs.reader_index)
    if conn is None:
        print("[ERROR] No card present. Place a tag on the reader.", file=sys.stderr)
        return 1
    transport = PcscTransport(conn)
    try:
        data, missing = dump_pages(transport, args.start, args.end, args.outfile)
    finally:
        transport.close()
    for p, line in zip(range(args.start, args.end + 1), fmt_pages(data, args.start)):
        print(f"{p:02d}: READ ERROR" if p in missing else line)
    print(f"\nSaved {len(data)} bytes to {args.outfile}")
    return 0


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog=APP_TITLE, description="Read water meter reports from NFC tags.")
    p.add_argument("--config", help="Settings file (default: packaged watermeter.ini)")
    p.add_argument("--log-level", help="Override [log] level (DEBUG, INFO, ...)")
    p.add_argument("--version", action="version", version=f"%(prog)s {APP_VERSION}")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("read", help="Wait for a tag, read it once and print the JSON report")
    sub.add_parser("watch", help="Read on every tag presentation and each update interval")

    d = sub.add_parser("dump", help="Dump tag pages to a binary file")
    d.add_argument("--start", type=int, default=0, help="Start page (default: 0)")
    d.add_argument("--end", type=int, default=47, help="End page inclusive (default: 47)")
    d.add_argument("--outfile", default="meter_dump.bin", help="Output binary filename (default: meter_dump.bin)")

    dc = sub.add_parser("decode", help="Reconstruct and decode a page dump file")
    dc.add_argument("dumpfile", help="Binary dump starting at page 0")
    return p.parse_args(argv)


COMMANDS = {
    "read": cmd_read,
    "watch": cmd_watch,
    "dump": cmd_dump,
    "decode": cmd_decode,
}


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1
    configure_logging(args.log_level or settings.log.level, settings.log.file)
    return COMMANDS[args.command](settings, args)


def _global_excepthook(exctype, value, tb):
    text = "".join(traceback.format_exception(exctype, value, tb))
    # Terminal
    print(text, file=sys.stderr)
    with open(ERROR_LOG, "a", encoding="utf-8") as f:
        f.write(text + "\n")


def run_app():
    sys.excepthook = _global_excepthook
    sys.exit(main())


if __name__ == "__main__":
    run_app()
