# src/watermeter_nfc/nfc/presence.py
# Tag presence events from pyscard's CardMonitor, delivered as a Qt signal.
from __future__ import annotations
from typing import Optional

from PyQt5 import QtCore
from smartcard.CardMonitoring import CardMonitor, CardObserver

from ..utils.log import get_logger

logger = get_logger(__name__)


class QtPresenceBridge(QtCore.QObject):
    """Carries presence changes from the monitor thread to the Qt thread."""
    presenceChanged = QtCore.pyqtSignal(bool)  # True = tag on a reader, False = gone


class TagPresenceObserver(CardObserver):
    """
    Counts tags seen by the monitor and signals only real transitions.

    pyscard reports inserts and removals per reader. With `reader_name` set,
    events from other readers are ignored.
    """
    def __init__(self, bridge: QtPresenceBridge, reader_name: Optional[str] = None):
        super().__init__()
        self._bridge = bridge
        self._reader_name = reader_name
        self._count = 0

    @property
    def present(self) -> bool:
        return self._count > 0

    def _mine(self, cards):
        if self._reader_name is None:
            return list(cards)
        return [c for c in cards if str(getattr(c, "reader", "")) == self._reader_name]

    def update(self, observable, actions):
        """pyscard callback (monitor thread)."""
        added, removed = actions
        was_present = self.present
        added, removed = self._mine(added), self._mine(removed)
        self._count = max(0, self._count + len(added) - len(removed))
        if added or removed:
            logger.debug("Presence: +%d -%d, %d on reader", len(added), len(removed), self._count)
        if self.present != was_present:
            self._bridge.presenceChanged.emit(self.present)


def start_presence_monitor(bridge: QtPresenceBridge, reader_name: Optional[str] = None):
    """Attach an observer to pyscard's (singleton) CardMonitor; returns (monitor, observer)."""
    monitor = CardMonitor()
    observer = TagPresenceObserver(bridge, reader_name)
    monitor.addObserver(observer)
    return monitor, observer


def stop_presence_monitor(monitor, observer) -> None:
    monitor.deleteObserver(observer)
