# src/watermeter_nfc/meter/publisher.py
from __future__ import annotations
from typing import Optional

from PyQt5 import QtCore

from ..utils.log import get_logger
from .report import Reading, format_volume

logger = get_logger(__name__)


class ReadingPublisher(QtCore.QObject):
    """
    Hands readings to downstream consumers.

    jsonChanged carries the report JSON, volumeChanged the numeric volume (m³).
    A failed cycle (None) emits nothing and keeps the last published state.
    """
    jsonChanged = QtCore.pyqtSignal(str)
    volumeChanged = QtCore.pyqtSignal(float)

    def __init__(self, parent: Optional[QtCore.QObject] = None):
        super().__init__(parent)
        self.last_json: Optional[str] = None
        self.last_volume: Optional[float] = None

    def publish(self, reading: Optional[Reading]) -> bool:
        """Publish a reading; returns False when there was nothing to publish."""
        if reading is None:
            logger.debug("No reading, keeping last published state")
            return False
        self.last_json = reading.to_json()
        self.jsonChanged.emit(self.last_json)
        if reading.volume_numeric is not None:
            self.last_volume = reading.volume_numeric
            self.volumeChanged.emit(reading.volume_numeric)
            logger.debug("Volume: %s", format_volume(reading.volume_numeric))
        return True
