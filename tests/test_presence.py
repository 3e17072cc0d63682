# tests/test_presence.py
# Observer callbacks are driven by hand; no CardMonitor thread is started.
from types import SimpleNamespace

import pytest

from watermeter_nfc.nfc.presence import QtPresenceBridge, TagPresenceObserver


def _card(reader):
    return SimpleNamespace(reader=reader)


@pytest.fixture
def bridge():
    b = QtPresenceBridge()
    events = []
    b.presenceChanged.connect(events.append)
    return b, events


def test_only_transitions_are_signalled(bridge):
    b, events = bridge
    obs = TagPresenceObserver(b)
    obs.update(None, ([_card("A")], []))
    obs.update(None, ([_card("B")], []))
    obs.update(None, ([], [_card("A")]))
    assert obs.present
    obs.update(None, ([], [_card("B")]))
    assert events == [True, False]
    assert not obs.present


def test_other_readers_are_ignored(bridge):
    b, events = bridge
    obs = TagPresenceObserver(b, reader_name="ACS ACR122U 00 00")
    obs.update(None, ([_card("Other Reader 01 00")], []))
    assert events == []
    obs.update(None, ([_card("ACS ACR122U 00 00")], []))
    assert events == [True]


def test_spurious_removal_does_not_go_negative(bridge):
    b, events = bridge
    obs = TagPresenceObserver(b)
    obs.update(None, ([], [_card("A")]))
    obs.update(None, ([_card("A")], []))
    assert events == [True]
