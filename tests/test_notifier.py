"""Tests for the alert broadcaster."""

from datetime import datetime

from red_alert.models import ExtractedAlert
from red_alert.notifier import AlertBroadcaster

ALERT = ExtractedAlert(title="LIVE class", date=datetime(2025, 12, 16, 20, 0), is_urgent=True)


def test_publish_reaches_every_subscriber():
    notifier = AlertBroadcaster()
    a, b = [], []
    notifier.subscribe(a.append)
    notifier.subscribe(b.append)

    notifier.publish(ALERT)

    assert a == [ALERT]
    assert b == [ALERT]
    assert notifier.topic == "/topic/alerts"


def test_failing_subscriber_does_not_block_others():
    notifier = AlertBroadcaster()
    received = []

    def broken(alert):
        raise RuntimeError("socket closed")

    notifier.subscribe(broken)
    notifier.subscribe(received.append)

    notifier.publish(ALERT)
    assert received == [ALERT]


def test_unsubscribe():
    notifier = AlertBroadcaster()
    received = []
    notifier.subscribe(received.append)
    notifier.unsubscribe(received.append)
    notifier.unsubscribe(received.append)

    notifier.publish(ALERT)
    assert received == []
    assert notifier.subscriber_count == 0


def test_publish_without_subscribers():
    AlertBroadcaster().publish(ALERT)
