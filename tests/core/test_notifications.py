"""Tests for the change notification bus."""

from screencap.core.notifications import (
    ALL_EVENTS,
    EVENT_CREATED,
    PROJECTS_NORMALIZED,
    NotificationBus,
)


class TestNotificationBus:
    def test_named_and_wildcard_subscribers(self):
        bus = NotificationBus()
        named, everything = [], []
        bus.subscribe(EVENT_CREATED, lambda name, data: named.append(data))
        bus.subscribe(ALL_EVENTS, lambda name, data: everything.append(name))

        bus.event_created("e1")
        bus.projects_normalized(updated_rows=3, groups=1)

        assert named == [{"event_id": "e1"}]
        assert everything == [EVENT_CREATED, PROJECTS_NORMALIZED]

    def test_failing_subscriber_does_not_break_publish(self):
        bus = NotificationBus()
        received = []

        def broken(name, data):
            raise RuntimeError("subscriber bug")

        bus.subscribe(ALL_EVENTS, broken)
        bus.subscribe(ALL_EVENTS, lambda name, data: received.append(name))

        assert bus.publish("events.changed", {"event_ids": []}) == 1
        assert received == ["events.changed"]

    def test_unsubscribe(self):
        bus = NotificationBus()
        received = []
        unsubscribe = bus.subscribe(ALL_EVENTS, lambda name, data: received.append(name))

        unsubscribe()
        bus.event_updated("e1")

        assert received == []
