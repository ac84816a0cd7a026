"""
Notification Lifecycle Tests
"""

import asyncio

from safety_engine import ManualClock
from safety_engine.contracts import NotificationKind
from safety_engine.notifications import NotificationCenter

from .fixtures import EPOCH


def build_center(ttl_seconds=5.0):
    clock = ManualClock.starting_at(EPOCH)
    events = []
    center = NotificationCenter(
        clock=clock,
        ttl_seconds=ttl_seconds,
        on_change=lambda topic, entity_id: events.append((topic, entity_id)),
    )
    return center, clock, events


class TestNotificationCenter:

    def test_live_is_most_recent_first(self):
        center, clock, _ = build_center()
        first = center.notify("A", "one", NotificationKind.INFO)
        clock.advance(1)
        second = center.notify("B", "two", NotificationKind.DANGER)

        assert [n.notification_id for n in center.live()] == [
            second.notification_id, first.notification_id
        ]
        assert second.expires_at == second.created_at + (first.expires_at - first.created_at)

    def test_expiry_on_read(self):
        center, clock, _ = build_center()
        center.notify("A", "one", NotificationKind.INFO)

        clock.advance(4.9)
        assert len(center.live()) == 1
        clock.advance(0.1)
        assert center.live() == ()
        assert len(center.history()) == 1

    def test_dismiss_is_idempotent(self):
        center, _, events = build_center()
        notification = center.notify("A", "one", NotificationKind.SUCCESS)

        assert center.dismiss(notification.notification_id) is True
        assert center.dismiss(notification.notification_id) is False
        assert center.dismiss("unknown") is False
        assert center.live() == ()
        assert events == [
            ("notification.created", notification.notification_id),
            ("notification.dismissed", notification.notification_id),
        ]

    def test_history_keeps_order(self):
        center, _, _ = build_center()
        for title in ("A", "B", "C"):
            center.notify(title, title, NotificationKind.INFO)
        assert [n.title for n in center.history()] == ["A", "B", "C"]

    def test_loop_timer_removes_notification(self):
        center, _, _ = build_center(ttl_seconds=0.02)

        async def scenario():
            center.notify("A", "one", NotificationKind.AI_WARNING)
            await asyncio.sleep(0.05)
            # ManualClock never moved, so only the loop timer can remove it.
            return center.live()

        assert asyncio.run(scenario()) == ()

    def test_close_cancels_timers(self):
        center, _, _ = build_center(ttl_seconds=0.02)

        async def scenario():
            center.notify("A", "one", NotificationKind.INFO)
            center.close()
            await asyncio.sleep(0.05)
            return center.live()

        assert len(asyncio.run(scenario())) == 1

    def test_expiry_on_read_publishes_change(self):
        center, clock, events = build_center()
        notification = center.notify("A", "one", NotificationKind.INFO)

        clock.advance(5)
        center.live()
        center.live()

        assert events == [
            ("notification.created", notification.notification_id),
            ("notification.expired", notification.notification_id),
        ]

    def test_loop_timer_publishes_change(self):
        center, _, events = build_center(ttl_seconds=0.02)

        async def scenario():
            notification = center.notify("A", "one", NotificationKind.INFO)
            await asyncio.sleep(0.05)
            return notification

        notification = asyncio.run(scenario())
        assert events[-1] == ("notification.expired", notification.notification_id)
        assert center.dismiss(notification.notification_id) is False
        assert len(events) == 2

    def test_history_is_bounded(self):
        clock = ManualClock.starting_at(EPOCH)
        center = NotificationCenter(clock=clock, history_limit=3)
        for title in ("A", "B", "C", "D", "E"):
            center.notify(title, title, NotificationKind.INFO)

        assert [n.title for n in center.history()] == ["C", "D", "E"]
        assert len(center.live()) == 5
