"""Tests for delivery routing."""

from types import SimpleNamespace

import pytest

from adpulse.core.errors import NotFoundError
from adpulse.services.routing import (
    DeliveryRoute,
    build_thread_index,
    collect_targets,
    ensure_chat_id,
    resolve_reminder_route,
)


def project(**kw):
    defaults = {
        "id": "p1",
        "admin_chat_id": "-100",
        "client_chat_id": "-200",
        "thread_id": None,
        "require_topic": False,
    }
    defaults.update(kw)
    return SimpleNamespace(**defaults)


class TestEnsureChatId:
    @pytest.mark.parametrize("value,expected", [
        (-100123, "-100123"),
        (" -5 ", "-5"),
        ("", None),
        (None, None),
        (True, None),
    ])
    def test_normalizes(self, value, expected):
        assert ensure_chat_id(value) == expected


class TestCollectTargets:
    def test_admin(self):
        assert collect_targets(project(), "admin") == [DeliveryRoute("-100")]

    def test_chat_carries_thread(self):
        assert collect_targets(project(thread_id=7), "chat") == [DeliveryRoute("-200", 7)]

    def test_both_in_order(self):
        assert collect_targets(project(), "both") == [DeliveryRoute("-100"), DeliveryRoute("-200")]

    def test_both_deduplicates(self):
        assert collect_targets(project(client_chat_id="-100"), "both") == [DeliveryRoute("-100")]

    def test_unknown_mode_falls_back_to_admin(self):
        assert collect_targets(project(), "everyone") == [DeliveryRoute("-100")]

    def test_missing_chats(self):
        assert collect_targets(project(admin_chat_id=None), "admin") == []


class TestThreadIndex:
    def test_maps_client_chat_to_thread(self):
        index = build_thread_index([
            project(client_chat_id="-200", thread_id=3),
            project(id="p2", client_chat_id="-300", thread_id=None),
        ])
        assert index == {"-200": 3}


class TestReminderRoute:
    def test_admin_and_client(self):
        admin, client = resolve_reminder_route(project(thread_id=4))
        assert admin == DeliveryRoute("-100")
        assert client == DeliveryRoute("-200", 4)

    def test_required_topic_missing(self):
        with pytest.raises(NotFoundError):
            resolve_reminder_route(project(require_topic=True))

    def test_client_only(self):
        admin, client = resolve_reminder_route(project(admin_chat_id=None))
        assert admin == client == DeliveryRoute("-200")

    def test_no_chats(self):
        with pytest.raises(NotFoundError):
            resolve_reminder_route(project(admin_chat_id=None, client_chat_id=None))
