"""Tests for the auto-report trigger and sweep."""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from adpulse.core.db import session_scope
from adpulse.core.errors import UpstreamUnavailable
from adpulse.models import AutoReportSettings
from adpulse.repo.projects import get_autoreport_settings
from adpulse.services.ad_platform import AdAccount, Campaign
from adpulse.services import auto_reports
from adpulse.services.auto_reports import evaluate_auto_report_trigger, run_auto_report_sweep

MONDAY = datetime(2024, 1, 1, 9, 2)
TUESDAY = datetime(2024, 1, 2, 9, 2)


def settings_row(**kw):
    defaults = {
        "project_id": "p1",
        "enabled": True,
        "times": ["09:00"],
        "monday_double_report": False,
        "last_sent_daily": None,
        "last_sent_monday": None,
        "alerts_target": "admin",
        "version": 1,
    }
    defaults.update(kw)
    return AutoReportSettings(**defaults)


class TestEvaluateTrigger:
    def test_fires_inside_window(self):
        ev = evaluate_auto_report_trigger(settings_row(), TUESDAY)
        assert ev.daily == "09:00"
        assert ev.weekly is None

    @pytest.mark.parametrize("minute", [0, 4])
    def test_window_edges(self, minute):
        now = TUESDAY.replace(minute=minute)
        assert evaluate_auto_report_trigger(settings_row(), now).daily == "09:00"

    @pytest.mark.parametrize("now", [
        datetime(2024, 1, 2, 8, 59),
        datetime(2024, 1, 2, 9, 5),
        datetime(2024, 1, 2, 21, 0),
    ])
    def test_outside_window(self, now):
        assert evaluate_auto_report_trigger(settings_row(), now).daily is None

    def test_disabled_or_no_times(self):
        assert evaluate_auto_report_trigger(settings_row(enabled=False), TUESDAY).daily is None
        assert evaluate_auto_report_trigger(settings_row(times=[]), TUESDAY).daily is None

    def test_second_evaluation_in_same_window_is_blocked(self):
        row = settings_row()
        first = evaluate_auto_report_trigger(row, TUESDAY)
        assert first.daily == "09:00"
        row.last_sent_daily = TUESDAY
        second = evaluate_auto_report_trigger(row, TUESDAY + timedelta(minutes=1))
        assert second.daily is None

    def test_slot_sent_at_start_blocks_minute_four(self):
        # кулдаун уже истёк, но этот слот уже отправлен
        row = settings_row(last_sent_daily=datetime(2024, 1, 2, 9, 0))
        assert evaluate_auto_report_trigger(row, datetime(2024, 1, 2, 9, 4, 30)).daily is None

    def test_cooldown_spans_adjacent_slots(self):
        row = settings_row(times=["09:00", "09:03"], last_sent_daily=datetime(2024, 1, 2, 9, 1))
        assert evaluate_auto_report_trigger(row, datetime(2024, 1, 2, 9, 4)).daily is None

    def test_next_day_fires_again(self):
        row = settings_row(last_sent_daily=datetime(2024, 1, 1, 9, 0))
        assert evaluate_auto_report_trigger(row, TUESDAY).daily == "09:00"

    def test_monday_weekly_needs_flag_and_monday(self):
        assert evaluate_auto_report_trigger(settings_row(), MONDAY).weekly is None
        flagged = settings_row(monday_double_report=True)
        assert evaluate_auto_report_trigger(flagged, MONDAY).weekly == "09:00"
        assert evaluate_auto_report_trigger(flagged, TUESDAY).weekly is None

    def test_weekly_has_its_own_cooldown(self):
        row = settings_row(monday_double_report=True, last_sent_daily=MONDAY)
        ev = evaluate_auto_report_trigger(row, MONDAY)
        assert ev.daily is None
        assert ev.weekly == "09:00"

    def test_garbage_times_are_ignored(self):
        row = settings_row(times=["bogus", "9:00"])
        assert evaluate_auto_report_trigger(row, TUESDAY).daily == "9:00"


async def stored_settings(sessions):
    async with session_scope(sessions) as s:
        return await get_autoreport_settings(s, "p1")


class TestAutoReportSweep:
    @pytest.mark.asyncio
    async def test_sends_and_records_last_sent(self, engine, sessions, gateway, add_rows, make_project, make_autoreport):
        await add_rows(make_project(), make_autoreport())

        stats = await run_auto_report_sweep(engine, TUESDAY)

        assert stats.reports_sent == 1
        assert stats.fallbacks == 0
        chat_id, text = gateway.send_message.call_args[0][:2]
        assert chat_id == "-100"
        assert "Расход" in text
        assert "ID отчёта" in text
        row = await stored_settings(sessions)
        assert row.last_sent_daily == TUESDAY

    @pytest.mark.asyncio
    async def test_overlapping_sweep_does_not_double_send(self, engine, gateway, add_rows, make_project, make_autoreport):
        await add_rows(make_project(), make_autoreport())

        await run_auto_report_sweep(engine, TUESDAY)
        stats = await run_auto_report_sweep(engine, TUESDAY + timedelta(minutes=1))

        assert stats.reports_sent == 0
        assert gateway.send_message.await_count == 1

    @pytest.mark.asyncio
    async def test_meta_outage_sends_degraded_and_counts_as_sent(
        self, engine, sessions, ad_client, gateway, add_rows, make_project, make_autoreport,
    ):
        ad_client.fetch_accounts_and_campaigns.side_effect = UpstreamUnavailable("meta", "HTTP 503")
        await add_rows(make_project(), make_autoreport())

        stats = await run_auto_report_sweep(engine, TUESDAY)

        assert stats.reports_sent == 1
        assert stats.fallbacks == 1
        text = gateway.send_message.call_args[0][1]
        assert text.startswith("⚠️")
        assert "Расход:" not in text
        row = await stored_settings(sessions)
        assert row.last_sent_daily == TUESDAY
        # cooldown применяется и к урезанному отчёту
        again = await run_auto_report_sweep(engine, TUESDAY + timedelta(minutes=2))
        assert again.reports_sent == 0

    @pytest.mark.asyncio
    async def test_both_targets_are_deduplicated(self, engine, gateway, add_rows, make_project, make_autoreport):
        await add_rows(
            make_project(admin_chat_id="-100", client_chat_id="-100"),
            make_autoreport(alerts_target="both"),
        )

        stats = await run_auto_report_sweep(engine, TUESDAY)

        assert stats.reports_sent == 1
        assert gateway.send_message.await_count == 1

    @pytest.mark.asyncio
    async def test_chat_target_uses_thread(self, engine, gateway, add_rows, make_project, make_autoreport):
        await add_rows(make_project(thread_id=9), make_autoreport(alerts_target="chat"))

        await run_auto_report_sweep(engine, TUESDAY)

        args, kwargs = gateway.send_message.call_args
        assert args[0] == "-200"
        assert kwargs["thread_id"] == 9

    @pytest.mark.asyncio
    async def test_no_targets_is_skipped(self, engine, gateway, add_rows, make_project, make_autoreport):
        await add_rows(make_project(admin_chat_id=None), make_autoreport(alerts_target="admin"))

        stats = await run_auto_report_sweep(engine, TUESDAY)

        assert stats.skipped == 1
        gateway.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_undelivered_report_releases_slot(
        self, engine, sessions, gateway, add_rows, make_project, make_autoreport,
    ):
        await add_rows(make_project(), make_autoreport())
        gateway.send_many = AsyncMock(return_value=0)

        stats = await run_auto_report_sweep(engine, TUESDAY)

        assert stats.reports_sent == 0
        row = await stored_settings(sessions)
        assert row.last_sent_daily is None

    @pytest.mark.asyncio
    async def test_monday_sends_daily_and_weekly(self, engine, sessions, ad_client, gateway, add_rows, make_project, make_autoreport):
        await add_rows(make_project(), make_autoreport(monday_double_report=True))

        stats = await run_auto_report_sweep(engine, MONDAY)

        assert stats.reports_sent == 1
        assert stats.weekly_reports == 1
        windows = [c.args[1] for c in ad_client.fetch_accounts_and_campaigns.await_args_list]
        # первый запрос: аккаунты для алертов, один на проход
        assert windows == ["today", "today", "last_7d"]
        row = await stored_settings(sessions)
        assert row.last_sent_daily == MONDAY
        assert row.last_sent_monday == MONDAY

    @pytest.mark.asyncio
    async def test_stale_settings_lose_claim(
        self, engine, sessions, gateway, add_rows, make_project, make_autoreport, monkeypatch,
    ):
        await add_rows(make_project(), make_autoreport())
        # параллельный проход уже отправил и поднял версию
        async with session_scope(sessions) as s:
            row = await get_autoreport_settings(s, "p1")
            row.version = 5

        original = auto_reports.list_autoreport_settings

        async def stale_list(session):
            rows = await original(session)
            session.expunge_all()
            for r in rows.values():
                r.version = 1
            return rows

        monkeypatch.setattr(auto_reports, "list_autoreport_settings", stale_list)

        stats = await run_auto_report_sweep(engine, TUESDAY)

        assert stats.conflicts == 1
        gateway.send_message.assert_not_awaited()


class TestProjectAlerts:
    @pytest.mark.asyncio
    async def test_billing_alert_once_per_transition(
        self, engine, sessions, gateway, add_rows, make_project, make_autoreport,
    ):
        await add_rows(make_project(billing_status="overdue"), make_autoreport(enabled=False))

        first = await run_auto_report_sweep(engine, TUESDAY)
        second = await run_auto_report_sweep(engine, TUESDAY + timedelta(minutes=1))

        assert first.alerts_sent == 1
        assert second.alerts_sent == 0
        chat_id, text = gateway.send_message.call_args[0][:2]
        assert chat_id == "-100"
        assert "Проблема оплаты" in text
        row = await stored_settings(sessions)
        assert row.last_billing_status == "overdue"

    @pytest.mark.asyncio
    async def test_payment_alert_can_be_switched_off(
        self, engine, gateway, add_rows, make_project, make_autoreport,
    ):
        await add_rows(make_project(billing_status="blocked"), make_autoreport(enabled=False, alert_payment=False))

        stats = await run_auto_report_sweep(engine, TUESDAY)

        assert stats.alerts_sent == 0
        gateway.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_spend_anomaly_against_previous_reading(
        self, engine, sessions, gateway, add_rows, make_project, make_autoreport,
    ):
        await add_rows(make_project(), make_autoreport(enabled=False, last_spend=50.0, meta_status="ok"))

        stats = await run_auto_report_sweep(engine, TUESDAY)

        assert stats.alerts_sent == 1
        text = gateway.send_message.call_args[0][1]
        assert "Аномальный расход" in text
        assert "125.50 USD" in text
        assert "↑151%" in text
        row = await stored_settings(sessions)
        assert row.last_spend == 125.5

    @pytest.mark.asyncio
    async def test_paused_campaigns_alert_to_both_targets(
        self, engine, sessions, ad_client, gateway, add_rows, make_project, make_autoreport,
    ):
        ad_client.fetch_accounts_and_campaigns.return_value = [
            AdAccount(id="act_100", name="Main", spend=10.0, campaigns=[
                Campaign(id="c2", name="Old", status="PAUSED", effective_status="PAUSED",
                         updated_time="2024-01-02T05:00:00+0000"),
                Campaign(id="c3", name="Fresh", status="PAUSED", effective_status="PAUSED",
                         updated_time="2024-01-02T08:30:00+0000"),
            ]),
        ]
        await add_rows(make_project(), make_autoreport(enabled=False, alerts_target="both", meta_status="ok"))

        first = await run_auto_report_sweep(engine, TUESDAY)
        second = await run_auto_report_sweep(engine, TUESDAY + timedelta(minutes=1))

        assert first.alerts_sent == 2
        assert second.alerts_sent == 0
        chats = [c.args[0] for c in gateway.send_message.await_args_list]
        assert chats == ["-100", "-200"]
        text = gateway.send_message.call_args[0][1]
        assert "Old (c2)" in text
        assert "Fresh" not in text
        row = await stored_settings(sessions)
        assert row.meta_status == "paused"

    @pytest.mark.asyncio
    async def test_meta_outage_marks_error_without_alerts(
        self, engine, sessions, ad_client, gateway, add_rows, make_project, make_autoreport,
    ):
        ad_client.fetch_accounts_and_campaigns.side_effect = UpstreamUnavailable("meta", "HTTP 503")
        await add_rows(make_project(), make_autoreport(enabled=False, last_spend=50.0, meta_status="ok"))

        stats = await run_auto_report_sweep(engine, TUESDAY)

        assert stats.alerts_sent == 0
        gateway.send_message.assert_not_awaited()
        row = await stored_settings(sessions)
        assert row.meta_status == "error"
        assert row.last_spend == 50.0

    @pytest.mark.asyncio
    async def test_report_and_alert_in_one_sweep(
        self, engine, sessions, gateway, add_rows, make_project, make_autoreport,
    ):
        await add_rows(make_project(billing_status="overdue"), make_autoreport())

        stats = await run_auto_report_sweep(engine, TUESDAY)

        assert stats.reports_sent == 1
        assert stats.alerts_sent == 1
        texts = [c.args[1] for c in gateway.send_message.await_args_list]
        assert "ID отчёта" in texts[0]
        assert "Проблема оплаты" in texts[1]
        row = await stored_settings(sessions)
        assert row.last_sent_daily == TUESDAY
        assert row.last_billing_status == "overdue"
