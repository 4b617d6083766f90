"""Shared test fixtures for adpulse tests."""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from adpulse.core.config import Settings
from adpulse.core.db import init_db, make_sessionmaker, session_scope
from adpulse.models import AutoReportSettings, Project
from adpulse.services.ad_platform import AdAccount, Campaign
from adpulse.services.engine import SweepEngine
from adpulse.services.reports import ReportGenerator

NOW = datetime(2024, 1, 1, 9, 2)  # понедельник


@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite on one StaticPool connection: fast, but sessions do not isolate each other."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def sessions(db_engine):
    return make_sessionmaker(db_engine)


@pytest_asyncio.fixture
async def file_db_engine(tmp_path):
    """File-backed SQLite: each session gets its own connection, so concurrent sweeps really race."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'adpulse.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def settings():
    return Settings(
        bot_token="123:abc",
        database_url="sqlite+aiosqlite://",
        admin_ids=[42],
        meta_access_token="token",
    )


@pytest.fixture
def gateway():
    """Fake TelegramGateway: every send succeeds and is recorded."""
    gw = MagicMock()
    gw.send_message = AsyncMock(return_value=1)
    gw.send_document = AsyncMock(return_value=2)
    gw.edit_message = AsyncMock(return_value=None)

    async def _send_many(routes, text, keyboard=None):
        delivered = 0
        for route in routes:
            await gw.send_message(route.chat_id, text, thread_id=route.thread_id, keyboard=keyboard)
            delivered += 1
        return delivered

    gw.send_many = AsyncMock(side_effect=_send_many)
    return gw


@pytest.fixture
def ad_client():
    client = MagicMock()
    client.fetch_accounts_and_campaigns = AsyncMock(return_value=[
        AdAccount(
            id="act_100",
            name="Main",
            currency="USD",
            spend=125.5,
            campaigns=[
                Campaign(id="c1", name="Spring", status="ACTIVE", effective_status="ACTIVE"),
                Campaign(id="c2", name="Old", status="PAUSED", effective_status="PAUSED"),
            ],
        ),
    ])
    return client


@pytest.fixture
def engine(sessions, gateway, ad_client, settings):
    reports = ReportGenerator(sessions, ad_client, "token", clock=lambda: NOW)
    return SweepEngine(
        sessions=sessions,
        gateway=gateway,
        reports=reports,
        ad_client=ad_client,
        settings=settings,
    )


@pytest.fixture
def concurrent_engine(file_db_engine, gateway, ad_client, settings):
    """SweepEngine over the file-backed database, for overlapping-sweep tests."""
    sessions = make_sessionmaker(file_db_engine)
    reports = ReportGenerator(sessions, ad_client, "token", clock=lambda: NOW)
    return SweepEngine(
        sessions=sessions,
        gateway=gateway,
        reports=reports,
        ad_client=ad_client,
        settings=settings,
    )


@pytest.fixture
def add_rows(sessions):
    """Persist ORM objects in one transaction."""
    async def _add(*rows):
        async with session_scope(sessions) as s:
            s.add_all(rows)
    return _add


@pytest.fixture
def make_project():
    """Factory fixture for Project rows with sensible defaults."""
    def _make_project(**overrides):
        defaults = {
            "id": "p1",
            "name": "Alpha",
            "admin_chat_id": "-100",
            "client_chat_id": "-200",
            "thread_id": None,
            "require_topic": False,
            "ad_account_id": "act_100",
            "billing_status": "active",
            "next_payment_date": None,
            "tariff": 500.0,
            "currency": "USD",
            "auto_off": False,
            "auto_off_at": None,
            "created_at": datetime(2023, 12, 1),
            "updated_at": datetime(2023, 12, 1),
            "version": 1,
        }
        defaults.update(overrides)
        return Project(**defaults)
    return _make_project


@pytest.fixture
def make_autoreport():
    def _make_autoreport(**overrides):
        defaults = {
            "project_id": "p1",
            "enabled": True,
            "times": ["09:00"],
            "monday_double_report": False,
            "last_sent_daily": None,
            "last_sent_monday": None,
            "alerts_target": "admin",
            "updated_at": datetime(2023, 12, 1),
            "version": 1,
        }
        defaults.update(overrides)
        return AutoReportSettings(**defaults)
    return _make_autoreport
