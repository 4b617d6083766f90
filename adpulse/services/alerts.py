# adpulse/services/alerts.py
"""
Алерты проекта, которые идут рядом с автоотчётами: проблема оплаты,
аномальный расход и кампании на паузе дольше двух часов.

Алерт шлётся на переходе. Прошлый проход оставляет в настройках проекта
статус биллинга, расход за сегодня и статус Meta; план сравнивает их с
текущими и возвращает новое состояние вместе с текстами сообщений.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from adpulse.core.clock import ensure_naive_utc
from adpulse.models.project import AutoReportSettings, Project
from adpulse.services.ad_platform import AdAccount, Campaign, index_accounts
from adpulse.ui.messages import billing_alert_text, paused_campaigns_text, spend_anomaly_text

PAUSE_THRESHOLD = timedelta(hours=2)
PAUSED_STATUSES = frozenset({"PAUSED", "INACTIVE", "ARCHIVED"})
BILLING_ALERT_STATUSES = frozenset({"overdue", "blocked"})

ANOMALY_MIN_PERCENT = 100.0
ANOMALY_MIN_DELTA = 30.0


@dataclass
class SpendAnomaly:
    previous: float
    current: float
    percent: float
    currency: str


@dataclass
class AlertPlan:
    state: dict = field(default_factory=dict)
    messages: list[str] = field(default_factory=list)


def _parse_meta_time(value: str | None) -> datetime | None:
    # Graph API: 2024-01-01T07:00:00+0000
    if not value:
        return None
    for fmt in ("%Y-%m-%dT%H:%M:%S%z", "%Y-%m-%dT%H:%M:%S"):
        try:
            return ensure_naive_utc(datetime.strptime(value, fmt))
        except ValueError:
            continue
    return None


def paused_campaigns(account: AdAccount | None, now: datetime) -> list[Campaign]:
    if account is None:
        return []
    out: list[Campaign] = []
    for c in account.campaigns:
        status = (c.effective_status or c.status or "").upper()
        if status not in PAUSED_STATUSES:
            continue
        updated = _parse_meta_time(c.updated_time)
        if updated is not None and now - updated > PAUSE_THRESHOLD:
            out.append(c)
    return out


def detect_spend_anomaly(previous: float | None, account: AdAccount | None) -> SpendAnomaly | None:
    """Расход за сегодня вырос минимум вдвое и минимум на 30 в валюте аккаунта."""
    if account is None or previous is None or previous <= 0:
        return None
    diff = account.spend - previous
    if diff <= 0 or diff < ANOMALY_MIN_DELTA:
        return None
    percent = diff / previous * 100
    if percent < ANOMALY_MIN_PERCENT:
        return None
    return SpendAnomaly(previous, account.spend, percent, account.currency or "USD")


def plan_alerts(
    project: Project,
    settings: AutoReportSettings,
    accounts: list[AdAccount] | None,
    meta_error: str | None,
    now: datetime,
) -> AlertPlan:
    """
    accounts=None вместе с meta_error значит, что Meta не ответила в этом
    проходе: расход не сравниваем, статус Meta = error.
    """
    now = ensure_naive_utc(now)
    plan = AlertPlan()

    billing = project.billing_status or "active"
    if billing != settings.last_billing_status:
        plan.state["last_billing_status"] = billing
        if settings.alert_payment and billing in BILLING_ALERT_STATUSES:
            plan.messages.append(billing_alert_text(project, billing))

    account = None
    if not project.ad_account_id:
        meta_status = "missing"
    elif meta_error is not None:
        meta_status = "error"
    else:
        account = index_accounts(accounts).get(project.ad_account_id)
        meta_status = "missing" if account is None else "ok"

    paused: list[Campaign] = []
    if account is not None:
        anomaly = detect_spend_anomaly(settings.last_spend, account)
        if anomaly is not None and settings.alert_budget:
            plan.messages.append(spend_anomaly_text(project, anomaly.current, anomaly.percent, anomaly.currency))
        if settings.last_spend != account.spend:
            plan.state["last_spend"] = account.spend
        paused = paused_campaigns(account, now)
        if paused:
            meta_status = "paused"

    if meta_status != settings.meta_status:
        plan.state["meta_status"] = meta_status
        if paused and settings.alert_pause:
            plan.messages.append(paused_campaigns_text(project, paused))
    return plan
