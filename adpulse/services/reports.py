# adpulse/services/reports.py
"""
Генерация отчётов по проектам: summary / detailed / finance и SLA по лидам.

Генератор ничего не доставляет, только собирает текст. Данные Meta
подтягиваются через MetaAdsClient; если Meta недоступна, generate поднимает
UpstreamUnavailable, а generate_with_fallback собирает урезанный отчёт без
рекламных цифр.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from adpulse.core.clock import utc_now
from adpulse.core.db import session_scope
from adpulse.core.errors import UpstreamUnavailable, ValidationError
from adpulse.models.project import Project
from adpulse.repo.projects import get_projects, list_leads
from adpulse.services.ad_platform import AdAccount, MetaAdsClient, index_accounts
from adpulse.services.export_xlsx import build_sla_xlsx
from adpulse.services.periods import resolve_window
from adpulse.ui.messages import (
    billing_label,
    degraded_prefix,
    esc,
    format_date,
    format_duration_minutes,
    format_money,
    html_to_text,
)

log = logging.getLogger(__name__)

GENERATED_TYPES = ("summary", "detailed", "finance")
ACTIVE_STATUSES = ("ACTIVE",)
TOP_CAMPAIGNS = 5
SLA_THRESHOLD_MINUTES = 60
MAX_INLINE_ROWS = 20


@dataclass
class ReportRecord:
    id: str
    type: str
    project_ids: list[str]
    window: str
    date_from: date
    date_to: date
    ad_data: bool
    created_at: datetime
    title: str = ""


@dataclass
class ReportResult:
    record: ReportRecord
    text: str
    html: str
    attachment: tuple[str, bytes] | None = None   # (имя файла, содержимое)


@dataclass
class SlaRow:
    project_id: str
    project_name: str
    lead_id: str
    lead_name: str
    phone: str | None
    source: str
    created_at: datetime
    age_minutes: int
    overdue: bool


def new_report_id() -> str:
    return uuid.uuid4().hex[:12]


def _active_campaigns(account: AdAccount | None) -> list:
    if account is None:
        return []
    return [
        c for c in account.campaigns
        if (c.effective_status or c.status).upper() in ACTIVE_STATUSES
    ]


class ReportGenerator:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        ad_client: MetaAdsClient | None,
        token: str | None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.sessions = sessions
        self.ad_client = ad_client
        self.token = token
        self.clock = clock

    async def _load_projects(self, project_ids: list[str] | None) -> list[Project]:
        async with session_scope(self.sessions) as s:
            return await get_projects(s, project_ids or [])

    async def _load_accounts(self, window: str) -> list[AdAccount]:
        if self.ad_client is None or not self.token:
            raise UpstreamUnavailable("meta", "Meta OAuth не настроен")
        return await self.ad_client.fetch_accounts_and_campaigns(self.token, window)

    async def generate(
        self,
        type: str,
        project_ids: list[str] | None,
        window: str = "today",
        include_ad_data: bool = True,
        title: str | None = None,
    ) -> ReportResult:
        if type not in GENERATED_TYPES:
            raise ValidationError(f"unsupported report type: {type}")
        now = self.clock()
        d1, d2, label = resolve_window(window, now)
        projects = await self._load_projects(project_ids)

        accounts: dict[str, AdAccount] | None = None
        if include_ad_data and type != "finance":
            accounts = index_accounts(await self._load_accounts(window))

        record = ReportRecord(
            id=new_report_id(),
            type=type,
            project_ids=[p.id for p in projects],
            window=window,
            date_from=d1,
            date_to=d2,
            ad_data=accounts is not None,
            created_at=now,
            title=title or "",
        )

        heading = esc(title) if title else {
            "summary": "Сводка по проектам",
            "detailed": "Детальный отчёт",
            "finance": "Финансы",
        }[type]
        lines = [f"📊 <b>{heading}</b> за {esc(label)}", ""]
        if not projects:
            lines.append("Проектов нет.")

        total_spend: dict[str, float] = {}
        for project in projects:
            lines.append(f"<b>{esc(project.name)}</b>")
            if type == "finance":
                lines.extend(self._finance_lines(project))
            else:
                account = accounts.get(project.ad_account_id or "") if accounts is not None else None
                lines.extend(self._ads_lines(project, account, accounts is not None, detailed=type == "detailed"))
                if account is not None:
                    total_spend[account.currency] = total_spend.get(account.currency, 0.0) + account.spend
            lines.append("")

        if total_spend:
            totals = ", ".join(format_money(v, cur) for cur, v in sorted(total_spend.items()))
            lines.append(f"💵 <b>Итого расход:</b> {esc(totals)}")

        html_body = "\n".join(lines).strip()
        return ReportResult(record=record, text=html_to_text(html_body), html=html_body)

    def _ads_lines(self, project: Project, account: AdAccount | None, with_ads: bool, detailed: bool) -> list[str]:
        if not with_ads:
            # без данных Meta цифры расхода не показываем вовсе
            return [f"• Биллинг: {esc(billing_label(project.billing_status))}"]
        if account is None:
            return ["• Рекламный аккаунт не привязан"]
        active = _active_campaigns(account)
        lines = [
            f"• Аккаунт: {esc(account.name)}",
            f"• Расход: {esc(format_money(account.spend, account.currency))}",
            f"• Активных кампаний: {len(active)} из {len(account.campaigns)}",
        ]
        if detailed and active:
            for c in active[:TOP_CAMPAIGNS]:
                lines.append(f"   – {esc(c.name)}")
        return lines

    def _finance_lines(self, project: Project) -> list[str]:
        lines = [f"• Статус: {esc(billing_label(project.billing_status))}"]
        lines.append(f"• Следующий платёж: {format_date(project.next_payment_date)}")
        if project.tariff and project.tariff > 0:
            lines.append(f"• Тариф: {esc(format_money(project.tariff, project.currency or 'USD'))}")
        return lines

    async def create_sla_report(
        self,
        project_ids: list[str] | None,
        title: str | None = None,
        threshold_minutes: int = SLA_THRESHOLD_MINUTES,
        with_export: bool = False,
    ) -> ReportResult:
        """
        SLA по лидам: кто из лидов в статусе new ждёт дольше порога.
        with_export=True прикладывает xlsx.
        """
        now = self.clock()
        projects = await self._load_projects(project_ids)
        by_id = {p.id: p for p in projects}
        async with session_scope(self.sessions) as s:
            leads = await list_leads(s, by_id.keys())

        rows: list[SlaRow] = []
        for lead in leads:
            if lead.status != "new":
                continue
            age = max(0, int((now - lead.created_at).total_seconds() // 60))
            rows.append(SlaRow(
                project_id=lead.project_id,
                project_name=by_id[lead.project_id].name,
                lead_id=lead.id,
                lead_name=lead.name,
                phone=lead.phone,
                source=lead.source,
                created_at=lead.created_at,
                age_minutes=age,
                overdue=age > threshold_minutes,
            ))
        rows.sort(key=lambda r: r.age_minutes, reverse=True)
        overdue = sum(1 for r in rows if r.overdue)

        record = ReportRecord(
            id=new_report_id(),
            type="sla",
            project_ids=list(by_id),
            window="today",
            date_from=now.date(),
            date_to=now.date(),
            ad_data=False,
            created_at=now,
            title=title or "",
        )

        heading = esc(title) if title else "SLA по лидам"
        lines = [
            f"⏱ <b>{heading}</b>",
            f"Проектов: {len(projects)}, ожидают ответа: {len(rows)}, просрочено (&gt;{threshold_minutes} мин): {overdue}",
        ]
        if rows:
            lines.append("")
        for r in rows[:MAX_INLINE_ROWS]:
            mark = "🔴" if r.overdue else "🟡"
            lines.append(f"{mark} {esc(r.project_name)} — {esc(r.lead_name)}, ждёт {esc(format_duration_minutes(r.age_minutes))}")
        if len(rows) > MAX_INLINE_ROWS:
            lines.append(f"… и ещё {len(rows) - MAX_INLINE_ROWS}")

        attachment = None
        if with_export:
            payload = build_sla_xlsx(rows, title or "SLA по лидам", threshold_minutes)
            attachment = (f"sla_{now.strftime('%Y%m%d_%H%M')}.xlsx", payload)

        html_body = "\n".join(lines)
        return ReportResult(record=record, text=html_to_text(html_body), html=html_body, attachment=attachment)


async def generate_with_fallback(
    generator: ReportGenerator,
    type: str,
    project_ids: list[str] | None,
    window: str,
    title: str | None = None,
) -> tuple[ReportResult, str | None]:
    """
    Пытается собрать отчёт с данными Meta. Если Meta недоступна, собирает
    без рекламных цифр и добавляет предупреждение. Возвращает (отчёт, причина|None).
    """
    try:
        return await generator.generate(type, project_ids, window, include_ad_data=True, title=title), None
    except UpstreamUnavailable as exc:
        reason = f"Meta API недоступен: {exc.args[0]}. Расход не показан."
        log.warning('report_fallback type=%s projects=%s error="%s"', type, project_ids, exc)
    result = await generator.generate(type, project_ids, window, include_ad_data=False, title=title)
    result.html = degraded_prefix(reason) + result.html
    result.text = html_to_text(result.html)
    return result, reason
