# adpulse/ui/messages.py
# Тексты сообщений (HTML parse mode).
from __future__ import annotations

import html
import math
import re
from datetime import datetime, timedelta

BILLING_STATUS_LABELS = {
    "active": "🟢 Активен",
    "pending": "🟡 Ожидает",
    "overdue": "🔴 Просрочен",
    "blocked": "⛔ Заблокирован",
}

METHOD_LABELS = {
    "transfer": "перевод",
    "cash": "наличные",
}

WARNING_MARK = "⚠️"

_TAG_RE = re.compile(r"<[^>]+>")


def esc(value) -> str:
    return html.escape(str(value if value is not None else ""), quote=False)


def html_to_text(value: str) -> str:
    return html.unescape(_TAG_RE.sub("", value))


def format_money(amount: float, currency: str = "USD") -> str:
    if float(amount).is_integer():
        return f"{amount:,.0f} {currency}".replace(",", " ")
    return f"{amount:,.2f} {currency}".replace(",", " ")


def format_date(value: datetime | None) -> str:
    if value is None:
        return "—"
    return value.strftime("%d.%m.%Y")


def format_duration_minutes(minutes_total: float) -> str:
    minutes = max(1, round(minutes_total))
    if minutes >= 1440:
        days, hours = minutes // 1440, (minutes % 1440) // 60
        return f"{days} дн {hours} ч" if hours else f"{days} дн"
    if minutes >= 60:
        hours, rest = minutes // 60, minutes % 60
        return f"{hours} ч {rest} мин" if rest else f"{hours} ч"
    return f"{minutes} мин"


def billing_label(status: str | None) -> str:
    return BILLING_STATUS_LABELS.get(status or "", status or "—")


def with_report_id(body_html: str, report_id: str) -> str:
    return f"{body_html}\n\nID отчёта: <code>{esc(report_id)}</code>"


def degraded_prefix(reason: str) -> str:
    return f"{WARNING_MARK} {esc(reason)}\n\n"


def payment_reminder_text(project, status: str, due: datetime, now: datetime) -> str:
    diff = due - now
    lines = ["💰 <b>Напоминание об оплате</b>"]
    lines.append(f"Проект: <b>{esc(project.name)}</b>")
    lines.append(f"Оплата запланирована на: <b>{format_date(due)}</b>")
    if status == "upcoming":
        remaining = max(1, math.ceil(diff / timedelta(days=1)))
        lines.append(f"До оплаты осталось: {remaining} дн.")
    else:
        overdue_days = max(1, math.ceil(abs(diff) / timedelta(days=1)))
        lines.append(f"Просрочка: {overdue_days} дн.")
    lines.append(f"Биллинг: {esc(billing_label(project.billing_status))}")
    if project.tariff and project.tariff > 0:
        lines.append(f"Тариф: {esc(format_money(project.tariff, project.currency or 'USD'))}")
    lines.append("")
    lines.append("Подтвердите оплату или выберите способ, которым клиент платит.")
    return "\n".join(lines)


def admin_confirmation_text(project, method: str | None, due: datetime | None) -> str:
    lines = ["🔔 <b>Ждём подтверждения оплаты</b>"]
    lines.append(f"Проект: <b>{esc(project.name)}</b>")
    if due is not None:
        lines.append(f"Дата оплаты: <b>{format_date(due)}</b>")
    if method:
        lines.append(f"Способ: {esc(METHOD_LABELS.get(method, method))}")
    lines.append("")
    lines.append("Клиент сообщил об оплате. Подтвердите поступление средств.")
    return "\n".join(lines)


def auto_off_text(project) -> str:
    return "\n".join([
        "⛔ <b>Обслуживание приостановлено</b>",
        f"Проект: <b>{esc(project.name)}</b>",
        f"Оплата не поступила с {format_date(project.next_payment_date)}.",
        "Автоотчёты и платные функции отключены до поступления оплаты.",
    ])


def lead_reminder_text(project, lead, wait_minutes: float) -> str:
    lines = [
        "⏰ <b>Напоминание по лиду</b>",
        f"Проект: <b>{esc(project.name)}</b>",
        f"Заявка: <b>{esc(lead.name)}</b>",
    ]
    if lead.phone:
        lines.append(f"Телефон: <code>{esc(lead.phone)}</code>")
    lines.append(f"Источник: {esc(lead.source)}")
    if lead.created_at is not None:
        lines.append(f"Создан: {lead.created_at.strftime('%d.%m.%Y %H:%M')} UTC")
    lines.append(f"Ожидает: {esc(format_duration_minutes(wait_minutes))}")
    lines.append("")
    lines.append("Обновите статус лида, чтобы снять напоминание.")
    return "\n".join(lines)


def billing_alert_text(project, status: str) -> str:
    return "\n".join([
        "‼️ <b>Проблема оплаты</b>",
        f"Проект: <b>{esc(project.name)}</b>",
        f"Статус: {esc(billing_label(status))}",
    ])


def spend_anomaly_text(project, current: float, percent: float, currency: str) -> str:
    return "\n".join([
        "⚠️ <b>Аномальный расход</b>",
        f"Проект: <b>{esc(project.name)}</b>",
        f"Сегодня: {current:.2f} {esc(currency)} (↑{percent:.0f}% к прошлому замеру)",
    ])


def paused_campaigns_text(project, campaigns, limit: int = 10) -> str:
    lines = ["🚸 <b>Кампании на паузе &gt;2ч</b>", f"Проект: <b>{esc(project.name)}</b>"]
    for c in list(campaigns)[:limit]:
        lines.append(f"• {esc(c.name)} ({esc(c.id)})")
    return "\n".join(lines)
