# adpulse/ui/keyboards.py
from __future__ import annotations

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup

# callback_data: pay:<action>:<project_id>
PAY_PREFIX = "pay"


def pay_callback(action: str, project_id: str) -> str:
    return f"{PAY_PREFIX}:{action}:{project_id}"


def parse_pay_callback(data: str | None) -> tuple[str, str] | None:
    parts = (data or "").split(":", 2)
    if len(parts) != 3 or parts[0] != PAY_PREFIX or not parts[2]:
        return None
    return parts[1], parts[2]


def reminder_keyboard(project_id: str) -> InlineKeyboardMarkup:
    """
    Под напоминанием: способ оплаты (по 2 в ряд) + подтвердить / отклонить.
    """
    return InlineKeyboardMarkup(inline_keyboard=[
        [
            InlineKeyboardButton(text="💳 Перевод", callback_data=pay_callback("transfer", project_id)),
            InlineKeyboardButton(text="💵 Наличные", callback_data=pay_callback("cash", project_id)),
        ],
        [
            InlineKeyboardButton(text="✅ Оплачено", callback_data=pay_callback("paid", project_id)),
            InlineKeyboardButton(text="✖️ Отклонить", callback_data=pay_callback("decline", project_id)),
        ],
    ])


def confirmation_keyboard(project_id: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [
            InlineKeyboardButton(text="✅ Деньги пришли", callback_data=pay_callback("paid", project_id)),
            InlineKeyboardButton(text="✖️ Отклонить", callback_data=pay_callback("decline", project_id)),
        ],
    ])

