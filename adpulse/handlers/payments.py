# adpulse/handlers/payments.py
# Кнопки под напоминанием об оплате: pay:<action>:<project_id>
from __future__ import annotations

import logging

from aiogram import F, Router
from aiogram.types import CallbackQuery

from adpulse.core.clock import utc_now
from adpulse.core.errors import UpstreamUnavailable, ValidationError
from adpulse.services.engine import SweepEngine
from adpulse.services.reminders import apply_reminder_action
from adpulse.ui.keyboards import PAY_PREFIX, parse_pay_callback
from adpulse.ui.messages import esc

log = logging.getLogger(__name__)

router = Router(name=__name__)


@router.callback_query(F.data.startswith(f"{PAY_PREFIX}:"))
async def on_pay_action(cq: CallbackQuery, engine: SweepEngine) -> None:
    """
    engine приходит из workflow data диспетчера (Dispatcher(engine=...)).
    Действовать могут только админы из ADMIN_IDS.
    """
    parsed = parse_pay_callback(cq.data)
    if parsed is None:
        await cq.answer("Некорректная кнопка", show_alert=True)
        return
    action, project_id = parsed

    if cq.from_user.id not in engine.settings.admin_ids:
        log.warning("pay_action_denied user=%s project=%s", cq.from_user.id, project_id)
        await cq.answer("Недостаточно прав", show_alert=True)
        return

    try:
        outcome = await apply_reminder_action(
            engine.sessions,
            project_id,
            action,
            utc_now(),
            follow_up_minutes=engine.settings.follow_up_minutes,
        )
    except ValidationError as e:
        await cq.answer(str(e), show_alert=True)
        return

    await cq.answer(outcome)

    # итог дописываем в само напоминание и убираем кнопки
    original = getattr(cq.message, "html_text", None)
    if not original:
        return
    try:
        await engine.gateway.edit_message(
            str(cq.message.chat.id),
            cq.message.message_id,
            f"{original}\n\n<i>{esc(outcome)}</i>",
        )
    except UpstreamUnavailable as exc:
        log.info('pay_action_edit_skipped project=%s error="%s"', project_id, exc)
