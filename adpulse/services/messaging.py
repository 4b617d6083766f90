# adpulse/services/messaging.py
from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from aiogram import Bot
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramAPIError
from aiogram.types import BufferedInputFile, InlineKeyboardMarkup

from adpulse.core.errors import UpstreamUnavailable
from adpulse.services.routing import DeliveryRoute

log = logging.getLogger(__name__)


class TelegramGateway:
    """
    Доставка в Telegram через aiogram. Каждый вызов ограничен по времени;
    таймаут и ошибки API превращаются в UpstreamUnavailable.
    """

    def __init__(self, bot: Bot, timeout: float = 10.0) -> None:
        self.bot = bot
        self.timeout = timeout

    async def _call(self, method: str, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise UpstreamUnavailable("telegram", f"{method} timed out") from exc
        except TelegramAPIError as exc:
            raise UpstreamUnavailable("telegram", f"{method}: {exc}") from exc

    async def send_message(
        self,
        chat_id: str,
        text: str,
        thread_id: int | None = None,
        keyboard: InlineKeyboardMarkup | None = None,
    ) -> int:
        msg = await self._call(
            "send_message",
            self.bot.send_message(
                chat_id=chat_id,
                text=text,
                message_thread_id=thread_id,
                reply_markup=keyboard,
                parse_mode=ParseMode.HTML,
            ),
        )
        return msg.message_id

    async def edit_message(
        self,
        chat_id: str,
        message_id: int,
        text: str,
        keyboard: InlineKeyboardMarkup | None = None,
    ) -> None:
        await self._call(
            "edit_message",
            self.bot.edit_message_text(
                text=text,
                chat_id=chat_id,
                message_id=message_id,
                reply_markup=keyboard,
                parse_mode=ParseMode.HTML,
            ),
        )

    async def send_document(
        self,
        chat_id: str,
        filename: str,
        payload: bytes,
        caption: str | None = None,
        thread_id: int | None = None,
    ) -> int:
        msg = await self._call(
            "send_document",
            self.bot.send_document(
                chat_id=chat_id,
                document=BufferedInputFile(payload, filename=filename),
                caption=caption,
                message_thread_id=thread_id,
                parse_mode=ParseMode.HTML,
            ),
        )
        return msg.message_id

    async def send_many(
        self,
        routes: Iterable[DeliveryRoute],
        text: str,
        keyboard: InlineKeyboardMarkup | None = None,
    ) -> int:
        """Шлёт по очереди во все маршруты; сбой одного чата не мешает остальным."""
        delivered = 0
        for route in routes:
            try:
                await self.send_message(route.chat_id, text, thread_id=route.thread_id, keyboard=keyboard)
            except UpstreamUnavailable as exc:
                log.warning('delivery_failed chat_id=%s error="%s"', route.chat_id, exc)
                continue
            delivered += 1
        return delivered
