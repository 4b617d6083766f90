# adpulse/handlers/__init__.py
# Бот принимает только нажатия кнопок под своими сообщениями.
from __future__ import annotations

import logging

from aiogram import Dispatcher

from adpulse.handlers import payments

log = logging.getLogger(__name__)


def setup(dp: Dispatcher) -> None:
    dp.include_router(payments.router)
    log.info("handlers_ready updates=%s", ",".join(dp.resolve_used_update_types()))
