# adpulse/main.py
from __future__ import annotations

import asyncio
import logging
from contextlib import suppress

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

from adpulse.core.config import Settings
from adpulse.core.db import init_db, make_engine, make_sessionmaker
from adpulse.core.logging import setup_logging
from adpulse.core.scheduler import start_scheduler
from adpulse.handlers import setup as setup_handlers
from adpulse.services.ad_platform import CampaignCache, MetaAdsClient
from adpulse.services.engine import SweepEngine
from adpulse.services.messaging import TelegramGateway
from adpulse.services.reports import ReportGenerator


def build_engine(settings: Settings, sessions, bot: Bot) -> SweepEngine:
    cache = CampaignCache(settings.campaign_cache_size, settings.campaign_cache_ttl_seconds)
    ad_client = MetaAdsClient(settings.meta_graph_url, timeout=settings.http_timeout_seconds, cache=cache)
    return SweepEngine(
        sessions=sessions,
        gateway=TelegramGateway(bot, timeout=settings.http_timeout_seconds),
        reports=ReportGenerator(sessions, ad_client, settings.meta_access_token),
        ad_client=ad_client,
        settings=settings,
    )


async def main() -> None:
    settings = Settings.load()
    setup_logging(settings.log_level)

    db = make_engine(settings.database_url)
    await init_db(db)
    sessions = make_sessionmaker(db)

    bot = Bot(
        token=settings.bot_token,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML),
    )
    engine = build_engine(settings, sessions, bot)
    dp = Dispatcher(engine=engine)

    setup_handlers(dp)
    scheduler = start_scheduler(engine)

    logging.info("Bot starting polling…")
    try:
        await dp.start_polling(bot, allowed_updates=dp.resolve_used_update_types())
    finally:
        scheduler.shutdown(wait=False)
        with suppress(Exception):
            await bot.session.close()
        await db.dispose()
        logging.info("Bot stopped.")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
