import asyncio
import logging

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

from storefront.bot.handlers import router
from storefront.config import require_bot_settings, settings
from storefront.db.sqlite import Database, init_db


async def main() -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    require_bot_settings(settings)

    db = Database(settings.db_path).open()
    init_db(db)

    bot = Bot(token=settings.bot_token, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
    dp = Dispatcher()
    dp.include_router(router)

    try:
        # db reaches handlers as a keyword argument
        await dp.start_polling(bot, db=db)
    finally:
        db.close()

if __name__ == "__main__":
    asyncio.run(main())
