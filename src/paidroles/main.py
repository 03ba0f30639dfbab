"""Application entry point: Discord bot and webhook server in one process."""

import asyncio
import logging
import signal
import sys
from typing import Optional

from paidroles.config import get_config
from paidroles.db import get_pool
from paidroles.db.pool import close_pool
from paidroles.db.schema import migrate
from paidroles.discord_bot.bot import PaidRolesBot
from paidroles.payments.server import build_processor, run_server


async def boot(shutdown_event: asyncio.Event) -> None:
    """
    Boot sequence: load config → initialize pool → migrate → run bot and
    server → shutdown.

    Raises:
        SystemExit: On configuration or database errors
    """
    logger = logging.getLogger(__name__)

    try:
        config = get_config()
        logger.info(f"Configuration loaded: env={config.env}")

        pool = await get_pool(config)

        applied = await migrate(pool)
        logger.info(f"Schema up to date ({applied} migration(s) applied)")
    except Exception as e:
        logger.error(f"Boot sequence failed: {e}")
        await close_pool()
        raise SystemExit(1) from e

    bot: Optional[PaidRolesBot] = None
    if config.discord_token.get_secret_value():
        bot = PaidRolesBot()
    else:
        logger.warning("discord_token not configured - running without Discord role sync")

    processor = build_processor(pool, bot, config)

    async def _stop_bot_on_shutdown() -> None:
        await shutdown_event.wait()
        if bot is not None:
            bot.shutdown()

    tasks = [
        run_server(bot, shutdown_event, processor),
        _stop_bot_on_shutdown(),
    ]
    if bot is not None:
        tasks.append(bot.run_until_shutdown())

    try:
        await asyncio.gather(*tasks)
    finally:
        await close_pool()
        logger.info("Application shutdown complete")


def main() -> None:
    """Main entry point with logging configuration and signal handling."""
    config = get_config()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    shutdown_event = asyncio.Event()

    def signal_handler(sig, frame):
        logging.info(f"Received signal {sig}")
        loop.call_soon_threadsafe(shutdown_event.set)

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    try:
        loop.run_until_complete(boot(shutdown_event))
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        sys.exit(0)
    except SystemExit:
        raise
    except Exception as e:
        logging.error(f"Unexpected error: {e}")
        sys.exit(1)
    finally:
        loop.close()


if __name__ == "__main__":
    main()
