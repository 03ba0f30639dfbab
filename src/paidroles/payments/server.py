"""HTTP server for the payment webhook and the scheduled sweep trigger."""

import asyncio
import logging
import signal
from datetime import timedelta
from typing import Optional

import asyncpg
import discord
from aiohttp import web

from paidroles.config.settings import AppConfig, get_config
from paidroles.db.pool import close_pool, get_pool
from paidroles.db.repositories.postgres import (
    PostgresActivityLogRepository,
    PostgresSubscriptionRepository,
    PostgresTransactionRepository,
    PostgresWebhookEventRepository,
)
from paidroles.discord_bot.gateway import DiscordGateway
from paidroles.errors import StorageError
from paidroles.notifications.dispatcher import NotificationDispatcher
from paidroles.notifications.email import EmailSender
from paidroles.payments.gateway import MidtransClient
from paidroles.payments.sync import EntitlementSync
from paidroles.payments.webhooks import WebhookProcessor, handle_webhook
from paidroles.subscriptions.activity import ActivityLog
from paidroles.subscriptions.sweeper import authorize_trigger, sweep_pending

logger = logging.getLogger(__name__)


def build_processor(
    pool: asyncpg.Pool,
    bot_client: Optional[discord.Client] = None,
    config: Optional[AppConfig] = None,
) -> WebhookProcessor:
    """Wire a WebhookProcessor over PostgreSQL and the live collaborators.

    Without a bot client, role sync and DMs are recorded as failures and
    notifications fall back to email.
    """
    config = config or get_config()
    activity = ActivityLog(PostgresActivityLogRepository(pool))
    discord_gateway = DiscordGateway.from_config(bot_client, config) if bot_client else None

    return WebhookProcessor(
        subscriptions=PostgresSubscriptionRepository(pool),
        transactions=PostgresTransactionRepository(pool),
        events=PostgresWebhookEventRepository(pool),
        activity=activity,
        sync=EntitlementSync(discord_gateway, activity),
        notifier=NotificationDispatcher(discord_gateway, EmailSender(config), activity),
        config=config,
        gateway=MidtransClient(config),
    )


async def expire_pending_endpoint(request: web.Request) -> web.Response:
    """Handle POST /tasks/expire-pending (scheduled sweep trigger)."""
    config: AppConfig = request.app["config"]

    if not authorize_trigger(
        request.headers.get("Authorization"), config.cron_secret.get_secret_value()
    ):
        logger.warning("Rejected sweep trigger with missing or invalid bearer token")
        return web.json_response(
            {"success": False, "error": {"code": "UNAUTHORIZED", "message": "Invalid token"}},
            status=401,
        )

    processor: WebhookProcessor = request.app["processor"]
    try:
        result = await sweep_pending(
            processor.subscriptions,
            processor.activity,
            pending_timeout=timedelta(minutes=config.pending_timeout_minutes),
            batch_size=config.sweep_batch_size,
        )
    except StorageError as e:
        logger.error(f"Sweep failed, store unavailable: {e}")
        return web.json_response(
            {
                "success": False,
                "error": {"code": "STORAGE_UNAVAILABLE", "message": "Storage unavailable"},
            },
            status=503,
        )

    return web.json_response(
        {
            "status": "ok",
            "scanned": result.scanned,
            "cancelled": result.cancelled,
            "skipped": result.skipped,
        }
    )


async def health_endpoint(request: web.Request) -> web.Response:
    """Handle GET /health."""
    return web.json_response({"status": "ok"})


async def create_app(
    bot_client: Optional[discord.Client] = None,
    processor: Optional[WebhookProcessor] = None,
    config: Optional[AppConfig] = None,
) -> web.Application:
    """Create aiohttp application with webhook, sweep and health routes.

    Args:
        bot_client: Optional Discord bot client for role sync and DMs
        processor: Pre-built processor; if omitted one is wired over the
            database pool at startup
        config: Application config (defaults to the process config)

    Returns:
        Configured aiohttp Application
    """
    app = web.Application()
    app["config"] = config or get_config()

    app.router.add_post("/webhooks/payment", handle_webhook)
    app.router.add_post("/tasks/expire-pending", expire_pending_endpoint)
    app.router.add_get("/health", health_endpoint)

    if bot_client:
        app["bot_client"] = bot_client

    if processor is not None:
        app["processor"] = processor
    else:

        async def _wire(app: web.Application) -> None:
            pool = await get_pool()
            app["processor"] = build_processor(pool, app.get("bot_client"), app["config"])

        app.on_startup.append(_wire)

    return app


async def run_server(
    bot_client: Optional[discord.Client] = None,
    shutdown_event: Optional[asyncio.Event] = None,
    processor: Optional[WebhookProcessor] = None,
) -> None:
    """Run webhook server until shutdown signal.

    Args:
        bot_client: Optional Discord bot client for role sync
        shutdown_event: Optional event to signal shutdown
        processor: Optional pre-built processor
    """
    config = get_config()
    app = await create_app(bot_client, processor)

    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, config.webhook_server_host, config.webhook_server_port)
    await site.start()

    logger.info(
        f"Webhook server listening on {config.webhook_server_host}:{config.webhook_server_port}"
    )

    if shutdown_event:
        await shutdown_event.wait()
    else:
        await asyncio.Event().wait()

    logger.info("Shutting down webhook server...")
    await runner.cleanup()


def main() -> None:
    """Run webhook server alone, without the Discord bot.

    Blocks until SIGTERM/SIGINT received.
    """
    config = get_config()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    shutdown_event = asyncio.Event()

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}")
        shutdown_event.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    try:
        loop.run_until_complete(run_server(shutdown_event=shutdown_event))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        loop.run_until_complete(close_pool())
        loop.close()
        logger.info("Webhook server stopped")


if __name__ == "__main__":
    main()
