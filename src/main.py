import asyncio
import logging

from logging_setup import configure_logging

configure_logging("billing")

from api_server import create_api_app, start_api_server, stop_api_server
from config import load_config, mask_secret
from database import init_db

logger = logging.getLogger(__name__)


async def main() -> None:
    """Точка входу в застосунок."""
    config = load_config()
    if not config.mp_access_token and config.payment_processor != "mock":
        logger.warning("MP_ACCESS_TOKEN is not set: webhooks will be acknowledged but payments cannot be fetched")
    logger.info(
        "Starting billing API (env=%s, processor=%s, token=%s, secret=%s)",
        config.app_env,
        config.payment_processor,
        mask_secret(config.mp_access_token),
        "on" if config.mp_webhook_secret else "off",
    )

    await init_db(config.db_path)

    api_app = create_api_app(config)
    api_runner = await start_api_server(api_app)
    try:
        await asyncio.Event().wait()
    finally:
        await stop_api_server(api_runner)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
