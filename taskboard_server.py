#!/usr/bin/env python3
"""
Task Manager web server.

Serves the task page, the login page and the protected /admin area, with the
access gate running in front of every request.
"""

import asyncio
import logging

from aiohttp import web
from dotenv import load_dotenv

from taskboard.config import ServerSettings, StoreConfig
from taskboard.web_app import create_app

load_dotenv()

logger = logging.getLogger(__name__)


def configure_logging(log_level: str) -> None:
    """Apply the configured level to the root logger and the taskboard package logger."""
    level = log_level.upper()
    logging.basicConfig(level=level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    # The package logger sets its own level on import
    logging.getLogger("taskboard").setLevel(level)


async def main():
    """Main function to start the task manager server"""
    settings = ServerSettings.from_env()
    configure_logging(settings.log_level)

    try:
        config = StoreConfig.from_env()
    except ValueError as e:
        logger.error(f"Invalid store configuration: {e}")
        raise SystemExit(1)

    app = await create_app(config, settings)
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, settings.host, settings.port)
    await site.start()

    logger.info(f"Task Manager server started on port {settings.port}")
    logger.info(f"Store: {config.url}")
    logger.info("Available endpoints:")
    logger.info(f"  - Tasks: http://{settings.host}:{settings.port}/")
    logger.info(f"  - Login: http://{settings.host}:{settings.port}/login")
    logger.info(f"  - Admin: http://{settings.host}:{settings.port}/admin")
    logger.info(f"  - Health Check: http://{settings.host}:{settings.port}/health")

    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await runner.cleanup()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Shutting down task manager server...")
