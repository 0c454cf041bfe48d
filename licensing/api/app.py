"""
FastAPI application factory for the licensing API.

Authentication is handled upstream: whatever authenticates the request must
set request.state.principal_id before these routes run.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI

from licensing.api.errors import ErrorHandlerMiddleware
from licensing.api.routes import bot, license, settings
from licensing.bot_control import Launcher, StatusHook
from licensing.cache import BotStatusCache

logger = logging.getLogger(__name__)


def create_app(
    *,
    bot_status_cache: Optional[BotStatusCache] = None,
    on_status_change: Optional[StatusHook] = None,
    bot_launcher: Optional[Launcher] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    app = FastAPI(title="Licensing API")
    app.state.bot_status_cache = bot_status_cache or BotStatusCache()
    app.state.on_status_change = on_status_change
    app.state.bot_launcher = bot_launcher
    app.state.clock = clock

    app.add_middleware(ErrorHandlerMiddleware)
    app.include_router(bot.router)
    app.include_router(settings.router)
    app.include_router(license.router)

    logger.info(
        "Licensing API created",
        extra={"bot_status_cache": "redis" if app.state.bot_status_cache.uses_redis else "memory"},
    )
    return app
