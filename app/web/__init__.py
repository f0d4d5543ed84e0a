from __future__ import annotations

from typing import Optional

from aiohttp import web

from app.services.assignment import DEFAULT_MAX_ATTEMPTS
from app.services.relay import AnonymousRelay
from app.web.handlers import DRAW_ATTEMPTS_KEY, RELAY_KEY, routes
from app.web.middleware import error_middleware


def create_app(
    relay: Optional[AnonymousRelay] = None,
    draw_max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> web.Application:
    app = web.Application(middlewares=[error_middleware])
    app[RELAY_KEY] = relay or AnonymousRelay()
    app[DRAW_ATTEMPTS_KEY] = draw_max_attempts
    app.add_routes(routes)
    return app


__all__ = ["create_app", "RELAY_KEY"]
