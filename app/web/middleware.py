from __future__ import annotations

from typing import Dict, Type

from aiohttp import web
from loguru import logger

from app.services.errors import (
    AlreadyDrawn,
    DuplicateExclusion,
    InfeasibleConstraints,
    InsufficientMembers,
    LockedError,
    NotFound,
    PermissionDenied,
    RateLimited,
    ServiceError,
    Unauthenticated,
)

ERROR_STATUS: Dict[Type[ServiceError], int] = {
    Unauthenticated: 401,
    PermissionDenied: 403,
    NotFound: 404,
    AlreadyDrawn: 409,
    LockedError: 409,
    DuplicateExclusion: 409,
    InfeasibleConstraints: 422,
    RateLimited: 429,
}


def status_for(error: ServiceError) -> int:
    for error_type in type(error).__mro__:
        if error_type in ERROR_STATUS:
            return ERROR_STATUS[error_type]
    return 400


def error_body(error: ServiceError) -> dict:
    body = {"error": error.code, "message": str(error)}
    if isinstance(error, (InfeasibleConstraints, InsufficientMembers)):
        body["member_count"] = error.member_count
    if isinstance(error, InfeasibleConstraints):
        body["exclusion_count"] = error.exclusion_count
    return body


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except ServiceError as exc:
        status = status_for(exc)
        logger.bind(path=request.path, status=status).info("Request rejected: {error}", error=str(exc))
        return web.json_response(error_body(exc), status=status)
    except web.HTTPException:
        raise
    except Exception as exc:
        logger.bind(path=request.path).exception("Unhandled API error: {error}", error=str(exc))
        return web.json_response({"error": "internal", "message": "Something went wrong."}, status=500)
