from __future__ import annotations

from typing import Optional

from aiohttp import WSMsgType, web
from loguru import logger

from app.db import ChatRole, get_session
from app.services import chat, credentials, raffle_flow
from app.services.assignment import DEFAULT_MAX_ATTEMPTS
from app.services.errors import RelayError, ValidationError
from app.services.relay import AnonymousRelay, error_frame

RELAY_KEY = web.AppKey("relay", AnonymousRelay)
DRAW_ATTEMPTS_KEY = web.AppKey("draw_max_attempts", int)

MAX_FRAME_SIZE = 512 * 1024
HEARTBEAT_SECONDS = 30.0

routes = web.RouteTableDef()


def _raffle_id(request: web.Request) -> int:
    return int(request.match_info["raffle_id"])


def _credential(request: web.Request) -> Optional[str]:
    # Browsers cannot set headers on WebSocket upgrades, hence the query fallback.
    return credentials.parse_bearer(request.headers.get("Authorization")) or request.query.get("token")


def _current_user_id(request: web.Request) -> int:
    with get_session() as session:
        return credentials.resolve_user(session, _credential(request)).id


async def _json_body(request: web.Request) -> dict:
    try:
        body = await request.json()
    except ValueError as exc:
        raise ValidationError("Request body must be JSON.") from exc
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object.")
    return body


def _int_field(body: dict, name: str) -> int:
    value = body.get(name)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer.")
    return value


@routes.post(r"/raffles/{raffle_id:\d+}/draw")
async def draw_handler(request: web.Request) -> web.Response:
    user_id = _current_user_id(request)
    result = raffle_flow.draw(
        _raffle_id(request),
        user_id,
        max_attempts=request.app.get(DRAW_ATTEMPTS_KEY, DEFAULT_MAX_ATTEMPTS),
    )
    return web.json_response(
        {
            "raffle_id": result.raffle_id,
            "is_drawn": True,
            "drawn_at": result.drawn_at.isoformat() if result.drawn_at else None,
            "member_count": result.member_count,
        }
    )


@routes.delete(r"/raffles/{raffle_id:\d+}")
async def delete_raffle_handler(request: web.Request) -> web.Response:
    user_id = _current_user_id(request)
    raffle_id = _raffle_id(request)
    raffle_flow.delete_raffle(raffle_id, user_id)
    await request.app[RELAY_KEY].drop_raffle(raffle_id)
    return web.json_response({"message": "Raffle deleted"})


@routes.get(r"/raffles/{raffle_id:\d+}/assignment")
async def my_assignment_handler(request: web.Request) -> web.Response:
    user_id = _current_user_id(request)
    with get_session() as session:
        assignment = raffle_flow.get_my_assignment(session, _raffle_id(request), user_id)
    return web.json_response(
        {"receiver_id": assignment.receiver_id, "receiver_name": assignment.receiver_name}
    )


@routes.get(r"/raffles/{raffle_id:\d+}/exclusions")
async def list_exclusions_handler(request: web.Request) -> web.Response:
    user_id = _current_user_id(request)
    with get_session() as session:
        exclusions = raffle_flow.list_exclusions(session, _raffle_id(request), user_id)
    return web.json_response(
        [
            {
                "id": exclusion.id,
                "member_a": {"id": exclusion.member_a_id, "name": exclusion.member_a_name},
                "member_b": {"id": exclusion.member_b_id, "name": exclusion.member_b_name},
            }
            for exclusion in exclusions
        ]
    )


@routes.post(r"/raffles/{raffle_id:\d+}/exclusions")
async def add_exclusion_handler(request: web.Request) -> web.Response:
    user_id = _current_user_id(request)
    body = await _json_body(request)
    pair = raffle_flow.add_exclusion(
        _raffle_id(request),
        user_id,
        _int_field(body, "member_a_id"),
        _int_field(body, "member_b_id"),
    )
    return web.json_response(
        {"id": pair.id, "member_a_id": pair.member_a, "member_b_id": pair.member_b},
        status=201,
    )


@routes.delete(r"/raffles/{raffle_id:\d+}/exclusions/{exclusion_id:\d+}")
async def remove_exclusion_handler(request: web.Request) -> web.Response:
    user_id = _current_user_id(request)
    raffle_flow.remove_exclusion(_raffle_id(request), user_id, int(request.match_info["exclusion_id"]))
    return web.json_response({"message": "Exclusion deleted"})


def _history(request: web.Request, role: ChatRole) -> web.Response:
    user_id = _current_user_id(request)
    raffle_id = _raffle_id(request)
    with get_session() as session:
        member = raffle_flow.require_member(session, raffle_id, user_id)
        messages = chat.history(session, raffle_id, member.id, role)
    return web.json_response(messages)


@routes.get(r"/raffles/{raffle_id:\d+}/chat/giftee")
async def chat_with_giftee_handler(request: web.Request) -> web.Response:
    return _history(request, ChatRole.SANTA)


@routes.get(r"/raffles/{raffle_id:\d+}/chat/santa")
async def chat_with_santa_handler(request: web.Request) -> web.Response:
    return _history(request, ChatRole.GIFTEE)


@routes.get(r"/raffles/{raffle_id:\d+}/chat/unread")
async def unread_handler(request: web.Request) -> web.Response:
    user_id = _current_user_id(request)
    raffle_id = _raffle_id(request)
    with get_session() as session:
        member = raffle_flow.require_member(session, raffle_id, user_id)
        counts = chat.unread_counts(session, raffle_id, member.id)
    return web.json_response(counts)


@routes.get(r"/raffles/{raffle_id:\d+}/chat/ws")
async def chat_socket_handler(request: web.Request) -> web.StreamResponse:
    relay = request.app[RELAY_KEY]
    raffle_id = _raffle_id(request)
    # Rejected before the upgrade so clients see a plain 401.
    member_id = relay.authenticate(raffle_id, _credential(request))

    ws = web.WebSocketResponse(heartbeat=HEARTBEAT_SECONDS, max_msg_size=MAX_FRAME_SIZE)
    await ws.prepare(request)
    relay.register(raffle_id, member_id, ws)
    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                try:
                    await relay.handle_frame(raffle_id, member_id, msg.data)
                except RelayError as exc:
                    logger.bind(raffle_id=raffle_id, member_id=member_id).info(
                        "Frame rejected: {error}", error=str(exc)
                    )
                    await ws.send_json(error_frame(exc))
                except Exception as exc:
                    logger.bind(raffle_id=raffle_id, member_id=member_id).exception(
                        "Relay frame failed: {error}", error=str(exc)
                    )
                    await ws.send_json({"error": "internal", "message": "Message could not be delivered."})
            elif msg.type == WSMsgType.BINARY:
                logger.bind(raffle_id=raffle_id, member_id=member_id).info("Binary frame rejected")
                await ws.send_json(error_frame(ValidationError("Frames must be JSON text.")))
            elif msg.type == WSMsgType.ERROR:
                logger.bind(raffle_id=raffle_id, member_id=member_id).warning(
                    "Relay socket error: {error}", error=str(ws.exception())
                )
    finally:
        relay.unregister(raffle_id, member_id, ws)
    return ws
