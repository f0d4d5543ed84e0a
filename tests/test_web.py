import asyncio

import aiohttp
import pytest
from aiohttp.test_utils import TestClient, TestServer

from app.services import raffle_flow
from app.services.relay import AnonymousRelay
from app.web import RELAY_KEY, create_app


def run_with_client(scenario, limiter):
    async def runner():
        app = create_app(AnonymousRelay(limiter=limiter), draw_max_attempts=50)
        async with TestClient(TestServer(app)) as client:
            await scenario(client)

    asyncio.run(runner())


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def test_draw_endpoint(make_raffle, issue_token, generous_limiter):
    raffle = make_raffle(4)
    owner = issue_token(raffle.owner_id)
    member = issue_token(raffle.user_ids[1])

    async def scenario(client):
        response = await client.post(f"/raffles/{raffle.raffle_id}/draw")
        assert response.status == 401

        response = await client.post(f"/raffles/{raffle.raffle_id}/draw", headers=auth(member))
        assert response.status == 403

        response = await client.post(f"/raffles/{raffle.raffle_id}/draw", headers=auth(owner))
        assert response.status == 200
        body = await response.json()
        assert body["is_drawn"] is True
        assert body["member_count"] == 4
        assert body["drawn_at"]

        response = await client.post(f"/raffles/{raffle.raffle_id}/draw", headers=auth(owner))
        assert response.status == 409
        assert (await response.json())["error"] == "already_drawn"

        response = await client.post("/raffles/9999/draw", headers=auth(owner))
        assert response.status == 404

    run_with_client(scenario, generous_limiter)


def test_infeasible_draw_reports_counts(make_raffle, issue_token, generous_limiter):
    raffle = make_raffle(3)
    a, b, _ = raffle.member_ids
    raffle_flow.add_exclusion(raffle.raffle_id, raffle.owner_id, a, b)
    owner = issue_token(raffle.owner_id)

    async def scenario(client):
        response = await client.post(f"/raffles/{raffle.raffle_id}/draw", headers=auth(owner))
        assert response.status == 422
        body = await response.json()
        assert body["error"] == "infeasible_constraints"
        assert body["member_count"] == 3
        assert body["exclusion_count"] == 1

    run_with_client(scenario, generous_limiter)


def test_exclusion_endpoints(make_raffle, issue_token, generous_limiter):
    raffle = make_raffle(4)
    a, b, c, d = raffle.member_ids
    owner = issue_token(raffle.owner_id)
    path = f"/raffles/{raffle.raffle_id}/exclusions"

    async def scenario(client):
        response = await client.post(path, json={"member_a_id": b, "member_b_id": a}, headers=auth(owner))
        assert response.status == 201
        created = await response.json()

        response = await client.post(path, json={"member_a_id": a, "member_b_id": b}, headers=auth(owner))
        assert response.status == 409

        response = await client.post(path, json={"member_a_id": c, "member_b_id": c}, headers=auth(owner))
        assert response.status == 400

        response = await client.post(path, json={"member_a_id": "x"}, headers=auth(owner))
        assert response.status == 400

        response = await client.post(path, data="nope", headers=auth(owner))
        assert response.status == 400

        response = await client.get(path, headers=auth(owner))
        assert response.status == 200
        listed = await response.json()
        assert [item["id"] for item in listed] == [created["id"]]
        assert listed[0]["member_a"]["id"] == a

        response = await client.delete(f"{path}/{created['id']}", headers=auth(owner))
        assert response.status == 200

        response = await client.post(path, json={"member_a_id": c, "member_b_id": d}, headers=auth(owner))
        assert response.status == 201
        await client.post(f"/raffles/{raffle.raffle_id}/draw", headers=auth(owner))

        response = await client.post(path, json={"member_a_id": a, "member_b_id": d}, headers=auth(owner))
        assert response.status == 409
        assert (await response.json())["error"] == "locked"

    run_with_client(scenario, generous_limiter)


def test_assignment_and_history_endpoints(make_raffle, issue_token, generous_limiter):
    raffle = make_raffle(3)
    member_token = issue_token(raffle.user_ids[1])
    base = f"/raffles/{raffle.raffle_id}"

    async def scenario(client):
        response = await client.get(f"{base}/assignment", headers=auth(member_token))
        assert response.status == 400
        assert (await response.json())["error"] == "not_drawn"

        result = raffle_flow.draw(raffle.raffle_id, raffle.owner_id, seed=3)

        response = await client.get(f"{base}/assignment", headers=auth(member_token))
        assert response.status == 200
        body = await response.json()
        assert body["receiver_id"] == result.assignments[raffle.member_ids[1]]

        for path in ("chat/giftee", "chat/santa"):
            response = await client.get(f"{base}/{path}", headers=auth(member_token))
            assert response.status == 200
            assert await response.json() == []

        response = await client.get(f"{base}/chat/unread", headers=auth(member_token))
        assert await response.json() == {"unread_from_giftee": 0, "unread_from_santa": 0, "total": 0}

        response = await client.get(f"{base}/chat/giftee", params={"token": member_token})
        assert response.status == 200

    run_with_client(scenario, generous_limiter)


def test_websocket_relay(make_raffle, issue_token, generous_limiter):
    raffle = make_raffle(4)
    result = raffle_flow.draw(raffle.raffle_id, raffle.owner_id, seed=12)
    santa = raffle.member_ids[0]
    giftee = result.assignments[santa]
    outsider = next(m for m in raffle.member_ids if m not in (santa, giftee))
    tokens = {
        member: issue_token(user)
        for member, user in zip(raffle.member_ids, raffle.user_ids)
    }
    path = f"/raffles/{raffle.raffle_id}/chat/ws"

    async def scenario(client):
        santa_ws = await client.ws_connect(path, headers=auth(tokens[santa]))
        giftee_ws = await client.ws_connect(path, headers=auth(tokens[giftee]))
        outsider_ws = await client.ws_connect(path, params={"token": tokens[outsider]})

        await santa_ws.send_json({"content": "What should I get you?", "role": "santa"})
        received = await giftee_ws.receive_json(timeout=5)
        echo = await santa_ws.receive_json(timeout=5)
        assert received == echo
        assert received["content"] == "What should I get you?"
        assert received["sender_role"] == "santa"

        await santa_ws.send_json({"content": "", "role": "santa"})
        error = await santa_ws.receive_json(timeout=5)
        assert error["error"] == "validation_error"

        with pytest.raises(asyncio.TimeoutError):
            await outsider_ws.receive_json(timeout=0.2)

        response = await client.get(
            f"/raffles/{raffle.raffle_id}/chat/unread", headers=auth(tokens[giftee])
        )
        assert (await response.json())["unread_from_santa"] == 1

        for ws in (santa_ws, giftee_ws, outsider_ws):
            await ws.close()

        with pytest.raises(aiohttp.WSServerHandshakeError) as excinfo:
            await client.ws_connect(path, headers=auth("forged"))
        assert excinfo.value.status == 401

    run_with_client(scenario, generous_limiter)


def test_binary_frame_is_answered_with_error(make_raffle, issue_token, generous_limiter):
    raffle = make_raffle(3)
    result = raffle_flow.draw(raffle.raffle_id, raffle.owner_id, seed=3)
    santa = raffle.member_ids[0]
    token = issue_token(raffle.user_ids[0])
    path = f"/raffles/{raffle.raffle_id}/chat/ws"

    async def scenario(client):
        ws = await client.ws_connect(path, headers=auth(token))
        await ws.send_bytes(b'{"content":"hi","role":"santa"}')
        error = await ws.receive_json(timeout=5)
        assert error["error"] == "validation_error"

        await ws.send_json({"content": "still here", "role": "santa"})
        echo = await ws.receive_json(timeout=5)
        assert echo["content"] == "still here"
        assert echo["giftee_id"] == result.assignments[santa]
        await ws.close()

    run_with_client(scenario, generous_limiter)


def test_delete_raffle_closes_relay_sockets(make_raffle, issue_token, generous_limiter):
    raffle = make_raffle(3)
    raffle_flow.draw(raffle.raffle_id, raffle.owner_id, seed=5)
    owner = issue_token(raffle.owner_id)
    member = issue_token(raffle.user_ids[1])
    path = f"/raffles/{raffle.raffle_id}/chat/ws"

    async def scenario(client):
        relay = client.server.app[RELAY_KEY]
        member_ws = await client.ws_connect(path, headers=auth(member))
        assert relay.is_online(raffle.raffle_id, raffle.member_ids[1])

        response = await client.delete(f"/raffles/{raffle.raffle_id}", headers=auth(member))
        assert response.status == 403

        response = await client.delete(f"/raffles/{raffle.raffle_id}", headers=auth(owner))
        assert response.status == 200

        msg = await member_ws.receive(timeout=5)
        assert msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED)
        assert member_ws.closed
        assert not relay.is_online(raffle.raffle_id, raffle.member_ids[1])

        response = await client.get(f"/raffles/{raffle.raffle_id}/assignment", headers=auth(owner))
        assert response.status == 404

    run_with_client(scenario, generous_limiter)
