# tests/test_api.py

from __future__ import annotations

import pytest

import main
from listenroom.config import Settings
from main import create_app

from .helpers import SONG_A, SONG_B, auth, login


async def _room_with_guest(client):
    host = await login(client, "Host")
    guest = await login(client, "Guest")
    resp = await client.post("/room/create", json={"name": "Chill"}, headers=auth(host))
    room_id = (await resp.json())["room_id"]
    resp = await client.post(f"/room/{room_id}/join", json={"role": "listener"}, headers=auth(guest))
    assert resp.status == 200
    return host, guest, room_id


async def test_identify_issues_token_and_reuses_client(client) -> None:
    body = await login(client, "Ayu")
    assert body["ok"] is True
    assert body["name"] == "Ayu"
    assert body["token"]

    resp = await client.post("/user/identify", json={"client_id": body["client_id"]})
    again = await resp.json()
    assert again["reused"] is True
    assert again["client_id"] == body["client_id"]


async def test_requests_without_token_are_rejected(client) -> None:
    resp = await client.post("/room/create", json={"name": "x"})
    assert resp.status == 401
    assert (await resp.json())["ok"] is False

    resp = await client.post("/room/create", json={}, headers={"Authorization": "Bearer nope"})
    assert resp.status == 401


async def test_invalid_json_body(client) -> None:
    host = await login(client, "Host")
    resp = await client.post("/room/create", data="{not json", headers={
        **auth(host), "Content-Type": "application/json",
    })
    assert resp.status == 400
    assert (await resp.json())["error"] == "invalid JSON body"


async def test_unknown_room_is_404(client) -> None:
    host = await login(client, "Host")
    resp = await client.post("/room/deadbeef/join", json={}, headers=auth(host))
    assert resp.status == 404


async def test_host_plays_and_guest_reads_offset(client) -> None:
    host, guest, room_id = await _room_with_guest(client)

    resp = await client.post(f"/room/{room_id}/play", json={"song": SONG_A}, headers=auth(guest))
    assert resp.status == 403

    resp = await client.post(f"/room/{room_id}/play", json={"song": SONG_A}, headers=auth(host))
    assert resp.status == 200

    resp = await client.get(f"/room/{room_id}", headers=auth(guest))
    room = (await resp.json())["room"]
    assert room["playback"]["is_playing"] is True
    assert room["playback"]["track_id"] == "a"
    assert 0.0 <= room["offset"] < 5.0

    resp = await client.post(f"/room/{room_id}/pause", headers=auth(host))
    room = (await resp.json())["room"]
    assert room["playback"]["is_playing"] is False
    assert room["playback"]["reference_start"] is None
    assert room["offset"] == 0.0


async def test_queue_skip_and_ended(client) -> None:
    host, _, room_id = await _room_with_guest(client)

    for song in (SONG_A, SONG_B):
        resp = await client.post(f"/room/{room_id}/queue", json={"song": song}, headers=auth(host))
        assert (await resp.json())["added"] is True

    resp = await client.post(f"/room/{room_id}/skip", headers=auth(host))
    assert (await resp.json())["room"]["current_song"]["song_id"] == "a"

    resp = await client.post(f"/room/{room_id}/ended", headers=auth(host))
    assert (await resp.json())["room"]["current_song"]["song_id"] == "b"

    resp = await client.post(f"/room/{room_id}/skip", headers=auth(host))
    assert resp.status == 400
    assert (await resp.json())["error"] == "queue is empty"


async def test_guest_request_flow(client) -> None:
    host, guest, room_id = await _room_with_guest(client)

    resp = await client.post(f"/room/{room_id}/request", json={"song": SONG_B}, headers=auth(guest))
    request_id = (await resp.json())["request"]["request_id"]

    resp = await client.get(f"/room/{room_id}/requests", headers=auth(guest))
    assert resp.status == 403

    resp = await client.get(f"/room/{room_id}/requests", headers=auth(host))
    assert [r["request_id"] for r in (await resp.json())["requests"]] == [request_id]

    resp = await client.post(f"/room/{room_id}/request/{request_id}/approve", headers=auth(host))
    assert resp.status == 200

    resp = await client.get(f"/room/{room_id}", headers=auth(host))
    assert [s["song_id"] for s in (await resp.json())["room"]["queue"]] == ["b"]


async def test_rooms_etag(client) -> None:
    await _room_with_guest(client)
    resp = await client.get("/rooms")
    body = await resp.json()
    assert body["rooms"][0]["listener_count"] == 1
    etag = resp.headers["ETag"]

    resp = await client.get("/rooms", headers={"If-None-Match": etag})
    assert resp.status == 304


async def test_close_room_host_only(client) -> None:
    host, guest, room_id = await _room_with_guest(client)
    resp = await client.post(f"/room/{room_id}/close", headers=auth(guest))
    assert resp.status == 403
    resp = await client.post(f"/room/{room_id}/close", headers=auth(host))
    assert resp.status == 200
    resp = await client.get("/rooms")
    assert (await resp.json())["rooms"] == []


async def test_room_websocket_receives_playback_updates(client) -> None:
    host, guest, room_id = await _room_with_guest(client)

    ws = await client.ws_connect(f"/ws/room/{room_id}?token={guest['token']}")
    initial = await ws.receive_json()
    assert initial["type"] == "room"
    assert initial["data"]["playback"]["is_playing"] is False

    await ws.send_str("ping")
    assert await ws.receive_str() == "pong"

    await client.post(f"/room/{room_id}/play", json={"song": SONG_A}, headers=auth(host))
    update = await ws.receive_json()
    assert update["type"] == "room"
    assert update["data"]["playback"]["is_playing"] is True

    await client.post(f"/room/{room_id}/reaction", json={"emoji": "🔥"}, headers=auth(guest))
    reaction = await ws.receive_json()
    assert reaction["type"] == "reaction"
    assert reaction["data"]["emoji"] == "🔥"

    await ws.close()


async def test_room_websocket_requires_token(client) -> None:
    _, _, room_id = await _room_with_guest(client)
    resp = await client.get(f"/ws/room/{room_id}")
    assert resp.status == 401


async def test_rooms_websocket_sends_list(client) -> None:
    ws = await client.ws_connect("/ws/rooms")
    initial = await ws.receive_json()
    assert initial == {"type": "rooms", "data": []}

    host = await login(client, "Host")
    await client.post("/room/create", json={"name": "Live"}, headers=auth(host))
    update = await ws.receive_json()
    assert [r["name"] for r in update["data"]] == ["Live"]
    await ws.close()


async def test_reactions_and_lyrics_endpoints(client) -> None:
    host, guest, room_id = await _room_with_guest(client)
    resp = await client.post(f"/room/{room_id}/reaction", json={"emoji": "nope"}, headers=auth(guest))
    assert resp.status == 400

    await client.post(f"/room/{room_id}/reaction", json={"emoji": "💃"}, headers=auth(guest))
    resp = await client.get(f"/room/{room_id}/reactions", headers=auth(host))
    assert [r["emoji"] for r in (await resp.json())["reactions"]] == ["💃"]

    song = {**SONG_A, "lyrics": "1\n00:00:00,000 --> 00:00:10,000\nOpening line\n"}
    await client.post(f"/room/{room_id}/play", json={"song": song}, headers=auth(host))
    resp = await client.get(f"/room/{room_id}/lyrics", headers=auth(guest))
    assert (await resp.json())["lyrics"] == [{"start": 0.0, "end": 10.0, "text": "Opening line"}]


async def test_presence_endpoints(client) -> None:
    host, guest, room_id = await _room_with_guest(client)
    resp = await client.post("/presence/beat", json={"activity": "Vibing"}, headers=auth(guest))
    assert resp.status == 200

    resp = await client.get(f"/room/{room_id}/presence")
    users = {u["name"]: u for u in (await resp.json())["users"]}
    assert users["Guest"]["activity"] == "Vibing"

    await client.post("/presence/offline", headers=auth(guest))
    resp = await client.get("/presence")
    statuses = [u["status"] for u in (await resp.json())["users"]]
    assert statuses[-1] == "offline"


async def test_config_exposes_sync_constants(client) -> None:
    resp = await client.get("/config")
    body = await resp.json()
    assert body["sync_margin_ms"] == 100
    assert body["resync_threshold"] == 1.5
    assert "🔥" in body["reactions"]


async def test_rate_limit(aiohttp_client, tmp_path) -> None:
    settings = Settings(static_dir=tmp_path, secret="s", rate_limit=3)
    client = await aiohttp_client(create_app(settings))
    statuses = [(await client.get("/config")).status for _ in range(4)]
    assert statuses == [200, 200, 200, 429]


@pytest.mark.parametrize("path", ["/", "/r/abc"])
async def test_index_missing_is_404(client, path) -> None:
    resp = await client.get(path)
    assert resp.status == 404


async def test_joining_another_room_updates_the_old_one(client) -> None:
    host, guest, room_a = await _room_with_guest(client)
    other = await login(client, "Other")
    resp = await client.post("/room/create", json={"name": "Second"}, headers=auth(other))
    room_b = (await resp.json())["room_id"]

    ws = await client.ws_connect(f"/ws/room/{room_a}?token={host['token']}")
    initial = await ws.receive_json()
    assert guest["client_id"] in initial["data"]["listeners"]

    resp = await client.post(f"/room/{room_b}/join", json={}, headers=auth(guest))
    assert resp.status == 200
    update = await ws.receive_json()
    assert update["type"] == "room"
    assert update["data"]["listeners"] == []
    await ws.close()

    resp = await client.get("/rooms")
    counts = {r["id"]: r["listener_count"] for r in (await resp.json())["rooms"]}
    assert counts == {room_a: 0, room_b: 1}


async def test_presence_beat_reports_drift(client) -> None:
    host, guest, room_id = await _room_with_guest(client)

    resp = await client.post("/presence/beat", json={"position": 1.0}, headers=auth(guest))
    assert (await resp.json())["drift"] is None

    await client.post(f"/room/{room_id}/play", json={"song": SONG_A}, headers=auth(host))
    resp = await client.post("/presence/beat", json={"position": 120.0}, headers=auth(guest))
    drift = (await resp.json())["drift"]
    assert drift["resync"] is True
    assert 0.0 <= drift["target"] < 5.0


async def test_identify_with_client_id_can_rename(client) -> None:
    body = await login(client, "Before")
    resp = await client.post("/user/identify", json={"client_id": body["client_id"], "name": "After"})
    again = await resp.json()
    assert again["reused"] is True
    assert again["name"] == "After"


async def test_rate_limit_forgets_quiet_clients(monkeypatch) -> None:
    clock = [1000.0]
    monkeypatch.setattr(main.time, "time", lambda: clock[0])
    middleware = main.make_rate_limit_middleware(limit=5, window=60.0)

    async def handler(request):
        return "ok"

    def request(ip):
        return type("Req", (), {"remote": ip, "path": "/rooms"})()

    assert await middleware(request("10.0.0.1"), handler) == "ok"
    assert set(middleware.hits) == {"10.0.0.1"}

    clock[0] += 120
    assert await middleware(request("10.0.0.2"), handler) == "ok"
    assert set(middleware.hits) == {"10.0.0.2"}
