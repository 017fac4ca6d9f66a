"""
HTTP and WebSocket handlers for the listening-room server
"""
import hashlib
import json
import logging
import time
from typing import Optional

from aiohttp import web

from . import rooms as ops
from .auth import AuthError, UserContext, mint_session_token, token_from_header, verify_session_token
from .config import Settings
from .lyrics import parse_srt
from .state import RoomStore
from .subscriptions import ROOMS_TOPIC, room_topic
from .sync import RESYNC_THRESHOLD_SECONDS, SYNC_MARGIN_MS

logger = logging.getLogger("listenroom.api")

STORE_KEY = web.AppKey("store", RoomStore)
SETTINGS_KEY = web.AppKey("settings", Settings)


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"ok": False, "error": message}, status=status)


@web.middleware
async def error_middleware(request, handler):
    """Turn domain errors into {"ok": false} JSON responses"""
    try:
        return await handler(request)
    except ops.RoomError as e:
        return _error(e.message, e.status)
    except AuthError as e:
        return _error(str(e), e.status)


async def _json(request: web.Request) -> dict:
    if not request.can_read_body:
        return {}
    try:
        data = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ops.InvalidRequest("invalid JSON body")
    if not isinstance(data, dict):
        raise ops.InvalidRequest("JSON body must be an object")
    return data


def _user(request: web.Request, token: Optional[str] = None) -> UserContext:
    """Resolve the caller from the bearer token (or an explicit token)"""
    token = token or token_from_header(request.headers.get("Authorization"))
    if not token:
        raise AuthError("missing session token")
    user = verify_session_token(request.app[SETTINGS_KEY], token)
    if user.client_id not in request.app[STORE_KEY].clients:
        raise AuthError("unknown session")
    return user


# ============================================================
# REAL-TIME FAN-OUT
# ============================================================

async def broadcast_rooms(app: web.Application) -> None:
    store = app[STORE_KEY]
    if not store.hub.subscriber_count(ROOMS_TOPIC):
        return
    items = ops.list_rooms(store, host_online_window=app[SETTINGS_KEY].host_online_window)
    await store.hub.publish(ROOMS_TOPIC, json.dumps({"type": "rooms", "data": items}))


async def broadcast_room(app: web.Application, room_id: str) -> None:
    store = app[STORE_KEY]
    topic = room_topic(room_id)
    if not store.hub.subscriber_count(topic):
        return
    room = store.rooms.get(room_id)
    if room is None:
        message = {"type": "closed", "room_id": room_id}
    else:
        message = {"type": "room", "data": ops.room_snapshot(room)}
    await store.hub.publish(topic, json.dumps(message))


async def _serve_ws(request: web.Request, topic: str, initial: dict) -> web.WebSocketResponse:
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    store = request.app[STORE_KEY]

    with store.hub.subscribe(topic, ws.send_str):
        logger.info("📡 WebSocket client connected to %s (total: %d)",
                    topic, store.hub.subscriber_count(topic))
        await ws.send_json(initial)
        async for msg in ws:
            if msg.type == web.WSMsgType.TEXT and msg.data == "ping":
                await ws.send_str("pong")
            elif msg.type == web.WSMsgType.ERROR:
                logger.debug("WebSocket error on %s: %s", topic, ws.exception())
    logger.info("📡 WebSocket client disconnected from %s (remaining: %d)",
                topic, store.hub.subscriber_count(topic))
    return ws


async def ws_room_updates(request: web.Request) -> web.WebSocketResponse:
    """Live room list"""
    items = ops.list_rooms(request.app[STORE_KEY],
                           host_online_window=request.app[SETTINGS_KEY].host_online_window)
    return await _serve_ws(request, ROOMS_TOPIC, {"type": "rooms", "data": items})


async def ws_room(request: web.Request) -> web.WebSocketResponse:
    """Live playback/queue state of one room; token in ?token= for browsers"""
    _user(request, request.query.get("token"))
    room = ops.get_room(request.app[STORE_KEY], request.match_info["room_id"])
    return await _serve_ws(request, room_topic(room.room_id),
                           {"type": "room", "data": ops.room_snapshot(room)})


# ============================================================
# CONFIGURATION
# ============================================================

async def serve_config(request: web.Request) -> web.Response:
    """Client-side constants plus the server clock"""
    return web.json_response({
        "sync_margin_ms": SYNC_MARGIN_MS,
        "resync_threshold": RESYNC_THRESHOLD_SECONDS,
        "reactions": list(ops.REACTIONS),
        "server_time": time.time() * 1000.0,
    })


# ============================================================
# USER IDENTITY & PRESENCE
# ============================================================

async def api_identify(request: web.Request) -> web.Response:
    """Create or reuse a client identity and hand out a session token"""
    data = await _json(request)
    client, reused = ops.identify(request.app[STORE_KEY], name=data.get("name"),
                                  reuse_id=data.get("client_id"))
    token = mint_session_token(request.app[SETTINGS_KEY], client.client_id, client.name)
    return web.json_response({
        "ok": True,
        "client_id": client.client_id,
        "name": client.name,
        "token": token,
        "reused": reused,
    })


async def api_presence_beat(request: web.Request) -> web.Response:
    user = _user(request)
    data = await _json(request)
    store = request.app[STORE_KEY]
    ops.heartbeat(store, user, activity=data.get("activity"))
    drift = ops.check_drift(store, user, data.get("position"))
    return web.json_response({"ok": True, "drift": drift})


async def api_presence_offline(request: web.Request) -> web.Response:
    user = _user(request)
    client = ops.mark_offline(request.app[STORE_KEY], user)
    if client.room_id:
        await broadcast_room(request.app, client.room_id)
    await broadcast_rooms(request.app)
    return web.json_response({"ok": True})


async def api_presence(request: web.Request) -> web.Response:
    store = request.app[STORE_KEY]
    ops.refresh_presence(store, idle_after=request.app[SETTINGS_KEY].idle_after)
    return web.json_response({"ok": True, "users": ops.all_presence(store)})


async def api_room_presence(request: web.Request) -> web.Response:
    store = request.app[STORE_KEY]
    ops.refresh_presence(store, idle_after=request.app[SETTINGS_KEY].idle_after)
    users = ops.room_presence(store, request.match_info["room_id"])
    return web.json_response({"ok": True, "users": users})


# ============================================================
# ROOM MANAGEMENT
# ============================================================

async def api_rooms(request: web.Request) -> web.Response:
    """List all rooms with ETag caching"""
    items = ops.list_rooms(request.app[STORE_KEY],
                           host_online_window=request.app[SETTINGS_KEY].host_online_window)

    content = json.dumps(items, sort_keys=True)
    etag = hashlib.md5(content.encode()).hexdigest()

    if request.headers.get("If-None-Match") == etag:
        return web.Response(status=304)

    response = web.json_response({"ok": True, "rooms": items})
    response.headers["ETag"] = etag
    response.headers["Cache-Control"] = "max-age=5"
    return response


async def api_room_create(request: web.Request) -> web.Response:
    user = _user(request)
    data = await _json(request)
    room, existing = ops.create_room(request.app[STORE_KEY], user, data.get("name"))
    if not existing:
        await broadcast_rooms(request.app)
    return web.json_response({"ok": True, "room_id": room.room_id, "existing": existing})


async def api_room_join(request: web.Request) -> web.Response:
    user = _user(request)
    data = await _json(request)
    store = request.app[STORE_KEY]
    previous_room_id = store.clients[user.client_id].room_id
    room = ops.join_room(store, user, request.match_info["room_id"], data.get("role"))
    await broadcast_rooms(request.app)
    await broadcast_room(request.app, room.room_id)
    if previous_room_id and previous_room_id != room.room_id:
        await broadcast_room(request.app, previous_room_id)
    return web.json_response({"ok": True, "name": room.name})


async def api_room_leave(request: web.Request) -> web.Response:
    user = _user(request)
    room = ops.leave_room(request.app[STORE_KEY], user, request.match_info["room_id"])
    await broadcast_rooms(request.app)
    await broadcast_room(request.app, room.room_id)
    return web.json_response({"ok": True})


async def api_room_close(request: web.Request) -> web.Response:
    """Close a room (host only)"""
    user = _user(request)
    room_id = request.match_info["room_id"]
    ops.close_room(request.app[STORE_KEY], user, room_id)
    await broadcast_rooms(request.app)
    await broadcast_room(request.app, room_id)
    return web.json_response({"ok": True})


async def api_room_state(request: web.Request) -> web.Response:
    _user(request)
    room = ops.get_room(request.app[STORE_KEY], request.match_info["room_id"])
    return web.json_response({"ok": True, "room": ops.room_snapshot(room)})


async def api_room_lyrics(request: web.Request) -> web.Response:
    _user(request)
    room = ops.get_room(request.app[STORE_KEY], request.match_info["room_id"])
    song = room.current_song
    lines = parse_srt(song.lyrics) if song and song.lyrics else []
    return web.json_response({"ok": True, "lyrics": [line.to_dict() for line in lines]})


# ============================================================
# PLAYBACK
# ============================================================

async def _playback_changed(request: web.Request, room) -> web.Response:
    await broadcast_room(request.app, room.room_id)
    await broadcast_rooms(request.app)
    return web.json_response({"ok": True, "room": ops.room_snapshot(room)})


async def api_play(request: web.Request) -> web.Response:
    user = _user(request)
    data = await _json(request)
    song = ops.make_song(data.get("song"))
    room = ops.play_song(request.app[STORE_KEY], user, request.match_info["room_id"], song)
    return await _playback_changed(request, room)


async def api_toggle(request: web.Request) -> web.Response:
    user = _user(request)
    room = ops.toggle_play(request.app[STORE_KEY], user, request.match_info["room_id"])
    return await _playback_changed(request, room)


async def api_pause(request: web.Request) -> web.Response:
    user = _user(request)
    room = ops.pause(request.app[STORE_KEY], user, request.match_info["room_id"])
    return await _playback_changed(request, room)


async def api_skip(request: web.Request) -> web.Response:
    user = _user(request)
    room = ops.skip_next(request.app[STORE_KEY], user, request.match_info["room_id"])
    return await _playback_changed(request, room)


async def api_ended(request: web.Request) -> web.Response:
    user = _user(request)
    room = ops.track_ended(request.app[STORE_KEY], user, request.match_info["room_id"])
    return await _playback_changed(request, room)


async def api_play_from_queue(request: web.Request) -> web.Response:
    user = _user(request)
    room = ops.play_from_queue(request.app[STORE_KEY], user, request.match_info["room_id"],
                               request.match_info["song_id"])
    return await _playback_changed(request, room)


# ============================================================
# QUEUE, REQUESTS & REACTIONS
# ============================================================

async def api_queue_add(request: web.Request) -> web.Response:
    user = _user(request)
    data = await _json(request)
    song = ops.make_song(data.get("song"))
    room_id = request.match_info["room_id"]
    added = ops.add_to_queue(request.app[STORE_KEY], user, room_id, song)
    if added:
        await broadcast_room(request.app, room_id)
    return web.json_response({"ok": True, "added": added, "song_id": song.song_id})


async def api_request_song(request: web.Request) -> web.Response:
    user = _user(request)
    data = await _json(request)
    song = ops.make_song(data.get("song"))
    req = ops.request_song(request.app[STORE_KEY], user, request.match_info["room_id"], song)
    return web.json_response({"ok": True, "request": req.to_dict()})


async def api_requests(request: web.Request) -> web.Response:
    user = _user(request)
    reqs = ops.list_requests(request.app[STORE_KEY], user, request.match_info["room_id"])
    return web.json_response({"ok": True, "requests": [r.to_dict() for r in reqs]})


async def api_request_approve(request: web.Request) -> web.Response:
    user = _user(request)
    room_id = request.match_info["room_id"]
    req = ops.approve_request(request.app[STORE_KEY], user, room_id, request.match_info["request_id"])
    await broadcast_room(request.app, room_id)
    return web.json_response({"ok": True, "request": req.to_dict()})


async def api_request_reject(request: web.Request) -> web.Response:
    user = _user(request)
    req = ops.reject_request(request.app[STORE_KEY], user, request.match_info["room_id"],
                             request.match_info["request_id"])
    return web.json_response({"ok": True, "request": req.to_dict()})


async def api_reaction(request: web.Request) -> web.Response:
    user = _user(request)
    data = await _json(request)
    room_id = request.match_info["room_id"]
    reaction = ops.send_reaction(request.app[STORE_KEY], user, room_id, data.get("emoji"))
    store = request.app[STORE_KEY]
    await store.hub.publish(room_topic(room_id), json.dumps({"type": "reaction", "data": reaction.to_dict()}))
    return web.json_response({"ok": True, "reaction": reaction.to_dict()})


async def api_reactions(request: web.Request) -> web.Response:
    _user(request)
    room = ops.get_room(request.app[STORE_KEY], request.match_info["room_id"])
    return web.json_response({"ok": True, "reactions": [r.to_dict() for r in ops.recent_reactions(room)]})
