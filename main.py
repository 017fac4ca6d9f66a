#!/usr/bin/env python3
"""
Listen-along server - entry point
REST + WebSocket fan-out + rate limiting
"""
import logging
import socket
import time
from typing import Optional

from aiohttp import web

from listenroom.api import (
    SETTINGS_KEY, STORE_KEY, error_middleware, serve_config,
    api_identify, api_presence, api_presence_beat, api_presence_offline,
    api_rooms, api_room_create, api_room_join, api_room_leave, api_room_close,
    api_room_state, api_room_lyrics, api_room_presence,
    api_play, api_toggle, api_pause, api_skip, api_ended, api_play_from_queue,
    api_queue_add, api_request_song, api_requests, api_request_approve, api_request_reject,
    api_reaction, api_reactions, ws_room_updates, ws_room,
)
from listenroom.config import Settings
from listenroom.state import RoomStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("listenroom")


def make_rate_limit_middleware(limit: int, window: float = 60.0):
    """Per-IP limit of `limit` requests per `window` seconds; static assets are exempt"""
    hits = {}
    last_sweep = [time.time()]

    @web.middleware
    async def rate_limit_middleware(request, handler):
        ip = request.remote
        now = time.time()

        if request.path.startswith('/static'):
            return await handler(request)

        # Forget clients that have been quiet for a whole window
        if now - last_sweep[0] >= window:
            for stale in [k for k, ts in hits.items() if not ts or now - ts[-1] >= window]:
                del hits[stale]
            last_sweep[0] = now

        recent = [t for t in hits.get(ip, ()) if now - t < window]

        if len(recent) >= limit:
            hits[ip] = recent
            logger.warning("Rate limit exceeded for %s", ip)
            return web.json_response(
                {"ok": False, "error": "Rate limit exceeded"},
                status=429
            )

        recent.append(now)
        hits[ip] = recent
        return await handler(request)

    rate_limit_middleware.hits = hits
    return rate_limit_middleware


def create_app(settings: Optional[Settings] = None, store: Optional[RoomStore] = None) -> web.Application:
    """Create and configure the aiohttp application"""
    settings = settings or Settings.from_env()
    app = web.Application(middlewares=[
        make_rate_limit_middleware(settings.rate_limit),
        error_middleware,
    ])
    app[SETTINGS_KEY] = settings
    app[STORE_KEY] = store or RoomStore()

    async def index(request):
        index_file = settings.static_dir / 'index.html'
        if not index_file.is_file():
            raise web.HTTPNotFound()
        return web.FileResponse(index_file)

    # HTML routes
    app.router.add_get("/", index)
    app.router.add_get("/r/{room_id}", index)

    # API routes
    app.router.add_get("/config", serve_config)
    app.router.add_post("/user/identify", api_identify)
    app.router.add_get("/presence", api_presence)
    app.router.add_post("/presence/beat", api_presence_beat)
    app.router.add_post("/presence/offline", api_presence_offline)

    app.router.add_get("/rooms", api_rooms)
    app.router.add_post("/room/create", api_room_create)
    app.router.add_get("/room/{room_id}", api_room_state)
    app.router.add_post("/room/{room_id}/join", api_room_join)
    app.router.add_post("/room/{room_id}/leave", api_room_leave)
    app.router.add_post("/room/{room_id}/close", api_room_close)
    app.router.add_get("/room/{room_id}/lyrics", api_room_lyrics)
    app.router.add_get("/room/{room_id}/presence", api_room_presence)

    # Playback (host only)
    app.router.add_post("/room/{room_id}/play", api_play)
    app.router.add_post("/room/{room_id}/toggle", api_toggle)
    app.router.add_post("/room/{room_id}/pause", api_pause)
    app.router.add_post("/room/{room_id}/skip", api_skip)
    app.router.add_post("/room/{room_id}/ended", api_ended)
    app.router.add_post("/room/{room_id}/queue/{song_id}/play", api_play_from_queue)

    # Queue, requests, reactions
    app.router.add_post("/room/{room_id}/queue", api_queue_add)
    app.router.add_post("/room/{room_id}/request", api_request_song)
    app.router.add_get("/room/{room_id}/requests", api_requests)
    app.router.add_post("/room/{room_id}/request/{request_id}/approve", api_request_approve)
    app.router.add_post("/room/{room_id}/request/{request_id}/reject", api_request_reject)
    app.router.add_post("/room/{room_id}/reaction", api_reaction)
    app.router.add_get("/room/{room_id}/reactions", api_reactions)

    # WebSockets for real-time updates
    app.router.add_get("/ws/rooms", ws_room_updates)
    app.router.add_get("/ws/room/{room_id}", ws_room)

    if settings.static_dir.is_dir():
        app.router.add_static('/static', settings.static_dir, name='static')

    logger.info("🎧 Listen-along server ready • WebSocket enabled")
    return app


def get_local_ip():
    """Get local network IP address"""
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except OSError:
        return "localhost"


def main():
    settings = Settings.from_env()
    app = create_app(settings)
    local_ip = get_local_ip()

    logger.info("🚀 Starting server on %s:%s", settings.host, settings.port)
    logger.info("💡 Access at: http://%s:%s", local_ip, settings.port)

    web.run_app(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
