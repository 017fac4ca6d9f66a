"""
Room operations: identity, hosting, playback control, queue, requests,
reactions and presence

Every operation takes the store and the caller explicitly. Times are epoch
seconds; playback reference starts are epoch milliseconds (see sync.py).
"""
import logging
import math
import time
from typing import List, Optional, Tuple

from .auth import UserContext
from .lyrics import active_line, parse_srt
from .state import (
    ROLE_HOST, ROLE_LISTENER, STATUS_IDLE, STATUS_OFFLINE, STATUS_ONLINE,
    Client, Reaction, Request, Room, RoomStore, Song,
)
from .sync import PlaybackState, needs_resync, target_position
from .utils import (
    format_time, generate_client_id, generate_client_name, generate_item_id, generate_room_id,
)

logger = logging.getLogger("listenroom.rooms")

REACTIONS = ("🔥", "💕", "✨", "💃", "😵‍💫")
REACTION_TTL = 5.0
REACTION_LIMIT = 15
MAX_NAME_LENGTH = 40


class RoomError(Exception):
    status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnknownClient(RoomError):
    status = 400

    def __init__(self, message: str = "unknown client"):
        super().__init__(message)


class UnknownRoom(RoomError):
    status = 404

    def __init__(self, message: str = "unknown room"):
        super().__init__(message)


class NotHost(RoomError):
    status = 403


class HostConflict(RoomError):
    status = 409


class InvalidRequest(RoomError):
    status = 400


def _clean_name(name, fallback: str) -> str:
    if not isinstance(name, str) or not name.strip():
        return fallback
    return name.strip()[:MAX_NAME_LENGTH]


def _now(now: Optional[float]) -> float:
    return time.time() if now is None else now


def get_client(store: RoomStore, client_id: str) -> Client:
    client = store.clients.get(client_id)
    if client is None:
        raise UnknownClient()
    return client


def get_room(store: RoomStore, room_id: str) -> Room:
    room = store.rooms.get(room_id)
    if room is None:
        raise UnknownRoom()
    return room


def _require_host(room: Room, user: UserContext, action: str) -> None:
    if room.host_id != user.client_id:
        raise NotHost(f"only the host can {action}")


# ============================================================
# IDENTITY
# ============================================================

def identify(store: RoomStore, name: Optional[str] = None, reuse_id: Optional[str] = None,
             now: Optional[float] = None) -> Tuple[Client, bool]:
    """Create or reuse a client identity; returns (client, reused)"""
    now = _now(now)
    if isinstance(reuse_id, str) and reuse_id in store.clients:
        client = store.clients[reuse_id]
        client.name = _clean_name(name, client.name)
        client.last_seen = now
        client.status = STATUS_ONLINE
        logger.info("♻️ Reusing client_id %s (%s)", reuse_id, client.name)
        return client, True

    client = Client(
        client_id=generate_client_id(),
        name=_clean_name(name, generate_client_name()),
        last_seen=now,
    )
    store.clients[client.client_id] = client
    logger.info("👤 New user: %s (%s)", client.name, client.client_id)
    return client, False


# ============================================================
# ROOM MANAGEMENT
# ============================================================

def list_rooms(store: RoomStore, now: Optional[float] = None,
               host_online_window: float = 35.0) -> List[dict]:
    now = _now(now)
    items = []
    for room_id, room in store.rooms.items():
        host = store.clients.get(room.host_id) if room.host_id else None
        items.append({
            "id": room_id,
            "name": room.name,
            "host_id": room.host_id,
            "host_name": host.name if host else None,
            "listener_count": len(room.listeners),
            "host_online": bool(room.last_seen_host and (now - room.last_seen_host) < host_online_window),
            "is_playing": room.playback.is_playing,
            "current_song": room.current_song.title if room.current_song else None,
            "created_at": room.created_at,
        })
    # Newest first
    items.sort(key=lambda r: r["created_at"], reverse=True)
    return items


def create_room(store: RoomStore, user: UserContext, name: Optional[str] = None,
                now: Optional[float] = None) -> Tuple[Room, bool]:
    """Create a new room, or hand back the one this host already has"""
    now = _now(now)
    client = get_client(store, user.client_id)

    for room in store.rooms.values():
        if room.host_id == client.client_id:
            client.room_id = room.room_id
            client.role = ROLE_HOST
            room.last_seen_host = now
            logger.info("♻️ Reusing room %s for host %s", room.room_id, client.name)
            return room, True

    room = Room(
        room_id=generate_room_id(),
        name=_clean_name(name, "My Listening Room"),
        host_id=client.client_id,
        created_at=now,
        last_seen_host=now,
    )
    store.rooms[room.room_id] = room
    client.room_id = room.room_id
    client.role = ROLE_HOST
    logger.info("🎪 Room created: %s by %s (ID: %s)", room.name, client.name, room.room_id)
    return room, False


def join_room(store: RoomStore, user: UserContext, room_id: str, role: Optional[str] = None,
              now: Optional[float] = None) -> Room:
    now = _now(now)
    client = get_client(store, user.client_id)
    room = get_room(store, room_id)
    role = role or ROLE_LISTENER
    if role not in (ROLE_HOST, ROLE_LISTENER):
        raise InvalidRequest(f"unknown role: {role}")

    if role == ROLE_HOST:
        if room.host_id not in (None, client.client_id):
            raise HostConflict("room already has a host")
        room.host_id = client.client_id
        room.last_seen_host = now
    else:
        room.listeners.add(client.client_id)

    previous = store.rooms.get(client.room_id) if client.room_id != room_id else None
    if previous is not None:
        previous.listeners.discard(client.client_id)
        if previous.host_id == client.client_id:
            previous.last_seen_host = 0.0

    client.room_id = room_id
    client.role = role
    client.last_seen = now
    client.status = STATUS_ONLINE
    client.activity = "In a room"
    logger.info("✅ %s (%s) joined %s [Client: %s]", client.name, role, room.name, client.client_id)
    return room


def leave_room(store: RoomStore, user: UserContext, room_id: str,
               now: Optional[float] = None) -> Room:
    now = _now(now)
    client = get_client(store, user.client_id)
    room = get_room(store, room_id)
    room.listeners.discard(client.client_id)
    if room.host_id == client.client_id:
        room.last_seen_host = 0.0
    if client.room_id == room_id:
        client.room_id = None
        client.role = None
    client.last_seen = now
    client.activity = "Browsing"
    logger.info("👋 %s left %s", client.name, room.name)
    return room


def close_room(store: RoomStore, user: UserContext, room_id: str) -> None:
    room = get_room(store, room_id)
    client = get_client(store, user.client_id)
    _require_host(room, user, "close the room")

    del store.rooms[room_id]
    for other in store.clients.values():
        if other.room_id == room_id:
            other.room_id = None
            other.role = None
    logger.info("🛑 Room closed: %s by %s", room_id, client.name)


def room_snapshot(room: Room, now: Optional[float] = None) -> dict:
    """Full room state as sent to clients, with the offset resolved at `now`"""
    now = _now(now)
    now_ms = now * 1000.0
    song = room.current_song
    offset = 0.0
    if room.playback.is_playing:
        offset = target_position(room.playback.reference_start, now_ms, song.duration if song else None)
    lyric = None
    if song and song.lyrics:
        line = active_line(parse_srt(song.lyrics), offset)
        lyric = line.to_dict() if line else None
    return {
        "id": room.room_id,
        "name": room.name,
        "host_id": room.host_id,
        "playback": room.playback.to_dict(),
        "current_song": song.to_dict() if song else None,
        "queue": [s.to_dict() for s in room.queue],
        "listeners": sorted(room.listeners),
        "songs_played": room.songs_played,
        "offset": offset,
        "position_label": format_time(offset),
        "lyric": lyric,
        "server_time": now_ms,
    }


# ============================================================
# PLAYBACK (host only)
# ============================================================

def make_song(data) -> Song:
    """Validate a song payload coming from a client"""
    if not isinstance(data, dict):
        raise InvalidRequest("song must be an object")
    title = data.get("title")
    url = data.get("url")
    if not isinstance(title, str) or not title.strip():
        raise InvalidRequest("song title is required")
    if not isinstance(url, str) or not url.strip():
        raise InvalidRequest("song url is required")
    duration = data.get("duration")
    if duration is not None:
        if isinstance(duration, bool) or not isinstance(duration, (int, float)) or duration < 0:
            raise InvalidRequest("song duration must be a non-negative number")
        duration = float(duration)
    lyrics = data.get("lyrics")
    if lyrics is not None and not isinstance(lyrics, str):
        raise InvalidRequest("song lyrics must be SRT text")
    song_id = data.get("song_id")
    if not isinstance(song_id, str) or not song_id:
        song_id = generate_item_id("song")
    return Song(
        song_id=song_id,
        title=title.strip(),
        url=url.strip(),
        artist=data.get("artist") if isinstance(data.get("artist"), str) else None,
        duration=duration,
        lyrics=lyrics,
    )


def _start(room: Room, song: Song, now: float) -> None:
    room.current_song = song
    room.playback = PlaybackState.started(song.song_id, now * 1000.0)
    room.songs_played += 1


def play_song(store: RoomStore, user: UserContext, room_id: str, song: Song,
              now: Optional[float] = None) -> Room:
    """Set the current song and start it now"""
    room = get_room(store, room_id)
    _require_host(room, user, "control playback")
    _start(room, song, _now(now))
    logger.info("▶️ %s now playing in %s", song.title, room.name)
    return room


def toggle_play(store: RoomStore, user: UserContext, room_id: str,
                now: Optional[float] = None) -> Room:
    """Pause when playing; otherwise restart the reference clock at now"""
    room = get_room(store, room_id)
    _require_host(room, user, "control playback")
    if room.current_song is None:
        raise InvalidRequest("nothing to play")
    if room.playback.is_playing:
        room.playback = room.playback.paused()
    else:
        room.playback = PlaybackState.started(room.current_song.song_id, _now(now) * 1000.0)
    return room


def pause(store: RoomStore, user: UserContext, room_id: str) -> Room:
    room = get_room(store, room_id)
    _require_host(room, user, "control playback")
    room.playback = room.playback.paused()
    return room


def skip_next(store: RoomStore, user: UserContext, room_id: str,
              now: Optional[float] = None) -> Room:
    room = get_room(store, room_id)
    _require_host(room, user, "control playback")
    if not room.queue:
        raise InvalidRequest("queue is empty")
    song = room.queue.pop(0)
    _start(room, song, _now(now))
    logger.info("⏭️ Skipped to %s in %s", song.title, room.name)
    return room


def track_ended(store: RoomStore, user: UserContext, room_id: str,
                now: Optional[float] = None) -> Room:
    """Advance to the queue head, or stop with no current song"""
    room = get_room(store, room_id)
    _require_host(room, user, "control playback")
    if not room.queue:
        room.current_song = None
        room.playback = PlaybackState.stopped()
        return room
    song = room.queue.pop(0)
    _start(room, song, _now(now))
    logger.info("▶️ Up next in %s: %s", room.name, song.title)
    return room


def play_from_queue(store: RoomStore, user: UserContext, room_id: str, song_id: str,
                    now: Optional[float] = None) -> Room:
    room = get_room(store, room_id)
    _require_host(room, user, "control playback")
    for idx, song in enumerate(room.queue):
        if song.song_id == song_id:
            del room.queue[idx]
            _start(room, song, _now(now))
            return room
    raise InvalidRequest("song is not in the queue")


# ============================================================
# QUEUE & REQUESTS
# ============================================================

def add_to_queue(store: RoomStore, user: UserContext, room_id: str, song: Song) -> bool:
    """Append a song; a song already queued is not added twice"""
    room = get_room(store, room_id)
    _require_host(room, user, "edit the queue")
    if any(s.song_id == song.song_id for s in room.queue):
        return False
    room.queue.append(song)
    return True


def request_song(store: RoomStore, user: UserContext, room_id: str, song: Song,
                 now: Optional[float] = None) -> Request:
    room = get_room(store, room_id)
    get_client(store, user.client_id)
    request = Request(
        request_id=generate_item_id("req"),
        song=song,
        requested_by=user.name,
        requester_id=user.client_id,
        created_at=_now(now),
    )
    room.requests.append(request)
    logger.info("💌 %s requested %s in %s", user.name, song.title, room.name)
    return request


def list_requests(store: RoomStore, user: UserContext, room_id: str) -> List[Request]:
    """Pending requests, newest first"""
    room = get_room(store, room_id)
    _require_host(room, user, "see requests")
    return sorted(room.requests, key=lambda r: r.created_at, reverse=True)


def _pop_request(room: Room, request_id: str) -> Request:
    for idx, request in enumerate(room.requests):
        if request.request_id == request_id:
            return room.requests.pop(idx)
    raise InvalidRequest("unknown request")


def approve_request(store: RoomStore, user: UserContext, room_id: str, request_id: str) -> Request:
    room = get_room(store, room_id)
    _require_host(room, user, "approve requests")
    request = _pop_request(room, request_id)
    if not any(s.song_id == request.song.song_id for s in room.queue):
        room.queue.append(request.song)
    logger.info("✅ Request approved: %s", request.song.title)
    return request


def reject_request(store: RoomStore, user: UserContext, room_id: str, request_id: str) -> Request:
    room = get_room(store, room_id)
    _require_host(room, user, "reject requests")
    request = _pop_request(room, request_id)
    logger.info("❌ Request rejected: %s", request.song.title)
    return request


# ============================================================
# REACTIONS
# ============================================================

def send_reaction(store: RoomStore, user: UserContext, room_id: str, emoji: str,
                  now: Optional[float] = None) -> Reaction:
    room = get_room(store, room_id)
    get_client(store, user.client_id)
    if emoji not in REACTIONS:
        raise InvalidRequest("unsupported reaction")
    now = _now(now)
    reaction = Reaction(
        reaction_id=generate_item_id("rx"),
        emoji=emoji,
        client_id=user.client_id,
        created_at=now,
    )
    room.reactions.append(reaction)
    # Old reactions are never shown again
    room.reactions = [r for r in room.reactions if now - r.created_at < REACTION_TTL]
    return reaction


def recent_reactions(room: Room, now: Optional[float] = None) -> List[Reaction]:
    now = _now(now)
    fresh = [r for r in room.reactions if now - r.created_at < REACTION_TTL]
    fresh.sort(key=lambda r: r.created_at, reverse=True)
    return fresh[:REACTION_LIMIT]


# ============================================================
# PRESENCE
# ============================================================

def heartbeat(store: RoomStore, user: UserContext, activity: Optional[str] = None,
              now: Optional[float] = None) -> Client:
    now = _now(now)
    client = get_client(store, user.client_id)
    client.last_seen = now
    client.status = STATUS_ONLINE
    if isinstance(activity, str) and activity.strip():
        client.activity = activity.strip()[:MAX_NAME_LENGTH]
    room = store.rooms.get(client.room_id) if client.room_id else None
    if room is not None and room.host_id == client.client_id:
        room.last_seen_host = now
    return client


def check_drift(store: RoomStore, user: UserContext, position, now: Optional[float] = None) -> Optional[dict]:
    """
    Compare a player's reported position with the room's shared clock.

    Returns None when the client is not in a playing room or the position is
    not a number.
    """
    client = get_client(store, user.client_id)
    room = store.rooms.get(client.room_id) if client.room_id else None
    if room is None or not room.playback.is_playing:
        return None
    if isinstance(position, bool) or not isinstance(position, (int, float)):
        return None
    try:
        position = float(position)
    except OverflowError:
        return None
    if not math.isfinite(position):
        return None
    song = room.current_song
    target = target_position(room.playback.reference_start, _now(now) * 1000.0,
                             song.duration if song else None)
    return {"target": target, "resync": needs_resync(position, target)}


def refresh_presence(store: RoomStore, now: Optional[float] = None,
                     idle_after: float = 180.0) -> List[Client]:
    """Mark online clients without a recent beat as idle; returns the changed ones"""
    now = _now(now)
    changed = []
    for client in store.clients.values():
        if client.status == STATUS_ONLINE and now - client.last_seen > idle_after:
            client.status = STATUS_IDLE
            changed.append(client)
    return changed


def mark_offline(store: RoomStore, user: UserContext, now: Optional[float] = None) -> Client:
    """Offline keeps room_id so others can see where the client was listening"""
    client = get_client(store, user.client_id)
    client.status = STATUS_OFFLINE
    client.last_seen = _now(now)
    room = store.rooms.get(client.room_id) if client.room_id else None
    if room is not None and room.host_id == client.client_id:
        room.last_seen_host = 0.0
    return client


def room_presence(store: RoomStore, room_id: str, now: Optional[float] = None) -> List[dict]:
    now = _now(now)
    room = get_room(store, room_id)
    return [
        c.to_presence(now, room.name)
        for c in store.clients.values()
        if c.room_id == room_id and c.status != STATUS_OFFLINE
    ]


def all_presence(store: RoomStore, now: Optional[float] = None) -> List[dict]:
    now = _now(now)
    order = {STATUS_ONLINE: 0, STATUS_IDLE: 1, STATUS_OFFLINE: 2}
    clients = sorted(store.clients.values(), key=lambda c: order.get(c.status, 3))
    out = []
    for c in clients:
        room = store.rooms.get(c.room_id) if c.room_id else None
        out.append(c.to_presence(now, room.name if room else None))
    return out
