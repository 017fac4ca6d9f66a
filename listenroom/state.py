"""
In-memory state for rooms and clients

A RoomStore instance is created per application and handed to whatever needs
it; nothing here is module-global.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from .subscriptions import Hub
from .sync import PlaybackState
from .utils import format_last_seen

ROLE_HOST = "host"
ROLE_LISTENER = "listener"

STATUS_ONLINE = "online"
STATUS_IDLE = "idle"
STATUS_OFFLINE = "offline"


@dataclass
class Client:
    client_id: str
    name: str
    last_seen: float
    room_id: Optional[str] = None
    role: Optional[str] = None
    status: str = STATUS_ONLINE
    activity: str = "Active"

    def to_presence(self, now: float, room_name: Optional[str] = None) -> dict:
        return {
            "client_id": self.client_id,
            "name": self.name,
            "status": self.status,
            "activity": self.activity,
            "room_id": self.room_id,
            "room_name": room_name,
            "last_seen": self.last_seen,
            "last_seen_label": format_last_seen(self.last_seen, now),
        }


@dataclass
class Song:
    song_id: str
    title: str
    url: str
    artist: Optional[str] = None
    duration: Optional[float] = None
    lyrics: Optional[str] = None  # SRT text

    def to_dict(self) -> dict:
        return {
            "song_id": self.song_id,
            "title": self.title,
            "url": self.url,
            "artist": self.artist,
            "duration": self.duration,
            "has_lyrics": bool(self.lyrics),
        }


@dataclass
class Request:
    request_id: str
    song: Song
    requested_by: str
    requester_id: str
    created_at: float

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "song": self.song.to_dict(),
            "requested_by": self.requested_by,
            "requester_id": self.requester_id,
            "created_at": self.created_at,
        }


@dataclass
class Reaction:
    reaction_id: str
    emoji: str
    client_id: str
    created_at: float

    def to_dict(self) -> dict:
        return {
            "reaction_id": self.reaction_id,
            "emoji": self.emoji,
            "client_id": self.client_id,
            "created_at": self.created_at,
        }


@dataclass
class Room:
    room_id: str
    name: str
    host_id: Optional[str]
    created_at: float
    last_seen_host: float = 0.0
    playback: PlaybackState = field(default_factory=PlaybackState.stopped)
    current_song: Optional[Song] = None
    queue: List[Song] = field(default_factory=list)
    listeners: Set[str] = field(default_factory=set)
    requests: List[Request] = field(default_factory=list)
    reactions: List[Reaction] = field(default_factory=list)
    songs_played: int = 0


class RoomStore:
    """All rooms and clients known to one server process"""

    def __init__(self, hub: Optional[Hub] = None):
        self.rooms: Dict[str, Room] = {}
        self.clients: Dict[str, Client] = {}
        self.hub = hub or Hub()
