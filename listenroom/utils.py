"""
Utility functions for ID and name generation, plus display formatting
"""
import math
import random
import string


def generate_client_id(length: int = 9) -> str:
    """Generate a random client ID"""
    alphabet = string.ascii_lowercase + string.digits
    return "client_" + "".join(random.choice(alphabet) for _ in range(length))


def generate_room_id(length: int = 8) -> str:
    """Generate a random room ID (hex)"""
    return "".join(random.choice("abcdef0123456789") for _ in range(length))


def generate_item_id(prefix: str, length: int = 6) -> str:
    """IDs for queue entries, requests and reactions"""
    alphabet = string.ascii_lowercase + string.digits
    return prefix + "_" + "".join(random.choice(alphabet) for _ in range(length))


def generate_client_name() -> str:
    """Generate a random listener name"""
    adjectives = [
        "Mellow", "Groovy", "Electric", "Cosmic", "Lofi", "Neon",
        "Retro", "Stellar", "Jazzy", "Dreamy", "Rhythmic", "Melodic",
        "Sonic", "Midnight"
    ]
    nouns = [
        "Beats", "Rhythm", "Vibes", "Groove", "Tempo", "Harmony",
        "Sound", "Wave", "Flow", "Pulse", "Chords", "Bass", "Echo", "Listener"
    ]
    return random.choice(adjectives) + random.choice(nouns) + str(random.randint(1, 99))


def format_time(seconds) -> str:
    """Track position as m:ss"""
    if not seconds or not isinstance(seconds, (int, float)) or math.isnan(seconds):
        return "0:00"
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


def format_last_seen(last_seen: float, now: float) -> str:
    """Human readable age of a presence timestamp (epoch seconds)"""
    if not last_seen:
        return "just now"
    diff = int(now - last_seen)
    if diff < 10:
        return "just now"
    if diff < 60:
        return f"{diff} seconds ago"
    minutes = diff // 60
    if minutes < 60:
        return f"{minutes} minutes ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} hours ago"
    return f"{hours // 24} days ago"
