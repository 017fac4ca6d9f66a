# tests/helpers.py

from __future__ import annotations

T0 = 1_700_000_000.0

SONG_A = {"song_id": "a", "title": "Song A", "url": "https://cdn.test/a.mp3", "duration": 180}
SONG_B = {"song_id": "b", "title": "Song B", "url": "https://cdn.test/b.mp3", "duration": 200}


async def login(client, name: str) -> dict:
    """Identify against the running app; returns the JSON body incl. token."""
    resp = await client.post("/user/identify", json={"name": name})
    assert resp.status == 200
    return await resp.json()


def auth(body: dict) -> dict:
    return {"Authorization": f"Bearer {body['token']}"}
