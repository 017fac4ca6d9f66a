"""
Server settings read from environment variables
"""
import os
import secrets
from dataclasses import dataclass, field
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class Settings:
    host: str = "0.0.0.0"
    port: int = 3000
    static_dir: Path = Path("./static")
    # Random per process unless configured; tokens then die with the server.
    secret: str = field(default_factory=lambda: secrets.token_hex(32))
    token_ttl: int = 12 * 60 * 60
    rate_limit: int = 100
    host_online_window: float = 35.0
    idle_after: float = 3 * 60.0

    @classmethod
    def from_env(cls) -> "Settings":
        settings = cls(
            host=os.environ.get("SERVER_HOST", "0.0.0.0"),
            port=_env_int("PORT", 3000),
            static_dir=Path(os.environ.get("LISTENROOM_STATIC_DIR", "./static")),
            token_ttl=_env_int("LISTENROOM_TOKEN_TTL", 12 * 60 * 60),
            rate_limit=_env_int("LISTENROOM_RATE_LIMIT", 100),
        )
        secret = os.environ.get("LISTENROOM_SECRET")
        if secret:
            settings.secret = secret
        return settings
