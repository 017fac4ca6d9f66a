"""
Session JWT minting and verification
"""
import time
from dataclasses import dataclass
from typing import Optional

try:
    import jwt
except ImportError:
    raise ImportError("pyjwt is required: pip install pyjwt")

from .config import Settings

ISSUER = "listenroom"


class AuthError(Exception):
    status = 401


@dataclass(frozen=True)
class UserContext:
    """The authenticated caller, passed explicitly into room operations"""
    client_id: str
    name: str


def mint_session_token(settings: Settings, client_id: str, name: Optional[str] = None) -> str:
    """
    Mint a session token for an identified client

    Args:
        settings: server settings holding the signing secret and TTL
        client_id: unique client identifier (token subject)
        name: display name (optional)

    Returns:
        JWT token string
    """
    now = int(time.time())
    payload = {
        "iss": ISSUER,
        "sub": client_id,
        "name": name or client_id,
        "nbf": now - 5,  # 5s clock skew tolerance
        "iat": now,
        "exp": now + settings.token_ttl,
    }
    return jwt.encode(payload, settings.secret, algorithm="HS256")


def verify_session_token(settings: Settings, token: str) -> UserContext:
    try:
        payload = jwt.decode(
            token,
            settings.secret,
            algorithms=["HS256"],
            issuer=ISSUER,
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthError("session expired")
    except jwt.InvalidTokenError:
        raise AuthError("invalid session token")
    return UserContext(client_id=payload["sub"], name=payload.get("name") or payload["sub"])


def token_from_header(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
