"""Bearer session tokens for the describe API.

Tokens only identify the account. Role, active flag and credit balance are
read from the database on every request, so an admin change applies to
sessions that are already open.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from config import settings


SESSION_TOKEN_TYPE = "ids_session"
SESSION_ISSUER = "image-description-api"


@dataclass(frozen=True)
class SessionClaims:
    user_id: str
    expires_at: int


def create_session_token(user_id: str, expires_hours: Optional[int] = None) -> Dict[str, Any]:
    issued_at = datetime.now(timezone.utc)
    lifetime = timedelta(hours=max(int(expires_hours or settings.JWT_EXPIRATION_HOURS or 24), 1))
    expires_at = int((issued_at + lifetime).timestamp())

    token = jwt.encode(
        {
            "iss": SESSION_ISSUER,
            "sub": user_id,
            "type": SESSION_TOKEN_TYPE,
            "iat": int(issued_at.timestamp()),
            "exp": expires_at,
        },
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )
    return {"token": token, "token_type": "bearer", "expires_at": expires_at}


def decode_session_token(token: str) -> SessionClaims:
    """Verify signature, expiry, issuer and token type.

    Raises ``ValueError`` with a client-safe message on any failure.
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            issuer=SESSION_ISSUER,
        )
    except JWTError as exc:
        raise ValueError("Invalid or expired session token.") from exc

    if payload.get("type") != SESSION_TOKEN_TYPE:
        raise ValueError("Invalid session token type.")
    user_id = str(payload.get("sub") or "").strip()
    if not user_id:
        raise ValueError("Session token missing subject.")
    return SessionClaims(user_id=user_id, expires_at=int(payload["exp"]))
