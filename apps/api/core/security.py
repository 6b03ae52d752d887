"""
Bearer token handling for coaches and admins.

Tokens are issued by the account service and signed with the shared
SECRET_KEY (HS256). Claims this API relies on:

    sub   coach id (UUID string)
    role  "coach" or "admin" (informational; the coach row is authoritative)
    exp   expiry

issue_coach_token exists for ops tooling and tests.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from jose import JWTError, jwt

from core.config import settings

ALGORITHM = "HS256"
DEFAULT_TOKEN_TTL = timedelta(days=30)

if len(settings.SECRET_KEY) < 32:
    raise ValueError(
        "SECRET_KEY must be at least 32 characters. "
        "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
    )


@dataclass(frozen=True)
class TokenClaims:
    coach_id: UUID
    role: str


def issue_coach_token(coach_id: UUID, role: str = "coach", ttl: Optional[timedelta] = None) -> str:
    expires_at = datetime.now(timezone.utc) + (ttl or DEFAULT_TOKEN_TTL)
    claims = {"sub": str(coach_id), "role": role, "exp": expires_at}
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=ALGORITHM)


def verify_coach_token(token: str) -> Optional[TokenClaims]:
    """Claims of a valid, unexpired token; None for anything else."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None

    try:
        coach_id = UUID(str(payload.get("sub")))
    except ValueError:
        return None
    return TokenClaims(coach_id=coach_id, role=payload.get("role") or "coach")
