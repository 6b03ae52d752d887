"""
Authentication dependencies.

get_current_coach resolves the bearer token to a Coach row; require_admin
narrows that to admins. "Session coach or admin" ownership rules depend on
the loaded session, so they live in the services.
"""
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from core.database import get_db
from core.security import verify_coach_token
from models import Coach

# auto_error=False so a missing header is a 401, not FastAPI's default 403
bearer = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_coach(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Session = Depends(get_db),
) -> Coach:
    if credentials is None:
        raise _unauthorized("Not authenticated")

    claims = verify_coach_token(credentials.credentials)
    if claims is None:
        raise _unauthorized("Invalid authentication credentials")

    coach = db.get(Coach, claims.coach_id)
    if coach is None:
        raise _unauthorized("Coach not found")

    # Deactivated coaches keep their history but lose API access.
    if not coach.is_active and not coach.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated")

    return coach


def require_admin(current_coach: Coach = Depends(get_current_coach)) -> Coach:
    if not current_coach.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_coach
