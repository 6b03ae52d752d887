"""
API exceptions.

Every rejection carries a machine-readable error_code so the coach app can
tell "cap reached" from "not qualified" from "already submitted". Extra
fields (e.g. offline_count / max_offline) are rendered next to it by the
handler in main.py:

    {"detail": "...", "error_code": "offline_cap_reached", "offline_count": 6, "max_offline": 6}
"""
from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class APIException(HTTPException):

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.detail, "error_code": self.error_code, **self.extra}


class NotFoundError(APIException):

    def __init__(self, resource: str, identifier: str, error_code: str = "not_found"):
        super().__init__(status.HTTP_404_NOT_FOUND, f"{resource} not found: {identifier}", error_code)


class ValidationError(APIException):
    """Input that passed schema validation but is still unusable (e.g. an empty upload)."""

    def __init__(self, detail: str, field: Optional[str] = None):
        code = f"VALIDATION_ERROR_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(status.HTTP_422_UNPROCESSABLE_ENTITY, detail, code)


class ForbiddenError(APIException):

    def __init__(self, detail: str = "Access denied", error_code: str = "forbidden",
                 extra: Optional[Dict[str, Any]] = None):
        super().__init__(status.HTTP_403_FORBIDDEN, detail, error_code, extra=extra)


class PreconditionError(APIException):
    """The resource is in the wrong state for the requested transition (400 unless stated)."""

    def __init__(self, detail: str, error_code: str, status_code: int = status.HTTP_400_BAD_REQUEST,
                 extra: Optional[Dict[str, Any]] = None):
        super().__init__(status_code, detail, error_code, extra=extra)


class OfflineCapReachedError(ForbiddenError):
    """The enrollment already has its maximum share of offline sessions."""

    def __init__(self, offline_count: int, max_offline: int, max_percent: int):
        super().__init__(
            detail=(
                f"Offline session limit reached ({offline_count}/{max_offline}). "
                f"Maximum {max_percent}% of sessions can be offline."
            ),
            error_code="offline_cap_reached",
            extra={"offline_count": offline_count, "max_offline": max_offline, "max_percent": max_percent},
        )
