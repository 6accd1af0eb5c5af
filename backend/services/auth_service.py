"""Operator token authentication for scheduler-facing endpoints."""

from __future__ import annotations

import secrets
from typing import Optional

from backend.utils.config import Settings, get_settings


class AuthenticationError(Exception):
    """Base authentication failure."""


class MissingOperatorTokenError(AuthenticationError):
    """Raised when a protected call arrives without credentials."""


class InvalidOperatorTokenError(AuthenticationError):
    """Raised when the provided token does not match the scheduler token."""


class AuthService:
    """Validates bearer tokens against `VENUE_HOLD_SCHEDULER_TOKEN`.

    With no token configured the operator endpoints are open, which keeps
    local runs and single-host cron setups simple.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    @property
    def auth_enabled(self) -> bool:
        return bool(self._settings.scheduler_token)

    def validate_bearer_token(self, bearer_token: Optional[str]) -> None:
        if not self.auth_enabled:
            return
        if not bearer_token:
            raise MissingOperatorTokenError(
                "Authorization header with Bearer token is required"
            )
        expected = self._settings.scheduler_token or ""
        if not secrets.compare_digest(bearer_token, expected):
            raise InvalidOperatorTokenError("Invalid operator token")
