"""Error taxonomy shared by every component.

Domain errors derive from ``MiniSocialError`` and are recoverable by the
caller. ``PersistenceError`` is deliberately outside that hierarchy: once a
snapshot rewrite fails the in-memory state and the file may disagree.
"""

from __future__ import annotations

import enum
from typing import Optional


class MiniSocialError(Exception):
    """Base class for typed, caller-recoverable failures."""


class ValidationError(MiniSocialError):
    pass


class ConflictError(MiniSocialError):
    pass


class NotFoundError(MiniSocialError):
    pass


class AuthError(MiniSocialError):
    pass


class UnverifiedError(AuthError):
    """Login attempted before the preferred channel was verified."""

    def __init__(self, user_id: int, channel: str) -> None:
        super().__init__("verification required")
        self.user_id = user_id
        self.channel = channel


class VerificationFailure(str, enum.Enum):
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    MISMATCH = "mismatch"


_FAILURE_MESSAGES = {
    VerificationFailure.NOT_FOUND: "code not found",
    VerificationFailure.EXPIRED: "code expired",
    VerificationFailure.MISMATCH: "invalid code",
}


class VerificationError(MiniSocialError):
    def __init__(self, reason: VerificationFailure, detail: Optional[str] = None) -> None:
        super().__init__(detail or _FAILURE_MESSAGES[reason])
        self.reason = reason


class PersistenceError(Exception):
    """Snapshot could not be written; treat as fatal."""
