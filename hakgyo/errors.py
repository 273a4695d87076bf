"""
hakgyo.errors — Gamification Error Taxonomy
=============================================

Four categories surface at the coordinator boundary:

* **validation**  — unrecognized event, malformed metadata (never mutates state)
* **not_found**   — unknown user (detected after lock acquisition, before writes)
* **contention**  — another request for the same user holds the guard (retryable)
* **persistence** — storage/transaction failure (full rollback guaranteed)

Each exception carries the public message shown to callers.  Internal
details stay in the log, never in ``public_message``.
"""

from __future__ import annotations

__all__ = [
    "GamificationError",
    "InvalidEventError",
    "InvalidMetadataError",
    "PersistenceCancelledError",
    "PersistenceError",
    "RequestInProgressError",
    "UserNotFoundError",
]


class GamificationError(Exception):
    """Base class for every error the reward pipeline reports to callers."""

    kind: str = "error"
    http_status: int = 500
    retryable: bool = False
    public_message: str = "Failed to process gamification event"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_message)


class InvalidEventError(GamificationError):
    kind = "validation"
    http_status = 400
    public_message = "Invalid or missing event type"

    def __init__(self, event_name: object = None) -> None:
        self.event_name = event_name
        super().__init__(f"Invalid or missing event type: {event_name!r}")


class InvalidMetadataError(GamificationError):
    kind = "validation"
    http_status = 400
    public_message = "Metadata must be a JSON object"


class UserNotFoundError(GamificationError):
    kind = "not_found"
    http_status = 404
    public_message = "User not found"

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class RequestInProgressError(GamificationError):
    """Another reward request for the same user is still running."""

    kind = "contention"
    http_status = 429
    retryable = True
    public_message = "Request already in progress"

    def __init__(self, user_id: str, retry_after: int = 1) -> None:
        self.user_id = user_id
        self.retry_after = retry_after
        super().__init__(f"Request already in progress for user {user_id}")


class PersistenceError(GamificationError):
    kind = "persistence"
    http_status = 500
    public_message = "Failed to process gamification event"


class PersistenceCancelledError(PersistenceError):
    """The caller's deadline or cancel signal fired before commit."""
