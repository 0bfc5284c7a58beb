from __future__ import annotations

from datetime import datetime, timezone


REQUEST_PENDING = "pending"
REQUEST_PARTIALLY_UPLOADED = "partially_uploaded"
REQUEST_COMPLETED = "completed"
REQUEST_EXPIRED = "expired"
REQUEST_REVOKED = "revoked"

REQUEST_STATUSES = (
    REQUEST_PENDING,
    REQUEST_PARTIALLY_UPLOADED,
    REQUEST_COMPLETED,
    REQUEST_EXPIRED,
    REQUEST_REVOKED,
)
OPEN_REQUEST_STATUSES = (REQUEST_PENDING, REQUEST_PARTIALLY_UPLOADED)
TERMINAL_REQUEST_STATUSES = (REQUEST_COMPLETED, REQUEST_EXPIRED, REQUEST_REVOKED)

FILE_QUEUED = "queued"
FILE_UPLOADING = "uploading"
FILE_STORED = "stored"
FILE_FAILED = "failed"

FILE_STATUSES = (FILE_QUEUED, FILE_UPLOADING, FILE_STORED, FILE_FAILED)

# Files in these states count against the request quota.
QUOTA_FILE_STATUSES = (FILE_QUEUED, FILE_UPLOADING, FILE_STORED)

_REQUEST_TRANSITIONS: dict[str, frozenset[str]] = {
    REQUEST_PENDING: frozenset(
        {REQUEST_PARTIALLY_UPLOADED, REQUEST_COMPLETED, REQUEST_EXPIRED, REQUEST_REVOKED}
    ),
    REQUEST_PARTIALLY_UPLOADED: frozenset({REQUEST_COMPLETED, REQUEST_EXPIRED, REQUEST_REVOKED}),
    REQUEST_COMPLETED: frozenset(),
    REQUEST_EXPIRED: frozenset(),
    REQUEST_REVOKED: frozenset(),
}

_FILE_TRANSITIONS: dict[str, frozenset[str]] = {
    FILE_QUEUED: frozenset({FILE_UPLOADING, FILE_STORED, FILE_FAILED}),
    FILE_UPLOADING: frozenset({FILE_STORED, FILE_FAILED}),
    FILE_STORED: frozenset(),
    FILE_FAILED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    """Return True when an upload request may move from ``current`` to ``target``."""
    return target in _REQUEST_TRANSITIONS.get(current, frozenset())


def sources_for(target: str) -> tuple[str, ...]:
    # Derive the WHERE-clause source states for a conditional status update.
    return tuple(status for status in REQUEST_STATUSES if can_transition(status, target))


def can_transition_file(current: str, target: str) -> bool:
    return target in _FILE_TRANSITIONS.get(current, frozenset())


def file_sources_for(target: str) -> tuple[str, ...]:
    return tuple(status for status in FILE_STATUSES if can_transition_file(status, target))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite returns naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_past(expires_at: datetime, *, now: datetime | None = None) -> bool:
    return as_utc(expires_at) <= (now or utc_now())
