from __future__ import annotations

import logging
import re
from typing import Any

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from uploadgate.domain.events import AUDIT_EVENT_SCHEMAS, AUDIT_SCHEMA_VERSION
from uploadgate.domain.models import AuditEvent


logger = logging.getLogger(__name__)

# Key fragments that mark a metadata value as a credential.
_SECRET_KEY_RE = re.compile(r"token|secret|password|pepper|authorization|api_key|signed_url", re.IGNORECASE)
REDACTED = "[REDACTED]"


def sanitize_metadata(value: Any) -> Any:
    """Return a copy of ``value`` with credential-like keys redacted at any depth."""
    if isinstance(value, dict):
        return {
            str(key): REDACTED if _SECRET_KEY_RE.search(str(key)) else sanitize_metadata(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [sanitize_metadata(item) for item in value]
    return value


def validate_metadata(event_type: str, metadata: dict[str, Any] | None) -> dict[str, Any]:
    """Check metadata against the schema registered for ``event_type``.

    Unknown event types and schema violations raise ``ValueError``; they are
    programming errors, not runtime conditions.
    """
    schema = AUDIT_EVENT_SCHEMAS.get(event_type)
    if schema is None:
        raise ValueError(f"Unknown audit event type: {event_type}")
    try:
        parsed = schema.model_validate(metadata or {})
    except ValidationError as exc:
        raise ValueError(f"Invalid metadata for {event_type}: {exc}") from exc
    return parsed.model_dump(mode="json")


def get_request_context(request: Request | None) -> dict[str, str | None]:
    # Extract request identifiers and client hints without persisting credentials.
    if request is None:
        return {"request_id": None, "ip_address": None, "user_agent": None}
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip() or None
    else:
        ip_address = request.client.host if request.client else None
    user_agent = request.headers.get("user-agent")
    return {"request_id": request_id, "ip_address": ip_address, "user_agent": user_agent}


async def record_event(
    session: AsyncSession,
    *,
    org_id: str | None,
    event_type: str,
    entity_type: str,
    entity_id: str,
    actor_type: str,
    actor_id: str | None,
    metadata: dict[str, Any] | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    request_id: str | None = None,
) -> bool:
    """Append one audit row in its own commit.

    Call only after the primary operation has committed: a failed audit write is
    rolled back and logged, never raised, so it cannot undo user-visible state.
    """
    payload = sanitize_metadata(validate_metadata(event_type, metadata))
    event = AuditEvent(
        org_id=org_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_type=actor_type,
        actor_id=actor_id,
        metadata_json=payload,
        schema_version=AUDIT_SCHEMA_VERSION,
        ip_address=ip_address,
        user_agent=user_agent,
        request_id=request_id,
    )
    try:
        session.add(event)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error(
            "audit_event_write_failed event_type=%s entity_type=%s entity_id=%s",
            event_type,
            entity_type,
            entity_id,
            exc_info=exc,
        )
        return False
    return True
