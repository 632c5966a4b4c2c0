"""Audit trail for inspection lifecycle events."""

import uuid
from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from buildstate.core.metrics import record_audit_failure
from buildstate.models.audit import AuditLog, AuditAction

logger = structlog.get_logger()


def _comparable(value: Any) -> Any:
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_comparable(v) for v in value]
    if isinstance(value, dict):
        return {k: _comparable(v) for k, v in value.items()}
    return value


def format_changes(before: dict[str, Any] | None, after: dict[str, Any] | None) -> dict[str, dict[str, Any]] | None:
    """Per-field ``{"before", "after"}`` pairs for keys whose values differ."""
    before = before or {}
    after = after or {}
    changes = {}
    for key in sorted(set(before) | set(after)):
        old, new = before.get(key), after.get(key)
        if _comparable(old) != _comparable(new):
            changes[key] = {"before": old, "after": new}
    return changes or None


def _client_info(request: Request | None) -> tuple[str | None, str | None]:
    if request is None:
        return None, None

    # Get client IP (handle proxies)
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None

    return ip_address, request.headers.get("User-Agent")


class AuditTrailRecorder:
    """Writes audit entries through its own session.

    ``record`` never raises: a business operation must not fail because its
    audit entry could not be written. Failures are logged and counted.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def record(
        self,
        entity_type: str,
        entity_id: Any,
        action: AuditAction,
        user_id: uuid.UUID | None,
        changes: dict[str, dict[str, Any]] | None = None,
        metadata: dict[str, Any] | None = None,
        request: Request | None = None,
        description: str | None = None,
    ) -> None:
        """Record an action on an entity.

        Args:
            entity_type: Type of entity affected (e.g. "inspection")
            entity_id: ID of the affected entity
            action: The action performed
            user_id: The acting user (None for system events)
            changes: Output of ``format_changes``; split into old/new values
            metadata: Additional context stored as ``extra_data``
            request: FastAPI request for IP/user agent extraction
            description: Human-readable summary
        """
        try:
            ip_address, user_agent = _client_info(request)
            old_values = {k: v.get("before") for k, v in changes.items()} if changes else None
            new_values = {k: v.get("after") for k, v in changes.items()} if changes else None

            entry = AuditLog(
                id=uuid.uuid4(),
                timestamp=datetime.now(timezone.utc),
                action=action,
                user_id=user_id,
                entity_type=entity_type,
                entity_id=str(entity_id),
                description=description,
                ip_address=ip_address,
                user_agent=user_agent,
                old_values=old_values,
                new_values=new_values,
                extra_data=metadata,
            )

            async with self.session_factory() as session:
                session.add(entry)
                await session.commit()

            logger.info(
                "Audit entry recorded",
                action=action.value,
                entity_type=entity_type,
                entity_id=str(entity_id),
                user_id=str(user_id) if user_id else None,
            )
        except Exception as e:
            record_audit_failure()
            logger.error(
                "Failed to record audit entry",
                action=getattr(action, "value", action),
                entity_type=entity_type,
                entity_id=str(entity_id),
                error=str(e),
            )

    async def list_entity_trail(self, entity_type: str, entity_id: Any, limit: int = 50) -> list[AuditLog]:
        """Entries for one entity, newest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(AuditLog)
                .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == str(entity_id))
                .order_by(AuditLog.timestamp.desc())
                .limit(limit)
            )
            return list(result.scalars().all())
