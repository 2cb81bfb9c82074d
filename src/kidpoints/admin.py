"""Administrative helpers for KidPoints."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from .models import AuditEvent


class AuditLog:
    """Collect audit events for parent actions."""

    def __init__(self, *, now_fn: Optional[Callable[[], datetime]] = None) -> None:
        self._entries: list[AuditEvent] = []
        self._now_fn = now_fn or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()

    def record(
        self,
        actor: str,
        action: str,
        target: str,
        *,
        family_id: Optional[str] = None,
        details: Optional[dict] = None,
        timestamp: Optional[datetime] = None,
    ) -> AuditEvent:
        event = AuditEvent(
            actor=actor,
            action=action,
            target=target,
            family_id=family_id,
            timestamp=timestamp or self._now_fn(),
            details=dict(details or {}),
        )
        with self._lock:
            self._entries.append(event)
        return event

    def entries(
        self,
        *,
        action: str | None = None,
        target: str | None = None,
        family_id: str | None = None,
    ) -> tuple[AuditEvent, ...]:
        records = list(self._entries)
        if action is not None:
            records = [entry for entry in records if entry.action == action]
        if target is not None:
            records = [entry for entry in records if entry.target == target]
        if family_id is not None:
            records = [entry for entry in records if entry.family_id == family_id]
        return tuple(records)

    def latest(self) -> AuditEvent | None:
        return self._entries[-1] if self._entries else None


__all__ = ["AuditLog"]
