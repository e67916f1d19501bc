"""
Audit-Log: nur anhängend, für Korrekturen und vom Scheduler erzwungene Änderungen.

Einträge landen in der Session des Aufrufers und werden zusammen mit der
beschriebenen Änderung committet (oder zurückgerollt).
"""
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from breaktracker.models.audit import AuditLog


class AuditService:

    def __init__(self, db: AsyncSession):
        self.db = db

    def record(
        self,
        entity_type: str,
        entity_id: Any,
        action: str,
        old_value: dict | None,
        new_value: dict | None,
        actor: str,
    ) -> AuditLog:
        entry = AuditLog(
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            action=action,
            old_values=old_value,
            new_values=new_value,
            performed_by=actor,
        )
        self.db.add(entry)
        return entry
