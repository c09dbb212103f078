"""
Audit log service.

Two modes, matching how durable an entry needs to be:
- `record_entry` adds the row to the caller's session so it commits (or
  rolls back) together with the state change it describes.
- `record_entry_best_effort` commits on its own after the state change and
  swallows failures; used for informational entries.
"""
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from labportal.lib.logging import get_logger
from labportal.models.audit_logs import AuditLog


logger = get_logger(__name__)


class AuditLogService:

    def __init__(self, db: Session):
        self.db = db

    def record_entry(
        self,
        user_id: UUID,
        action: str,
        entity: str,
        entity_id: Any,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """Stage an audit row in the current transaction. The caller commits."""
        entry = AuditLog(
            user_id=user_id,
            action=action,
            entity=entity,
            entity_id=str(entity_id),
            extra_data=_json_safe(metadata or {}),
        )
        self.db.add(entry)
        return entry

    def record_entry_best_effort(
        self,
        user_id: UUID,
        action: str,
        entity: str,
        entity_id: Any,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLog]:
        """Write and commit an informational audit row; failures are logged only."""
        try:
            entry = self.record_entry(user_id, action, entity, entity_id, metadata)
            self.db.commit()
            return entry
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Failed to write audit entry {action}: {e}",
                extra={"action": action, "entity": entity, "entity_id": str(entity_id)},
                exc_info=True,
            )
            return None


def _json_safe(value: Any) -> Any:
    """Convert UUIDs, Decimals, enums and datetimes for the JSON column."""
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if value is None or isinstance(value, (bool, int, float, str)):
        if hasattr(value, "value") and not isinstance(value, bool):
            return value.value
        return value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return str(value)
