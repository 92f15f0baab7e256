"""Audit trail for administrative actions"""

from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session

from realty_access.database.models import AuditLog


class AuditService:
    """Service for recording administrative actions"""

    @staticmethod
    def record(
        db: Session,
        action_key: str,
        entity_type: str,
        entity_id: str,
        actor_user_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """
        Add an audit row to the current transaction.

        The caller owns the commit, so the row lands (or rolls back) together
        with the change it describes.
        """
        entry = AuditLog(
            actor_user_id=actor_user_id,
            tenant_id=tenant_id,
            action_key=action_key,
            entity_type=entity_type,
            entity_id=entity_id,
            payload=payload or {},
        )
        db.add(entry)
        return entry

    @staticmethod
    def list_for_tenant(db: Session, tenant_id: str, limit: int = 100) -> List[AuditLog]:
        return db.query(AuditLog).filter(
            AuditLog.tenant_id == tenant_id
        ).order_by(AuditLog.created_at.desc()).limit(limit).all()
