import uuid
from typing import List, Optional

from sqlmodel import Session, select

from app.core.exceptions import NotFoundError
from app.core.permissions import Action, check_permission
from app.db.schema import AuditLog, User


class AuditService:
    """
    Read side of the audit trail. Entries are returned newest first.
    """

    def __init__(self, session: Session):
        self.session = session

    def list_logs(self, user: User, limit: int = 100, offset: int = 0) -> List[AuditLog]:
        check_permission(user, Action.AUDIT_READ)
        query = (
            select(AuditLog)
            .order_by(AuditLog.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return self.session.exec(query).all()

    def list_for_entity(self, entity_id: str) -> List[AuditLog]:
        query = (
            select(AuditLog)
            .where(AuditLog.entity_id == str(entity_id))
            .order_by(AuditLog.created_at.desc())
        )
        return self.session.exec(query).all()

    def list_for_user(self, user_id: str) -> List[AuditLog]:
        query = (
            select(AuditLog)
            .where(AuditLog.user_id == str(user_id))
            .order_by(AuditLog.created_at.desc())
        )
        return self.session.exec(query).all()

    def get_log(self, log_id: uuid.UUID) -> Optional[AuditLog]:
        return self.session.get(AuditLog, log_id)

    def get_log_or_404(self, log_id: uuid.UUID) -> AuditLog:
        log_entry = self.get_log(log_id)
        if not log_entry:
            raise NotFoundError("Audit log", log_id)
        return log_entry
