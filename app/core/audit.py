import uuid
from datetime import datetime
from typing import Any, Dict, Optional, Union

from fastapi.encoders import jsonable_encoder
from loguru import logger
from sqlmodel import Session

from app.db.schema import AuditLog

SYSTEM_USER = "system"
MULTIPLE_ENTITIES = "multiple"


def log_audit_event(
    session: Session,
    action: str,
    entity_id: Union[uuid.UUID, str],
    details: Optional[Dict[str, Any]],
    user_id: Union[uuid.UUID, str],
) -> AuditLog:
    """
    Appends one audit entry.
    Must be called AFTER the mutation it describes has been committed, so the
    log only ever reflects committed history.
    """
    log_entry = AuditLog(
        action=action,
        entity_id=str(entity_id),
        details=jsonable_encoder(details or {}),
        user_id=str(user_id),
        created_at=datetime.utcnow(),
    )
    session.add(log_entry)
    session.commit()
    session.refresh(log_entry)

    logger.debug(f"Audit: {action} on {entity_id} by {user_id}")
    return log_entry
