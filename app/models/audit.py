from typing import Any, Dict
from datetime import datetime
from uuid import UUID
from sqlmodel import SQLModel


class AuditLogRead(SQLModel):
    id: UUID
    action: str
    entity_id: str
    details: Dict[str, Any]
    user_id: str
    created_at: datetime
