from typing import List, Optional
from datetime import datetime
from uuid import UUID
from sqlmodel import SQLModel, Field
from pydantic import HttpUrl

from app.db.schema import WebhookStatus

# Events a webhook may subscribe to.
WEBHOOK_EVENTS = (
    "product.published",
)


class WebhookCreate(SQLModel):
    url: HttpUrl = Field(description="Delivery URL. Must be reachable over HTTP(S).")
    events: List[str] = Field(
        min_length=1,
        description="Subscribed events. Example: ['product.published']"
    )
    status: WebhookStatus = WebhookStatus.ACTIVE


class WebhookUpdate(SQLModel):
    url: Optional[HttpUrl] = None
    events: Optional[List[str]] = None
    status: Optional[WebhookStatus] = None


class WebhookRead(SQLModel):
    id: UUID
    url: str
    events: List[str]
    status: WebhookStatus
    company_id: UUID
    user_id: UUID
    created_at: datetime
    updated_at: datetime
