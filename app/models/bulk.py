from typing import List, Optional
from uuid import UUID
from sqlmodel import SQLModel, Field

from app.models.product import BulkProductImport


class BulkIdsRequest(SQLModel):
    product_ids: List[UUID] = Field(min_length=1)


class BulkCreateRequest(SQLModel):
    products: List[BulkProductImport] = Field(min_length=1)


class BulkItemResult(SQLModel):
    """Outcome of one item. `id` is the product id, or `row:<index>` for a failed import."""
    id: str
    ok: bool
    error: Optional[str] = None


class BulkResult(SQLModel):
    count: int = Field(description="Number of items that succeeded.")
    results: List[BulkItemResult] = []
