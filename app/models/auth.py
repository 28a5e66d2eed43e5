from uuid import UUID
from sqlmodel import SQLModel


class Token(SQLModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class TokenAccess(SQLModel):
    access_token: str
    token_type: str = "bearer"


class TokenRefresh(SQLModel):
    refresh_token: str


class TokenData(SQLModel):
    """Claims extracted from a verified JWT."""
    user_id: UUID
