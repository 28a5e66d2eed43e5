from typing import List, Dict, Any
from uuid import UUID
from sqlmodel import SQLModel, Field
from pydantic import EmailStr, StringConstraints
from typing_extensions import Annotated
from app.db.schema import UserRole


class UserRead(SQLModel):
    id: UUID
    email: str
    full_name: str
    company_id: UUID
    roles: List[str]
    circularity_credits: int
    is_active: bool


class UserSignin(SQLModel):
    email: Annotated[EmailStr, StringConstraints(to_lower=True)] = Field(
        description="Registered email address of the user.",
        max_length=255
    )
    password: str = Field(
        min_length=8,
        max_length=128,
        description="Plain text password."
    )


class UserCreate(SQLModel):
    """
    DTO for provisioning a user inside an existing company.
    """
    full_name: str = Field(
        min_length=1,
        max_length=100,
        description="User's display name."
    )
    email: Annotated[EmailStr, StringConstraints(to_lower=True)] = Field(
        description="Unique email address for signin.",
        max_length=255
    )
    password: str = Field(
        min_length=8,
        max_length=128,
        description="Plain text password."
    )
    company_id: UUID = Field(description="The tenant the user will act for.")
    roles: List[UserRole] = Field(
        min_length=1,
        description="At least one role. Example: ['Supplier']"
    )


class CompanyCreate(SQLModel):
    name: str = Field(
        min_length=2,
        max_length=100,
        description="The legal name of the organization."
    )
    settings: Dict[str, Any] = {}


class CompanyRead(SQLModel):
    id: UUID
    name: str
    settings: Dict[str, Any]
