from typing import Optional, List, Dict, Any
from datetime import datetime
import uuid
from sqlmodel import SQLModel, Field, JSON
from enum import Enum


class UserRole(str, Enum):
    ADMIN = "Admin"
    SUPPLIER = "Supplier"
    AUDITOR = "Auditor"
    COMPLIANCE_MANAGER = "Compliance Manager"
    MANUFACTURER = "Manufacturer"
    SERVICE_PROVIDER = "Service Provider"
    RECYCLER = "Recycler"
    RETAILER = "Retailer"
    DEVELOPER = "Developer"
    BUSINESS_ANALYST = "Business Analyst"


# Roles that may read unpublished passports of any tenant.
GLOBAL_READ_ROLES = (
    UserRole.ADMIN,
    UserRole.AUDITOR,
    UserRole.COMPLIANCE_MANAGER,
    UserRole.RETAILER,
)


class ProductStatus(str, Enum):
    DRAFT = "Draft"
    PUBLISHED = "Published"
    ARCHIVED = "Archived"


class VerificationStatus(str, Enum):
    NOT_SUBMITTED = "Not Submitted"
    PENDING = "Pending"          # Locked, waiting for an Auditor
    VERIFIED = "Verified"        # Anchored or manually overridden
    FAILED = "Failed"            # Rejected, Compliance must resolve


class EndOfLifeStatus(str, Enum):
    ACTIVE = "Active"
    RECYCLED = "Recycled"


class AnchoringStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"      # Background worker owns the product
    ANCHORED = "anchored"
    FAILED = "failed"        # Retries exhausted, approval may be retried


class ProductCategory(str, Enum):
    ELECTRONICS = "Electronics"
    FASHION = "Fashion"
    HOME_GOODS = "Home Goods"
    CONSTRUCTION = "Construction"
    FOOD_AND_BEVERAGE = "Food & Beverage"


class WebhookStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class TimestampMixin(SQLModel):
    """
    Standard audit timestamps shared by every persisted entity.
    """
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="The exact UTC timestamp when this record was first persisted. Example: '2024-10-27 14:30:00'"
    )
    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column_kwargs={"onupdate": datetime.utcnow},
        description="The exact UTC timestamp when this record was last modified. Updates automatically."
    )


class Company(TimestampMixin, SQLModel, table=True):
    """
    The Tenant. Owns Users and Products.
    Feature flags (AI, webhook signing) and custom field definitions live in
    the free-form settings document.
    """
    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        description="The unique identifier for the company."
    )
    name: str = Field(
        index=True,
        description="The legal or display name of the company. Example: 'GreenTech Supplies'"
    )
    settings: Dict[str, Any] = Field(
        default_factory=dict,
        sa_type=JSON,
        description="Tenant settings. Example: {'ai_enabled': True, 'webhook_signing_enabled': True, 'custom_fields': []}"
    )


class User(TimestampMixin, SQLModel, table=True):
    """
    A human actor. Belongs to exactly one Company and may hold several roles.
    """
    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        description="The unique identifier for the user."
    )
    email: str = Field(
        unique=True,
        index=True,
        description="The login email address. Example: 'jane.doe@example.com'"
    )
    hashed_password: str = Field(
        description="The bcrypt hash of the user's password. Never store plain text."
    )
    full_name: str = Field(
        description="The user's display name. Example: 'Jane Doe'"
    )
    company_id: uuid.UUID = Field(
        foreign_key="company.id",
        index=True,
        description="The tenant this user acts for."
    )
    roles: List[str] = Field(
        default_factory=list,
        sa_type=JSON,
        description="Role names held by the user. Example: ['Supplier', 'Developer']"
    )
    circularity_credits: int = Field(
        default=0,
        description="Credits earned through recycling activity."
    )
    is_active: bool = Field(
        default=True,
        description="Soft delete flag. If False, user cannot sign in."
    )


class Product(TimestampMixin, SQLModel, table=True):
    """
    The Digital Product Passport aggregate.
    Lifecycle columns (status, verification_status, end_of_life_status,
    anchoring_status) are only changed by the workflow engine. Nested passport
    content is stored as JSON documents.
    """
    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        description="The persistent unique identifier of the passport."
    )
    gtin: Optional[str] = Field(
        default=None,
        index=True,
        description="Global Trade Item Number. Example: '01234567890128'"
    )
    company_id: uuid.UUID = Field(
        foreign_key="company.id",
        index=True,
        description="The owning tenant."
    )
    supplier: str = Field(
        default="",
        description="Owning company name captured at creation. Example: 'GreenTech Supplies'"
    )

    # Descriptive content
    product_name: str = Field(index=True)
    product_description: str = Field(default="")
    product_image: Optional[str] = Field(default=None)
    category: ProductCategory = Field(index=True)

    # Lifecycle
    status: ProductStatus = Field(default=ProductStatus.DRAFT, index=True)
    verification_status: VerificationStatus = Field(
        default=VerificationStatus.NOT_SUBMITTED, index=True)
    end_of_life_status: EndOfLifeStatus = Field(default=EndOfLifeStatus.ACTIVE)
    anchoring_status: AnchoringStatus = Field(default=AnchoringStatus.NONE)
    anchor_attempts: int = Field(default=0)
    anchor_error: Optional[str] = Field(default=None)
    is_minting: bool = Field(
        default=False,
        description="True while an anchoring operation is in flight."
    )

    # Passport documents
    materials: List[Dict[str, Any]] = Field(default_factory=list, sa_type=JSON)
    certifications: List[Dict[str, Any]] = Field(
        default_factory=list, sa_type=JSON)
    manufacturing: Optional[Dict[str, Any]] = Field(default=None, sa_type=JSON)
    packaging: Optional[Dict[str, Any]] = Field(default=None, sa_type=JSON)
    lifecycle: Optional[Dict[str, Any]] = Field(default=None, sa_type=JSON)
    battery: Optional[Dict[str, Any]] = Field(default=None, sa_type=JSON)
    compliance: Optional[Dict[str, Any]] = Field(default=None, sa_type=JSON)
    custom_data: Optional[Dict[str, Any]] = Field(default=None, sa_type=JSON)
    transit: Optional[Dict[str, Any]] = Field(default=None, sa_type=JSON)
    sustainability: Optional[Dict[str, Any]] = Field(
        default=None, sa_type=JSON)

    # Append-only histories
    customs_history: List[Dict[str, Any]] = Field(
        default_factory=list,
        sa_type=JSON,
        description="Customs inspections, oldest first. The latest entry is the current customs status."
    )
    chain_of_custody: List[Dict[str, Any]] = Field(
        default_factory=list,
        sa_type=JSON,
        description="Custody steps, newest first."
    )
    service_history: List[Dict[str, Any]] = Field(
        default_factory=list, sa_type=JSON)

    # Trust artefacts
    ownership_nft: Optional[Dict[str, Any]] = Field(default=None, sa_type=JSON)
    zk_proof: Optional[Dict[str, Any]] = Field(default=None, sa_type=JSON)
    verifiable_credential: Optional[str] = Field(
        default=None,
        description="The serialized W3C Verifiable Credential issued on approval."
    )
    blockchain_proof: Optional[Dict[str, Any]] = Field(
        default=None,
        sa_type=JSON,
        description="Anchor receipt. Example: {'type': 'SINGLE_HASH', 'tx_hash': '0x..', 'chain': 'Polygon'}"
    )
    verification_override: Optional[Dict[str, Any]] = Field(
        default=None, sa_type=JSON)
    qr_code_url: Optional[str] = Field(default=None)

    last_updated: datetime = Field(default_factory=datetime.utcnow, index=True)
    last_verification_date: Optional[datetime] = Field(default=None)
    version: int = Field(
        default=1,
        description="Incremented on every committed change. Used for compare-and-swap updates."
    )


class AuditLog(SQLModel, table=True):
    """
    Immutable record of a committed state change.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    action: str = Field(
        index=True,
        description="Dotted action tag. Example: 'product.updated'"
    )
    entity_id: str = Field(
        index=True,
        description="Affected entity id, or 'multiple' for bulk summaries."
    )
    details: Dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    user_id: str = Field(
        index=True,
        description="Acting user id, or 'system' for automated actions."
    )
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)


class Webhook(TimestampMixin, SQLModel, table=True):
    """
    A developer-registered HTTP endpoint subscribed to workflow events.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    url: str = Field(description="Delivery URL. Example: 'https://hooks.example.com/dpp'")
    events: List[str] = Field(
        default_factory=list,
        sa_type=JSON,
        description="Subscribed events. Example: ['product.published']"
    )
    status: WebhookStatus = Field(default=WebhookStatus.ACTIVE)
    company_id: uuid.UUID = Field(foreign_key="company.id", index=True)
    user_id: uuid.UUID = Field(foreign_key="user.id", index=True)
