from typing import List, Optional, Dict, Any
from datetime import datetime
from uuid import UUID
from sqlmodel import SQLModel, Field
from pydantic import StringConstraints, field_validator
from typing_extensions import Annotated

from app.db.schema import (
    ProductCategory, ProductStatus, VerificationStatus,
    EndOfLifeStatus, AnchoringStatus
)


# ==============================================================================
# PASSPORT CONTENT
# ==============================================================================

class MaterialInput(SQLModel):
    name: str = Field(min_length=1)
    percentage: Optional[float] = Field(default=None, ge=0, le=100)
    recycled_content: Optional[float] = Field(default=None, ge=0, le=100)
    origin: Optional[str] = None


class CertificationInput(SQLModel):
    name: str = Field(min_length=1)
    issuer: Optional[str] = None
    expiry_date: Optional[str] = None
    document_url: Optional[str] = None


class ManufacturingInput(SQLModel):
    facility: Optional[str] = None
    country: Optional[str] = None
    emissions_kg_co2e: Optional[float] = None


class LifecycleInput(SQLModel):
    expected_lifespan: Optional[float] = None
    repairability_score: Optional[float] = Field(default=None, ge=0, le=10)
    recyclability_percentage: Optional[float] = Field(default=None, ge=0, le=100)


class ComplianceGap(SQLModel):
    regulation: str = Field(min_length=1)
    issue: str = Field(min_length=1)


class ProductBase(SQLModel):
    gtin: Optional[str] = Field(default=None, max_length=14)
    product_name: str = Field(min_length=3, max_length=200)
    product_description: str = Field(min_length=10)
    product_image: Optional[str] = None
    category: ProductCategory
    materials: List[MaterialInput] = []
    certifications: List[CertificationInput] = []
    manufacturing: Optional[ManufacturingInput] = None
    packaging: Optional[Dict[str, Any]] = None
    lifecycle: Optional[LifecycleInput] = None
    battery: Optional[Dict[str, Any]] = None
    compliance: Optional[Dict[str, Any]] = None
    custom_data: Optional[Dict[str, Any]] = None
    transit: Optional[Dict[str, Any]] = None


class ProductCreate(ProductBase):
    """
    Form values for a new passport. Only Draft or Archived may be requested;
    Published is reachable through anchoring alone.
    """
    status: ProductStatus = ProductStatus.DRAFT


class ProductUpdate(SQLModel):
    gtin: Optional[str] = Field(default=None, max_length=14)
    product_name: Optional[str] = Field(default=None, min_length=3, max_length=200)
    product_description: Optional[str] = Field(default=None, min_length=10)
    product_image: Optional[str] = None
    category: Optional[ProductCategory] = None
    status: Optional[ProductStatus] = None
    materials: Optional[List[MaterialInput]] = None
    certifications: Optional[List[CertificationInput]] = None
    manufacturing: Optional[ManufacturingInput] = None
    packaging: Optional[Dict[str, Any]] = None
    lifecycle: Optional[LifecycleInput] = None
    battery: Optional[Dict[str, Any]] = None
    compliance: Optional[Dict[str, Any]] = None
    custom_data: Optional[Dict[str, Any]] = None
    transit: Optional[Dict[str, Any]] = None
    ownership_nft: Optional[Dict[str, Any]] = None

    expected_version: Optional[int] = Field(
        default=None,
        description="When set, the update is rejected unless it matches the stored version."
    )

    @field_validator(
        "product_name", "product_description", "category", "status", "materials", "certifications"
    )
    @classmethod
    def reject_null(cls, value):
        # Omit a field to leave it unchanged; these columns cannot be cleared
        if value is None:
            raise ValueError("This field cannot be cleared")
        return value


class BulkProductImport(ProductBase):
    """One row of a CSV/JSON import. Always created as Draft."""
    pass


# ==============================================================================
# WORKFLOW PAYLOADS
# ==============================================================================

class RejectPayload(SQLModel):
    reason: str = Field(min_length=3)
    gaps: List[ComplianceGap] = []


class OverridePayload(SQLModel):
    reason: str = Field(min_length=3)


class CustodyStepCreate(SQLModel):
    event: str = Field(min_length=2)
    location: str = Field(min_length=2)
    actor: str = Field(min_length=2)


class OwnershipTransfer(SQLModel):
    new_owner_address: Annotated[str, StringConstraints(pattern=r"^0x[a-fA-F0-9]{40}$")]


class CustomsInspectionCreate(SQLModel):
    status: Annotated[str, StringConstraints(pattern=r"^(Cleared|Detained|Rejected)$")]
    authority: str = Field(min_length=2)
    location: str = Field(min_length=2)
    notes: Optional[str] = None


class ServiceRecordCreate(SQLModel):
    notes: str = Field(min_length=1)


class ProductFilters(SQLModel):
    search_query: Optional[str] = None
    category: Optional[ProductCategory] = None
    verification_status: Optional[VerificationStatus] = None


# ==============================================================================
# READ MODELS
# ==============================================================================

class SubmissionChecklist(SQLModel):
    has_base_info: bool
    has_materials: bool
    has_manufacturing: bool
    has_lifecycle_data: bool
    has_compliance_path: bool


class CustomsStatusRead(SQLModel):
    """Latest inspection plus the full history (oldest first)."""
    status: Optional[str] = None
    authority: Optional[str] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    date: Optional[str] = None
    history: List[Dict[str, Any]] = []


class ProductRead(SQLModel):
    id: UUID
    gtin: Optional[str] = None
    company_id: UUID
    supplier: str
    product_name: str
    product_description: str
    product_image: Optional[str] = None
    category: ProductCategory

    status: ProductStatus
    verification_status: VerificationStatus
    end_of_life_status: EndOfLifeStatus
    anchoring_status: AnchoringStatus
    anchor_attempts: int
    anchor_error: Optional[str] = None
    is_minting: bool

    materials: List[Dict[str, Any]] = []
    certifications: List[Dict[str, Any]] = []
    manufacturing: Optional[Dict[str, Any]] = None
    packaging: Optional[Dict[str, Any]] = None
    lifecycle: Optional[Dict[str, Any]] = None
    battery: Optional[Dict[str, Any]] = None
    compliance: Optional[Dict[str, Any]] = None
    custom_data: Optional[Dict[str, Any]] = None
    transit: Optional[Dict[str, Any]] = None
    sustainability: Optional[Dict[str, Any]] = None

    customs: Optional[CustomsStatusRead] = None
    chain_of_custody: List[Dict[str, Any]] = []
    service_history: List[Dict[str, Any]] = []

    ownership_nft: Optional[Dict[str, Any]] = None
    zk_proof: Optional[Dict[str, Any]] = None
    verifiable_credential: Optional[str] = None
    blockchain_proof: Optional[Dict[str, Any]] = None
    verification_override: Optional[Dict[str, Any]] = None
    qr_code_url: Optional[str] = None

    submission_checklist: Optional[SubmissionChecklist] = None

    created_at: datetime
    updated_at: datetime
    last_updated: datetime
    last_verification_date: Optional[datetime] = None
    version: int
