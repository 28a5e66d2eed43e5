import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from sqlmodel import Session, SQLModel, select, or_

from app.core.audit import log_audit_event
from app.core.exceptions import NotFoundError, StateConflictError, ValidationError
from app.core.permissions import Action, check_permission, has_any_role
from app.db.schema import (
    User, Company, Product, ProductStatus, VerificationStatus,
    GLOBAL_READ_ROLES
)
from app.models.product import (
    ProductCreate, ProductUpdate, ProductFilters, ProductRead,
    CustomsStatusRead, SubmissionChecklist
)

PLACEHOLDER_IMAGE = "https://placehold.co/400x400.png"

ModelT = TypeVar("ModelT", bound=SQLModel)


def parse_payload(model_cls: Type[ModelT], values: Union[ModelT, SQLModel, Dict[str, Any]]) -> ModelT:
    """
    Validates raw form values into `model_cls`, turning pydantic errors into a
    ValidationError that lists every failing field.
    """
    if isinstance(values, model_cls):
        return values
    if isinstance(values, SQLModel):
        values = values.model_dump(exclude_unset=True)
    try:
        return model_cls.model_validate(values)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e)


def build_submission_checklist(product: Product) -> SubmissionChecklist:
    manufacturing = product.manufacturing or {}
    lifecycle = product.lifecycle or {}
    return SubmissionChecklist(
        has_base_info=bool(
            product.product_name and product.product_description and product.category),
        has_materials=bool(product.materials),
        has_manufacturing=bool(
            manufacturing.get("facility") and manufacturing.get("country")),
        has_lifecycle_data=bool(
            lifecycle.get("expected_lifespan") and lifecycle.get("repairability_score")),
        has_compliance_path=bool(product.compliance),
    )


def is_checklist_complete(checklist: SubmissionChecklist) -> bool:
    return all(checklist.model_dump().values())


class ProductService:
    def __init__(self, session: Session):
        self.session = session

    # ==========================================================================
    # HELPERS
    # ==========================================================================

    @staticmethod
    def is_visible(product: Product, user: Optional[User]) -> bool:
        """
        Published passports are public. Anything else is visible to the owning
        company and to global read roles only.
        """
        if product.status == ProductStatus.PUBLISHED:
            return True
        if user is None:
            return False
        if user.company_id == product.company_id:
            return True
        return has_any_role(user, *GLOBAL_READ_ROLES)

    @staticmethod
    def to_read(product: Product) -> ProductRead:
        """
        Maps the stored row to the API view. The customs head is derived from
        the last history entry.
        """
        customs = None
        if product.customs_history:
            latest = product.customs_history[-1]
            customs = CustomsStatusRead(**latest, history=product.customs_history)

        return ProductRead(
            **product.model_dump(),
            customs=customs,
            submission_checklist=build_submission_checklist(product),
        )

    def load_product(self, product_id: uuid.UUID) -> Product:
        """
        Unscoped lookup used by the workflow engine before its own permission
        check.
        """
        product = self.session.get(Product, product_id)
        if not product:
            raise NotFoundError("Product", product_id)
        return product

    def commit_product(self, product: Product) -> Product:
        """
        Persists a mutated product, bumping its version and timestamps.
        """
        now = datetime.utcnow()
        product.version = (product.version or 0) + 1
        product.updated_at = now
        product.last_updated = now
        self.session.add(product)
        self.session.commit()
        self.session.refresh(product)
        return product

    # ==========================================================================
    # READ OPERATIONS
    # ==========================================================================

    def get_products(
        self,
        user: Optional[User] = None,
        filters: Optional[ProductFilters] = None
    ) -> List[Product]:
        query = select(Product)

        if user is None:
            query = query.where(Product.status == ProductStatus.PUBLISHED)
        elif not has_any_role(user, *GLOBAL_READ_ROLES):
            query = query.where(
                or_(
                    Product.status == ProductStatus.PUBLISHED,
                    Product.company_id == user.company_id
                )
            )

        if filters:
            if filters.search_query:
                # Search text is matched literally, so '%' and '_' are not wildcards
                term = filters.search_query
                query = query.where(
                    or_(
                        Product.product_name.icontains(term, autoescape=True),
                        Product.supplier.icontains(term, autoescape=True),
                        Product.gtin.icontains(term, autoescape=True)
                    )
                )
            if filters.category:
                query = query.where(Product.category == filters.category)
            if filters.verification_status:
                query = query.where(
                    Product.verification_status == filters.verification_status)

        query = query.order_by(Product.last_updated.desc())
        return self.session.exec(query).all()

    def get_product_by_id(self, product_id: uuid.UUID, user: Optional[User] = None) -> Product:
        """
        Returns the product when the caller may see it. Hidden products are
        reported as missing so their existence does not leak.
        """
        product = self.session.get(Product, product_id)
        if not product or not self.is_visible(product, user):
            raise NotFoundError("Product", product_id)
        return product

    def get_product_by_gtin(self, gtin: str, user: Optional[User] = None) -> Product:
        products = self.session.exec(
            select(Product).where(Product.gtin == gtin)
        ).all()

        visible = [p for p in products if self.is_visible(p, user)]
        if not visible:
            raise NotFoundError("Product with GTIN", gtin)

        # Prefer the caller's own record when several tenants share a GTIN
        if user is not None:
            for product in visible:
                if product.company_id == user.company_id:
                    return product
        return visible[0]

    # ==========================================================================
    # WRITE OPERATIONS
    # ==========================================================================

    def save_product(
        self,
        user: User,
        values: Union[ProductCreate, ProductUpdate, Dict[str, Any]],
        product_id: Optional[uuid.UUID] = None
    ) -> Product:
        """
        Creates a passport when `product_id` is None, otherwise merges the
        given fields into the existing one.
        """
        if product_id is None:
            return self._create_product(user, parse_payload(ProductCreate, values))
        return self._update_product(user, product_id, parse_payload(ProductUpdate, values))

    def _ensure_gtin_available(
        self, company_id: uuid.UUID, gtin: str, exclude_id: Optional[uuid.UUID] = None
    ) -> None:
        """A GTIN identifies at most one product within a company."""
        query = select(Product).where(
            Product.gtin == gtin,
            Product.company_id == company_id
        )
        if exclude_id is not None:
            query = query.where(Product.id != exclude_id)
        if self.session.exec(query).first():
            raise StateConflictError(f"Product with GTIN {gtin} already exists.")

    def _create_product(self, user: User, data: ProductCreate) -> Product:
        check_permission(user, Action.PRODUCT_CREATE)

        if data.status == ProductStatus.PUBLISHED:
            raise ValidationError.single(
                "status", "A passport can only be published through approval.")

        company = self.session.get(Company, user.company_id)
        if not company:
            raise NotFoundError("Company", user.company_id)

        if data.gtin:
            self._ensure_gtin_available(user.company_id, data.gtin)

        content = data.model_dump(mode="json", exclude={"status", "category"})
        content["product_image"] = content.get("product_image") or PLACEHOLDER_IMAGE

        now = datetime.utcnow()
        product = Product(
            **content,
            category=data.category,
            status=data.status,
            company_id=user.company_id,
            supplier=company.name,
            verification_status=VerificationStatus.NOT_SUBMITTED,
            created_at=now,
            updated_at=now,
            last_updated=now,
        )
        self.session.add(product)
        self.session.commit()
        self.session.refresh(product)

        log_audit_event(self.session, "product.created", product.id, {}, user.id)
        logger.info(f"Product {product.id} created by {user.id}")
        return product

    def _update_product(self, user: User, product_id: uuid.UUID, data: ProductUpdate) -> Product:
        product = self.load_product(product_id)
        check_permission(user, Action.PRODUCT_EDIT, product)

        if data.status == ProductStatus.ARCHIVED and product.status != ProductStatus.ARCHIVED:
            check_permission(user, Action.PRODUCT_ARCHIVE, product)

        if data.status == ProductStatus.PUBLISHED and product.status != ProductStatus.PUBLISHED:
            raise ValidationError.single(
                "status", "A passport can only be published through approval.")

        if data.expected_version is not None and data.expected_version != product.version:
            raise StateConflictError(
                f"Product {product_id} was modified concurrently "
                f"(expected version {data.expected_version}, found {product.version}).",
                product_id=str(product_id),
            )

        update_data = data.model_dump(
            mode="json",
            exclude_unset=True,
            exclude={"expected_version", "status", "category"}
        )
        new_gtin = update_data.get("gtin")
        if new_gtin and new_gtin != product.gtin:
            self._ensure_gtin_available(product.company_id, new_gtin, exclude_id=product.id)

        for key, value in update_data.items():
            setattr(product, key, value)

        changed = sorted(update_data.keys())
        if "category" in data.model_fields_set and data.category is not None:
            product.category = data.category
            changed.append("category")
        if "status" in data.model_fields_set and data.status is not None:
            product.status = data.status
            changed.append("status")

        # Editing a rejected passport sends it back to the drafting stage
        if product.verification_status == VerificationStatus.FAILED:
            product.verification_status = VerificationStatus.NOT_SUBMITTED
            product.status = ProductStatus.DRAFT

        self.commit_product(product)

        log_audit_event(
            self.session, "product.updated", product.id, {"changes": changed}, user.id)
        return product

    def delete_product(self, user: User, product_id: uuid.UUID) -> None:
        product = self.get_product_by_id(product_id, user)
        check_permission(user, Action.PRODUCT_DELETE, product)

        self.session.delete(product)
        self.session.commit()

        log_audit_event(self.session, "product.deleted", product_id, {}, user.id)
        logger.info(f"Product {product_id} deleted by {user.id}")
