from typing import List, Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Response, status

from app.core.dependencies import get_current_user, get_optional_user, get_product_service
from app.db.schema import User, ProductCategory, VerificationStatus
from app.services.product import ProductService

from app.models.product import (
    ProductCreate,
    ProductRead,
    ProductUpdate,
    ProductFilters
)

router = APIRouter()


@router.get(
    "/",
    response_model=List[ProductRead],
    summary="List Products",
    tags=["Products"]
)
def list_products(
    search_query: Optional[str] = None,
    category: Optional[ProductCategory] = None,
    verification_status: Optional[VerificationStatus] = None,
    current_user: Optional[User] = Depends(get_optional_user),
    service: ProductService = Depends(get_product_service)
):
    """
    Anonymous callers only see published passports.
    """
    filters = ProductFilters(
        search_query=search_query,
        category=category,
        verification_status=verification_status
    )
    products = service.get_products(user=current_user, filters=filters)
    return [service.to_read(p) for p in products]


@router.get(
    "/gtin/{gtin}",
    response_model=ProductRead,
    summary="Lookup by GTIN",
    tags=["Products"]
)
def get_product_by_gtin(
    gtin: str,
    current_user: Optional[User] = Depends(get_optional_user),
    service: ProductService = Depends(get_product_service)
):
    return service.to_read(service.get_product_by_gtin(gtin, user=current_user))


@router.post(
    "/",
    response_model=ProductRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create Passport",
    tags=["Products"]
)
def create_product(
    payload: ProductCreate,
    current_user: User = Depends(get_current_user),
    service: ProductService = Depends(get_product_service)
):
    return service.to_read(service.save_product(current_user, payload))


@router.get(
    "/{product_id}",
    response_model=ProductRead,
    summary="Get Digital Product Passport (DPP)",
    tags=["Products"]
)
def get_product(
    product_id: UUID,
    current_user: Optional[User] = Depends(get_optional_user),
    service: ProductService = Depends(get_product_service)
):
    return service.to_read(service.get_product_by_id(product_id, user=current_user))


@router.patch(
    "/{product_id}",
    response_model=ProductRead,
    summary="Update Passport",
    description="Partial update. Send `expected_version` to reject stale writes with 409.",
    tags=["Products"]
)
def update_product(
    product_id: UUID,
    payload: ProductUpdate,
    current_user: User = Depends(get_current_user),
    service: ProductService = Depends(get_product_service)
):
    return service.to_read(service.save_product(current_user, payload, product_id=product_id))


@router.delete(
    "/{product_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Draft Passport",
    tags=["Products"]
)
def delete_product(
    product_id: UUID,
    current_user: User = Depends(get_current_user),
    service: ProductService = Depends(get_product_service)
):
    service.delete_product(current_user, product_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
