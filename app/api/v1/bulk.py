from fastapi import APIRouter, BackgroundTasks, Depends

from app.core.dependencies import get_current_user, get_bulk_service
from app.db.schema import User
from app.models.bulk import BulkIdsRequest, BulkCreateRequest, BulkResult
from app.services.bulk import BulkService

router = APIRouter()


@router.post("/delete", response_model=BulkResult, summary="Bulk Delete", tags=["Bulk"])
def bulk_delete(
    payload: BulkIdsRequest,
    current_user: User = Depends(get_current_user),
    service: BulkService = Depends(get_bulk_service)
):
    return service.bulk_delete_products(current_user, payload.product_ids)


@router.post("/submit", response_model=BulkResult, summary="Bulk Submit", tags=["Bulk"])
def bulk_submit(
    payload: BulkIdsRequest,
    current_user: User = Depends(get_current_user),
    service: BulkService = Depends(get_bulk_service)
):
    return service.bulk_submit_for_review(current_user, payload.product_ids)


@router.post("/archive", response_model=BulkResult, summary="Bulk Archive", tags=["Bulk"])
def bulk_archive(
    payload: BulkIdsRequest,
    current_user: User = Depends(get_current_user),
    service: BulkService = Depends(get_bulk_service)
):
    return service.bulk_archive_products(current_user, payload.product_ids)


@router.post("/create", response_model=BulkResult, summary="Bulk Import", tags=["Bulk"])
def bulk_create(
    payload: BulkCreateRequest,
    current_user: User = Depends(get_current_user),
    service: BulkService = Depends(get_bulk_service)
):
    """
    Imports every row as a Draft passport. Invalid rows are reported, not raised.
    """
    return service.bulk_create_products(current_user, payload.products)


@router.post("/anchor", response_model=BulkResult, summary="Bulk Approve & Anchor", tags=["Bulk"])
def bulk_anchor(
    payload: BulkIdsRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: BulkService = Depends(get_bulk_service)
):
    return service.bulk_anchor_products(current_user, payload.product_ids, background_tasks)
