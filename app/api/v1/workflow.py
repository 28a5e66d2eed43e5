from uuid import UUID
from fastapi import APIRouter, BackgroundTasks, Depends, status

from app.core.dependencies import get_current_user, get_workflow_service
from app.db.schema import User
from app.models.product import (
    ProductRead,
    RejectPayload,
    OverridePayload,
    CustodyStepCreate,
    OwnershipTransfer,
    CustomsInspectionCreate,
    ServiceRecordCreate
)
from app.services.product import ProductService
from app.services.workflow import WorkflowService

router = APIRouter()


@router.post(
    "/{product_id}/submit",
    response_model=ProductRead,
    summary="Submit for Review",
    tags=["Workflow"]
)
def submit_for_review(
    product_id: UUID,
    current_user: User = Depends(get_current_user),
    service: WorkflowService = Depends(get_workflow_service)
):
    return ProductService.to_read(service.submit_for_review(current_user, product_id))


@router.post(
    "/{product_id}/approve",
    response_model=ProductRead,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Approve & Anchor",
    description="Locks the passport and anchors it in the background. Poll `anchoring_status` for the outcome.",
    tags=["Workflow"]
)
def approve_passport(
    product_id: UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    service: WorkflowService = Depends(get_workflow_service)
):
    return ProductService.to_read(
        service.approve_passport(current_user, product_id, background_tasks))


@router.post(
    "/{product_id}/reject",
    response_model=ProductRead,
    summary="Reject with Compliance Gaps",
    tags=["Workflow"]
)
def reject_passport(
    product_id: UUID,
    payload: RejectPayload,
    current_user: User = Depends(get_current_user),
    service: WorkflowService = Depends(get_workflow_service)
):
    return ProductService.to_read(
        service.reject_passport(current_user, product_id, payload.reason, payload.gaps))


@router.post(
    "/{product_id}/resolve",
    response_model=ProductRead,
    summary="Resolve Compliance Issue",
    tags=["Workflow"]
)
def resolve_compliance_issue(
    product_id: UUID,
    current_user: User = Depends(get_current_user),
    service: WorkflowService = Depends(get_workflow_service)
):
    return ProductService.to_read(service.resolve_compliance_issue(current_user, product_id))


@router.post(
    "/{product_id}/override",
    response_model=ProductRead,
    summary="Override Verification",
    tags=["Workflow"]
)
def override_verification(
    product_id: UUID,
    payload: OverridePayload,
    current_user: User = Depends(get_current_user),
    service: WorkflowService = Depends(get_workflow_service)
):
    return ProductService.to_read(
        service.override_verification(current_user, product_id, payload.reason))


@router.post(
    "/{product_id}/custody",
    response_model=ProductRead,
    summary="Add Custody Step",
    tags=["Supply Chain"]
)
def add_custody_step(
    product_id: UUID,
    payload: CustodyStepCreate,
    current_user: User = Depends(get_current_user),
    service: WorkflowService = Depends(get_workflow_service)
):
    return ProductService.to_read(service.add_custody_step(current_user, product_id, payload))


@router.post(
    "/{product_id}/ownership",
    response_model=ProductRead,
    summary="Transfer Ownership Token",
    tags=["Supply Chain"]
)
def transfer_ownership(
    product_id: UUID,
    payload: OwnershipTransfer,
    current_user: User = Depends(get_current_user),
    service: WorkflowService = Depends(get_workflow_service)
):
    return ProductService.to_read(
        service.transfer_ownership(current_user, product_id, payload.new_owner_address))


@router.post(
    "/{product_id}/customs",
    response_model=ProductRead,
    summary="Record Customs Inspection",
    tags=["Supply Chain"]
)
def perform_customs_inspection(
    product_id: UUID,
    payload: CustomsInspectionCreate,
    current_user: User = Depends(get_current_user),
    service: WorkflowService = Depends(get_workflow_service)
):
    return ProductService.to_read(
        service.perform_customs_inspection(current_user, product_id, payload))


@router.post(
    "/{product_id}/zkp",
    response_model=ProductRead,
    summary="Generate Compliance Proof",
    tags=["Trust"]
)
def generate_zk_proof(
    product_id: UUID,
    current_user: User = Depends(get_current_user),
    service: WorkflowService = Depends(get_workflow_service)
):
    return ProductService.to_read(
        service.generate_zk_proof_for_product(current_user, product_id))


@router.post(
    "/{product_id}/zkp/verify",
    response_model=ProductRead,
    summary="Verify Compliance Proof",
    tags=["Trust"]
)
def verify_zk_proof(
    product_id: UUID,
    current_user: User = Depends(get_current_user),
    service: WorkflowService = Depends(get_workflow_service)
):
    return ProductService.to_read(
        service.verify_zk_proof_for_product(current_user, product_id))


@router.post(
    "/{product_id}/recycle",
    response_model=ProductRead,
    summary="Mark as Recycled",
    tags=["End of Life"]
)
def mark_as_recycled(
    product_id: UUID,
    current_user: User = Depends(get_current_user),
    service: WorkflowService = Depends(get_workflow_service)
):
    return ProductService.to_read(service.mark_as_recycled(current_user, product_id))


@router.post(
    "/{product_id}/service-records",
    response_model=ProductRead,
    status_code=status.HTTP_201_CREATED,
    summary="Add Service Record",
    tags=["End of Life"]
)
def add_service_record(
    product_id: UUID,
    payload: ServiceRecordCreate,
    current_user: User = Depends(get_current_user),
    service: WorkflowService = Depends(get_workflow_service)
):
    return ProductService.to_read(
        service.add_service_record(current_user, product_id, payload.notes))
