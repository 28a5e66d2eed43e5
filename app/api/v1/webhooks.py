from typing import List
from uuid import UUID
from fastapi import APIRouter, Depends, Response, status

from app.core.dependencies import get_current_user, get_webhook_service
from app.db.schema import User
from app.models.webhook import WebhookCreate, WebhookUpdate, WebhookRead
from app.services.webhook import WebhookService

router = APIRouter()


@router.get("/", response_model=List[WebhookRead], summary="List Webhooks", tags=["Webhooks"])
def list_webhooks(
    current_user: User = Depends(get_current_user),
    service: WebhookService = Depends(get_webhook_service)
):
    return service.list_webhooks(current_user)


@router.post(
    "/",
    response_model=WebhookRead,
    status_code=status.HTTP_201_CREATED,
    summary="Register Webhook",
    tags=["Webhooks"]
)
def create_webhook(
    payload: WebhookCreate,
    current_user: User = Depends(get_current_user),
    service: WebhookService = Depends(get_webhook_service)
):
    return service.save_webhook(current_user, payload)


@router.get("/{webhook_id}", response_model=WebhookRead, summary="Get Webhook", tags=["Webhooks"])
def get_webhook(
    webhook_id: UUID,
    current_user: User = Depends(get_current_user),
    service: WebhookService = Depends(get_webhook_service)
):
    return service.get_webhook(current_user, webhook_id)


@router.patch("/{webhook_id}", response_model=WebhookRead, summary="Update Webhook", tags=["Webhooks"])
def update_webhook(
    webhook_id: UUID,
    payload: WebhookUpdate,
    current_user: User = Depends(get_current_user),
    service: WebhookService = Depends(get_webhook_service)
):
    return service.save_webhook(current_user, payload, webhook_id=webhook_id)


@router.delete(
    "/{webhook_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Webhook",
    tags=["Webhooks"]
)
def delete_webhook(
    webhook_id: UUID,
    current_user: User = Depends(get_current_user),
    service: WebhookService = Depends(get_webhook_service)
):
    service.delete_webhook(current_user, webhook_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/deliveries/{log_id}/replay",
    summary="Replay Failed Delivery",
    tags=["Webhooks"]
)
def replay_delivery(
    log_id: UUID,
    current_user: User = Depends(get_current_user),
    service: WebhookService = Depends(get_webhook_service)
):
    """
    Re-sends the stored body of a failed delivery. Returns whether it went through.
    """
    return {"delivered": service.replay_webhook(current_user, log_id)}
