import hashlib
import hmac
import json
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

import httpx
from loguru import logger
from sqlmodel import Session, select

from app.core.audit import log_audit_event, SYSTEM_USER
from app.core.config import settings
from app.core.exceptions import NotFoundError, StateConflictError, ValidationError
from app.core.permissions import Action, check_permission, has_role
from app.db.schema import AuditLog, Company, User, UserRole, Webhook, WebhookStatus
from app.models.webhook import WebhookCreate, WebhookUpdate, WEBHOOK_EVENTS

USER_AGENT = "Norruva-Webhook/1.0"
EVENT_HEADER = "X-Norruva-Event"
SIGNATURE_HEADER = "X-Norruva-Signature"

DELIVERY_SUCCESS = "webhook.delivery.success"
DELIVERY_FAILURE = "webhook.delivery.failure"


def sign_body(body: str, secret: Optional[str] = None) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    key = (secret or settings.webhook_secret).encode("utf-8")
    return hmac.new(key, body.encode("utf-8"), hashlib.sha256).hexdigest()


class WebhookService:
    def __init__(self, session: Session, client: Optional[httpx.Client] = None):
        self.session = session
        self.client = client

    # ==========================================================================
    # REGISTRATION
    # ==========================================================================

    def _get_owned_webhook(self, user: User, webhook_id: uuid.UUID) -> Webhook:
        webhook = self.session.get(Webhook, webhook_id)
        if not webhook:
            raise NotFoundError("Webhook", webhook_id)
        if webhook.company_id != user.company_id and not has_role(user, UserRole.ADMIN):
            raise NotFoundError("Webhook", webhook_id)
        return webhook

    @staticmethod
    def _validate_events(events: List[str]) -> None:
        unknown = [e for e in events if e not in WEBHOOK_EVENTS]
        if unknown:
            raise ValidationError([
                {"field": "events", "message": f"Unsupported event '{e}'."} for e in unknown
            ])

    def list_webhooks(self, user: User) -> List[Webhook]:
        check_permission(user, Action.DEVELOPER_MANAGE_API)
        query = select(Webhook).order_by(Webhook.created_at.desc())
        if not has_role(user, UserRole.ADMIN):
            query = query.where(Webhook.company_id == user.company_id)
        return self.session.exec(query).all()

    def get_webhook(self, user: User, webhook_id: uuid.UUID) -> Webhook:
        check_permission(user, Action.DEVELOPER_MANAGE_API)
        return self._get_owned_webhook(user, webhook_id)

    def save_webhook(
        self,
        user: User,
        data: Union[WebhookCreate, WebhookUpdate],
        webhook_id: Optional[uuid.UUID] = None
    ) -> Webhook:
        """
        Registers a new endpoint, or updates one when `webhook_id` is given.
        """
        check_permission(user, Action.DEVELOPER_MANAGE_API)

        if webhook_id is None:
            self._validate_events(data.events)
            webhook = Webhook(
                url=str(data.url),
                events=list(data.events),
                status=data.status,
                company_id=user.company_id,
                user_id=user.id,
            )
            action = "webhook.created"
        else:
            webhook = self._get_owned_webhook(user, webhook_id)
            update_data = data.model_dump(exclude_unset=True)
            if update_data.get("url") is not None:
                webhook.url = str(update_data["url"])
            if update_data.get("events") is not None:
                self._validate_events(update_data["events"])
                webhook.events = list(update_data["events"])
            if update_data.get("status") is not None:
                webhook.status = update_data["status"]
            webhook.updated_at = datetime.utcnow()
            action = "webhook.updated"

        self.session.add(webhook)
        self.session.commit()
        self.session.refresh(webhook)

        log_audit_event(
            self.session, action, webhook.id,
            {"url": webhook.url, "events": webhook.events}, user.id)
        return webhook

    def delete_webhook(self, user: User, webhook_id: uuid.UUID) -> None:
        check_permission(user, Action.DEVELOPER_MANAGE_API)
        webhook = self._get_owned_webhook(user, webhook_id)

        self.session.delete(webhook)
        self.session.commit()

        log_audit_event(self.session, "webhook.deleted", webhook_id, {}, user.id)

    # ==========================================================================
    # DELIVERY
    # ==========================================================================

    def _post(self, url: str, body: str, headers: Dict[str, str]) -> httpx.Response:
        if self.client is not None:
            return self.client.post(url, content=body, headers=headers)
        with httpx.Client(timeout=settings.webhook_timeout_seconds) as client:
            return client.post(url, content=body, headers=headers)

    def _deliver(self, webhook: Webhook, event: str, body: str, signing_enabled: bool) -> bool:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            EVENT_HEADER: event,
        }
        if signing_enabled:
            headers[SIGNATURE_HEADER] = sign_body(body)

        details: Dict[str, Any] = {"event": event, "url": webhook.url, "payload": body}
        try:
            response = self._post(webhook.url, body, headers)
            details["status_code"] = response.status_code
            delivered = response.is_success
            if not delivered:
                details["error"] = f"HTTP {response.status_code}"
        except httpx.HTTPError as e:
            details["status_code"] = None
            details["error"] = str(e)
            delivered = False

        log = logger.bind(component="webhook", webhook_id=str(webhook.id))
        if delivered:
            log.info(f"Webhook {webhook.id} delivered '{event}' to {webhook.url}")
        else:
            log.warning(
                f"Webhook {webhook.id} failed to deliver '{event}': {details['error']}")

        log_audit_event(
            self.session,
            DELIVERY_SUCCESS if delivered else DELIVERY_FAILURE,
            webhook.id,
            details,
            SYSTEM_USER,
        )
        return delivered

    def send_webhook(
        self,
        webhook: Webhook,
        event: str,
        payload: Any,
        signing_enabled: bool = False
    ) -> bool:
        """
        POSTs `{event, createdAt, payload}` to the webhook URL.
        Returns False on failure; delivery errors are audited, never raised.
        """
        body = json.dumps({
            "event": event,
            "createdAt": datetime.utcnow().isoformat() + "Z",
            "payload": payload,
        }, default=str)
        return self._deliver(webhook, event, body, signing_enabled)

    def dispatch_event(self, event: str, payload: Any, company: Company) -> int:
        """
        Delivers `event` to every active webhook of `company` subscribed to it.
        Returns the number of successful deliveries.
        """
        webhooks = self.session.exec(
            select(Webhook).where(
                Webhook.company_id == company.id,
                Webhook.status == WebhookStatus.ACTIVE
            )
        ).all()
        subscribed = [w for w in webhooks if event in (w.events or [])]
        if not subscribed:
            return 0

        logger.info(f"Dispatching '{event}' to {len(subscribed)} webhook(s)")
        signing_enabled = bool((company.settings or {}).get("webhook_signing_enabled"))
        return sum(
            1 for webhook in subscribed
            if self.send_webhook(webhook, event, payload, signing_enabled)
        )

    def replay_webhook(self, user: User, log_id: uuid.UUID) -> bool:
        """
        Re-sends the exact body of a failed delivery.
        """
        check_permission(user, Action.DEVELOPER_MANAGE_API)

        log_entry = self.session.get(AuditLog, log_id)
        if not log_entry or log_entry.action not in (DELIVERY_FAILURE, DELIVERY_SUCCESS):
            raise NotFoundError("Webhook delivery", log_id)
        if log_entry.action != DELIVERY_FAILURE:
            raise StateConflictError(f"Delivery {log_id} did not fail; nothing to replay.")

        webhook = self._get_owned_webhook(user, uuid.UUID(log_entry.entity_id))
        details = log_entry.details or {}
        event = details.get("event", "")

        log_audit_event(
            self.session,
            "webhook.replay.initiated",
            webhook.id,
            {"original_log_id": str(log_id), "event": event},
            user.id,
        )

        company = self.session.get(Company, webhook.company_id)
        signing_enabled = bool(
            company and (company.settings or {}).get("webhook_signing_enabled"))
        return self._deliver(webhook, event, details.get("payload", ""), signing_enabled)
