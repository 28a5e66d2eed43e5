from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlmodel import Session

from app.core.exceptions import AuthenticationError
from app.db.core import get_session
from app.db.schema import User
from app.services.audit import AuditService
from app.services.bulk import BulkService
from app.services.oracle import ComplianceOracle, get_oracle
from app.services.product import ProductService
from app.services.user import UserService
from app.services.webhook import WebhookService
from app.services.workflow import WorkflowService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/signin", auto_error=False)


def get_user_service(session: Session = Depends(get_session)) -> UserService:
    """Creates a UserService instance using the active DB session."""
    return UserService(session)


def get_product_service(session: Session = Depends(get_session)) -> ProductService:
    return ProductService(session=session)


def get_compliance_oracle() -> ComplianceOracle:
    return get_oracle()


def get_workflow_service(
    session: Session = Depends(get_session),
    oracle: ComplianceOracle = Depends(get_compliance_oracle)
) -> WorkflowService:
    return WorkflowService(session=session, oracle=oracle)


def get_bulk_service(
    session: Session = Depends(get_session),
    oracle: ComplianceOracle = Depends(get_compliance_oracle)
) -> BulkService:
    return BulkService(session=session, oracle=oracle)


def get_audit_service(session: Session = Depends(get_session)) -> AuditService:
    return AuditService(session=session)


def get_webhook_service(session: Session = Depends(get_session)) -> WebhookService:
    return WebhookService(session=session)


def get_optional_user(
    token: Optional[str] = Depends(oauth2_scheme),
    service: UserService = Depends(get_user_service)
) -> Optional[User]:
    """
    Resolves the bearer token when one is sent. Anonymous callers get None
    and only see published passports.
    """
    if not token:
        return None

    token_data = service.verify_access_token(token)
    if not token_data:
        raise AuthenticationError()

    user = service.validate_user(token_data.user_id)
    if user is None:
        raise AuthenticationError()
    return user


def get_current_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    """
    Gatekeeper for protected routes.
    """
    if user is None:
        raise AuthenticationError("Not authenticated")
    return user
