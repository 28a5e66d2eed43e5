from typing import List, Optional
import uuid
from datetime import datetime, timedelta

import jwt
from loguru import logger
from sqlmodel import Session, select

from app.core.audit import log_audit_event, SYSTEM_USER
from app.core.config import settings
from app.core.exceptions import AuthenticationError, NotFoundError, StateConflictError
from app.core.permissions import Action, check_permission
from app.db.schema import User, Company
from app.models.auth import Token, TokenData
from app.models.user import UserCreate, CompanyCreate
from .password import get_password_hash, verify_password


class UserService:
    ALGORITHM = "HS256"

    def __init__(self, session: Session):
        self.session = session

    def _create_jwt(self, subject: str, expires_delta: timedelta, type: str) -> str:
        """Helper to sign JWTs with specific types."""
        to_encode = {
            "sub": str(subject),
            "exp": datetime.utcnow() + expires_delta,
            "type": type
        }
        return jwt.encode(to_encode, settings.secret_key, algorithm=self.ALGORITHM)

    def _decode_jwt(self, token: str, expected_type: str) -> Optional[TokenData]:
        try:
            payload = jwt.decode(token, settings.secret_key,
                                 algorithms=[self.ALGORITHM])
            user_id = payload.get("sub")
            if not user_id or payload.get("type") != expected_type:
                return None
            return TokenData(user_id=uuid.UUID(user_id))
        except (jwt.PyJWTError, ValueError):
            return None

    # ==========================================================================
    # LOOKUPS
    # ==========================================================================

    def get_user_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        return self.session.get(User, user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        statement = select(User).where(User.email == email.lower())
        return self.session.exec(statement).first()

    def get_company_by_id(self, company_id: uuid.UUID) -> Optional[Company]:
        return self.session.get(Company, company_id)

    def list_users(self, acting_user: User) -> List[User]:
        check_permission(acting_user, Action.USER_MANAGE)
        return self.session.exec(select(User).order_by(User.created_at)).all()

    # ==========================================================================
    # PROVISIONING
    # ==========================================================================

    def create_company(self, company_in: CompanyCreate, acting_user: Optional[User] = None) -> Company:
        """
        Creates a tenant. `acting_user` is None only for seeding.
        """
        if acting_user is not None:
            check_permission(acting_user, Action.COMPANY_MANAGE)

        company = Company(name=company_in.name, settings=dict(company_in.settings))
        self.session.add(company)
        self.session.commit()
        self.session.refresh(company)

        log_audit_event(
            self.session, "company.created", company.id, {"name": company.name},
            acting_user.id if acting_user else SYSTEM_USER)
        return company

    def create_user(self, user_in: UserCreate, acting_user: Optional[User] = None) -> User:
        """
        Provisions a user inside an existing company. `acting_user` is None
        only for seeding.
        """
        if acting_user is not None:
            check_permission(acting_user, Action.USER_MANAGE)

        if self.get_user_by_email(user_in.email):
            raise StateConflictError("A user with this email already exists.")

        if not self.get_company_by_id(user_in.company_id):
            raise NotFoundError("Company", user_in.company_id)

        new_user = User(
            email=user_in.email.lower(),
            hashed_password=get_password_hash(user_in.password),
            full_name=user_in.full_name,
            company_id=user_in.company_id,
            roles=[role.value for role in user_in.roles],
            is_active=True
        )
        self.session.add(new_user)
        self.session.commit()
        self.session.refresh(new_user)

        log_audit_event(
            self.session, "user.created", new_user.id, {"roles": new_user.roles},
            acting_user.id if acting_user else SYSTEM_USER)
        logger.info(f"User created: {new_user.email}")
        return new_user

    # ==========================================================================
    # AUTHENTICATION
    # ==========================================================================

    def authenticate_user(self, email: str, password: str) -> Optional[User]:
        """Verify email and password hash."""
        user = self.get_user_by_email(email)
        if not user:
            return None
        if not verify_password(password, user.hashed_password):
            return None
        return user

    def generate_access_token(self, user: User) -> str:
        return self._create_jwt(
            subject=user.id,
            expires_delta=timedelta(
                minutes=settings.access_token_expire_minutes),
            type="access"
        )

    def generate_refresh_token(self, user: User) -> str:
        return self._create_jwt(
            subject=user.id,
            expires_delta=timedelta(
                minutes=settings.refresh_token_expire_minutes),
            type="refresh"
        )

    def generate_tokens(self, user: User) -> Token:
        return Token(
            access_token=self.generate_access_token(user),
            refresh_token=self.generate_refresh_token(user),
            token_type="bearer"
        )

    def verify_access_token(self, token: str) -> Optional[TokenData]:
        return self._decode_jwt(token, "access")

    def verify_refresh_token(self, token: str) -> Optional[TokenData]:
        return self._decode_jwt(token, "refresh")

    def validate_user(self, user_id: uuid.UUID) -> Optional[User]:
        """Retrieves user and checks is_active flag."""
        user = self.get_user_by_id(user_id)
        if not user or not user.is_active:
            return None
        return user

    def refresh_session(self, refresh_token: str) -> str:
        """
        Exchange a valid refresh token for a new access token.
        """
        token_data = self.verify_refresh_token(refresh_token)
        if not token_data:
            raise AuthenticationError()

        user = self.validate_user(token_data.user_id)
        if not user:
            raise AuthenticationError()

        return self.generate_access_token(user)
