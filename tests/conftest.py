"""
Pytest configuration and fixtures for the passport API tests.
"""

import os
import tempfile

# Settings are read at import time, so configure them before importing the app
_tmp_dir = tempfile.mkdtemp(prefix="norruva-tests-")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STATIC_DIR"] = os.path.join(_tmp_dir, "static")
os.environ["LOG_FILE"] = os.path.join(_tmp_dir, "test.log")
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["ORACLE_URL"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel

from app.main import app
from app.core.dependencies import get_compliance_oracle
from app.db.core import engine, get_session
from app.db.schema import Company, User, UserRole
from app.services.oracle import LocalComplianceOracle
from app.services.password import get_password_hash
from app.services.product import ProductService
from app.services.user import UserService
from app.services.workflow import WorkflowService
from tests.helpers import DEFAULT_PASSWORD, complete_product_data


@pytest.fixture(scope="function")
def session():
    """
    Fresh in-memory database for each test.
    """
    SQLModel.metadata.create_all(engine)
    with Session(engine) as db_session:
        yield db_session
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def oracle():
    return LocalComplianceOracle(secret="oracle-test-secret")


# ==============================================================================
# TENANTS & USERS
# ==============================================================================

@pytest.fixture
def companies(session):
    """Owning tenant, a competing tenant and an independent audit firm."""
    created = {}
    for key, name, settings in [
        ("own", "GreenTech Supplies", {"webhook_signing_enabled": True}),
        ("other", "EcoFashion Co", {}),
        ("audit", "Circular Audits Ltd", {}),
    ]:
        company = Company(name=name, settings=settings)
        session.add(company)
        created[key] = company
    session.commit()
    for company in created.values():
        session.refresh(company)
    return created


@pytest.fixture
def make_user(session, companies):
    """Factory: make_user(UserRole.SUPPLIER, company="own")."""
    counter = {"n": 0}

    def _make(*roles, company="own", email=None):
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@example.com",
            hashed_password=get_password_hash(DEFAULT_PASSWORD),
            full_name=f"Test User {counter['n']}",
            company_id=companies[company].id,
            roles=[role.value for role in roles],
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make


@pytest.fixture
def users(make_user):
    return {
        "admin": make_user(UserRole.ADMIN, company="audit"),
        "supplier": make_user(UserRole.SUPPLIER, company="own"),
        "manufacturer": make_user(UserRole.MANUFACTURER, company="own"),
        "developer": make_user(UserRole.DEVELOPER, company="own"),
        "analyst": make_user(UserRole.BUSINESS_ANALYST, company="own"),
        "own_auditor": make_user(UserRole.AUDITOR, company="own"),
        "other_supplier": make_user(UserRole.SUPPLIER, company="other"),
        "auditor": make_user(UserRole.AUDITOR, company="audit"),
        "compliance": make_user(UserRole.COMPLIANCE_MANAGER, company="audit"),
        "recycler": make_user(UserRole.RECYCLER, company="other"),
        "service_provider": make_user(UserRole.SERVICE_PROVIDER, company="other"),
        "retailer": make_user(UserRole.RETAILER, company="other"),
    }


# ==============================================================================
# SERVICES & PRODUCTS
# ==============================================================================

@pytest.fixture
def product_service(session):
    return ProductService(session)


@pytest.fixture
def workflow(session, oracle):
    return WorkflowService(session, oracle)


@pytest.fixture
def make_product(product_service, users):
    """Factory: creates a draft passport owned by the `own` supplier."""
    counter = {"n": 0}

    def _make(owner=None, **overrides):
        counter["n"] += 1
        overrides.setdefault("gtin", f"{counter['n']:014d}")
        return product_service.save_product(
            owner or users["supplier"], complete_product_data(**overrides))

    return _make


@pytest.fixture
def published_product(make_product, workflow, users):
    """A passport taken through submit and approve, anchored inline."""
    product = make_product()
    workflow.submit_for_review(users["supplier"], product.id)
    return workflow.approve_passport(users["auditor"], product.id)


# ==============================================================================
# HTTP
# ==============================================================================

@pytest.fixture
def client(session, oracle):
    """
    Test client bound to the test session. The lifespan is not entered;
    tables come from the `session` fixture.
    """
    def override_get_session():
        yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_compliance_oracle] = lambda: oracle

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(session):
    """auth_headers(user) -> Authorization header for that user."""
    def _headers(user):
        token = UserService(session).generate_access_token(user)
        return {"Authorization": f"Bearer {token}"}

    return _headers
