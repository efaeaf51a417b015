"""
Shared pytest fixtures.

The suite runs against an in-memory sqlite database; the environment is
configured before the application is imported so the engine binds to it.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "false"
os.environ.pop("ADMIN_PASSWORD", None)

import pytest
from fastapi.testclient import TestClient

from app.database.database import Base, SessionLocal, sync_engine, get_db
from app.main import app
from app.modules.auth.models import User, UserRole
from app.modules.auth.utils import hash_password, create_access_token
from app.modules.vat.service import clear_vat_settings_cache


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=sync_engine)
    clear_vat_settings_cache()
    yield
    Base.metadata.drop_all(bind=sync_engine)
    clear_vat_settings_cache()


@pytest.fixture
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db_session):
    def _override():
        yield db_session

    app.dependency_overrides[get_db] = _override
    yield TestClient(app)
    app.dependency_overrides.clear()


def _make_user(db_session, username: str, role: UserRole, password: str = "secret123", active: bool = True) -> User:
    user = User(
        username=username,
        email=f"{username}@lankapos.lk",
        password=hash_password(password),
        full_name=username.replace("_", " ").title(),
        role=role,
        is_active=active
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


def _headers(user: User) -> dict:
    token = create_access_token({"sub": str(user.id), "username": user.username, "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_user(db_session):
    def _factory(username: str, role: UserRole = UserRole.CASHIER, password: str = "secret123", active: bool = True):
        return _make_user(db_session, username, role, password, active)
    return _factory


@pytest.fixture
def admin_user(db_session):
    return _make_user(db_session, "admin_user", UserRole.ADMIN)


@pytest.fixture
def manager_user(db_session):
    return _make_user(db_session, "manager_user", UserRole.MANAGER)


@pytest.fixture
def cashier_user(db_session):
    return _make_user(db_session, "cashier_user", UserRole.CASHIER)


@pytest.fixture
def kitchen_user(db_session):
    return _make_user(db_session, "kitchen_user", UserRole.KITCHEN_STAFF)


@pytest.fixture
def admin_headers(admin_user):
    return _headers(admin_user)


@pytest.fixture
def manager_headers(manager_user):
    return _headers(manager_user)


@pytest.fixture
def cashier_headers(cashier_user):
    return _headers(cashier_user)


@pytest.fixture
def kitchen_headers(kitchen_user):
    return _headers(kitchen_user)


@pytest.fixture
def auth_headers(admin_headers):
    """Headers of a fully privileged user."""
    return admin_headers
