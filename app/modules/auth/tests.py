"""
Tests for the auth module

Covers:
- Username/password login and deactivated accounts
- Admin-only registration and duplicate detection
- Role guards on protected endpoints
- Refresh tokens and default admin bootstrap
"""

from unittest.mock import patch

from app.modules.auth.models import User, UserRole
from app.modules.auth.service import ensure_default_admin
from app.modules.auth.utils import create_refresh_token, create_access_token


class TestLogin:
    """Login by username"""

    def test_login_success_returns_tokens(self, client, make_user):
        make_user("nimal", UserRole.CASHIER, password="rice&curry")

        response = client.post("/auth/login", json={"username": "nimal", "password": "rice&curry"})

        assert response.status_code == 200
        body = response.json()
        assert body["token_type"] == "bearer"
        assert body["access_token"]
        assert body["refresh_token"]
        assert body["user"]["username"] == "nimal"
        assert body["user"]["role"] == "cashier"
        assert body["user"]["last_login"] is not None

    def test_login_wrong_password(self, client, make_user):
        make_user("nimal", password="rice&curry")

        response = client.post("/auth/login", json={"username": "nimal", "password": "kottu"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid credentials"

    def test_login_unknown_user(self, client):
        response = client.post("/auth/login", json={"username": "ghost", "password": "x"})
        assert response.status_code == 401

    def test_login_deactivated_account(self, client, make_user):
        make_user("kamala", password="secret123", active=False)

        response = client.post("/auth/login", json={"username": "kamala", "password": "secret123"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Account is deactivated"


class TestRegistration:
    """Admin-only account creation"""

    def test_admin_registers_user(self, client, admin_headers, db_session):
        payload = {
            "username": "sunil",
            "email": "sunil@lankapos.lk",
            "password": "hoppers1",
            "full_name": "Sunil Perera",
            "role": "kitchen_staff"
        }

        response = client.post("/auth/register", json=payload, headers=admin_headers)

        assert response.status_code == 201
        assert response.json()["role"] == "kitchen_staff"
        stored = db_session.query(User).filter(User.username == "sunil").one()
        assert stored.password != "hoppers1"

    def test_duplicate_username_rejected(self, client, admin_headers, make_user):
        make_user("sunil")
        payload = {
            "username": "sunil",
            "email": "other@lankapos.lk",
            "password": "hoppers1",
            "full_name": "Sunil Again"
        }

        response = client.post("/auth/register", json=payload, headers=admin_headers)

        assert response.status_code == 400

    def test_cashier_cannot_register(self, client, cashier_headers):
        payload = {
            "username": "intruder",
            "email": "intruder@lankapos.lk",
            "password": "hoppers1",
            "full_name": "Not Allowed"
        }

        response = client.post("/auth/register", json=payload, headers=cashier_headers)

        assert response.status_code == 403


class TestTokens:
    """Bearer and refresh token handling"""

    def test_me_requires_token(self, client):
        response = client.get("/auth/me")
        assert response.status_code in (401, 403)

    def test_me_with_token(self, client, cashier_headers):
        response = client.get("/auth/me", headers=cashier_headers)
        assert response.status_code == 200
        assert response.json()["username"] == "cashier_user"

    def test_refresh_token_flow(self, client, cashier_user):
        token = create_refresh_token(str(cashier_user.id))

        response = client.post("/auth/refresh", json={"refresh_token": token})

        assert response.status_code == 200
        assert response.json()["access_token"]

    def test_access_token_is_not_a_refresh_token(self, client, cashier_user):
        token = create_access_token({"sub": str(cashier_user.id)})

        response = client.post("/auth/refresh", json={"refresh_token": token})

        assert response.status_code == 401

    def test_deactivated_user_token_rejected(self, client, db_session, cashier_user, cashier_headers):
        cashier_user.is_active = False
        db_session.commit()

        response = client.get("/auth/me", headers=cashier_headers)

        assert response.status_code == 401


class TestUserManagement:
    """Listing and updating staff"""

    def test_manager_lists_users(self, client, manager_headers, cashier_user):
        response = client.get("/auth/users", headers=manager_headers)
        assert response.status_code == 200
        assert response.json()["total"] == 2

    def test_admin_changes_role(self, client, admin_headers, cashier_user):
        response = client.patch(
            f"/auth/users/{cashier_user.id}",
            json={"role": "manager"},
            headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["role"] == "manager"


class TestDefaultAdmin:
    """Bootstrap administrator"""

    def test_created_when_password_configured(self, db_session):
        with patch("app.modules.auth.service.settings.ADMIN_PASSWORD", "bootstrap!"):
            admin = ensure_default_admin(db_session)

        assert admin is not None
        assert admin.role == UserRole.ADMIN

    def test_skipped_without_password(self, db_session):
        with patch("app.modules.auth.service.settings.ADMIN_PASSWORD", None):
            assert ensure_default_admin(db_session) is None

    def test_skipped_when_admin_exists(self, db_session, admin_user):
        with patch("app.modules.auth.service.settings.ADMIN_PASSWORD", "bootstrap!"):
            assert ensure_default_admin(db_session) is None
