"""Tests for user listing, lookup and admin deletion."""

import pytest
from conftest import auth_header, make_user
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from userauth.errors import EmailInUse, UsernameInUse
from userauth.models.refresh_token import RefreshToken
from userauth.models.user import User
from userauth.services.auth import hash_password
from userauth.services.user_store import UserStore


class TestListUsers:
    def test_requires_auth(self, client: TestClient):
        response = client.get("/api/users")
        assert response.status_code == 401

    def test_newest_first_with_pagination(
        self, client: TestClient, test_user: dict, db_session: Session, auth_service
    ):
        for i in range(4):
            make_user(auth_service, db_session, username=f"user{i}", email=f"user{i}@example.com")

        response = client.get("/api/users?page=1&limit=2", headers=auth_header(test_user["token"]))
        assert response.status_code == 200
        data = response.json()
        assert [u["username"] for u in data["users"]] == ["user3", "user2"]
        assert data["pagination"] == {"totalItems": 5, "totalPages": 3, "currentPage": 1, "itemsPerPage": 2}

        last = client.get("/api/users?page=3&limit=2", headers=auth_header(test_user["token"])).json()
        assert [u["username"] for u in last["users"]] == ["alice"]

    def test_page_past_the_end_is_empty(self, client: TestClient, test_user: dict):
        response = client.get("/api/users?page=9", headers=auth_header(test_user["token"]))
        assert response.status_code == 200
        assert response.json()["users"] == []
        assert response.json()["pagination"]["totalItems"] == 1

    def test_search_matches_username_or_email(
        self, client: TestClient, test_user: dict, db_session: Session, auth_service
    ):
        make_user(auth_service, db_session, username="bob", email="bob@corp.test")
        make_user(auth_service, db_session, username="carol", email="carol@example.com")

        response = client.get("/api/users?search=CORP", headers=auth_header(test_user["token"]))
        assert [u["username"] for u in response.json()["users"]] == ["bob"]

        response = client.get("/api/users?search=aro", headers=auth_header(test_user["token"]))
        assert [u["username"] for u in response.json()["users"]] == ["carol"]

    def test_search_wildcards_match_literally(
        self, client: TestClient, test_user: dict, db_session: Session, auth_service
    ):
        make_user(auth_service, db_session, username="under_score", email="under@example.com")
        make_user(auth_service, db_session, username="bob", email="bob@example.com")
        headers = auth_header(test_user["token"])

        assert client.get("/api/users", params={"search": "%"}, headers=headers).json()["users"] == []
        response = client.get("/api/users", params={"search": "_"}, headers=headers)
        assert [u["username"] for u in response.json()["users"]] == ["under_score"]
        assert client.get("/api/users", params={"search": "\\"}, headers=headers).json()["users"] == []

    def test_invalid_paging_params(self, client: TestClient, test_user: dict):
        assert client.get("/api/users?page=0", headers=auth_header(test_user["token"])).status_code == 400
        assert client.get("/api/users?limit=101", headers=auth_header(test_user["token"])).status_code == 400

    def test_listing_hides_private_fields(self, client: TestClient, test_user: dict):
        user = client.get("/api/users", headers=auth_header(test_user["token"])).json()["users"][0]
        assert set(user) == {
            "id",
            "username",
            "email",
            "profileImage",
            "emailVerified",
            "roles",
            "createdAt",
            "updatedAt",
        }


class TestGetUser:
    def test_get_user(self, client: TestClient, test_user: dict, admin_user: dict):
        response = client.get(f"/api/users/{admin_user['user_id']}", headers=auth_header(test_user["token"]))
        assert response.status_code == 200
        assert response.json()["username"] == "root"
        assert response.json()["roles"] == ["user", "admin"]

    def test_get_missing_user(self, client: TestClient, test_user: dict):
        response = client.get("/api/users/9999", headers=auth_header(test_user["token"]))
        assert response.status_code == 404
        assert response.json()["code"] == "user_not_found"


class TestDeleteUser:
    def test_non_admin_forbidden(self, client: TestClient, test_user: dict, admin_user: dict):
        response = client.delete(f"/api/users/{admin_user['user_id']}", headers=auth_header(test_user["token"]))
        assert response.status_code == 403
        assert response.json()["code"] == "forbidden"

    def test_moderator_forbidden(self, client: TestClient, test_user: dict, db_session: Session, auth_service):
        from userauth.models.role import RoleName

        make_user(auth_service, db_session, username="mod", email="mod@example.com", roles=(RoleName.MODERATOR,))
        token = auth_service.signin(db_session, "mod@example.com", "secret1", "127.0.0.1").access_token
        response = client.delete(f"/api/users/{test_user['user_id']}", headers=auth_header(token))
        assert response.status_code == 403

    def test_requires_auth(self, client: TestClient, test_user: dict):
        response = client.delete(f"/api/users/{test_user['user_id']}")
        assert response.status_code == 401

    def test_admin_soft_deletes(self, client: TestClient, test_user: dict, admin_user: dict, db_session: Session):
        response = client.delete(f"/api/users/{test_user['user_id']}", headers=auth_header(admin_user["token"]))
        assert response.status_code == 200

        # The row stays, hidden from every lookup
        row = db_session.query(User).populate_existing().filter(User.id == test_user["user_id"]).one()
        assert row.deleted_at is not None

        lookup = client.get(f"/api/users/{test_user['user_id']}", headers=auth_header(admin_user["token"]))
        assert lookup.status_code == 404
        listing = client.get("/api/users", headers=auth_header(admin_user["token"])).json()
        assert [u["username"] for u in listing["users"]] == ["root"]

    def test_delete_revokes_sessions(self, client: TestClient, test_user: dict, admin_user: dict, db_session: Session):
        client.delete(f"/api/users/{test_user['user_id']}", headers=auth_header(admin_user["token"]))

        tokens = db_session.query(RefreshToken).populate_existing().filter(RefreshToken.user_id == test_user["user_id"])
        assert all(not t.is_active for t in tokens)

        refresh = client.post("/api/auth/refresh-token", json={"refreshToken": test_user["refresh_token"]})
        assert refresh.status_code == 401
        signin = client.post("/api/auth/signin", json={"email": test_user["email"], "password": "secret1"})
        assert signin.status_code == 401

    def test_deleted_email_stays_reserved(self, client: TestClient, test_user: dict, admin_user: dict):
        client.delete(f"/api/users/{test_user['user_id']}", headers=auth_header(admin_user["token"]))
        response = client.post(
            "/api/auth/signup",
            data={"username": "alice-again", "email": test_user["email"], "password": "secret1"},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "email_in_use"

    def test_delete_missing_user(self, client: TestClient, admin_user: dict):
        response = client.delete("/api/users/9999", headers=auth_header(admin_user["token"]))
        assert response.status_code == 404

    def test_deleted_admin_token_stops_working(
        self, client: TestClient, test_user: dict, admin_user: dict, db_session: Session, auth_service
    ):
        """An unexpired access token is rejected once its owner is deleted."""
        auth_service.delete_user(db_session, admin_user["user_id"], "127.0.0.1")
        headers = auth_header(admin_user["token"])

        for response in (
            client.get("/api/auth/me", headers=headers),
            client.get("/api/users", headers=headers),
            client.delete(f"/api/users/{test_user['user_id']}", headers=headers),
        ):
            assert response.status_code == 401
            assert response.json()["code"] == "invalid_token"

        assert client.get(f"/api/users/{test_user['user_id']}", headers=auth_header(test_user["token"])).status_code == 200

    def test_revoked_role_applies_to_existing_token(
        self, client: TestClient, test_user: dict, admin_user: dict, db_session: Session
    ):
        """Roles are read from the stored user, not from the token claims."""
        admin = db_session.get(User, admin_user["user_id"])
        admin.roles = [role for role in admin.roles if role.name != "admin"]
        db_session.commit()

        response = client.delete(f"/api/users/{test_user['user_id']}", headers=auth_header(admin_user["token"]))
        assert response.status_code == 403


class TestUserStore:
    """Credential store behaviour below the HTTP layer."""

    def test_duplicate_email_maps_to_conflict(self, db_session: Session, test_user: dict):
        store = UserStore()
        with pytest.raises(EmailInUse):
            store.create_with_default_role(
                db_session,
                username="racer",
                email="alice@example.com",
                password_hash=hash_password("secret1"),
                verification_token="tok-1",
            )

    def test_duplicate_username_maps_to_conflict(self, db_session: Session, test_user: dict):
        store = UserStore()
        with pytest.raises(UsernameInUse):
            store.create_with_default_role(
                db_session,
                username="alice",
                email="racer@example.com",
                password_hash=hash_password("secret1"),
                verification_token="tok-2",
            )
        assert db_session.query(User).count() == 1

    def test_lookups_skip_soft_deleted_users(self, db_session: Session, test_user: dict):
        store = UserStore()
        user = store.find_by_username(db_session, "alice")
        assert user is not None and user.id == test_user["user_id"]
        assert store.find_by_email(db_session, " ALICE@example.com ").id == user.id

        store.soft_delete(db_session, user)
        db_session.commit()

        assert store.find_by_username(db_session, "alice") is None
        assert store.find_by_email(db_session, "alice@example.com") is None
        assert store.find_by_id(db_session, user.id) is None
        assert store.email_taken(db_session, "alice@example.com")
        assert store.username_taken(db_session, "alice")
