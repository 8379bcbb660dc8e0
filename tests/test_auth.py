"""Testes de cadastro, login, token Bearer, perfil e preferências."""

from datetime import datetime, timedelta

from extensions import db
from models import Familia, MembroFamilia, Subscription, User


class TestRegistration:

    def test_register_creates_user_with_free_subscription(self, client):
        resp = client.post("/api/register", json={
            "email": "Bia@Example.com",
            "password": "segredo123",
            "confirm": "segredo123",
            "full_name": "Bia",
        })
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["success"] is True
        assert body["user"]["email"] == "bia@example.com"

        user = User.query.filter_by(email="bia@example.com").one()
        assert user.password_hash != "segredo123"
        sub = Subscription.query.filter_by(user_id=user.id).one()
        assert sub.plan_type == "free"

    def test_register_rejects_mismatched_passwords(self, client):
        resp = client.post("/api/register", json={
            "email": "bia@example.com", "password": "segredo123", "confirm": "outra",
        })
        assert resp.status_code == 400
        assert resp.get_json()["success"] is False

    def test_register_rejects_duplicate_email(self, client, make_user):
        make_user(email="bia@example.com")
        resp = client.post("/api/register", json={
            "email": "BIA@example.com", "password": "segredo123", "confirm": "segredo123",
        })
        assert resp.status_code == 409

    def test_register_rejects_invalid_email(self, client):
        resp = client.post("/api/register", json={
            "email": "sem-arroba", "password": "segredo123", "confirm": "segredo123",
        })
        assert resp.status_code == 400


class TestLogin:

    def test_login_returns_token_and_user(self, client, make_user):
        make_user(email="ana@example.com", full_name="Ana")
        resp = client.post("/api/login", json={"email": "ana@example.com", "password": "segredo123"})
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["token_type"] == "Bearer"
        assert body["access_token"]
        assert body["user"]["full_name"] == "Ana"
        assert body["user"]["plan_type"] == "free"

    def test_login_sets_session(self, client, make_user):
        make_user()
        client.post("/api/login", json={"email": "ana@example.com", "password": "segredo123"})
        resp = client.get("/api/me")
        assert resp.status_code == 200
        assert resp.get_json()["user"]["email"] == "ana@example.com"

    def test_login_wrong_password(self, client, make_user):
        make_user()
        resp = client.post("/api/login", json={"email": "ana@example.com", "password": "errada"})
        assert resp.status_code == 401

    def test_login_missing_fields(self, client):
        resp = client.post("/api/login", json={"email": "ana@example.com"})
        assert resp.status_code == 400

    def test_logout_revokes_token(self, client, make_user, auth_headers):
        user = make_user()
        headers = auth_headers(user)
        assert client.post("/api/logout", headers=headers).status_code == 200
        assert client.get("/api/me", headers=headers).status_code == 401


class TestBearerToken:

    def test_requests_without_credentials_are_rejected(self, client):
        resp = client.get("/api/me")
        assert resp.status_code == 401
        assert resp.get_json() == {"success": False, "message": "Não autenticado"}

    def test_expired_token_is_rejected(self, client, make_user, auth_headers):
        user = make_user()
        headers = auth_headers(user)
        user.api_token_expires_at = datetime.utcnow() - timedelta(minutes=1)
        db.session.commit()
        assert client.get("/api/me", headers=headers).status_code == 401

    def test_unknown_token_is_rejected(self, client):
        resp = client.get("/api/me", headers={"Authorization": "Bearer nao-existe"})
        assert resp.status_code == 401


class TestProfile:

    def test_update_profile(self, client, make_user, auth_headers):
        user = make_user()
        resp = client.put("/api/me", headers=auth_headers(user), json={
            "full_name": "Ana Souza", "phone_number": "+55 (11) 99999-0000",
        })
        assert resp.status_code == 200
        data = resp.get_json()["user"]
        assert data["full_name"] == "Ana Souza"
        assert data["phone_number"] == "+5511999990000"

    def test_empty_name_is_rejected(self, client, make_user, auth_headers):
        user = make_user()
        resp = client.put("/api/me", headers=auth_headers(user), json={"full_name": "  "})
        assert resp.status_code == 400


class TestPreferences:

    def test_defaults(self, client, make_user, auth_headers):
        user = make_user()
        prefs = client.get("/api/preferences", headers=auth_headers(user)).get_json()["preferences"]
        assert prefs == {
            "view_mode": "individual",
            "theme": "light",
            "confirmar_registros": True,
            "has_family_access": False,
        }

    def test_family_mode_requires_membership(self, client, make_user, auth_headers):
        user = make_user()
        resp = client.put("/api/preferences", headers=auth_headers(user), json={"view_mode": "family"})
        assert resp.status_code == 409

    def test_invalid_theme(self, client, make_user, auth_headers):
        user = make_user()
        resp = client.put("/api/preferences", headers=auth_headers(user), json={"theme": "neon"})
        assert resp.status_code == 400

    def test_family_mode_with_membership(self, client, make_user, auth_headers):
        user = make_user()
        familia = Familia(nome_familia="Souza", responsavel_user_id=user.id)
        db.session.add(familia)
        db.session.flush()
        db.session.add(MembroFamilia(familia_id=familia.id, user_id=user.id, papel="Responsável"))
        db.session.commit()

        resp = client.put("/api/preferences", headers=auth_headers(user), json={"view_mode": "family", "theme": "dark"})
        assert resp.status_code == 200
        prefs = resp.get_json()["preferences"]
        assert prefs["view_mode"] == "family"
        assert prefs["theme"] == "dark"
        assert prefs["has_family_access"] is True

    def test_family_mode_falls_back_when_membership_is_gone(self, client, make_user, auth_headers):
        user = make_user(view_mode="family")
        prefs = client.get("/api/preferences", headers=auth_headers(user)).get_json()["preferences"]
        assert prefs["view_mode"] == "individual"
        assert db.session.get(User, user.id).view_mode == "individual"


class TestHealth:

    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["database"] == "ok"

    def test_unknown_api_route_returns_json(self, client):
        resp = client.get("/api/nao-existe")
        assert resp.status_code == 404
        assert resp.get_json()["message"] == "Endpoint não encontrado"

    def test_wrong_method_returns_json(self, client):
        resp = client.delete("/api/health")
        assert resp.status_code == 405
        assert resp.get_json()["success"] is False
