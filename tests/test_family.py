"""Testes da família: criação, membros, convites e visão agregada."""

from datetime import date, datetime, timedelta

from extensions import db
from models import FamilyInvite, MembroFamilia


def _create_family(client, headers, nome="Souza"):
    resp = client.post("/api/family", headers=headers, json={"nome_familia": nome})
    assert resp.status_code == 201
    return resp.get_json()["family"]


def _invite(client, headers, **payload):
    return client.post("/api/family/invites", headers=headers, json=payload)


class TestFamily:

    def test_creator_becomes_responsible(self, client, make_user, auth_headers):
        ana = make_user()
        family = _create_family(client, auth_headers(ana))
        assert family["responsavel_user_id"] == ana.id
        assert family["is_responsavel"] is True
        assert [m["papel"] for m in family["membros"]] == ["Responsável"]

    def test_cannot_create_two_families(self, client, make_user, auth_headers):
        ana = make_user()
        headers = auth_headers(ana)
        _create_family(client, headers)
        resp = client.post("/api/family", headers=headers, json={"nome_familia": "Outra"})
        assert resp.status_code == 409

    def test_name_is_required(self, client, make_user, auth_headers):
        ana = make_user()
        resp = client.post("/api/family", headers=auth_headers(ana), json={"nome_familia": " "})
        assert resp.status_code == 400

    def test_get_without_family(self, client, make_user, auth_headers):
        ana = make_user()
        assert client.get("/api/family", headers=auth_headers(ana)).get_json()["family"] is None


class TestInvites:

    def test_free_plan_cannot_invite(self, client, make_user, auth_headers):
        ana = make_user(plan="free")
        headers = auth_headers(ana)
        _create_family(client, headers)
        resp = _invite(client, headers, papel="Filha")
        assert resp.status_code == 403
        assert resp.get_json()["feature"] == "familyMembers"

    def test_invite_and_accept(self, client, make_user, auth_headers):
        ana = make_user(email="ana@example.com", plan="premium", full_name="Ana")
        bia = make_user(email="bia@example.com")
        ana_headers = auth_headers(ana)
        _create_family(client, ana_headers)

        resp = _invite(client, ana_headers, papel="Filha", cota_mensal=300)
        assert resp.status_code == 201
        invite = resp.get_json()["invite"]
        assert invite["accept_url"] == f"http://localhost:5173/convite/{invite['token']}"
        assert invite["status"] == "pending"

        public = client.get(f"/api/invites/{invite['token']}").get_json()["invite"]
        assert "token" not in public
        assert public["familia"]["nome_familia"] == "Souza"
        assert public["familia"]["responsavel_nome"] == "Ana"

        resp = client.post(f"/api/invites/{invite['token']}/accept", headers=auth_headers(bia))
        assert resp.status_code == 200
        membro = MembroFamilia.query.filter_by(user_id=bia.id).one()
        assert membro.papel == "Filha"
        assert float(membro.cota_mensal) == 300.0

        # convite já usado
        again = client.post(f"/api/invites/{invite['token']}/accept", headers=auth_headers(bia))
        assert again.status_code == 404

    def test_expired_invite(self, client, make_user, auth_headers):
        ana = make_user(email="ana@example.com", plan="premium")
        bia = make_user(email="bia@example.com")
        ana_headers = auth_headers(ana)
        _create_family(client, ana_headers)
        token = _invite(client, ana_headers).get_json()["invite"]["token"]

        invite = FamilyInvite.query.filter_by(token=token).one()
        invite.expires_at = datetime.utcnow() - timedelta(seconds=1)
        db.session.commit()

        assert client.get(f"/api/invites/{token}").status_code == 404
        assert client.post(f"/api/invites/{token}/accept", headers=auth_headers(bia)).status_code == 404

    def test_member_of_other_family_cannot_accept(self, client, make_user, auth_headers):
        ana = make_user(email="ana@example.com", plan="premium")
        caio = make_user(email="caio@example.com")
        _create_family(client, auth_headers(caio), nome="Lima")
        ana_headers = auth_headers(ana)
        _create_family(client, ana_headers)
        token = _invite(client, ana_headers).get_json()["invite"]["token"]

        resp = client.post(f"/api/invites/{token}/accept", headers=auth_headers(caio))
        assert resp.status_code == 409

    def test_limit_counts_members_and_pending_invites(self, client, make_user, auth_headers):
        ana = make_user(plan="premium")
        headers = auth_headers(ana)
        _create_family(client, headers)
        for _ in range(5):
            assert _invite(client, headers).status_code == 201
        assert _invite(client, headers).status_code == 403

    def test_cancel_invite(self, client, make_user, auth_headers):
        ana = make_user(plan="premium")
        headers = auth_headers(ana)
        _create_family(client, headers)
        invite = _invite(client, headers).get_json()["invite"]

        assert client.delete(f"/api/family/invites/{invite['id']}", headers=headers).status_code == 200
        assert client.get("/api/family/invites", headers=headers).get_json()["invites"] == []
        assert client.get(f"/api/invites/{invite['token']}").status_code == 404

    def test_only_responsible_invites(self, client, make_user, auth_headers):
        ana = make_user(email="ana@example.com", plan="premium")
        bia = make_user(email="bia@example.com", plan="premium")
        ana_headers = auth_headers(ana)
        _create_family(client, ana_headers)
        token = _invite(client, ana_headers).get_json()["invite"]["token"]
        bia_headers = auth_headers(bia)
        client.post(f"/api/invites/{token}/accept", headers=bia_headers)

        assert _invite(client, bia_headers).status_code == 403

    def test_invite_email_is_sent_through_brevo(self, app, client, make_user, auth_headers, fake_post):
        app.config["BREVO_API_KEY"] = "xkeysib-test"
        app.config["BREVO_SENDER_EMAIL"] = "noreply@nexus.test"
        ana = make_user(plan="premium", full_name="Ana")
        headers = auth_headers(ana)
        _create_family(client, headers)
        fake_post.respond_with(201, {"messageId": "abc"})

        resp = _invite(client, headers, email="bia@example.com", papel="Filha")
        assert resp.status_code == 201
        assert resp.get_json()["email_sent"] is True

        call = fake_post.calls[0]
        assert call["url"] == "https://api.brevo.com/v3/smtp/email"
        assert call["json"]["to"] == [{"email": "bia@example.com"}]
        assert "/convite/" in call["json"]["htmlContent"]

    def test_invalid_invite_email(self, client, make_user, auth_headers):
        ana = make_user(plan="premium")
        headers = auth_headers(ana)
        _create_family(client, headers)
        assert _invite(client, headers, email="sem-arroba").status_code == 400


class TestMembers:

    def _family_with_member(self, client, make_user, auth_headers):
        ana = make_user(email="ana@example.com", plan="premium")
        bia = make_user(email="bia@example.com")
        ana_headers = auth_headers(ana)
        _create_family(client, ana_headers)
        token = _invite(client, ana_headers, cota_mensal=500).get_json()["invite"]["token"]
        client.post(f"/api/invites/{token}/accept", headers=auth_headers(bia))
        membro = MembroFamilia.query.filter_by(user_id=bia.id).one()
        return ana, bia, membro, ana_headers

    def test_update_member_quota(self, client, make_user, auth_headers):
        ana, bia, membro, headers = self._family_with_member(client, make_user, auth_headers)
        resp = client.put(f"/api/family/members/{membro.id}", headers=headers, json={"cota_mensal": 650, "papel": "Cônjuge"})
        assert resp.status_code == 200
        assert resp.get_json()["member"]["cota_mensal"] == 650.0
        assert resp.get_json()["member"]["papel"] == "Cônjuge"

    def test_responsible_cannot_be_removed(self, client, make_user, auth_headers):
        ana, bia, membro, headers = self._family_with_member(client, make_user, auth_headers)
        own = MembroFamilia.query.filter_by(user_id=ana.id).one()
        assert client.delete(f"/api/family/members/{own.id}", headers=headers).status_code == 400

    def test_remove_member_resets_view_mode(self, client, make_user, auth_headers):
        ana, bia, membro, headers = self._family_with_member(client, make_user, auth_headers)
        bia.view_mode = "family"
        db.session.commit()

        assert client.delete(f"/api/family/members/{membro.id}", headers=headers).status_code == 200
        assert MembroFamilia.query.filter_by(user_id=bia.id).first() is None
        assert bia.view_mode == "individual"

    def test_member_spending_against_quota(self, client, make_user, auth_headers, add_transaction, category):
        ana, bia, membro, headers = self._family_with_member(client, make_user, auth_headers)
        add_transaction(bia, 125, when=datetime.utcnow().date(), category=category("Streaming"))

        body = client.get(f"/api/family/members/{bia.id}/spending", headers=headers).get_json()
        assert body["total_spent"] == 125.0
        assert body["cota_mensal"] == 500.0
        assert body["remaining_quota"] == 375.0
        assert body["quota_usage_percentage"] == 25.0


class TestFamilyView:

    def test_dashboard_aggregates_members(self, client, make_user, auth_headers, add_transaction, category):
        ana = make_user(email="ana@example.com", plan="premium")
        bia = make_user(email="bia@example.com")
        ana_headers = auth_headers(ana)
        _create_family(client, ana_headers)
        token = _invite(client, ana_headers).get_json()["invite"]["token"]
        client.post(f"/api/invites/{token}/accept", headers=auth_headers(bia))

        add_transaction(ana, 4000, when=date(2024, 3, 1), category=category("Salário"))
        add_transaction(ana, 300, when=date(2024, 3, 2), category=category("Supermercado"))
        add_transaction(bia, 200, when=date(2024, 3, 3), category=category("Supermercado"))

        body = client.get("/api/dashboard?month=2024-03&view_mode=family", headers=ana_headers).get_json()
        assert body["mode"] == "family"
        assert body["summary"]["total_income"] == 4000.0
        assert body["summary"]["total_spent"] == 500.0
        assert body["summary"]["balance"] == 3500.0

        spending = client.get("/api/analytics/spending?month=2024-03&view_mode=family", headers=ana_headers).get_json()
        mercado = next(c for c in spending["categories"] if c["category_name"] == "Supermercado")
        assert mercado["total_spent"] == 500.0
        assert mercado["transaction_count"] == 2
        assert mercado["min_spent"] == 200.0
        assert mercado["max_spent"] == 300.0
        assert mercado["avg_spent"] == 250.0
