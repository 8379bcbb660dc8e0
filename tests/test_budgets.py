"""Testes de orçamentos mensais e do desempenho orçado x realizado."""

from datetime import date

import pytest

from extensions import db
from models import Familia, MembroFamilia, Orcamento


def _family(ana, bia):
    familia = Familia(nome_familia="Souza", responsavel_user_id=ana.id)
    db.session.add(familia)
    db.session.flush()
    db.session.add_all([
        MembroFamilia(familia_id=familia.id, user_id=ana.id, papel="Responsável"),
        MembroFamilia(familia_id=familia.id, user_id=bia.id, papel="Filha"),
    ])
    db.session.commit()
    return familia


class TestBudgetCrud:

    def test_create_and_list(self, client, make_user, auth_headers, category):
        user = make_user()
        headers = auth_headers(user)
        resp = client.post("/api/budgets", headers=headers, json={
            "category_id": category("Supermercado").id, "valor_orcado": 800, "month": "2024-03",
        })
        assert resp.status_code == 201
        budget = resp.get_json()["budget"]
        assert budget["mes_ano"] == "2024-03-01"
        assert budget["categories"]["name"] == "Supermercado"

        body = client.get("/api/budgets?month=2024-03", headers=headers).get_json()
        assert body["month"] == "2024-03"
        assert len(body["budgets"]) == 1
        assert client.get("/api/budgets?month=2024-04", headers=headers).get_json()["budgets"] == []

    def test_duplicate_in_same_month(self, client, make_user, auth_headers, category):
        user = make_user()
        headers = auth_headers(user)
        payload = {"category_id": category("Supermercado").id, "valor_orcado": 800, "month": "2024-03"}
        assert client.post("/api/budgets", headers=headers, json=payload).status_code == 201
        assert client.post("/api/budgets", headers=headers, json=payload).status_code == 409

    def test_invalid_month(self, client, make_user, auth_headers, category):
        user = make_user()
        resp = client.post("/api/budgets", headers=auth_headers(user), json={
            "category_id": category("Supermercado").id, "valor_orcado": 800, "month": "2024-13",
        })
        assert resp.status_code == 400

    def test_update_and_delete(self, client, make_user, auth_headers, category):
        user = make_user()
        headers = auth_headers(user)
        budget_id = client.post("/api/budgets", headers=headers, json={
            "category_id": category("Supermercado").id, "valor_orcado": 800, "month": "2024-03",
        }).get_json()["budget"]["id"]

        resp = client.put(f"/api/budgets/{budget_id}", headers=headers, json={"valor_orcado": "950.00"})
        assert resp.get_json()["budget"]["valor_orcado"] == 950.0

        assert client.delete(f"/api/budgets/{budget_id}", headers=headers).status_code == 200
        assert db.session.get(Orcamento, budget_id) is None

    def test_other_user_cannot_edit(self, client, make_user, auth_headers, category):
        owner = make_user(email="dono@example.com")
        other = make_user(email="outro@example.com")
        budget_id = client.post("/api/budgets", headers=auth_headers(owner), json={
            "category_id": category("Supermercado").id, "valor_orcado": 800, "month": "2024-03",
        }).get_json()["budget"]["id"]

        resp = client.put(f"/api/budgets/{budget_id}", headers=auth_headers(other), json={"valor_orcado": 1})
        assert resp.status_code == 404


class TestFamilyBudgets:

    def test_only_responsible_sets_family_budget(self, client, make_user, auth_headers, category):
        ana = make_user(email="ana@example.com")
        bia = make_user(email="bia@example.com")
        _family(ana, bia)
        payload = {"category_id": category("Moradia").id, "valor_orcado": 3000, "month": "2024-03", "scope": "family"}

        assert client.post("/api/budgets", headers=auth_headers(bia), json=payload).status_code == 403
        resp = client.post("/api/budgets", headers=auth_headers(ana), json=payload)
        assert resp.status_code == 201
        assert resp.get_json()["budget"]["familia_id"] is not None

        listed = client.get("/api/budgets?month=2024-03&scope=family", headers=auth_headers(bia)).get_json()
        assert len(listed["budgets"]) == 1

    def test_family_budget_requires_family(self, client, make_user, auth_headers, category):
        user = make_user()
        resp = client.post("/api/budgets", headers=auth_headers(user), json={
            "category_id": category("Moradia").id, "valor_orcado": 3000, "month": "2024-03", "scope": "family",
        })
        assert resp.status_code == 409


class TestPerformance:

    def test_statuses(self, client, make_user, auth_headers, category, add_transaction):
        user = make_user()
        headers = auth_headers(user)
        mercado, delivery, lazer = category("Supermercado"), category("Delivery"), category("Lazer")
        for cat, valor in ((mercado, 1000), (delivery, 100), (lazer, 500)):
            db.session.add(Orcamento(user_id=user.id, category_id=cat.id, valor_orcado=valor, mes_ano=date(2024, 3, 1)))
        db.session.commit()

        add_transaction(user, 850, when=date(2024, 3, 3), category=mercado)
        add_transaction(user, 120, when=date(2024, 3, 4), category=delivery)
        add_transaction(user, 100, when=date(2024, 3, 5), category=lazer)
        add_transaction(user, 999, when=date(2024, 4, 1), category=lazer)

        body = client.get("/api/budgets/performance?month=2024-03", headers=headers).get_json()
        by_name = {p["category_name"]: p for p in body["performance"]}

        assert by_name["Supermercado"]["status"] == "warning"
        assert by_name["Supermercado"]["usage_percentage"] == 85.0
        assert by_name["Delivery"]["status"] == "over_budget"
        assert by_name["Delivery"]["remaining"] == -20.0
        assert by_name["Lazer"]["status"] == "healthy"
        assert by_name["Lazer"]["actual_spent"] == 100.0

        assert body["totals"]["budgeted"] == 1600.0
        assert body["totals"]["spent"] == 1070.0


class TestBudgetValidation:

    @pytest.mark.parametrize("valor", ["NaN", "nan", "Infinity"])
    def test_non_finite_amount_is_rejected(self, client, make_user, auth_headers, category, valor):
        user = make_user()
        resp = client.post("/api/budgets", headers=auth_headers(user), json={
            "category_id": category("Supermercado").id, "valor_orcado": valor, "month": "2024-03",
        })
        assert resp.status_code == 400
        assert resp.get_json()["success"] is False
        assert Orcamento.query.count() == 0

    def test_family_scope_without_family_reports_individual(self, client, make_user, auth_headers, category):
        user = make_user()
        db.session.add(Orcamento(user_id=user.id, category_id=category("Moradia").id, valor_orcado=1500, mes_ano=date(2024, 3, 1)))
        db.session.commit()

        body = client.get("/api/budgets?month=2024-03&scope=family", headers=auth_headers(user)).get_json()
        assert body["mode"] == "individual"
        assert len(body["budgets"]) == 1


class TestFamilyPerformance:

    def test_family_view_sums_member_spending(self, client, make_user, auth_headers, category, add_transaction):
        ana = make_user(email="ana@example.com")
        bia = make_user(email="bia@example.com")
        familia = _family(ana, bia)
        mercado = category("Supermercado")
        db.session.add_all([
            Orcamento(user_id=ana.id, familia_id=familia.id, category_id=mercado.id, valor_orcado=1000, mes_ano=date(2024, 3, 1)),
            Orcamento(user_id=ana.id, category_id=category("Lazer").id, valor_orcado=200, mes_ano=date(2024, 3, 1)),
        ])
        db.session.commit()

        add_transaction(ana, 500, when=date(2024, 3, 3), category=mercado)
        add_transaction(bia, 400, when=date(2024, 3, 8), category=mercado)

        body = client.get("/api/budgets/performance?month=2024-03&view_mode=family", headers=auth_headers(bia)).get_json()
        assert body["mode"] == "family"
        assert [p["category_name"] for p in body["performance"]] == ["Supermercado"]
        item = body["performance"][0]
        assert item["actual_spent"] == 900.0
        assert item["usage_percentage"] == 90.0
        assert item["status"] == "warning"

        listed = client.get("/api/budgets?month=2024-03&scope=family", headers=auth_headers(ana)).get_json()
        assert listed["mode"] == "family"

        individual = client.get("/api/budgets/performance?month=2024-03&view_mode=individual", headers=auth_headers(ana)).get_json()
        assert individual["mode"] == "individual"
        assert [p["category_name"] for p in individual["performance"]] == ["Lazer"]
