"""Testes das agregações financeiras e dos endpoints de análise."""

from datetime import date

import pytest

from models import MonthlySummary
from modulos.financeiro import analytics
from modulos.financeiro.common import month_bounds, parse_month, shift_month


def _row(amount, category_id=1, tipo="despesa", when=date(2024, 3, 10), conta=None, name="Mercado", row_id=1):
    return {
        "id": row_id,
        "user_id": 1,
        "amount": amount,
        "transaction_date": when,
        "description": name,
        "conta_pagadora_id": conta,
        "category_id": category_id,
        "category_name": name,
        "icon_name": None,
        "parent_category_id": None,
        "tipo": tipo,
    }


class TestMonthHelpers:

    def test_shift_month_across_years(self):
        assert shift_month(2024, 1, -1) == (2023, 12)
        assert shift_month(2024, 12, 1) == (2025, 1)
        assert shift_month(2024, 3, -14) == (2023, 1)

    def test_month_bounds(self):
        assert month_bounds(2024, 12) == (date(2024, 12, 1), date(2025, 1, 1))

    def test_parse_month(self):
        assert parse_month("2024-03") == (2024, 3)
        assert parse_month("2024-03-15") == (2024, 3)
        assert parse_month(None, today=date(2024, 5, 2)) == (2024, 5)
        with pytest.raises(ValueError):
            parse_month("março")

    def test_last_n_months(self):
        assert analytics.last_n_months(2024, 2, 3) == [(2023, 12), (2024, 1), (2024, 2)]


class TestMonthlySummary:

    def test_income_minus_expenses(self):
        rows = [_row(5000, tipo="receita"), _row(1200), _row(300)]
        assert analytics.build_monthly_summary(rows) == {
            "total_income": 5000.0,
            "total_spent": 1500.0,
            "balance": 3500.0,
            "renda_base_amount": None,
        }

    def test_falls_back_to_base_income(self):
        summary = analytics.build_monthly_summary([_row(1000)], renda_base_amount=4200)
        assert summary["total_income"] == 4200.0
        assert summary["balance"] == 3200.0

    def test_merge(self):
        merged = analytics.merge_monthly_summaries([
            {"total_income": 100, "total_spent": 40, "balance": 60, "renda_base_amount": None},
            {"total_income": 50, "total_spent": 70, "balance": -20, "renda_base_amount": 10},
        ])
        assert merged == {"total_income": 150.0, "total_spent": 110.0, "balance": 40.0, "renda_base_amount": 10.0}


class TestCategorySpending:

    def test_groups_expenses_only(self):
        rows = [_row(100, 1), _row(50, 1), _row(30, 2, name="Uber"), _row(9999, 3, tipo="receita")]
        items = analytics.build_category_spending(rows)
        assert [i["category_id"] for i in items] == [1, 2]
        mercado = items[0]
        assert mercado["total_spent"] == 150.0
        assert mercado["transaction_count"] == 2
        assert mercado["avg_spent"] == 75.0
        assert (mercado["min_spent"], mercado["max_spent"]) == (50, 100)

    def test_percentages(self):
        items = analytics.with_percentages(analytics.build_category_spending([_row(75, 1), _row(25, 2)]))
        assert [i["percentage"] for i in items] == [75.0, 25.0]

    def test_rollup_to_parent(self, app, category):
        mercado, delivery, moradia = category("Supermercado"), category("Delivery"), category("Aluguel")
        rows = [
            _row(100, mercado.id, name="Supermercado"),
            _row(40, delivery.id, name="Delivery"),
            _row(1500, moradia.id, name="Aluguel"),
        ]
        items = analytics.rollup_to_parent(analytics.build_category_spending(rows), analytics.load_categories_by_id())
        by_name = {i["category_name"]: i for i in items}
        assert by_name["Alimentação"]["total_spent"] == 140.0
        assert len(by_name["Alimentação"]["subcategories"]) == 2
        assert by_name["Moradia"]["total_spent"] == 1500.0

    def test_monthly_trends(self):
        rows = [_row(10, when=date(2024, 1, 5)), _row(20, when=date(2024, 3, 5))]
        trends = analytics.build_monthly_trends(rows, [(2024, 1), (2024, 2), (2024, 3)])
        assert [t["total_spent"] for t in trends] == [10.0, 0, 20.0]
        assert trends[1]["month"] == "2024-02"


class TestBudgetStatus:

    @pytest.mark.parametrize("usage,expected", [
        (0, "healthy"),
        (79.99, "healthy"),
        (80, "warning"),
        (99.9, "warning"),
        (100, "over_budget"),
        (150, "over_budget"),
    ])
    def test_thresholds(self, usage, expected):
        assert analytics.budget_status(usage) == expected


class TestInsights:

    def test_month_over_month_change(self):
        rows = [
            _row(300, 1, row_id=1, conta=1),
            _row(100, 2, row_id=2, conta=2),
            _row(50, 2, row_id=3, conta=2),
            _row(2000, 3, tipo="receita", row_id=4),
        ]
        data = analytics.build_expense_insights(rows, prev_month_spent=300)
        assert data["total_spent"] == 450.0
        assert data["total_transactions"] == 3
        assert data["month_over_month_change"] == 50.0
        assert data["categories_used"] == 2
        assert data["accounts_used"] == 2
        assert [t["id"] for t in data["top_transactions"]] == [1, 2, 3]

        messages = analytics.insight_messages(data)
        assert messages[0]["type"] == "warning"
        assert "50.0%" in messages[0]["message"]

    def test_no_previous_month(self):
        data = analytics.build_expense_insights([_row(10)], prev_month_spent=0)
        assert data["month_over_month_change"] is None

    def test_spending_drop_message(self):
        data = analytics.build_expense_insights([_row(50)], prev_month_spent=100)
        assert analytics.insight_messages(data)[0]["type"] == "success"


class TestEndpoints:

    def test_dashboard_individual(self, client, make_user, auth_headers, add_transaction, category):
        user = make_user()
        add_transaction(user, 3000, when=date(2024, 3, 1), category=category("Salário"))
        add_transaction(user, 800, when=date(2024, 3, 2), category=category("Supermercado"))
        add_transaction(user, 50, when=date(2024, 2, 2), category=category("Supermercado"))

        body = client.get("/api/dashboard?month=2024-03", headers=auth_headers(user)).get_json()
        assert body["mode"] == "individual"
        assert body["month"] == "2024-03"
        assert body["summary"]["balance"] == 2200.0

    def test_invalid_month_param(self, client, make_user, auth_headers):
        user = make_user()
        assert client.get("/api/dashboard?month=2024-99", headers=auth_headers(user)).status_code == 400

    def test_category_spending_percentages(self, client, make_user, auth_headers, add_transaction, category):
        user = make_user()
        add_transaction(user, 300, when=date(2024, 3, 1), category=category("Supermercado"))
        add_transaction(user, 100, when=date(2024, 3, 2), category=category("Aplicativos"))

        items = client.get("/api/analytics/category-spending?month=2024-03", headers=auth_headers(user)).get_json()["categories"]
        assert [(i["category_name"], i["percentage"]) for i in items] == [("Supermercado", 75.0), ("Aplicativos", 25.0)]

    def test_spending_by_parent(self, client, make_user, auth_headers, add_transaction, category):
        user = make_user()
        add_transaction(user, 300, when=date(2024, 3, 1), category=category("Supermercado"))
        add_transaction(user, 100, when=date(2024, 3, 2), category=category("Delivery"))

        items = client.get("/api/analytics/spending-by-parent?month=2024-03", headers=auth_headers(user)).get_json()["categories"]
        assert items[0]["category_name"] == "Alimentação"
        assert items[0]["total_spent"] == 400.0

    def test_trends_require_paid_plan(self, client, make_user, auth_headers):
        user = make_user(plan="free")
        resp = client.get("/api/analytics/trends", headers=auth_headers(user))
        assert resp.status_code == 403
        assert resp.get_json()["feature"] == "advancedAnalytics"

    def test_trends_for_plus(self, client, make_user, auth_headers, add_transaction, category):
        user = make_user(plan="plus")
        add_transaction(user, 100, when=date(2024, 1, 10), category=category("Supermercado"))
        add_transaction(user, 200, when=date(2024, 3, 10), category=category("Supermercado"))

        trends = client.get("/api/analytics/trends?month=2024-03&months=3", headers=auth_headers(user)).get_json()["trends"]
        assert [(t["month"], t["total_spent"]) for t in trends] == [("2024-01", 100.0), ("2024-02", 0), ("2024-03", 200.0)]

    def test_insights_endpoint(self, client, make_user, auth_headers, add_transaction, category):
        user = make_user()
        add_transaction(user, 100, when=date(2024, 2, 10), category=category("Supermercado"))
        add_transaction(user, 150, when=date(2024, 3, 10), category=category("Supermercado"))

        insights = client.get("/api/analytics/insights?month=2024-03", headers=auth_headers(user)).get_json()["insights"]
        assert insights["month"] == "2024-03"
        assert insights["prev_month_spent"] == 100.0
        assert insights["month_over_month_change"] == 50.0

    def test_account_balances_timeline(self, client, make_user, auth_headers, add_account, add_transaction, category):
        user = make_user(plan="premium")
        conta = add_account(user, saldo_inicial=1000)
        add_transaction(user, 200, when=date(2023, 12, 20), conta=conta, category=category("Supermercado"))
        add_transaction(user, 3000, when=date(2024, 2, 1), conta=conta, category=category("Salário"))
        add_transaction(user, 500, when=date(2024, 3, 1), conta=conta, category=category("Aluguel"))

        timeline = client.get("/api/analytics/account-balances?month=2024-03&months=3", headers=auth_headers(user)).get_json()["timeline"]
        assert [(t["month"], t["balance"]) for t in timeline] == [
            ("2024-01", 800.0),
            ("2024-02", 3800.0),
            ("2024-03", 3300.0),
        ]


class TestSummarySnapshots:

    def test_refresh_upserts_rows(self, app, make_user, add_transaction, category):
        ana = make_user(email="ana@example.com")
        make_user(email="bia@example.com")
        add_transaction(ana, 500, when=date(2024, 3, 5), category=category("Supermercado"))

        assert analytics.refresh_monthly_summaries(2024, 3) == 2
        add_transaction(ana, 100, when=date(2024, 3, 6), category=category("Supermercado"))
        assert analytics.refresh_monthly_summaries(2024, 3) == 2

        rows = MonthlySummary.query.filter_by(month=date(2024, 3, 1)).all()
        assert len(rows) == 2
        ana_row = next(r for r in rows if r.user_id == ana.id)
        assert float(ana_row.total_spent) == 600.0

    def test_history_endpoint(self, client, make_user, auth_headers, add_transaction, category):
        user = make_user()
        add_transaction(user, 500, when=date(2024, 3, 5), category=category("Supermercado"))
        analytics.refresh_monthly_summaries(2024, 2)
        analytics.refresh_monthly_summaries(2024, 3)

        summaries = client.get("/api/summaries/history", headers=auth_headers(user)).get_json()["summaries"]
        assert [s["month"] for s in summaries] == ["2024-03-01", "2024-02-01"]
        assert summaries[0]["total_spent"] == 500.0

    def test_cli_refresh_command(self, app, make_user):
        make_user()
        result = app.test_cli_runner().invoke(args=["refresh-summaries", "--month", "2024-03"])
        assert result.exit_code == 0
        assert "1 usuários" in result.output
