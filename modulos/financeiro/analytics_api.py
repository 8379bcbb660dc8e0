"""
API de análises: painel mensal, gastos por categoria, tendências,
insights de despesas, evolução dos saldos e histórico de resumos.
"""

from datetime import date

from flask import Blueprint, jsonify, request

from models import ContaPagadora, MonthlySummary
from modulos.billing.plans import can_use_feature, plan_for_user
from modulos.financeiro import adaptive, analytics
from modulos.financeiro.common import (
    int_arg,
    iso,
    json_error,
    month_bounds,
    month_from_request,
    require_user,
    to_float,
)

analytics_api_bp = Blueprint("analytics_api", __name__)


def _month_or_400():
    try:
        return month_from_request(), None
    except ValueError as e:
        return None, json_error(str(e), 400)


def _require_advanced(user_id: int):
    plan = plan_for_user(user_id)
    if not can_use_feature(plan, "advancedAnalytics"):
        return json_error("Análises avançadas estão disponíveis nos planos Plus e Premium", 403,
                          feature="advancedAnalytics", plan_type=plan)
    return None


@analytics_api_bp.route("/api/dashboard", methods=["GET"])
def api_dashboard():
    user, err = require_user()
    if err:
        return err

    ym, err = _month_or_400()
    if err:
        return err
    y, m = ym

    scope = adaptive.resolve_scope(user, request.args.get("view_mode"))
    result = adaptive.dashboard(scope, y, m)
    return jsonify({
        "success": True,
        "mode": result["mode"],
        "month": f"{y:04d}-{m:02d}",
        "summary": result["data"],
    }), 200


@analytics_api_bp.route("/api/analytics/spending", methods=["GET"])
def api_spending():
    user, err = require_user()
    if err:
        return err

    ym, err = _month_or_400()
    if err:
        return err

    scope = adaptive.resolve_scope(user, request.args.get("view_mode"))
    result = adaptive.spending(scope, *ym)
    return jsonify({"success": True, "mode": result["mode"], "month": f"{ym[0]:04d}-{ym[1]:02d}", "categories": result["data"]}), 200


@analytics_api_bp.route("/api/analytics/spending-by-parent", methods=["GET"])
def api_spending_by_parent():
    user, err = require_user()
    if err:
        return err

    ym, err = _month_or_400()
    if err:
        return err

    scope = adaptive.resolve_scope(user, request.args.get("view_mode"))
    result = adaptive.spending_by_parent(scope, *ym)
    return jsonify({"success": True, "mode": result["mode"], "month": f"{ym[0]:04d}-{ym[1]:02d}", "categories": result["data"]}), 200


@analytics_api_bp.route("/api/analytics/category-spending", methods=["GET"])
def api_category_spending():
    user, err = require_user()
    if err:
        return err

    ym, err = _month_or_400()
    if err:
        return err

    rows = analytics.load_month_rows([user.id], *ym)
    items = analytics.with_percentages(analytics.build_category_spending(rows))
    return jsonify({"success": True, "month": f"{ym[0]:04d}-{ym[1]:02d}", "categories": items}), 200


@analytics_api_bp.route("/api/analytics/trends", methods=["GET"])
def api_trends():
    user, err = require_user()
    if err:
        return err

    err = _require_advanced(user.id)
    if err:
        return err

    ym, err = _month_or_400()
    if err:
        return err

    months = analytics.last_n_months(ym[0], ym[1], int_arg("months", 6, maximum=24))
    start, _ = month_bounds(*months[0])
    _, end = month_bounds(*months[-1])

    scope = adaptive.resolve_scope(user, request.args.get("view_mode"))
    rows = analytics.load_transaction_rows(scope.user_ids, start, end)
    return jsonify({"success": True, "mode": scope.mode, "trends": analytics.build_monthly_trends(rows, months)}), 200


@analytics_api_bp.route("/api/analytics/insights", methods=["GET"])
def api_insights():
    user, err = require_user()
    if err:
        return err

    ym, err = _month_or_400()
    if err:
        return err

    scope = adaptive.resolve_scope(user, request.args.get("view_mode"))
    result = adaptive.insights(scope, *ym)
    return jsonify({"success": True, "mode": result["mode"], "insights": result["data"]}), 200


@analytics_api_bp.route("/api/analytics/account-balances", methods=["GET"])
def api_account_balances():
    user, err = require_user()
    if err:
        return err

    err = _require_advanced(user.id)
    if err:
        return err

    ym, err = _month_or_400()
    if err:
        return err

    months = analytics.last_n_months(ym[0], ym[1], int_arg("months", 12, maximum=36))
    start, _ = month_bounds(*months[0])
    _, end = month_bounds(*months[-1])

    contas = ContaPagadora.query.filter_by(user_id=user.id).order_by(ContaPagadora.nome.asc()).all()
    rows_before = analytics.load_transaction_rows([user.id], date(1900, 1, 1), start)
    rows = analytics.load_transaction_rows([user.id], start, end)

    return jsonify({
        "success": True,
        "timeline": analytics.build_account_timeline(contas, rows_before, rows, months),
    }), 200


@analytics_api_bp.route("/api/summaries/history", methods=["GET"])
def api_summaries_history():
    user, err = require_user()
    if err:
        return err

    rows = (
        MonthlySummary.query
        .filter_by(user_id=user.id)
        .order_by(MonthlySummary.month.desc())
        .limit(int_arg("limit", 12, maximum=120))
        .all()
    )
    return jsonify({
        "success": True,
        "summaries": [
            {
                "month": iso(r.month),
                "total_income": to_float(r.total_income),
                "total_spent": to_float(r.total_spent),
                "balance": to_float(r.balance),
                "renda_base_amount": to_float(r.renda_base_amount) if r.renda_base_amount is not None else None,
            }
            for r in rows
        ],
    }), 200
