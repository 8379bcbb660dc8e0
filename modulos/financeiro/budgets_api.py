"""
API de orçamentos mensais por categoria e desempenho orçado x realizado.
"""

import logging

from flask import Blueprint, jsonify, request

from extensions import db
from models import Orcamento
from modulos.financeiro import adaptive
from modulos.financeiro.categories_api import get_visible_category
from modulos.financeiro.common import (
    get_family,
    is_responsavel,
    iso,
    json_body,
    json_error,
    month_bounds,
    month_from_request,
    parse_amount,
    parse_month,
    require_user,
    to_float,
)

logger = logging.getLogger(__name__)

budgets_api_bp = Blueprint("budgets_api", __name__)


def serialize_budget(b: Orcamento) -> dict:
    return {
        "id": b.id,
        "user_id": b.user_id,
        "familia_id": b.familia_id,
        "category_id": b.category_id,
        "categories": {
            "name": b.category.name,
            "icon_name": b.category.icon_name,
            "tipo": b.category.tipo,
        } if b.category else None,
        "valor_orcado": to_float(b.valor_orcado),
        "mes_ano": iso(b.mes_ano),
    }


def _duplicate_budget(b: Orcamento) -> bool:
    query = Orcamento.query.filter(
        Orcamento.category_id == b.category_id,
        Orcamento.mes_ano == b.mes_ano,
    )
    if b.familia_id:
        query = query.filter(Orcamento.familia_id == b.familia_id)
    else:
        query = query.filter(Orcamento.user_id == b.user_id, Orcamento.familia_id.is_(None))
    if b.id is not None:
        query = query.filter(Orcamento.id != b.id)
    return query.first() is not None


def _editable_budget(user_id: int, budget_id: int) -> Orcamento | None:
    b = db.session.get(Orcamento, budget_id)
    if not b:
        return None
    if b.familia_id:
        familia = get_family(user_id)
        if familia is None or familia.id != b.familia_id or not is_responsavel(user_id, familia):
            return None
        return b
    return b if b.user_id == user_id else None


@budgets_api_bp.route("/api/budgets", methods=["GET"])
def api_list_budgets():
    user, err = require_user()
    if err:
        return err

    try:
        y, m = month_from_request()
    except ValueError as e:
        return json_error(str(e), 400)
    start, _ = month_bounds(y, m)

    query = Orcamento.query.filter(Orcamento.mes_ano == start)
    familia = get_family(user.id)
    # sem família, scope=family cai nos orçamentos individuais; "mode" informa qual veio
    if request.args.get("scope") == "family" and familia is not None:
        mode = "family"
        query = query.filter(Orcamento.familia_id == familia.id)
    else:
        mode = "individual"
        query = query.filter(Orcamento.user_id == user.id, Orcamento.familia_id.is_(None))

    budgets = query.order_by(Orcamento.id.asc()).all()
    return jsonify({
        "success": True,
        "mode": mode,
        "month": f"{y:04d}-{m:02d}",
        "budgets": [serialize_budget(b) for b in budgets],
    }), 200


@budgets_api_bp.route("/api/budgets", methods=["POST"])
def api_create_budget():
    user, err = require_user()
    if err:
        return err

    data = json_body()
    category = get_visible_category(user.id, data.get("category_id"))
    if not category:
        return json_error("Categoria não encontrada", 404)

    try:
        valor = parse_amount(data.get("valor_orcado"), "Valor orçado")
        y, m = parse_month(data.get("month") or data.get("mes_ano"))
    except ValueError as e:
        return json_error(str(e), 400)

    b = Orcamento(user_id=user.id, category_id=category.id, valor_orcado=valor, mes_ano=month_bounds(y, m)[0])

    if data.get("scope") == "family":
        familia = get_family(user.id)
        if familia is None:
            return json_error("Você não faz parte de uma família", 409)
        if not is_responsavel(user.id, familia):
            return json_error("Apenas o responsável pode definir orçamentos da família", 403)
        b.familia_id = familia.id

    if _duplicate_budget(b):
        return json_error("Já existe orçamento para esta categoria neste mês", 409)

    try:
        db.session.add(b)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception("[BUDGETS] erro ao criar: %s", e)
        return json_error("Erro ao salvar orçamento", 500)

    return jsonify({"success": True, "budget": serialize_budget(b)}), 201


@budgets_api_bp.route("/api/budgets/<int:budget_id>", methods=["PUT"])
def api_update_budget(budget_id: int):
    user, err = require_user()
    if err:
        return err

    b = _editable_budget(user.id, budget_id)
    if not b:
        return json_error("Orçamento não encontrado", 404)

    data = json_body()
    try:
        if "valor_orcado" in data:
            b.valor_orcado = parse_amount(data.get("valor_orcado"), "Valor orçado")
        if "month" in data or "mes_ano" in data:
            y, m = parse_month(data.get("month") or data.get("mes_ano"))
            b.mes_ano = month_bounds(y, m)[0]
    except ValueError as e:
        db.session.rollback()
        return json_error(str(e), 400)

    if "category_id" in data:
        category = get_visible_category(user.id, data.get("category_id"))
        if not category:
            db.session.rollback()
            return json_error("Categoria não encontrada", 404)
        b.category_id = category.id

    with db.session.no_autoflush:
        duplicate = _duplicate_budget(b)
    if duplicate:
        db.session.rollback()
        return json_error("Já existe orçamento para esta categoria neste mês", 409)

    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception("[BUDGETS] erro ao atualizar %s: %s", budget_id, e)
        return json_error("Erro ao atualizar orçamento", 500)

    return jsonify({"success": True, "budget": serialize_budget(b)}), 200


@budgets_api_bp.route("/api/budgets/<int:budget_id>", methods=["DELETE"])
def api_delete_budget(budget_id: int):
    user, err = require_user()
    if err:
        return err

    b = _editable_budget(user.id, budget_id)
    if not b:
        return json_error("Orçamento não encontrado", 404)

    try:
        db.session.delete(b)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception("[BUDGETS] erro ao excluir %s: %s", budget_id, e)
        return json_error("Erro ao excluir orçamento", 500)

    return jsonify({"success": True, "message": "Orçamento excluído"}), 200


@budgets_api_bp.route("/api/budgets/performance", methods=["GET"])
def api_budget_performance():
    user, err = require_user()
    if err:
        return err

    try:
        y, m = month_from_request()
    except ValueError as e:
        return json_error(str(e), 400)

    scope = adaptive.resolve_scope(user, request.args.get("view_mode"))
    result = adaptive.budget_performance(scope, y, m)
    return jsonify({
        "success": True,
        "mode": result["mode"],
        "month": f"{y:04d}-{m:02d}",
        "performance": result["data"]["items"],
        "totals": result["data"]["totals"],
    }), 200
