"""
API de contas pagadoras (corrente, poupança, cartão de crédito, dinheiro)
e da fatura dos cartões.
"""

import logging
from datetime import date, datetime, timedelta

from flask import Blueprint, jsonify, request
from sqlalchemy import func

from extensions import db
from models import ContaPagadora, Transaction, Category
from modulos.billing.plans import get_feature_limit, plan_for_user
from modulos.financeiro import analytics
from modulos.financeiro.common import (
    iso,
    json_body,
    json_error,
    last_day_of_month,
    parse_amount,
    parse_date,
    require_user,
    shift_month,
    to_float,
)

logger = logging.getLogger(__name__)

accounts_api_bp = Blueprint("accounts_api", __name__)

TIPOS_CONTA = ("Conta Corrente", "Poupança", "Cartão de Crédito", "Dinheiro")
CARTAO_CREDITO = "Cartão de Crédito"
DEFAULT_CLOSING_DAY = 10


def serialize_conta(conta: ContaPagadora, with_balance: bool = False) -> dict:
    data = {
        "id": conta.id,
        "user_id": conta.user_id,
        "nome": conta.nome,
        "tipo": conta.tipo,
        "saldo_inicial": to_float(conta.saldo_inicial),
        "cor": conta.cor,
        "icone": conta.icone,
        "dia_fechamento_fatura": conta.dia_fechamento_fatura,
        "is_active": bool(conta.is_active),
    }
    if with_balance:
        data["saldo_atual"] = analytics.account_balance(conta)
    return data


def _closing_date(y: int, m: int, closing_day: int) -> date:
    return date(y, m, min(closing_day, last_day_of_month(y, m).day))


def fatura_cycle(closing_day: int | None, today: date) -> dict:
    """Ciclo aberto da fatura: (fechamento anterior, próximo fechamento]."""
    closing_day = closing_day or DEFAULT_CLOSING_DAY

    next_closing = _closing_date(today.year, today.month, closing_day)
    if today > next_closing:
        ny, nm = shift_month(today.year, today.month, 1)
        next_closing = _closing_date(ny, nm, closing_day)

    py, pm = shift_month(next_closing.year, next_closing.month, -1)
    prev_closing = _closing_date(py, pm, closing_day)

    return {
        "closing_day": closing_day,
        "next_closing_date": next_closing,
        "cycle_start": prev_closing + timedelta(days=1),
        "cycle_end": next_closing,
        "days_until_closing": (next_closing - today).days,
        "best_purchase_day": 1 if closing_day >= 31 else closing_day + 1,
    }


def _get_own_conta(user_id: int, conta_id: int) -> ContaPagadora | None:
    return ContaPagadora.query.filter_by(id=conta_id, user_id=user_id).first()


def _validate_conta_fields(data: dict, conta: ContaPagadora) -> str | None:
    if "nome" in data or conta.id is None:
        nome = str(data.get("nome") or "").strip()
        if not nome:
            return "Informe o nome da conta"
        conta.nome = nome[:100]

    if "tipo" in data or conta.id is None:
        tipo = str(data.get("tipo") or "").strip()
        if tipo not in TIPOS_CONTA:
            return "Tipo de conta inválido"
        conta.tipo = tipo

    if "saldo_inicial" in data:
        try:
            conta.saldo_inicial = parse_amount(data.get("saldo_inicial") or 0, "saldo_inicial", allow_zero=True)
        except ValueError as e:
            return str(e)

    if "cor" in data:
        cor = str(data.get("cor") or "").strip()
        if cor and (not cor.startswith("#") or len(cor) != 7):
            return "Cor inválida (use #RRGGBB)"
        conta.cor = cor or "#6366F1"

    if "icone" in data:
        conta.icone = str(data.get("icone") or "").strip() or None

    if "dia_fechamento_fatura" in data:
        raw = data.get("dia_fechamento_fatura")
        if raw in (None, ""):
            conta.dia_fechamento_fatura = None
        else:
            try:
                dia = int(raw)
            except (TypeError, ValueError):
                return "Dia de fechamento inválido"
            if not 1 <= dia <= 31:
                return "Dia de fechamento deve estar entre 1 e 31"
            conta.dia_fechamento_fatura = dia

    if conta.tipo != CARTAO_CREDITO:
        conta.dia_fechamento_fatura = None

    return None


@accounts_api_bp.route("/api/accounts", methods=["GET"])
def api_list_accounts():
    user, err = require_user()
    if err:
        return err

    include_inactive = request.args.get("include_inactive") in ("1", "true")
    query = ContaPagadora.query.filter_by(user_id=user.id)
    if not include_inactive:
        query = query.filter_by(is_active=True)
    contas = query.order_by(ContaPagadora.nome.asc()).all()

    return jsonify({
        "success": True,
        "accounts": [serialize_conta(c, with_balance=True) for c in contas],
    }), 200


@accounts_api_bp.route("/api/accounts", methods=["POST"])
def api_create_account():
    user, err = require_user()
    if err:
        return err

    plan = plan_for_user(user.id)
    limit = get_feature_limit(plan, "maxAccounts")
    active = ContaPagadora.query.filter_by(user_id=user.id, is_active=True).count()
    if active >= limit:
        return json_error(
            f"Seu plano permite até {int(limit)} contas. Faça upgrade para adicionar mais.",
            403,
            feature="maxAccounts",
            plan_type=plan,
        )

    data = json_body()
    conta = ContaPagadora(user_id=user.id, saldo_inicial=0, cor="#6366F1", is_active=True)
    error = _validate_conta_fields(data, conta)
    if error:
        return json_error(error, 400)

    if conta.tipo == CARTAO_CREDITO and not conta.dia_fechamento_fatura:
        conta.dia_fechamento_fatura = DEFAULT_CLOSING_DAY

    try:
        db.session.add(conta)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception("[ACCOUNTS] erro ao criar conta: %s", e)
        return json_error("Erro ao criar conta", 500)

    return jsonify({"success": True, "account": serialize_conta(conta, with_balance=True)}), 201


@accounts_api_bp.route("/api/accounts/<int:conta_id>", methods=["PUT"])
def api_update_account(conta_id: int):
    user, err = require_user()
    if err:
        return err

    conta = _get_own_conta(user.id, conta_id)
    if not conta:
        return json_error("Conta não encontrada", 404)

    data = json_body()
    error = _validate_conta_fields(data, conta)
    if error:
        db.session.rollback()
        return json_error(error, 400)

    if "is_active" in data:
        conta.is_active = bool(data.get("is_active"))

    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception("[ACCOUNTS] erro ao atualizar conta %s: %s", conta_id, e)
        return json_error("Erro ao atualizar conta", 500)

    return jsonify({"success": True, "account": serialize_conta(conta, with_balance=True)}), 200


@accounts_api_bp.route("/api/accounts/<int:conta_id>", methods=["DELETE"])
def api_delete_account(conta_id: int):
    user, err = require_user()
    if err:
        return err

    conta = _get_own_conta(user.id, conta_id)
    if not conta:
        return json_error("Conta não encontrada", 404)

    in_use = db.session.query(Transaction.id).filter_by(conta_pagadora_id=conta.id).first() is not None

    try:
        if in_use:
            conta.is_active = False
            message = "Conta desativada (possui transações)"
        else:
            db.session.delete(conta)
            message = "Conta excluída"
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception("[ACCOUNTS] erro ao excluir conta %s: %s", conta_id, e)
        return json_error("Erro ao excluir conta", 500)

    return jsonify({"success": True, "message": message, "soft_deleted": in_use}), 200


@accounts_api_bp.route("/api/accounts/<int:conta_id>/balance", methods=["GET"])
def api_account_balance(conta_id: int):
    user, err = require_user()
    if err:
        return err

    conta = _get_own_conta(user.id, conta_id)
    if not conta:
        return json_error("Conta não encontrada", 404)

    return jsonify({
        "success": True,
        "conta_pagadora_id": conta.id,
        "saldo_inicial": to_float(conta.saldo_inicial),
        "saldo_atual": analytics.account_balance(conta),
    }), 200


@accounts_api_bp.route("/api/accounts/<int:conta_id>/fatura", methods=["GET"])
def api_account_fatura(conta_id: int):
    user, err = require_user()
    if err:
        return err

    conta = _get_own_conta(user.id, conta_id)
    if not conta:
        return json_error("Conta não encontrada", 404)
    if conta.tipo != CARTAO_CREDITO:
        return json_error("Fatura disponível apenas para cartões de crédito", 400)

    try:
        today = parse_date(request.args["date"]) if request.args.get("date") else datetime.utcnow().date()
    except ValueError as e:
        return json_error(str(e), 400)

    cycle = fatura_cycle(conta.dia_fechamento_fatura, today)

    txs = (
        Transaction.query
        .outerjoin(Category, Transaction.category_id == Category.id)
        .filter(
            Transaction.conta_pagadora_id == conta.id,
            Transaction.transaction_date >= cycle["cycle_start"],
            Transaction.transaction_date <= cycle["cycle_end"],
            func.coalesce(Category.tipo, "despesa") != "receita",
        )
        .order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
        .all()
    )
    total = round(sum(to_float(t.amount) for t in txs), 2)

    return jsonify({
        "success": True,
        "conta_pagadora_id": conta.id,
        "nome": conta.nome,
        "closing_day": cycle["closing_day"],
        "next_closing_date": iso(cycle["next_closing_date"]),
        "cycle_start": iso(cycle["cycle_start"]),
        "cycle_end": iso(cycle["cycle_end"]),
        "days_until_closing": cycle["days_until_closing"],
        "best_purchase_day": cycle["best_purchase_day"],
        "total": total,
        "transactions": [
            {
                "id": t.id,
                "description": t.description,
                "amount": to_float(t.amount),
                "transaction_date": iso(t.transaction_date),
                "category_id": t.category_id,
            }
            for t in txs
        ],
    }), 200
