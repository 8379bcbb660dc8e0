"""
API de transações
=================

Listagem adaptativa (individual/família), lançamento manual e registro
por texto livre encaminhado à automação (n8n), que interpreta a frase,
categoriza e grava a transação.
"""

import logging
from datetime import datetime

from flask import Blueprint, jsonify, request

from extensions import db
from models import ContaPagadora, Transaction, User
from modulos.billing.plans import get_feature_limit, plan_for_user
from modulos.financeiro import adaptive
from modulos.financeiro.categories_api import get_visible_category
from modulos.financeiro.common import (
    current_token,
    family_user_ids,
    get_membership,
    int_arg,
    json_body,
    json_error,
    month_bounds,
    parse_amount,
    parse_date,
    require_user,
)
from n8n_client import N8nError, build_expense_payload, execute_web_action, send_expense

logger = logging.getLogger(__name__)

transactions_api_bp = Blueprint("transactions_api", __name__)


def _monthly_quota_exceeded(user_id: int) -> tuple[bool, str, float]:
    plan = plan_for_user(user_id)
    limit = get_feature_limit(plan, "maxTransactionsPerMonth")
    today = datetime.utcnow().date()
    start, end = month_bounds(today.year, today.month)
    used = Transaction.query.filter(
        Transaction.user_id == user_id,
        Transaction.created_at >= datetime(start.year, start.month, start.day),
        Transaction.created_at < datetime(end.year, end.month, end.day),
    ).count()
    return used >= limit, plan, limit


def _quota_error(plan: str, limit: float):
    return json_error(
        f"Você atingiu o limite de {int(limit)} transações por mês do seu plano.",
        403,
        feature="maxTransactionsPerMonth",
        plan_type=plan,
    )


def _own_conta(user_id: int, conta_id) -> ContaPagadora | None:
    if conta_id in (None, ""):
        return None
    try:
        conta_id = int(conta_id)
    except (TypeError, ValueError):
        return None
    return ContaPagadora.query.filter_by(id=conta_id, user_id=user_id, is_active=True).first()


def _apply_transaction_fields(user: User, data: dict, tx: Transaction) -> str | None:
    try:
        if "amount" in data or tx.id is None:
            tx.amount = parse_amount(data.get("amount"), "Valor")
        if "transaction_date" in data or tx.id is None:
            raw_date = data.get("transaction_date") or datetime.utcnow().date().isoformat()
            tx.transaction_date = parse_date(raw_date, "Data")
    except ValueError as e:
        return str(e)

    if "description" in data:
        tx.description = (str(data.get("description") or "").strip() or None)

    if "category_id" in data:
        if data.get("category_id") in (None, ""):
            tx.category_id = None
        else:
            category = get_visible_category(user.id, data.get("category_id"))
            if not category:
                return "Categoria não encontrada"
            tx.category_id = category.id

    if "conta_pagadora_id" in data:
        if data.get("conta_pagadora_id") in (None, ""):
            tx.conta_pagadora_id = None
        else:
            conta = _own_conta(user.id, data.get("conta_pagadora_id"))
            if not conta:
                return "Conta pagadora não encontrada"
            tx.conta_pagadora_id = conta.id
    return None


@transactions_api_bp.route("/api/transactions", methods=["GET"])
def api_list_transactions():
    user, err = require_user()
    if err:
        return err

    scope = adaptive.resolve_scope(user, request.args.get("view_mode"))
    result = adaptive.transactions(scope, limit=int_arg("limit", 100, maximum=500))
    return jsonify({"success": True, "mode": result["mode"], "transactions": result["data"]}), 200


@transactions_api_bp.route("/api/transactions/recent", methods=["GET"])
def api_recent_transactions():
    user, err = require_user()
    if err:
        return err

    txs = (
        Transaction.query
        .filter_by(user_id=user.id)
        .order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
        .limit(int_arg("limit", 5, maximum=50))
        .all()
    )
    return jsonify({"success": True, "transactions": [adaptive.serialize_transaction(t) for t in txs]}), 200


@transactions_api_bp.route("/api/transactions", methods=["POST"])
def api_create_transaction():
    user, err = require_user()
    if err:
        return err

    exceeded, plan, limit = _monthly_quota_exceeded(user.id)
    if exceeded:
        return _quota_error(plan, limit)

    tx = Transaction(user_id=user.id)
    error = _apply_transaction_fields(user, json_body(), tx)
    if error:
        return json_error(error, 400)

    try:
        db.session.add(tx)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception("[TRANSACTIONS] erro ao criar: %s", e)
        return json_error("Erro ao salvar transação", 500)

    return jsonify({"success": True, "transaction": adaptive.serialize_transaction(tx)}), 201


@transactions_api_bp.route("/api/transactions/<int:tx_id>", methods=["PUT"])
def api_update_transaction(tx_id: int):
    user, err = require_user()
    if err:
        return err

    tx = Transaction.query.filter_by(id=tx_id, user_id=user.id).first()
    if not tx:
        return json_error("Transação não encontrada", 404)

    error = _apply_transaction_fields(user, json_body(), tx)
    if error:
        db.session.rollback()
        return json_error(error, 400)

    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception("[TRANSACTIONS] erro ao atualizar %s: %s", tx_id, e)
        return json_error("Erro ao atualizar transação", 500)

    return jsonify({"success": True, "transaction": adaptive.serialize_transaction(tx)}), 200


@transactions_api_bp.route("/api/transactions/<int:tx_id>", methods=["DELETE"])
def api_delete_transaction(tx_id: int):
    user, err = require_user()
    if err:
        return err

    tx = Transaction.query.filter_by(id=tx_id, user_id=user.id).first()
    if not tx:
        return json_error("Transação não encontrada", 404)

    try:
        db.session.delete(tx)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception("[TRANSACTIONS] erro ao excluir %s: %s", tx_id, e)
        return json_error("Erro ao excluir transação", 500)

    return jsonify({"success": True, "message": "Transação excluída"}), 200


@transactions_api_bp.route("/api/transactions/register", methods=["POST"])
def api_register_expense():
    """Encaminha o texto livre da despesa para o webhook whatsapp-inbound."""
    user, err = require_user()
    if err:
        return err

    data = json_body()
    text = str(data.get("text") or data.get("message") or "").strip()
    if not text:
        return json_error("Descreva a despesa", 400)
    if not user.phone_number:
        return json_error("Cadastre seu telefone no perfil para registrar despesas", 400)

    exceeded, plan, limit = _monthly_quota_exceeded(user.id)
    if exceeded:
        return _quota_error(plan, limit)

    conta = None
    if data.get("conta_pagadora_id") not in (None, ""):
        conta = _own_conta(user.id, data.get("conta_pagadora_id"))
        if not conta:
            return json_error("Conta pagadora não encontrada", 404)

    membro_id = None
    membro_nome = None
    if data.get("membro_user_id") not in (None, ""):
        membership = get_membership(user.id)
        try:
            membro_id = int(data.get("membro_user_id"))
        except (TypeError, ValueError):
            return json_error("Membro inválido", 400)
        if membro_id != user.id and (not membership or membro_id not in family_user_ids(membership.familia_id)):
            return json_error("Membro não pertence à sua família", 403)
        membro = db.session.get(User, membro_id)
        membro_nome = membro.full_name or membro.email

    payload = build_expense_payload(
        phone_number=user.phone_number,
        message_text=text,
        user_id=user.id,
        user_name=user.full_name or user.email,
        conta={"id": conta.id, "nome": conta.nome} if conta else None,
        membro_id=membro_id,
        membro_nome=membro_nome,
    )

    try:
        result = send_expense(payload, auth_token=current_token(user))
    except N8nError as e:
        return json_error(e.message, 502)

    return jsonify({"success": True, "message": "Despesa enviada para processamento", "result": result}), 202


@transactions_api_bp.route("/api/web-action", methods=["POST"])
def api_web_action():
    user, err = require_user()
    if err:
        return err

    data = json_body()
    action_type = str(data.get("action_type") or "").strip()
    if not action_type:
        return json_error("action_type obrigatório", 400)

    payload = data.get("payload") if isinstance(data.get("payload"), dict) else {}
    payload.setdefault("user_id", user.id)

    try:
        result = execute_web_action(action_type, payload, current_token(user))
    except N8nError as e:
        return json_error(e.message, 502)

    return jsonify({"success": True, "result": result}), 200
