"""
API de autenticação, perfil e preferências
==========================================

POST /api/register, /api/login, /api/logout
GET/PUT /api/me
GET/PUT /api/preferences  (view_mode, theme, confirmar_registros)
"""

import logging

from flask import Blueprint, jsonify, request, session

from extensions import db
from models import User
from modulos.billing.plans import get_subscription, effective_plan
from modulos.financeiro.common import (
    THEMES,
    VIEW_MODES,
    effective_view_mode,
    get_membership,
    json_body,
    json_error,
    require_user,
    to_float,
    iso,
)
from modulos.financeiro.login_backend import process_login
from modulos.financeiro.register_backend import process_registration
from modulos.financeiro.setup_helper import archetype_info, is_diagnostic_complete

logger = logging.getLogger(__name__)

auth_api_bp = Blueprint("auth_api", __name__)


def serialize_user(user: User) -> dict:
    membership = get_membership(user.id)
    return {
        "id": user.id,
        "auth_id": user.auth_id,
        "email": user.email,
        "full_name": user.full_name,
        "phone_number": user.phone_number,
        "financial_archetype": user.financial_archetype,
        "archetype": archetype_info(user.financial_archetype),
        "diagnostic_complete": is_diagnostic_complete(user),
        "renda_base_amount": to_float(user.renda_base_amount) if user.renda_base_amount is not None else None,
        "income_input_typical": to_float(user.income_input_typical) if user.income_input_typical is not None else None,
        "income_input_best": to_float(user.income_input_best) if user.income_input_best is not None else None,
        "income_input_worst": to_float(user.income_input_worst) if user.income_input_worst is not None else None,
        "cost_of_living_reported": to_float(user.cost_of_living_reported) if user.cost_of_living_reported is not None else None,
        "confirmar_registros": bool(user.confirmar_registros),
        "onboarding_completed": bool(user.onboarding_completed),
        "familia_id": membership.familia_id if membership else None,
        "plan_type": effective_plan(get_subscription(user.id)),
        "created_at": iso(user.created_at),
    }


def _preferences(user: User) -> dict:
    return {
        "view_mode": effective_view_mode(user),
        "theme": user.theme if user.theme in THEMES else "light",
        "confirmar_registros": bool(user.confirmar_registros),
        "has_family_access": get_membership(user.id) is not None,
    }


@auth_api_bp.route("/api/register", methods=["POST"])
def api_register():
    data = json_body()
    try:
        result = process_registration(data)
    except Exception as e:
        db.session.rollback()
        logger.exception("[REGISTER] erro: %s", e)
        return json_error("Erro interno no servidor", 500)

    if not result["success"]:
        return json_error(result["message"], result["status"])

    return jsonify({
        "success": True,
        "message": result["message"],
        "user": {"id": result["user"].id, "email": result["user"].email},
    }), 201


@auth_api_bp.route("/api/login", methods=["POST"])
def api_login():
    data = json_body()
    result = process_login(data.get("email"), data.get("password"), request.remote_addr)
    if not result["success"]:
        return json_error(result["message"], result["status"])

    user = result["user"]
    session.permanent = bool(data.get("remember_me"))
    session["finance_user_id"] = user.id

    return jsonify({
        "success": True,
        "message": result["message"],
        "access_token": result["access_token"],
        "token_type": "Bearer",
        "user": serialize_user(user),
    }), 200


@auth_api_bp.route("/api/logout", methods=["POST"])
def api_logout():
    user, _ = require_user()
    if user is not None:
        user.api_token = None
        user.api_token_expires_at = None
        db.session.commit()
    session.pop("finance_user_id", None)
    return jsonify({"success": True, "message": "Logout realizado"}), 200


@auth_api_bp.route("/api/me", methods=["GET"])
def api_me():
    user, err = require_user()
    if err:
        return err
    return jsonify({"success": True, "user": serialize_user(user), "preferences": _preferences(user)}), 200


@auth_api_bp.route("/api/me", methods=["PUT"])
def api_update_me():
    user, err = require_user()
    if err:
        return err

    data = json_body()
    if "full_name" in data:
        full_name = str(data.get("full_name") or "").strip()
        if not full_name:
            return json_error("Nome não pode ficar vazio", 400)
        user.full_name = full_name[:255]
    if "phone_number" in data:
        phone = "".join(ch for ch in str(data.get("phone_number") or "") if ch.isdigit() or ch == "+")
        user.phone_number = phone or None

    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception("[ME] erro ao salvar perfil: %s", e)
        return json_error("Erro ao salvar perfil", 500)

    return jsonify({"success": True, "user": serialize_user(user)}), 200


@auth_api_bp.route("/api/preferences", methods=["GET"])
def api_get_preferences():
    user, err = require_user()
    if err:
        return err
    return jsonify({"success": True, "preferences": _preferences(user)}), 200


@auth_api_bp.route("/api/preferences", methods=["PUT"])
def api_update_preferences():
    user, err = require_user()
    if err:
        return err

    data = json_body()

    if "view_mode" in data:
        mode = str(data.get("view_mode") or "").strip().lower()
        if mode not in VIEW_MODES:
            return json_error("Modo de visualização inválido", 400)
        if mode == "family" and not get_membership(user.id):
            return json_error("Você não faz parte de uma família", 409)
        user.view_mode = mode

    if "theme" in data:
        theme = str(data.get("theme") or "").strip().lower()
        if theme not in THEMES:
            return json_error("Tema inválido", 400)
        user.theme = theme

    if "confirmar_registros" in data:
        user.confirmar_registros = bool(data.get("confirmar_registros"))

    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception("[PREFERENCES] erro: %s", e)
        return json_error("Erro ao salvar preferências", 500)

    return jsonify({"success": True, "preferences": _preferences(user)}), 200
