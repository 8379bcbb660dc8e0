"""
API do onboarding: perguntas e respostas do diagnóstico, arquétipo,
progresso das etapas e conclusão.
"""

import logging

from flask import Blueprint, jsonify

from extensions import db
from models import DiagnosticQuestion
from modulos.financeiro.common import current_token, json_body, json_error, require_user
from modulos.financeiro.setup_helper import (
    apply_diagnostic,
    archetype_info,
    get_onboarding_status,
    validate_completion,
    validate_diagnostic,
)
from n8n_client import N8nError, send_onboarding

logger = logging.getLogger(__name__)

onboarding_api_bp = Blueprint("onboarding_api", __name__)


@onboarding_api_bp.route("/api/diagnostic/questions", methods=["GET"])
def api_diagnostic_questions():
    user, err = require_user()
    if err:
        return err

    questions = (
        DiagnosticQuestion.query
        .filter_by(is_active=True)
        .order_by(DiagnosticQuestion.step_order.asc())
        .all()
    )
    return jsonify({
        "success": True,
        "questions": [
            {
                "id": q.id,
                "question_text": q.question_text,
                "target_column": q.target_column,
                "step_order": q.step_order,
            }
            for q in questions
        ],
    }), 200


@onboarding_api_bp.route("/api/diagnostic", methods=["POST"])
def api_submit_diagnostic():
    user, err = require_user()
    if err:
        return err

    data = json_body()
    ok, message, values = validate_diagnostic(data)
    if not ok:
        return json_error(message, 400)

    if data.get("full_name"):
        user.full_name = str(data["full_name"]).strip()[:255]
    if data.get("phone_number"):
        user.phone_number = "".join(ch for ch in str(data["phone_number"]) if ch.isdigit() or ch == "+")

    profile = apply_diagnostic(user, values)

    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception("[DIAGNOSTIC] erro ao salvar: %s", e)
        return json_error("Erro ao salvar diagnóstico", 500)

    # Falha no n8n não invalida o diagnóstico já salvo
    automation_ok = True
    try:
        send_onboarding(
            personal_data={
                "user_id": user.id,
                "full_name": user.full_name,
                "email": user.email,
                "phone_number": user.phone_number,
            },
            diagnostic_answers=values,
            auth_token=current_token(user),
        )
    except N8nError as e:
        automation_ok = False
        logger.warning("[DIAGNOSTIC] start-onboarding falhou para user_id=%s: %s", user.id, e.message)

    return jsonify({
        "success": True,
        "profile": profile,
        "archetype": archetype_info(profile["archetype"]),
        "automation_notified": automation_ok,
    }), 200


@onboarding_api_bp.route("/api/onboarding/status", methods=["GET"])
def api_onboarding_status():
    user, err = require_user()
    if err:
        return err
    return jsonify({"success": True, **get_onboarding_status(user)}), 200


@onboarding_api_bp.route("/api/onboarding/complete", methods=["POST"])
def api_onboarding_complete():
    user, err = require_user()
    if err:
        return err

    ok, message = validate_completion(user)
    if not ok:
        return json_error(message, 400)

    data = json_body()
    if "confirmar_registros" in data:
        user.confirmar_registros = bool(data.get("confirmar_registros"))
    user.onboarding_completed = True
    db.session.commit()

    return jsonify({"success": True, "message": "Configuração concluída!", **get_onboarding_status(user)}), 200
