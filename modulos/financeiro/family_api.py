"""
API da família
==============

Criação da família, membros (papel e cota mensal), convites por token
com expiração e gastos do mês por membro.
"""

import logging
import secrets
from datetime import datetime, timedelta

from flask import Blueprint, current_app, jsonify

from email_service import send_family_invitation
from extensions import db
from models import Familia, FamilyInvite, MembroFamilia, User
from modulos.billing.plans import get_feature_limit, plan_for_user
from modulos.financeiro import analytics
from modulos.financeiro.common import (
    get_family,
    get_membership,
    is_responsavel,
    iso,
    json_body,
    json_error,
    parse_amount,
    require_user,
    to_float,
)
from modulos.financeiro.register_backend import EMAIL_RE

logger = logging.getLogger(__name__)

family_api_bp = Blueprint("family_api", __name__)

PAPEL_RESPONSAVEL = "Responsável"


def _serialize_member(m: MembroFamilia) -> dict:
    return {
        "id": m.id,
        "user_id": m.user_id,
        "nome": (m.user.full_name or m.user.email) if m.user else None,
        "email": m.user.email if m.user else None,
        "papel": m.papel,
        "cota_mensal": to_float(m.cota_mensal),
        "is_responsavel": m.familia is not None and m.user_id == m.familia.responsavel_user_id,
    }


def _serialize_family(familia: Familia, user_id: int) -> dict:
    return {
        "id": familia.id,
        "nome_familia": familia.nome_familia,
        "responsavel_user_id": familia.responsavel_user_id,
        "is_responsavel": is_responsavel(user_id, familia),
        "created_at": iso(familia.created_at),
        "membros": [_serialize_member(m) for m in sorted(familia.membros, key=lambda x: x.id)],
    }


def _serialize_invite(inv: FamilyInvite, base_url: str = "") -> dict:
    return {
        "id": inv.id,
        "familia_id": inv.familia_id,
        "invited_email": inv.invited_email,
        "papel": inv.papel,
        "cota_mensal": to_float(inv.cota_mensal) if inv.cota_mensal is not None else None,
        "token": inv.token,
        "accept_url": f"{base_url}/convite/{inv.token}",
        "status": inv.status,
        "expires_at": iso(inv.expires_at),
        "created_at": iso(inv.created_at),
    }


def _require_responsavel(user_id: int):
    """Retorna (familia, None) ou (None, resposta de erro)."""
    familia = get_family(user_id)
    if familia is None:
        return None, json_error("Você não faz parte de uma família", 404)
    if not is_responsavel(user_id, familia):
        return None, json_error("Apenas o responsável pela família pode fazer isso", 403)
    return familia, None


@family_api_bp.route("/api/family", methods=["GET"])
def api_get_family():
    user, err = require_user()
    if err:
        return err

    familia = get_family(user.id)
    return jsonify({
        "success": True,
        "family": _serialize_family(familia, user.id) if familia else None,
    }), 200


@family_api_bp.route("/api/family", methods=["POST"])
def api_create_family():
    user, err = require_user()
    if err:
        return err

    if get_membership(user.id):
        return json_error("Você já faz parte de uma família", 409)

    nome = str(json_body().get("nome_familia") or "").strip()
    if not nome:
        return json_error("Informe o nome da família", 400)

    try:
        familia = Familia(nome_familia=nome[:150], responsavel_user_id=user.id)
        db.session.add(familia)
        db.session.flush()
        db.session.add(MembroFamilia(familia_id=familia.id, user_id=user.id, papel=PAPEL_RESPONSAVEL, cota_mensal=0))
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception("[FAMILY] erro ao criar família: %s", e)
        return json_error("Erro ao criar família", 500)

    return jsonify({"success": True, "family": _serialize_family(familia, user.id)}), 201


@family_api_bp.route("/api/family/members/<int:member_id>", methods=["PUT"])
def api_update_member(member_id: int):
    user, err = require_user()
    if err:
        return err

    familia, err = _require_responsavel(user.id)
    if err:
        return err

    membro = MembroFamilia.query.filter_by(id=member_id, familia_id=familia.id).first()
    if not membro:
        return json_error("Membro não encontrado", 404)

    data = json_body()
    if "papel" in data:
        papel = str(data.get("papel") or "").strip()
        if not papel:
            return json_error("Informe o papel do membro", 400)
        if membro.user_id != familia.responsavel_user_id:
            membro.papel = papel[:50]
    if "cota_mensal" in data:
        try:
            membro.cota_mensal = parse_amount(data.get("cota_mensal") or 0, "Cota mensal", allow_zero=True)
        except ValueError as e:
            db.session.rollback()
            return json_error(str(e), 400)

    db.session.commit()
    return jsonify({"success": True, "member": _serialize_member(membro)}), 200


@family_api_bp.route("/api/family/members/<int:member_id>", methods=["DELETE"])
def api_remove_member(member_id: int):
    user, err = require_user()
    if err:
        return err

    familia, err = _require_responsavel(user.id)
    if err:
        return err

    membro = MembroFamilia.query.filter_by(id=member_id, familia_id=familia.id).first()
    if not membro:
        return json_error("Membro não encontrado", 404)
    if membro.user_id == familia.responsavel_user_id:
        return json_error("O responsável não pode ser removido da família", 400)

    removed_user = membro.user
    db.session.delete(membro)
    if removed_user is not None and removed_user.view_mode == "family":
        removed_user.view_mode = "individual"
    db.session.commit()
    return jsonify({"success": True, "message": "Membro removido"}), 200


@family_api_bp.route("/api/family/members/<int:member_user_id>/spending", methods=["GET"])
def api_member_spending(member_user_id: int):
    user, err = require_user()
    if err:
        return err

    familia = get_family(user.id)
    if familia is None:
        return json_error("Você não faz parte de uma família", 404)

    membro = MembroFamilia.query.filter_by(familia_id=familia.id, user_id=member_user_id).first()
    if not membro:
        return json_error("Membro não encontrado", 404)

    today = datetime.utcnow().date()
    summary = analytics.monthly_user_summary(membro.user, today.year, today.month)
    cota = to_float(membro.cota_mensal)
    spent = summary["total_spent"]

    return jsonify({
        "success": True,
        "user_id": membro.user_id,
        "month": f"{today.year:04d}-{today.month:02d}",
        "total_spent": spent,
        "cota_mensal": cota,
        "remaining_quota": round(cota - spent, 2) if cota else None,
        "quota_usage_percentage": round(spent / cota * 100, 2) if cota else None,
    }), 200


# ---------------------------------------------------------------------------
# Convites
# ---------------------------------------------------------------------------

@family_api_bp.route("/api/family/invites", methods=["GET"])
def api_list_invites():
    user, err = require_user()
    if err:
        return err

    familia, err = _require_responsavel(user.id)
    if err:
        return err

    invites = (
        FamilyInvite.query
        .filter_by(familia_id=familia.id, status="pending")
        .filter(FamilyInvite.expires_at > datetime.utcnow())
        .order_by(FamilyInvite.created_at.desc())
        .all()
    )
    base_url = current_app.config.get("APP_BASE_URL", "")
    return jsonify({"success": True, "invites": [_serialize_invite(i, base_url) for i in invites]}), 200


@family_api_bp.route("/api/family/invites", methods=["POST"])
def api_create_invite():
    user, err = require_user()
    if err:
        return err

    familia, err = _require_responsavel(user.id)
    if err:
        return err

    plan = plan_for_user(user.id)
    limit = get_feature_limit(plan, "familyMembers")
    pending = FamilyInvite.query.filter(
        FamilyInvite.familia_id == familia.id,
        FamilyInvite.status == "pending",
        FamilyInvite.expires_at > datetime.utcnow(),
    ).count()
    if len(familia.membros) + pending >= limit:
        return json_error(
            "Seu plano não permite adicionar mais membros à família" if limit else
            "Convites para a família estão disponíveis no plano Premium",
            403,
            feature="familyMembers",
            plan_type=plan,
        )

    data = json_body()
    papel = str(data.get("papel") or "Membro").strip()[:50]
    if papel == PAPEL_RESPONSAVEL:
        return json_error("Papel inválido", 400)

    cota = None
    if data.get("cota_mensal") not in (None, ""):
        try:
            cota = parse_amount(data.get("cota_mensal"), "Cota mensal", allow_zero=True)
        except ValueError as e:
            return json_error(str(e), 400)

    email = str(data.get("email") or "").strip().lower() or None
    if email and not EMAIL_RE.match(email):
        return json_error("Email inválido", 400)

    ttl_days = int(current_app.config.get("INVITE_TTL_DAYS", 7))
    invite = FamilyInvite(
        familia_id=familia.id,
        invited_by_user_id=user.id,
        invited_email=email,
        papel=papel,
        cota_mensal=cota,
        token=secrets.token_urlsafe(32),
        status="pending",
        expires_at=datetime.utcnow() + timedelta(days=ttl_days),
    )

    try:
        db.session.add(invite)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception("[FAMILY_INVITE] erro ao criar convite: %s", e)
        return json_error("Erro interno no servidor", 500)

    base_url = current_app.config.get("APP_BASE_URL", "")
    payload = _serialize_invite(invite, base_url)

    email_sent = None
    if email:
        email_sent = send_family_invitation(
            current_app._get_current_object(),
            recipient_email=email,
            inviter_name=user.full_name or user.email,
            family_name=familia.nome_familia,
            papel=papel,
            accept_url=payload["accept_url"],
            cota_mensal=to_float(cota) if cota is not None else None,
        )

    return jsonify({"success": True, "invite": payload, "email_sent": email_sent}), 201


@family_api_bp.route("/api/family/invites/<int:invite_id>", methods=["DELETE"])
def api_cancel_invite(invite_id: int):
    user, err = require_user()
    if err:
        return err

    familia, err = _require_responsavel(user.id)
    if err:
        return err

    invite = FamilyInvite.query.filter_by(id=invite_id, familia_id=familia.id).first()
    if not invite:
        return json_error("Convite não encontrado", 404)
    if invite.status != "pending":
        return json_error("Apenas convites pendentes podem ser cancelados", 409)

    invite.status = "canceled"
    db.session.commit()
    return jsonify({"success": True, "message": "Convite cancelado"}), 200


def _valid_invite(token: str) -> FamilyInvite | None:
    invite = FamilyInvite.query.filter_by(token=token).first()
    if not invite or invite.status != "pending" or invite.expires_at <= datetime.utcnow():
        return None
    return invite


@family_api_bp.route("/api/invites/<token>", methods=["GET"])
def api_get_invite(token: str):
    invite = _valid_invite(token)
    if not invite:
        return json_error("Convite inválido ou expirado", 404)

    familia = invite.familia
    responsavel = db.session.get(User, familia.responsavel_user_id)
    data = _serialize_invite(invite, current_app.config.get("APP_BASE_URL", ""))
    data.pop("token", None)
    data["familia"] = {
        "id": familia.id,
        "nome_familia": familia.nome_familia,
        "responsavel_nome": (responsavel.full_name or responsavel.email) if responsavel else None,
    }
    return jsonify({"success": True, "invite": data}), 200


@family_api_bp.route("/api/invites/<token>/accept", methods=["POST"])
def api_accept_invite(token: str):
    user, err = require_user()
    if err:
        return err

    invite = _valid_invite(token)
    if not invite:
        return json_error("Convite inválido ou expirado", 404)

    if get_membership(user.id):
        return json_error("Você já faz parte de uma família", 409)

    try:
        membro = MembroFamilia(
            familia_id=invite.familia_id,
            user_id=user.id,
            papel=invite.papel,
            cota_mensal=invite.cota_mensal or 0,
        )
        db.session.add(membro)
        invite.status = "accepted"
        invite.accepted_by_user_id = user.id
        invite.accepted_at = datetime.utcnow()
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception("[FAMILY_INVITE] erro ao aceitar convite: %s", e)
        return json_error("Erro ao aceitar convite", 500)

    return jsonify({"success": True, "message": "Bem-vindo à família!", "family": _serialize_family(invite.familia, user.id)}), 200
