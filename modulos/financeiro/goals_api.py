"""
API de metas financeiras e planos de ação
=========================================

Modelos de metas (catálogo), metas do usuário (com meta principal),
progresso, metas agregadas da família e execução dos planos de ação
passo a passo.
"""

import logging
from datetime import datetime

from flask import Blueprint, jsonify, request

from extensions import db
from models import (
    ActionPlan,
    GoalTemplate,
    PlanStep,
    UserActionPlan,
    UserGoal,
    UserPlanStepProgress,
)
from modulos.financeiro import adaptive
from modulos.financeiro.common import (
    iso,
    json_body,
    json_error,
    parse_amount,
    parse_date,
    require_user,
)

logger = logging.getLogger(__name__)

goals_api_bp = Blueprint("goals_api", __name__)


def _serialize_plan(plan: ActionPlan) -> dict:
    return {
        "id": plan.id,
        "name": plan.name,
        "description": plan.description,
        "steps": [
            {"id": s.id, "step_order": s.step_order, "title": s.title, "content": s.content}
            for s in plan.steps
        ],
    }


def _own_goal(user_id: int, goal_id: int) -> UserGoal | None:
    return UserGoal.query.filter_by(id=goal_id, user_id=user_id).first()


def _clear_other_primary(user_id: int, keep_id: int | None):
    query = UserGoal.query.filter(UserGoal.user_id == user_id, UserGoal.is_primary.is_(True))
    if keep_id is not None:
        query = query.filter(UserGoal.id != keep_id)
    for g in query.all():
        g.is_primary = False


def _mark_completed_if_reached(goal: UserGoal):
    if goal.target_amount and goal.current_amount is not None and goal.current_amount >= goal.target_amount:
        goal.status = "completed"
        goal.is_primary = False
    elif goal.status == "completed":
        goal.status = "active"


@goals_api_bp.route("/api/goal-templates", methods=["GET"])
def api_goal_templates():
    user, err = require_user()
    if err:
        return err

    templates = GoalTemplate.query.order_by(GoalTemplate.name.asc()).all()
    return jsonify({
        "success": True,
        "templates": [
            {
                "id": t.id,
                "name": t.name,
                "description": t.description,
                "action_plans": [_serialize_plan(p) for p in t.action_plans],
            }
            for t in templates
        ],
    }), 200


@goals_api_bp.route("/api/goals", methods=["GET"])
def api_list_goals():
    user, err = require_user()
    if err:
        return err

    scope = adaptive.resolve_scope(user, request.args.get("view_mode"))
    result = adaptive.goals(scope)
    return jsonify({"success": True, "mode": result["mode"], "goals": result["data"]}), 200


@goals_api_bp.route("/api/goals/primary", methods=["GET"])
def api_primary_goal():
    user, err = require_user()
    if err:
        return err

    goal = UserGoal.query.filter_by(user_id=user.id, status="active", is_primary=True).first()
    return jsonify({"success": True, "goal": adaptive.serialize_goal(goal) if goal else None}), 200


def _apply_goal_fields(data: dict, goal: UserGoal) -> str | None:
    if "goal_template_id" in data:
        raw = data.get("goal_template_id")
        if raw in (None, ""):
            goal.goal_template_id = None
        else:
            try:
                template = db.session.get(GoalTemplate, int(raw))
            except (TypeError, ValueError):
                template = None
            if not template:
                return "Modelo de meta não encontrado"
            goal.goal_template_id = template.id

    if "custom_name" in data:
        goal.custom_name = str(data.get("custom_name") or "").strip()[:150] or None

    if not goal.goal_template_id and not goal.custom_name:
        return "Escolha um modelo ou informe um nome para a meta"

    try:
        if "target_amount" in data or goal.id is None:
            goal.target_amount = parse_amount(data.get("target_amount"), "Valor alvo")
        if "current_amount" in data:
            goal.current_amount = parse_amount(data.get("current_amount") or 0, "Valor atual", allow_zero=True)
        if "target_date" in data:
            raw_date = data.get("target_date")
            goal.target_date = parse_date(raw_date, "Data alvo") if raw_date else None
    except ValueError as e:
        return str(e)
    return None


@goals_api_bp.route("/api/goals", methods=["POST"])
def api_create_goal():
    user, err = require_user()
    if err:
        return err

    data = json_body()
    goal = UserGoal(user_id=user.id, current_amount=0, status="active", is_primary=False)
    error = _apply_goal_fields(data, goal)
    if error:
        return json_error(error, 400)

    has_primary = UserGoal.query.filter_by(user_id=user.id, status="active", is_primary=True).first() is not None
    goal.is_primary = bool(data.get("is_primary")) or not has_primary
    _mark_completed_if_reached(goal)

    try:
        db.session.add(goal)
        db.session.flush()
        if goal.is_primary:
            _clear_other_primary(user.id, goal.id)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception("[GOALS] erro ao criar: %s", e)
        return json_error("Erro ao criar meta", 500)

    return jsonify({"success": True, "goal": adaptive.serialize_goal(goal)}), 201


@goals_api_bp.route("/api/goals/<int:goal_id>", methods=["PUT"])
def api_update_goal(goal_id: int):
    user, err = require_user()
    if err:
        return err

    goal = _own_goal(user.id, goal_id)
    if not goal:
        return json_error("Meta não encontrada", 404)

    data = json_body()
    error = _apply_goal_fields(data, goal)
    if error:
        db.session.rollback()
        return json_error(error, 400)

    if data.get("is_primary") is True:
        goal.is_primary = True
        _clear_other_primary(user.id, goal.id)
    elif data.get("is_primary") is False:
        goal.is_primary = False

    _mark_completed_if_reached(goal)

    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.exception("[GOALS] erro ao atualizar %s: %s", goal_id, e)
        return json_error("Erro ao atualizar meta", 500)

    return jsonify({"success": True, "goal": adaptive.serialize_goal(goal)}), 200


@goals_api_bp.route("/api/goals/<int:goal_id>/progress", methods=["PATCH"])
def api_goal_progress(goal_id: int):
    user, err = require_user()
    if err:
        return err

    goal = _own_goal(user.id, goal_id)
    if not goal:
        return json_error("Meta não encontrada", 404)

    data = json_body()
    try:
        if "add_amount" in data:
            goal.current_amount = (goal.current_amount or 0) + parse_amount(data.get("add_amount"), "Aporte")
        else:
            goal.current_amount = parse_amount(data.get("current_amount"), "Valor atual", allow_zero=True)
    except ValueError as e:
        return json_error(str(e), 400)

    _mark_completed_if_reached(goal)
    db.session.commit()

    return jsonify({"success": True, "goal": adaptive.serialize_goal(goal)}), 200


@goals_api_bp.route("/api/goals/<int:goal_id>", methods=["DELETE"])
def api_archive_goal(goal_id: int):
    user, err = require_user()
    if err:
        return err

    goal = _own_goal(user.id, goal_id)
    if not goal:
        return json_error("Meta não encontrada", 404)

    goal.status = "archived"
    goal.is_primary = False
    db.session.commit()
    return jsonify({"success": True, "message": "Meta arquivada"}), 200


# ---------------------------------------------------------------------------
# Planos de ação
# ---------------------------------------------------------------------------

def _serialize_user_plan(uap: UserActionPlan) -> dict:
    done = {p.plan_step_id: p.completed_at for p in uap.progress}
    steps = [
        {
            "id": s.id,
            "step_order": s.step_order,
            "title": s.title,
            "content": s.content,
            "completed": s.id in done,
            "completed_at": iso(done.get(s.id)),
        }
        for s in uap.plan.steps
    ]
    total = len(steps)
    completed = sum(1 for s in steps if s["completed"])
    return {
        "id": uap.id,
        "plan_id": uap.plan_id,
        "plan_name": uap.plan.name,
        "user_goal_id": uap.user_goal_id,
        "status": uap.status,
        "started_at": iso(uap.started_at),
        "steps": steps,
        "completed_steps": completed,
        "total_steps": total,
        "percentage": round(completed / total * 100) if total else 0,
    }


@goals_api_bp.route("/api/goals/<int:goal_id>/plans", methods=["POST"])
def api_start_plan(goal_id: int):
    user, err = require_user()
    if err:
        return err

    goal = _own_goal(user.id, goal_id)
    if not goal:
        return json_error("Meta não encontrada", 404)

    data = json_body()
    try:
        plan = db.session.get(ActionPlan, int(data.get("plan_id")))
    except (TypeError, ValueError):
        plan = None
    if not plan:
        return json_error("Plano de ação não encontrado", 404)
    if plan.goal_template_id and goal.goal_template_id and plan.goal_template_id != goal.goal_template_id:
        return json_error("Este plano não pertence ao modelo da meta", 400)

    existing = UserActionPlan.query.filter_by(user_id=user.id, plan_id=plan.id, user_goal_id=goal.id).first()
    if existing:
        return jsonify({"success": True, "action_plan": _serialize_user_plan(existing)}), 200

    uap = UserActionPlan(user_id=user.id, plan_id=plan.id, user_goal_id=goal.id, status="in_progress")
    db.session.add(uap)
    db.session.commit()
    return jsonify({"success": True, "action_plan": _serialize_user_plan(uap)}), 201


@goals_api_bp.route("/api/action-plans/<int:uap_id>", methods=["GET"])
def api_get_action_plan(uap_id: int):
    user, err = require_user()
    if err:
        return err

    uap = UserActionPlan.query.filter_by(id=uap_id, user_id=user.id).first()
    if not uap:
        return json_error("Plano não encontrado", 404)
    return jsonify({"success": True, "action_plan": _serialize_user_plan(uap)}), 200


@goals_api_bp.route("/api/action-plans/<int:uap_id>/steps/<int:step_id>/complete", methods=["POST"])
def api_complete_step(uap_id: int, step_id: int):
    user, err = require_user()
    if err:
        return err

    uap = UserActionPlan.query.filter_by(id=uap_id, user_id=user.id).first()
    if not uap:
        return json_error("Plano não encontrado", 404)

    step = PlanStep.query.filter_by(id=step_id, plan_id=uap.plan_id).first()
    if not step:
        return json_error("Passo não encontrado", 404)

    already = UserPlanStepProgress.query.filter_by(user_action_plan_id=uap.id, plan_step_id=step.id).first()
    if not already:
        uap.progress.append(UserPlanStepProgress(plan_step_id=step.id, completed_at=datetime.utcnow()))
        db.session.flush()

    if len(uap.progress) >= len(uap.plan.steps):
        uap.status = "completed"

    db.session.commit()
    return jsonify({"success": True, "action_plan": _serialize_user_plan(uap)}), 200
