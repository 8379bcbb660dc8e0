"""
Consultas adaptativas: o mesmo dado em visão individual ou agregado da família.

O modo vem da preferência persistida do usuário (``users.view_mode``) e pode
ser sobrescrito por ``?view_mode=`` na requisição. A visão familiar exige que
o usuário seja membro de uma família; sem família cai para individual.
Toda resposta carrega ``{"mode": ..., "data": ...}``.
"""

from dataclasses import dataclass, field

from models import Familia, Orcamento, Transaction, Category, User, UserGoal
from modulos.financeiro import analytics
from modulos.financeiro.common import (
    VIEW_MODES,
    effective_view_mode,
    family_user_ids,
    get_family,
    iso,
    month_bounds,
    shift_month,
    to_float,
)


@dataclass
class Scope:
    mode: str
    user: User
    user_ids: list[int] = field(default_factory=list)
    familia: Familia | None = None

    @property
    def is_family(self) -> bool:
        return self.mode == "family" and self.familia is not None


def resolve_scope(user: User, requested_mode: str | None = None) -> Scope:
    mode = (requested_mode or "").strip().lower()
    if mode not in VIEW_MODES:
        mode = effective_view_mode(user)

    if mode == "family":
        familia = get_family(user.id)
        if familia is not None:
            return Scope(mode="family", user=user, user_ids=family_user_ids(familia.id), familia=familia)

    return Scope(mode="individual", user=user, user_ids=[user.id])


def dashboard(scope: Scope, y: int, m: int) -> dict:
    if not scope.is_family:
        return {"mode": scope.mode, "data": analytics.monthly_user_summary(scope.user, y, m)}

    members = User.query.filter(User.id.in_(scope.user_ids)).all()
    summaries = [analytics.monthly_user_summary(u, y, m) for u in members]
    return {"mode": scope.mode, "data": analytics.merge_monthly_summaries(summaries)}


def spending(scope: Scope, y: int, m: int) -> dict:
    rows = analytics.load_month_rows(scope.user_ids, y, m)
    if not scope.is_family:
        return {"mode": scope.mode, "data": analytics.build_category_spending(rows)}

    per_member = []
    for uid in scope.user_ids:
        per_member.append(analytics.build_category_spending([r for r in rows if r["user_id"] == uid]))
    return {"mode": scope.mode, "data": analytics.merge_category_spending(per_member)}


def spending_by_parent(scope: Scope, y: int, m: int) -> dict:
    result = spending(scope, y, m)
    categories = analytics.load_categories_by_id()
    return {"mode": result["mode"], "data": analytics.rollup_to_parent(result["data"], categories)}


def budget_performance(scope: Scope, y: int, m: int) -> dict:
    start, _ = month_bounds(y, m)
    if scope.is_family:
        budgets = Orcamento.query.filter_by(familia_id=scope.familia.id, mes_ano=start).all()
    else:
        budgets = Orcamento.query.filter(
            Orcamento.user_id == scope.user.id,
            Orcamento.familia_id.is_(None),
            Orcamento.mes_ano == start,
        ).all()

    rows = analytics.load_month_rows(scope.user_ids, y, m)
    perf = analytics.build_budget_performance(budgets, analytics.spent_by_category(rows))
    return {"mode": scope.mode, "data": perf}


def transactions(scope: Scope, limit: int = 100) -> dict:
    query = (
        Transaction.query
        .filter(Transaction.user_id.in_(scope.user_ids))
        .order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
        .limit(limit)
    )
    return {"mode": scope.mode, "data": [serialize_transaction(tx) for tx in query.all()]}


def goals(scope: Scope) -> dict:
    active = (
        UserGoal.query
        .filter(UserGoal.user_id.in_(scope.user_ids), UserGoal.status == "active")
        .order_by(UserGoal.is_primary.desc(), UserGoal.created_at.asc())
        .all()
    )
    if scope.is_family:
        return {"mode": scope.mode, "data": analytics.build_family_goals(active)}
    return {"mode": scope.mode, "data": [serialize_goal(g) for g in active]}


def insights(scope: Scope, y: int, m: int) -> dict:
    rows = analytics.load_month_rows(scope.user_ids, y, m)
    py, pm = shift_month(y, m, -1)
    prev_rows = analytics.load_month_rows(scope.user_ids, py, pm)
    prev_spent = sum(r["amount"] for r in prev_rows if not analytics.is_income(r))

    data = analytics.build_expense_insights(rows, prev_spent)
    data["month"] = f"{y:04d}-{m:02d}"
    data["messages"] = analytics.insight_messages(data)
    return {"mode": scope.mode, "data": data}


def serialize_category(cat: Category | None) -> dict | None:
    if cat is None:
        return None
    return {
        "id": cat.id,
        "name": cat.name,
        "icon_name": cat.icon_name,
        "tipo": cat.tipo,
        "parent_category_id": cat.parent_category_id,
    }


def serialize_transaction(tx: Transaction) -> dict:
    return {
        "id": tx.id,
        "user_id": tx.user_id,
        "description": tx.description,
        "amount": to_float(tx.amount),
        "transaction_date": iso(tx.transaction_date),
        "category_id": tx.category_id,
        "conta_pagadora_id": tx.conta_pagadora_id,
        "categories": serialize_category(tx.category),
        "conta_pagadora": (
            {"id": tx.conta_pagadora.id, "nome": tx.conta_pagadora.nome}
            if tx.conta_pagadora else None
        ),
        "created_at": iso(tx.created_at),
    }


def serialize_goal(goal: UserGoal) -> dict:
    target = to_float(goal.target_amount)
    current = to_float(goal.current_amount)
    return {
        "id": goal.id,
        "user_id": goal.user_id,
        "goal_template_id": goal.goal_template_id,
        "custom_name": goal.custom_name,
        "name": goal.custom_name or (goal.template.name if goal.template else None),
        "goal_templates": (
            {"name": goal.template.name, "description": goal.template.description}
            if goal.template else None
        ),
        "target_amount": target,
        "current_amount": current,
        "progress_percentage": round(min(current / target * 100, 100.0), 2) if target > 0 else 0.0,
        "target_date": iso(goal.target_date),
        "is_primary": bool(goal.is_primary),
        "status": goal.status,
    }
