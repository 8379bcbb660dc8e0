"""
Agregações financeiras
======================

Resumos mensais, gastos por categoria, desempenho de orçamentos,
insights de despesas, evolução de saldos e metas da família.

As funções ``build_*`` / ``merge_*`` são puras: recebem linhas já
carregadas (dicts) e devolvem estruturas prontas para JSON. As funções
``load_*`` fazem as consultas no banco.
"""

import logging
from collections import defaultdict
from datetime import date, datetime

from sqlalchemy import func

from extensions import db
from models import (
    Category,
    ContaPagadora,
    MonthlySummary,
    Orcamento,
    Transaction,
    User,
)
from modulos.financeiro.common import month_bounds, shift_month, to_float, iso

logger = logging.getLogger(__name__)

WARNING_THRESHOLD = 80.0
OVER_BUDGET_THRESHOLD = 100.0
INSIGHT_CHANGE_THRESHOLD = 10.0


# ---------------------------------------------------------------------------
# Consultas
# ---------------------------------------------------------------------------

def load_transaction_rows(user_ids: list[int], start: date, end: date) -> list[dict]:
    """Transações dos usuários no intervalo [start, end), com a categoria embutida."""
    if not user_ids:
        return []

    query = (
        db.session.query(Transaction, Category)
        .outerjoin(Category, Transaction.category_id == Category.id)
        .filter(
            Transaction.user_id.in_(user_ids),
            Transaction.transaction_date >= start,
            Transaction.transaction_date < end,
        )
        .order_by(Transaction.transaction_date.asc(), Transaction.id.asc())
    )

    rows = []
    for tx, cat in query.all():
        rows.append({
            "id": tx.id,
            "user_id": tx.user_id,
            "amount": to_float(tx.amount),
            "transaction_date": tx.transaction_date,
            "description": tx.description,
            "conta_pagadora_id": tx.conta_pagadora_id,
            "category_id": tx.category_id,
            "category_name": cat.name if cat else None,
            "icon_name": cat.icon_name if cat else None,
            "parent_category_id": cat.parent_category_id if cat else None,
            "tipo": (cat.tipo if cat else None) or "despesa",
        })
    return rows


def load_month_rows(user_ids: list[int], y: int, m: int) -> list[dict]:
    start, end = month_bounds(y, m)
    return load_transaction_rows(user_ids, start, end)


def load_categories_by_id() -> dict[int, Category]:
    return {c.id: c for c in Category.query.all()}


# ---------------------------------------------------------------------------
# Resumo mensal
# ---------------------------------------------------------------------------

def is_income(row: dict) -> bool:
    return row.get("tipo") == "receita"


def build_monthly_summary(rows: list[dict], renda_base_amount=None) -> dict:
    """Receitas, gastos e saldo do mês. Sem receitas lançadas, usa a renda base."""
    total_income = sum(r["amount"] for r in rows if is_income(r))
    total_spent = sum(r["amount"] for r in rows if not is_income(r))
    renda_base = to_float(renda_base_amount) if renda_base_amount is not None else None

    if total_income == 0 and renda_base:
        total_income = renda_base

    return {
        "total_income": round(total_income, 2),
        "total_spent": round(total_spent, 2),
        "balance": round(total_income - total_spent, 2),
        "renda_base_amount": renda_base,
    }


def merge_monthly_summaries(summaries: list[dict]) -> dict:
    merged = {"total_income": 0.0, "total_spent": 0.0, "balance": 0.0, "renda_base_amount": 0.0}
    for s in summaries:
        for key in merged:
            merged[key] += to_float(s.get(key))
    return {k: round(v, 2) for k, v in merged.items()}


def empty_summary() -> dict:
    return {"total_income": 0.0, "total_spent": 0.0, "balance": 0.0, "renda_base_amount": 0.0}


def monthly_user_summary(user: User, y: int, m: int) -> dict:
    rows = load_month_rows([user.id], y, m)
    if not rows and not user.renda_base_amount:
        return empty_summary()
    return build_monthly_summary(rows, user.renda_base_amount)


def refresh_monthly_summaries(y: int | None = None, m: int | None = None) -> int:
    """Atualiza (upsert) a tabela monthly_summaries de todos os usuários no mês."""
    if y is None or m is None:
        today = datetime.utcnow().date()
        y, m = today.year, today.month
    month_start = date(y, m, 1)

    count = 0
    for user in User.query.all():
        summary = build_monthly_summary(load_month_rows([user.id], y, m), user.renda_base_amount)
        row = db.session.get(MonthlySummary, (user.id, month_start))
        if row is None:
            row = MonthlySummary(user_id=user.id, month=month_start)
            db.session.add(row)
        row.total_income = summary["total_income"]
        row.total_spent = summary["total_spent"]
        row.balance = summary["balance"]
        row.renda_base_amount = user.renda_base_amount
        count += 1

    db.session.commit()
    logger.info("monthly_summaries atualizados: %s usuários em %04d-%02d", count, y, m)
    return count


# ---------------------------------------------------------------------------
# Gastos por categoria
# ---------------------------------------------------------------------------

def build_category_spending(rows: list[dict]) -> list[dict]:
    """total, contagem, média, mínimo e máximo por categoria (apenas despesas)."""
    groups: dict = {}
    for r in rows:
        if is_income(r):
            continue
        key = r["category_id"]
        g = groups.get(key)
        if g is None:
            g = groups[key] = {
                "category_id": key,
                "category_name": r["category_name"] or "Sem categoria",
                "icon_name": r["icon_name"],
                "parent_category_id": r["parent_category_id"],
                "total_spent": 0.0,
                "transaction_count": 0,
                "min_spent": r["amount"],
                "max_spent": r["amount"],
            }
        g["total_spent"] += r["amount"]
        g["transaction_count"] += 1
        g["min_spent"] = min(g["min_spent"], r["amount"])
        g["max_spent"] = max(g["max_spent"], r["amount"])

    return _finish_category_groups(groups.values())


def merge_category_spending(per_member: list[list[dict]]) -> list[dict]:
    """Junta os gastos por categoria de vários membros da família."""
    groups: dict = {}
    for items in per_member:
        for item in items:
            key = item["category_id"]
            g = groups.get(key)
            if g is None:
                groups[key] = dict(item)
                continue
            g["total_spent"] += item["total_spent"]
            g["transaction_count"] += item["transaction_count"]
            g["min_spent"] = min(g["min_spent"], item["min_spent"])
            g["max_spent"] = max(g["max_spent"], item["max_spent"])

    return _finish_category_groups(groups.values())


def _finish_category_groups(groups) -> list[dict]:
    result = []
    for g in groups:
        count = g["transaction_count"]
        g = dict(g)
        g["total_spent"] = round(g["total_spent"], 2)
        g["avg_spent"] = round(g["total_spent"] / count, 2) if count else 0.0
        result.append(g)
    result.sort(key=lambda x: (-x["total_spent"], x["category_name"] or ""))
    return result


def with_percentages(items: list[dict]) -> list[dict]:
    total = sum(i["total_spent"] for i in items)
    out = []
    for i in items:
        pct = (i["total_spent"] / total * 100) if total else 0.0
        out.append({**i, "percentage": round(pct, 2)})
    return out


def _root_category_id(category_id, categories: dict) -> int | None:
    seen = set()
    current = categories.get(category_id)
    while current is not None and current.parent_category_id and current.id not in seen:
        seen.add(current.id)
        parent = categories.get(current.parent_category_id)
        if parent is None:
            break
        current = parent
    return current.id if current is not None else category_id


def rollup_to_parent(items: list[dict], categories: dict) -> list[dict]:
    """Soma os gastos das subcategorias na categoria raiz."""
    groups: dict = {}
    for item in items:
        root_id = _root_category_id(item["category_id"], categories)
        root = categories.get(root_id)
        g = groups.get(root_id)
        if g is None:
            g = groups[root_id] = {
                "category_id": root_id,
                "category_name": root.name if root else item["category_name"],
                "icon_name": root.icon_name if root else item["icon_name"],
                "parent_category_id": None,
                "total_spent": 0.0,
                "transaction_count": 0,
                "min_spent": item["min_spent"],
                "max_spent": item["max_spent"],
                "subcategories": [],
            }
        g["total_spent"] += item["total_spent"]
        g["transaction_count"] += item["transaction_count"]
        g["min_spent"] = min(g["min_spent"], item["min_spent"])
        g["max_spent"] = max(g["max_spent"], item["max_spent"])
        if item["category_id"] != root_id:
            g["subcategories"].append({
                "category_id": item["category_id"],
                "category_name": item["category_name"],
                "total_spent": item["total_spent"],
            })

    return _finish_category_groups(groups.values())


def build_monthly_trends(rows: list[dict], months: list[tuple[int, int]]) -> list[dict]:
    """Série mês a mês com total gasto e quebra por categoria."""
    by_month = defaultdict(list)
    for r in rows:
        d = r["transaction_date"]
        by_month[(d.year, d.month)].append(r)

    series = []
    for y, m in months:
        month_rows = by_month.get((y, m), [])
        categories = build_category_spending(month_rows)
        total = round(sum(c["total_spent"] for c in categories), 2)
        series.append({
            "month": f"{y:04d}-{m:02d}",
            "total_spent": total,
            "transaction_count": sum(c["transaction_count"] for c in categories),
            "categories": categories,
        })
    return series


def last_n_months(y: int, m: int, n: int) -> list[tuple[int, int]]:
    """Os N meses terminando em (y, m), do mais antigo para o mais recente."""
    return [shift_month(y, m, -i) for i in range(n - 1, -1, -1)]


# ---------------------------------------------------------------------------
# Orçamentos
# ---------------------------------------------------------------------------

def budget_status(usage_percentage: float) -> str:
    if usage_percentage >= OVER_BUDGET_THRESHOLD:
        return "over_budget"
    if usage_percentage >= WARNING_THRESHOLD:
        return "warning"
    return "healthy"


def spent_by_category(rows: list[dict]) -> dict:
    spent = defaultdict(float)
    for r in rows:
        if not is_income(r):
            spent[r["category_id"]] += r["amount"]
    return spent


def build_budget_performance(budgets: list[Orcamento], spent_map: dict) -> dict:
    items = []
    for b in budgets:
        budgeted = to_float(b.valor_orcado)
        actual = round(spent_map.get(b.category_id, 0.0), 2)
        usage = (actual / budgeted * 100) if budgeted > 0 else 0.0
        items.append({
            "budget_id": b.id,
            "category_id": b.category_id,
            "category_name": b.category.name if b.category else None,
            "icon_name": b.category.icon_name if b.category else None,
            "month": iso(b.mes_ano),
            "familia_id": b.familia_id,
            "budgeted": budgeted,
            "actual_spent": actual,
            "remaining": round(budgeted - actual, 2),
            "usage_percentage": round(usage, 2),
            "status": budget_status(usage) if budgeted > 0 else "healthy",
        })

    total_budgeted = round(sum(i["budgeted"] for i in items), 2)
    total_spent = round(sum(i["actual_spent"] for i in items), 2)
    overall = (total_spent / total_budgeted * 100) if total_budgeted > 0 else 0.0

    return {
        "items": items,
        "totals": {
            "budgeted": total_budgeted,
            "spent": total_spent,
            "remaining": round(total_budgeted - total_spent, 2),
            "usage_percentage": round(overall, 2),
            "status": budget_status(overall) if total_budgeted > 0 else "healthy",
        },
    }


# ---------------------------------------------------------------------------
# Insights de despesas
# ---------------------------------------------------------------------------

def build_expense_insights(rows: list[dict], prev_month_spent: float) -> dict:
    expenses = [r for r in rows if not is_income(r)]
    total_spent = round(sum(r["amount"] for r in expenses), 2)
    count = len(expenses)

    if prev_month_spent:
        change = (total_spent - prev_month_spent) / prev_month_spent * 100
    else:
        change = None

    top = sorted(expenses, key=lambda r: r["amount"], reverse=True)[:5]

    return {
        "total_spent": total_spent,
        "total_transactions": count,
        "avg_spent": round(total_spent / count, 2) if count else 0.0,
        "categories_used": len({r["category_id"] for r in expenses if r["category_id"]}),
        "accounts_used": len({r["conta_pagadora_id"] for r in expenses if r["conta_pagadora_id"]}),
        "prev_month_spent": round(prev_month_spent or 0.0, 2),
        "month_over_month_change": round(change, 2) if change is not None else None,
        "top_transactions": [
            {
                "id": r["id"],
                "description": r["description"],
                "amount": r["amount"],
                "transaction_date": iso(r["transaction_date"]),
                "category_name": r["category_name"],
            }
            for r in top
        ],
    }


def insight_messages(insights: dict) -> list[dict]:
    messages = []
    change = insights.get("month_over_month_change")
    if change is not None and change > INSIGHT_CHANGE_THRESHOLD:
        messages.append({
            "type": "warning",
            "message": f"Você gastou {change:.1f}% a mais que no mês passado.",
        })
    elif change is not None and change < -INSIGHT_CHANGE_THRESHOLD:
        messages.append({
            "type": "success",
            "message": f"Parabéns! Você gastou {abs(change):.1f}% a menos que no mês passado.",
        })

    if insights.get("categories_used"):
        messages.append({
            "type": "info",
            "message": f"Seus gastos estão distribuídos em {insights['categories_used']} categorias diferentes.",
        })
    if insights.get("accounts_used"):
        messages.append({
            "type": "info",
            "message": f"Você utilizou {insights['accounts_used']} contas diferentes este mês.",
        })
    return messages


# ---------------------------------------------------------------------------
# Saldos das contas
# ---------------------------------------------------------------------------

def signed_amount(row: dict) -> float:
    return row["amount"] if is_income(row) else -row["amount"]


def account_balance(conta: ContaPagadora) -> float:
    """saldo_inicial + receitas - despesas lançadas na conta."""
    rows = (
        db.session.query(Category.tipo, func.coalesce(func.sum(Transaction.amount), 0))
        .select_from(Transaction)
        .outerjoin(Category, Transaction.category_id == Category.id)
        .filter(Transaction.conta_pagadora_id == conta.id)
        .group_by(Category.tipo)
        .all()
    )
    balance = to_float(conta.saldo_inicial)
    for tipo, total in rows:
        balance += to_float(total) if tipo == "receita" else -to_float(total)
    return round(balance, 2)


def build_account_timeline(
    contas: list[ContaPagadora],
    rows_before: list[dict],
    rows: list[dict],
    months: list[tuple[int, int]],
) -> list[dict]:
    """Saldo acumulado de cada conta ao fim de cada mês e a variação do mês."""
    opening = {c.id: to_float(c.saldo_inicial) for c in contas}
    for r in rows_before:
        if r["conta_pagadora_id"] in opening:
            opening[r["conta_pagadora_id"]] += signed_amount(r)

    changes = defaultdict(float)
    for r in rows:
        cid = r["conta_pagadora_id"]
        if cid in opening:
            d = r["transaction_date"]
            changes[(cid, d.year, d.month)] += signed_amount(r)

    timeline = []
    for c in contas:
        running = opening[c.id]
        for y, m in months:
            change = changes.get((c.id, y, m), 0.0)
            running += change
            timeline.append({
                "conta_pagadora_id": c.id,
                "nome": c.nome,
                "tipo": c.tipo,
                "cor": c.cor,
                "month": f"{y:04d}-{m:02d}",
                "month_change": round(change, 2),
                "balance": round(running, 2),
            })
    return timeline


# ---------------------------------------------------------------------------
# Metas da família
# ---------------------------------------------------------------------------

def build_family_goals(goals) -> list[dict]:
    """Agrupa metas ativas dos membros por modelo (ou nome personalizado)."""
    groups: dict = {}
    for g in goals:
        key = ("template", g.goal_template_id) if g.goal_template_id else ("custom", (g.custom_name or "").strip().lower())
        name = g.custom_name or (g.template.name if g.template else None)
        entry = groups.get(key)
        if entry is None:
            entry = groups[key] = {
                "goal_template_id": g.goal_template_id,
                "goal_name": g.template.name if g.template else name,
                "members": set(),
                "total_current": 0.0,
                "total_target": 0.0,
                "progress": [],
                "target_dates": [],
            }
        current = to_float(g.current_amount)
        target = to_float(g.target_amount)
        entry["members"].add(g.user_id)
        entry["total_current"] += current
        entry["total_target"] += target
        if target > 0:
            entry["progress"].append(min(current / target * 100, 100.0))
        if g.target_date:
            entry["target_dates"].append(g.target_date)

    result = []
    for entry in groups.values():
        progress = entry["progress"]
        dates = entry["target_dates"]
        result.append({
            "goal_template_id": entry["goal_template_id"],
            "goal_name": entry["goal_name"],
            "members_with_goal": len(entry["members"]),
            "total_current": round(entry["total_current"], 2),
            "total_target": round(entry["total_target"], 2),
            "avg_progress_percentage": round(sum(progress) / len(progress), 2) if progress else 0.0,
            "earliest_target_date": iso(min(dates)) if dates else None,
            "latest_target_date": iso(max(dates)) if dates else None,
        })
    result.sort(key=lambda x: (-x["members_with_goal"], x["goal_name"] or ""))
    return result
