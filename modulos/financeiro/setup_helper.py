"""
Helper functions do onboarding: diagnóstico financeiro, arquétipo e
validação das etapas de configuração inicial.
"""
import math
from decimal import Decimal

from extensions import db
from models import User, ContaPagadora, Orcamento, MembroFamilia

DIAGNOSTIC_FIELDS = (
    "income_input_typical",
    "income_input_best",
    "income_input_worst",
    "cost_of_living_reported",
)

ARCHETYPES = {
    "investor": {
        "name": "Investidor",
        "description": "Você tem uma visão de longo prazo e um superávit para alocar em seus investimentos.",
        "icon": "🚀",
    },
    "equilibrist": {
        "name": "Equilibrista",
        "description": "Você balanceia bem entre economia e gastos, adaptando-se às situações.",
        "icon": "⚖️",
    },
    "rescuer": {
        "name": "Piloto de Resgate",
        "description": "Sua missão é reverter o déficit e reestruturar suas finanças para retomar o controle.",
        "icon": "🛡️",
    },
}


def compute_financial_profile(typical: float, best: float, worst: float, cost: float) -> dict:
    """Renda base ponderada, variabilidade, taxa de poupança e arquétipo."""
    base_income = typical * 0.6 + best * 0.2 + worst * 0.2
    variability = (best - worst) / typical if typical else 0.0
    savings_rate = (base_income - cost) / base_income if base_income else 0.0

    if savings_rate > 0.3 and variability < 0.3:
        archetype = "Planejadora Estratégica"
    elif savings_rate > 0.2:
        archetype = "Investidora Cautelosa"
    elif variability > 0.5:
        archetype = "Empreendedora Dinâmica"
    else:
        archetype = "Organizadora Prática"

    return {
        "base_income": round(base_income, 2),
        "variability": round(variability, 4),
        "savings_rate": round(savings_rate, 4),
        "archetype": archetype,
    }


def normalize_archetype(archetype: str | None) -> str:
    if not archetype:
        return "equilibrist"
    normalized = archetype.lower()
    if "invest" in normalized:
        return "investor"
    if "equilib" in normalized:
        return "equilibrist"
    if "piloto" in normalized or "rescue" in normalized or "resgate" in normalized:
        return "rescuer"
    return "equilibrist"


def archetype_info(archetype: str | None) -> dict:
    key = normalize_archetype(archetype)
    return {"key": key, **ARCHETYPES[key]}


def is_diagnostic_complete(user: User) -> bool:
    return all(bool(getattr(user, field)) for field in DIAGNOSTIC_FIELDS) and bool(user.financial_archetype)


def validate_diagnostic(data: dict) -> tuple[bool, str, dict]:
    """Valida as quatro respostas numéricas do diagnóstico."""
    values = {}
    for field in DIAGNOSTIC_FIELDS:
        raw = data.get(field)
        if raw is None or str(raw).strip() == "":
            return False, "Responda todas as perguntas do diagnóstico", {}
        try:
            value = float(str(raw).replace(",", "."))
        except ValueError:
            return False, f"Valor inválido em {field}", {}
        if not math.isfinite(value):
            return False, f"Valor inválido em {field}", {}
        if value < 0:
            return False, "Os valores não podem ser negativos", {}
        values[field] = value

    if values["income_input_typical"] <= 0:
        return False, "Informe sua renda em um mês típico", {}

    if values["income_input_worst"] > values["income_input_best"]:
        return False, "O mês ruim não pode ser maior que o mês bom", {}

    return True, "", values


def apply_diagnostic(user: User, values: dict) -> dict:
    """Grava respostas, arquétipo e renda base no usuário (sem commit)."""
    profile = compute_financial_profile(
        values["income_input_typical"],
        values["income_input_best"],
        values["income_input_worst"],
        values["cost_of_living_reported"],
    )
    for field in DIAGNOSTIC_FIELDS:
        setattr(user, field, Decimal(str(values[field])))
    user.financial_archetype = profile["archetype"]
    user.renda_base_amount = Decimal(str(profile["base_income"]))
    return profile


def get_onboarding_status(user: User) -> dict:
    """Progresso das etapas: família (opcional), contas, orçamentos, confirmação."""
    has_family = db.session.query(MembroFamilia.id).filter_by(user_id=user.id).first() is not None
    accounts = ContaPagadora.query.filter_by(user_id=user.id, is_active=True).count()
    budgets = Orcamento.query.filter_by(user_id=user.id).count()

    steps = [
        {"key": "diagnostic", "done": is_diagnostic_complete(user), "required": True},
        {"key": "family", "done": has_family, "required": False},
        {"key": "accounts", "done": accounts > 0, "required": True, "count": accounts},
        {"key": "budgets", "done": budgets > 0, "required": True, "count": budgets},
        {"key": "confirmation", "done": bool(user.onboarding_completed), "required": True},
    ]
    required = [s for s in steps if s["required"]]
    done = sum(1 for s in required if s["done"])

    return {
        "steps": steps,
        "completed": bool(user.onboarding_completed),
        "percentage": round(done / len(required) * 100),
    }


def validate_completion(user: User) -> tuple[bool, str]:
    """Para concluir é preciso ao menos uma conta e um orçamento."""
    if ContaPagadora.query.filter_by(user_id=user.id, is_active=True).count() == 0:
        return False, "Cadastre pelo menos uma conta pagadora"
    if Orcamento.query.filter_by(user_id=user.id).count() == 0:
        return False, "Defina pelo menos um orçamento"
    return True, ""
