"""Módulo financeiro: contas, categorias, transações, orçamentos, metas, família e análises."""

from .accounts_api import accounts_api_bp
from .analytics_api import analytics_api_bp
from .auth_api import auth_api_bp
from .budgets_api import budgets_api_bp
from .categories_api import categories_api_bp
from .family_api import family_api_bp
from .goals_api import goals_api_bp
from .onboarding_api import onboarding_api_bp
from .transactions_api import transactions_api_bp

FINANCEIRO_BLUEPRINTS = (
    auth_api_bp,
    accounts_api_bp,
    categories_api_bp,
    transactions_api_bp,
    budgets_api_bp,
    goals_api_bp,
    family_api_bp,
    analytics_api_bp,
    onboarding_api_bp,
)

__all__ = ["FINANCEIRO_BLUEPRINTS"]
