"""Planos de assinatura e limites de uso por plano."""

import math

from extensions import db
from models import Subscription

PLAN_TYPES = ("free", "plus", "premium")
ACTIVE_STATUSES = ("active", "trialing")
INFINITY = math.inf

PLAN_FEATURES = {
    "free": {
        "maxAccounts": 2,
        "maxTransactionsPerMonth": 100,
        "aiCategorizationLimit": 10,
        "familyMembers": 0,
        "advancedAnalytics": False,
        "prioritySupport": False,
        "customCategories": False,
        "exportData": False,
        "budgetAlerts": False,
    },
    "plus": {
        "maxAccounts": 5,
        "maxTransactionsPerMonth": INFINITY,
        "aiCategorizationLimit": INFINITY,
        "familyMembers": 0,
        "advancedAnalytics": True,
        "prioritySupport": False,
        "customCategories": True,
        "exportData": True,
        "budgetAlerts": True,
    },
    "premium": {
        "maxAccounts": INFINITY,
        "maxTransactionsPerMonth": INFINITY,
        "aiCategorizationLimit": INFINITY,
        "familyMembers": 6,
        "advancedAnalytics": True,
        "prioritySupport": True,
        "customCategories": True,
        "exportData": True,
        "budgetAlerts": True,
    },
}


def get_subscription(user_id: int) -> Subscription | None:
    return Subscription.query.filter_by(user_id=user_id).first()


def ensure_subscription(user_id: int) -> Subscription:
    """Cria a linha 'free' do usuário caso ainda não exista (não faz commit)."""
    sub = get_subscription(user_id)
    if sub is None:
        sub = Subscription(user_id=user_id, plan_type="free", status="active")
        db.session.add(sub)
    return sub


def effective_plan(subscription: Subscription | None) -> str:
    if subscription is None:
        return "free"
    if subscription.plan_type not in PLAN_TYPES:
        return "free"
    if subscription.status not in ACTIVE_STATUSES:
        return "free"
    return subscription.plan_type


def plan_for_user(user_id: int) -> str:
    return effective_plan(get_subscription(user_id))


def can_use_feature(plan_type: str | None, feature: str) -> bool:
    features = PLAN_FEATURES.get(plan_type or "free", PLAN_FEATURES["free"])
    value = features.get(feature)
    if isinstance(value, bool):
        return value
    return bool(value)


def get_feature_limit(plan_type: str | None, feature: str) -> float:
    features = PLAN_FEATURES.get(plan_type or "free", PLAN_FEATURES["free"])
    value = features.get(feature, 0)
    if isinstance(value, bool):
        return 1 if value else 0
    return value


def subscription_flags(subscription: Subscription | None) -> dict:
    plan = subscription.plan_type if subscription else "free"
    active = bool(subscription) and subscription.status == "active"
    return {
        "isPremium": active and plan == "premium",
        "isPlus": active and plan == "plus",
        "isFree": subscription is None or plan == "free",
    }


def features_as_json(plan_type: str) -> dict:
    """JSON não representa infinito: limites ilimitados viram None."""
    out = {}
    for key, value in PLAN_FEATURES.get(plan_type, PLAN_FEATURES["free"]).items():
        out[key] = None if value == INFINITY else value
    return out
