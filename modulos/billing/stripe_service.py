"""
Integração com o Stripe
=======================

Checkout de assinatura, portal de cobrança, faturas e o tratamento dos
eventos do webhook, que sincronizam a tabela ``subscriptions``.
"""

import logging
from datetime import datetime

import stripe
from flask import current_app

from extensions import db
from models import Subscription, User
from modulos.billing.plans import ensure_subscription

logger = logging.getLogger(__name__)

PAID_PLANS = ("plus", "premium")


class BillingError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _configure():
    api_key = current_app.config.get("STRIPE_SECRET_KEY")
    if not api_key:
        raise BillingError("Stripe não configurado. Defina STRIPE_SECRET_KEY.", 503)
    stripe.api_key = api_key


def _field(obj, name: str, default=None):
    """Lê um campo de StripeObject ou dict."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    try:
        return obj[name]
    except (KeyError, TypeError):
        return getattr(obj, name, default)


def _from_epoch(value) -> datetime | None:
    if value in (None, ""):
        return None
    return datetime.utcfromtimestamp(int(value))


def resolve_plan_type(metadata_plan: str | None, price_id: str | None) -> str:
    """Plano pelo metadata da assinatura; sem ele, pelo price_id."""
    plan = (metadata_plan or "").strip().lower()
    if plan in PAID_PLANS:
        return plan
    if price_id and "premium" in price_id.lower():
        return "premium"
    return "plus"


def get_or_create_customer(user: User) -> str:
    _configure()
    sub = ensure_subscription(user.id)
    if sub.stripe_customer_id:
        return sub.stripe_customer_id

    try:
        customer = stripe.Customer.create(
            email=user.email,
            name=user.full_name or None,
            metadata={"user_id": str(user.id)},
        )
    except stripe.StripeError as e:
        logger.error("[Stripe] erro ao criar customer para user_id=%s: %s", user.id, e)
        raise BillingError(getattr(e, "user_message", None) or str(e))

    sub.stripe_customer_id = _field(customer, "id")
    db.session.commit()
    logger.info("[Customer Created] %s", sub.stripe_customer_id)
    return sub.stripe_customer_id


def create_checkout_session(user: User, price_id: str, plan_type: str, origin: str) -> str:
    if not price_id or not plan_type:
        raise BillingError("Missing priceId or planType")

    customer_id = get_or_create_customer(user)
    logger.info("[Checkout] Creating session for user %s, plan: %s", user.id, plan_type)

    try:
        session = stripe.checkout.Session.create(
            customer=customer_id,
            mode="subscription",
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=f"{origin}/pricing?success=true",
            cancel_url=f"{origin}/pricing?canceled=true",
            client_reference_id=str(user.id),
            subscription_data={
                "metadata": {"user_id": str(user.id), "plan_type": plan_type},
            },
        )
    except stripe.StripeError as e:
        logger.error("[Checkout Error] %s", e)
        raise BillingError(getattr(e, "user_message", None) or str(e))

    return _field(session, "url")


def create_portal_session(user: User, origin: str) -> str:
    _configure()
    sub = Subscription.query.filter_by(user_id=user.id).first()
    if not sub or not sub.stripe_customer_id:
        raise BillingError("No Stripe customer found")

    try:
        session = stripe.billing_portal.Session.create(
            customer=sub.stripe_customer_id,
            return_url=f"{origin}/profile",
        )
    except stripe.StripeError as e:
        logger.error("[Portal Error] %s", e)
        raise BillingError(getattr(e, "user_message", None) or str(e))

    return _field(session, "url")


def list_invoices(user: User, limit: int = 12) -> list[dict]:
    sub = Subscription.query.filter_by(user_id=user.id).first()
    if not sub or not sub.stripe_customer_id:
        return []

    _configure()
    try:
        invoices = stripe.Invoice.list(customer=sub.stripe_customer_id, limit=limit)
    except stripe.StripeError as e:
        logger.error("[Invoices Error] %s", e)
        raise BillingError(getattr(e, "user_message", None) or str(e))

    result = []
    for inv in _field(invoices, "data", []) or []:
        lines = _field(_field(inv, "lines"), "data", []) or []
        description = _field(lines[0], "description") if lines else None
        result.append({
            "id": _field(inv, "id"),
            "date": _field(inv, "created"),
            "amount": _field(inv, "amount_paid"),
            "currency": _field(inv, "currency"),
            "status": _field(inv, "status"),
            "pdfUrl": _field(inv, "hosted_invoice_url"),
            "description": description or "Subscription",
        })
    return result


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------

def construct_event(payload: bytes, signature: str | None):
    secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not signature or not secret:
        raise BillingError("Missing stripe signature or webhook secret")
    try:
        return stripe.Webhook.construct_event(payload, signature, secret)
    except ValueError as e:
        raise BillingError(f"Invalid payload: {e}")
    except stripe.SignatureVerificationError as e:
        raise BillingError(f"Invalid signature: {e}")


def _subscription_periods(subscription) -> tuple:
    start = _field(subscription, "current_period_start")
    end = _field(subscription, "current_period_end")
    if start is None or end is None:
        # API recentes guardam o período no item da assinatura
        items = _field(_field(subscription, "items"), "data", []) or []
        if items:
            start = start if start is not None else _field(items[0], "current_period_start")
            end = end if end is not None else _field(items[0], "current_period_end")
    return _from_epoch(start), _from_epoch(end)


def _price_id(subscription) -> str | None:
    items = _field(_field(subscription, "items"), "data", []) or []
    if not items:
        return None
    return _field(_field(items[0], "price"), "id")


def _handle_checkout_completed(session) -> str:
    if _field(session, "mode") != "subscription":
        return "ignored"

    subscription_id = _field(session, "subscription")
    customer_id = _field(session, "customer")
    user_id = _field(session, "client_reference_id")
    if not subscription_id or not user_id:
        logger.warning("[Checkout Complete] sessão sem subscription/client_reference_id")
        return "ignored"

    user = db.session.get(User, int(user_id))
    if not user:
        logger.warning("[Checkout Complete] usuário %s não encontrado", user_id)
        return "ignored"

    _configure()
    subscription = stripe.Subscription.retrieve(subscription_id)
    price_id = _price_id(subscription)
    plan_type = resolve_plan_type(_field(_field(subscription, "metadata"), "plan_type"), price_id)
    period_start, period_end = _subscription_periods(subscription)

    sub = ensure_subscription(user.id)
    sub.stripe_customer_id = customer_id
    sub.stripe_subscription_id = subscription_id
    sub.stripe_price_id = price_id
    sub.plan_type = plan_type
    sub.status = _field(subscription, "status") or "active"
    sub.current_period_start = period_start
    sub.current_period_end = period_end
    sub.cancel_at_period_end = bool(_field(subscription, "cancel_at_period_end", False))
    db.session.commit()

    logger.info("[Checkout Complete] User %s subscribed to %s", user.id, plan_type)
    return "subscribed"


def _handle_subscription_updated(subscription) -> str:
    sub = Subscription.query.filter_by(stripe_subscription_id=_field(subscription, "id")).first()
    if not sub:
        logger.warning("[Subscription Updated] %s sem linha local", _field(subscription, "id"))
        return "ignored"

    period_start, period_end = _subscription_periods(subscription)
    sub.status = _field(subscription, "status") or sub.status
    sub.current_period_start = period_start or sub.current_period_start
    sub.current_period_end = period_end or sub.current_period_end
    sub.cancel_at_period_end = bool(_field(subscription, "cancel_at_period_end", False))
    db.session.commit()

    logger.info("[Subscription Updated] %s status: %s", sub.stripe_subscription_id, sub.status)
    return "updated"


def _handle_subscription_deleted(subscription) -> str:
    sub = Subscription.query.filter_by(stripe_subscription_id=_field(subscription, "id")).first()
    if not sub:
        return "ignored"

    sub.status = "canceled"
    sub.plan_type = "free"
    db.session.commit()

    logger.info("[Subscription Deleted] %s reverted to free", sub.stripe_subscription_id)
    return "canceled"


def _handle_payment_failed(invoice) -> str:
    subscription_id = _field(invoice, "subscription")
    if not subscription_id:
        return "ignored"

    sub = Subscription.query.filter_by(stripe_subscription_id=subscription_id).first()
    if not sub:
        return "ignored"

    sub.status = "past_due"
    db.session.commit()

    logger.info("[Payment Failed] Subscription %s marked past_due", subscription_id)
    return "past_due"


EVENT_HANDLERS = {
    "checkout.session.completed": _handle_checkout_completed,
    "customer.subscription.updated": _handle_subscription_updated,
    "customer.subscription.deleted": _handle_subscription_deleted,
    "invoice.payment_failed": _handle_payment_failed,
}


def handle_event(event) -> str:
    event_type = _field(event, "type")
    logger.info("[Stripe Webhook] Received event: %s", event_type)

    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.info("[Unhandled Event] %s", event_type)
        return "unhandled"

    data_object = _field(_field(event, "data"), "object")
    return handler(data_object)
