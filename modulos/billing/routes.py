import logging

from flask import Blueprint, current_app, jsonify, request

from extensions import db
from modulos.billing.plans import (
    effective_plan,
    features_as_json,
    get_subscription,
    subscription_flags,
)
from modulos.billing.stripe_service import (
    BillingError,
    construct_event,
    create_checkout_session,
    create_portal_session,
    handle_event,
    list_invoices,
)
from modulos.financeiro.common import iso, json_body, require_user

logger = logging.getLogger(__name__)

billing_bp = Blueprint("billing", __name__)


def _origin() -> str:
    return request.headers.get("Origin") or current_app.config.get("APP_BASE_URL", "")


def _billing_error(e: BillingError):
    return jsonify({"success": False, "error": e.message}), e.status_code


@billing_bp.route("/api/billing/checkout-session", methods=["POST"])
def api_checkout_session():
    user, err = require_user()
    if err:
        return err

    data = json_body()
    try:
        url = create_checkout_session(user, data.get("priceId"), data.get("planType"), _origin())
    except BillingError as e:
        return _billing_error(e)
    return jsonify({"success": True, "url": url}), 200


@billing_bp.route("/api/billing/portal-session", methods=["POST"])
def api_portal_session():
    user, err = require_user()
    if err:
        return err

    try:
        url = create_portal_session(user, _origin())
    except BillingError as e:
        return _billing_error(e)
    return jsonify({"success": True, "url": url}), 200


@billing_bp.route("/api/billing/invoices", methods=["GET"])
def api_invoices():
    user, err = require_user()
    if err:
        return err

    try:
        invoices = list_invoices(user)
    except BillingError as e:
        return _billing_error(e)
    return jsonify({"success": True, "invoices": invoices}), 200


@billing_bp.route("/api/billing/subscription", methods=["GET"])
def api_subscription():
    user, err = require_user()
    if err:
        return err

    sub = get_subscription(user.id)
    plan = effective_plan(sub)
    return jsonify({
        "success": True,
        "subscription": {
            "plan_type": sub.plan_type if sub else "free",
            "status": sub.status if sub else "active",
            "current_period_start": iso(sub.current_period_start) if sub else None,
            "current_period_end": iso(sub.current_period_end) if sub else None,
            "cancel_at_period_end": bool(sub.cancel_at_period_end) if sub else False,
        },
        "effective_plan": plan,
        **subscription_flags(sub),
        "features": features_as_json(plan),
    }), 200


@billing_bp.route("/api/billing/webhook", methods=["POST"])
def api_stripe_webhook():
    try:
        event = construct_event(request.get_data(), request.headers.get("Stripe-Signature"))
    except BillingError as e:
        logger.warning("[Webhook] assinatura rejeitada: %s", e.message)
        return _billing_error(e)

    try:
        outcome = handle_event(event)
    except BillingError as e:
        return _billing_error(e)
    except Exception as e:
        db.session.rollback()
        logger.exception("[Webhook Error] %s", e)
        return jsonify({"success": False, "error": str(e)}), 400

    return jsonify({"received": True, "outcome": outcome}), 200
