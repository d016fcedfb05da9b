# -*- coding: utf-8 -*-
"""
Purchase routes: catalog, checkout, and the Stripe fulfillment webhook.
"""
from flask import Blueprint, current_app, jsonify, request
import stripe

from src.infra.auth import ROLE_ADMIN, ROLE_EMPLOYER, current_user_id, require_role
from src.infra.log import get_logger
from src.schemas.ledger import CheckoutSchema
from src.services.catalog import list_catalog
from src.services.checkout_service import PURCHASE_TYPE, CheckoutService
from src.services.fulfillment_service import FulfillmentOutcome, FulfillmentService
from src.services.payment_provider import StripeCheckoutProvider

purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/v1/purchases")

logger = get_logger('jobcredits.fulfillment')

# checkout.session.completed is handled separately: it only means "paid" when
# payment_status says so (delayed payment methods report later)
SESSION_EVENT_OUTCOMES = {
    'checkout.session.async_payment_succeeded': FulfillmentOutcome.SUCCESS,
    'checkout.session.async_payment_failed': FulfillmentOutcome.FAILURE,
    'checkout.session.expired': FulfillmentOutcome.FAILURE,
}
PAID_STATUSES = ('paid', 'no_payment_required')


def _json():
    """Safely parse JSON body or return empty dict."""
    return (request.get_json(silent=True) or {}) if request.data else {}


@purchases_bp.route("/catalog", methods=["GET"])
def get_catalog_route():
    """Tiers, add-ons and credit packs with their prices and grants."""
    return jsonify(list_catalog()), 200


@purchases_bp.route("", methods=["POST"])
@require_role(ROLE_EMPLOYER, ROLE_ADMIN)
def create_purchase():
    """
    Start a checkout for a tier (or credit pack) plus add-ons.

    Request body:
    {
        "tier": "standard",
        "addons": ["social_graphic"],
        "success_url": "https://...",
        "cancel_url": "https://..."
    }
    """
    data = CheckoutSchema().load(_json())

    result = CheckoutService().start_checkout(
        user_id=current_user_id(),
        tier=data['tier'],
        addons=data['addons'],
        credit_pack=data['credit_pack'],
        success_url=data['success_url'],
        cancel_url=data['cancel_url'],
        customer_email=data['customer_email'],
        meta={
            'user_agent': request.headers.get('User-Agent'),
            'ip': request.headers.get('X-Forwarded-For') or request.remote_addr,
        },
    )
    return jsonify(result.to_dict()), 201


def _outcome_for(event_type: str, session: dict):
    if event_type == 'checkout.session.completed':
        if session.get('payment_status') in PAID_STATUSES:
            return FulfillmentOutcome.SUCCESS
        return None
    return SESSION_EVENT_OUTCOMES.get(event_type)


@purchases_bp.route("/fulfillment", methods=["POST"])
def stripe_fulfillment_webhook():
    """
    Handle Stripe Checkout webhook events.

    Events handled:
    - checkout.session.completed (paid): complete purchase, issue credits
    - checkout.session.async_payment_succeeded: complete purchase, issue credits
    - checkout.session.async_payment_failed: fail purchase
    - checkout.session.expired: fail purchase

    Stripe delivers at least once; replays are answered 200 with
    ``already_processed: true``.
    """
    webhook_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET not configured")
        return jsonify({'error': 'Webhook not configured'}), 500

    try:
        event = StripeCheckoutProvider.construct_event(
            request.data, request.headers.get('Stripe-Signature'), webhook_secret)
    except ValueError:
        logger.error("Invalid webhook payload")
        return jsonify({'error': 'Invalid payload'}), 400
    except stripe.SignatureVerificationError:
        logger.error("Invalid webhook signature")
        return jsonify({'error': 'Invalid signature'}), 400

    event_type = event['type']
    session = event['data']['object']
    session_id = session.get('id')
    logger.info("Received Stripe webhook", event_type=event_type, session_id=session_id)

    metadata = session.get('metadata') or {}
    if metadata.get('type') not in (None, PURCHASE_TYPE):
        logger.info("Ignoring checkout session for another product",
                    session_id=session_id, purchase_type=metadata.get('type'))
        return jsonify({'status': 'ignored'}), 200

    outcome = _outcome_for(event_type, session)
    if outcome is None:
        logger.info("Unhandled or non-final event", event_type=event_type,
                    session_id=session_id)
        return jsonify({'status': 'ignored'}), 200

    result = FulfillmentService().fulfill(session_id, outcome.value)
    return jsonify({'status': 'success', 'fulfillment': result.to_dict()}), 200
