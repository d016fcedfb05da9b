# -*- coding: utf-8 -*-
"""
Credit routes: claim, bind, history and consolidation.

Request bodies are validated with marshmallow; ledger errors and schema
errors are turned into JSON responses by the app-level error handlers.
"""
from flask import Blueprint, jsonify, request

from src.infra.auth import (
    ROLE_ADMIN, ROLE_EMPLOYER, is_admin, require_role, resolve_subject_user,
)
from src.infra.log import get_logger
from src.schemas.ledger import BindSchema, ClaimSchema, HistoryQuerySchema, NormalizeSchema
from src.services.credit_history import CreditHistoryService
from src.services.credit_ledger import CreditLedger
from src.utils.clock import utcnow

credits_bp = Blueprint("credits", __name__, url_prefix="/api/v1/credits")

logger = get_logger('jobcredits.ledger')


def _json():
    return (request.get_json(silent=True) or {}) if request.data else {}


def _forbidden():
    return jsonify({
        'error': 'forbidden',
        'message': 'You may only access your own credits.'
    }), 403


@credits_bp.route("/claim", methods=["POST"])
@require_role(ROLE_EMPLOYER, ROLE_ADMIN)
def claim_credit():
    """
    Claim one credit of the requested type.

    Request body:
    {
        "type": "job_post",
        "job_id": "job_123"   # optional, binds in the same step
    }
    """
    data = ClaimSchema().load(_json())
    user_id = resolve_subject_user(data['user_id'])
    if user_id is None:
        return _forbidden()

    ledger = CreditLedger()
    if data['job_id']:
        credit = ledger.consume_for_job(user_id, data['type'], data['job_id'])
    else:
        credit = ledger.claim_credit(user_id, data['type'])

    return jsonify({'credit': credit.to_dict(utcnow())}), 200


@credits_bp.route("/<credit_id>/bind", methods=["POST"])
@require_role(ROLE_EMPLOYER, ROLE_ADMIN)
def bind_credit(credit_id):
    """Attach the job a claimed credit paid for. One-time only."""
    data = BindSchema().load(_json())
    owner = resolve_subject_user(None)
    if owner is None:
        return _forbidden()

    # Admins may bind any user's credit
    credit = CreditLedger().bind_to_job(
        credit_id, data['job_id'], user_id=None if is_admin() else owner)
    return jsonify({'credit': credit.to_dict(utcnow())}), 200


@credits_bp.route("/history", methods=["GET"])
@require_role(ROLE_EMPLOYER, ROLE_ADMIN)
def credit_history():
    """Credits, purchases and summary statistics for a user."""
    query = HistoryQuerySchema().load(request.args.to_dict())
    user_id = resolve_subject_user(query['user_id'])
    if user_id is None:
        return _forbidden()

    now = utcnow()
    history = CreditHistoryService()
    credits = history.list_credits(
        user_id,
        status=query['status'],
        credit_type=query['type'],
        limit=query['limit'],
        offset=query['offset'],
        now=now,
    )
    purchases = history.list_purchases(
        user_id,
        status=query['purchase_status'],
        limit=query['limit'],
        offset=query['offset'],
    )
    stats = history.get_stats(user_id, now=now)

    return jsonify({
        'user_id': user_id,
        'credits': [c.to_dict(now) for c in credits],
        'purchases': [p.to_dict() for p in purchases],
        'stats': stats.to_dict(),
        'pagination': {'limit': query['limit'], 'offset': query['offset']},
    }), 200


@credits_bp.route("/normalize", methods=["POST"])
@require_role(ROLE_ADMIN)
def normalize_credits():
    """Convert unused typed credits to universal, for one user or everyone."""
    data = NormalizeSchema().load(_json())
    result = CreditLedger().normalize_credit_types(user_id=data['user_id'])
    logger.info("Credit normalization requested", user_id=data['user_id'],
                converted=result['converted'])
    return jsonify(result), 200
