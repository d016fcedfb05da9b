# -*- coding: utf-8 -*-
"""
Authorization for ledger routes.

Tokens are issued by the job board's auth service; this service only verifies
them. The JWT identity is the user id and the ``role`` claim decides what the
caller may do. Whether a caller may act on a given user's ledger is decided
here, before any ledger operation runs.
"""
from functools import wraps
from typing import Optional

from flask import g, jsonify
from flask_jwt_extended import get_jwt, get_jwt_identity, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

from src.services.request_context import set_auth_context
from src.services.structured_logging import get_logger

logger = get_logger('jobcredits.audit')

ROLE_EMPLOYER = "employer"
ROLE_ADMIN = "admin"


def create_auth_required_response(message: str = "Authentication required."):
    return jsonify({
        'error': 'auth_required',
        'message': message,
        'hint': 'Include a Bearer token in the Authorization header'
    }), 401


def create_forbidden_response(message: str):
    return jsonify({'error': 'forbidden', 'message': message}), 403


def require_role(*roles: str):
    """Require a valid bearer token whose ``role`` claim is one of ``roles``."""
    allowed = set(roles)

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                verify_jwt_in_request()
            except (JWTExtendedException, PyJWTError) as e:
                logger.warning("Bearer token rejected", reason=str(e))
                return create_auth_required_response()

            user_id = get_jwt_identity()
            role = (get_jwt() or {}).get("role")
            set_auth_context(user_id=str(user_id) if user_id else None, role=role)

            if not user_id:
                return create_auth_required_response("Token has no subject.")
            if allowed and role not in allowed:
                logger.warning("Role not permitted", user_id=user_id, role=role,
                               allowed=sorted(allowed))
                return create_forbidden_response(
                    f"Role {role!r} may not perform this action.")
            return f(*args, **kwargs)

        return decorated_function

    return decorator


def current_user_id() -> Optional[str]:
    return getattr(g, 'user_id', None)


def is_admin() -> bool:
    return getattr(g, 'user_role', None) == ROLE_ADMIN


def resolve_subject_user(requested_user_id: Optional[str]) -> Optional[str]:
    """
    The user whose ledger a request acts on.

    Callers act on their own ledger; only admins may name another user.
    Returns None when the caller asked for someone else's ledger without
    being an admin.
    """
    caller = current_user_id()
    if not requested_user_id or requested_user_id == caller:
        return caller
    if is_admin():
        return requested_user_id
    logger.warning("Cross-user ledger access denied", user_id=caller,
                   requested_user_id=requested_user_id)
    return None
