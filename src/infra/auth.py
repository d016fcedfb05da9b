"""
Unified authorization infrastructure module.

All ledger routes import their auth decorators and helpers from here.
"""

from src.services.auth_middleware import (
    ROLE_ADMIN,
    ROLE_EMPLOYER,
    current_user_id,
    is_admin,
    require_role,
    resolve_subject_user,
)

__all__ = [
    "ROLE_ADMIN",
    "ROLE_EMPLOYER",
    "current_user_id",
    "is_admin",
    "require_role",
    "resolve_subject_user",
]
