"""
Shared entry points for the ledger's routes and jobs: the database handle,
authorization helpers and structured logging.
"""

from src.database import db
from src.infra.auth import require_role, resolve_subject_user
from src.infra.log import get_logger, init_logging

__all__ = ["db", "require_role", "resolve_subject_user", "get_logger", "init_logging"]
