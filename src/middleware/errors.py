"""
Error handlers for the ledger API.

Ledger exceptions carry their own status and code; marshmallow errors become
400s with per-field messages; database outages are reported as retryable 503s.
"""
from flask import jsonify
from marshmallow import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError

from src.infra.log import get_logger
from src.services.ledger_errors import LedgerError

logger = get_logger('jobcredits.errors')


def register_error_handlers(app):

    @app.errorhandler(LedgerError)
    def ledger_error(e):
        # Integrity violations are logged with their ids where they are raised
        if e.http_status >= 500:
            logger.error("Ledger request failed", code=e.code, detail=e.detail)
        return jsonify(e.to_dict()), e.http_status

    @app.errorhandler(ValidationError)
    def request_validation_error(e):
        return jsonify({
            'error': 'validation_error',
            'message': 'Invalid request data',
            'details': e.messages,
        }), 400

    @app.errorhandler(OperationalError)
    def database_unavailable(e):
        logger.error("Database unavailable", error=str(getattr(e, 'orig', e)))
        return jsonify({
            'error': 'database_error',
            'message': 'The credit ledger is temporarily unavailable. Retry shortly.',
            'retryable': True,
        }), 503

    @app.errorhandler(IntegrityError)
    def constraint_violation(e):
        # Duplicate provider session ids are the only constraint a request can hit
        logger.error("Database constraint violated", error=str(getattr(e, 'orig', e)))
        return jsonify({
            'error': 'conflict',
            'message': 'The request conflicts with existing ledger state.',
        }), 409
