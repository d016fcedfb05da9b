"""
Fulfillment Service

Applies a payment outcome to a pending purchase. Payment notifications are
delivered at least once, so the ``pending -> completed|failed`` transition is a
single conditional UPDATE: only the caller whose UPDATE matches the pending row
issues credits, inside the same transaction. Everyone else gets the existing
result back, flagged ``already_processed``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from src.database import db
from src.models.credit import Credit
from src.models.purchase import Purchase, PurchaseStatus
from src.services.ledger_errors import AlreadyFulfilledError, PurchaseNotFoundError
from src.services.metrics import get_metrics_service
from src.services.structured_logging import get_logger
from src.utils.clock import utcnow

logger = get_logger('jobcredits.fulfillment')


class FulfillmentOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class FulfillmentResult:
    purchase_id: str
    user_id: str
    status: str
    credits_issued: int
    credit_ids: List[str] = field(default_factory=list)
    already_processed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'purchase_id': self.purchase_id,
            'user_id': self.user_id,
            'status': self.status,
            'credits_issued': self.credits_issued,
            'credit_ids': list(self.credit_ids),
            'already_processed': self.already_processed,
        }


class FulfillmentService:

    def fulfill(self, provider_session_id: str, outcome: str) -> FulfillmentResult:
        """
        Complete or fail the purchase opened for ``provider_session_id``.

        Raises:
            PurchaseNotFoundError: no purchase was ever opened for the session.
        """
        outcome = FulfillmentOutcome(outcome)
        metrics = get_metrics_service()
        now = utcnow()

        if outcome is FulfillmentOutcome.SUCCESS:
            values = {'status': PurchaseStatus.COMPLETED.value, 'completed_at': now}
        else:
            values = {'status': PurchaseStatus.FAILED.value, 'failed_at': now}

        try:
            transition = db.session.execute(
                update(Purchase)
                .where(
                    Purchase.provider_session_id == provider_session_id,
                    Purchase.status == PurchaseStatus.PENDING.value,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )

            if transition.rowcount == 1:
                purchase = db.session.execute(
                    select(Purchase)
                    .where(Purchase.provider_session_id == provider_session_id)
                    .execution_options(populate_existing=True)
                ).scalar_one()

                credits: List[Credit] = []
                if outcome is FulfillmentOutcome.SUCCESS:
                    credits = self._issue_credits(purchase, now)
                    db.session.flush()

                db.session.commit()
            else:
                db.session.rollback()
                purchase = None
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Fulfillment transaction failed",
                             session_id=provider_session_id, outcome=outcome.value)
            raise

        if purchase is not None:
            return self._won_transition(purchase, credits, outcome, metrics)

        return self._existing_result(provider_session_id, outcome, metrics)

    def _issue_credits(self, purchase: Purchase, now) -> List[Credit]:
        credits = []
        for credit_type, count in purchase.grant_counts().items():
            for _ in range(count):
                credits.append(Credit(
                    purchase_id=purchase.id,
                    user_id=purchase.user_id,
                    type=credit_type.value,
                    is_used=False,
                    expires_at=purchase.expires_at,
                    created_at=now,
                ))
        db.session.add_all(credits)
        return credits

    def _won_transition(self, purchase, credits, outcome, metrics) -> FulfillmentResult:
        if outcome is FulfillmentOutcome.SUCCESS:
            logger.log_ledger_event(
                "purchase_completed",
                purchase_id=purchase.id,
                user_id=purchase.user_id,
                session_id=purchase.provider_session_id,
                credits_issued=len(credits),
                expires_at=purchase.expires_at,
            )
            if metrics:
                for credit_type, count in purchase.grant_counts().items():
                    metrics.record_credits_issued(credit_type.value, count)
        else:
            logger.log_ledger_event(
                "purchase_failed",
                level=logging.WARNING,
                purchase_id=purchase.id,
                user_id=purchase.user_id,
                session_id=purchase.provider_session_id,
            )

        if metrics:
            metrics.record_fulfillment(outcome.value, "applied")

        return FulfillmentResult(
            purchase_id=purchase.id,
            user_id=purchase.user_id,
            status=purchase.status,
            credits_issued=len(credits),
            credit_ids=[c.id for c in credits],
        )

    def _existing_result(self, provider_session_id, outcome, metrics) -> FulfillmentResult:
        purchase = Purchase.query.filter_by(provider_session_id=provider_session_id).first()
        if purchase is None:
            logger.log_integrity_violation(
                "fulfillment_for_unknown_session",
                session_id=provider_session_id,
                outcome=outcome.value,
            )
            if metrics:
                metrics.record_fulfillment(outcome.value, "not_found")
            raise PurchaseNotFoundError(provider_session_id)

        notice = AlreadyFulfilledError(provider_session_id, purchase.status)
        expected = (PurchaseStatus.COMPLETED.value if outcome is FulfillmentOutcome.SUCCESS
                    else PurchaseStatus.FAILED.value)
        if purchase.status == expected:
            logger.debug(notice.detail, code=notice.code, purchase_id=purchase.id,
                         user_id=purchase.user_id)
        else:
            # Terminal states are final; a late contradicting notice is only recorded
            logger.warning("Ignoring fulfillment outcome for terminal purchase",
                           code=notice.code, purchase_id=purchase.id,
                           user_id=purchase.user_id, status=purchase.status,
                           outcome=outcome.value)

        if metrics:
            metrics.record_fulfillment(outcome.value, "already_processed")

        credit_ids = [row for row in db.session.execute(
            select(Credit.id)
            .where(Credit.purchase_id == purchase.id)
            .order_by(Credit.created_at, Credit.id)
        ).scalars()]

        return FulfillmentResult(
            purchase_id=purchase.id,
            user_id=purchase.user_id,
            status=purchase.status,
            credits_issued=len(credit_ids),
            credit_ids=credit_ids,
            already_processed=True,
        )
