"""
Credit Ledger Service

Owns the life of a credit after issuance: claiming it for a job-posting action,
binding it to the job it funded, and normalizing legacy credit types.

Claims are optimistic compare-and-set updates::

    UPDATE credits SET is_used = true, used_at = :now
     WHERE id = :candidate AND is_used = false AND <unexpired>

The candidate read takes no row locks, so a concurrent claimer always sees every
unused credit. The UPDATE is the only gate: under READ COMMITTED a claimer that
waits on another's row lock re-checks `is_used` once it is released. A zero-row
update means a concurrent caller took that credit first; the next candidate is
tried, and the candidate list is re-read once exhausted. Every lost race is a
credit consumed by someone else, so the loop ends after at most as many
attempts as there were available credits.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from flask import current_app
from sqlalchemy import case, or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from src.database import db
from src.models.credit import Credit, CreditType
from src.services.ledger_errors import (
    CreditBindingError,
    CreditNotFoundError,
    InsufficientCreditsError,
)
from src.services.metrics import get_metrics_service
from src.services.structured_logging import get_logger
from src.utils.clock import utcnow

logger = get_logger('jobcredits.ledger')


def unexpired(now: datetime):
    """SQL predicate for credits that have not expired at ``now``."""
    return or_(Credit.expires_at.is_(None), Credit.expires_at > now)


def available(now: datetime):
    """SQL predicate shared by claims and statistics: unused and unexpired."""
    return Credit.is_used.is_(False), unexpired(now)


def claim_order():
    """Soonest-expiring first (no expiry last), then oldest, then id."""
    return (
        case((Credit.expires_at.is_(None), 1), else_=0),
        Credit.expires_at.asc(),
        Credit.created_at.asc(),
        Credit.id.asc(),
    )


class CreditLedger:

    def __init__(self, batch_size: Optional[int] = None):
        self.batch_size = batch_size or current_app.config.get("CREDIT_CLAIM_BATCH_SIZE", 5)

    # ------------------------------------------------------------------
    # Claiming
    # ------------------------------------------------------------------

    def claim_credit(
        self,
        user_id: str,
        credit_type: str,
        job_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Credit:
        """
        Atomically mark one available credit as used and return it.

        An exact-type credit is preferred; a ``universal`` credit is used only
        when none is left. When ``job_id`` is given the same UPDATE binds the
        credit to the job.

        Raises:
            InsufficientCreditsError: nothing claimable for the user and type.
        """
        credit_type = CreditType(credit_type)
        now = now or utcnow()
        metrics = get_metrics_service()

        search_order = [credit_type]
        if credit_type is not CreditType.UNIVERSAL:
            search_order.append(CreditType.UNIVERSAL)

        for search_type in search_order:
            credit = self._claim_first(user_id, search_type, job_id, now)
            if credit is not None:
                logger.log_ledger_event(
                    "credit_claimed",
                    credit_id=credit.id,
                    purchase_id=credit.purchase_id,
                    user_id=user_id,
                    requested_type=credit_type.value,
                    claimed_type=credit.type,
                    job_id=job_id,
                )
                if metrics:
                    metrics.record_credit_claim(credit_type.value, "claimed")
                return credit

        # Expected business outcome, not a fault
        logger.debug("No credits available to claim", user_id=user_id,
                     requested_type=credit_type.value)
        if metrics:
            metrics.record_credit_claim(credit_type.value, "insufficient")
        raise InsufficientCreditsError(credit_type.value)

    def _candidate_stmt(self, user_id: str, credit_type: CreditType, now: datetime):
        return (
            select(Credit.id)
            .where(
                Credit.user_id == user_id,
                Credit.type == credit_type.value,
                *available(now),
            )
            .order_by(*claim_order())
            .limit(self.batch_size)
        )

    def _candidate_ids(self, user_id: str, credit_type: CreditType, now: datetime) -> List[str]:
        stmt = self._candidate_stmt(user_id, credit_type, now)
        return list(db.session.execute(stmt).scalars())

    def _claim_first(
        self,
        user_id: str,
        credit_type: CreditType,
        job_id: Optional[str],
        now: datetime,
    ) -> Optional[Credit]:
        values = {'is_used': True, 'used_at': now}
        if job_id is not None:
            values['used_for_job_id'] = job_id

        try:
            while True:
                candidate_ids = self._candidate_ids(user_id, credit_type, now)
                if not candidate_ids:
                    db.session.rollback()
                    return None

                for credit_id in candidate_ids:
                    result = db.session.execute(
                        update(Credit)
                        .where(
                            Credit.id == credit_id,
                            Credit.user_id == user_id,
                            *available(now),
                        )
                        .values(**values)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount == 1:
                        db.session.commit()
                        return db.session.get(Credit, credit_id, populate_existing=True)

                    logger.debug("Lost claim race, trying next candidate",
                                 credit_id=credit_id, user_id=user_id)

                # Whole batch was taken by concurrent claimers; release and re-read
                db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Credit claim failed", user_id=user_id,
                             credit_type=credit_type.value)
            raise

    # ------------------------------------------------------------------
    # Binding
    # ------------------------------------------------------------------

    def bind_to_job(self, credit_id: str, job_id: str, user_id: Optional[str] = None) -> Credit:
        """
        Record which job a claimed credit paid for. Allowed once, and only on a
        credit that is already used.

        Raises:
            CreditNotFoundError: unknown credit (or not owned by ``user_id``).
            CreditBindingError: credit unused or already bound.
        """
        conditions = [
            Credit.id == credit_id,
            Credit.is_used.is_(True),
            Credit.used_for_job_id.is_(None),
        ]
        if user_id is not None:
            conditions.append(Credit.user_id == user_id)

        try:
            result = db.session.execute(
                update(Credit)
                .where(*conditions)
                .values(used_for_job_id=job_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                db.session.commit()
                credit = db.session.get(Credit, credit_id, populate_existing=True)
                logger.log_ledger_event("credit_bound", credit_id=credit_id,
                                        user_id=credit.user_id, job_id=job_id)
                return credit
            db.session.rollback()
        except SQLAlchemyError:
            db.session.rollback()
            raise

        credit = db.session.get(Credit, credit_id, populate_existing=True)
        if credit is None or (user_id is not None and credit.user_id != user_id):
            logger.log_integrity_violation("bind_unknown_credit", credit_id=credit_id,
                                           user_id=user_id, job_id=job_id)
            raise CreditNotFoundError(credit_id)

        if not credit.is_used:
            detail = f"Credit {credit_id} has not been claimed."
        else:
            detail = f"Credit {credit_id} is already bound to job {credit.used_for_job_id}."

        logger.log_integrity_violation(
            "credit_rebind_attempt" if credit.is_used else "bind_unclaimed_credit",
            credit_id=credit_id,
            purchase_id=credit.purchase_id,
            user_id=credit.user_id,
            job_id=job_id,
            bound_job_id=credit.used_for_job_id,
        )
        raise CreditBindingError(credit_id, detail)

    def consume_for_job(self, user_id: str, credit_type: str, job_id: str) -> Credit:
        """Claim a credit and bind it to ``job_id`` in one conditional update."""
        return self.claim_credit(user_id, credit_type, job_id=job_id)

    # ------------------------------------------------------------------
    # Consolidation
    # ------------------------------------------------------------------

    def normalize_credit_types(self, user_id: Optional[str] = None) -> Dict[str, int]:
        """
        Rewrite every unused, non-universal credit to ``universal``.

        Used credits keep the type they were consumed as. Running it again
        converts nothing.
        """
        stmt = update(Credit).where(
            Credit.is_used.is_(False),
            Credit.type != CreditType.UNIVERSAL.value,
        )
        if user_id is not None:
            stmt = stmt.where(Credit.user_id == user_id)

        try:
            result = db.session.execute(
                stmt.values(type=CreditType.UNIVERSAL.value)
                .execution_options(synchronize_session=False)
            )
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Credit type normalization failed", user_id=user_id)
            raise

        converted = result.rowcount or 0
        logger.log_ledger_event("credit_types_normalized", user_id=user_id or "*",
                                converted=converted)
        return {'converted': converted}
