"""
Credit History Service

Read-only reporting over a user's purchases and credits. "Available" is
computed with the same predicate the ledger claims with, so the numbers shown to
a user never promise a credit that a claim would refuse.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy import and_, func, select

from src.database import db
from src.models.credit import Credit, CreditType
from src.models.purchase import Purchase, PurchaseStatus
from src.services.credit_ledger import available, claim_order
from src.utils.clock import utcnow

CREDIT_STATUSES = ("available", "used", "expired")


@dataclass
class CreditStats:
    earned: int = 0
    used: int = 0
    expired: int = 0
    available: int = 0
    available_by_type: Dict[str, int] = field(default_factory=dict)
    total_spent_cents: int = 0
    purchases_completed: int = 0
    expiring_soon_count: int = 0
    expiring_soon_ids: List[str] = field(default_factory=list)
    next_expiration: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'earned': self.earned,
            'used': self.used,
            'expired': self.expired,
            'available': self.available,
            'available_by_type': dict(self.available_by_type),
            'total_spent_cents': self.total_spent_cents,
            'purchases_completed': self.purchases_completed,
            'expiring_soon_count': self.expiring_soon_count,
            'expiring_soon_ids': list(self.expiring_soon_ids),
            'next_expiration': self.next_expiration.isoformat() if self.next_expiration else None,
        }


def _expired(now: datetime):
    return and_(
        Credit.is_used.is_(False),
        Credit.expires_at.isnot(None),
        Credit.expires_at <= now,
    )


class CreditHistoryService:

    def list_credits(
        self,
        user_id: str,
        status: Optional[str] = None,
        credit_type: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
        now: Optional[datetime] = None,
    ) -> List[Credit]:
        """Credits for a user, newest first, optionally filtered by status/type."""
        now = now or utcnow()
        stmt = select(Credit).where(Credit.user_id == user_id)

        if status == "available":
            stmt = stmt.where(*available(now))
        elif status == "used":
            stmt = stmt.where(Credit.is_used.is_(True))
        elif status == "expired":
            stmt = stmt.where(_expired(now))
        elif status is not None:
            raise ValueError(f"Unknown credit status {status!r}")

        if credit_type is not None:
            stmt = stmt.where(Credit.type == CreditType(credit_type).value)

        stmt = stmt.order_by(Credit.created_at.desc(), Credit.id).limit(limit).offset(offset)
        return list(db.session.execute(stmt).scalars())

    def list_purchases(
        self,
        user_id: str,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Purchase]:
        stmt = select(Purchase).where(Purchase.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Purchase.status == PurchaseStatus(status).value)
        stmt = stmt.order_by(Purchase.created_at.desc(), Purchase.id).limit(limit).offset(offset)
        return list(db.session.execute(stmt).scalars())

    def get_stats(
        self,
        user_id: str,
        now: Optional[datetime] = None,
        expiring_within_days: Optional[int] = None,
    ) -> CreditStats:
        now = now or utcnow()
        if expiring_within_days is None:
            expiring_within_days = current_app.config.get("CREDIT_EXPIRING_SOON_DAYS", 7)
        stats = CreditStats()

        stats.earned = db.session.scalar(
            select(func.count(Credit.id)).where(Credit.user_id == user_id)) or 0
        stats.used = db.session.scalar(
            select(func.count(Credit.id)).where(
                Credit.user_id == user_id, Credit.is_used.is_(True))) or 0
        stats.expired = db.session.scalar(
            select(func.count(Credit.id)).where(
                Credit.user_id == user_id, _expired(now))) or 0

        by_type = db.session.execute(
            select(Credit.type, func.count(Credit.id))
            .where(Credit.user_id == user_id, *available(now))
            .group_by(Credit.type)
        ).all()
        stats.available_by_type = {ctype.value: 0 for ctype in CreditType}
        for credit_type, count in by_type:
            stats.available_by_type[credit_type] = count
        stats.available = sum(stats.available_by_type.values())

        spent, completed = db.session.execute(
            select(func.coalesce(func.sum(Purchase.total_amount_cents), 0),
                   func.count(Purchase.id))
            .where(Purchase.user_id == user_id,
                   Purchase.status == PurchaseStatus.COMPLETED.value)
        ).one()
        stats.total_spent_cents = int(spent or 0)
        stats.purchases_completed = completed or 0

        horizon = now + timedelta(days=expiring_within_days)
        expiring = db.session.execute(
            select(Credit.id, Credit.expires_at)
            .where(Credit.user_id == user_id, *available(now),
                   Credit.expires_at.isnot(None), Credit.expires_at <= horizon)
            .order_by(*claim_order())
        ).all()
        stats.expiring_soon_ids = [row.id for row in expiring]
        stats.expiring_soon_count = len(expiring)

        stats.next_expiration = db.session.scalar(
            select(func.min(Credit.expires_at))
            .where(Credit.user_id == user_id, *available(now))
        )
        return stats
