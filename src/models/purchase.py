# src/models/purchase.py
"""
Purchase model.

A one-time checkout for a tier or credit pack plus add-ons. The credit grant is
captured on the row at checkout time so later catalog changes never alter what
an already-paid purchase issues.
"""
import uuid
from enum import Enum
from typing import Any, Dict

from sqlalchemy import Column, String, Integer, BigInteger, DateTime, JSON, Index
from sqlalchemy.orm import relationship

from src.database import db
from src.models.credit import CreditType
from src.utils.clock import utcnow


class PurchaseStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Purchase(db.Model):
    __tablename__ = "purchases"

    id                  = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id             = Column(String(64), nullable=False, index=True)
    provider_session_id = Column(String(255), nullable=False, unique=True)

    tier                = Column(String(16), nullable=True)
    credit_pack         = Column(String(32), nullable=True)
    addons              = Column(JSON, nullable=False, default=list)
    total_amount_cents  = Column(BigInteger, nullable=False)
    currency            = Column(String(3), nullable=False, default="usd")

    status              = Column(String(16), nullable=False, default=PurchaseStatus.PENDING.value)
    created_at          = Column(DateTime, nullable=False, default=utcnow)
    completed_at        = Column(DateTime, nullable=True)
    failed_at           = Column(DateTime, nullable=True)
    expires_at          = Column(DateTime, nullable=False)

    # Grant captured at checkout
    job_post_credits       = Column(Integer, nullable=False, default=0)
    featured_post_credits  = Column(Integer, nullable=False, default=0)
    social_graphic_credits = Column(Integer, nullable=False, default=0)
    repost_credits         = Column(Integer, nullable=False, default=0)

    meta                = Column(JSON, nullable=True)

    credits = relationship(
        "Credit",
        back_populates="purchase",
        order_by="Credit.created_at",
    )

    __table_args__ = (
        Index("ix_purchases_user_status", "user_id", "status"),
    )

    def grant_counts(self) -> Dict[CreditType, int]:
        return {
            CreditType.JOB_POST: self.job_post_credits or 0,
            CreditType.FEATURED_POST: self.featured_post_credits or 0,
            CreditType.SOCIAL_GRAPHIC: self.social_graphic_credits or 0,
            CreditType.REPOST: self.repost_credits or 0,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'provider_session_id': self.provider_session_id,
            'tier': self.tier,
            'credit_pack': self.credit_pack,
            'addons': list(self.addons or []),
            'total_amount_cents': self.total_amount_cents,
            'currency': self.currency,
            'status': self.status,
            'grant': {ctype.value: count for ctype, count in self.grant_counts().items()},
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'failed_at': self.failed_at.isoformat() if self.failed_at else None,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
        }

    def __repr__(self) -> str:
        return f"<Purchase {self.id} status={self.status} session={self.provider_session_id}>"
