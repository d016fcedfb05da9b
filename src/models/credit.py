# -*- coding: utf-8 -*-
"""
Credit model.

One row per single-use entitlement issued by a completed purchase. A credit is
claimed by flipping ``is_used`` exactly once; it is never "unused" again.
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from src.database import db
from src.utils.clock import utcnow


class CreditType(str, Enum):
    JOB_POST = "job_post"
    FEATURED_POST = "featured_post"
    SOCIAL_GRAPHIC = "social_graphic"
    REPOST = "repost"
    # Satisfies any request once no exact-type credit is left
    UNIVERSAL = "universal"


class Credit(db.Model):
    __tablename__ = "credits"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    purchase_id = Column(String(36), ForeignKey("purchases.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False)

    type = Column(String(32), nullable=False)
    is_used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime, nullable=True)
    used_for_job_id = Column(String(64), nullable=True)  # weak reference, no FK

    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    purchase = relationship("Purchase", back_populates="credits")

    __table_args__ = (
        Index("ix_credits_claim_scan", "user_id", "type", "is_used", "expires_at"),
    )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())

    def status(self, now: Optional[datetime] = None) -> str:
        if self.is_used:
            return "used"
        if self.is_expired(now):
            return "expired"
        return "available"

    def to_dict(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return {
            'id': self.id,
            'purchase_id': self.purchase_id,
            'user_id': self.user_id,
            'type': self.type,
            'is_used': self.is_used,
            'used_at': self.used_at.isoformat() if self.used_at else None,
            'used_for_job_id': self.used_for_job_id,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'status': self.status(now),
        }

    def __repr__(self) -> str:
        return f"<Credit {self.id} type={self.type} used={self.is_used}>"
