"""
Checkout Service

Turns a catalog selection into a Stripe Checkout session and a ``pending``
Purchase keyed by the session id. The provider call always happens before the
row is written and never inside a transaction, so a slow or failing provider
can't leave a lock held or a half-written purchase behind.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Iterable, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from src.database import db
from src.models.purchase import Purchase, PurchaseStatus
from src.services.catalog import Grant, resolve_bundle
from src.services.ledger_errors import CatalogValidationError, CheckoutProviderError
from src.services.metrics import get_metrics_service
from src.services.payment_provider import StripeCheckoutProvider
from src.services.structured_logging import get_logger
from src.utils.clock import utcnow

logger = get_logger('jobcredits.checkout')

PURCHASE_TYPE = "job_posting_purchase"


@dataclass(frozen=True)
class CheckoutResult:
    purchase_id: str
    session_id: str
    redirect_url: str
    total_amount_cents: int
    grant: Grant

    def to_dict(self) -> Dict[str, Any]:
        return {
            'purchase_id': self.purchase_id,
            'session_id': self.session_id,
            'redirect_url': self.redirect_url,
            'total_amount_cents': self.total_amount_cents,
            'grant': self.grant.to_dict(),
        }


class CheckoutService:

    def __init__(self, provider: Optional[StripeCheckoutProvider] = None):
        self.provider = provider or StripeCheckoutProvider()

    def start_checkout(
        self,
        user_id: str,
        tier: Optional[str],
        addons: Optional[Iterable[str]] = None,
        credit_pack: Optional[str] = None,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
        customer_email: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> CheckoutResult:
        """
        Open a checkout session and record the pending purchase.

        The purchase row is committed before this returns, so a success
        notification delivered right after the redirect can always find it.

        Raises:
            UnknownTierError, UnknownAddonError, UnknownCreditPackError,
            InvalidBundleError: selection rejected, nothing was created.
            CheckoutProviderError: Stripe failed; no purchase row exists.
        """
        metrics = get_metrics_service()
        config = current_app.config

        try:
            bundle = resolve_bundle(tier, addons, credit_pack)
        except CatalogValidationError as e:
            logger.info("Checkout rejected", user_id=user_id, reason=e.code,
                        detail=e.detail)
            if metrics:
                metrics.record_checkout(tier or credit_pack or "unknown", "rejected")
            raise

        metadata = {
            'user_id': user_id,
            'type': PURCHASE_TYPE,
            'tier': bundle.tier,
            'credit_pack': bundle.credit_pack,
            'addons': bundle.addons,
            'total_amount_cents': bundle.price_total_cents,
            'job_credits': bundle.grant.job_post,
            'featured_credits': bundle.grant.featured_post,
            'social_credits': bundle.grant.social_graphic,
            'repost_credits': bundle.grant.repost,
        }

        try:
            session = self.provider.create_session(
                bundle,
                success_url=success_url or config["CHECKOUT_SUCCESS_URL"],
                cancel_url=cancel_url or config["CHECKOUT_CANCEL_URL"],
                metadata=metadata,
                customer_email=customer_email,
            )
        except CheckoutProviderError:
            if metrics:
                metrics.record_checkout(bundle.product, "provider_error")
            raise

        now = utcnow()
        purchase = Purchase(
            user_id=user_id,
            provider_session_id=session.session_id,
            tier=bundle.tier,
            credit_pack=bundle.credit_pack,
            addons=list(bundle.addons),
            total_amount_cents=bundle.price_total_cents,
            currency=self.provider.currency,
            status=PurchaseStatus.PENDING.value,
            created_at=now,
            expires_at=now + timedelta(days=config["CREDIT_EXPIRY_DAYS"]),
            job_post_credits=bundle.grant.job_post,
            featured_post_credits=bundle.grant.featured_post,
            social_graphic_credits=bundle.grant.social_graphic,
            repost_credits=bundle.grant.repost,
            meta=meta or None,
        )

        try:
            db.session.add(purchase)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Failed to record pending purchase; expiring session",
                             user_id=user_id, session_id=session.session_id)
            self.provider.expire_session(session.session_id)
            if metrics:
                metrics.record_checkout(bundle.product, "store_error")
            raise

        logger.log_ledger_event(
            "purchase_pending",
            purchase_id=purchase.id,
            user_id=user_id,
            session_id=session.session_id,
            product=bundle.product,
            addons=list(bundle.addons),
            total_amount_cents=bundle.price_total_cents,
            credits=bundle.grant.total,
        )
        if metrics:
            metrics.record_checkout(bundle.product, "created")

        return CheckoutResult(
            purchase_id=purchase.id,
            session_id=session.session_id,
            redirect_url=session.redirect_url,
            total_amount_cents=bundle.price_total_cents,
            grant=bundle.grant,
        )
