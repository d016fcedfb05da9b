# -*- coding: utf-8 -*-
"""
Stripe Checkout adapter.

The ledger only needs two things from the payment provider: open a one-time
checkout session for an amount, and verify the webhook that later reports the
outcome. Everything Stripe-specific lives here.
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Optional

import stripe
from flask import current_app

from src.services.catalog import Bundle
from src.services.ledger_errors import CheckoutProviderError
from src.services.structured_logging import get_logger

logger = get_logger('jobcredits.checkout')


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    redirect_url: str


def _metadata_value(value: Any) -> str:
    # Stripe metadata values must be strings
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return str(value)


@lru_cache(maxsize=None)
def _http_client(timeout_seconds: int) -> stripe.RequestsClient:
    """One pooled HTTP client per timeout, shared by every checkout."""
    return stripe.RequestsClient(timeout=timeout_seconds)


class StripeCheckoutProvider:
    """Opens Stripe Checkout sessions in one-time ``payment`` mode."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        timeout_seconds: Optional[int] = None,
        max_network_retries: Optional[int] = None,
        currency: str = "usd",
    ):
        config = current_app.config
        self.secret_key = (secret_key if secret_key is not None
                           else config.get("STRIPE_SECRET_KEY", "")).strip()
        self.timeout_seconds = timeout_seconds or config.get("STRIPE_TIMEOUT_SECONDS", 10)
        self.max_network_retries = (max_network_retries if max_network_retries is not None
                                    else config.get("STRIPE_MAX_NETWORK_RETRIES", 2))
        self.currency = currency

    def _configure(self) -> None:
        if not self.secret_key:
            raise CheckoutProviderError("STRIPE_SECRET_KEY missing", retryable=False)
        stripe.api_key = self.secret_key
        stripe.max_network_retries = self.max_network_retries
        # Bound the provider call; a hung session create must not hang checkout
        stripe.default_http_client = _http_client(self.timeout_seconds)

    def _line_items(self, bundle: Bundle) -> list:
        items = []
        for item in bundle.items:
            price_id = item.stripe_price_id
            if price_id:
                items.append({"price": price_id, "quantity": 1})
            else:
                items.append({
                    "price_data": {
                        "currency": self.currency,
                        "unit_amount": item.price_cents,
                        "product_data": {"name": item.name},
                    },
                    "quantity": 1,
                })
        return items

    def create_session(
        self,
        bundle: Bundle,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, Any],
        customer_email: Optional[str] = None,
    ) -> CheckoutSession:
        """
        Open a checkout session for the bundle's total.

        Raises:
            CheckoutProviderError: Stripe rejected the request, timed out, or is
                not configured.
        """
        self._configure()

        params: Dict[str, Any] = {
            "mode": "payment",
            "line_items": self._line_items(bundle),
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": {k: _metadata_value(v) for k, v in metadata.items()},
            "client_reference_id": _metadata_value(metadata.get("user_id")),
            "billing_address_collection": "required",
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            msg = getattr(e, "user_message", None) or str(e)
            logger.error("Stripe checkout session creation failed",
                         stripe_error=msg, user_id=metadata.get("user_id"))
            raise CheckoutProviderError(f"Stripe error: {msg}") from e

        logger.info("Created checkout session", session_id=session.id,
                    user_id=metadata.get("user_id"),
                    amount_cents=bundle.price_total_cents)
        return CheckoutSession(session_id=session.id, redirect_url=session.url)

    def expire_session(self, session_id: str) -> None:
        """Best-effort cancel of a session we could not record."""
        try:
            self._configure()
            stripe.checkout.Session.expire(session_id)
        except (stripe.StripeError, CheckoutProviderError) as e:
            logger.warning("Could not expire orphaned checkout session",
                           session_id=session_id, error=str(e))

    @staticmethod
    def construct_event(payload: bytes, sig_header: Optional[str], webhook_secret: str):
        """Verify a webhook payload; raises ValueError or SignatureVerificationError."""
        return stripe.Webhook.construct_event(payload, sig_header, webhook_secret)
