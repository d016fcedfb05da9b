# -*- coding: utf-8 -*-

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
import stripe

from src.database import db
from src.models import Purchase
from src.services.checkout_service import CheckoutService
from src.services.ledger_errors import CheckoutProviderError, UnknownTierError
from src.utils.clock import utcnow


def _stripe_session(session_id="cs_test_123"):
    session = MagicMock()
    session.id = session_id
    session.url = f"https://checkout.stripe.com/c/pay/{session_id}"
    return session


class TestCheckoutService:

    def test_creates_pending_purchase_with_captured_grant(self, app):
        with patch("stripe.checkout.Session.create") as mock_create:
            mock_create.return_value = _stripe_session()
            result = CheckoutService().start_checkout(
                "employer-1", "standard", ["social_graphic"])

        assert result.session_id == "cs_test_123"
        assert result.redirect_url.endswith("cs_test_123")
        assert result.total_amount_cents == 19900 + 1900

        purchase = db.session.get(Purchase, result.purchase_id)
        assert purchase.status == "pending"
        assert purchase.provider_session_id == "cs_test_123"
        assert purchase.job_post_credits == 5
        assert purchase.featured_post_credits == 1
        assert purchase.social_graphic_credits == 1
        assert purchase.repost_credits == 0
        assert purchase.addons == ["social_graphic"]
        assert purchase.expires_at - purchase.created_at == timedelta(days=90)
        assert purchase.credits == []

        kwargs = mock_create.call_args[1]
        assert kwargs["mode"] == "payment"
        assert kwargs["metadata"]["user_id"] == "employer-1"
        assert kwargs["metadata"]["job_credits"] == "5"
        # Charged amount must equal the recorded total
        assert "allow_promotion_codes" not in kwargs
        assert sum(item["price_data"]["unit_amount"] for item in kwargs["line_items"]) == 21800

    def test_configured_stripe_price_is_used(self, app, monkeypatch):
        monkeypatch.setenv("STRIPE_PRICE_STARTER", "price_starter_123")
        with patch("stripe.checkout.Session.create") as mock_create:
            mock_create.return_value = _stripe_session()
            CheckoutService().start_checkout("employer-1", "starter")

        assert mock_create.call_args[1]["line_items"] == [
            {"price": "price_starter_123", "quantity": 1}]

    def test_http_client_is_shared_across_checkouts(self, app):
        with patch("stripe.checkout.Session.create") as mock_create:
            mock_create.side_effect = [_stripe_session("cs_a"), _stripe_session("cs_b")]
            CheckoutService().start_checkout("employer-1", "starter")
            first = stripe.default_http_client
            CheckoutService().start_checkout("employer-1", "starter")

        assert first is not None
        assert stripe.default_http_client is first

    def test_invalid_selection_creates_nothing(self, app):
        with patch("stripe.checkout.Session.create") as mock_create:
            with pytest.raises(UnknownTierError):
                CheckoutService().start_checkout("employer-1", "platinum")
            mock_create.assert_not_called()
        assert Purchase.query.count() == 0

    def test_provider_failure_creates_nothing(self, app):
        with patch("stripe.checkout.Session.create") as mock_create:
            mock_create.side_effect = stripe.APIConnectionError("timed out")
            with pytest.raises(CheckoutProviderError) as exc:
                CheckoutService().start_checkout("employer-1", "starter")
        assert exc.value.retryable is True
        assert Purchase.query.count() == 0

    def test_missing_secret_key_is_not_retryable(self, app):
        app.config["STRIPE_SECRET_KEY"] = ""
        with pytest.raises(CheckoutProviderError) as exc:
            CheckoutService().start_checkout("employer-1", "starter")
        assert exc.value.retryable is False

    def test_catalog_change_does_not_alter_pending_purchase(self, app, monkeypatch):
        with patch("stripe.checkout.Session.create") as mock_create:
            mock_create.return_value = _stripe_session()
            result = CheckoutService().start_checkout("employer-1", "starter")

        from src.services import catalog
        monkeypatch.setenv("JOBCREDITS_CATALOG_JSON", '{"tiers": {"starter": {"job_post": 10}}}')
        monkeypatch.setattr(catalog, "CATALOG", catalog.load_catalog())

        purchase = db.session.get(Purchase, result.purchase_id)
        assert purchase.job_post_credits == 3


class TestCheckoutRoute:

    def test_requires_token(self, client):
        response = client.post("/api/v1/purchases", json={"tier": "starter"})
        assert response.status_code == 401

    def test_rejects_unknown_role(self, client, auth_headers):
        response = client.post("/api/v1/purchases", json={"tier": "starter"},
                               headers=auth_headers(role="candidate"))
        assert response.status_code == 403

    def test_creates_checkout(self, client, auth_headers):
        with patch("stripe.checkout.Session.create") as mock_create:
            mock_create.return_value = _stripe_session("cs_test_route")
            response = client.post(
                "/api/v1/purchases",
                json={"tier": "pro", "addons": ["repost"]},
                headers={**auth_headers("employer-7"), "User-Agent": "pytest"},
            )

        assert response.status_code == 201
        data = response.get_json()
        assert data["session_id"] == "cs_test_route"
        assert data["redirect_url"].startswith("https://checkout.stripe.com/")
        assert data["grant"] == {"job_post": 10, "featured_post": 2,
                                 "social_graphic": 0, "repost": 1}

        purchase = Purchase.query.filter_by(provider_session_id="cs_test_route").one()
        assert purchase.user_id == "employer-7"
        assert purchase.meta["user_agent"] == "pytest"

    def test_invalid_bundle_is_400(self, client, auth_headers):
        response = client.post(
            "/api/v1/purchases",
            json={"tier": "starter", "addons": ["feature_and_social_bundle", "social_graphic"]},
            headers=auth_headers(),
        )
        assert response.status_code == 400
        assert response.get_json()["error"] == "invalid_bundle"

    def test_malformed_body_is_400(self, client, auth_headers):
        response = client.post("/api/v1/purchases",
                               json={"tier": "starter", "addons": "repost"},
                               headers=auth_headers())
        assert response.status_code == 400
        assert "addons" in response.get_json()["details"]

    def test_provider_error_is_502(self, client, auth_headers):
        with patch("stripe.checkout.Session.create") as mock_create:
            mock_create.side_effect = stripe.APIError("boom")
            response = client.post("/api/v1/purchases", json={"tier": "starter"},
                                   headers=auth_headers())
        assert response.status_code == 502
        assert response.get_json()["retryable"] is True
        assert Purchase.query.count() == 0

    def test_pending_purchase_issues_no_credits_yet(self, client, auth_headers):
        with patch("stripe.checkout.Session.create") as mock_create:
            mock_create.return_value = _stripe_session()
            client.post("/api/v1/purchases", json={"tier": "starter"},
                        headers=auth_headers())

        response = client.get("/api/v1/credits/history", headers=auth_headers())
        assert response.get_json()["stats"]["available"] == 0
        assert response.get_json()["purchases"][0]["status"] == "pending"

    def test_expiry_uses_configured_days(self, app):
        app.config["CREDIT_EXPIRY_DAYS"] = 30
        with patch("stripe.checkout.Session.create") as mock_create:
            mock_create.return_value = _stripe_session()
            result = CheckoutService().start_checkout("employer-1", "starter")
        purchase = db.session.get(Purchase, result.purchase_id)
        assert purchase.expires_at <= utcnow() + timedelta(days=30)
