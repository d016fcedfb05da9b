# -*- coding: utf-8 -*-
"""Checkout through fulfillment to consumption, over the HTTP API."""

from datetime import timedelta
from unittest.mock import MagicMock, patch

from src.database import db
from src.models import Credit
from src.utils.clock import utcnow


def _checkout(client, headers, session_id, **body):
    session = MagicMock()
    session.id = session_id
    session.url = f"https://checkout.stripe.com/c/pay/{session_id}"
    with patch("stripe.checkout.Session.create", return_value=session):
        response = client.post("/api/v1/purchases", json=body, headers=headers)
    assert response.status_code == 201
    return response.get_json()


def _deliver(client, session_id, event_type="checkout.session.completed"):
    event = {
        "type": event_type,
        "data": {"object": {
            "id": session_id,
            "payment_status": "paid",
            "metadata": {"type": "job_posting_purchase"},
        }},
    }
    with patch("stripe.Webhook.construct_event", return_value=event):
        response = client.post("/api/v1/purchases/fulfillment", data=b"{}",
                               headers={"Stripe-Signature": "t=1,v1=test"})
    assert response.status_code == 200
    return response.get_json()["fulfillment"]


def _claim(client, headers, job_id):
    return client.post("/api/v1/credits/claim",
                       json={"type": "job_post", "job_id": job_id}, headers=headers)


class TestStarterPurchaseLifecycle:

    def test_starter_purchase_issues_three_job_credits(self, client, auth_headers):
        headers = auth_headers()
        _checkout(client, headers, "cs_starter", tier="starter")

        result = _deliver(client, "cs_starter")

        assert result["credits_issued"] == 3
        credits = Credit.query.all()
        assert len(credits) == 3
        assert {c.type for c in credits} == {"job_post"}
        assert not any(c.is_used for c in credits)

    def test_three_jobs_then_insufficient(self, client, auth_headers):
        headers = auth_headers()
        _checkout(client, headers, "cs_starter", tier="starter")
        _deliver(client, "cs_starter")

        claimed = [_claim(client, headers, f"job-{n}").get_json()["credit"] for n in range(3)]
        fourth = _claim(client, headers, "job-3")

        assert len({c["id"] for c in claimed}) == 3
        assert [c["used_for_job_id"] for c in claimed] == ["job-0", "job-1", "job-2"]
        assert fourth.status_code == 402

    def test_redelivered_notification_is_already_processed(self, client, auth_headers):
        headers = auth_headers()
        _checkout(client, headers, "cs_starter", tier="starter")
        _deliver(client, "cs_starter")

        again = _deliver(client, "cs_starter")

        assert again["already_processed"] is True
        assert Credit.query.count() == 3

    def test_expired_credit_is_skipped(self, client, auth_headers):
        headers = auth_headers()
        _checkout(client, headers, "cs_starter", tier="starter")
        _deliver(client, "cs_starter")

        stale = Credit.query.first()
        stale.expires_at = utcnow() - timedelta(days=1)
        db.session.commit()

        claimed = [_claim(client, headers, f"job-{n}") for n in range(3)]

        assert [r.status_code for r in claimed] == [200, 200, 402]
        assert stale.id not in {r.get_json().get("credit", {}).get("id") for r in claimed[:2]}

    def test_normalize_keeps_used_credits(self, client, auth_headers, make_purchase):
        from src.services.credit_ledger import CreditLedger

        purchase = make_purchase(status="completed")
        now = utcnow()
        db.session.add_all([
            Credit(purchase_id=purchase.id, user_id="employer-1", type="job_post",
                   is_used=False, expires_at=now + timedelta(days=30)),
            Credit(purchase_id=purchase.id, user_id="employer-1", type="job_post",
                   is_used=False, expires_at=now + timedelta(days=30)),
            Credit(purchase_id=purchase.id, user_id="employer-1", type="featured_post",
                   is_used=True, used_at=now, used_for_job_id="job-1",
                   expires_at=now + timedelta(days=30)),
        ])
        db.session.commit()

        ledger = CreditLedger()
        ledger.normalize_credit_types("employer-1")
        first = sorted((c.type, c.is_used) for c in Credit.query.all())
        assert ledger.normalize_credit_types("employer-1") == {"converted": 0}
        second = sorted((c.type, c.is_used) for c in Credit.query.all())

        assert first == [("featured_post", True), ("universal", False), ("universal", False)]
        assert second == first


class TestMixedBundleLifecycle:

    def test_addons_issue_their_own_credit_types(self, client, auth_headers):
        headers = auth_headers()
        _checkout(client, headers, "cs_bundle", tier="standard",
                  addons=["feature_and_social_bundle", "repost"])
        _deliver(client, "cs_bundle", "checkout.session.async_payment_succeeded")

        response = client.get("/api/v1/credits/history", headers=headers)
        stats = response.get_json()["stats"]

        assert stats["available_by_type"] == {
            "job_post": 5, "featured_post": 2, "social_graphic": 1,
            "repost": 1, "universal": 0}
        assert stats["total_spent_cents"] == 19900 + 3900 + 2900
        assert stats["purchases_completed"] == 1
