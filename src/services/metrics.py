# -*- coding: utf-8 -*-
"""
Prometheus metrics for the credit ledger.

HTTP traffic is counted per route template (``/api/v1/credits/<credit_id>/bind``,
never the concrete id). The ledger counters follow a purchase through its life:
checkout opened, fulfillment applied or replayed, credits issued, credits
claimed or refused.
"""

import os
import time
from typing import Optional

from flask import Flask, current_app, g, has_app_context, request
from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram
from prometheus_client.exposition import CONTENT_TYPE_LATEST, generate_latest


def init_metrics(app: Flask) -> None:
    """Create the metrics service and, when enabled, the ``/metrics`` route."""
    service = MetricsService()
    app.extensions['metrics'] = service
    if not service.enabled:
        return

    @app.before_request
    def _start_timer():
        g.metrics_start = time.perf_counter()

    @app.after_request
    def _observe(response):
        started = getattr(g, 'metrics_start', None)
        if started is not None:
            service.record_http_request(
                route=request.url_rule.rule if request.url_rule else 'unmatched',
                method=request.method,
                status_code=response.status_code,
                duration_seconds=time.perf_counter() - started,
            )
        return response

    @app.route("/metrics")
    def metrics():
        return service.get_metrics(), 200, {'Content-Type': CONTENT_TYPE_LATEST}


def get_metrics_service() -> Optional['MetricsService']:
    """The app's metrics service, or None outside an app context."""
    if has_app_context():
        return current_app.extensions.get('metrics')
    return None


class MetricsService:
    """Holds the ledger's Prometheus collectors."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.enabled = os.environ.get(
            "JOBCREDITS_METRICS_ENABLED", "true").lower() == "true"
        self.registry = registry if registry is not None else REGISTRY
        if not self.enabled:
            return

        self.http_requests_total = Counter(
            "jobcredits_http_requests_total",
            "API requests by route template, method and status.",
            ["route", "method", "status"],
            registry=self.registry,
        )
        self.http_request_duration_seconds = Histogram(
            "jobcredits_http_request_duration_seconds",
            "API request latency by route template.",
            ["route", "method"],
            registry=self.registry,
        )
        self.checkouts_total = Counter(
            "jobcredits_checkouts_total",
            "Checkout attempts by tier or credit pack and result.",
            ["product", "result"],
            registry=self.registry,
        )
        self.fulfillments_total = Counter(
            "jobcredits_fulfillments_total",
            "Payment outcomes processed, by outcome and whether they were applied.",
            ["outcome", "result"],
            registry=self.registry,
        )
        self.credits_issued_total = Counter(
            "jobcredits_credits_issued_total",
            "Credits issued by completed purchases.",
            ["type"],
            registry=self.registry,
        )
        self.credit_claims_total = Counter(
            "jobcredits_credit_claims_total",
            "Credit claims by requested type and result.",
            ["type", "result"],
            registry=self.registry,
        )

    def record_http_request(self, route: str, method: str, status_code: int,
                            duration_seconds: float):
        if self.enabled:
            self.http_requests_total.labels(
                route=route, method=method, status=status_code).inc()
            self.http_request_duration_seconds.labels(
                route=route, method=method).observe(duration_seconds)

    def record_checkout(self, product: str, result: str):
        if self.enabled:
            self.checkouts_total.labels(product=product, result=result).inc()

    def record_fulfillment(self, outcome: str, result: str):
        if self.enabled:
            self.fulfillments_total.labels(outcome=outcome, result=result).inc()

    def record_credits_issued(self, credit_type: str, count: int):
        if self.enabled and count:
            self.credits_issued_total.labels(type=credit_type).inc(count)

    def record_credit_claim(self, credit_type: str, result: str):
        if self.enabled:
            self.credit_claims_total.labels(type=credit_type, result=result).inc()

    def get_metrics(self) -> bytes:
        return generate_latest(self.registry)
