# -*- coding: utf-8 -*-
"""
Per-request context for the credit ledger API.

Each request gets an id, taken from a well-formed ``X-Request-ID`` header or
generated, and echoed back on the response. Checkout stores nothing about the
id, but logging it on both the checkout and the webhook lets support tie a
Stripe session to the API calls around it. The auth decorators add the caller's
user id and role once the bearer token has been verified.
"""

import time
import uuid
from typing import Optional

from flask import Flask, Response, g, request

REQUEST_ID_HEADER = 'X-Request-ID'


def _incoming_request_id() -> Optional[str]:
    candidate = request.headers.get(REQUEST_ID_HEADER)
    if not candidate:
        return None
    try:
        return str(uuid.UUID(candidate))
    except ValueError:
        # Client-supplied ids end up in logs; only accept UUIDs
        return None


class RequestContextMiddleware:
    """Assigns ``g.request_id`` and resets the auth context for each request."""

    def __init__(self, app: Flask):
        app.before_request(self._open)
        app.after_request(self._close)

    def _open(self):
        g.request_id = _incoming_request_id() or str(uuid.uuid4())
        g.request_started = time.perf_counter()
        g.user_id = None
        g.user_role = None

    def _close(self, response: Response) -> Response:
        request_id = getattr(g, 'request_id', None)
        if request_id:
            response.headers[REQUEST_ID_HEADER] = request_id
        started = getattr(g, 'request_started', None)
        if started is not None:
            response.headers['X-Response-Time'] = (
                f"{round((time.perf_counter() - started) * 1000, 2)}ms")
        return response


def get_request_id() -> Optional[str]:
    return getattr(g, 'request_id', None)


def get_request_context() -> dict:
    """Fields attached to every log record written during a request."""
    context = {
        'request_id': getattr(g, 'request_id', None),
        'method': request.method,
        'path': request.path,
    }
    if getattr(g, 'user_id', None):
        context['user_id'] = g.user_id
    if getattr(g, 'user_role', None):
        context['user_role'] = g.user_role
    return context


def set_auth_context(user_id: Optional[str] = None, role: Optional[str] = None):
    """Record the verified caller for authorization checks and logging."""
    if user_id:
        g.user_id = user_id
    if role:
        g.user_role = role


def init_request_context(app: Flask) -> None:
    RequestContextMiddleware(app)
