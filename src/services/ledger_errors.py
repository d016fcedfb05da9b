"""
Exceptions raised by the purchase and credit ledger.

Every error carries a machine-readable ``code`` and the HTTP status the API
answers with. The classes fall into four groups:

- validation: rejected before any state change (400)
- business outcome: expected, not a fault (402)
- integrity: bug or tampering, logged at error level with full context
- external dependency: retryable infrastructure failure (502)
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base exception for ledger-related errors."""

    http_status = 500
    category = "internal"

    def __init__(self, detail: str, code: str = "ledger_error"):
        self.detail = detail
        self.code = code
        super().__init__(detail)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.detail}


# =============================================================================
# Validation
# =============================================================================


class CatalogValidationError(LedgerError):
    http_status = 400
    category = "validation"


class UnknownTierError(CatalogValidationError):
    """Raised when a checkout names a tier the catalog does not sell."""

    def __init__(self, tier: str):
        self.tier = tier
        super().__init__(f"Unknown tier: {tier!r}", code="unknown_tier")


class UnknownAddonError(CatalogValidationError):
    """Raised when a checkout names an add-on the catalog does not sell."""

    def __init__(self, addon: str):
        self.addon = addon
        super().__init__(f"Unknown add-on: {addon!r}", code="unknown_addon")


class UnknownCreditPackError(CatalogValidationError):
    def __init__(self, credit_pack: str):
        self.credit_pack = credit_pack
        super().__init__(
            f"Unknown credit pack: {credit_pack!r}", code="unknown_credit_pack"
        )


class InvalidBundleError(CatalogValidationError):
    """Raised for a tier/pack/add-on combination that cannot be sold together."""

    def __init__(self, detail: str):
        super().__init__(detail, code="invalid_bundle")


# =============================================================================
# Business outcome
# =============================================================================


class InsufficientCreditsError(LedgerError):
    """Raised when no unused, unexpired credit can satisfy a claim."""

    http_status = 402
    category = "business"

    def __init__(
        self,
        credit_type: str,
        detail: str | None = None,
    ):
        self.credit_type = credit_type
        super().__init__(
            detail or f"No available credits of type {credit_type!r}.",
            code="insufficient_credits",
        )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["credit_type"] = self.credit_type
        return data


# =============================================================================
# Idempotency non-event
# =============================================================================


class AlreadyFulfilledError(LedgerError):
    """
    Signals that a purchase already reached a terminal state.

    Never surfaced to callers: the fulfillment handler turns it into a
    successful result flagged ``already_processed``.
    """

    http_status = 200
    category = "idempotency"

    def __init__(self, provider_session_id: str, status: str):
        self.provider_session_id = provider_session_id
        self.status = status
        super().__init__(
            f"Purchase for session {provider_session_id} is already {status}.",
            code="already_fulfilled",
        )


# =============================================================================
# Integrity
# =============================================================================


class IntegrityViolationError(LedgerError):
    category = "integrity"


class PurchaseNotFoundError(IntegrityViolationError):
    """Raised when a fulfillment names a provider session we never opened."""

    http_status = 404

    def __init__(self, provider_session_id: str):
        self.provider_session_id = provider_session_id
        super().__init__(
            f"No purchase found for provider session {provider_session_id}.",
            code="purchase_not_found",
        )


class CreditNotFoundError(IntegrityViolationError):
    http_status = 404

    def __init__(self, credit_id: str):
        self.credit_id = credit_id
        super().__init__(f"Credit {credit_id} not found.", code="credit_not_found")


class CreditBindingError(IntegrityViolationError):
    """Raised when binding a credit that is unused or already bound to a job."""

    http_status = 409

    def __init__(self, credit_id: str, detail: str):
        self.credit_id = credit_id
        super().__init__(detail, code="credit_binding_conflict")


# =============================================================================
# External dependency
# =============================================================================


class CheckoutProviderError(LedgerError):
    """Raised when the payment provider could not open a checkout session."""

    http_status = 502
    category = "external"

    def __init__(self, detail: str, retryable: bool = True):
        self.retryable = retryable
        super().__init__(detail, code="checkout_provider_error")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["retryable"] = self.retryable
        return data
