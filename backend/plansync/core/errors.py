"""Billing error taxonomy.

Each error carries the HTTP status the API answers with. Routes let these
propagate; the handler registered in ``plansync.main`` renders them the same
way FastAPI renders ``HTTPException`` (``{"detail": message}``).
"""


class BillingError(RuntimeError):
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(BillingError):
    """Missing or malformed request data (plan id, signature header)."""

    status_code = 400


class PreconditionFailed(BillingError):
    """The user's billing state does not allow the requested action."""

    status_code = 400


class NotFound(BillingError):
    status_code = 404


class Misconfigured(BillingError):
    """Catalog data is missing a required Stripe reference. Operator error."""

    status_code = 500


class InternalInconsistency(BillingError):
    """Local and Stripe state disagree in a way no handler resolves."""

    status_code = 500


class ProviderError(BillingError):
    """Stripe rejected the call or could not be reached."""

    status_code = 502


class ProviderUnavailable(ProviderError):
    """Stripe could not be reached or failed on its side. Retrying may succeed."""


class UnrecognizedStatus(ProviderError):
    """Stripe sent a subscription status outside the known vocabulary."""


class VerificationFailure(BillingError):
    """Webhook payload failed signature verification."""

    status_code = 400

