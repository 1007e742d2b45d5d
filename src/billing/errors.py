"""Error taxonomy for payment notification handling."""


class BillingError(RuntimeError):
    """Base billing domain error."""


class AuthRejected(BillingError):
    """Webhook call did not present the configured shared secret."""


class InvalidRequest(BillingError):
    """Request is malformed (bad email, processor 4xx)."""

    def __init__(self, message: str, *, status: int | None = None, details: object = None) -> None:
        super().__init__(message)
        self.status = status
        self.details = details


class UpstreamUnavailable(BillingError):
    """Processor unreachable, timed out, or answered 5xx."""

    def __init__(self, message: str, *, status: int | None = None, details: object = None) -> None:
        super().__init__(message)
        self.status = status
        self.details = details


class PaymentNotFetched(BillingError):
    """Canonical payment (or its merchant order) could not be read; sender should retry."""

    def __init__(self, message: str, *, resource_id: str | None = None, status: int | None = None) -> None:
        super().__init__(message)
        self.resource_id = resource_id
        self.status = status


class InvalidCorrelationToken(BillingError):
    """external_reference does not follow `email|plan|channel`."""

    def __init__(self, message: str, *, token: str | None = None) -> None:
        super().__init__(message)
        self.token = token
