"""Payment error taxonomy.

Every error carries the HTTP status class the API layer maps it to, so routers
can convert with ``HTTPException(status_code=e.status_code, detail=str(e))``.
"""


class PaymentError(RuntimeError):
    status_code = 400


class GatewayTimeoutError(PaymentError):
    """Transport exceeded its deadline. Retryable by the caller, never inside the core."""

    status_code = 504

    def __init__(self, message: str = "Gateway timeout"):
        super().__init__(message)


class GatewayError(PaymentError):
    """Provider answered with a non-2xx HTTP status."""

    def __init__(self, message: str, status: int, data: dict | None = None):
        super().__init__(message)
        self.status = status
        self.data = data if data is not None else {}


class GatewayInitializationFailed(PaymentError):
    pass


class VerificationFailed(PaymentError):
    """The verify call itself failed; an unsuccessful payment is not an error."""


class AmountMismatch(PaymentError):
    def __init__(self, reference: str, expected, paid):
        super().__init__("Payment amount mismatch")
        self.reference = reference
        self.expected = expected
        self.paid = paid


class TransactionNotFound(PaymentError):
    def __init__(self, reference: str):
        super().__init__(f"Transaction not found: {reference}")
        self.reference = reference


class UnsupportedGateway(PaymentError):
    def __init__(self, gateway: str):
        super().__init__(f"Unsupported gateway: {gateway}")
        self.gateway = gateway


GATEWAY_TIMEOUT_MESSAGE = "Payment gateway timeout. Please try again."
