"""Error types raised while verifying and relaying a payment proof."""

from typing import Any


class PaymentError(Exception):
    """Base class for payment pipeline rejections.

    Attributes:
        message: Human-readable message returned to the caller.
        detail: Extra JSON-serializable fields merged into the response body.
    """

    status_code = 400

    def __init__(self, message: str, detail: dict[str, Any] | None = None):
        self.message = message
        self.detail = dict(detail or {})
        super().__init__(message)

    def to_response_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        body.update(self.detail)
        return body


class MalformedProofError(PaymentError):
    """The payment header could not be decoded into a proof document."""


class ProtocolMismatchError(PaymentError):
    """Unsupported x402 version, scheme or network."""


class MissingFieldError(PaymentError):
    """A required proof field is absent.

    Attributes:
        field: Dotted path of the missing field.
    """

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Missing field: {field}", {"field": field})


class BadSignatureError(PaymentError):
    """The signature does not recover to the authorization's `from`.

    Attributes:
        recovered: The recovered signer, or None when recovery itself failed.
        expected: The claimed payer.
    """

    def __init__(self, message: str, recovered: str | None, expected: str):
        self.recovered = recovered
        self.expected = expected
        super().__init__(message, {"recovered": recovered, "expected": expected})


class AuthorizationExpiredError(PaymentError):
    """`now >= validBefore`."""


class NotYetValidError(PaymentError):
    """`validAfter` lies in the future."""


class AuthorizationAlreadyUsedError(PaymentError):
    """The asset contract reports the (from, nonce) pair as consumed."""


class ServerSidePaymentError(PaymentError):
    """Failures reported as `{error, reason}` with a 500 status."""

    status_code = 500

    def __init__(self, message: str, reason: str):
        self.reason = reason
        super().__init__(message, {"reason": reason})


class ConfigurationError(ServerSidePaymentError):
    """No usable relayer identity is configured."""


class RelayFailedError(ServerSidePaymentError):
    """Submission or confirmation of the transfer failed.

    Attributes:
        tx_hash: Transaction hash when the transaction reached the network.
    """

    def __init__(self, reason: str, tx_hash: str | None = None):
        self.tx_hash = tx_hash
        super().__init__("Relay failed", reason)
        if tx_hash:
            self.detail["txHash"] = tx_hash


class InternalError(ServerSidePaymentError):
    """Anything the pipeline did not anticipate."""

    def __init__(self, reason: str):
        super().__init__("Internal error", reason)
