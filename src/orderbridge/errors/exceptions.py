"""Custom exception classes for the order bridge."""


class OrderBridgeError(Exception):
    """Base exception for the order bridge."""

    def __init__(self, code: str, message: str, details=None, status_code: int = 500):
        self.code = code
        self.message = message
        self.details = details
        self.status_code = status_code
        super().__init__(message)


class ValidationError(OrderBridgeError):
    """Schema or request validation failure. Never retried."""

    def __init__(self, message: str, details=None):
        super().__init__("VALIDATION_ERROR", message, details, status_code=400)


class NotFoundError(OrderBridgeError):
    """Resource not found (or not visible in the caller's owner scope)."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            "NOT_FOUND",
            f"{resource} '{resource_id}' not found",
            status_code=404,
        )


class AuthenticationError(OrderBridgeError):
    """Authentication required or credential invalid."""

    def __init__(self, message: str = "Authentication required", status_code: int = 401):
        super().__init__("AUTHENTICATION_ERROR", message, status_code=status_code)


class UnknownWebhookError(AuthenticationError):
    """Inbound secret does not match an active webhook.

    Rendered as 404 so callers cannot probe for existing secrets.
    """

    def __init__(self):
        super().__init__("Webhook not found", status_code=404)


class ConflictError(OrderBridgeError):
    """Resource state conflict."""

    def __init__(self, message: str):
        super().__init__("CONFLICT", message, status_code=409)


class UnsupportedProviderError(OrderBridgeError):
    """No decoder or capability registered for a provider combination."""

    def __init__(self, message: str, details=None):
        super().__init__("UNSUPPORTED_PROVIDER", message, details, status_code=422)


class PayloadDecodeError(OrderBridgeError):
    """Provider payload could not be parsed into a domain event."""

    def __init__(self, message: str, details=None):
        super().__init__("PAYLOAD_DECODE_ERROR", message, details, status_code=400)


class IncompleteOrderDataError(OrderBridgeError):
    """Order data is missing fields required for dispatch; needs a human fix."""

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(
            "INCOMPLETE_ORDER_DATA",
            message,
            {"missing": missing} if missing else None,
            status_code=422,
        )


class InvalidTransitionError(OrderBridgeError):
    """Delivery status change that is not strictly forward."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(
            "INVALID_TRANSITION",
            f"Cannot move delivery from '{current}' to '{target}'",
            {"current": current, "target": target},
            status_code=409,
        )


class ProviderError(OrderBridgeError):
    """Outbound provider call failed."""

    transient: bool = False

    def __init__(self, provider: str, message: str, response_status: int | None = None, response_body=None):
        self.provider = provider
        self.response_status = response_status
        self.response_body = response_body
        super().__init__(
            "PROVIDER_ERROR",
            f"{provider}: {message}",
            {"response_status": response_status} if response_status else None,
            status_code=502,
        )


class TransientProviderError(ProviderError):
    """Timeout, network failure or 5xx. Retried with backoff."""

    transient = True


class PermanentProviderError(ProviderError):
    """Provider rejected the request (4xx). Not retried."""
