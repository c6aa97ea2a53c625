from __future__ import annotations


class LiveClassError(Exception):
    """Base error for live-class operations; carries the HTTP status the route should answer with."""

    status_code = 400

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        super().__init__(detail)
        if status_code is not None:
            self.status_code = status_code
        self.detail = detail


class ValidationError(LiveClassError):
    status_code = 400


class NotFoundError(LiveClassError):
    status_code = 404


class InvalidSignature(LiveClassError):
    status_code = 400

    def __init__(self, detail: str = "Payment signature verification failed") -> None:
        super().__init__(detail)


class InvalidState(LiveClassError):
    status_code = 400


class NotRegistered(LiveClassError):
    status_code = 400

    def __init__(self, detail: str = "You must register for this class first") -> None:
        super().__init__(detail)


class NotApproved(LiveClassError):
    status_code = 403

    def __init__(
        self, detail: str = "Your registration is pending admin approval"
    ) -> None:
        super().__init__(detail)


class PaymentGatewayError(LiveClassError):
    status_code = 502


class ProvisioningError(LiveClassError):
    status_code = 502


class ConfigurationError(LiveClassError):
    status_code = 503


__all__ = [
    "ConfigurationError",
    "InvalidSignature",
    "InvalidState",
    "LiveClassError",
    "NotApproved",
    "NotFoundError",
    "NotRegistered",
    "PaymentGatewayError",
    "ProvisioningError",
    "ValidationError",
]
