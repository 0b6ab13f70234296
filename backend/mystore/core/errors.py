"""Error taxonomy shared by the service layer and the HTTP façade."""
from __future__ import annotations

from enum import Enum
from typing import Any

from fastapi import status


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    BAD_REQUEST = "bad_request"
    AUTH = "auth"
    UNAVAILABLE = "unavailable"
    GATEWAY = "gateway"
    TRANSIENT_STORAGE = "transient_storage"
    INTERNAL = "internal"


STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.BAD_REQUEST: status.HTTP_400_BAD_REQUEST,
    ErrorKind.AUTH: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.GATEWAY: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.TRANSIENT_STORAGE: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

INTERNAL_ERROR_MESSAGE = "Internal server error"


class ServiceError(RuntimeError):
    """Classified failure raised by services.

    ``diagnostics`` holds provider or driver details for logs only; the façade
    never serializes it.
    """

    def __init__(self, kind: ErrorKind, message: str, diagnostics: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.diagnostics = diagnostics or {}

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.kind]

    def __repr__(self) -> str:
        return f"ServiceError(kind={self.kind.value!r}, message={self.message!r})"

    @classmethod
    def not_found(cls, message: str) -> "ServiceError":
        return cls(ErrorKind.NOT_FOUND, message)

    @classmethod
    def validation(cls, message: str) -> "ServiceError":
        return cls(ErrorKind.VALIDATION, message)

    @classmethod
    def bad_request(cls, message: str) -> "ServiceError":
        return cls(ErrorKind.BAD_REQUEST, message)


def public_message(error: ServiceError) -> str:
    """Message safe to return to clients."""
    if error.kind is ErrorKind.INTERNAL:
        return INTERNAL_ERROR_MESSAGE
    return error.message
