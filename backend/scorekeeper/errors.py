from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    AUTHENTICATION = "authentication"
    PERMISSION = "permission"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    EMPTY_AUDIENCE = "empty_audience"
    CONFLICT = "conflict"
    DELIVERY = "delivery"
    INFRASTRUCTURE_TRANSIENT = "infrastructure_transient"


class ServiceError(Exception):
    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, **self.details}


class AuthenticationError(ServiceError):
    kind = ErrorKind.AUTHENTICATION


class PermissionDeniedError(ServiceError):
    kind = ErrorKind.PERMISSION


class ValidationError(ServiceError):
    kind = ErrorKind.VALIDATION


class NotFoundError(ServiceError):
    kind = ErrorKind.NOT_FOUND


class ConflictError(ServiceError):
    kind = ErrorKind.CONFLICT


class EmptyAudienceError(ServiceError):
    """Raised when an audience yields nothing to deliver to.

    ``reason`` is ``no_users`` when the selector matched nobody and
    ``no_deliverable_endpoints`` when users matched but none registered a token.
    """

    kind = ErrorKind.EMPTY_AUDIENCE
    NO_USERS = "no_users"
    NO_DELIVERABLE_ENDPOINTS = "no_deliverable_endpoints"

    @property
    def reason(self) -> Optional[str]:
        return self.details.get("reason")


class DeliveryError(ServiceError):
    kind = ErrorKind.DELIVERY


class InfrastructureTransientError(ServiceError):
    kind = ErrorKind.INFRASTRUCTURE_TRANSIENT


@dataclass(frozen=True)
class Result(Generic[T]):
    value: Optional[T] = None
    error: Optional[ServiceError] = field(default=None)

    @classmethod
    def ok(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, error: ServiceError) -> "Result[T]":
        return cls(error=error)

    @property
    def is_ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
