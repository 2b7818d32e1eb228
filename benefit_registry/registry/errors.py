"""Registry error kinds.

Every rejected operation raises one of the ``RegistryError`` subclasses
below before touching any state. Callers can catch a specific class or
branch on ``exc.kind``.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Distinct reasons a registry operation can be rejected."""

    unauthorized = "Unauthorized"
    not_found = "NotFound"
    already_exists = "AlreadyExists"
    capacity_exceeded = "CapacityExceeded"
    payment_required = "PaymentRequired"


class RegistryError(Exception):
    """Base class for all registry rejections."""

    kind: ErrorKind

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class Unauthorized(RegistryError):
    """Caller lacks authorization for the target scope."""

    kind = ErrorKind.unauthorized


class NotFound(RegistryError):
    """A referenced benefit or token does not exist."""

    kind = ErrorKind.not_found


class AlreadyExists(RegistryError):
    """Attach called with a benefit id that is in use or retired."""

    kind = ErrorKind.already_exists


class CapacityExceeded(RegistryError):
    """Attach would exceed the per-token maximum."""

    kind = ErrorKind.capacity_exceeded


class PaymentRequired(RegistryError):
    """Payable attach called with insufficient payment."""

    kind = ErrorKind.payment_required
