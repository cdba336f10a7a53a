# Overview: Error taxonomy for the cash drawer engine.

"""
Caja error taxonomy.

Every business-rule failure raised by the services is a CajaError subclass.
Each carries a stable machine-readable `kind` and an HTTP status so the
route layer can render it without inspecting the message.

None of these are retried: they represent bad input or a rule violation,
not a transient fault.
"""

from __future__ import annotations


class CajaError(Exception):
    """Base class for all caja business errors."""

    kind = "caja_error"
    status_code = 400

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        payload = {"error": self.message, "kind": self.kind}
        if self.field:
            payload["field"] = self.field
        return payload


class ValidationError(CajaError, ValueError):
    """400-level input problem (bad amount, missing field, unknown enum value)."""

    kind = "validation_error"
    status_code = 400


class StateError(CajaError):
    """Operation not valid for the entity's current lifecycle state."""

    kind = "state_error"
    status_code = 409


class ConflictError(CajaError):
    """409-level uniqueness/concurrency conflict. Refetch state and retry."""

    kind = "conflict_error"
    status_code = 409


class NotFoundError(CajaError):
    """Entity missing, or owned by another tenant. The caller cannot tell which."""

    kind = "not_found"
    status_code = 404


class LimitError(CajaError):
    """Plan/subscription constraint. Remedy is an upgrade, not a retry."""

    kind = "limit_error"
    status_code = 402


class LedgerClassificationError(RuntimeError):
    """A transaction type has no inflow/outflow classification (programming error)."""


class LedgerImmutabilityError(RuntimeError):
    """A flush tried to modify or delete a frozen ledger record."""
