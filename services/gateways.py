"""
Contracts for the external collaborators the renewal core calls into.

- PaymentGateway: charges a stored payment method.
- Registrar: extends a domain registration.
- Notifier: tells the account holder (and support) what happened.

All three are remote, fallible, possibly slow and possibly duplicating. Callers
pass an idempotency key so that a retried call is recognized as the same
logical operation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Protocol

from domain.renewal_event import RenewalEvent


class ChargeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    DECLINED = "declined"  # terminal: needs customer action
    UNAVAILABLE = "unavailable"  # transient: retry later


@dataclass(frozen=True, slots=True)
class ChargeResult:
    status: ChargeStatus
    transaction_id: Optional[str] = None
    message: Optional[str] = None
    requires_action: bool = False

    def __post_init__(self) -> None:
        if self.status == ChargeStatus.SUCCEEDED and not self.transaction_id:
            raise ValueError("successful charge requires transaction_id")

    @property
    def succeeded(self) -> bool:
        return self.status == ChargeStatus.SUCCEEDED

    @staticmethod
    def success(transaction_id: str) -> "ChargeResult":
        return ChargeResult(status=ChargeStatus.SUCCEEDED, transaction_id=transaction_id)

    @staticmethod
    def declined(message: str, *, requires_action: bool = False, transaction_id: Optional[str] = None) -> "ChargeResult":
        return ChargeResult(
            status=ChargeStatus.DECLINED,
            transaction_id=transaction_id,
            message=message,
            requires_action=requires_action,
        )

    @staticmethod
    def unavailable(message: str) -> "ChargeResult":
        return ChargeResult(status=ChargeStatus.UNAVAILABLE, message=message)


@dataclass(frozen=True, slots=True)
class ExtensionResult:
    success: bool
    new_expires_at: Optional[datetime] = None
    confirmation_id: Optional[str] = None
    message: Optional[str] = None

    @staticmethod
    def failure(message: str) -> "ExtensionResult":
        return ExtensionResult(success=False, message=message)


class PaymentGateway(Protocol):
    def charge(
        self,
        payment_method_ref: str,
        amount_minor_units: int,
        currency: str,
        idempotency_key: str,
    ) -> ChargeResult:
        ...


class Registrar(Protocol):
    def extend(self, domain_ref: str, years: int, idempotency_key: str) -> ExtensionResult:
        ...


class Notifier(Protocol):
    def notify(self, event: RenewalEvent) -> None:
        ...


__all__ = [
    "ChargeResult",
    "ChargeStatus",
    "ExtensionResult",
    "Notifier",
    "PaymentGateway",
    "Registrar",
]
