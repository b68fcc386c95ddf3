"""Typed views over Asaas API responses.

Only the fields the checkout flow reads are extracted; everything else in
the gateway payload is dropped on purpose (and never logged).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Any


class ChargeStatus(str, Enum):
    PENDING = "PENDING"
    RECEIVED = "RECEIVED"
    CONFIRMED = "CONFIRMED"
    RECEIVED_IN_CASH = "RECEIVED_IN_CASH"
    OVERDUE = "OVERDUE"
    REFUNDED = "REFUNDED"
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def _missing_(cls, value: object) -> ChargeStatus:
        # Statuses added by the gateway later must not crash polling
        return cls.UNKNOWN

    @property
    def is_paid(self) -> bool:
        return self in _PAID_STATUSES


_PAID_STATUSES = frozenset(
    {ChargeStatus.RECEIVED, ChargeStatus.CONFIRMED, ChargeStatus.RECEIVED_IN_CASH}
)


class BillingType(str, Enum):
    PIX = "PIX"
    BOLETO = "BOLETO"

    @classmethod
    def from_method_name(cls, name: str) -> BillingType:
        """Map a payment method name ("pix", "Boleto") to its billing type.

        Raises:
            ValueError: If the name is not an automated payment method.
        """
        return cls(name.strip().upper())


@dataclass(frozen=True)
class PixQrCode:
    payload: str
    encoded_image: str
    expiration_date: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> PixQrCode:
        return cls(
            payload=data.get("payload") or "",
            encoded_image=data.get("encodedImage") or "",
            expiration_date=data.get("expirationDate"),
        )


@dataclass(frozen=True)
class ExternalCharge:
    """A charge created at the gateway, alive only for one checkout session."""

    id: str
    amount: Decimal
    billing_type: BillingType
    status: ChargeStatus
    customer_id: str | None = None
    description: str | None = None
    invoice_url: str | None = None
    bank_slip_url: str | None = None
    external_reference: str | None = None
    pix_qr_code: PixQrCode | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> ExternalCharge:
        return cls(
            id=data["id"],
            amount=Decimal(str(data.get("value", 0))),
            billing_type=BillingType(data.get("billingType", "PIX")),
            status=ChargeStatus(data.get("status", "UNKNOWN")),
            customer_id=data.get("customer"),
            description=data.get("description"),
            invoice_url=data.get("invoiceUrl"),
            bank_slip_url=data.get("bankSlipUrl"),
            external_reference=data.get("externalReference"),
        )

    def with_qr_code(self, qr_code: PixQrCode) -> ExternalCharge:
        return replace(self, pix_qr_code=qr_code)

    def artifact(self) -> dict[str, Any]:
        """What the operator shows the payer: QR code for PIX, slip URL for boleto."""
        if self.billing_type is BillingType.PIX:
            qr = self.pix_qr_code
            return {
                "type": "pix_qr_code",
                "payload": qr.payload if qr else None,
                "encoded_image": qr.encoded_image if qr else None,
                "expiration_date": qr.expiration_date if qr else None,
            }
        return {
            "type": "boleto",
            "bank_slip_url": self.bank_slip_url,
            "invoice_url": self.invoice_url,
        }
