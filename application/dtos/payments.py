"""
Payment DTOs (Pydantic v2) used at application boundaries.

Covers inbound requests (card instrument, purchase/authorize, follow-up
operations), the tagged gateway result returned by adapters, and the read
views handed back to the transport layer.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Any, Optional, Literal, Union
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.types import condecimal

from application.dto import DTOBase, Money
from shared.codes.payment_codes import (
    OUTCOME_APPROVED,
    OUTCOME_DECLINED,
    OUTCOME_ERROR,
)

# Common ISO-4217 currencies (extend as needed)
ISO_4217 = {
    "USD", "EUR", "GBP", "CNY", "JPY", "KRW", "HKD", "AUD", "CAD", "SGD",
}

Amount = condecimal(gt=0, max_digits=18, decimal_places=2)

# Issuer prefixes, checked in order
CARD_BRANDS = (
    ("Amex", re.compile(r"^3[47]")),
    ("Diners", re.compile(r"^3(0[0-5]|[68])")),
    ("JCB", re.compile(r"^35")),
    ("Visa", re.compile(r"^4")),
    ("Mastercard", re.compile(r"^(5[1-5]|2[2-7])")),
    ("Discover", re.compile(r"^6(011|5)")),
)


def luhn_valid(number: str) -> bool:
    """Luhn (mod 10) checksum over a digit string."""
    total = 0
    for i, ch in enumerate(reversed(number)):
        d = int(ch)
        if i % 2 == 1:
            d *= 2
            if d > 9:
                d -= 9
        total += d
    return total % 10 == 0


def detect_card_brand(number: str) -> str:
    for brand, pattern in CARD_BRANDS:
        if pattern.match(number):
            return brand
    return "Unknown"


def _validate_currency(v: str) -> str:
    u = (v or "").upper()
    if len(u) != 3 or not u.isalpha():
        raise ValueError("currency must be ISO-4217 alpha-3")
    if u not in ISO_4217:
        raise ValueError("unsupported currency")
    return u


class CardInstrument(BaseModel):
    """Full card data. Lives only for the duration of one remote call."""

    card_number: str = Field(..., min_length=12, max_length=23)
    expiration_month: int = Field(..., ge=1, le=12)
    expiration_year: int
    cvv: str = Field(..., pattern=r"^\d{3,4}$")
    name_on_card: Optional[str] = Field(default=None, max_length=100)

    @field_validator("card_number")
    @classmethod
    def _normalize_and_check_number(cls, v: str) -> str:
        digits = v.replace(" ", "").replace("-", "")
        if not digits.isdigit() or not 12 <= len(digits) <= 19:
            raise ValueError("card number must contain 12-19 digits")
        if not luhn_valid(digits):
            raise ValueError("card number failed checksum")
        return digits

    @model_validator(mode="after")
    def _check_not_expired(self):
        now = datetime.now(timezone.utc)
        if not now.year <= self.expiration_year <= now.year + 20:
            raise ValueError("expiration year out of range")
        if (self.expiration_year, self.expiration_month) < (now.year, now.month):
            raise ValueError("card is expired")
        return self

    @property
    def last_four(self) -> str:
        return self.card_number[-4:]

    @property
    def brand(self) -> str:
        return detect_card_brand(self.card_number)

    @property
    def expiration_date(self) -> str:
        return f"{self.expiration_year:04d}-{self.expiration_month:02d}"

    def __repr__(self) -> str:
        return f"CardInstrument(last_four={self.last_four!r}, expiration={self.expiration_date!r})"

    __str__ = __repr__


class MaskedInstrument(BaseModel):
    """What the gateway's refund contract needs: masked number + expiry."""

    masked_number: str
    expiration_date: str  # YYYY-MM


class PaymentRequest(BaseModel):
    """Purchase / Authorize input. Idempotency key is mandatory."""

    customer_id: str = Field(..., min_length=1, max_length=100)
    amount: Amount  # type: ignore[valid-type]
    currency: str = Field(default="USD")
    card: CardInstrument
    description: Optional[str] = Field(default=None, max_length=500)
    idempotency_key: str = Field(..., min_length=1, max_length=100)

    @field_validator("currency")
    @classmethod
    def _upper_and_validate_currency(cls, v: str) -> str:
        return _validate_currency(v)


class CaptureRequest(BaseModel):
    # None captures the remaining authorized amount
    amount: Optional[Amount] = None  # type: ignore[valid-type]


class RefundRequest(BaseModel):
    amount: Amount  # type: ignore[valid-type]
    reason: Optional[str] = Field(default=None, max_length=500)


class ExecuteParams(BaseModel):
    """Parameters of a follow-up operation dispatched through execute()."""

    transaction_ref: str = Field(..., min_length=1, max_length=100)
    amount: Optional[Amount] = None  # type: ignore[valid-type]
    reason: Optional[str] = Field(default=None, max_length=500)
    force: bool = False


# ---- Gateway result (tagged union) ----

class GatewayApproved(BaseModel):
    outcome: Literal["approved"] = OUTCOME_APPROVED
    remote_reference: str
    code: Optional[str] = None
    message: Optional[str] = None


class GatewayDeclined(BaseModel):
    outcome: Literal["declined"] = OUTCOME_DECLINED
    code: Optional[str] = None
    message: Optional[str] = None
    held_for_review: bool = False


class GatewayError(BaseModel):
    outcome: Literal["error"] = OUTCOME_ERROR
    code: Optional[str] = None
    message: Optional[str] = None


GatewayResult = Annotated[
    Union[GatewayApproved, GatewayDeclined, GatewayError],
    Field(discriminator="outcome"),
]


# ---- Read views ----

class TransactionView(DTOBase):
    id: str
    reference: str
    order_id: str
    parent_id: Optional[str] = None
    type: str
    amount: Money
    status: str
    remote_reference: Optional[str] = None
    response_code: Optional[str] = None
    response_message: Optional[str] = None
    reason: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, tx: Any) -> "TransactionView":
        return cls(
            id=tx.id,
            reference=tx.reference,
            order_id=tx.order_id,
            parent_id=tx.parent_id,
            type=tx.type.value,
            amount=tx.amount,
            status=tx.status.value,
            remote_reference=tx.remote_reference,
            response_code=tx.response_code,
            response_message=tx.response_message,
            reason=tx.reason,
            created_at=tx.created_at,
            completed_at=tx.completed_at,
        )


class PaymentMethodView(DTOBase):
    masked_number: str
    expiration_date: str
    card_brand: Optional[str] = None
    name_on_card: Optional[str] = None


class OrderView(DTOBase):
    id: str
    order_number: str
    customer_id: str
    amount: Money
    currency: str
    status: str
    description: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    payment_method: Optional[PaymentMethodView] = None
    transactions: Optional[list[TransactionView]] = None

    @classmethod
    def from_entity(cls, order: Any, *, payment_method: Any = None, transactions: Any = None) -> "OrderView":
        pm = None
        if payment_method is not None:
            pm = PaymentMethodView(
                masked_number=payment_method.masked_card_number,
                expiration_date=payment_method.expiration_date,
                card_brand=payment_method.card_brand,
                name_on_card=payment_method.name_on_card,
            )
        return cls(
            id=order.id,
            order_number=order.order_number,
            customer_id=order.customer_id,
            amount=order.amount,
            currency=order.currency,
            status=order.status.value,
            description=order.description,
            created_at=order.created_at,
            updated_at=order.updated_at,
            payment_method=pm,
            transactions=(
                [TransactionView.from_entity(t) for t in transactions]
                if transactions is not None else None
            ),
        )


class PaymentResult(DTOBase):
    """Outcome of a successful gateway operation."""

    success: bool = True
    transaction_id: str
    transaction_ref: str
    remote_reference: Optional[str] = None
    order_id: str
    order_number: str
    order_status: str
    amount: Money
    status: str
    message: Optional[str] = None
    error_code: Optional[str] = None


class EligibilityView(DTOBase):
    transaction_ref: str
    transaction_type: str
    transaction_status: str
    operation: str
    allowed: bool
    reason: Optional[str] = None
    code: Optional[str] = None
    suggested_alternative: Optional[str] = None
    should_use_void: bool = False
    recommended_action: Optional[str] = None
    age_hours: float
    settlement_window_hours: float
