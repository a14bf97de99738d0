"""
Deterministic in-memory gateway for local runs and tests.

Behaves like a card processor with a nightly settlement: transactions settle
`settlement_delay` after approval; refunds are only accepted once settled and
voids only before. Magic values let callers provoke non-approved outcomes:

- card 4000000000000002 or amount cents .02 -> declined
- amount cents .03 -> gateway error
- amount cents .04 -> held for review
"""
from __future__ import annotations

import itertools
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Optional

from core.logging_config import get_logger
from application.dtos.payments import (
    CardInstrument,
    GatewayApproved,
    GatewayDeclined,
    GatewayError,
    MaskedInstrument,
)
from application.ports.payment_gateway import GatewayOutcome, PaymentGateway


logger = get_logger(__name__)

DECLINED_CARD = "4000000000000002"
DECLINE_CENTS = 2
ERROR_CENTS = 3
REVIEW_CENTS = 4

MSG_APPROVED = "This transaction has been approved."
MSG_DECLINED = "This transaction has been declined."
MSG_ERROR = "An error occurred during processing. Please try again."
MSG_REVIEW = "This transaction is being held for review."
MSG_NOT_FOUND = "The transaction cannot be found."
MSG_CREDIT_CRITERIA = "The referenced transaction does not meet the criteria for issuing a credit."
MSG_CAPTURE_EXCEEDS = (
    "The amount requested for settlement cannot be greater than the original amount authorized."
)
MSG_ALREADY_SETTLED = "The transaction has already been settled and cannot be voided."


@dataclass
class _RemoteTransaction:
    trans_id: str
    kind: str
    amount: Decimal
    approved_at: datetime
    captured: Decimal = Decimal("0")
    refunded: Decimal = Decimal("0")
    voided: bool = False


class SandboxPaymentClient(PaymentGateway):
    provider = "sandbox"

    def __init__(
        self,
        *,
        settlement_delay: timedelta = timedelta(hours=24),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.settlement_delay = settlement_delay
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._ids = itertools.count(60000000001)
        self._store: dict[str, _RemoteTransaction] = {}
        self.calls: list[tuple[str, dict]] = []

    async def aclose(self) -> None:
        return None

    def _record(self, kind: str, amount: Decimal) -> GatewayApproved:
        trans_id = str(next(self._ids))
        self._store[trans_id] = _RemoteTransaction(
            trans_id=trans_id, kind=kind, amount=amount, approved_at=self._clock()
        )
        return GatewayApproved(remote_reference=trans_id, code="1", message=MSG_APPROVED)

    def _settled(self, tx: _RemoteTransaction) -> bool:
        return self._clock() - tx.approved_at >= self.settlement_delay

    @staticmethod
    def _magic(amount: Decimal, card_number: Optional[str] = None) -> Optional[GatewayOutcome]:
        if card_number == DECLINED_CARD:
            return GatewayDeclined(code="2", message=MSG_DECLINED)
        cents = int((Decimal(amount) * 100) % 100)
        if cents == DECLINE_CENTS:
            return GatewayDeclined(code="2", message=MSG_DECLINED)
        if cents == ERROR_CENTS:
            return GatewayError(code="3", message=MSG_ERROR)
        if cents == REVIEW_CENTS:
            return GatewayDeclined(code="4", message=MSG_REVIEW, held_for_review=True)
        return None

    def _log(self, op: str, result: GatewayOutcome, **kwargs) -> GatewayOutcome:
        self.calls.append((op, kwargs))
        logger.info("sandbox_gateway_call", operation=op, outcome=result.outcome, **kwargs)
        return result

    async def submit_auth_capture(self, instrument: CardInstrument, amount: Decimal) -> GatewayOutcome:
        result = self._magic(amount, instrument.card_number) or self._record("auth_capture", amount)
        return self._log("auth_capture", result, amount=str(amount), last_four=instrument.last_four)

    async def submit_auth_only(self, instrument: CardInstrument, amount: Decimal) -> GatewayOutcome:
        result = self._magic(amount, instrument.card_number) or self._record("auth_only", amount)
        return self._log("auth_only", result, amount=str(amount), last_four=instrument.last_four)

    async def submit_capture(self, remote_reference: str, amount: Decimal) -> GatewayOutcome:
        auth = self._store.get(remote_reference)
        result: GatewayOutcome
        if auth is None or auth.kind != "auth_only" or auth.voided:
            result = GatewayDeclined(code="16", message=MSG_NOT_FOUND)
        elif auth.captured + amount > auth.amount:
            result = GatewayDeclined(code="47", message=MSG_CAPTURE_EXCEEDS)
        else:
            auth.captured += amount
            result = self._record("capture", amount)
        return self._log("capture", result, ref=remote_reference, amount=str(amount))

    async def submit_void(self, remote_reference: str) -> GatewayOutcome:
        tx = self._store.get(remote_reference)
        result: GatewayOutcome
        if tx is None or tx.voided:
            result = GatewayDeclined(code="16", message=MSG_NOT_FOUND)
        elif self._settled(tx):
            result = GatewayDeclined(code="16", message=MSG_ALREADY_SETTLED)
        else:
            tx.voided = True
            result = self._record("void", tx.amount)
        return self._log("void", result, ref=remote_reference)

    async def submit_refund(
        self,
        remote_reference: str,
        instrument: MaskedInstrument,
        amount: Decimal,
    ) -> GatewayOutcome:
        tx = self._store.get(remote_reference)
        result: GatewayOutcome
        if tx is None or tx.voided or tx.kind not in ("auth_capture", "capture"):
            result = GatewayDeclined(code="54", message=MSG_CREDIT_CRITERIA)
        elif not self._settled(tx) or tx.refunded + amount > tx.amount:
            result = GatewayDeclined(code="54", message=MSG_CREDIT_CRITERIA)
        else:
            tx.refunded += amount
            result = self._record("refund", amount)
        return self._log("refund", result, ref=remote_reference, amount=str(amount))
