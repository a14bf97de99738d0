"""
Authorize.Net adapter using the JSON flavour of the createTransactionRequest API.

Amounts are sent as two-decimal strings. The remote reply starts with a UTF-8
byte-order mark, handled by BasePaymentClient._decode.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from core.settings import payment_settings, AuthorizeNetSettings
from application.dtos.payments import (
    CardInstrument,
    GatewayApproved,
    GatewayDeclined,
    GatewayError,
    MaskedInstrument,
)
from application.ports.payment_gateway import GatewayOutcome
from infrastructure.external.payments.base import BasePaymentClient
from shared.codes.payment_codes import (
    OUTCOME_APPROVED,
    OUTCOME_DECLINED,
    OUTCOME_HELD_FOR_REVIEW,
)


AUTH_CAPTURE = "authCaptureTransaction"
AUTH_ONLY = "authOnlyTransaction"
PRIOR_AUTH_CAPTURE = "priorAuthCaptureTransaction"
VOID = "voidTransaction"
REFUND = "refundTransaction"

GENERIC_FAILURE = "Unknown error occurred - check Authorize.Net credentials and configuration"


def _first(items: Any) -> dict[str, Any]:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    if isinstance(items, dict):
        return items
    return {}


def extract_error_message(data: dict[str, Any]) -> str:
    """Pick the most specific failure text available in a reply.

    Order: transaction error text, API message text, transaction response code,
    API result code, generic fallback.
    """
    tx = data.get("transactionResponse") or {}
    err = _first(tx.get("errors"))
    if err.get("errorText"):
        return str(err["errorText"])
    messages = data.get("messages") or {}
    msg = _first(messages.get("message"))
    if msg.get("text"):
        return str(msg["text"])
    if tx.get("responseCode"):
        return f"Transaction failed with response code: {tx['responseCode']}"
    if messages.get("resultCode"):
        return f"API call failed with result code: {messages['resultCode']}"
    return GENERIC_FAILURE


def _format_amount(amount: Decimal) -> str:
    return str(Decimal(amount).quantize(Decimal("0.01")))


class AuthorizeNetClient(BasePaymentClient):
    provider = "authorize_net"

    def __init__(self, config: Optional[AuthorizeNetSettings] = None, **kwargs: Any) -> None:
        if "timeouts" not in kwargs:
            kwargs["timeouts"] = payment_settings.timeouts.model_dump()
        if "retry" not in kwargs:
            kwargs["retry"] = {
                "max": payment_settings.retry.max,
                "base": payment_settings.retry.base_backoff,
            }
        super().__init__(**kwargs)
        self.config = config or payment_settings.authorize_net

    def _envelope(self, transaction_request: dict[str, Any]) -> dict[str, Any]:
        return {
            "createTransactionRequest": {
                "merchantAuthentication": {
                    "name": self.config.api_login_id,
                    "transactionKey": self.config.transaction_key,
                },
                "transactionRequest": transaction_request,
            }
        }

    @staticmethod
    def _credit_card(instrument: CardInstrument) -> dict[str, Any]:
        return {
            "creditCard": {
                "cardNumber": instrument.card_number,
                "expirationDate": instrument.expiration_date,
                "cardCode": instrument.cvv,
            }
        }

    async def _submit(self, transaction_request: dict[str, Any], *, retry: bool) -> GatewayOutcome:
        tx_type = transaction_request["transactionType"]
        if not self.config.configured:
            self._log("authnet_not_configured", transaction_type=tx_type)
            return GatewayError(code="CONFIG", message=GENERIC_FAILURE)

        self._log(
            "authnet_request",
            transaction_type=tx_type,
            amount=transaction_request.get("amount"),
            ref_trans_id=transaction_request.get("refTransId"),
            environment=self.config.environment,
        )
        data = await self._post_json(
            self.config.endpoint,
            self._envelope(transaction_request),
            retry=retry,
        )
        result = self._to_outcome(data)
        self._log(
            "authnet_response",
            transaction_type=tx_type,
            outcome=result.outcome,
            code=result.code,
        )
        return result

    def _to_outcome(self, data: dict[str, Any]) -> GatewayOutcome:
        tx = data.get("transactionResponse") or {}
        response_code = tx.get("responseCode")
        if not response_code:
            # API-level rejection (bad credentials, malformed request ...)
            msg = _first((data.get("messages") or {}).get("message"))
            return GatewayError(code=msg.get("code"), message=extract_error_message(data))

        outcome = self._map_outcome(response_code)
        if outcome == OUTCOME_APPROVED:
            tx_msg = _first(tx.get("messages"))
            return GatewayApproved(
                remote_reference=str(tx.get("transId") or ""),
                code=str(response_code),
                message=tx_msg.get("description"),
            )
        err = _first(tx.get("errors"))
        code = err.get("errorCode") or str(response_code)
        if outcome == OUTCOME_DECLINED:
            return GatewayDeclined(code=code, message=extract_error_message(data))
        if outcome == OUTCOME_HELD_FOR_REVIEW:
            return GatewayDeclined(code=code, message=extract_error_message(data), held_for_review=True)
        return GatewayError(code=code, message=extract_error_message(data))

    async def submit_auth_capture(self, instrument: CardInstrument, amount: Decimal) -> GatewayOutcome:
        return await self._submit(
            {
                "transactionType": AUTH_CAPTURE,
                "amount": _format_amount(amount),
                "payment": self._credit_card(instrument),
            },
            retry=False,
        )

    async def submit_auth_only(self, instrument: CardInstrument, amount: Decimal) -> GatewayOutcome:
        return await self._submit(
            {
                "transactionType": AUTH_ONLY,
                "amount": _format_amount(amount),
                "payment": self._credit_card(instrument),
            },
            retry=False,
        )

    async def submit_capture(self, remote_reference: str, amount: Decimal) -> GatewayOutcome:
        return await self._submit(
            {
                "transactionType": PRIOR_AUTH_CAPTURE,
                "amount": _format_amount(amount),
                "refTransId": remote_reference,
            },
            retry=True,
        )

    async def submit_void(self, remote_reference: str) -> GatewayOutcome:
        return await self._submit(
            {
                "transactionType": VOID,
                "refTransId": remote_reference,
            },
            retry=True,
        )

    async def submit_refund(
        self,
        remote_reference: str,
        instrument: MaskedInstrument,
        amount: Decimal,
    ) -> GatewayOutcome:
        return await self._submit(
            {
                "transactionType": REFUND,
                "amount": _format_amount(amount),
                "payment": {
                    "creditCard": {
                        "cardNumber": instrument.masked_number,
                        "expirationDate": instrument.expiration_date,
                    }
                },
                "refTransId": remote_reference,
            },
            retry=True,
        )
