"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
Every call returns a tagged GatewayResult. Adapters raise GatewayTransportError
only when the remote side could not be reached or its reply was unreadable;
the orchestrator turns that into a local Error outcome.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional, Protocol, Union, runtime_checkable

from application.dtos.payments import (
    CardInstrument,
    GatewayApproved,
    GatewayDeclined,
    GatewayError,
    MaskedInstrument,
)

GatewayOutcome = Union[GatewayApproved, GatewayDeclined, GatewayError]


class GatewayTransportError(Exception):
    """Remote gateway unreachable or returned an unparseable reply."""

    def __init__(self, message: str, *, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class GatewayTimeoutError(GatewayTransportError):
    """Request was sent but no reply arrived in time; the outcome is unknown."""


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for a card-processing provider.

    Implementations should be async and side-effect free beyond IO.
    """

    provider: str

    async def submit_auth_capture(self, instrument: CardInstrument, amount: Decimal) -> GatewayOutcome: ...

    async def submit_auth_only(self, instrument: CardInstrument, amount: Decimal) -> GatewayOutcome: ...

    async def submit_capture(self, remote_reference: str, amount: Decimal) -> GatewayOutcome: ...

    async def submit_void(self, remote_reference: str) -> GatewayOutcome: ...

    async def submit_refund(
        self,
        remote_reference: str,
        instrument: MaskedInstrument,
        amount: Decimal,
    ) -> GatewayOutcome: ...

    async def aclose(self) -> None: ...
