"""
Factory for payment gateway clients.
"""
from __future__ import annotations

from typing import Optional

from core.settings import payment_settings
from application.ports.payment_gateway import PaymentGateway


def get_payment_gateway(provider: Optional[str] = None) -> PaymentGateway:
    name = (provider or payment_settings.provider).lower()
    if name in {"authorize_net", "authorizenet", "authnet"}:
        from .authorize_net_client import AuthorizeNetClient
        return AuthorizeNetClient()
    if name == "sandbox":
        from .sandbox_client import SandboxPaymentClient
        return SandboxPaymentClient(settlement_delay=payment_settings.settlement.window)
    raise ValueError(f"Unsupported payment provider: {name}")
