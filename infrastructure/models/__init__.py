"""Infrastructure models package exports."""
from .base import Base, metadata
from .payment import IdempotencyKeyModel, OrderModel, PaymentMethodModel, TransactionModel

__all__ = [
    "Base",
    "metadata",
    "OrderModel",
    "TransactionModel",
    "PaymentMethodModel",
    "IdempotencyKeyModel",
]
