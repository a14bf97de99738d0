"""
Transaction lifecycle domain events.

Collected by the ledger domain service when a transaction reaches a terminal
status; the application layer drains and logs them. Domain remains free of
infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class TransactionEvent:
    order_id: str
    transaction_id: str
    transaction_ref: str
    transaction_type: str
    amount: str
    remote_reference: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class TransactionSucceeded(TransactionEvent):
    order_status: Optional[str] = None


@dataclass
class TransactionFailed(TransactionEvent):
    response_code: Optional[str] = None
    response_message: Optional[str] = None


@dataclass
class TransactionCancelled(TransactionEvent):
    reason: Optional[str] = None
