"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("API_CLIENT__CLIENT_ID", "test-client")
os.environ.setdefault("API_CLIENT__CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PAYMENT__PROVIDER", "sandbox")

import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from functools import partial

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from application.dtos.payments import CardInstrument, GatewayApproved, PaymentRequest
from application.services.payment_service import PaymentService
from infrastructure.models import Base
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


VISA = "4111111111111111"
START = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class ScriptedGateway:
    """Records calls; replies with queued outcomes, approving by default.

    A queued item may be an outcome, an exception to raise, or an async
    callable whose result is returned.
    """

    provider = "scripted"

    def __init__(self):
        self.calls = []
        self._queued = {}
        self._ids = itertools.count(1001)

    def script(self, op: str, *outcomes) -> None:
        self._queued.setdefault(op, []).extend(outcomes)

    def ops(self) -> list:
        return [op for op, _ in self.calls]

    async def _reply(self, op: str, **kwargs):
        self.calls.append((op, kwargs))
        queue = self._queued.get(op)
        if queue:
            outcome = queue.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            if callable(outcome):
                return await outcome()
            return outcome
        return GatewayApproved(
            remote_reference=f"RT{next(self._ids)}",
            code="1",
            message="This transaction has been approved.",
        )

    async def submit_auth_capture(self, instrument, amount):
        return await self._reply("auth_capture", last_four=instrument.last_four, amount=amount)

    async def submit_auth_only(self, instrument, amount):
        return await self._reply("auth_only", last_four=instrument.last_four, amount=amount)

    async def submit_capture(self, remote_reference, amount):
        return await self._reply("capture", ref=remote_reference, amount=amount)

    async def submit_void(self, remote_reference):
        return await self._reply("void", ref=remote_reference)

    async def submit_refund(self, remote_reference, instrument, amount):
        return await self._reply(
            "refund", ref=remote_reference, instrument=instrument, amount=amount
        )

    async def aclose(self):
        return None


def card(number: str = VISA, **overrides) -> CardInstrument:
    data = {
        "card_number": number,
        "expiration_month": 12,
        "expiration_year": datetime.now(timezone.utc).year + 2,
        "cvv": "123",
        "name_on_card": "Ada Lovelace",
    }
    data.update(overrides)
    return CardInstrument(**data)


_keys = itertools.count(1)


def payment_request(amount="100.50", number: str = VISA, idempotency_key=None, **overrides) -> PaymentRequest:
    data = {
        "customer_id": "cust-42",
        "amount": Decimal(str(amount)),
        "currency": "USD",
        "card": card(number),
        "description": "Order for widgets",
        "idempotency_key": idempotency_key or f"idem-{next(_keys)}",
    }
    data.update(overrides)
    return PaymentRequest(**data)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def gateway():
    return ScriptedGateway()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def uow_factory(session_factory):
    return partial(SQLAlchemyUnitOfWork, session_factory)


@pytest.fixture
def service(gateway, uow_factory, clock):
    return PaymentService(
        gateway=gateway,
        uow_factory=uow_factory,
        settlement_window=timedelta(hours=24),
        idempotency_window=timedelta(minutes=60),
        call_timeout=0.5,
        claim_ttl=timedelta(minutes=5),
        clock=clock,
    )


@pytest_asyncio.fixture
async def file_service(tmp_path, gateway, clock):
    """Service over a file database: each unit of work gets its own connection,
    so concurrent writers contend the way they do on a real server."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield PaymentService(
        gateway=gateway,
        uow_factory=partial(SQLAlchemyUnitOfWork, async_sessionmaker(bind=engine, expire_on_commit=False)),
        settlement_window=timedelta(hours=24),
        idempotency_window=timedelta(minutes=60),
        call_timeout=0.5,
        clock=clock,
    )
    await engine.dispose()
