"""SQLAlchemy 实现的账本 Unit of Work"""
from __future__ import annotations

from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.payment_repository import (
    SQLAlchemyIdempotencyKeyRepository,
    SQLAlchemyOrderRepository,
    SQLAlchemyPaymentMethodRepository,
    SQLAlchemyTransactionRepository,
)


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """每次进入时新建会话，退出时关闭；全部仓储共享同一会话与事务"""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self.session: Optional[AsyncSession] = None

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        self.session = self._session_factory()
        self.order_repository = SQLAlchemyOrderRepository(self.session)
        self.transaction_repository = SQLAlchemyTransactionRepository(self.session)
        self.payment_method_repository = SQLAlchemyPaymentMethodRepository(self.session)
        self.idempotency_repository = SQLAlchemyIdempotencyKeyRepository(self.session)
        if not self._readonly:
            await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            # close() 会回滚只读会话中自动开启的事务
            await self.session.close()
            self.session = None

    async def commit(self) -> None:
        if self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session.in_transaction():
            await self.session.rollback()
        self._committed = False
