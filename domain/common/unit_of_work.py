"""账本事务边界抽象

一个 UoW 对应一次数据库事务：正常退出时提交，异常退出时回滚。
支付编排在调用网关前后分别使用独立的 UoW，保证"先落库、再调用"。
"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.payment.repository import (
    IdempotencyKeyRepository,
    OrderRepository,
    PaymentMethodRepository,
    TransactionRepository,
)


class AbstractUnitOfWork(ABC):
    order_repository: OrderRepository
    transaction_repository: TransactionRepository
    payment_method_repository: PaymentMethodRepository
    idempotency_repository: IdempotencyKeyRepository

    def __init__(self, *, readonly: bool = False) -> None:
        # readonly: 查询类用例（订单详情、资格判定），退出时不提交
        self._readonly = readonly
        self._committed = False

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc is not None:
            await self.rollback()
        elif not self._readonly and not self._committed:
            await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        ...

    @abstractmethod
    async def rollback(self) -> None:
        ...
