"""
支付仓储接口 - 定义订单、交易与支付工具数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .entity import Order, PaymentMethodReference, Transaction


class OrderRepository(ABC):
    """订单仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """创建订单"""
        pass

    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        """根据ID获取订单"""
        pass

    @abstractmethod
    async def get_by_order_number(self, order_number: str) -> Optional[Order]:
        """根据订单号获取订单"""
        pass

    @abstractmethod
    async def list(self, skip: int = 0, limit: int = 20) -> List[Order]:
        """分页获取订单，按创建时间倒序"""
        pass

    @abstractmethod
    async def count(self) -> int:
        """统计订单数量"""
        pass

    @abstractmethod
    async def update(self, order: Order) -> Order:
        """更新订单（只允许状态与更新时间变化）"""
        pass


class TransactionRepository(ABC):
    """交易仓储抽象接口"""

    @abstractmethod
    async def create(self, transaction: Transaction) -> Transaction:
        """创建交易记录"""
        pass

    @abstractmethod
    async def get_by_id(self, transaction_id: str) -> Optional[Transaction]:
        """根据ID获取交易"""
        pass

    @abstractmethod
    async def get_by_reference(self, reference: str) -> Optional[Transaction]:
        """根据本地交易号或网关交易号获取交易"""
        pass

    @abstractmethod
    async def list_by_order(self, order_id: str) -> List[Transaction]:
        """获取订单的全部交易，按创建时间倒序"""
        pass

    @abstractmethod
    async def update(self, transaction: Transaction) -> Transaction:
        """更新交易记录"""
        pass

    @abstractmethod
    async def count(self) -> int:
        """统计交易数量"""
        pass

    @abstractmethod
    async def claim(
        self,
        transaction_id: str,
        operation_id: str,
        now: datetime,
        stale_before: Optional[datetime] = None,
    ) -> bool:
        """
        对目标交易加操作锁（比较并交换）

        仅当目标上没有进行中的操作，或已有的锁在 stale_before 之前取得
        （持有者已崩溃）时成功，返回是否抢占成功。
        """
        pass

    @abstractmethod
    async def release(self, transaction_id: str, operation_id: str) -> None:
        """释放由 operation_id 持有的操作锁"""
        pass


class PaymentMethodRepository(ABC):
    """支付工具脱敏记录仓储"""

    @abstractmethod
    async def create(self, payment_method: PaymentMethodReference) -> PaymentMethodReference:
        pass

    @abstractmethod
    async def get_by_order_id(self, order_id: str) -> Optional[PaymentMethodReference]:
        pass


class IdempotencyKeyRepository(ABC):
    """幂等键占用"""

    @abstractmethod
    async def reserve(self, key: str, order_id: str, now: datetime, expires_at: datetime) -> None:
        """
        为订单占用幂等键

        键已被未过期的记录占用时抛出 DuplicateSubmissionException；
        并发占用同一键时只有一方成功。
        """
        pass
