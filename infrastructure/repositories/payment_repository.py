"""
支付仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import delete, select, func, or_, update

from domain.payment.entity import (
    Order,
    OrderStatus,
    PaymentMethodReference,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from domain.payment.exceptions import DataIntegrityException, DuplicateSubmissionException
from domain.payment.repository import (
    IdempotencyKeyRepository,
    OrderRepository,
    PaymentMethodRepository,
    TransactionRepository,
)
from infrastructure.models.payment import (
    IdempotencyKeyModel,
    OrderModel,
    PaymentMethodModel,
    TransactionModel,
)
from core.logging_config import get_logger


logger = get_logger(__name__)

_TERMINAL_VALUES = {
    TransactionStatus.SUCCESS.value,
    TransactionStatus.FAILED.value,
    TransactionStatus.CANCELLED.value,
}


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        """将数据库模型转换为领域实体"""
        return Order(
            id=model.id,
            order_number=model.order_number,
            customer_id=model.customer_id,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            status=OrderStatus(model.status),
            description=model.description,
            idempotency_key=model.idempotency_key,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: Order) -> OrderModel:
        """将领域实体转换为数据库模型"""
        return OrderModel(
            id=entity.id,
            order_number=entity.order_number,
            customer_id=entity.customer_id,
            amount=entity.amount,
            currency=entity.currency,
            status=entity.status.value,
            description=entity.description,
            idempotency_key=entity.idempotency_key,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )

    async def create(self, order: Order) -> Order:
        db_order = self._to_model(order)
        self.session.add(db_order)
        await self.session.flush()
        await self.session.refresh(db_order)
        logger.info(
            "order_created",
            order_id=db_order.id,
            order_number=db_order.order_number,
            amount=str(db_order.amount),
        )
        return self._to_entity(db_order)

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        result = await self.session.execute(
            select(OrderModel).where(OrderModel.id == order_id)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def get_by_order_number(self, order_number: str) -> Optional[Order]:
        result = await self.session.execute(
            select(OrderModel).where(OrderModel.order_number == order_number)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def list(self, skip: int = 0, limit: int = 20) -> List[Order]:
        result = await self.session.execute(
            select(OrderModel)
            .order_by(OrderModel.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(o) for o in result.scalars().all()]

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(OrderModel))
        return int(result.scalar_one())

    async def update(self, order: Order) -> Order:
        result = await self.session.execute(
            select(OrderModel).where(OrderModel.id == order.id)
        )
        db_order = result.scalar_one_or_none()

        if not db_order:
            raise DataIntegrityException(
                f"Order with id {order.id} not found",
                details={"order_id": order.id},
            )

        # 金额、币种、订单号创建后不可变
        db_order.status = order.status.value
        db_order.updated_at = order.updated_at

        await self.session.flush()
        await self.session.refresh(db_order)

        logger.info(
            "order_updated",
            order_id=db_order.id,
            status=db_order.status,
        )
        return self._to_entity(db_order)


class SQLAlchemyTransactionRepository(TransactionRepository):
    """交易仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: TransactionModel) -> Transaction:
        return Transaction(
            id=model.id,
            order_id=model.order_id,
            reference=model.reference,
            type=TransactionType(model.type),
            amount=Decimal(str(model.amount)),
            status=TransactionStatus(model.status),
            parent_id=model.parent_id,
            remote_reference=model.remote_reference,
            response_code=model.response_code,
            response_message=model.response_message,
            reason=model.reason,
            created_at=model.created_at,
            completed_at=model.completed_at,
        )

    def _to_model(self, entity: Transaction) -> TransactionModel:
        return TransactionModel(
            id=entity.id,
            order_id=entity.order_id,
            parent_id=entity.parent_id,
            reference=entity.reference,
            type=entity.type.value,
            amount=entity.amount,
            status=entity.status.value,
            remote_reference=entity.remote_reference,
            response_code=entity.response_code,
            response_message=entity.response_message,
            reason=entity.reason,
            created_at=entity.created_at,
            completed_at=entity.completed_at,
        )

    async def create(self, transaction: Transaction) -> Transaction:
        db_tx = self._to_model(transaction)
        self.session.add(db_tx)
        await self.session.flush()
        await self.session.refresh(db_tx)
        logger.info(
            "transaction_created",
            transaction_id=db_tx.id,
            reference=db_tx.reference,
            order_id=db_tx.order_id,
            type=db_tx.type,
            amount=str(db_tx.amount),
        )
        return self._to_entity(db_tx)

    async def get_by_id(self, transaction_id: str) -> Optional[Transaction]:
        result = await self.session.execute(
            select(TransactionModel).where(TransactionModel.id == transaction_id)
        )
        db_tx = result.scalar_one_or_none()
        return self._to_entity(db_tx) if db_tx else None

    async def get_by_reference(self, reference: str) -> Optional[Transaction]:
        result = await self.session.execute(
            select(TransactionModel).where(TransactionModel.reference == reference)
        )
        db_tx = result.scalar_one_or_none()
        if db_tx is None:
            # 兼容以网关交易号查询
            result = await self.session.execute(
                select(TransactionModel)
                .where(TransactionModel.remote_reference == reference)
                .order_by(TransactionModel.created_at.desc())
                .limit(1)
            )
            db_tx = result.scalar_one_or_none()
        return self._to_entity(db_tx) if db_tx else None

    async def list_by_order(self, order_id: str) -> List[Transaction]:
        result = await self.session.execute(
            select(TransactionModel)
            .where(TransactionModel.order_id == order_id)
            .order_by(TransactionModel.created_at.desc())
        )
        return [self._to_entity(t) for t in result.scalars().all()]

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(TransactionModel))
        return int(result.scalar_one())

    async def update(self, transaction: Transaction) -> Transaction:
        result = await self.session.execute(
            select(TransactionModel).where(TransactionModel.id == transaction.id)
        )
        db_tx = result.scalar_one_or_none()

        if not db_tx:
            raise DataIntegrityException(
                f"Transaction with id {transaction.id} not found",
                details={"transaction_id": transaction.id},
            )

        # 终态行只读：任何结果字段变化都视为不变量被破坏
        if db_tx.status in _TERMINAL_VALUES:
            unchanged = (
                db_tx.status == transaction.status.value
                and db_tx.remote_reference == transaction.remote_reference
                and db_tx.response_code == transaction.response_code
                and db_tx.response_message == transaction.response_message
            )
            if not unchanged:
                logger.error(
                    "transaction_terminal_mutation_rejected",
                    transaction_id=db_tx.id,
                    stored_status=db_tx.status,
                    new_status=transaction.status.value,
                )
                raise DataIntegrityException(
                    "Terminal transaction cannot be modified",
                    details={"transaction_id": db_tx.id, "status": db_tx.status},
                )
            return self._to_entity(db_tx)

        db_tx.status = transaction.status.value
        db_tx.remote_reference = transaction.remote_reference
        db_tx.response_code = transaction.response_code
        db_tx.response_message = transaction.response_message
        db_tx.completed_at = transaction.completed_at

        await self.session.flush()
        await self.session.refresh(db_tx)

        logger.info(
            "transaction_updated",
            transaction_id=db_tx.id,
            reference=db_tx.reference,
            status=db_tx.status,
        )
        return self._to_entity(db_tx)

    async def claim(
        self,
        transaction_id: str,
        operation_id: str,
        now: datetime,
        stale_before: Optional[datetime] = None,
    ) -> bool:
        free = TransactionModel.in_flight_operation_id.is_(None)
        if stale_before is not None:
            # 持有者崩溃后留下的锁可被接管
            free = or_(
                free,
                TransactionModel.claimed_at.is_(None),
                TransactionModel.claimed_at < stale_before,
            )
        result = await self.session.execute(
            update(TransactionModel)
            .where(TransactionModel.id == transaction_id, free)
            .values(in_flight_operation_id=operation_id, claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        claimed = result.rowcount == 1
        if not claimed:
            logger.warning("transaction_claim_conflict", transaction_id=transaction_id)
        return claimed

    async def release(self, transaction_id: str, operation_id: str) -> None:
        await self.session.execute(
            update(TransactionModel)
            .where(
                TransactionModel.id == transaction_id,
                TransactionModel.in_flight_operation_id == operation_id,
            )
            .values(in_flight_operation_id=None, claimed_at=None)
            .execution_options(synchronize_session=False)
        )


class SQLAlchemyPaymentMethodRepository(PaymentMethodRepository):
    """支付工具脱敏记录仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentMethodModel) -> PaymentMethodReference:
        return PaymentMethodReference(
            id=model.id,
            order_id=model.order_id,
            last_four=model.last_four,
            expiration_month=model.expiration_month,
            expiration_year=model.expiration_year,
            card_brand=model.card_brand,
            name_on_card=model.name_on_card,
        )

    async def create(self, payment_method: PaymentMethodReference) -> PaymentMethodReference:
        db_pm = PaymentMethodModel(
            id=payment_method.id,
            order_id=payment_method.order_id,
            last_four=payment_method.last_four,
            expiration_month=payment_method.expiration_month,
            expiration_year=payment_method.expiration_year,
            card_brand=payment_method.card_brand,
            name_on_card=payment_method.name_on_card,
        )
        self.session.add(db_pm)
        await self.session.flush()
        return self._to_entity(db_pm)

    async def get_by_order_id(self, order_id: str) -> Optional[PaymentMethodReference]:
        result = await self.session.execute(
            select(PaymentMethodModel).where(PaymentMethodModel.order_id == order_id)
        )
        db_pm = result.scalar_one_or_none()
        return self._to_entity(db_pm) if db_pm else None


class SQLAlchemyIdempotencyKeyRepository(IdempotencyKeyRepository):
    """幂等键仓储的SQLAlchemy实现：唯一约束裁决并发占用"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def reserve(self, key: str, order_id: str, now: datetime, expires_at: datetime) -> None:
        # 过期的占用让位给新的提交
        await self.session.execute(
            delete(IdempotencyKeyModel)
            .where(
                IdempotencyKeyModel.key == key,
                IdempotencyKeyModel.expires_at <= now,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            self.session.add(IdempotencyKeyModel(
                key=key,
                order_id=order_id,
                created_at=now,
                expires_at=expires_at,
            ))
            await self.session.flush()
        except IntegrityError as e:
            await self.session.rollback()
            if "idempotency_keys" not in str(e).lower():
                raise
            result = await self.session.execute(
                select(IdempotencyKeyModel.order_id).where(IdempotencyKeyModel.key == key)
            )
            existing_order_id = result.scalar_one_or_none()
            logger.warning(
                "payment_duplicate_submission",
                idempotency_key=key,
                order_id=existing_order_id,
            )
            raise DuplicateSubmissionException(key, existing_order_id)
