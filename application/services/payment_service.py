"""
Application service orchestrating the payment transaction lifecycle.

This class depends only on the application PaymentGateway port, the unit of
work abstraction and DTOs. Gateway implementations are provided by
infrastructure and must be injected from the composition root (API/tests),
keeping dependencies one-way.

Every remote call follows record-then-call: the Pending transaction row is
committed before the gateway is contacted, and its single terminal transition
is committed afterwards in a separate unit of work. No database transaction is
held open across the remote call.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Awaitable, Callable, Optional, Union

from application.dtos.payments import (
    CaptureRequest,
    EligibilityView,
    ExecuteParams,
    GatewayApproved,
    GatewayDeclined,
    GatewayError,
    MaskedInstrument,
    OrderView,
    PaymentRequest,
    PaymentResult,
    RefundRequest,
    TransactionView,
)
from application.ports.payment_gateway import (
    GatewayOutcome,
    GatewayTimeoutError,
    GatewayTransportError,
    PaymentGateway,
)
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.common.exceptions import DomainValidationException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.eligibility import EligibilityEvaluator
from domain.payment.entity import (
    Order,
    OrderLedger,
    PaymentMethodReference,
    Transaction,
    TransactionType,
    generate_order_number,
    generate_transaction_reference,
    new_id,
)
from domain.payment.exceptions import (
    ConcurrentOperationException,
    DataIntegrityException,
    GatewayDeclinedException,
    GatewayFaultException,
    IneligibleOperationException,
    OrderNotFoundException,
    TransactionNotFoundException,
)
from domain.payment.service import LedgerDomainService
from shared.codes.payment_codes import LOCAL_TIMEOUT_CODE, LOCAL_TRANSPORT_CODE, LOCAL_UNKNOWN_CODE


logger = get_logger(__name__)

UnitOfWorkFactory = Callable[[], AbstractUnitOfWork]

FOLLOW_UP = (TransactionType.CAPTURE, TransactionType.VOID, TransactionType.REFUND)
MISSING_PAYMENT_METHOD = "payment method reference missing; refund requires masked instrument data"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _log_late_reply(transaction_ref: str, task: "asyncio.Future") -> None:
    """Gateway replied after the local timeout; record it for reconciliation."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("gateway_late_failure", transaction_ref=transaction_ref, error=str(exc))
        return
    result = task.result()
    logger.warning(
        "gateway_late_reply",
        transaction_ref=transaction_ref,
        outcome=getattr(result, "outcome", None),
        remote_reference=getattr(result, "remote_reference", None),
    )


class PaymentService:
    def __init__(
        self,
        gateway: PaymentGateway,
        uow_factory: UnitOfWorkFactory,
        *,
        settlement_window: Optional[timedelta] = None,
        idempotency_window: Optional[timedelta] = None,
        call_timeout: Optional[float] = None,
        claim_ttl: Optional[timedelta] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.gateway = gateway
        self._uow_factory = uow_factory
        self.evaluator = EligibilityEvaluator(
            settlement_window if settlement_window is not None else payment_settings.settlement.window
        )
        self.idempotency_window = (
            idempotency_window if idempotency_window is not None else payment_settings.idempotency.window
        )
        self.call_timeout = call_timeout if call_timeout is not None else payment_settings.timeouts.total
        self.claim_ttl = claim_ttl if claim_ttl is not None else payment_settings.claim.stale_after
        self._clock = clock or _utcnow

    def _now(self) -> datetime:
        return self._clock()

    # ---- orders ----

    async def _open_order(
        self,
        uow: AbstractUnitOfWork,
        req: PaymentRequest,
        now: datetime,
        *,
        reserve_key: bool = True,
    ) -> Order:
        order = await uow.order_repository.create(Order(
            id=new_id(),
            order_number=generate_order_number(now),
            customer_id=req.customer_id,
            amount=req.amount,
            currency=req.currency,
            description=req.description,
            idempotency_key=req.idempotency_key if reserve_key else None,
            created_at=now,
            updated_at=now,
        ))
        if reserve_key:
            # Raises DuplicateSubmission and rolls the order back when the key is taken
            await uow.idempotency_repository.reserve(
                req.idempotency_key, order.id, now, now + self.idempotency_window
            )
        await uow.payment_method_repository.create(PaymentMethodReference(
            id=new_id(),
            order_id=order.id,
            last_four=req.card.last_four,
            expiration_month=req.card.expiration_month,
            expiration_year=req.card.expiration_year,
            card_brand=req.card.brand,
            name_on_card=req.card.name_on_card,
        ))
        return order

    async def create_order(self, req: PaymentRequest) -> OrderView:
        """Create an order and its masked payment method without contacting the gateway.

        The idempotency key is not reserved here; it belongs to the purchase or
        authorization that actually charges the card.
        """
        now = self._now()
        async with self._uow_factory() as uow:
            order = await self._open_order(uow, req, now, reserve_key=False)
            pm = await uow.payment_method_repository.get_by_order_id(order.id)
        return OrderView.from_entity(order, payment_method=pm, transactions=[])

    async def get_order(self, order_id: str) -> OrderView:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_id(order_id)
            if order is None:
                order = await uow.order_repository.get_by_order_number(order_id)
            if order is None:
                raise OrderNotFoundException(order_id)
            pm = await uow.payment_method_repository.get_by_order_id(order.id)
            txs = await uow.transaction_repository.list_by_order(order.id)
        return OrderView.from_entity(order, payment_method=pm, transactions=txs)

    async def list_orders(self, page: int = 1, size: int = 20) -> tuple[list[OrderView], int]:
        skip = (page - 1) * size
        async with self._uow_factory(readonly=True) as uow:
            orders = await uow.order_repository.list(skip=skip, limit=size)
            total = await uow.order_repository.count()
        return [OrderView.from_entity(o) for o in orders], total

    async def list_order_transactions(self, order_id: str) -> list[TransactionView]:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_id(order_id)
            if order is None:
                raise OrderNotFoundException(order_id)
            txs = await uow.transaction_repository.list_by_order(order.id)
        return [TransactionView.from_entity(t) for t in txs]

    # ---- originating operations ----

    async def purchase(self, req: PaymentRequest) -> PaymentResult:
        return await self._originate(req, TransactionType.PURCHASE)

    async def authorize(self, req: PaymentRequest) -> PaymentResult:
        return await self._originate(req, TransactionType.AUTHORIZE)

    async def _originate(self, req: PaymentRequest, tx_type: TransactionType) -> PaymentResult:
        now = self._now()
        async with self._uow_factory() as uow:
            order = await self._open_order(uow, req, now)
            tx = await uow.transaction_repository.create(Transaction(
                id=new_id(),
                order_id=order.id,
                reference=generate_transaction_reference(now),
                type=tx_type,
                amount=order.amount,
                created_at=now,
            ))

        logger.info(
            f"payment_{tx_type.value.lower()}_request",
            order_id=order.id,
            transaction_ref=tx.reference,
            amount=str(order.amount),
            currency=order.currency,
            idempotency_key=req.idempotency_key,
        )
        if tx_type == TransactionType.PURCHASE:
            call = partial(self.gateway.submit_auth_capture, req.card, order.amount)
        else:
            call = partial(self.gateway.submit_auth_only, req.card, order.amount)
        return await self._call_and_record(tx, call, retryable=False)

    # ---- follow-up operations ----

    async def capture(self, transaction_ref: str, req: Optional[CaptureRequest] = None) -> PaymentResult:
        params = ExecuteParams(transaction_ref=transaction_ref, amount=req.amount if req else None)
        return await self._follow_up(TransactionType.CAPTURE, params)

    async def void(self, transaction_ref: str) -> PaymentResult:
        return await self._follow_up(TransactionType.VOID, ExecuteParams(transaction_ref=transaction_ref))

    async def refund(self, transaction_ref: str, req: RefundRequest, *, force: bool = False) -> PaymentResult:
        params = ExecuteParams(
            transaction_ref=transaction_ref, amount=req.amount, reason=req.reason, force=force
        )
        return await self._follow_up(TransactionType.REFUND, params)

    async def execute(
        self,
        order_id: str,
        operation: Union[str, TransactionType],
        params: ExecuteParams,
    ) -> PaymentResult:
        """Dispatch Capture/Void/Refund against a transaction of the given order."""
        try:
            op = TransactionType(operation)
        except ValueError:
            op = None
        if op not in FOLLOW_UP:
            raise DomainValidationException(
                f"Unsupported operation: {operation}",
                field="operation",
            )
        return await self._follow_up(op, params, order_id=order_id)

    async def _follow_up(
        self,
        operation: TransactionType,
        params: ExecuteParams,
        *,
        order_id: Optional[str] = None,
    ) -> PaymentResult:
        now = self._now()
        operation_id = new_id()
        ledger_service = LedgerDomainService()
        cancelled: Optional[Transaction] = None

        async with self._uow_factory() as uow:
            target = await uow.transaction_repository.get_by_reference(params.transaction_ref)
            if target is None:
                raise TransactionNotFoundException(params.transaction_ref)
            if order_id is not None and target.order_id != order_id:
                raise DomainValidationException(
                    "Transaction does not belong to order",
                    field="transaction_ref",
                    details={"order_id": order_id, "transaction_ref": params.transaction_ref},
                )

            verdict = self.evaluator.evaluate(target, operation, now)
            if not verdict.allowed:
                if params.force and verdict.advisory:
                    logger.warning(
                        "payment_eligibility_overridden",
                        operation=operation.value,
                        transaction_ref=target.reference,
                        reason=verdict.reason,
                    )
                else:
                    logger.info(
                        "payment_operation_ineligible",
                        operation=operation.value,
                        transaction_ref=target.reference,
                        reason=verdict.reason,
                    )
                    raise IneligibleOperationException(
                        verdict.reason,
                        operation=operation.value,
                        transaction_ref=target.reference,
                        suggested_alternative=(
                            verdict.suggested_alternative.value
                            if verdict.suggested_alternative else None
                        ),
                    )

            if not await uow.transaction_repository.claim(
                target.id, operation_id, now, now - self.claim_ttl
            ):
                raise ConcurrentOperationException(target.reference)

            order = await uow.order_repository.get_by_id(target.order_id)
            if order is None:
                raise DataIntegrityException(
                    "Transaction references a missing order",
                    details={"transaction_id": target.id, "order_id": target.order_id},
                )
            ledger = OrderLedger(
                order=order,
                transactions=await uow.transaction_repository.list_by_order(order.id),
                payment_method=await uow.payment_method_repository.get_by_order_id(order.id),
            )
            ledger_service.verify(ledger)

            if operation == TransactionType.CAPTURE:
                amount = params.amount if params.amount is not None else ledger_service.capturable_amount(
                    target, ledger.transactions
                )
                ledger_service.ensure_capture_amount(target, amount, ledger.transactions)
            elif operation == TransactionType.REFUND:
                if params.amount is None:
                    raise DomainValidationException("Refund amount is required", field="amount")
                amount = params.amount
                ledger_service.ensure_refund_amount(target, amount, ledger)
            else:
                amount = target.amount

            tx = await uow.transaction_repository.create(Transaction(
                id=new_id(),
                order_id=order.id,
                reference=generate_transaction_reference(now),
                type=operation,
                amount=amount,
                parent_id=target.id,
                reason=params.reason,
                created_at=now,
            ))

            if operation == TransactionType.REFUND and ledger.payment_method is None:
                tx.mark_cancelled(now, MISSING_PAYMENT_METHOD)
                tx = await uow.transaction_repository.update(tx)
                ledger_service.settle(order, tx, now)
                await uow.transaction_repository.release(target.id, operation_id)
                cancelled = tx

        if cancelled is not None:
            self._publish(ledger_service)
            logger.warning(
                "payment_refund_cancelled",
                transaction_ref=cancelled.reference,
                target_ref=target.reference,
                reason=MISSING_PAYMENT_METHOD,
            )
            raise IneligibleOperationException(
                MISSING_PAYMENT_METHOD,
                operation=operation.value,
                transaction_ref=target.reference,
            )

        logger.info(
            f"payment_{operation.value.lower()}_request",
            order_id=order.id,
            transaction_ref=tx.reference,
            target_ref=target.reference,
            amount=str(amount),
            forced=params.force,
        )
        remote_ref = target.remote_reference
        if operation == TransactionType.CAPTURE:
            call = partial(self.gateway.submit_capture, remote_ref, amount)
        elif operation == TransactionType.VOID:
            call = partial(self.gateway.submit_void, remote_ref)
        else:
            pm = ledger.payment_method
            masked = MaskedInstrument(
                masked_number=pm.masked_card_number,
                expiration_date=pm.expiration_date,
            )
            call = partial(self.gateway.submit_refund, remote_ref, masked, amount)
        return await self._call_and_record(
            tx, call, retryable=True, claim=(target.id, operation_id)
        )

    # ---- remote call + outcome recording ----

    async def _await_gateway(
        self, tx: Transaction, call: Callable[[], Awaitable[GatewayOutcome]]
    ) -> GatewayOutcome:
        # The remote call is shielded: a local timeout stops waiting, never the request itself
        task = asyncio.ensure_future(call())
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self.call_timeout)
        except asyncio.TimeoutError:
            task.add_done_callback(partial(_log_late_reply, tx.reference))
            raise

    async def _call_and_record(
        self,
        tx: Transaction,
        call: Callable[[], Awaitable[GatewayOutcome]],
        *,
        retryable: bool,
        claim: Optional[tuple[str, str]] = None,
    ) -> PaymentResult:
        # The claim on the target is released on every exit path, including
        # unexpected errors and cancellation
        try:
            try:
                result = await self._await_gateway(tx, call)
            except (asyncio.TimeoutError, GatewayTimeoutError):
                await self._record_unresolved(
                    tx, LOCAL_TIMEOUT_CODE, "No reply from gateway before timeout; outcome unknown"
                )
                logger.warning(
                    "payment_gateway_timeout",
                    transaction_ref=tx.reference,
                    type=tx.type.value,
                    timeout=self.call_timeout,
                )
                raise GatewayFaultException(
                    "Gateway did not respond in time; reconcile before retrying",
                    transaction_id=tx.id,
                    transaction_ref=tx.reference,
                    retryable=False,
                    timed_out=True,
                    remote_code=LOCAL_TIMEOUT_CODE,
                )
            except GatewayTransportError as e:
                logger.warning(
                    "payment_gateway_transport_error",
                    transaction_ref=tx.reference,
                    type=tx.type.value,
                    error=e.message,
                )
                result = GatewayError(code=LOCAL_TRANSPORT_CODE, message=e.message)
            except Exception as e:
                # Whether the request reached the gateway is unknown; keep the row Pending
                logger.error(
                    "payment_gateway_call_failed",
                    transaction_ref=tx.reference,
                    type=tx.type.value,
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                await self._record_unresolved(
                    tx, LOCAL_UNKNOWN_CODE, "Gateway call failed unexpectedly; outcome unknown"
                )
                raise

            return await self._record_outcome(tx, result, retryable=retryable)
        finally:
            if claim:
                await self._release_claim(*claim)

    async def _release_claim(self, target_id: str, operation_id: str) -> None:
        async with self._uow_factory() as uow:
            await uow.transaction_repository.release(target_id, operation_id)

    async def _record_unresolved(self, tx: Transaction, code: str, message: str) -> None:
        async with self._uow_factory() as uow:
            current = await uow.transaction_repository.get_by_id(tx.id)
            current.note_unresolved(code, message)
            await uow.transaction_repository.update(current)

    async def _record_outcome(
        self,
        tx: Transaction,
        result: GatewayOutcome,
        *,
        retryable: bool,
    ) -> PaymentResult:
        now = self._now()
        ledger_service = LedgerDomainService()
        integrity_error: Optional[DataIntegrityException] = None

        async with self._uow_factory() as uow:
            current = await uow.transaction_repository.get_by_id(tx.id)
            order = await uow.order_repository.get_by_id(tx.order_id)
            if current is None or order is None:
                raise DataIntegrityException(
                    "Pending transaction vanished before its outcome was recorded",
                    details={"transaction_id": tx.id, "order_id": tx.order_id},
                )

            if isinstance(result, GatewayApproved) and not result.remote_reference:
                # Approved without a reference cannot become Success; leave Pending for reconciliation
                current.note_unresolved(result.code or "NOREF", "Gateway approved without a transaction reference")
                integrity_error = DataIntegrityException(
                    "Gateway approved without a transaction reference",
                    details={"transaction_id": current.id, "transaction_ref": current.reference},
                )
            elif isinstance(result, GatewayApproved):
                current.mark_succeeded(result.remote_reference, now, result.code, result.message)
            else:
                current.mark_failed(now, result.code, result.message)

            current = await uow.transaction_repository.update(current)
            if current.is_terminal and ledger_service.settle(order, current, now):
                order = await uow.order_repository.update(order)

        self._publish(ledger_service)

        if integrity_error is not None:
            logger.error(
                "payment_data_integrity_violation",
                transaction_ref=tx.reference,
                message=integrity_error.message,
            )
            raise integrity_error

        if isinstance(result, GatewayDeclined):
            logger.info(
                "payment_declined",
                transaction_ref=current.reference,
                type=current.type.value,
                remote_code=result.code,
                remote_message=result.message,
                held_for_review=result.held_for_review,
            )
            raise GatewayDeclinedException(
                result.message or "Declined by gateway",
                transaction_id=current.id,
                transaction_ref=current.reference,
                remote_code=result.code,
                remote_message=result.message,
                held_for_review=result.held_for_review,
            )
        if isinstance(result, GatewayError):
            logger.warning(
                "payment_gateway_error",
                transaction_ref=current.reference,
                type=current.type.value,
                remote_code=result.code,
                remote_message=result.message,
                retryable=retryable,
            )
            raise GatewayFaultException(
                result.message or "Gateway error",
                transaction_id=current.id,
                transaction_ref=current.reference,
                retryable=retryable,
                remote_code=result.code,
                remote_message=result.message,
            )

        logger.info(
            f"payment_{current.type.value.lower()}_succeeded",
            transaction_ref=current.reference,
            remote_reference=current.remote_reference,
            order_status=order.status.value,
        )
        return PaymentResult(
            transaction_id=current.id,
            transaction_ref=current.reference,
            remote_reference=current.remote_reference,
            order_id=order.id,
            order_number=order.order_number,
            order_status=order.status.value,
            amount=current.amount,
            status=current.status.value,
            message=current.response_message,
        )

    def _publish(self, ledger_service: LedgerDomainService) -> None:
        for event in ledger_service.drain_events():
            logger.info(
                "transaction_event",
                event_type=type(event).__name__,
                event_id=event.event_id,
                order_id=event.order_id,
                transaction_ref=event.transaction_ref,
                transaction_type=event.transaction_type,
            )

    # ---- eligibility ----

    async def evaluate(self, transaction_ref: str, operation: Union[str, TransactionType]) -> EligibilityView:
        now = self._now()
        async with self._uow_factory(readonly=True) as uow:
            target = await uow.transaction_repository.get_by_reference(transaction_ref)
        if target is None:
            raise TransactionNotFoundException(transaction_ref)

        verdict = self.evaluator.evaluate(target, operation, now)
        recommended = self.evaluator.recommend(target, now)
        op_label = operation.value if isinstance(operation, TransactionType) else str(operation)
        age = (now - target.created_at).total_seconds() / 3600 if target.created_at else 0.0
        return EligibilityView(
            transaction_ref=target.reference,
            transaction_type=target.type.value,
            transaction_status=target.status.value,
            operation=op_label,
            allowed=verdict.allowed,
            reason=getattr(verdict, "reason", None),
            code=getattr(verdict, "code", None),
            suggested_alternative=(
                verdict.suggested_alternative.value
                if getattr(verdict, "suggested_alternative", None) else None
            ),
            should_use_void=(
                not verdict.allowed
                and getattr(verdict, "suggested_alternative", None) == TransactionType.VOID
            ),
            recommended_action=recommended.value if recommended else None,
            age_hours=round(age, 2),
            settlement_window_hours=self.evaluator.settlement_window.total_seconds() / 3600,
        )

    async def ledger_counts(self) -> dict:
        """Row counts used by the database diagnostic."""
        async with self._uow_factory(readonly=True) as uow:
            orders = await uow.order_repository.count()
            transactions = await uow.transaction_repository.count()
        return {"orders": orders, "transactions": transactions}
