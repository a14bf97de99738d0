import asyncio
from decimal import Decimal

import pytest

from application.dtos.payments import (
    CaptureRequest,
    ExecuteParams,
    GatewayApproved,
    GatewayDeclined,
    GatewayError,
    RefundRequest,
)
from application.ports.payment_gateway import GatewayTimeoutError, GatewayTransportError
from application.services.payment_service import MISSING_PAYMENT_METHOD
from domain.common.exceptions import DomainValidationException
from domain.payment.entity import (
    Order,
    OrderStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
    new_id,
)
from domain.payment.exceptions import (
    ConcurrentOperationException,
    DataIntegrityException,
    DuplicateSubmissionException,
    GatewayDeclinedException,
    GatewayFaultException,
    IneligibleOperationException,
    RefundExceedsBalanceException,
    TransactionNotFoundException,
)
from shared.codes.payment_codes import PaymentCode

from conftest import VISA, payment_request


async def only_order(service):
    items, total = await service.list_orders()
    assert total == 1
    return await service.get_order(items[0].id)


def by_type(order, tx_type):
    return [t for t in order.transactions if t.type == tx_type.value]


# ---- scenarios ----

@pytest.mark.asyncio
async def test_purchase_approved_captures_order(service, gateway):
    gateway.script("auth_capture", GatewayApproved(remote_reference="X123", code="1", message="approved"))

    result = await service.purchase(payment_request("100.50"))

    assert result.success
    assert result.status == "Success"
    assert result.remote_reference == "X123"
    assert result.order_status == "Captured"
    assert result.amount == Decimal("100.50")

    order = await only_order(service)
    (purchase,) = by_type(order, TransactionType.PURCHASE)
    assert purchase.remote_reference == "X123"
    assert order.payment_method.masked_number == "XXXXXXXXXXXX1111"
    assert order.payment_method.card_brand == "Visa"
    assert VISA not in order.model_dump_json()


@pytest.mark.asyncio
async def test_refund_of_authorization_denied_before_remote_call(service, gateway):
    gateway.script("auth_only", GatewayApproved(remote_reference="A1", code="1"))
    auth = await service.authorize(payment_request("200.00"))

    with pytest.raises(IneligibleOperationException) as exc:
        await service.refund(auth.transaction_ref, RefundRequest(amount=Decimal("200.00")))

    assert exc.value.reason == "authorization-only transactions cannot be refunded"
    assert exc.value.suggested_alternative == "Void"
    assert exc.value.code == PaymentCode.INELIGIBLE_OPERATION
    assert gateway.ops() == ["auth_only"]
    order = await only_order(service)
    assert by_type(order, TransactionType.REFUND) == []


@pytest.mark.asyncio
async def test_refund_of_fresh_capture_suggests_void(service, gateway, clock):
    gateway.script("auth_only", GatewayApproved(remote_reference="A1", code="1"))
    gateway.script("capture", GatewayApproved(remote_reference="C1", code="1"))
    auth = await service.authorize(payment_request("200.00"))
    clock.advance(seconds=20)
    capture = await service.capture(auth.transaction_ref, CaptureRequest(amount=Decimal("200.00")))
    assert capture.remote_reference == "C1"
    assert capture.order_status == "Captured"

    clock.advance(seconds=30)
    with pytest.raises(IneligibleOperationException) as exc:
        await service.refund(capture.transaction_ref, RefundRequest(amount=Decimal("50.00")))

    assert exc.value.reason == "not yet settled by remote gateway"
    assert exc.value.suggested_alternative == "Void"
    assert gateway.ops() == ["auth_only", "capture"]


@pytest.mark.asyncio
async def test_void_of_fresh_capture(service, gateway, clock):
    gateway.script("auth_only", GatewayApproved(remote_reference="A1", code="1"))
    gateway.script("capture", GatewayApproved(remote_reference="C1", code="1"))
    auth = await service.authorize(payment_request("200.00"))
    capture = await service.capture(auth.transaction_ref)
    assert capture.amount == Decimal("200.00")

    clock.advance(seconds=40)
    voided = await service.void(capture.transaction_ref)

    assert voided.status == "Success"
    assert voided.order_status == "Voided"
    assert gateway.calls[-1] == ("void", {"ref": "C1"})
    order = await only_order(service)
    (void_tx,) = by_type(order, TransactionType.VOID)
    assert void_tx.parent_id == capture.transaction_id


@pytest.mark.asyncio
async def test_refund_after_settlement(service, gateway, clock):
    gateway.script("auth_capture", GatewayApproved(remote_reference="P500", code="1"))
    gateway.script("refund", GatewayApproved(remote_reference="R1", code="1"))
    purchase = await service.purchase(payment_request("500.00"))

    clock.advance(hours=25)
    refund = await service.refund(
        purchase.transaction_ref, RefundRequest(amount=Decimal("50.00"), reason="damaged item")
    )

    assert refund.status == "Success"
    assert refund.remote_reference == "R1"
    assert refund.order_status == "Refunded"
    op, kwargs = gateway.calls[-1]
    assert op == "refund"
    assert kwargs["ref"] == "P500"
    assert kwargs["amount"] == Decimal("50.00")
    assert kwargs["instrument"].masked_number == "XXXXXXXXXXXX1111"

    order = await only_order(service)
    (refund_tx,) = by_type(order, TransactionType.REFUND)
    assert refund_tx.reason == "damaged item"

    # 450 left of 500
    with pytest.raises(RefundExceedsBalanceException):
        await service.refund(purchase.transaction_ref, RefundRequest(amount=Decimal("450.01")))
    second = await service.refund(purchase.transaction_ref, RefundRequest(amount=Decimal("450.00")))
    assert second.status == "Success"
    with pytest.raises(RefundExceedsBalanceException):
        await service.refund(purchase.transaction_ref, RefundRequest(amount=Decimal("0.01")))
    assert gateway.ops().count("refund") == 2


@pytest.mark.asyncio
async def test_timeout_leaves_transaction_pending(service, gateway):
    release = asyncio.Event()

    async def slow():
        await release.wait()
        return GatewayApproved(remote_reference="LATE1", code="1")

    gateway.script("auth_capture", slow)
    service.call_timeout = 0.05

    with pytest.raises(GatewayFaultException) as exc:
        await service.purchase(payment_request("75.00"))
    assert exc.value.timed_out
    assert not exc.value.retryable
    assert exc.value.code == PaymentCode.GATEWAY_TIMEOUT

    order = await only_order(service)
    assert order.status == "Pending"
    (purchase,) = order.transactions
    assert purchase.status == "Pending"
    assert purchase.remote_reference is None
    assert purchase.response_code == "TIMEOUT"
    assert purchase.id == exc.value.transaction_id

    # the late reply is only logged, never written
    release.set()
    await asyncio.sleep(0.01)
    order = await only_order(service)
    assert order.transactions[0].status == "Pending"

    for operation, call in (
        ("Refund", lambda: service.refund(purchase.reference, RefundRequest(amount=Decimal("1.00")))),
        ("Void", lambda: service.void(purchase.reference)),
        ("Capture", lambda: service.capture(purchase.reference)),
    ):
        with pytest.raises(IneligibleOperationException) as denied:
            await call()
        assert denied.value.reason.startswith("no remote reference")
    assert gateway.ops() == ["auth_capture"]


@pytest.mark.asyncio
async def test_adapter_timeout_is_treated_as_unknown_outcome(service, gateway):
    gateway.script("auth_only", GatewayTimeoutError("Timed out waiting for scripted"))

    with pytest.raises(GatewayFaultException) as exc:
        await service.authorize(payment_request("10.00"))

    assert exc.value.timed_out
    order = await only_order(service)
    assert order.transactions[0].status == "Pending"


# ---- remote outcomes ----

@pytest.mark.asyncio
async def test_declined_purchase_fails_order(service, gateway):
    gateway.script("auth_capture", GatewayDeclined(code="2", message="This transaction has been declined."))

    with pytest.raises(GatewayDeclinedException) as exc:
        await service.purchase(payment_request("12.00"))

    assert exc.value.code == PaymentCode.GATEWAY_DECLINED
    assert exc.value.details["remote_code"] == "2"
    assert exc.value.details["held_for_review"] is False
    order = await only_order(service)
    assert order.status == "Failed"
    (purchase,) = order.transactions
    assert purchase.id == exc.value.transaction_id
    assert purchase.status == "Failed"
    assert purchase.remote_reference is None
    assert purchase.response_message == "This transaction has been declined."


@pytest.mark.asyncio
async def test_held_for_review_is_a_decline(service, gateway):
    gateway.script(
        "auth_capture",
        GatewayDeclined(code="4", message="This transaction is being held for review.", held_for_review=True),
    )
    with pytest.raises(GatewayDeclinedException) as exc:
        await service.purchase(payment_request("12.00"))
    assert exc.value.held_for_review
    assert exc.value.details["held_for_review"] is True
    assert exc.value.details["remote_code"] == "4"
    order = await only_order(service)
    assert order.transactions[0].status == "Failed"


@pytest.mark.asyncio
async def test_gateway_error_on_capture_is_retryable(service, gateway):
    gateway.script("auth_only", GatewayApproved(remote_reference="A7", code="1"))
    gateway.script("capture", GatewayError(code="3", message="An error occurred during processing."))
    auth = await service.authorize(payment_request("60.00"))

    with pytest.raises(GatewayFaultException) as exc:
        await service.capture(auth.transaction_ref)
    assert exc.value.retryable
    assert exc.value.code == PaymentCode.GATEWAY_RECOVERABLE

    order = await only_order(service)
    assert order.status == "Authorized"
    (capture,) = by_type(order, TransactionType.CAPTURE)
    assert capture.status == "Failed"

    # the failed capture reserves nothing; a retry goes through
    retried = await service.capture(auth.transaction_ref)
    assert retried.order_status == "Captured"


@pytest.mark.asyncio
async def test_transport_error_on_purchase_is_not_retryable(service, gateway):
    gateway.script("auth_capture", GatewayTransportError("Could not connect to scripted"))

    with pytest.raises(GatewayFaultException) as exc:
        await service.purchase(payment_request("15.00"))

    assert not exc.value.retryable
    assert exc.value.code == PaymentCode.GATEWAY_FAULT
    order = await only_order(service)
    assert order.status == "Failed"
    assert order.transactions[0].response_code == "TRANSPORT"


@pytest.mark.asyncio
async def test_approval_without_reference_is_integrity_error(service, gateway):
    gateway.script("auth_capture", GatewayApproved(remote_reference="", code="1"))

    with pytest.raises(DataIntegrityException):
        await service.purchase(payment_request("20.00"))

    order = await only_order(service)
    assert order.status == "Pending"
    assert order.transactions[0].status == "Pending"
    assert order.transactions[0].remote_reference is None


@pytest.mark.asyncio
async def test_forced_refund_inside_window_reaches_gateway(service, gateway):
    message = "The referenced transaction does not meet the criteria for issuing a credit."
    gateway.script("auth_capture", GatewayApproved(remote_reference="P1", code="1"))
    gateway.script("refund", GatewayDeclined(code="54", message=message))
    purchase = await service.purchase(payment_request("100.50"))

    with pytest.raises(GatewayDeclinedException) as exc:
        await service.refund(purchase.transaction_ref, RefundRequest(amount=Decimal("10.00")), force=True)

    assert exc.value.remote_message == message
    order = await only_order(service)
    assert order.status == "Captured"
    (refund,) = by_type(order, TransactionType.REFUND)
    assert refund.status == "Failed"
    assert refund.response_message == message


@pytest.mark.asyncio
async def test_force_does_not_bypass_type_rules(service, gateway):
    auth = await service.authorize(payment_request("30.00"))
    with pytest.raises(IneligibleOperationException):
        await service.refund(auth.transaction_ref, RefundRequest(amount=Decimal("5.00")), force=True)
    assert gateway.ops() == ["auth_only"]


# ---- guards ----

@pytest.mark.asyncio
async def test_duplicate_submission_within_window(service, gateway, clock):
    first = await service.purchase(payment_request("10.00", idempotency_key="cart-9"))

    with pytest.raises(DuplicateSubmissionException) as exc:
        await service.purchase(payment_request("10.00", idempotency_key="cart-9"))
    assert exc.value.existing_order_id == first.order_id
    assert gateway.ops() == ["auth_capture"]

    clock.advance(minutes=61)
    again = await service.purchase(payment_request("10.00", idempotency_key="cart-9"))
    assert again.order_id != first.order_id
    assert (await service.ledger_counts()) == {"orders": 2, "transactions": 2}


@pytest.mark.asyncio
async def test_simultaneous_submissions_with_same_key_charge_once(file_service, gateway):
    results = await asyncio.gather(
        file_service.purchase(payment_request("10.00", idempotency_key="same")),
        file_service.purchase(payment_request("10.00", idempotency_key="same")),
        return_exceptions=True,
    )

    charged = [r for r in results if not isinstance(r, BaseException)]
    rejected = [r for r in results if isinstance(r, DuplicateSubmissionException)]
    assert len(charged) == 1 and len(rejected) == 1
    assert rejected[0].existing_order_id == charged[0].order_id
    assert gateway.ops() == ["auth_capture"]
    assert (await file_service.ledger_counts()) == {"orders": 1, "transactions": 1}


@pytest.mark.asyncio
async def test_capture_cannot_exceed_authorization(service, gateway):
    auth = await service.authorize(payment_request("40.00"))
    with pytest.raises(DomainValidationException):
        await service.capture(auth.transaction_ref, CaptureRequest(amount=Decimal("40.01")))
    assert gateway.ops() == ["auth_only"]


@pytest.mark.asyncio
async def test_concurrent_operations_on_same_target_are_serialized(service, gateway):
    release = asyncio.Event()

    async def slow_capture():
        await release.wait()
        return GatewayApproved(remote_reference="C9", code="1")

    gateway.script("capture", slow_capture)
    auth = await service.authorize(payment_request("80.00"))

    first = asyncio.create_task(service.capture(auth.transaction_ref))
    while "capture" not in gateway.ops():
        await asyncio.sleep(0.005)

    with pytest.raises(ConcurrentOperationException):
        await service.void(auth.transaction_ref)

    release.set()
    captured = await first
    assert captured.remote_reference == "C9"

    # claim released once the outcome is recorded
    voided = await service.void(auth.transaction_ref)
    assert voided.order_status == "Voided"
    assert gateway.ops() == ["auth_only", "capture", "void"]


@pytest.mark.asyncio
async def test_unexpected_gateway_failure_releases_claim(service, gateway):
    gateway.script("auth_only", GatewayApproved(remote_reference="A5", code="1"))
    gateway.script("capture", RuntimeError("adapter bug"))
    auth = await service.authorize(payment_request("50.00"))

    with pytest.raises(RuntimeError):
        await service.capture(auth.transaction_ref)

    order = await only_order(service)
    (capture,) = by_type(order, TransactionType.CAPTURE)
    assert capture.status == "Pending"
    assert capture.response_code == "UNKNOWN"

    voided = await service.void(auth.transaction_ref)
    assert voided.order_status == "Voided"
    assert gateway.ops() == ["auth_only", "capture", "void"]


@pytest.mark.asyncio
async def test_integrity_error_after_call_releases_claim(service, gateway):
    gateway.script("auth_only", GatewayApproved(remote_reference="A6", code="1"))
    gateway.script("capture", GatewayApproved(remote_reference="", code="1"))
    auth = await service.authorize(payment_request("50.00"))

    with pytest.raises(DataIntegrityException):
        await service.capture(auth.transaction_ref)

    voided = await service.void(auth.transaction_ref)
    assert voided.status == "Success"


@pytest.mark.asyncio
async def test_stale_claim_is_taken_over(service, gateway, uow_factory, clock):
    auth = await service.authorize(payment_request("50.00"))
    # a worker that died mid-call leaves its claim behind
    async with uow_factory() as uow:
        assert await uow.transaction_repository.claim(auth.transaction_id, new_id(), clock())

    with pytest.raises(ConcurrentOperationException):
        await service.void(auth.transaction_ref)

    clock.advance(minutes=6)
    voided = await service.void(auth.transaction_ref)
    assert voided.order_status == "Voided"
    assert gateway.ops() == ["auth_only", "void"]


@pytest.mark.asyncio
async def test_refund_without_payment_method_is_cancelled(service, gateway, uow_factory, clock):
    now = clock()
    async with uow_factory() as uow:
        order = await uow.order_repository.create(Order(
            id=new_id(),
            order_number="ORD_20260302093000_0001",
            customer_id="legacy",
            amount=Decimal("80.00"),
            currency="USD",
            status=OrderStatus.CAPTURED,
            created_at=now,
            updated_at=now,
        ))
        await uow.transaction_repository.create(Transaction(
            id=new_id(),
            order_id=order.id,
            reference="TXN_LEGACY",
            type=TransactionType.PURCHASE,
            amount=Decimal("80.00"),
            status=TransactionStatus.SUCCESS,
            remote_reference="RT77",
            created_at=now,
            completed_at=now,
        ))

    clock.advance(hours=30)
    with pytest.raises(IneligibleOperationException) as exc:
        await service.refund("TXN_LEGACY", RefundRequest(amount=Decimal("10.00")))

    assert exc.value.message == MISSING_PAYMENT_METHOD
    assert gateway.ops() == []
    view = await service.get_order(order.id)
    assert view.status == "Captured"
    (refund,) = by_type(view, TransactionType.REFUND)
    assert refund.status == "Cancelled"
    assert refund.remote_reference is None


@pytest.mark.asyncio
async def test_terminal_rows_cannot_be_rewritten(service, uow_factory):
    result = await service.purchase(payment_request("9.00"))

    with pytest.raises(DataIntegrityException):
        async with uow_factory() as uow:
            tx = await uow.transaction_repository.get_by_id(result.transaction_id)
            tx.status = TransactionStatus.FAILED
            tx.remote_reference = None
            await uow.transaction_repository.update(tx)

    order = await service.get_order(result.order_id)
    assert order.transactions[0].status == "Success"
    assert order.transactions[0].remote_reference == result.remote_reference


# ---- transport-facing surface ----

@pytest.mark.asyncio
async def test_execute_dispatches_follow_up(service, gateway):
    auth = await service.authorize(payment_request("25.00"))

    result = await service.execute(
        auth.order_id, "Capture", ExecuteParams(transaction_ref=auth.transaction_ref, amount=Decimal("10.00"))
    )
    assert result.amount == Decimal("10.00")

    with pytest.raises(DomainValidationException):
        await service.execute(auth.order_id, "Purchase", ExecuteParams(transaction_ref=auth.transaction_ref))
    with pytest.raises(DomainValidationException):
        await service.execute("some-other-order", "Void", ExecuteParams(transaction_ref=auth.transaction_ref))
    with pytest.raises(TransactionNotFoundException):
        await service.execute(auth.order_id, "Void", ExecuteParams(transaction_ref="TXN_missing"))


@pytest.mark.asyncio
async def test_evaluate_reports_advice(service, clock):
    purchase = await service.purchase(payment_request("100.00"))

    fresh = await service.evaluate(purchase.transaction_ref, TransactionType.REFUND)
    assert not fresh.allowed
    assert fresh.should_use_void
    assert fresh.recommended_action == "Void"
    assert fresh.reason == "not yet settled by remote gateway"
    assert fresh.settlement_window_hours == 24

    clock.advance(hours=26)
    settled = await service.evaluate(purchase.remote_reference, "Refund")
    assert settled.allowed
    assert not settled.should_use_void
    assert settled.recommended_action == "Refund"
    assert settled.age_hours == 26


@pytest.mark.asyncio
async def test_create_order_does_not_contact_gateway(service, gateway):
    view = await service.create_order(payment_request("19.99"))
    assert view.status == "Pending"
    assert view.transactions == []
    assert view.payment_method.expiration_date.endswith("-12")
    assert gateway.ops() == []
    assert (await service.ledger_counts()) == {"orders": 1, "transactions": 0}


@pytest.mark.asyncio
async def test_create_order_leaves_key_for_purchase(service, gateway):
    created = await service.create_order(payment_request("19.99", idempotency_key="cart-3"))

    result = await service.purchase(payment_request("19.99", idempotency_key="cart-3"))

    assert result.success
    assert result.order_id != created.id
    assert gateway.ops() == ["auth_capture"]
    with pytest.raises(DuplicateSubmissionException) as exc:
        await service.authorize(payment_request("19.99", idempotency_key="cart-3"))
    assert exc.value.existing_order_id == result.order_id
