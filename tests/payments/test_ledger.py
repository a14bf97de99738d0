from datetime import datetime, timezone
from decimal import Decimal

import pytest

from domain.common.exceptions import DomainValidationException
from domain.payment.entity import (
    Order,
    OrderLedger,
    OrderStatus,
    PaymentMethodReference,
    Transaction,
    TransactionStatus,
    TransactionType,
    generate_order_number,
    generate_transaction_reference,
)
from domain.payment.events import TransactionCancelled, TransactionFailed, TransactionSucceeded
from domain.payment.exceptions import DataIntegrityException, RefundExceedsBalanceException
from domain.payment.service import LedgerDomainService


NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def make_order(amount="500.00", **kw) -> Order:
    return Order(
        id=kw.pop("id", "o-1"),
        order_number="ORD_20260302120000_1234",
        customer_id="cust-1",
        amount=Decimal(amount),
        currency=kw.pop("currency", "usd"),
        created_at=NOW,
        **kw,
    )


def make_tx(tx_type, amount, status=TransactionStatus.SUCCESS, parent_id=None, tx_id=None, ref="RT1"):
    return Transaction(
        id=tx_id or f"{tx_type.value}-{amount}-{status.value}",
        order_id="o-1",
        reference=f"TXN_{tx_type.value}",
        type=tx_type,
        amount=Decimal(amount),
        status=status,
        parent_id=parent_id,
        remote_reference=ref if status == TransactionStatus.SUCCESS else None,
        created_at=NOW,
    )


def test_order_validation():
    assert make_order().currency == "USD"
    with pytest.raises(DomainValidationException):
        make_order(amount="0")
    with pytest.raises(DomainValidationException):
        make_order(currency="US")


def test_reference_formats():
    prefix, stamp, suffix = generate_order_number(NOW).split("_")
    assert (prefix, stamp, len(suffix)) == ("ORD", "20260302120000", 8)
    int(suffix, 16)
    ref = generate_transaction_reference(NOW)
    prefix, stamp, hex_part = ref.split("_")
    assert (prefix, stamp, len(hex_part)) == ("TXN", "20260302120000", 32)


@pytest.mark.parametrize(
    "tx_type,expected",
    [
        (TransactionType.PURCHASE, OrderStatus.CAPTURED),
        (TransactionType.AUTHORIZE, OrderStatus.AUTHORIZED),
        (TransactionType.CAPTURE, OrderStatus.CAPTURED),
        (TransactionType.VOID, OrderStatus.VOIDED),
        (TransactionType.REFUND, OrderStatus.REFUNDED),
    ],
)
def test_order_status_follows_successful_transaction(tx_type, expected):
    order = make_order()
    assert order.apply_outcome(make_tx(tx_type, "10.00"), NOW) is True
    assert order.status == expected


def test_failed_follow_up_leaves_order_alone():
    order = make_order(status=OrderStatus.AUTHORIZED)
    failed = make_tx(TransactionType.CAPTURE, "10.00", TransactionStatus.FAILED)
    assert order.apply_outcome(failed, NOW) is False
    assert order.status == OrderStatus.AUTHORIZED

    order = make_order()
    order.apply_outcome(make_tx(TransactionType.PURCHASE, "10.00", TransactionStatus.FAILED), NOW)
    assert order.status == OrderStatus.FAILED


def test_transaction_single_terminal_transition():
    tx = make_tx(TransactionType.PURCHASE, "10.00", TransactionStatus.PENDING)
    tx.mark_succeeded("RT9", NOW, "1", "approved")
    assert tx.status == TransactionStatus.SUCCESS
    with pytest.raises(DataIntegrityException):
        tx.mark_failed(NOW, "2", "declined")
    assert (tx.status, tx.remote_reference, tx.response_code) == (TransactionStatus.SUCCESS, "RT9", "1")


def test_success_requires_remote_reference():
    tx = make_tx(TransactionType.PURCHASE, "10.00", TransactionStatus.PENDING)
    with pytest.raises(DataIntegrityException):
        tx.mark_succeeded(None, NOW)
    assert tx.status == TransactionStatus.PENDING
    with pytest.raises(DataIntegrityException):
        Transaction(
            id="t", order_id="o-1", reference="r", type=TransactionType.PURCHASE,
            amount=Decimal("1"), status=TransactionStatus.SUCCESS,
        )


def test_unresolved_keeps_pending():
    tx = make_tx(TransactionType.PURCHASE, "10.00", TransactionStatus.PENDING)
    tx.note_unresolved("TIMEOUT", "no reply")
    assert tx.status == TransactionStatus.PENDING
    assert tx.remote_reference is None
    assert not tx.is_terminal


def test_payment_method_masking():
    pm = PaymentMethodReference(
        id="pm", order_id="o-1", last_four="1111", expiration_month=3, expiration_year=2029
    )
    assert pm.masked_card_number == "XXXXXXXXXXXX1111"
    assert pm.expiration_date == "2029-03"
    with pytest.raises(DomainValidationException):
        PaymentMethodReference(id="pm", order_id="o-1", last_four="11a1", expiration_month=3, expiration_year=2029)


def test_capturable_amount_counts_pending_captures():
    auth = make_tx(TransactionType.AUTHORIZE, "200.00", tx_id="auth")
    txs = [
        auth,
        make_tx(TransactionType.CAPTURE, "50.00", parent_id="auth"),
        make_tx(TransactionType.CAPTURE, "30.00", TransactionStatus.PENDING, parent_id="auth"),
        make_tx(TransactionType.CAPTURE, "100.00", TransactionStatus.FAILED, parent_id="auth"),
    ]
    assert LedgerDomainService.capturable_amount(auth, txs) == Decimal("120.00")

    service = LedgerDomainService()
    service.ensure_capture_amount(auth, Decimal("120.00"), txs)
    with pytest.raises(DomainValidationException):
        service.ensure_capture_amount(auth, Decimal("120.01"), txs)


def test_refundable_balance_is_bounded_by_target_and_order():
    purchase = make_tx(TransactionType.PURCHASE, "500.00", tx_id="p")
    ledger = OrderLedger(order=make_order(), transactions=[
        purchase,
        make_tx(TransactionType.REFUND, "300.00", parent_id="p"),
        make_tx(TransactionType.REFUND, "100.00", TransactionStatus.PENDING, parent_id="p"),
        make_tx(TransactionType.REFUND, "400.00", TransactionStatus.FAILED, parent_id="p"),
    ])
    service = LedgerDomainService()
    assert service.refundable_balance(purchase, ledger) == Decimal("100.00")
    service.ensure_refund_amount(purchase, Decimal("100.00"), ledger)
    with pytest.raises(RefundExceedsBalanceException):
        service.ensure_refund_amount(purchase, Decimal("100.01"), ledger)
    with pytest.raises(DomainValidationException):
        service.ensure_refund_amount(purchase, Decimal("0"), ledger)


def test_verify_detects_over_refund():
    ledger = OrderLedger(order=make_order(), transactions=[
        make_tx(TransactionType.PURCHASE, "50.00", tx_id="p"),
        make_tx(TransactionType.REFUND, "60.00", parent_id="p"),
    ])
    with pytest.raises(DataIntegrityException):
        LedgerDomainService.verify(ledger)


def test_settle_collects_events():
    service = LedgerDomainService()
    order = make_order()
    service.settle(order, make_tx(TransactionType.PURCHASE, "500.00"), NOW)
    service.settle(order, make_tx(TransactionType.REFUND, "5.00", TransactionStatus.FAILED), NOW)
    cancelled = make_tx(TransactionType.REFUND, "5.00", TransactionStatus.PENDING)
    cancelled.mark_cancelled(NOW, "no payment method")
    service.settle(order, cancelled, NOW)

    events = service.drain_events()
    assert [type(e) for e in events] == [TransactionSucceeded, TransactionFailed, TransactionCancelled]
    assert events[0].order_status == "Captured"
    assert events[2].reason == "no payment method"
    assert service.drain_events() == []


def test_order_numbers_within_one_second_do_not_collide():
    numbers = {generate_order_number(NOW) for _ in range(500)}
    assert len(numbers) == 500
