from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from domain.payment.eligibility import (
    Allowed,
    Denied,
    EligibilityEvaluator,
    NOT_YET_SETTLED,
    NO_REMOTE_REFERENCE,
    UNRECOGNIZED_STATE,
    evaluate,
    recommend,
)
from domain.payment.entity import TransactionStatus, TransactionType


NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
T = TransactionType
S = TransactionStatus


def target(tx_type=T.PURCHASE, status=S.SUCCESS, age=timedelta(minutes=5), remote_reference="RT1"):
    return SimpleNamespace(
        type=tx_type,
        status=status,
        created_at=NOW - age,
        remote_reference=remote_reference,
    )


@pytest.mark.parametrize("operation", [T.CAPTURE, T.VOID, T.REFUND])
def test_missing_remote_reference_denies_every_operation(operation):
    result = evaluate(target(T.AUTHORIZE, remote_reference=None), operation, NOW)
    assert isinstance(result, Denied)
    assert result.code == NO_REMOTE_REFERENCE
    assert result.reason.startswith("no remote reference")
    assert result.suggested_alternative is None


@pytest.mark.parametrize("tx_type", [T.AUTHORIZE, T.PURCHASE, T.CAPTURE])
def test_void_allowed_on_successful_originating_or_capture(tx_type):
    assert evaluate(target(tx_type), T.VOID, NOW) == Allowed()


@pytest.mark.parametrize(
    "tx_type,status",
    [(T.PURCHASE, S.FAILED), (T.AUTHORIZE, S.PENDING), (T.REFUND, S.SUCCESS), (T.VOID, S.SUCCESS)],
)
def test_void_denied_otherwise(tx_type, status):
    result = evaluate(target(tx_type, status), T.VOID, NOW)
    assert not result.allowed
    assert result.reason == "void only valid against a successful authorization, purchase or capture"


def test_void_ignores_settlement_window():
    # the remote side decides whether it already settled
    assert evaluate(target(T.PURCHASE, age=timedelta(days=3)), T.VOID, NOW).allowed


def test_capture_only_against_successful_authorization():
    assert evaluate(target(T.AUTHORIZE), T.CAPTURE, NOW).allowed
    denied = evaluate(target(T.PURCHASE), T.CAPTURE, NOW)
    assert denied.reason == "capture only valid against a successful authorization"
    assert not evaluate(target(T.AUTHORIZE, S.FAILED), T.CAPTURE, NOW).allowed


def test_refund_of_authorization_suggests_void():
    result = evaluate(target(T.AUTHORIZE, age=timedelta(days=5)), T.REFUND, NOW)
    assert result == Denied(
        "authorization-only transactions cannot be refunded",
        "authorization_not_refundable",
        suggested_alternative=T.VOID,
    )


def test_refund_of_void_or_refund_not_allowed():
    for tx_type in (T.VOID, T.REFUND):
        result = evaluate(target(tx_type, age=timedelta(days=2)), T.REFUND, NOW)
        assert result.reason == "only settled purchase/capture transactions may be refunded"


def test_refund_of_failed_purchase_denied():
    result = evaluate(target(T.PURCHASE, S.FAILED, age=timedelta(days=2)), T.REFUND, NOW)
    assert result.reason == "underlying transaction did not succeed"


def test_refund_inside_window_is_advisory_and_suggests_void():
    result = evaluate(target(T.CAPTURE, age=timedelta(hours=23, minutes=59)), T.REFUND, NOW)
    assert result.reason == "not yet settled by remote gateway"
    assert result.code == NOT_YET_SETTLED
    assert result.suggested_alternative == T.VOID
    assert result.advisory


def test_refund_at_window_boundary_allowed():
    assert evaluate(target(T.PURCHASE, age=timedelta(hours=24)), T.REFUND, NOW).allowed
    assert evaluate(target(T.CAPTURE, age=timedelta(hours=25)), T.REFUND, NOW).allowed


def test_custom_window_is_honoured():
    evaluator = EligibilityEvaluator(timedelta(hours=1))
    assert evaluator.evaluate(target(T.PURCHASE, age=timedelta(hours=2)), T.REFUND, NOW).allowed
    assert not evaluator.evaluate(target(T.PURCHASE, age=timedelta(minutes=30)), T.REFUND, NOW).allowed


def test_negative_window_rejected():
    with pytest.raises(ValueError):
        EligibilityEvaluator(timedelta(hours=-1))


def test_unknown_values_are_denied_not_raised():
    odd = SimpleNamespace(type="Chargeback", status="Success", created_at=NOW, remote_reference="RT1")
    assert evaluate(odd, T.REFUND, NOW).code == UNRECOGNIZED_STATE
    assert evaluate(target(), "Purchase", NOW).code == UNRECOGNIZED_STATE
    assert evaluate(target(status="Settling"), T.VOID, NOW).reason == "unrecognized transaction state"


def test_plain_strings_and_naive_datetimes_accepted():
    plain = SimpleNamespace(
        type="Purchase",
        status="Success",
        created_at=(NOW - timedelta(days=2)).replace(tzinfo=None),
        remote_reference="RT1",
    )
    assert evaluate(plain, "Refund", NOW).allowed


def test_evaluation_is_deterministic():
    tx = target(T.CAPTURE, age=timedelta(hours=3))
    first = evaluate(tx, T.REFUND, NOW)
    for _ in range(5):
        assert evaluate(tx, T.REFUND, NOW) == first


@pytest.mark.parametrize("status", list(S))
@pytest.mark.parametrize("age_hours", [0, 12, 24, 48])
def test_type_exclusions_hold_for_every_state(status, age_hours):
    age = timedelta(hours=age_hours)
    assert not evaluate(target(T.AUTHORIZE, status, age), T.REFUND, NOW).allowed
    for tx_type in (T.PURCHASE, T.CAPTURE, T.VOID, T.REFUND):
        assert not evaluate(target(tx_type, status, age), T.CAPTURE, NOW).allowed


def test_recommend():
    assert recommend(target(T.AUTHORIZE), NOW) == T.CAPTURE
    assert recommend(target(T.PURCHASE), NOW) == T.VOID
    assert recommend(target(T.PURCHASE, age=timedelta(days=2)), NOW) == T.REFUND
    assert recommend(target(T.PURCHASE, S.FAILED), NOW) is None
    assert recommend(target(T.REFUND, age=timedelta(days=2)), NOW) is None
