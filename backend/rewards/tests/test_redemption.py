from datetime import timedelta

import pytest
from django.db import DatabaseError

from rewards.exceptions import InvalidStageTransition, RemoteCallError, RemoteResponseError, RewardsError
from rewards.models import LedgerEntry, PendingRedemption, PlayerAccount
from rewards.services import (
    Completed,
    Failed,
    FailureStage,
    RedemptionCoordinator,
    Rejected,
    RejectionReason,
)
from rewards.services import guard
from rewards.tests.fakes import EXPIRY, FakeSubscriptionClient


@pytest.mark.django_db
def test_redeem_success_debits_extends_and_clears_pending(make_account):
    make_account(balance=100)
    client = FakeSubscriptionClient(EXPIRY)

    outcome = RedemptionCoordinator(client).redeem(1001, 3, "req-1")

    assert isinstance(outcome, Completed)
    assert outcome.new_balance == 10
    assert outcome.subscription_end == EXPIRY
    assert outcome.resumed is False

    account = PlayerAccount.objects.get(user_id=1001)
    assert account.balance == 10
    assert account.subscription_end == EXPIRY
    assert PendingRedemption.objects.count() == 0

    entry = LedgerEntry.objects.get(account=account)
    assert entry.amount == -90
    assert entry.type == LedgerEntry.EntryType.REDEMPTION
    assert entry.balance_after == 10

    assert client.calls == [
        {
            "user_id": 1001,
            "days": 3,
            "plan": "basic",
            "idempotency_key": guard.build_fingerprint(1001, 3, "req-1"),
        }
    ]


@pytest.mark.django_db
def test_redeem_rejects_insufficient_balance_without_mutation(make_account):
    make_account(balance=50)
    client = FakeSubscriptionClient()

    outcome = RedemptionCoordinator(client).redeem(1001, 3, "req-1")

    assert isinstance(outcome, Rejected)
    assert outcome.reason == RejectionReason.INSUFFICIENT_BALANCE
    assert outcome.http_status == 400
    assert PlayerAccount.objects.get(user_id=1001).balance == 50
    assert LedgerEntry.objects.count() == 0
    assert PendingRedemption.objects.count() == 0
    assert client.calls == []


@pytest.mark.django_db
def test_redeem_timeout_keeps_debit_and_leaves_record_debited(make_account):
    make_account(balance=100)
    client = FakeSubscriptionClient(RemoteCallError("Subscription service timed out after 30 seconds."))

    outcome = RedemptionCoordinator(client).redeem(1001, 2, "req-1")

    assert isinstance(outcome, Failed)
    assert outcome.stage == FailureStage.EXTENSION
    assert outcome.debit_committed is True
    assert outcome.http_status == 502
    assert PlayerAccount.objects.get(user_id=1001).balance == 40

    record = PendingRedemption.objects.get()
    assert record.stage == PendingRedemption.Stage.DEBITED
    assert record.attempts == 1
    assert "timed out" in record.last_error


@pytest.mark.django_db
def test_redeem_unknown_user_is_rejected():
    client = FakeSubscriptionClient()

    outcome = RedemptionCoordinator(client).redeem(424242, 1, "req-1")

    assert isinstance(outcome, Rejected)
    assert outcome.reason == RejectionReason.UNKNOWN_USER
    assert outcome.http_status == 404
    assert PlayerAccount.objects.count() == 0
    assert LedgerEntry.objects.count() == 0
    assert client.calls == []


@pytest.mark.django_db
@pytest.mark.parametrize("days", [0, -1, "3", True, None])
def test_redeem_rejects_invalid_days(make_account, days):
    make_account(balance=100)

    outcome = RedemptionCoordinator(FakeSubscriptionClient()).redeem(1001, days, "req-1")

    assert isinstance(outcome, Rejected)
    assert outcome.reason == RejectionReason.INVALID_REQUEST
    assert PlayerAccount.objects.get(user_id=1001).balance == 100


@pytest.mark.django_db
def test_retry_after_failure_resumes_without_second_debit(make_account):
    make_account(balance=100)
    client = FakeSubscriptionClient(RemoteCallError("boom"), EXPIRY)
    coordinator = RedemptionCoordinator(client)

    first = coordinator.redeem(1001, 2, "req-1")
    second = coordinator.redeem(1001, 2, "req-1")

    assert isinstance(first, Failed)
    assert isinstance(second, Completed)
    assert second.resumed is True
    assert second.new_balance == 40
    assert PlayerAccount.objects.get(user_id=1001).balance == 40
    assert LedgerEntry.objects.count() == 1
    assert PendingRedemption.objects.count() == 0
    assert len(client.calls) == 2
    assert client.calls[0]["idempotency_key"] == client.calls[1]["idempotency_key"]


@pytest.mark.django_db
def test_distinct_request_ids_are_separate_redemptions(make_account):
    make_account(balance=100)
    coordinator = RedemptionCoordinator(FakeSubscriptionClient(EXPIRY))

    first = coordinator.redeem(1001, 1, "req-1")
    second = coordinator.redeem(1001, 1, "req-2")

    assert isinstance(first, Completed)
    assert isinstance(second, Completed)
    assert PlayerAccount.objects.get(user_id=1001).balance == 40
    assert LedgerEntry.objects.count() == 2


@pytest.mark.django_db
def test_missing_request_id_generates_one(make_account):
    make_account(balance=100)

    outcome = RedemptionCoordinator(FakeSubscriptionClient()).redeem(1001, 1)

    assert isinstance(outcome, Completed)
    assert outcome.request_id
    assert outcome.fingerprint == guard.build_fingerprint(1001, 1, outcome.request_id)


@pytest.mark.django_db
def test_unparseable_extension_response_is_extension_parse_failure(make_account):
    make_account(balance=100)
    client = FakeSubscriptionClient(RemoteResponseError("Subscription service response has no subscription_end."))

    outcome = RedemptionCoordinator(client).redeem(1001, 1, "req-1")

    assert isinstance(outcome, Failed)
    assert outcome.stage == FailureStage.EXTENSION_PARSE
    assert outcome.debit_committed is True
    assert PendingRedemption.objects.get().stage == PendingRedemption.Stage.DEBITED


@pytest.mark.django_db
def test_extended_record_completes_without_calling_service(make_account):
    account = make_account(balance=100)
    fingerprint = guard.build_fingerprint(1001, 1, "req-1")
    PendingRedemption.objects.create(
        fingerprint=fingerprint,
        request_id="req-1",
        account=account,
        user_id=1001,
        days=1,
        coins_required=30,
        balance_after=70,
        stage=PendingRedemption.Stage.EXTENDED,
        subscription_end=EXPIRY,
    )
    client = FakeSubscriptionClient()

    outcome = RedemptionCoordinator(client).redeem(1001, 1, "req-1")

    assert isinstance(outcome, Completed)
    assert outcome.resumed is True
    assert outcome.new_balance == 70
    assert client.calls == []
    assert PendingRedemption.objects.count() == 0
    assert PlayerAccount.objects.get(user_id=1001).subscription_end == EXPIRY


@pytest.mark.django_db
def test_record_stuck_in_extend_requested_is_resumed(make_account):
    account = make_account(balance=70)
    fingerprint = guard.build_fingerprint(1001, 1, "req-1")
    PendingRedemption.objects.create(
        fingerprint=fingerprint,
        request_id="req-1",
        account=account,
        user_id=1001,
        days=1,
        coins_required=30,
        balance_after=70,
        stage=PendingRedemption.Stage.EXTEND_REQUESTED,
    )
    client = FakeSubscriptionClient(EXPIRY)

    outcome = RedemptionCoordinator(client).redeem(1001, 1, "req-1")

    assert isinstance(outcome, Completed)
    assert outcome.new_balance == 70
    assert len(client.calls) == 1
    assert LedgerEntry.objects.count() == 0
    assert PlayerAccount.objects.get(user_id=1001).balance == 70


@pytest.mark.django_db
def test_store_failure_before_debit_reports_store_stage(make_account, monkeypatch):
    make_account(balance=100)

    def broken_find(fingerprint):
        raise DatabaseError("connection refused")

    monkeypatch.setattr(guard, "find", broken_find)

    outcome = RedemptionCoordinator(FakeSubscriptionClient()).redeem(1001, 1, "req-1")

    assert isinstance(outcome, Failed)
    assert outcome.stage == FailureStage.STORE
    assert outcome.debit_committed is False
    assert outcome.http_status == 500
    assert PlayerAccount.objects.get(user_id=1001).balance == 100


@pytest.mark.django_db
def test_store_failure_after_extension_is_reported_with_committed_debit(make_account, monkeypatch):
    make_account(balance=100)

    def broken_mark_extended(record, subscription_end):
        raise DatabaseError("disk full")

    monkeypatch.setattr(guard, "mark_extended", broken_mark_extended)

    outcome = RedemptionCoordinator(FakeSubscriptionClient(EXPIRY)).redeem(1001, 1, "req-1")

    assert isinstance(outcome, Failed)
    assert outcome.stage == FailureStage.STORE
    assert outcome.debit_committed is True
    assert PlayerAccount.objects.get(user_id=1001).balance == 70
    assert PendingRedemption.objects.get().stage == PendingRedemption.Stage.EXTEND_REQUESTED


@pytest.mark.django_db
def test_unit_price_comes_from_settings(make_account, settings):
    settings.REWARDS_COINS_PER_DAY = 10
    make_account(balance=100)

    outcome = RedemptionCoordinator(FakeSubscriptionClient()).redeem(1001, 3, "req-1")

    assert isinstance(outcome, Completed)
    assert outcome.new_balance == 70


@pytest.mark.django_db
def test_outcome_payloads_are_structured(make_account):
    make_account(balance=100)

    outcome = RedemptionCoordinator(FakeSubscriptionClient()).redeem(1001, 3, "req-1")

    assert outcome.to_payload() == {
        "status": "completed",
        "new_balance": 10,
        "subscription_end": EXPIRY.isoformat(),
        "fingerprint": guard.build_fingerprint(1001, 3, "req-1"),
        "request_id": "req-1",
        "resumed": False,
    }


@pytest.mark.django_db
def test_replay_after_completion_returns_recorded_result(make_account):
    make_account(balance=100)
    client = FakeSubscriptionClient(EXPIRY)
    coordinator = RedemptionCoordinator(client)

    first = coordinator.redeem(1001, 2, "req-1")
    replay = coordinator.redeem(1001, 2, "req-1")

    assert isinstance(replay, Completed)
    assert replay.resumed is True
    assert replay.new_balance == first.new_balance == 40
    assert replay.subscription_end == EXPIRY
    assert len(client.calls) == 1
    assert LedgerEntry.objects.count() == 1
    assert PendingRedemption.objects.count() == 0


@pytest.mark.django_db
def test_replay_after_refund_does_not_redebit(make_account):
    make_account(balance=100)
    coordinator = RedemptionCoordinator(FakeSubscriptionClient(RemoteCallError("down"), EXPIRY))
    failed = coordinator.redeem(1001, 2, "req-1")
    guard.refund(failed.fingerprint, actor="ops")

    replay = coordinator.redeem(1001, 2, "req-1")

    assert isinstance(replay, Failed)
    assert replay.debit_committed is False
    assert "refunded" in replay.detail
    assert PlayerAccount.objects.get(user_id=1001).balance == 100
    assert PendingRedemption.objects.count() == 0


class ResetDuringCallClient(FakeSubscriptionClient):
    """A concurrent replay times out and resets the record while this call is in flight."""

    def extend(self, user_id, days, plan, *, idempotency_key=None):
        record = PendingRedemption.objects.get(fingerprint=idempotency_key)
        guard.record_failure(record, "concurrent replay timed out")
        return super().extend(user_id, days, plan, idempotency_key=idempotency_key)


@pytest.mark.django_db
def test_confirmed_extension_wins_over_concurrent_reset(make_account):
    make_account(balance=100)
    client = ResetDuringCallClient(EXPIRY)

    outcome = RedemptionCoordinator(client).redeem(1001, 2, "req-race")

    assert isinstance(outcome, Completed)
    assert outcome.new_balance == 40
    assert outcome.subscription_end == EXPIRY
    assert PendingRedemption.objects.count() == 0
    assert PlayerAccount.objects.get(user_id=1001).subscription_end == EXPIRY


@pytest.mark.django_db
def test_stage_error_while_recording_extension_is_a_store_failure(make_account, monkeypatch):
    make_account(balance=100)

    def rejecting_mark_extended(record, subscription_end):
        raise InvalidStageTransition("Cannot move pending redemption.")

    monkeypatch.setattr(guard, "mark_extended", rejecting_mark_extended)

    outcome = RedemptionCoordinator(FakeSubscriptionClient(EXPIRY)).redeem(1001, 1, "req-1")

    assert isinstance(outcome, Failed)
    assert outcome.stage == FailureStage.STORE
    assert outcome.debit_committed is True


class RefundDuringCallClient(FakeSubscriptionClient):
    """An operator tries to refund while the extension call is in flight."""

    def __init__(self, *results):
        super().__init__(*results)
        self.refund_errors = []

    def extend(self, user_id, days, plan, *, idempotency_key=None):
        try:
            guard.refund(idempotency_key)
        except RewardsError as exc:
            self.refund_errors.append(exc)
        return super().extend(user_id, days, plan, idempotency_key=idempotency_key)


@pytest.mark.django_db
def test_refund_is_refused_while_extension_is_in_flight(make_account):
    make_account(balance=100)
    client = RefundDuringCallClient(EXPIRY)

    outcome = RedemptionCoordinator(client).redeem(1001, 2, "req-1")

    assert len(client.refund_errors) == 1
    assert isinstance(outcome, Completed)
    assert PlayerAccount.objects.get(user_id=1001).balance == 40
    assert not LedgerEntry.objects.filter(type=LedgerEntry.EntryType.REFUND).exists()


@pytest.mark.django_db
def test_replay_after_later_redemption_reports_current_expiry(make_account):
    make_account(balance=100)
    later = EXPIRY + timedelta(days=1)
    coordinator = RedemptionCoordinator(FakeSubscriptionClient(EXPIRY, later))
    coordinator.redeem(1001, 1, "req-1")
    coordinator.redeem(1001, 1, "req-2")

    replay = coordinator.redeem(1001, 1, "req-1")

    assert isinstance(replay, Completed)
    assert replay.new_balance == 70
    assert replay.subscription_end == later


class InterleavedRedeemClient(FakeSubscriptionClient):
    """Submits a second, different redemption for the same player mid-call."""

    def __init__(self, *results):
        super().__init__(*results)
        self.nested_outcomes = []

    def extend(self, user_id, days, plan, *, idempotency_key=None):
        if not self.nested_outcomes:
            self.nested_outcomes.append(RedemptionCoordinator(self).redeem(user_id, days, "req-second"))
        return super().extend(user_id, days, plan, idempotency_key=idempotency_key)


@pytest.mark.django_db
def test_two_redemptions_exceeding_balance_never_both_succeed(make_account):
    make_account(balance=100)
    client = InterleavedRedeemClient(EXPIRY)

    first = RedemptionCoordinator(client).redeem(1001, 3, "req-first")

    assert isinstance(first, Completed)
    [second] = client.nested_outcomes
    assert isinstance(second, Rejected)
    assert second.reason == RejectionReason.INSUFFICIENT_BALANCE
    assert PlayerAccount.objects.get(user_id=1001).balance == 10
    assert LedgerEntry.objects.count() == 1


@pytest.mark.django_db
def test_debit_reads_the_account_under_a_row_lock(make_account, monkeypatch):
    make_account(balance=100)
    manager = PlayerAccount.objects
    original = manager.select_for_update
    locked_calls = []

    def spy_select_for_update(*args, **kwargs):
        locked_calls.append(kwargs)
        return original(*args, **kwargs)

    monkeypatch.setattr(manager, "select_for_update", spy_select_for_update)

    outcome = RedemptionCoordinator(FakeSubscriptionClient()).redeem(1001, 1, "req-1")

    assert isinstance(outcome, Completed)
    assert locked_calls
