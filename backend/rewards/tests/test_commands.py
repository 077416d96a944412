from datetime import timedelta
from io import StringIO

import pytest
from django.core.management import CommandError, call_command
from django.utils import timezone

from rewards.exceptions import RemoteCallError
from rewards.models import LedgerEntry, PendingRedemption, PlayerAccount
from rewards.services import guard
from rewards.tasks import flag_stale_redemptions
from rewards.tests.fakes import EXPIRY, FakeSubscriptionClient

Stage = PendingRedemption.Stage


def make_pending(account, request_id="req-1", days=1, **kwargs):
    return PendingRedemption.objects.create(
        fingerprint=guard.build_fingerprint(account.user_id, days, request_id),
        request_id=request_id,
        account=account,
        user_id=account.user_id,
        days=days,
        coins_required=days * 30,
        balance_after=account.balance,
        stage=kwargs.pop("stage", Stage.DEBITED),
        **kwargs,
    )


def run(name, *args, **kwargs):
    out = StringIO()
    call_command(name, *args, stdout=out, **kwargs)
    return out.getvalue()


@pytest.mark.django_db
def test_list_pending_redemptions(make_account):
    account = make_account()
    record = make_pending(account, last_error="HTTP 503")

    output = run("list_pending_redemptions")

    assert record.fingerprint in output
    assert "last_error: HTTP 503" in output
    assert "1 pending redemption(s)." in output


@pytest.mark.django_db
def test_list_pending_redemptions_stale_only(make_account):
    make_pending(make_account())

    output = run("list_pending_redemptions", "--stale")

    assert "No pending redemptions matched." in output


@pytest.mark.django_db
def test_resume_redemptions_completes_records(make_account, monkeypatch):
    account = make_account(balance=70)
    record = make_pending(account)
    fake = FakeSubscriptionClient(EXPIRY)
    monkeypatch.setattr("rewards.services.redemption.get_subscription_client", lambda: fake)

    output = run("resume_redemptions", "--fingerprint", record.fingerprint)

    assert "1 completed, 0 failed" in output
    assert PendingRedemption.objects.count() == 0
    assert PlayerAccount.objects.get(pk=account.pk).balance == 70
    assert fake.calls[0]["idempotency_key"] == record.fingerprint


@pytest.mark.django_db
def test_resume_redemptions_reports_failures(make_account, monkeypatch):
    make_pending(make_account())
    fake = FakeSubscriptionClient(RemoteCallError("still down"))
    monkeypatch.setattr("rewards.services.redemption.get_subscription_client", lambda: fake)

    with pytest.raises(CommandError):
        run("resume_redemptions")

    assert PendingRedemption.objects.get().attempts == 1


@pytest.mark.django_db
def test_resume_redemptions_dry_run(make_account, monkeypatch):
    make_pending(make_account())
    fake = FakeSubscriptionClient()
    monkeypatch.setattr("rewards.services.redemption.get_subscription_client", lambda: fake)

    output = run("resume_redemptions", "--dry-run")

    assert "1 redemptions would be resumed" in output
    assert fake.calls == []
    assert PendingRedemption.objects.count() == 1


@pytest.mark.django_db
def test_refund_redemption_command(make_account):
    account = make_account(balance=70)
    record = make_pending(account)

    output = run("refund_redemption", record.fingerprint, "--actor", "ops")

    assert "Refunded 30 coins to user 1001" in output
    assert PlayerAccount.objects.get(pk=account.pk).balance == 100
    assert PendingRedemption.objects.count() == 0


@pytest.mark.django_db
def test_refund_redemption_unknown_fingerprint():
    with pytest.raises(CommandError):
        run("refund_redemption", "0" * 64)


@pytest.mark.django_db
def test_adjust_balance_command(make_account):
    make_account(balance=10)

    output = run("adjust_balance", "1001", "25", "--reason", "support credit", "--idempotency-key", "ticket-9")
    repeat = run("adjust_balance", "1001", "25", "--reason", "support credit", "--idempotency-key", "ticket-9")

    assert "balance is now 35" in output
    assert "already applied" in repeat
    assert PlayerAccount.objects.get(user_id=1001).balance == 35
    assert LedgerEntry.objects.get().description == "support credit"


@pytest.mark.django_db
def test_adjust_balance_command_refuses_overdraft(make_account):
    make_account(balance=10)

    with pytest.raises(CommandError):
        run("adjust_balance", "1001", "-25")

    assert PlayerAccount.objects.get(user_id=1001).balance == 10


@pytest.mark.django_db
def test_flag_stale_redemptions_task(make_account):
    record = make_pending(make_account())
    PendingRedemption.objects.filter(pk=record.pk).update(created_at=timezone.now() - timedelta(hours=3))

    stats = flag_stale_redemptions.run()

    assert stats == {"flagged": 1, "outstanding": 1}
    assert flag_stale_redemptions.run() == {"flagged": 0, "outstanding": 1}
    assert PendingRedemption.objects.get(pk=record.pk).stage == Stage.DEBITED


@pytest.mark.django_db
def test_refund_redemption_command_requires_force_for_extend_requested(make_account):
    account = make_account(balance=70)
    record = make_pending(account, stage=Stage.EXTEND_REQUESTED, flagged_at=timezone.now())

    with pytest.raises(CommandError):
        run("refund_redemption", record.fingerprint)

    output = run("refund_redemption", record.fingerprint, "--force")

    assert "balance is now 100" in output
    assert PendingRedemption.objects.count() == 0
