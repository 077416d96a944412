import pytest

from rewards.models import PlayerAccount


@pytest.fixture(autouse=True)
def rewards_settings(settings):
    settings.REWARDS_COINS_PER_DAY = 30
    settings.REWARDS_PENDING_STALE_AFTER_MINUTES = 60
    settings.REWARDS_API_WRITE_ENABLED = True
    settings.SUBSCRIPTION_SERVICE_URL = "http://subscriptions.test"
    settings.SUBSCRIPTION_SERVICE_TOKEN = ""
    return settings


@pytest.fixture
def make_account(db):
    def factory(user_id=1001, balance=100, plan="basic", **kwargs):
        return PlayerAccount.objects.create(user_id=user_id, balance=balance, plan=plan, **kwargs)

    return factory
