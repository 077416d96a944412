from datetime import datetime, timezone as dt_timezone
from unittest.mock import Mock

import pytest
import requests

from rewards.exceptions import (
    RemoteCallError,
    RemoteResponseError,
    SubscriptionServiceConfigurationError,
)
from rewards.services.subscription_client import SubscriptionClient, get_subscription_client


def make_response(status_code=200, payload=None, text=""):
    response = Mock()
    response.status_code = status_code
    response.text = text
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error")
    else:
        response.raise_for_status.return_value = None
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


def make_client(response=None, side_effect=None, **kwargs):
    session = Mock()
    if side_effect is not None:
        session.post.side_effect = side_effect
    else:
        session.post.return_value = response
    return SubscriptionClient("http://subscriptions.test/", session=session, **kwargs), session


def test_extend_posts_once_and_parses_expiry():
    client, session = make_client(
        make_response(payload={"subscription_end": "2030-01-31T12:00:00+00:00"}),
        token="secret",
        timeout=5,
    )

    expiry = client.extend(7, 3, "pro", idempotency_key="fp-1")

    assert expiry == datetime(2030, 1, 31, 12, 0, tzinfo=dt_timezone.utc)
    session.post.assert_called_once_with(
        "http://subscriptions.test/subscriptions/7/extend",
        json={"days": 3, "plan": "pro"},
        headers={
            "Content-Type": "application/json",
            "Authorization": "Bearer secret",
            "Idempotency-Key": "fp-1",
        },
        timeout=5,
    )


def test_naive_expiry_is_treated_as_utc():
    client, _ = make_client(make_response(payload={"subscription_end": "2030-01-31T12:00:00"}))

    expiry = client.extend(7, 1, "basic")

    assert expiry.tzinfo is not None
    assert expiry == datetime(2030, 1, 31, 12, 0, tzinfo=dt_timezone.utc)


@pytest.mark.parametrize(
    "error",
    [
        requests.Timeout("read timed out"),
        requests.ConnectionError("refused"),
        requests.RequestException("weird"),
    ],
)
def test_transport_errors_become_remote_call_errors(error):
    client, session = make_client(side_effect=error)

    with pytest.raises(RemoteCallError):
        client.extend(7, 1, "basic")

    assert session.post.call_count == 1


def test_http_error_keeps_status_code():
    client, _ = make_client(make_response(status_code=503, text="maintenance"))

    with pytest.raises(RemoteCallError) as exc:
        client.extend(7, 1, "basic")

    assert exc.value.status_code == 503


@pytest.mark.parametrize(
    "payload",
    [
        ValueError("not json"),
        {},
        {"subscription_end": None},
        {"subscription_end": "next tuesday"},
        ["2030-01-31T12:00:00Z"],
    ],
)
def test_unusable_bodies_raise_response_errors(payload):
    client, _ = make_client(make_response(payload=payload, text="garbage"))

    with pytest.raises(RemoteResponseError):
        client.extend(7, 1, "basic")


def test_missing_base_url_is_a_configuration_error(settings):
    settings.SUBSCRIPTION_SERVICE_URL = ""

    with pytest.raises(SubscriptionServiceConfigurationError):
        get_subscription_client()


def test_client_built_from_settings(settings):
    settings.SUBSCRIPTION_SERVICE_URL = "http://example.test/api/"
    settings.SUBSCRIPTION_SERVICE_TIMEOUT = 12

    client = get_subscription_client()

    assert client.base_url == "http://example.test/api"
    assert client.timeout == 12.0
