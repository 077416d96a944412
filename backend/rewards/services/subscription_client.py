"""HTTP client for the independently owned subscription service."""
from __future__ import annotations

import logging
from datetime import datetime, timezone as dt_timezone
from typing import Optional

import requests
from django.conf import settings
from django.utils.dateparse import parse_datetime
from requests.exceptions import ConnectionError, HTTPError, RequestException, Timeout

from rewards.exceptions import (
    RemoteCallError,
    RemoteResponseError,
    SubscriptionServiceConfigurationError,
)
from rewards.observability.metrics import SUBSCRIPTION_CALL_LATENCY

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class SubscriptionClient:
    """Requests subscription extensions. Each call is issued exactly once; no retries."""

    def __init__(self, base_url: str, *, token: str = "", timeout: float = DEFAULT_TIMEOUT_SECONDS,
                 session: Optional[requests.Session] = None) -> None:
        if not base_url:
            raise SubscriptionServiceConfigurationError("SUBSCRIPTION_SERVICE_URL is not configured.")
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._http = session or requests

    def extend(self, user_id: int, days: int, plan: str, *, idempotency_key: Optional[str] = None) -> datetime:
        """
        Extend ``user_id``'s ``plan`` by ``days`` and return the new expiry.

        :raises RemoteCallError: on timeout, connection failure or a non-2xx status
        :raises RemoteResponseError: when the body carries no usable ``subscription_end``
        """
        url = f"{self.base_url}/subscriptions/{user_id}/extend"
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        logger.info("Requesting %s day extension of plan %s for user %s", days, plan, user_id)

        response = None
        try:
            with SUBSCRIPTION_CALL_LATENCY.time():
                response = self._http.post(
                    url,
                    json={"days": days, "plan": plan},
                    headers=headers,
                    timeout=self.timeout,
                )
            response.raise_for_status()

        except Timeout as exc:
            message = f"Subscription service timed out after {self.timeout:g} seconds."
            logger.error(message)
            raise RemoteCallError(message) from exc

        except ConnectionError as exc:
            message = "Failed to connect to the subscription service."
            logger.error("%s %s", message, exc)
            raise RemoteCallError(message) from exc

        except HTTPError as exc:
            status_code = response.status_code if response is not None else None
            message = f"Subscription service returned HTTP {status_code}."
            logger.error("%s body=%s", message, _truncate(getattr(response, "text", "")))
            raise RemoteCallError(message, status_code=status_code) from exc

        except RequestException as exc:
            message = f"Subscription request failed: {exc}"
            logger.error(message)
            raise RemoteCallError(message) from exc

        return self._parse_expiry(response)

    @staticmethod
    def _parse_expiry(response) -> datetime:
        try:
            data = response.json()
        except ValueError as exc:
            logger.error("Invalid JSON from subscription service: %s", _truncate(response.text))
            raise RemoteResponseError("Subscription service returned invalid JSON.") from exc

        if not isinstance(data, dict) or not data.get("subscription_end"):
            logger.error("Subscription response missing subscription_end: %s", data)
            raise RemoteResponseError("Subscription service response has no subscription_end.")

        raw = data["subscription_end"]
        try:
            parsed = parse_datetime(str(raw))
        except ValueError:
            parsed = None
        if parsed is None:
            raise RemoteResponseError(f"Unparseable subscription_end: {raw!r}")
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=dt_timezone.utc)
        return parsed


def get_subscription_client() -> SubscriptionClient:
    """Build a client from Django settings."""
    return SubscriptionClient(
        getattr(settings, "SUBSCRIPTION_SERVICE_URL", ""),
        token=getattr(settings, "SUBSCRIPTION_SERVICE_TOKEN", ""),
        timeout=float(getattr(settings, "SUBSCRIPTION_SERVICE_TIMEOUT", DEFAULT_TIMEOUT_SECONDS)),
    )


def _truncate(text: str, limit: int = 200) -> str:
    text = text or ""
    return text if len(text) <= limit else f"{text[:limit]}..."
