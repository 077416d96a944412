"""Shared response helpers recording metrics and structured logs."""
from __future__ import annotations

from typing import Optional

from rest_framework.response import Response

from rewards.observability.logging import log_redemption_event
from rewards.observability.metrics import REWARDS_REQUEST_COUNT


class RewardsMetricsMixin:
    endpoint_label: str = "rewards"
    method: str = "GET"

    def _record_request(self, status: int) -> None:
        REWARDS_REQUEST_COUNT.labels(
            endpoint=self.endpoint_label,
            method=self.method,
            status=str(status),
        ).inc()

    def _error_response(
        self,
        *,
        status: int,
        code: str,
        message: str,
        details: Optional[dict] = None,
        user_id: Optional[int] = None,
    ) -> Response:
        self._record_request(status)
        log_redemption_event(
            message=message,
            user_id=user_id,
            extra={"code": code, "endpoint": self.endpoint_label, "details": details or {}},
        )
        payload = {"code": code, "message": message, "details": details or {}}
        return Response(payload, status=status)
