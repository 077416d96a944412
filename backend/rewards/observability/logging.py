"""Structured logging helper for reward ledger events."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger("rewards")


def log_redemption_event(*, message: str, user_id: Optional[int] = None, fingerprint: Optional[str] = None,
                         stage: Optional[str] = None, extra: Optional[Dict[str, Any]] = None,
                         level: int = logging.INFO) -> None:
    payload: Dict[str, Any] = {"message": message}
    if user_id is not None:
        payload["user_id"] = user_id
    if fingerprint:
        payload["fingerprint"] = fingerprint
    if stage:
        payload["stage"] = stage
    if extra:
        payload.update(extra)
    logger.log(level, payload)
