"""Celery tasks for reward ledger housekeeping."""
from __future__ import annotations

import logging
from typing import Dict

from celery import shared_task
from django.db import DatabaseError

from rewards.services import guard

logger = logging.getLogger(__name__)


@shared_task(queue="rewards")
def flag_stale_redemptions() -> Dict[str, int]:
    """Flag redemptions stuck past the staleness window for manual reconciliation.

    Flagged records are never retried or refunded here; operators decide with
    ``resume_redemptions`` or ``refund_redemption``.
    """

    try:
        flagged = guard.flag_stale()
    except DatabaseError:
        logger.exception("Failed to scan pending redemptions for staleness")
        raise

    outstanding = guard.stale_queryset().count()
    stats = {"flagged": len(flagged), "outstanding": outstanding}
    if flagged:
        logger.warning("Flagged %s stale pending redemption(s); %s outstanding", len(flagged), outstanding)
    else:
        logger.info("No new stale pending redemptions; %s outstanding", outstanding)
    return stats
