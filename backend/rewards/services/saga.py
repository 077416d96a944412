"""Stage machine for the redemption saga.

    INITIATED -> DEBITED -> EXTEND_REQUESTED -> EXTENDED -> (record deleted)
                    ^              |
                    +--------------+  extension call failed

A confirmed expiry always wins: DEBITED -> EXTENDED is legal when a run that
failed reset the record before an earlier in-flight call was confirmed.

INITIATED exists only before the debit commits and is never persisted. A run
that fails after the debit leaves the record in DEBITED so a replay resumes.
"""
from __future__ import annotations

from typing import Dict, FrozenSet, Optional

from rewards.exceptions import InvalidStageTransition
from rewards.models import PendingRedemption

Stage = PendingRedemption.Stage

INITIATED: Optional[str] = None

_TRANSITIONS: Dict[Optional[str], FrozenSet[str]] = {
    INITIATED: frozenset({Stage.DEBITED}),
    Stage.DEBITED: frozenset({Stage.EXTEND_REQUESTED, Stage.EXTENDED}),
    Stage.EXTEND_REQUESTED: frozenset({Stage.DEBITED, Stage.EXTENDED}),
    Stage.EXTENDED: frozenset(),
}

# Stages from which a replay must not debit again.
RESUMABLE_STAGES: FrozenSet[str] = frozenset({Stage.DEBITED, Stage.EXTEND_REQUESTED, Stage.EXTENDED})

# Stages where coins are spent but the extension is not confirmed.
UNRESOLVED_STAGES: FrozenSet[str] = frozenset({Stage.DEBITED, Stage.EXTEND_REQUESTED})


def can_transition(current: Optional[str], target: str) -> bool:
    return target in _TRANSITIONS.get(current, frozenset())


def ensure_transition(current: Optional[str], target: str) -> None:
    if not can_transition(current, target):
        raise InvalidStageTransition(f"Cannot move pending redemption from {current or 'initiated'} to {target}.")
