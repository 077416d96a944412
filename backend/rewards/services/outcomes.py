"""Terminal results of a redemption attempt."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Dict, Optional, Union


class RejectionReason:
    INVALID_REQUEST = "invalid_request"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    UNKNOWN_USER = "unknown_user"


class FailureStage:
    STORE = "store"
    EXTENSION = "extension"
    EXTENSION_PARSE = "extension-parse"


_REJECTION_MESSAGES = {
    RejectionReason.INVALID_REQUEST: "Redemption request is invalid.",
    RejectionReason.INSUFFICIENT_BALANCE: "Not enough coins.",
    RejectionReason.UNKNOWN_USER: "User not found.",
}


@dataclass(frozen=True)
class Completed:
    new_balance: int
    subscription_end: datetime
    fingerprint: str
    request_id: str
    resumed: bool = False

    status: ClassVar[str] = "completed"

    @property
    def http_status(self) -> int:
        return 200

    def to_payload(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "new_balance": self.new_balance,
            "subscription_end": self.subscription_end.isoformat(),
            "fingerprint": self.fingerprint,
            "request_id": self.request_id,
            "resumed": self.resumed,
        }


@dataclass(frozen=True)
class Rejected:
    """No side effect happened; safe to correct the request and send a new one."""

    reason: str
    detail: str = ""
    fingerprint: Optional[str] = None
    request_id: Optional[str] = None

    status: ClassVar[str] = "rejected"

    @property
    def http_status(self) -> int:
        if self.reason == RejectionReason.UNKNOWN_USER:
            return 404
        return 400

    def to_payload(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "reason": self.reason,
            "message": self.detail or _REJECTION_MESSAGES.get(self.reason, ""),
            "fingerprint": self.fingerprint,
            "request_id": self.request_id,
        }


@dataclass(frozen=True)
class Failed:
    """The attempt stopped at ``stage``; when ``debit_committed`` the coins are already spent."""

    stage: str
    detail: str
    fingerprint: str
    request_id: str
    debit_committed: bool = False

    status: ClassVar[str] = "failed"

    @property
    def http_status(self) -> int:
        if self.stage == FailureStage.STORE:
            return 500
        return 502

    def to_payload(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "stage": self.stage,
            "detail": self.detail,
            "debit_committed": self.debit_committed,
            "fingerprint": self.fingerprint,
            "request_id": self.request_id,
        }


RedemptionOutcome = Union[Completed, Rejected, Failed]
