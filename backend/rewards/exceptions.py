"""Exception taxonomy for the reward ledger and the redemption saga."""
from __future__ import annotations


class RewardsError(Exception):
    """Base exception for reward ledger operations."""


class RedemptionValidationError(RewardsError):
    """Raised when a redemption request is malformed."""


class AccountNotFound(RewardsError):
    """Raised when no ledger account exists for the user."""


class InsufficientFunds(RewardsError):
    """Raised when a debit would take the balance below zero."""


class IdempotencyConflict(RewardsError):
    """Raised when an idempotency key is reused for a different mutation."""


class StoreError(RewardsError):
    """Raised when the ledger store is missing state the saga already committed."""


class InvalidStageTransition(RewardsError):
    """Raised when a pending redemption is moved to an illegal stage."""


class PendingRedemptionNotFound(RewardsError):
    """Raised when no pending redemption matches the fingerprint."""


class SubscriptionServiceError(RewardsError):
    """Base error for the remote subscription service."""


class SubscriptionServiceConfigurationError(SubscriptionServiceError):
    """Raised when the subscription service endpoint is not configured."""


class RemoteCallError(SubscriptionServiceError):
    """Raised on timeout, network failure, or a non-success status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteResponseError(SubscriptionServiceError):
    """Raised when a successful response cannot be parsed into an expiry."""
