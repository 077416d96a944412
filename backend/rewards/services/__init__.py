"""Expose the redemption saga's entry points."""

from .outcomes import Completed, Failed, FailureStage, RedemptionOutcome, Rejected, RejectionReason
from .redemption import RedemptionCoordinator
