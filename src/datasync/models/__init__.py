"""
Models for the datasync engine.
"""

from .config import (
    SyncConfig, EndpointConfig, RetryPolicy,
    SyncDirection, SyncMode, ConflictPolicy
)
from .sync import (
    Fingerprint, Item, Decision, DecisionAction, Outcome, OutcomeStatus,
    SyncResult, SyncStatus, FailureRecord
)

__all__ = [
    # Configuration
    "SyncConfig",
    "EndpointConfig",
    "RetryPolicy",
    "SyncDirection",
    "SyncMode",
    "ConflictPolicy",

    # Run data
    "Fingerprint",
    "Item",
    "Decision",
    "DecisionAction",
    "Outcome",
    "OutcomeStatus",
    "SyncResult",
    "SyncStatus",
    "FailureRecord",
]
