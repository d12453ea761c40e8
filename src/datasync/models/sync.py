"""
Models for sync decisions, per-item outcomes and run results.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Any, Iterable, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field


class Fingerprint(BaseModel):
    """Comparable digest of an item's content."""
    model_config = ConfigDict(frozen=True)

    digest: str
    size: Optional[int] = None  # compared only when both sides report it
    modified: Optional[float] = None  # informational, not compared

    def matches(self, other: Optional["Fingerprint"]) -> bool:
        """True if both fingerprints describe the same content."""
        if other is None or self.digest != other.digest:
            return False
        return self.size is None or other.size is None or self.size == other.size


class Item(BaseModel):
    """A unit of data identified by a stable key."""
    model_config = ConfigDict(frozen=True)

    key: str
    fingerprint: Fingerprint


class DecisionAction(str, Enum):
    """Action the comparator chose for a key."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SKIP = "skip"
    CONFLICT = "conflict"

    @property
    def is_actionable(self) -> bool:
        return self in (DecisionAction.CREATE, DecisionAction.UPDATE, DecisionAction.DELETE)


class Decision(BaseModel):
    """The comparator's verdict for one key."""
    model_config = ConfigDict(frozen=True)

    key: str
    action: DecisionAction
    source_fingerprint: Optional[Fingerprint] = None
    destination_fingerprint: Optional[Fingerprint] = None
    reason: Optional[str] = None


class OutcomeStatus(str, Enum):
    """Realized result of a decision."""
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"
    CONFLICT = "conflict"


class Outcome(BaseModel):
    """Result of attempting one decision."""
    model_config = ConfigDict(frozen=True)

    key: str
    action: DecisionAction
    status: OutcomeStatus
    reason: Optional[str] = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    duration_seconds: float = 0.0
    bytes_transferred: int = 0
    attempts: int = 0


class SyncStatus(str, Enum):
    """Overall status of a sync run."""
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"


class FailureRecord(BaseModel):
    """A key that failed, with the reason."""
    model_config = ConfigDict(frozen=True)

    key: str
    reason: str


CONFIG_FAILURE_KEY = "<config>"
ENUMERATION_FAILURE_KEY = "<enumeration>"


class SyncResult(BaseModel):
    """Aggregate of every outcome of one run. Immutable once returned."""
    model_config = ConfigDict(frozen=True)

    config_id: str
    status: SyncStatus
    message: str = ""

    decisions: Tuple[Decision, ...] = ()
    outcomes: Tuple[Outcome, ...] = ()

    # Partition of outcomes by status
    applied: int = 0
    failed: int = 0
    skipped: int = 0
    conflicts: int = 0

    # Applied outcomes by action
    created: int = 0
    updated: int = 0
    deleted: int = 0

    failures: Tuple[FailureRecord, ...] = ()
    logs: Tuple[str, ...] = ()

    started_at: datetime
    completed_at: datetime
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.status == SyncStatus.SUCCESS

    @property
    def dry_run_skipped(self) -> int:
        """Outcomes skipped only because the run was a dry run."""
        return len([o for o in self.outcomes if o.status == OutcomeStatus.SKIPPED and o.reason == "dry-run"])

    @classmethod
    def from_outcomes(
        cls,
        config_id: str,
        decisions: Iterable[Decision],
        outcomes: Iterable[Outcome],
        started_at: datetime,
        logs: Iterable[str] = (),
    ) -> "SyncResult":
        """
        Aggregate outcomes into a result.

        Outcomes are sorted by key so the result does not depend on
        completion order.
        """
        outcomes = tuple(sorted(outcomes, key=lambda o: o.key))
        by_status: Dict[OutcomeStatus, int] = {status: 0 for status in OutcomeStatus}
        by_action: Dict[DecisionAction, int] = {action: 0 for action in DecisionAction}
        failures: List[FailureRecord] = []

        for outcome in outcomes:
            by_status[outcome.status] += 1
            if outcome.status == OutcomeStatus.APPLIED:
                by_action[outcome.action] += 1
            elif outcome.status == OutcomeStatus.FAILED:
                failures.append(FailureRecord(key=outcome.key, reason=outcome.reason or "unknown"))

        failed = by_status[OutcomeStatus.FAILED]
        applied = by_status[OutcomeStatus.APPLIED]
        conflicts = by_status[OutcomeStatus.CONFLICT]
        if failed == 0 and conflicts == 0:
            status = SyncStatus.SUCCESS
        elif failed > 0 and applied == 0:
            status = SyncStatus.FAILED
        else:
            status = SyncStatus.PARTIAL_FAILURE

        completed_at = datetime.now(timezone.utc)
        message = (
            f"{applied} applied ({by_action[DecisionAction.CREATE]} created, "
            f"{by_action[DecisionAction.UPDATE]} updated, {by_action[DecisionAction.DELETE]} deleted), "
            f"{by_status[OutcomeStatus.SKIPPED]} skipped, {failed} failed, {conflicts} conflicts"
        )
        return cls(
            config_id=config_id,
            status=status,
            message=message,
            decisions=tuple(decisions),
            outcomes=outcomes,
            applied=applied,
            failed=failed,
            skipped=by_status[OutcomeStatus.SKIPPED],
            conflicts=conflicts,
            created=by_action[DecisionAction.CREATE],
            updated=by_action[DecisionAction.UPDATE],
            deleted=by_action[DecisionAction.DELETE],
            failures=tuple(failures),
            logs=tuple(logs),
            started_at=started_at,
            completed_at=completed_at,
            duration_seconds=(completed_at - started_at).total_seconds(),
        )

    @classmethod
    def failed_run(
        cls,
        config_id: str,
        key: str,
        reason: str,
        started_at: datetime,
        logs: Iterable[str] = (),
    ) -> "SyncResult":
        """A run that ended before any transfer, with a single recorded failure."""
        completed_at = datetime.now(timezone.utc)
        return cls(
            config_id=config_id,
            status=SyncStatus.FAILED,
            message=reason,
            failures=(FailureRecord(key=key, reason=reason),),
            logs=tuple(logs),
            started_at=started_at,
            completed_at=completed_at,
            duration_seconds=(completed_at - started_at).total_seconds(),
        )

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of the run."""
        return {
            "config_id": self.config_id,
            "status": self.status.value,
            "message": self.message,
            "applied": self.applied,
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "skipped": self.skipped,
            "failed": self.failed,
            "conflicts": self.conflicts,
            "failures": [f.model_dump() for f in self.failures],
            "duration_seconds": self.duration_seconds,
        }
