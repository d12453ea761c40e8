"""
Main sync engine that orchestrates a synchronization run.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Any, Optional, Tuple

from ..connectors import BaseConnector, CONNECTOR_REGISTRY, create_connector
from ..exceptions import ConfigurationError, DataSyncException, EnumerationError, ExecutionError
from ..models.config import ConflictPolicy, EndpointConfig, SyncConfig
from ..models.sync import (
    CONFIG_FAILURE_KEY, ENUMERATION_FAILURE_KEY,
    Decision, DecisionAction, Item, Outcome, OutcomeStatus, SyncResult
)
from .baseline import BaselineStore
from .comparator import Comparator
from .executor import TransferExecutor
from .filters import KeyFilter

logger = logging.getLogger(__name__)

ConnectorFactory = Callable[[EndpointConfig], BaseConnector]
OutcomeCallback = Callable[[Outcome], None]


class EngineState(str, Enum):
    """Phase of the current run."""
    IDLE = "idle"
    ENUMERATING = "enumerating"
    COMPARING = "comparing"
    TRANSFERRING = "transferring"
    AGGREGATING = "aggregating"
    DONE = "done"


class RunLog:
    """Human-readable lines collected for the SyncResult, mirrored to the logger."""

    def __init__(self):
        self.lines: List[str] = []
        self._lock = threading.Lock()

    def add(self, message: str, level: int = logging.INFO) -> None:
        logger.log(level, message)
        with self._lock:
            self.lines.append(message)


class SyncEngine:
    """
    Main engine for executing sync runs between two endpoints.
    """

    def __init__(
        self,
        connector_factory: Optional[ConnectorFactory] = None,
        baseline_store: Optional[BaselineStore] = None,
        on_outcome: Optional[OutcomeCallback] = None,
    ):
        """
        Initialize the sync engine.

        Args:
            connector_factory: Builds a connector from an EndpointConfig;
                defaults to the connector registry
            baseline_store: Last-known-good fingerprints for conflict detection
            on_outcome: Called once per outcome as the run progresses
        """
        self.connector_factory = connector_factory or create_connector
        self.baseline_store = baseline_store
        self.on_outcome = on_outcome
        self.state = EngineState.IDLE
        self._run_lock = threading.Lock()

    def run_sync(self, config: SyncConfig) -> SyncResult:
        """
        Execute a sync run based on the provided configuration.

        Per-item failures never raise; they are reported in the result.

        Args:
            config: Sync configuration

        Returns:
            SyncResult for this run

        Raises:
            ExecutionError: If a run is already in progress on this engine
        """
        if not self._run_lock.acquire(blocking=False):
            raise ExecutionError("A sync run is already in progress on this engine")
        try:
            return self._run(config)
        finally:
            self._run_lock.release()

    def _transition(self, state: EngineState) -> None:
        logger.debug(f"Sync engine {self.state.value} -> {state.value}")
        self.state = state

    def _run(self, config: SyncConfig) -> SyncResult:
        started_at = datetime.now(timezone.utc)
        run_log = RunLog()
        self.state = EngineState.IDLE

        validation = self.validate_config(config)
        for warning in validation["warnings"]:
            run_log.add(f"Warning: {warning}", logging.WARNING)
        if not validation["valid"]:
            reason = "; ".join(validation["errors"])
            run_log.add(f"Invalid configuration: {reason}", logging.ERROR)
            self._transition(EngineState.DONE)
            return SyncResult.failed_run(config.id, CONFIG_FAILURE_KEY, reason, started_at, run_log.lines)

        mode = " (dry run)" if config.dry_run else ""
        run_log.add(f"Starting sync {config.id}{mode}: {config.source.locator} -> {config.destination.locator}")

        self._transition(EngineState.ENUMERATING)
        connectors: List[BaseConnector] = []
        try:
            try:
                connectors.append(self.connector_factory(config.source))
                connectors.append(self.connector_factory(config.destination))
            except ConfigurationError as e:
                run_log.add(f"Invalid configuration: {e}", logging.ERROR)
                self._transition(EngineState.DONE)
                return SyncResult.failed_run(config.id, CONFIG_FAILURE_KEY, str(e), started_at, run_log.lines)
            except DataSyncException as e:
                return self._enumeration_failed(config, e, started_at, run_log)

            source_connector, destination_connector = connectors
            return self._execute(config, source_connector, destination_connector, started_at, run_log)
        finally:
            self._close_connectors(connectors)

    def _execute(
        self,
        config: SyncConfig,
        source_connector: BaseConnector,
        destination_connector: BaseConnector,
        started_at: datetime,
        run_log: RunLog,
    ) -> SyncResult:
        """Enumerate, compare, transfer and aggregate with open connectors."""
        try:
            source_items, destination_items = self._enumerate(source_connector, destination_connector, config)
        except EnumerationError as e:
            return self._enumeration_failed(config, e, started_at, run_log)
        run_log.add(f"Found {len(source_items)} source items and {len(destination_items)} destination items")

        self._transition(EngineState.COMPARING)
        decisions = Comparator(self.baseline_store).compare(source_items, destination_items, config)
        run_log.add(self._describe_decisions(decisions))

        self._transition(EngineState.TRANSFERRING)
        if config.authoritative == "source":
            executor = TransferExecutor(source_connector, destination_connector, config)
        else:
            executor = TransferExecutor(destination_connector, source_connector, config)
        outcomes = self._dispatch(decisions, executor, config, run_log)

        self._transition(EngineState.AGGREGATING)
        if self.baseline_store is not None and not config.dry_run:
            self._update_baseline(decisions, outcomes, config, run_log)

        result = SyncResult.from_outcomes(config.id, decisions, outcomes, started_at, run_log.lines)
        run_log.add(f"Sync {config.id} finished with status {result.status.value}: {result.message}")
        result = result.model_copy(update={"logs": tuple(run_log.lines)})

        self._transition(EngineState.DONE)
        return result

    @staticmethod
    def _close_connectors(connectors: List[BaseConnector]) -> None:
        for connector in connectors:
            try:
                connector.close()
            except Exception as e:
                logger.warning(f"Failed to close {connector!r}: {e}")

    def _enumeration_failed(self, config: SyncConfig, error: Exception, started_at: datetime,
                            run_log: RunLog) -> SyncResult:
        self._transition(EngineState.AGGREGATING)
        run_log.add(f"Enumeration failed: {error}", logging.ERROR)
        result = SyncResult.failed_run(config.id, ENUMERATION_FAILURE_KEY, str(error), started_at, run_log.lines)
        self._transition(EngineState.DONE)
        return result

    def _enumerate(
        self,
        source: BaseConnector,
        destination: BaseConnector,
        config: SyncConfig,
    ) -> Tuple[Dict[str, Item], Dict[str, Item]]:
        """
        Take one snapshot of each side, concurrently.

        Raises:
            EnumerationError: If either listing fails
        """
        key_filter = KeyFilter(include=config.include, exclude=config.exclude)
        listings: Dict[str, Dict[str, Item]] = {}

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="datasync-list") as pool:
            futures = {
                pool.submit(source.list_items): ("source", source),
                pool.submit(destination.list_items): ("destination", destination),
            }
            errors = []
            for future in as_completed(futures):
                side, connector = futures[future]
                try:
                    listings[side] = key_filter.apply(future.result())
                except EnumerationError as e:
                    errors.append(f"{side}: {e}")
                except Exception as e:
                    errors.append(f"{side}: failed to list {connector.locator}: {e}")

        if errors:
            raise EnumerationError("; ".join(sorted(errors)))
        return listings["source"], listings["destination"]

    @staticmethod
    def _describe_decisions(decisions: List[Decision]) -> str:
        counts = {action: 0 for action in DecisionAction}
        for decision in decisions:
            counts[decision.action] += 1
        summary = ", ".join(f"{counts[action]} {action.value}" for action in DecisionAction)
        return f"Planned {len(decisions)} decisions: {summary}"

    def _dispatch(
        self,
        decisions: List[Decision],
        executor: TransferExecutor,
        config: SyncConfig,
        run_log: RunLog,
    ) -> List[Outcome]:
        """
        Turn every decision into exactly one outcome.

        Skip and conflict decisions are resolved inline. Actionable decisions
        run on a pool of ``concurrency_limit`` workers, each key dispatched once,
        with every delete finished before the first create or update starts.
        With abort_on_error, the first failure stops work that has not started.
        """
        outcomes: Dict[str, Outcome] = {}
        abort = threading.Event()

        def record(outcome: Outcome) -> None:
            if outcome.key in outcomes:
                raise ExecutionError(f"Duplicate outcome for key {outcome.key}")
            outcomes[outcome.key] = outcome
            if outcome.status == OutcomeStatus.FAILED:
                run_log.add(f"Failed {outcome.action.value} {outcome.key}: {outcome.reason}", logging.ERROR)
            elif outcome.status == OutcomeStatus.CONFLICT:
                run_log.add(f"Conflict on {outcome.key}: {outcome.reason}", logging.WARNING)
            self._notify(outcome)

        def aborted(decision: Decision) -> Outcome:
            return Outcome(key=decision.key, action=decision.action,
                           status=OutcomeStatus.SKIPPED, reason="aborted")

        def work(decision: Decision) -> Outcome:
            if abort.is_set():
                return aborted(decision)
            result = executor.execute(decision)
            if result.status == OutcomeStatus.FAILED and config.abort_on_error:
                abort.set()
            return result

        deletes: List[Decision] = []
        writes: List[Decision] = []
        for decision in decisions:
            if decision.action == DecisionAction.DELETE:
                deletes.append(decision)
            elif decision.action.is_actionable:
                writes.append(decision)
            else:
                record(executor.execute(decision))

        for phase in (deletes, writes):
            if not phase:
                continue
            with ThreadPoolExecutor(max_workers=config.concurrency_limit, thread_name_prefix="datasync") as pool:
                futures = {pool.submit(work, decision): decision for decision in phase}
                for future in as_completed(futures):
                    decision = futures[future]
                    if future.cancelled():
                        record(aborted(decision))
                        continue
                    try:
                        record(future.result())
                    except Exception as e:
                        logger.exception(f"Unexpected error while syncing {decision.key}")
                        record(Outcome(key=decision.key, action=decision.action,
                                       status=OutcomeStatus.FAILED, reason=f"unexpected error: {e}"))
                        if config.abort_on_error:
                            abort.set()
                    if abort.is_set():
                        for pending in futures:
                            pending.cancel()

        if abort.is_set():
            skipped = len([o for o in outcomes.values() if o.reason == "aborted"])
            run_log.add(f"Aborted after first failure; {skipped} pending items skipped", logging.WARNING)
        return list(outcomes.values())

    def _notify(self, outcome: Outcome) -> None:
        if self.on_outcome is None:
            return
        try:
            self.on_outcome(outcome)
        except Exception as e:
            logger.warning(f"Outcome callback failed for {outcome.key}: {e}")

    def _update_baseline(
        self,
        decisions: List[Decision],
        outcomes: List[Outcome],
        config: SyncConfig,
        run_log: RunLog,
    ) -> None:
        """Record the fingerprints both sides now agree on."""
        by_key = {decision.key: decision for decision in decisions}
        for outcome in outcomes:
            decision = by_key[outcome.key]
            agreed = decision.source_fingerprint if config.authoritative == "source" else decision.destination_fingerprint
            if outcome.status == OutcomeStatus.APPLIED:
                if outcome.action == DecisionAction.DELETE:
                    self.baseline_store.delete(outcome.key)
                else:
                    self.baseline_store.set(outcome.key, agreed)
            elif outcome.status == OutcomeStatus.SKIPPED and outcome.reason == "unchanged":
                self.baseline_store.set(outcome.key, agreed)
        try:
            self.baseline_store.save()
        except OSError as e:
            run_log.add(f"Could not save baseline: {e}", logging.ERROR)

    def validate_config(self, config: SyncConfig) -> Dict[str, Any]:
        """
        Validate a sync configuration.

        Args:
            config: Configuration to validate

        Returns:
            Validation result with status and messages
        """
        errors = []
        warnings = []

        for side, endpoint in (("source", config.source), ("destination", config.destination)):
            if not endpoint.locator or not endpoint.locator.strip():
                errors.append(f"The {side} locator must not be empty")
            if self.connector_factory is create_connector and endpoint.connector not in CONNECTOR_REGISTRY:
                errors.append(f"Unsupported {side} connector: {endpoint.connector}")

        if (config.source.connector, config.source.locator) == (config.destination.connector, config.destination.locator):
            errors.append("Source and destination must be different endpoints")

        if config.concurrency_limit < 1:
            errors.append(f"Concurrency limit must be at least 1, got {config.concurrency_limit}")

        if config.retry.max_attempts < 1:
            errors.append(f"Retry max_attempts must be at least 1, got {config.retry.max_attempts}")
        if config.retry.base_delay < 0 or config.retry.max_delay < 0:
            errors.append("Retry delays must not be negative")

        if self.baseline_store is None and config.conflict_policy != ConflictPolicy.MANUAL:
            warnings.append("A conflict policy is set but no baseline store is configured; conflicts cannot be detected")

        return {
            "valid": len(errors) == 0,
            "errors": errors,
            "warnings": warnings
        }
