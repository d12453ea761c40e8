"""Tests for the SyncEngine run lifecycle."""

import threading
from unittest.mock import MagicMock, patch

import pytest

from datasync import run_sync
from datasync.connectors import MemoryConnector
from datasync.engine import EngineState, InMemoryBaselineStore, SyncEngine
from datasync.exceptions import ConfigurationError, EnumerationError, ExecutionError
from datasync.models import (
    ConflictPolicy, DecisionAction, EndpointConfig, OutcomeStatus, RetryPolicy,
    SyncDirection, SyncMode, SyncStatus
)
from tests.helpers import BrokenListingConnector, FlakyConnector, factory_for, make_config


def engine_for(source, destination, **kwargs) -> SyncEngine:
    return SyncEngine(connector_factory=factory_for(source, destination), **kwargs)


class TestRunSync:
    """End-to-end runs over in-memory connectors."""

    def test_empty_listings_succeed_with_zero_counts(self, source, destination) -> None:
        result = engine_for(source, destination).run_sync(make_config())
        assert result.status == SyncStatus.SUCCESS
        assert (result.applied, result.skipped, result.failed, result.conflicts) == (0, 0, 0, 0)
        assert result.outcomes == ()

    def test_mirror_scenario(self) -> None:
        source = MemoryConnector("src", items={"a": "hash1", "b": "hash2"})
        destination = FlakyConnector("dst", items={"b": "hash2", "c": "hash3"})

        result = engine_for(source, destination).run_sync(make_config())

        assert [(d.key, d.action) for d in result.decisions] == [
            ("a", DecisionAction.CREATE),
            ("b", DecisionAction.SKIP),
            ("c", DecisionAction.DELETE),
        ]
        assert {o.key: o.status for o in result.outcomes} == {
            "a": OutcomeStatus.APPLIED,
            "b": OutcomeStatus.SKIPPED,
            "c": OutcomeStatus.APPLIED,
        }
        assert result.status == SyncStatus.SUCCESS
        assert (result.created, result.skipped, result.deleted, result.failed) == (1, 1, 1, 0)
        assert destination.snapshot() == {"a": b"hash1", "b": b"hash2"}

    def test_one_outcome_per_decision(self) -> None:
        source = MemoryConnector("src", items={f"k{i}": str(i) for i in range(20)})
        destination = FlakyConnector("dst", items={f"k{i}": "old" for i in range(10, 30)})

        result = engine_for(source, destination).run_sync(make_config())

        assert len(result.decisions) == 30
        assert sorted(o.key for o in result.outcomes) == sorted(d.key for d in result.decisions)
        assert result.applied + result.skipped + result.failed + result.conflicts == len(result.outcomes)

    def test_update_overwrites_destination(self) -> None:
        source = MemoryConnector("src", items={"a": "new"})
        destination = FlakyConnector("dst", items={"a": "old"})
        result = engine_for(source, destination).run_sync(make_config())
        assert result.updated == 1
        assert destination.snapshot()["a"] == b"new"

    def test_second_run_is_noop(self) -> None:
        source = MemoryConnector("src", items={"a": "1", "b": "2"})
        destination = FlakyConnector("dst", items={"b": "old", "c": "3"})
        engine = engine_for(source, destination)

        first = engine.run_sync(make_config())
        second = engine.run_sync(make_config())

        assert first.applied == 3
        assert (second.created, second.updated, second.deleted) == (0, 0, 0)
        assert second.skipped == 2

    def test_insert_update_mode_keeps_extra_destination_items(self) -> None:
        source = MemoryConnector("src", items={"a": "1"})
        destination = FlakyConnector("dst", items={"z": "9"})
        result = engine_for(source, destination).run_sync(make_config(mode=SyncMode.INSERT_UPDATE))
        assert result.deleted == 0
        assert destination.snapshot() == {"a": b"1", "z": b"9"}

    def test_reverse_direction_writes_source(self) -> None:
        source = FlakyConnector("src", items={"old": "x"})
        destination = MemoryConnector("dst", items={"a": "1"})
        config = make_config(direction=SyncDirection.DESTINATION_TO_SOURCE)

        result = engine_for(source, destination).run_sync(config)

        assert (result.created, result.deleted) == (1, 1)
        assert source.snapshot() == {"a": b"1"}
        assert destination.snapshot() == {"a": b"1"}

    def test_include_and_exclude_filters(self) -> None:
        source = MemoryConnector("src", items={"docs/a.txt": "1", "docs/b.tmp": "2", "img/c.png": "3"})
        destination = FlakyConnector("dst", items={"img/old.png": "4"})
        config = make_config(include=["docs/*"], exclude=["*.tmp"])

        result = engine_for(source, destination).run_sync(config)

        assert [d.key for d in result.decisions] == ["docs/a.txt"]
        assert destination.snapshot() == {"docs/a.txt": b"1", "img/old.png": b"4"}

    def test_logs_and_message(self) -> None:
        source = MemoryConnector("src", items={"a": "1"})
        result = engine_for(source, FlakyConnector("dst")).run_sync(make_config())
        assert "1 created" in result.message
        assert any("Planned 1 decisions" in line for line in result.logs)
        assert "finished with status success" in result.logs[-1]

    def test_run_sync_helper_uses_fresh_engine(self) -> None:
        source = MemoryConnector("src", items={"a": "1"})
        destination = FlakyConnector("dst")
        result = run_sync(make_config(), connector_factory=factory_for(source, destination))
        assert result.created == 1


class TestDryRun:
    """Dry runs decide but never touch the destination."""

    def test_dry_run_applies_nothing(self) -> None:
        source = MemoryConnector("src", items={"a": "1", "b": "2", "same": "s"})
        destination = FlakyConnector("dst", items={"b": "old", "c": "3", "same": "s"})

        result = engine_for(source, destination).run_sync(make_config(dry_run=True))

        actionable = [d for d in result.decisions if d.action.is_actionable]
        assert len(actionable) == 3
        assert result.applied == 0
        assert result.dry_run_skipped == len(actionable)
        assert result.skipped == 4
        assert destination.snapshot() == {"b": b"old", "c": b"3", "same": b"s"}
        assert destination.write_attempts == {}

    def test_dry_run_leaves_baseline_alone(self) -> None:
        baseline = InMemoryBaselineStore()
        source = MemoryConnector("src", items={"a": "1"})
        engine = engine_for(source, FlakyConnector("dst"), baseline_store=baseline)
        engine.run_sync(make_config(dry_run=True))
        assert len(baseline) == 0


class TestFailures:
    """Per-item failure handling."""

    def test_permanent_failure_continue_on_error(self) -> None:
        source = MemoryConnector("src", items={"a": "1", "b": "2", "c": "3", "d": "4"})
        destination = FlakyConnector("dst", items={"d": "4"})
        destination.fail_writes["b"] = [PermissionError("permission denied")]

        result = engine_for(source, destination).run_sync(make_config())

        assert result.status == SyncStatus.PARTIAL_FAILURE
        assert [f.key for f in result.failures] == ["b"]
        assert result.failures[0].reason.startswith("permission-denied")
        statuses = {o.key: o.status for o in result.outcomes}
        assert statuses == {
            "a": OutcomeStatus.APPLIED,
            "b": OutcomeStatus.FAILED,
            "c": OutcomeStatus.APPLIED,
            "d": OutcomeStatus.SKIPPED,
        }

    def test_all_actionable_failed_is_failed(self) -> None:
        source = MemoryConnector("src", items={"a": "1"})
        destination = FlakyConnector("dst")
        destination.fail_writes["a"] = [PermissionError("nope")]
        result = engine_for(source, destination).run_sync(make_config())
        assert result.status == SyncStatus.FAILED

    def test_transient_failures_recover(self) -> None:
        source = MemoryConnector("src", items={"a": "1"})
        destination = FlakyConnector("dst")
        destination.fail_writes["a"] = [TimeoutError("slow")]
        result = engine_for(source, destination).run_sync(make_config())
        assert result.status == SyncStatus.SUCCESS
        assert result.outcomes[0].attempts == 2

    def test_abort_on_error_skips_pending_work(self) -> None:
        source = MemoryConnector("src", items={"a": "1", "b": "2", "c": "3", "d": "4"})
        destination = FlakyConnector("dst")
        destination.fail_writes["a"] = [PermissionError("nope")]
        config = make_config(abort_on_error=True, concurrency_limit=1)

        result = engine_for(source, destination).run_sync(config)

        statuses = {o.key: (o.status, o.reason) for o in result.outcomes}
        assert statuses["a"][0] == OutcomeStatus.FAILED
        for key in ("b", "c", "d"):
            assert statuses[key] == (OutcomeStatus.SKIPPED, "aborted")
        assert destination.started == ["a"]
        assert result.status == SyncStatus.FAILED
        assert any("Aborted" in line for line in result.logs)

    def test_abort_on_error_lets_in_flight_work_finish(self) -> None:
        source = MemoryConnector("src", items={k: k for k in "abcdefgh"})
        destination = FlakyConnector("dst", delay=0.05)
        destination.fail_writes["a"] = [PermissionError("nope")]
        config = make_config(abort_on_error=True, concurrency_limit=2)

        result = engine_for(source, destination).run_sync(config)

        by_key = {o.key: o for o in result.outcomes}
        assert by_key["a"].status == OutcomeStatus.FAILED
        assert len(result.outcomes) == 8
        for key in destination.started:
            if key != "a":
                assert by_key[key].status == OutcomeStatus.APPLIED
        aborted = [o for o in result.outcomes if o.reason == "aborted"]
        assert len(aborted) == 8 - len(destination.started)
        assert len(aborted) > 0

    def test_enumeration_failure_fails_run(self) -> None:
        result = engine_for(BrokenListingConnector("src"), FlakyConnector("dst")).run_sync(make_config())
        assert result.status == SyncStatus.FAILED
        assert result.decisions == ()
        assert result.outcomes == ()
        assert len(result.failures) == 1
        assert result.failures[0].key == "<enumeration>"
        assert "listing unavailable" in result.failures[0].reason

    def test_unexpected_listing_error_is_enumeration_failure(self) -> None:
        broken = BrokenListingConnector("src", error=RuntimeError("disk gone"))
        result = engine_for(broken, FlakyConnector("dst")).run_sync(make_config())
        assert result.failures[0].key == "<enumeration>"
        assert "disk gone" in result.failures[0].reason

    def test_connector_factory_configuration_error(self) -> None:
        def factory(endpoint):
            raise ConfigurationError("no such bucket")

        result = SyncEngine(connector_factory=factory).run_sync(make_config())
        assert result.status == SyncStatus.FAILED
        assert result.failures[0].key == "<config>"

    def test_connector_factory_enumeration_error(self) -> None:
        def factory(endpoint):
            raise EnumerationError("cannot open")

        result = SyncEngine(connector_factory=factory).run_sync(make_config())
        assert result.failures[0].key == "<enumeration>"


class TestValidation:
    """Invalid configs fail before any I/O."""

    @pytest.mark.parametrize(
        "overrides",
        [
            {"concurrency_limit": 0},
            {"source": EndpointConfig(connector="memory", locator="")},
            {"destination": EndpointConfig(connector="memory", locator="   ")},
            {"retry": RetryPolicy(max_attempts=0)},
            {"retry": RetryPolicy(base_delay=-1)},
            {"destination": EndpointConfig(connector="memory", locator="src")},
        ],
    )
    def test_invalid_config_returns_failed_result(self, overrides) -> None:
        factory = MagicMock()
        result = SyncEngine(connector_factory=factory).run_sync(make_config(**overrides))
        assert result.status == SyncStatus.FAILED
        assert result.outcomes == ()
        assert result.failures[0].key == "<config>"
        factory.assert_not_called()

    def test_unknown_connector_type(self) -> None:
        config = make_config(source=EndpointConfig(connector="ftp", locator="ftp://host"))
        validation = SyncEngine().validate_config(config)
        assert not validation["valid"]
        assert "Unsupported source connector: ftp" in validation["errors"]

    def test_conflict_policy_without_baseline_warns(self) -> None:
        config = make_config(conflict_policy=ConflictPolicy.SOURCE_WINS)
        validation = SyncEngine().validate_config(config)
        assert validation["valid"]
        assert len(validation["warnings"]) == 1


class TestBaselineAndConflicts:
    """Runs with a baseline store."""

    def test_baseline_tracks_applied_and_unchanged(self) -> None:
        baseline = InMemoryBaselineStore()
        source = MemoryConnector("src", items={"a": "1", "b": "2"})
        destination = FlakyConnector("dst", items={"b": "2", "c": "3"})

        engine_for(source, destination, baseline_store=baseline).run_sync(make_config())

        assert baseline.get("a") == source.list_items()["a"].fingerprint
        assert baseline.get("b") is not None
        assert baseline.get("c") is None

    def test_both_sides_changed_is_conflict(self) -> None:
        baseline = InMemoryBaselineStore()
        source = MemoryConnector("src", items={"a": "v1"})
        destination = FlakyConnector("dst")
        engine = engine_for(source, destination, baseline_store=baseline)
        engine.run_sync(make_config())

        source.write_payload("a", b"source edit")
        destination.write_payload("a", b"destination edit")
        result = engine.run_sync(make_config())

        assert result.conflicts == 1
        assert result.status == SyncStatus.PARTIAL_FAILURE
        assert destination.snapshot()["a"] == b"destination edit"

    def test_source_wins_resolves_conflict(self) -> None:
        baseline = InMemoryBaselineStore()
        source = MemoryConnector("src", items={"a": "v1"})
        destination = FlakyConnector("dst")
        engine = engine_for(source, destination, baseline_store=baseline)
        engine.run_sync(make_config())

        source.write_payload("a", b"source edit")
        destination.write_payload("a", b"destination edit")
        result = engine.run_sync(make_config(conflict_policy=ConflictPolicy.SOURCE_WINS))

        assert result.updated == 1
        assert destination.snapshot()["a"] == b"source edit"


class TestConcurrency:
    """Concurrency bound and engine state."""

    @pytest.mark.parametrize("limit", [1, 3])
    def test_concurrency_bound_is_respected(self, limit) -> None:
        source = MemoryConnector("src", items={f"k{i:02d}": str(i) for i in range(12)})
        destination = FlakyConnector("dst", delay=0.02)

        result = engine_for(source, destination).run_sync(make_config(concurrency_limit=limit))

        assert result.created == 12
        assert destination.peak_active <= limit

    def test_state_ends_done(self, source, destination) -> None:
        engine = engine_for(source, destination)
        assert engine.state == EngineState.IDLE
        engine.run_sync(make_config())
        assert engine.state == EngineState.DONE

    def test_states_visited_in_order(self) -> None:
        seen = []
        source = MemoryConnector("src", items={"a": "1"})
        engine = engine_for(source, FlakyConnector("dst"))
        original = engine._transition

        def record(state):
            seen.append(state)
            original(state)

        engine._transition = record
        engine.run_sync(make_config())
        assert seen == [
            EngineState.ENUMERATING,
            EngineState.COMPARING,
            EngineState.TRANSFERRING,
            EngineState.AGGREGATING,
            EngineState.DONE,
        ]

    def test_concurrent_run_on_same_engine_is_rejected(self) -> None:
        started = threading.Event()
        release = threading.Event()

        class SlowSource(MemoryConnector):
            def _list_items(self):
                started.set()
                release.wait(5)
                return super()._list_items()

        engine = engine_for(SlowSource("src"), FlakyConnector("dst"))
        worker = threading.Thread(target=engine.run_sync, args=(make_config(),))
        worker.start()
        try:
            assert started.wait(5)
            with pytest.raises(ExecutionError):
                engine.run_sync(make_config())
        finally:
            release.set()
            worker.join(5)

    def test_outcome_callback_sees_every_outcome(self) -> None:
        seen = []
        source = MemoryConnector("src", items={"a": "1", "b": "2"})
        destination = FlakyConnector("dst", items={"b": "2"})
        engine = engine_for(source, destination, on_outcome=lambda o: seen.append(o.key))
        engine.run_sync(make_config())
        assert sorted(seen) == ["a", "b"]

    def test_failing_callback_does_not_break_run(self) -> None:
        def explode(outcome):
            raise RuntimeError("ui went away")

        source = MemoryConnector("src", items={"a": "1"})
        result = engine_for(source, FlakyConnector("dst"), on_outcome=explode).run_sync(make_config())
        assert result.status == SyncStatus.SUCCESS


class TestDispatchOrder:
    """Deletes drain before creates and updates start."""

    @pytest.mark.parametrize("limit", [1, 4])
    def test_deletes_run_before_writes(self, limit) -> None:
        source = MemoryConnector("src", items={"a": "1", "b": "2", "m": "new"})
        destination = FlakyConnector("dst", items={"m": "old", "x": "9", "y": "8", "z": "7"}, delay=0.01)

        result = engine_for(source, destination).run_sync(make_config(concurrency_limit=limit))

        assert result.status == SyncStatus.SUCCESS
        assert set(destination.started[:3]) == {"x", "y", "z"}
        assert set(destination.started[3:]) == {"a", "b", "m"}

    def test_abort_during_deletes_skips_writes(self) -> None:
        source = MemoryConnector("src", items={"a": "1"})
        destination = FlakyConnector("dst", items={"z": "9"})
        destination.fail_deletes["z"] = [PermissionError("nope")]

        result = engine_for(source, destination).run_sync(make_config(abort_on_error=True))

        by_key = {o.key: o for o in result.outcomes}
        assert by_key["z"].status == OutcomeStatus.FAILED
        assert (by_key["a"].status, by_key["a"].reason) == (OutcomeStatus.SKIPPED, "aborted")


class ClosingConnector(MemoryConnector):
    """Memory connector that counts close() calls."""

    def __init__(self, locator: str, **kwargs):
        super().__init__(locator, **kwargs)
        self.closed = 0

    def close(self) -> None:
        self.closed += 1


class TestConnectorLifecycle:
    """The engine releases the connectors it built."""

    def test_connectors_closed_after_run(self) -> None:
        source, destination = ClosingConnector("src", items={"a": "1"}), ClosingConnector("dst")
        engine_for(source, destination).run_sync(make_config())
        assert (source.closed, destination.closed) == (1, 1)

    def test_connectors_closed_after_enumeration_failure(self) -> None:
        destination = ClosingConnector("dst")
        broken = BrokenListingConnector("src")
        engine_for(broken, destination).run_sync(make_config())
        assert destination.closed == 1

    def test_source_closed_when_destination_cannot_be_built(self) -> None:
        source = ClosingConnector("src")

        def factory(endpoint):
            if endpoint.locator == "dst":
                raise ConfigurationError("bad destination")
            return source

        result = SyncEngine(connector_factory=factory).run_sync(make_config())
        assert result.failures[0].key == "<config>"
        assert source.closed == 1

    def test_close_failure_does_not_change_result(self) -> None:
        source = MemoryConnector("src", items={"a": "1"})
        destination = FlakyConnector("dst")
        with patch.object(destination, "close", side_effect=RuntimeError("already closed")):
            result = engine_for(source, destination).run_sync(make_config())
        assert result.status == SyncStatus.SUCCESS
