"""Tests for migration_dashboard.services.view_state_store."""

from __future__ import annotations

import threading
import time
from datetime import date, datetime, timedelta, timezone
from typing import Any

import pytest

from migration_dashboard.core.data_models import AggregateSnapshot, Environment, RawAssetSet, TeamStats
from migration_dashboard.core.errors import FetchFailure, InvalidFilter, UnknownView
from migration_dashboard.services.view_state_store import StoreStatus, ViewStateStore


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------


def _rec(team: str, env: str, status: str, spa: bool = True, name: str = "p") -> dict[str, Any]:
    rec: dict[str, Any] = {
        "teamName": team,
        "environment": env,
        "status": status,
        "projectName": name,
        "projectLink": f"https://git.example.com/{name}",
    }
    if spa:
        rec["homepage"] = f"https://example.com/{name}"
    return rec


SCENARIO = [
    _rec("Alpha", "dev", "MIGRATED", name="a1"),
    _rec("Alpha", "uat", "OUTSTANDING", spa=False, name="a2"),
    _rec("Beta", "dev", "NOT_MIGRATED", name="b1"),
]


class FakeSource:
    """Returns queued payloads (or raises queued exceptions) in order."""

    def __init__(self, *results: Any) -> None:
        self._results = list(results)
        self.calls = 0

    def fetch_raw_asset_data(self) -> RawAssetSet:
        self.calls += 1
        result = self._results.pop(0) if len(self._results) > 1 else self._results[0]
        if isinstance(result, BaseException):
            raise result
        return RawAssetSet(records=list(result))


class BlockingSource:
    """Blocks inside fetch until released, counting concurrent callers."""

    def __init__(self, records: list[dict[str, Any]]) -> None:
        self.records = records
        self.entered = threading.Event()
        self.release = threading.Event()
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def fetch_raw_asset_data(self) -> RawAssetSet:
        with self._lock:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.entered.set()
        self.release.wait(timeout=5)
        with self._lock:
            self.active -= 1
        return RawAssetSet(records=list(self.records))


class FirstCallBlocksSource(BlockingSource):
    """Blocks only the first fetch; later fetches return at once."""

    def fetch_raw_asset_data(self) -> RawAssetSet:
        if self.calls == 0:
            return super().fetch_raw_asset_data()
        with self._lock:
            self.calls += 1
        return RawAssetSet(records=list(self.records))


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(days=1)
        return self.now


# ---------------------------------------------------------------------------
# initial state
# ---------------------------------------------------------------------------


class TestInitialState:
    def test_idle_and_empty(self) -> None:
        store = ViewStateStore(FakeSource(SCENARIO))
        assert store.status is StoreStatus.IDLE
        assert store.aggregates is None
        assert store.state.raw_assets is None
        assert store.loading is False
        assert store.error is None
        assert store.selected_view == "overview"
        assert store.selected_environment == "all"

    def test_independent_instances(self) -> None:
        a = ViewStateStore(FakeSource(SCENARIO))
        b = ViewStateStore(FakeSource(SCENARIO))
        a.select_view("teams")
        assert b.selected_view == "overview"

    def test_bad_initial_view(self) -> None:
        with pytest.raises(UnknownView):
            ViewStateStore(FakeSource(SCENARIO), selected_view="nope")

    def test_bad_initial_environment(self) -> None:
        with pytest.raises(InvalidFilter):
            ViewStateStore(FakeSource(SCENARIO), selected_environment="prod")


# ---------------------------------------------------------------------------
# refresh
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_success_sets_assets_and_aggregates(self) -> None:
        store = ViewStateStore(FakeSource(SCENARIO))
        assert store.refresh() is StoreStatus.READY
        assert len(store.state.raw_assets or ()) == 3
        aggs = store.aggregates
        assert aggs is not None
        assert aggs["Alpha"].ms_count == 1
        assert store.fetched_at is not None
        assert store.loading is False

    def test_uses_selected_environment(self) -> None:
        store = ViewStateStore(FakeSource(SCENARIO), selected_environment="uat")
        store.refresh()
        assert set(store.aggregates or {}) == {"Alpha"}

    def test_malformed_records_reported(self) -> None:
        bad = dict(SCENARIO[0])
        del bad["projectLink"]
        store = ViewStateStore(FakeSource([*SCENARIO, bad]))
        assert store.refresh() is StoreStatus.READY
        assert len(store.state.raw_assets or ()) == 3
        assert [(d.index, d.field) for d in store.diagnostics] == [(3, "projectLink")]

    def test_failure_from_idle(self) -> None:
        store = ViewStateStore(FakeSource(FetchFailure("endpoint down")))
        assert store.refresh() is StoreStatus.FAILED
        assert store.error == "endpoint down"
        assert store.aggregates is None

    def test_failure_keeps_last_good_data(self) -> None:
        source = FakeSource(SCENARIO, FetchFailure("timeout after 30s"))
        store = ViewStateStore(source)
        store.refresh()
        before = store.aggregates
        assert store.refresh() is StoreStatus.FAILED
        assert store.error == "timeout after 30s"
        assert store.aggregates == before
        assert len(store.state.raw_assets or ()) == 3

    def test_unexpected_exception_becomes_failed(self) -> None:
        store = ViewStateStore(FakeSource(RuntimeError("boom")))
        assert store.refresh() is StoreStatus.FAILED
        assert store.error == "boom"

    def test_recovers_after_failure(self) -> None:
        store = ViewStateStore(FakeSource(FetchFailure("down"), SCENARIO))
        store.refresh()
        assert store.refresh() is StoreStatus.READY
        assert store.error is None

    def test_each_refresh_fetches_without_ttl(self) -> None:
        source = FakeSource(SCENARIO)
        store = ViewStateStore(source)
        store.refresh()
        store.refresh()
        assert source.calls == 2

    def test_cache_ttl_skips_fetch(self) -> None:
        source = FakeSource(SCENARIO)
        store = ViewStateStore(source, cache_ttl_seconds=300)
        store.refresh()
        assert store.refresh() is StoreStatus.READY
        assert source.calls == 1
        store.refresh(force=True)
        assert source.calls == 2


class TestConcurrentRefresh:
    def test_second_refresh_joins_in_flight_fetch(self) -> None:
        source = BlockingSource(SCENARIO)
        store = ViewStateStore(source)

        worker = store.refresh_in_background()
        assert source.entered.wait(timeout=5)
        assert store.loading is True

        assert store.refresh(wait=False) is StoreStatus.LOADING
        assert source.calls == 1

        source.release.set()
        worker.join(timeout=5)
        assert store.status is StoreStatus.READY
        assert source.calls == 1
        assert source.max_active == 1
        assert len(store.history) == 1

    def test_waiting_joiner_sees_result(self) -> None:
        source = BlockingSource(SCENARIO)
        store = ViewStateStore(source)
        worker = store.refresh_in_background()
        assert source.entered.wait(timeout=5)

        results: list[StoreStatus] = []
        joiner = threading.Thread(target=lambda: results.append(store.refresh()))
        joiner.start()
        time.sleep(0.2)  # let the joiner reach the in-flight wait
        source.release.set()
        joiner.join(timeout=5)
        worker.join(timeout=5)

        assert results == [StoreStatus.READY]
        assert source.calls == 1

    def test_clear_discards_in_flight_result(self) -> None:
        source = BlockingSource(SCENARIO)
        store = ViewStateStore(source)
        worker = store.refresh_in_background()
        assert source.entered.wait(timeout=5)

        store.clear()
        source.release.set()
        worker.join(timeout=5)

        assert store.status is StoreStatus.IDLE
        assert store.aggregates is None
        assert store.history == ()

    def test_refresh_after_clear_starts_new_fetch(self) -> None:
        source = FirstCallBlocksSource(SCENARIO)
        store = ViewStateStore(source)
        worker = store.refresh_in_background()
        assert source.entered.wait(timeout=5)

        store.clear()
        assert store.refresh() is StoreStatus.READY
        assert source.calls == 2
        assert set(store.aggregates or {}) == {"Alpha", "Beta"}
        assert store.loading is False

        source.release.set()
        worker.join(timeout=5)
        assert store.status is StoreStatus.READY
        assert len(store.history) == 1

    def test_filter_change_during_fetch_applies_on_commit(self) -> None:
        source = BlockingSource(SCENARIO)
        store = ViewStateStore(source)
        worker = store.refresh_in_background()
        assert source.entered.wait(timeout=5)

        store.set_environment_filter("uat")
        source.release.set()
        worker.join(timeout=5)

        assert set(store.aggregates or {}) == {"Alpha"}


# ---------------------------------------------------------------------------
# view & filter selection
# ---------------------------------------------------------------------------


class TestSelectView:
    @pytest.mark.parametrize(
        "view",
        ["overview", "spas", "microservices", "teams", "burndown", "release-notes", "api-docs"],
    )
    def test_known_views(self, view: str) -> None:
        store = ViewStateStore(FakeSource(SCENARIO))
        store.select_view(view)
        assert store.selected_view == view

    def test_unknown_view(self) -> None:
        store = ViewStateStore(FakeSource(SCENARIO))
        with pytest.raises(UnknownView):
            store.select_view("settings")
        assert store.selected_view == "overview"

    def test_does_not_fetch(self) -> None:
        source = FakeSource(SCENARIO)
        store = ViewStateStore(source)
        store.select_view("teams")
        assert source.calls == 0
        assert store.status is StoreStatus.IDLE


class TestEnvironmentFilter:
    def test_recomputes_without_fetch(self) -> None:
        source = FakeSource(SCENARIO)
        store = ViewStateStore(source)
        store.refresh()
        store.set_environment_filter("dev")
        assert source.calls == 1
        aggs = store.aggregates or {}
        assert aggs["Alpha"].ms_count == 0
        assert aggs["Alpha"].migrated_pct == 100.0
        assert aggs["Beta"].not_migrated_count == 1

    def test_back_to_all(self) -> None:
        store = ViewStateStore(FakeSource(SCENARIO))
        store.refresh()
        store.set_environment_filter(Environment.DEV)
        store.set_environment_filter("all")
        assert (store.aggregates or {})["Alpha"].outstanding_count == 1

    def test_before_fetch_only_sets_value(self) -> None:
        source = FakeSource(SCENARIO)
        store = ViewStateStore(source)
        store.set_environment_filter("uat")
        assert store.selected_environment is Environment.UAT
        assert store.aggregates is None
        assert source.calls == 0
        store.refresh()
        assert set(store.aggregates or {}) == {"Alpha"}

    def test_invalid_filter_leaves_state(self) -> None:
        store = ViewStateStore(FakeSource(SCENARIO))
        store.refresh()
        with pytest.raises(InvalidFilter):
            store.set_environment_filter("prod")
        assert store.selected_environment == "all"


# ---------------------------------------------------------------------------
# derived reads
# ---------------------------------------------------------------------------


class TestDerivedReads:
    def test_aggregates_is_a_copy(self) -> None:
        store = ViewStateStore(FakeSource(SCENARIO))
        store.refresh()
        aggs = store.aggregates or {}
        aggs["Alpha"].spa_count = 99
        aggs.pop("Beta")
        fresh = store.aggregates or {}
        assert fresh["Alpha"].spa_count == 1
        assert "Beta" in fresh

    def test_sorted_teams_and_summary(self) -> None:
        store = ViewStateStore(FakeSource(SCENARIO))
        store.refresh()
        assert [t.team_name for t in store.sorted_teams()] == ["Alpha", "Beta"]
        assert store.summary().team_count == 2

    def test_team_assets_drill_down(self) -> None:
        store = ViewStateStore(FakeSource(SCENARIO), selected_environment="dev")
        store.refresh()
        assets = store.team_assets("Alpha")
        assert [a.project_name for a in assets] == ["a1"]

    def test_environment_stats_ignore_filter(self) -> None:
        store = ViewStateStore(FakeSource(SCENARIO), selected_environment="dev")
        store.refresh()
        assert set(store.environment_stats()) == {Environment.DEV, Environment.UAT}

    def test_assets_follow_filter(self) -> None:
        store = ViewStateStore(FakeSource(SCENARIO), selected_environment="dev")
        store.refresh()
        assert [a.project_name for a in store.assets()] == ["a1", "b1"]
        store.set_environment_filter("all")
        assert len(store.assets()) == 3

    def test_reads_before_fetch(self) -> None:
        store = ViewStateStore(FakeSource(SCENARIO))
        assert store.assets() == []
        assert store.sorted_teams() == []
        assert store.team_assets("Alpha") == []
        assert store.environment_stats() == {}
        assert list(store.burndown()) == []


class TestHistory:
    def test_snapshot_per_successful_refresh(self) -> None:
        source = FakeSource(SCENARIO, FetchFailure("down"), SCENARIO[:1])
        store = ViewStateStore(source, clock=_Clock())
        store.refresh()
        store.refresh()
        store.refresh()
        assert len(store.history) == 2

        points = list(store.burndown())
        assert [p.outstanding_count for p in points] == [1, 0]
        assert [p.migrated_count for p in points] == [1, 1]

    def test_snapshots_ignore_filter(self) -> None:
        store = ViewStateStore(FakeSource(SCENARIO), selected_environment="dev", clock=_Clock())
        store.refresh()
        assert store.history[0].per_team_stats["Alpha"].outstanding_count == 1

    def test_seeded_history(self) -> None:
        seed_store = ViewStateStore(FakeSource(SCENARIO), clock=_Clock())
        seed_store.refresh()
        store = ViewStateStore(FakeSource(SCENARIO), history=seed_store.history, clock=_Clock())
        store.refresh()
        assert len(store.history) == 2
        assert len(store.burndown()) == 1  # same clock start -> same timestamp

    def test_burndown_progress(self) -> None:
        store = ViewStateStore(FakeSource(SCENARIO), clock=_Clock())
        store.refresh()
        p = store.burndown_progress()
        assert p.current_outstanding == 1
        assert p.progress_pct == 50.0

    def test_snapshot_carries_environment_stats(self) -> None:
        store = ViewStateStore(FakeSource(SCENARIO), clock=_Clock())
        store.refresh()
        dev = store.history[0].per_environment_stats[Environment.DEV]
        assert dev.spa_count == 2
        assert dev.spa_migrated_count == 1

    def test_environment_burndown_counts_not_migrated_as_remaining(self) -> None:
        store = ViewStateStore(FakeSource(SCENARIO), clock=_Clock())
        store.refresh()
        series = store.environment_burndown()
        assert list(series) == [Environment.DEV, Environment.UAT]
        [dev] = series[Environment.DEV]
        assert (dev.spa_remaining, dev.spa_total, dev.ms_total) == (1, 2, 0)
        assert series[Environment.UAT][0].ms_remaining == 1

    def test_naive_seed_mixes_with_live_snapshots(self) -> None:
        seed = AggregateSnapshot(
            timestamp=datetime(2025, 12, 31, 12, 0),
            per_team_stats={"Alpha": TeamStats(team_name="Alpha", outstanding_count=3)},
        )
        store = ViewStateStore(FakeSource(SCENARIO), history=[seed])
        store.refresh()
        points = list(store.burndown())
        assert [p.outstanding_count for p in points] == [3, 1]
        assert store.burndown_progress().current_outstanding == 1


_ALL_MIGRATED = [
    _rec("Alpha", "dev", "MIGRATED", name="a1"),
    _rec("Alpha", "uat", "MIGRATED", spa=False, name="a2"),
    _rec("Beta", "dev", "MIGRATED", name="b1"),
]


class TestBurndownTargets:
    def test_initial_targets(self) -> None:
        store = ViewStateStore(FakeSource(SCENARIO), burndown_targets={"DEV": date(2026, 2, 1)})
        assert store.burndown_targets == {Environment.DEV: date(2026, 2, 1)}

    def test_bad_initial_target_environment(self) -> None:
        with pytest.raises(InvalidFilter):
            ViewStateStore(FakeSource(SCENARIO), burndown_targets={"prod": date(2026, 2, 1)})

    def test_set_and_remove(self) -> None:
        store = ViewStateStore(FakeSource(SCENARIO))
        store.set_burndown_target("uat", date(2026, 3, 1))
        store.set_burndown_target(Environment.DEV, date(2026, 2, 1))
        store.set_burndown_target(Environment.DEV, None)
        assert store.burndown_targets == {Environment.UAT: date(2026, 3, 1)}

    def test_all_is_not_a_target_environment(self) -> None:
        store = ViewStateStore(FakeSource(SCENARIO))
        with pytest.raises(InvalidFilter):
            store.set_burndown_target("all", date(2026, 2, 1))

    def test_targets_survive_clear(self) -> None:
        store = ViewStateStore(FakeSource(SCENARIO), burndown_targets={Environment.SIT: date(2026, 2, 1)})
        store.clear()
        assert Environment.SIT in store.burndown_targets

    def test_environment_progress_uses_targets(self) -> None:
        store = ViewStateStore(
            FakeSource(SCENARIO, _ALL_MIGRATED),
            burndown_targets={Environment.DEV: date(2026, 2, 1)},
            clock=_Clock(),
        )
        store.refresh()
        store.refresh()
        metrics = store.environment_progress(today=date(2026, 1, 4))
        assert [m.environment for m in metrics] == [Environment.DEV, Environment.UAT]
        dev, uat = metrics
        assert dev.target == date(2026, 2, 1)
        assert dev.days_to_target == 28
        assert dev.status == "completed"
        assert uat.target is None
        assert uat.overall_progress == 100.0
