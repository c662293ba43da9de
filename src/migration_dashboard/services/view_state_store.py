"""View-state store: fetched data, derived aggregates and UI selection.

One :class:`ViewStateStore` owns one :class:`ViewState`. Stores are built
explicitly and passed to whatever presents them, so independent stores can
coexist (e.g. in tests).

State machine::

    IDLE --refresh--> LOADING --ok--> READY
                         |            |  ^
                         +--error-> FAILED  (refresh from either re-enters LOADING)

At most one fetch whose result can still be committed is outstanding at a
time: ``refresh()`` while such a fetch is in flight joins it instead of
starting another. Each fetch carries a sequence number; a completion whose
number is not newer than the last committed or invalidated one is
discarded. ``clear()`` invalidates and detaches the in-flight fetch, so the
next ``refresh()`` starts a fresh one rather than joining a fetch whose
result will be thrown away.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Callable, Iterable, Mapping

from migration_dashboard.core.aggregator import (
    aggregate,
    aggregate_by_environment,
    parse_environment_filter,
    sorted_team_stats,
    summarize,
    team_assets,
)
from migration_dashboard.core.burndown import (
    BurndownSeries,
    calculate_environment_progress,
    calculate_progress,
    project,
    project_environments,
)
from migration_dashboard.core.classifier import classify_records
from migration_dashboard.core.data_models import (
    ALL_ENVIRONMENTS,
    VIEW_KEYS,
    AggregateSnapshot,
    Asset,
    BurndownProgress,
    ClassificationResult,
    Environment,
    EnvironmentBurndownPoint,
    EnvironmentFilter,
    EnvironmentProgress,
    EnvironmentStats,
    MigrationSummary,
    RawAssetSet,
    RecordDiagnostic,
    TeamStats,
)
from migration_dashboard.core.errors import FetchFailure, InvalidFilter, UnknownView
from migration_dashboard.services.data_source import AssetSource

logger = logging.getLogger(__name__)


class StoreStatus(Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass
class ViewState:
    """Everything the presentation layer may read about the current view."""

    raw_assets: tuple[Asset, ...] | None = None
    aggregates: dict[str, TeamStats] | None = None
    selected_view: str = "overview"
    selected_environment: EnvironmentFilter = ALL_ENVIRONMENTS
    status: StoreStatus = StoreStatus.IDLE
    error: str | None = None
    diagnostics: list[RecordDiagnostic] = field(default_factory=list)
    fetched_at: datetime | None = None
    last_update: datetime | None = None

    @property
    def loading(self) -> bool:
        return self.status is StoreStatus.LOADING


class ViewStateStore:
    """Owns a :class:`ViewState` and drives it from an :class:`AssetSource`."""

    def __init__(
        self,
        source: AssetSource,
        *,
        selected_view: str = "overview",
        selected_environment: EnvironmentFilter | str = ALL_ENVIRONMENTS,
        history: Iterable[AggregateSnapshot] | None = None,
        burndown_targets: Mapping[Environment | str, date] | None = None,
        cache_ttl_seconds: float = 0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if selected_view not in VIEW_KEYS:
            raise UnknownView(selected_view)
        self._source = source
        self._state = ViewState(
            selected_view=selected_view,
            selected_environment=parse_environment_filter(selected_environment),
        )
        self._history: list[AggregateSnapshot] = list(history or [])
        self._targets: dict[Environment, date] = {
            _concrete_environment(env): target for env, target in (burndown_targets or {}).items()
        }
        self._cache_ttl = cache_ttl_seconds
        self._clock = clock or (lambda: datetime.now().astimezone())

        self._lock = threading.Lock()
        self._seq = 0            # last sequence number issued
        self._settled_seq = 0    # last sequence number committed or invalidated
        self._inflight: threading.Event | None = None
        self._fetched_monotonic: float | None = None

    # -- mutators -------------------------------------------------------------

    def refresh(self, *, wait: bool = True, force: bool = False) -> StoreStatus:
        """Fetch, classify and aggregate, then commit the result atomically.

        If a fetch is already in flight this joins it: no second fetch is
        started, and with *wait* the call blocks until that fetch settles.
        A fetch abandoned by :meth:`clear` is never joined.
        Fetch errors move the store to ``FAILED`` with the message kept
        verbatim; previously committed data stays available.

        When a cache TTL is configured, a ``READY`` store younger than the
        TTL returns immediately unless *force* is set.
        """
        with self._lock:
            inflight = self._inflight
            if inflight is None:
                if not force and self._cache_fresh():
                    logger.debug("Cached data still fresh; skipping fetch")
                    return self._state.status
                self._seq += 1
                seq = self._seq
                inflight = self._inflight = threading.Event()
                self._state.status = StoreStatus.LOADING
                self._state.error = None
                logger.info("Refresh #%d started", seq)
            else:
                seq = None

        if seq is None:
            logger.debug("Refresh requested while loading; joining in-flight fetch")
            if wait:
                inflight.wait()
            return self.status

        try:
            raw = self._source.fetch_raw_asset_data()
            classification = classify_records(raw.records)
        except FetchFailure as exc:
            self._fail(seq, exc.message)
        except Exception as exc:
            logger.exception("Data source raised unexpectedly")
            self._fail(seq, str(exc) or exc.__class__.__name__)
        else:
            self._commit(seq, raw, classification)
        finally:
            with self._lock:
                if self._inflight is inflight:
                    self._inflight = None
            inflight.set()

        return self.status

    def refresh_in_background(self, *, force: bool = False) -> threading.Thread:
        """Run :meth:`refresh` on a daemon thread and return the thread."""
        thread = threading.Thread(
            target=self.refresh,
            kwargs={"wait": False, "force": force},
            name="view-state-refresh",
            daemon=True,
        )
        thread.start()
        return thread

    def select_view(self, view: str) -> None:
        """Switch the selected view. Never fetches.

        Raises:
            UnknownView: If *view* is not a recognised view key.
        """
        if view not in VIEW_KEYS:
            raise UnknownView(view)
        with self._lock:
            self._state.selected_view = view
        logger.debug("Selected view %s", view)

    def set_environment_filter(self, env: EnvironmentFilter | str) -> None:
        """Change the environment filter and re-aggregate held assets locally.

        Before the first successful fetch only the filter value changes.

        Raises:
            InvalidFilter: If *env* is neither an environment nor ``"all"``.
        """
        parsed = parse_environment_filter(env)
        with self._lock:
            self._state.selected_environment = parsed
            if self._state.raw_assets is not None:
                self._state.aggregates = aggregate(self._state.raw_assets, parsed)
        logger.debug("Environment filter set to %s", _label(parsed))

    def clear(self) -> None:
        """Drop all fetched data and return to ``IDLE``.

        A fetch still in flight is invalidated and detached: its result will
        be discarded, and the next :meth:`refresh` starts a new fetch.
        Burndown targets and selection are kept.
        """
        with self._lock:
            self._settled_seq = self._seq
            self._inflight = None
            self._state.raw_assets = None
            self._state.aggregates = None
            self._state.diagnostics = []
            self._state.fetched_at = None
            self._state.last_update = None
            self._state.error = None
            self._state.status = StoreStatus.IDLE
            self._fetched_monotonic = None
        logger.info("View state cleared")

    def set_burndown_target(self, env: Environment | str, target: date | None) -> None:
        """Set or (with ``None``) remove the burndown target of one environment.

        Raises:
            InvalidFilter: If *env* is not a concrete environment.
        """
        parsed = _concrete_environment(env)
        with self._lock:
            if target is None:
                self._targets.pop(parsed, None)
            else:
                self._targets[parsed] = target
        logger.debug("Burndown target for %s set to %s", parsed.value, target)

    # -- read-only accessors --------------------------------------------------

    @property
    def state(self) -> ViewState:
        """Return a copy of the current view state."""
        with self._lock:
            return replace(
                self._state,
                aggregates=_copy_stats(self._state.aggregates),
                diagnostics=list(self._state.diagnostics),
            )

    @property
    def status(self) -> StoreStatus:
        return self._state.status

    @property
    def loading(self) -> bool:
        return self._state.loading

    @property
    def selected_view(self) -> str:
        return self._state.selected_view

    @property
    def selected_environment(self) -> EnvironmentFilter:
        return self._state.selected_environment

    @property
    def aggregates(self) -> dict[str, TeamStats] | None:
        with self._lock:
            return _copy_stats(self._state.aggregates)

    @property
    def error(self) -> str | None:
        return self._state.error

    @property
    def diagnostics(self) -> list[RecordDiagnostic]:
        with self._lock:
            return list(self._state.diagnostics)

    @property
    def fetched_at(self) -> datetime | None:
        return self._state.fetched_at

    @property
    def last_update(self) -> datetime | None:
        return self._state.last_update

    @property
    def history(self) -> tuple[AggregateSnapshot, ...]:
        with self._lock:
            return tuple(self._history)

    @property
    def burndown_targets(self) -> dict[Environment, date]:
        with self._lock:
            return dict(self._targets)

    def assets(self) -> list[Asset]:
        """Classified assets passing the current filter, in source order."""
        with self._lock:
            assets = self._state.raw_assets or ()
            env = self._state.selected_environment
        if env == ALL_ENVIRONMENTS:
            return list(assets)
        return [a for a in assets if a.environment is env]

    def sorted_teams(self) -> list[TeamStats]:
        """Team stats for the current filter, in team-name order."""
        return sorted_team_stats(self.aggregates or {})

    def summary(self) -> MigrationSummary:
        return summarize(self.aggregates or {})

    def environment_stats(self) -> dict[Environment, EnvironmentStats]:
        """Per-environment stats over all held assets, ignoring the filter."""
        with self._lock:
            assets = self._state.raw_assets or ()
        return aggregate_by_environment(assets)

    def team_assets(self, team_name: str) -> list[Asset]:
        """Classified assets of one team under the current filter."""
        with self._lock:
            assets = self._state.raw_assets or ()
            env = self._state.selected_environment
        return team_assets(assets, team_name, env)

    def burndown(self) -> BurndownSeries:
        return project(self.history)

    def burndown_progress(self, target: date | None = None, today: date | None = None) -> BurndownProgress:
        return calculate_progress(self.burndown(), target=target, today=today)

    def environment_burndown(self) -> dict[Environment, list[EnvironmentBurndownPoint]]:
        """Remaining SPAs and microservices per environment over the history."""
        return project_environments(self.history)

    def environment_progress(self, today: date | None = None) -> list[EnvironmentProgress]:
        """Per-environment progress, each against its own burndown target."""
        return calculate_environment_progress(
            self.environment_burndown(), self.burndown_targets, today=today
        )

    # -- internals ------------------------------------------------------------

    def _commit(self, seq: int, raw: RawAssetSet, classification: ClassificationResult) -> None:
        assets = tuple(classification.assets)
        with self._lock:
            if seq <= self._settled_seq:
                logger.info("Discarding result of superseded refresh #%d", seq)
                return
            env = self._state.selected_environment
            now = self._clock()
            self._state.raw_assets = assets
            self._state.aggregates = aggregate(assets, env)
            self._state.diagnostics = list(classification.diagnostics)
            self._state.fetched_at = now
            self._state.last_update = raw.last_update
            self._state.status = StoreStatus.READY
            self._state.error = None
            self._settled_seq = seq
            self._fetched_monotonic = time.monotonic()
            self._history.append(
                AggregateSnapshot(
                    timestamp=now,
                    per_team_stats=aggregate(assets, ALL_ENVIRONMENTS),
                    per_environment_stats=aggregate_by_environment(assets),
                )
            )
        logger.info(
            "Refresh #%d ready: %d assets, %d teams (filter=%s), %d records excluded",
            seq, len(assets), len(self._state.aggregates or {}), _label(env),
            len(classification.diagnostics),
        )

    def _fail(self, seq: int, message: str) -> None:
        with self._lock:
            if seq <= self._settled_seq:
                logger.info("Discarding failure of superseded refresh #%d", seq)
                return
            self._state.status = StoreStatus.FAILED
            self._state.error = message
            self._settled_seq = seq
        logger.error("Refresh #%d failed: %s", seq, message)

    def _cache_fresh(self) -> bool:
        if self._cache_ttl <= 0 or self._state.status is not StoreStatus.READY:
            return False
        if self._fetched_monotonic is None:
            return False
        return time.monotonic() - self._fetched_monotonic < self._cache_ttl


def _copy_stats(stats: dict[str, TeamStats] | None) -> dict[str, TeamStats] | None:
    if stats is None:
        return None
    return {name: replace(s) for name, s in stats.items()}


def _concrete_environment(env: Environment | str) -> Environment:
    parsed = parse_environment_filter(env)
    if not isinstance(parsed, Environment):
        raise InvalidFilter(env)
    return parsed


def _label(env: EnvironmentFilter) -> str:
    return env.value if isinstance(env, Environment) else env
