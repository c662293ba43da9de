"""Burndown series projection and progress forecasting."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Iterator, Mapping, Sequence, overload

from migration_dashboard.core.aggregator import percentage
from migration_dashboard.core.data_models import (
    ENVIRONMENT_ORDER,
    AggregateSnapshot,
    BurndownPoint,
    BurndownProgress,
    Environment,
    EnvironmentBurndownPoint,
    EnvironmentProgress,
)

logger = logging.getLogger(__name__)

_COMPLETED_PCT = 95.0
_SECONDS_PER_DAY = 86400
_STATUS_WINDOW = 4
_MIN_DECREASES = 2


class BurndownSeries(Sequence[BurndownPoint]):
    """Lazily projected burndown points for a fixed snapshot history.

    The history is captured as a tuple at construction; every iteration
    recomputes the points from it, so the series can be walked any number
    of times without side effects.
    """

    def __init__(self, history: Iterable[AggregateSnapshot]) -> None:
        self._history = tuple(history)

    def __iter__(self) -> Iterator[BurndownPoint]:
        return iter(_project_points(self._history))

    def __len__(self) -> int:
        return len(_project_points(self._history))

    @overload
    def __getitem__(self, index: int) -> BurndownPoint: ...

    @overload
    def __getitem__(self, index: slice) -> list[BurndownPoint]: ...

    def __getitem__(self, index: int | slice) -> BurndownPoint | list[BurndownPoint]:
        return _project_points(self._history)[index]

    def __repr__(self) -> str:
        return f"BurndownSeries(snapshots={len(self._history)})"


def project(history: Iterable[AggregateSnapshot]) -> BurndownSeries:
    """Turn a snapshot history into an ascending, de-duplicated series.

    Each snapshot becomes one point holding the outstanding and migrated
    totals across all its teams. When several snapshots share a timestamp
    the one appearing last in *history* wins. Naive timestamps are taken
    to be UTC, so histories mixing naive and aware stamps still order.
    """
    return BurndownSeries(history)


def project_environments(
    history: Iterable[AggregateSnapshot],
) -> dict[Environment, list[EnvironmentBurndownPoint]]:
    """Per-environment remaining-asset series, in display order.

    Environments no snapshot mentions are left out. Ordering, de-duplication
    and timestamp handling follow :func:`project`.
    """
    by_env: dict[Environment, dict[datetime, EnvironmentBurndownPoint]] = {}
    for snap in _ordered(history):
        ts = as_utc(snap.timestamp)
        for env, stats in snap.per_environment_stats.items():
            by_env.setdefault(env, {})[ts] = EnvironmentBurndownPoint(
                timestamp=ts,
                spa_remaining=stats.spa_remaining,
                ms_remaining=stats.ms_remaining,
                spa_total=stats.spa_count,
                ms_total=stats.ms_count,
            )
    return {env: list(by_env[env].values()) for env in ENVIRONMENT_ORDER if env in by_env}


def determine_trend(points: Sequence[BurndownPoint], window: int = 3) -> str:
    """Classify the recent direction of the outstanding count.

    Returns ``"improving"`` when the outstanding count fell across the last
    *window* points, ``"declining"`` when it rose, else ``"stable"``.
    """
    recent = list(points)[-window:]
    if len(recent) < 2:
        return "stable"
    first, last = recent[0].outstanding_count, recent[-1].outstanding_count
    if last < first:
        return "improving"
    if last > first:
        return "declining"
    return "stable"


def trend_improving(remaining: Sequence[int], window: int = _STATUS_WINDOW) -> bool:
    """True when the count fell between at least two consecutive pairs of the last *window* values."""
    recent = list(remaining)[-window:]
    decreases = sum(1 for prev, cur in zip(recent, recent[1:]) if prev > cur)
    return decreases >= _MIN_DECREASES


def burn_rate(points: Sequence[BurndownPoint], window: int = 4) -> float | None:
    """Outstanding assets burned per day across the last *window* points."""
    return _rate([(p.timestamp, p.outstanding_count) for p in points][-window:])


def calculate_progress(
    points: Sequence[BurndownPoint],
    target: date | None = None,
    today: date | None = None,
) -> BurndownProgress:
    """Summarise a burndown series against an optional target date."""
    points = list(points)
    today = today or date.today()
    p = BurndownProgress(target=target)
    if target is not None:
        p.days_to_target = (target - today).days

    if not points:
        logger.debug("Empty burndown series; returning default progress")
        return p

    first, latest = points[0], points[-1]
    p.current_outstanding = latest.outstanding_count
    p.initial_outstanding = first.outstanding_count
    p.progress_pct = percentage(
        latest.migrated_count, latest.migrated_count + latest.outstanding_count
    )
    p.trend = determine_trend(points)
    p.burn_rate_per_day = burn_rate(points)
    p.projected_completion = _projected_completion(latest.timestamp, latest.outstanding_count, p.burn_rate_per_day)
    p.status = _status(
        p.progress_pct,
        [(pt.timestamp, pt.outstanding_count) for pt in points],
        p.projected_completion,
        target,
        today,
    )

    logger.debug(
        "Burndown progress: %.1f%% migrated, %d outstanding, trend=%s, status=%s",
        p.progress_pct, p.current_outstanding, p.trend, p.status,
    )
    return p


def calculate_environment_progress(
    series: Mapping[Environment, Sequence[EnvironmentBurndownPoint]],
    targets: Mapping[Environment, date] | None = None,
    today: date | None = None,
) -> list[EnvironmentProgress]:
    """Progress per environment, each judged against its own target.

    Environments without points are skipped; the rest come back in display
    order. ``trend`` reads ``"stable"`` once an environment is at least 95%
    migrated, otherwise ``"improving"`` or ``"declining"`` by the same rule
    that drives ``on_track``.
    """
    targets = targets or {}
    today = today or date.today()
    result = []
    for env in ENVIRONMENT_ORDER:
        points = list(series.get(env) or ())
        if not points:
            continue
        target = targets.get(env)
        latest = points[-1]
        m = EnvironmentProgress(
            environment=env,
            target=target,
            current_spa=latest.spa_remaining,
            current_ms=latest.ms_remaining,
            total_spa=latest.spa_total,
            total_ms=latest.ms_total,
        )
        m.spa_progress = percentage(latest.spa_total - latest.spa_remaining, latest.spa_total)
        m.ms_progress = percentage(latest.ms_total - latest.ms_remaining, latest.ms_total)
        m.overall_progress = percentage(
            latest.spa_total + latest.ms_total - latest.remaining,
            latest.spa_total + latest.ms_total,
        )
        if target is not None:
            m.days_to_target = (target - today).days

        combined = [(pt.timestamp, pt.remaining) for pt in points]
        improving = trend_improving([rem for _, rem in combined])
        rate = _rate(combined[-_STATUS_WINDOW:])
        m.projected_completion = _projected_completion(latest.timestamp, latest.remaining, rate)
        m.status = _status(m.overall_progress, combined, m.projected_completion, target, today)
        if m.overall_progress >= _COMPLETED_PCT:
            m.trend = "stable"
        else:
            m.trend = "improving" if improving else "declining"
        m.spa_status = "completed" if m.spa_progress >= _COMPLETED_PCT else "on_track"
        m.ms_status = "completed" if m.ms_progress >= _COMPLETED_PCT else "on_track"

        logger.debug(
            "Environment %s: %.1f%% migrated, %d remaining, status=%s",
            env.value, m.overall_progress, latest.remaining, m.status,
        )
        result.append(m)
    return result


def as_utc(ts: datetime) -> datetime:
    """Return *ts* with naive values read as UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


# -- helpers ------------------------------------------------------------------


def _ordered(history: Iterable[AggregateSnapshot]) -> list[AggregateSnapshot]:
    # sorted() is stable, so equal timestamps keep input order and the
    # dict assignments in the callers leave the last one in place.
    return sorted(history, key=lambda s: as_utc(s.timestamp))


def _project_points(history: tuple[AggregateSnapshot, ...]) -> list[BurndownPoint]:
    by_ts: dict[datetime, BurndownPoint] = {}
    for snap in _ordered(history):
        ts = as_utc(snap.timestamp)
        stats = snap.per_team_stats.values()
        by_ts[ts] = BurndownPoint(
            timestamp=ts,
            outstanding_count=sum(s.outstanding_count for s in stats),
            migrated_count=sum(s.migrated_count for s in stats),
        )
    return list(by_ts.values())


def _rate(recent: list[tuple[datetime, int]]) -> float | None:
    if len(recent) < 2:
        return None
    (first_ts, first_rem), (last_ts, last_rem) = recent[0], recent[-1]
    days = max(1e-6, (last_ts - first_ts).total_seconds() / _SECONDS_PER_DAY)
    rate = (first_rem - last_rem) / days
    return rate if rate > 0 else None


def _projected_completion(latest: datetime, remaining: int, rate: float | None) -> datetime | None:
    if remaining <= 0:
        return latest
    if not rate:
        return None
    return latest + timedelta(days=remaining / rate)


def _status(
    progress_pct: float,
    remaining: list[tuple[datetime, int]],
    projected: datetime | None,
    target: date | None,
    today: date,
) -> str:
    if progress_pct >= _COMPLETED_PCT or remaining[-1][1] == 0:
        # finishing after the target still counts as a miss
        reached = next((ts for ts, rem in remaining if rem <= 0), None)
        if target is not None and reached is not None and reached.date() > target:
            return "missed"
        return "completed"
    improving = trend_improving([rem for _, rem in remaining])
    if target is None:
        return "on_track" if improving else "at_risk"
    if today > target:
        return "missed"
    if projected is not None and projected.date() <= target and improving:
        return "on_track"
    return "at_risk"
