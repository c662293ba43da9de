"""Per-team and per-environment migration statistics."""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping

from migration_dashboard.core.data_models import (
    ALL_ENVIRONMENTS,
    ENVIRONMENT_ORDER,
    Asset,
    AssetKind,
    Environment,
    EnvironmentFilter,
    EnvironmentStats,
    MigrationStatus,
    MigrationSummary,
    TeamStats,
)
from migration_dashboard.core.errors import InvalidFilter

logger = logging.getLogger(__name__)


def parse_environment_filter(value: object) -> EnvironmentFilter:
    """Return *value* as an :class:`Environment` or ``"all"``.

    Strings are matched case-insensitively.

    Raises:
        InvalidFilter: If *value* names neither an environment nor ``all``.
    """
    if isinstance(value, Environment):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == ALL_ENVIRONMENTS:
            return ALL_ENVIRONMENTS
        try:
            return Environment(lowered)
        except ValueError:
            pass
    raise InvalidFilter(value)


def aggregate(
    assets: Iterable[Asset], environment_filter: EnvironmentFilter | str = ALL_ENVIRONMENTS
) -> dict[str, TeamStats]:
    """Fold *assets* into per-team stats.

    Kind and status are tallied independently over the same partition.
    Teams left with no assets after filtering are omitted from the result.

    Raises:
        InvalidFilter: If *environment_filter* is not a known environment
            or ``"all"``.
    """
    env = parse_environment_filter(environment_filter)
    result: dict[str, TeamStats] = {}

    for asset in _filtered(assets, env):
        stats = result.get(asset.team_name)
        if stats is None:
            stats = result[asset.team_name] = TeamStats(team_name=asset.team_name)
        _tally(stats, asset)

    for stats in result.values():
        stats.migrated_pct = percentage(stats.migrated_count, stats.total)

    logger.debug("Aggregated %d teams (filter=%s)", len(result), _label(env))
    return result


def aggregate_by_environment(assets: Iterable[Asset]) -> dict[Environment, EnvironmentStats]:
    """Fold *assets* into per-environment stats, in display order."""
    buckets: dict[Environment, EnvironmentStats] = {}
    for asset in assets:
        stats = buckets.get(asset.environment)
        if stats is None:
            stats = buckets[asset.environment] = EnvironmentStats(environment=asset.environment)
        _tally(stats, asset)
        if asset.status is MigrationStatus.MIGRATED:
            if asset.kind is AssetKind.SPA:
                stats.spa_migrated_count += 1
            else:
                stats.ms_migrated_count += 1

    ordered: dict[Environment, EnvironmentStats] = {}
    for env in ENVIRONMENT_ORDER:
        if env in buckets:
            stats = buckets[env]
            stats.migrated_pct = percentage(stats.migrated_count, stats.total)
            ordered[env] = stats
    return ordered


def summarize(team_stats: Mapping[str, TeamStats]) -> MigrationSummary:
    """Sum a team-stats map into overall totals."""
    s = MigrationSummary(team_count=len(team_stats))
    for stats in team_stats.values():
        s.spa_count += stats.spa_count
        s.ms_count += stats.ms_count
        s.migrated_count += stats.migrated_count
        s.outstanding_count += stats.outstanding_count
        s.not_migrated_count += stats.not_migrated_count
    s.migrated_pct = percentage(s.migrated_count, s.spa_count + s.ms_count)
    return s


def sorted_team_stats(team_stats: Mapping[str, TeamStats]) -> list[TeamStats]:
    """Return team stats in lexicographic team-name order."""
    return [team_stats[name] for name in sorted(team_stats)]


def team_assets(
    assets: Iterable[Asset],
    team_name: str,
    environment_filter: EnvironmentFilter | str = ALL_ENVIRONMENTS,
) -> list[Asset]:
    """Return the classified assets of one team that pass the filter."""
    env = parse_environment_filter(environment_filter)
    return [a for a in _filtered(assets, env) if a.team_name == team_name]


def percentage(part: int, whole: int) -> float:
    """``part / whole`` as a percentage rounded half-up to one decimal."""
    if whole == 0:
        return 0.0
    value = Decimal(part * 100) / Decimal(whole)
    return float(value.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


# -- helpers ------------------------------------------------------------------


def _filtered(assets: Iterable[Asset], env: EnvironmentFilter) -> Iterable[Asset]:
    if env == ALL_ENVIRONMENTS:
        return assets
    return (a for a in assets if a.environment is env)


def _tally(stats: TeamStats | EnvironmentStats, asset: Asset) -> None:
    if asset.kind is AssetKind.SPA:
        stats.spa_count += 1
    else:
        stats.ms_count += 1

    if asset.status is MigrationStatus.MIGRATED:
        stats.migrated_count += 1
    elif asset.status is MigrationStatus.OUTSTANDING:
        stats.outstanding_count += 1
    else:
        stats.not_migrated_count += 1


def _label(env: EnvironmentFilter) -> str:
    return env.value if isinstance(env, Environment) else env
