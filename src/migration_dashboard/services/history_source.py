"""Load externally kept aggregate history and per-environment burndown targets."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Mapping

from dateutil.parser import parse as dt_parse

from migration_dashboard.core.aggregator import percentage
from migration_dashboard.core.data_models import (
    AggregateSnapshot,
    Environment,
    EnvironmentStats,
    TeamStats,
)
from migration_dashboard.core.errors import FetchFailure

logger = logging.getLogger(__name__)


@dataclass
class BurndownHistory:
    """Snapshots to seed a store with, plus any targets the file names."""

    snapshots: list[AggregateSnapshot] = field(default_factory=list)
    targets: dict[Environment, date] = field(default_factory=dict)


def load_history(path: Path) -> BurndownHistory:
    """Read a history file from *path*.

    Raises:
        FetchFailure: If the file cannot be read or is not JSON.
    """
    path = Path(path)
    logger.info("Reading burndown history from %s", path)
    try:
        with open(path, encoding="utf-8") as fh:
            payload = json.load(fh)
    except (json.JSONDecodeError, OSError) as exc:
        raise FetchFailure(f"Failed to read history {path}: {exc}") from exc
    history = parse_history(payload)
    logger.info("Loaded %d snapshots and %d targets from %s", len(history.snapshots), len(history.targets), path)
    return history


def parse_history(payload: Any) -> BurndownHistory:
    """Build a :class:`BurndownHistory` from decoded JSON.

    Accepts either a bare list of snapshots or an object with ``snapshots``
    and an optional ``targets`` map of environment to ISO date. Each
    snapshot has a ``timestamp`` and ``teams`` / ``environments`` lists
    keyed like the CSV export. Snapshots without a usable timestamp are
    skipped with a warning.

    Raises:
        FetchFailure: If *payload* is neither a list nor an object with a
            ``snapshots`` list.
    """
    if isinstance(payload, list):
        raw_snapshots, raw_targets = payload, {}
    elif isinstance(payload, dict) and isinstance(payload.get("snapshots"), list):
        raw_snapshots, raw_targets = payload["snapshots"], payload.get("targets") or {}
    else:
        raise FetchFailure("Unexpected history: expected a list or a 'snapshots' list")

    snapshots = []
    for i, item in enumerate(raw_snapshots):
        snap = _parse_snapshot(item)
        if snap is None:
            logger.warning("Skipping history entry %d: no valid timestamp", i)
            continue
        snapshots.append(snap)

    targets = parse_targets(raw_targets) if isinstance(raw_targets, Mapping) else {}
    return BurndownHistory(snapshots=snapshots, targets=targets)


def parse_targets(values: Mapping[str, Any]) -> dict[Environment, date]:
    """Parse an ``{env: "YYYY-MM-DD"}`` map, dropping unusable entries."""
    targets: dict[Environment, date] = {}
    for key, value in values.items():
        try:
            env = Environment(str(key).strip().lower())
        except ValueError:
            logger.warning("Ignoring burndown target for unknown environment %r", key)
            continue
        if not value:
            continue
        try:
            targets[env] = value if isinstance(value, date) else dt_parse(str(value)).date()
        except (ValueError, OverflowError):
            logger.warning("Ignoring invalid burndown target %r for %s", value, env.value)
    return targets


# -- helpers ------------------------------------------------------------------


def _parse_snapshot(item: Any) -> AggregateSnapshot | None:
    if not isinstance(item, dict) or not item.get("timestamp"):
        return None
    try:
        ts = dt_parse(str(item["timestamp"]))
    except (ValueError, OverflowError):
        return None

    teams: dict[str, TeamStats] = {}
    for row in item.get("teams") or []:
        if isinstance(row, dict) and row.get("teamName"):
            stats = TeamStats(
                team_name=str(row["teamName"]),
                spa_count=_int(row, "spaCount"),
                ms_count=_int(row, "msCount"),
                migrated_count=_int(row, "migratedCount"),
                outstanding_count=_int(row, "outstandingCount"),
                not_migrated_count=_int(row, "notMigratedCount"),
            )
            stats.migrated_pct = percentage(stats.migrated_count, stats.total)
            teams[stats.team_name] = stats

    envs: dict[Environment, EnvironmentStats] = {}
    for row in item.get("environments") or []:
        if not isinstance(row, dict):
            continue
        try:
            env = Environment(str(row.get("environment", "")).strip().lower())
        except ValueError:
            logger.debug("Skipping environment row %r", row.get("environment"))
            continue
        stats = EnvironmentStats(
            environment=env,
            spa_count=_int(row, "spaCount"),
            ms_count=_int(row, "msCount"),
            migrated_count=_int(row, "migratedCount"),
            outstanding_count=_int(row, "outstandingCount"),
            not_migrated_count=_int(row, "notMigratedCount"),
            spa_migrated_count=_int(row, "spaMigratedCount"),
            ms_migrated_count=_int(row, "msMigratedCount"),
        )
        stats.migrated_pct = percentage(stats.migrated_count, stats.total)
        envs[env] = stats

    return AggregateSnapshot(timestamp=ts, per_team_stats=teams, per_environment_stats=envs)


def _int(row: Mapping[str, Any], key: str) -> int:
    try:
        return int(row.get(key) or 0)
    except (TypeError, ValueError):
        return 0
