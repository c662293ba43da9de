"""CSV export of team stats and asset lists."""

from __future__ import annotations

import csv
import io
import logging
from pathlib import Path
from typing import Iterable, Mapping

from migration_dashboard.core.aggregator import sorted_team_stats
from migration_dashboard.core.data_models import Asset, AssetKind, TeamStats

logger = logging.getLogger(__name__)

TEAM_COLUMNS = [
    "teamName",
    "spaCount",
    "msCount",
    "migratedCount",
    "outstandingCount",
    "notMigratedCount",
    "migratedPct",
]

ASSET_COLUMNS = [
    "id",
    "kind",
    "teamName",
    "environment",
    "status",
    "projectName",
    "projectLink",
    "homepage",
]


def team_stats_to_csv(team_stats: Mapping[str, TeamStats]) -> str:
    """Render team stats as CSV, one row per team in name order."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(TEAM_COLUMNS)
    for s in sorted_team_stats(team_stats):
        writer.writerow([
            s.team_name,
            s.spa_count,
            s.ms_count,
            s.migrated_count,
            s.outstanding_count,
            s.not_migrated_count,
            f"{s.migrated_pct:.1f}",
        ])
    return buf.getvalue()


def assets_to_csv(assets: Iterable[Asset]) -> str:
    """Render classified assets as CSV.

    The ``homepage`` column is empty for microservices.
    """
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(ASSET_COLUMNS)
    for a in assets:
        writer.writerow([
            a.id,
            a.kind.value,
            a.team_name,
            a.environment.value,
            a.status.value,
            a.project_name,
            a.project_link,
            getattr(a, "homepage", "") if a.kind is AssetKind.SPA else "",
        ])
    return buf.getvalue()


def write_csv(path: Path, content: str) -> Path:
    """Write CSV *content* to *path*, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    logger.info("Wrote %s (%d bytes)", path, len(content))
    return path
