"""Command-line session: build the store, refresh once, print or export a view."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Any, TextIO

from dateutil.parser import parse as dt_parse

from migration_dashboard.core.chart_generator import generate_burndown_chart
from migration_dashboard.core.data_models import AssetKind, Environment
from migration_dashboard.core.errors import FetchFailure, InvalidFilter, UnknownView
from migration_dashboard.core.export import assets_to_csv, team_stats_to_csv, write_csv
from migration_dashboard.services.config_manager import ConfigManager
from migration_dashboard.services.data_source import source_from_config
from migration_dashboard.services.history_source import BurndownHistory, load_history, parse_targets
from migration_dashboard.services.view_state_store import StoreStatus, ViewStateStore

logger = logging.getLogger(__name__)


def run_app(args: argparse.Namespace, config: ConfigManager | None = None, out: TextIO | None = None) -> int:
    """Run one dashboard session from parsed CLI *args*, returning the exit code."""
    config = config or ConfigManager()
    out = out or sys.stdout

    if args.reset_config:
        config.reset()

    location = args.source or config.get("api_url")
    if not location:
        logger.error("No data source: pass --source or set api_url in %s", config.path)
        return 2

    history = BurndownHistory()
    history_path = args.history or config.get("history_path")
    if history_path:
        try:
            history = load_history(Path(history_path))
        except FetchFailure as exc:
            print(f"Failed to load burndown history: {exc.message}", file=sys.stderr)
            return 1

    env_targets = _parse_env_targets(args.env_target)
    targets = {
        **history.targets,
        **parse_targets(config.get("burndown_targets") or {}),
        **parse_targets(env_targets),
    }

    source = source_from_config(
        location,
        timeout=float(config.get("request_timeout", 30)),
        department=args.department or config.get("department") or None,
    )
    try:
        store = ViewStateStore(
            source,
            selected_view=args.view or config.get("default_view", "overview"),
            selected_environment=args.env or config.get("default_environment", "all"),
            history=history.snapshots,
            burndown_targets=targets,
            cache_ttl_seconds=float(config.get("cache_ttl_seconds", 0)),
        )
    except (InvalidFilter, UnknownView) as exc:
        logger.error("%s", exc)
        return 2

    if args.save_config:
        _save_config(args, env_targets, config)

    if store.refresh() is StoreStatus.FAILED:
        print(f"Failed to load migration data: {store.error}", file=sys.stderr)
        return 1

    for diag in store.diagnostics:
        logger.warning("Record %d excluded: %s", diag.index, diag.message)

    target = _parse_target(args.target or config.get("burndown_target"))
    render_view(store, out, target=target)

    if args.export_csv:
        write_csv(Path(args.export_csv), team_stats_to_csv(store.aggregates or {}))
    if args.export_assets:
        write_csv(Path(args.export_assets), assets_to_csv(store.assets()))
    if args.chart:
        png = generate_burndown_chart(
            store.burndown(), target=target, dark=bool(config.get("dark_mode", False))
        )
        if png is None:
            logger.warning("No burndown history; chart not written")
        else:
            Path(args.chart).write_bytes(png)
            logger.info("Wrote burndown chart to %s", args.chart)

    return 0


def render_view(store: ViewStateStore, out: TextIO, target: date | None = None) -> None:
    """Print the store's selected view as plain text."""
    view = store.selected_view
    env = store.selected_environment
    env_label = env.value if isinstance(env, Environment) else env
    print(f"== {view} (environment: {env_label}) ==", file=out)

    if view == "overview":
        s = store.summary()
        print(
            f"{s.team_count} teams, {s.spa_count} SPAs, {s.ms_count} microservices, "
            f"{s.migrated_pct:.1f}% migrated",
            file=out,
        )
        for env_key, es in store.environment_stats().items():
            print(
                f"  {env_key.value:<4} migrated={es.migrated_count} "
                f"outstanding={es.outstanding_count} not_migrated={es.not_migrated_count} "
                f"({es.migrated_pct:.1f}%)",
                file=out,
            )
    elif view in ("spas", "microservices"):
        kind = AssetKind.SPA if view == "spas" else AssetKind.MICROSERVICE
        for team in store.sorted_teams():
            for asset in store.team_assets(team.team_name):
                if asset.kind is kind:
                    print(
                        f"  {asset.team_name:<20} {asset.project_name:<30} "
                        f"{asset.environment.value:<4} {asset.status.value}",
                        file=out,
                    )
    elif view == "burndown":
        p = store.burndown_progress(target=target)
        print(
            f"  outstanding={p.current_outstanding} progress={p.progress_pct:.1f}% "
            f"trend={p.trend} status={p.status}",
            file=out,
        )
        for m in store.environment_progress():
            print(
                f"  {m.environment.value:<4} spa={m.current_spa}/{m.total_spa} "
                f"ms={m.current_ms}/{m.total_ms} progress={m.overall_progress:.1f}% "
                f"target={m.target.isoformat() if m.target else '-'} "
                f"trend={m.trend} status={m.status}",
                file=out,
            )
    elif view == "teams":
        print(f"  {'team':<20} {'SPA':>4} {'MS':>4} {'done':>5} {'open':>5} {'none':>5} {'%':>6}", file=out)
        for t in store.sorted_teams():
            print(
                f"  {t.team_name:<20} {t.spa_count:>4} {t.ms_count:>4} {t.migrated_count:>5} "
                f"{t.outstanding_count:>5} {t.not_migrated_count:>5} {t.migrated_pct:>6.1f}",
                file=out,
            )
    else:
        print("  (rendered by the web dashboard)", file=out)


def _parse_target(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return dt_parse(value).date()
    except (ValueError, OverflowError):
        logger.warning("Ignoring invalid burndown target %r", value)
        return None


def _parse_env_targets(values: list[str]) -> dict[str, str]:
    result = {}
    for item in values or []:
        env, sep, when = item.partition("=")
        if not sep:
            logger.warning("Ignoring --env-target %r: expected ENV=DATE", item)
            continue
        result[env.strip().lower()] = when.strip()
    return result


def _save_config(args: argparse.Namespace, env_targets: dict[str, str], config: ConfigManager) -> None:
    values: dict[str, Any] = {}
    for arg, key in (
        ("source", "api_url"),
        ("department", "department"),
        ("env", "default_environment"),
        ("view", "default_view"),
        ("history", "history_path"),
        ("target", "burndown_target"),
    ):
        value = getattr(args, arg)
        if value:
            values[key] = value
    if env_targets:
        values["burndown_targets"] = {**(config.get("burndown_targets") or {}), **env_targets}
    config.update(values)
    logger.info("Saved %s to %s", ", ".join(sorted(values)) or "nothing", config.path)
