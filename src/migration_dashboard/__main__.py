"""Entry point for ``python -m migration_dashboard``."""

from __future__ import annotations

import argparse
import logging

from migration_dashboard.core.data_models import VIEW_KEYS


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="migration-dashboard",
        description="Summarise SPA and microservice migration progress by team and environment.",
    )
    parser.add_argument("--source", help="Data endpoint URL or local JSON file (default: api_url from config).")
    parser.add_argument("--department", help="Department path segment inserted into the source URL.")
    parser.add_argument("--env", help="Environment filter: dev, sit, uat, nft or all.")
    parser.add_argument("--view", choices=VIEW_KEYS, help="View to print.")
    parser.add_argument("--export-csv", metavar="PATH", help="Write team stats as CSV.")
    parser.add_argument("--export-assets", metavar="PATH", help="Write classified assets as CSV.")
    parser.add_argument("--chart", metavar="PATH", help="Write the burndown chart as PNG.")
    parser.add_argument("--target", help="Overall burndown target date (ISO).")
    parser.add_argument(
        "--env-target",
        action="append",
        default=[],
        metavar="ENV=DATE",
        help="Burndown target for one environment, e.g. dev=2026-06-30. Repeatable.",
    )
    parser.add_argument("--history", metavar="PATH", help="JSON file of earlier aggregate snapshots.")
    parser.add_argument("--save-config", action="store_true", help="Store the given options as defaults.")
    parser.add_argument("--reset-config", action="store_true", help="Restore default configuration first.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Launch a migration dashboard session."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    from migration_dashboard.app import run_app

    return run_app(args)


if __name__ == "__main__":
    raise SystemExit(main())
