"""Data models for the migration dashboard."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, ClassVar, Literal, Mapping, Union


class Environment(str, Enum):
    """Deployment environments an asset can be migrated in."""

    DEV = "dev"
    SIT = "sit"
    UAT = "uat"
    NFT = "nft"


class MigrationStatus(str, Enum):
    """Migration status of a single asset."""

    MIGRATED = "MIGRATED"
    OUTSTANDING = "OUTSTANDING"
    NOT_MIGRATED = "NOT_MIGRATED"


class AssetKind(str, Enum):
    SPA = "SPA"
    MICROSERVICE = "Microservice"


# Synthetic filter value meaning "every environment"; never stored on an asset.
ALL_ENVIRONMENTS = "all"

EnvironmentFilter = Union[Environment, Literal["all"]]

ENVIRONMENT_ORDER: tuple[Environment, ...] = (
    Environment.DEV,
    Environment.SIT,
    Environment.UAT,
    Environment.NFT,
)

VIEW_KEYS: tuple[str, ...] = (
    "overview",
    "spas",
    "microservices",
    "teams",
    "burndown",
    "release-notes",
    "api-docs",
)


@dataclass(frozen=True)
class Asset:
    """Common shape every classified asset is normalised into.

    Concrete variants set ``kind`` at class level; downstream code reads
    ``kind`` and never inspects variant-specific fields to tell them apart.
    """

    kind: ClassVar[AssetKind]

    id: str
    team_name: str
    environment: Environment
    status: MigrationStatus
    project_name: str
    project_link: str


@dataclass(frozen=True)
class SpaAsset(Asset):
    """A single-page application."""

    kind: ClassVar[AssetKind] = AssetKind.SPA

    homepage: str = ""


@dataclass(frozen=True)
class MicroserviceAsset(Asset):
    """A backend microservice."""

    kind: ClassVar[AssetKind] = AssetKind.MICROSERVICE

    otel: str | None = None
    mssdk: str | None = None


@dataclass
class RecordDiagnostic:
    """A raw record excluded from a batch, and why."""

    index: int
    field: str
    message: str


@dataclass
class ClassificationResult:
    """Outcome of classifying a batch of raw records."""

    assets: list[Asset] = field(default_factory=list)
    diagnostics: list[RecordDiagnostic] = field(default_factory=list)


@dataclass
class RawAssetSet:
    """Raw payload delivered by a data source."""

    records: list[dict[str, Any]] = field(default_factory=list)
    last_update: datetime | None = None


@dataclass
class TeamStats:
    """Migration counts for one team."""

    team_name: str
    spa_count: int = 0
    ms_count: int = 0
    migrated_count: int = 0
    outstanding_count: int = 0
    not_migrated_count: int = 0
    migrated_pct: float = 0.0

    @property
    def total(self) -> int:
        return self.spa_count + self.ms_count


@dataclass
class EnvironmentStats:
    """Migration counts for one environment across all teams."""

    environment: Environment
    spa_count: int = 0
    ms_count: int = 0
    migrated_count: int = 0
    outstanding_count: int = 0
    not_migrated_count: int = 0
    migrated_pct: float = 0.0
    spa_migrated_count: int = 0
    ms_migrated_count: int = 0

    @property
    def total(self) -> int:
        return self.spa_count + self.ms_count

    @property
    def spa_remaining(self) -> int:
        return self.spa_count - self.spa_migrated_count

    @property
    def ms_remaining(self) -> int:
        return self.ms_count - self.ms_migrated_count


@dataclass
class MigrationSummary:
    """Totals over a whole team-stats map."""

    team_count: int = 0
    spa_count: int = 0
    ms_count: int = 0
    migrated_count: int = 0
    outstanding_count: int = 0
    not_migrated_count: int = 0
    migrated_pct: float = 0.0


@dataclass
class AggregateSnapshot:
    """Per-team and per-environment stats captured at one aggregation time."""

    timestamp: datetime
    per_team_stats: Mapping[str, TeamStats] = field(default_factory=dict)
    per_environment_stats: Mapping[Environment, EnvironmentStats] = field(default_factory=dict)


@dataclass(frozen=True)
class BurndownPoint:
    """One point of the burndown series."""

    timestamp: datetime
    outstanding_count: int
    migrated_count: int


@dataclass
class BurndownProgress:
    """Headline progress figures derived from a burndown series."""

    current_outstanding: int = 0
    initial_outstanding: int = 0
    progress_pct: float = 0.0
    trend: str = "stable"  # "improving", "declining", "stable"
    burn_rate_per_day: float | None = None
    projected_completion: datetime | None = None
    target: date | None = None
    days_to_target: int | None = None
    status: str = "at_risk"  # "completed", "on_track", "at_risk", "missed"


@dataclass(frozen=True)
class EnvironmentBurndownPoint:
    """Remaining SPAs and microservices in one environment at one time.

    "Remaining" is everything not yet migrated, so ``NOT_MIGRATED`` assets
    count alongside ``OUTSTANDING`` ones.
    """

    timestamp: datetime
    spa_remaining: int
    ms_remaining: int
    spa_total: int
    ms_total: int

    @property
    def remaining(self) -> int:
        return self.spa_remaining + self.ms_remaining


@dataclass
class EnvironmentProgress:
    """Burndown progress of one environment, split by asset kind."""

    environment: Environment
    target: date | None = None
    current_spa: int = 0
    current_ms: int = 0
    total_spa: int = 0
    total_ms: int = 0
    spa_progress: float = 0.0
    ms_progress: float = 0.0
    overall_progress: float = 0.0
    days_to_target: int | None = None
    trend: str = "stable"
    projected_completion: datetime | None = None
    status: str = "at_risk"
    spa_status: str = "on_track"
    ms_status: str = "on_track"

    @property
    def on_track(self) -> bool:
        return self.status in ("on_track", "completed")
