"""Classify raw dashboard records into SPA or microservice assets."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from migration_dashboard.core.data_models import (
    Asset,
    AssetKind,
    ClassificationResult,
    Environment,
    MicroserviceAsset,
    MigrationStatus,
    RecordDiagnostic,
    SpaAsset,
)
from migration_dashboard.core.errors import MalformedRecord

logger = logging.getLogger(__name__)

# Any of these marks a record as an SPA.
_HOMEPAGE_FIELDS = ("homepage", "homepageUrl", "homepage_url")

_TEAM_FIELDS = ("teamName", "subgroupName")
_ENV_FIELDS = ("environment", "env")


def classify(record: Mapping[str, Any], index: int = 0) -> Asset:
    """Normalise one raw record into an :class:`Asset`.

    *index* is the record's position in its source collection and is only
    used to identify the record in a :class:`MalformedRecord` error.

    Raises:
        MalformedRecord: If a required field is missing or holds an
            unrecognised status / environment value.
    """
    team = _first(record, _TEAM_FIELDS, index, name="teamName")
    status_raw = _required(record, "status", index)
    project_name = _required(record, "projectName", index)
    project_link = _required(record, "projectLink", index)
    env_raw = _first(record, _ENV_FIELDS, index, name="environment")

    status = _parse_status(status_raw, index)
    environment = _parse_environment(env_raw, index)

    homepage = next(
        (record[f] for f in _HOMEPAGE_FIELDS if record.get(f) is not None), None
    )
    kind = AssetKind.SPA if homepage is not None else AssetKind.MICROSERVICE
    asset_id = str(record.get("id") or f"{kind.value}:{team}:{project_name}:{environment.value}")

    if kind is AssetKind.SPA:
        return SpaAsset(
            id=asset_id,
            team_name=str(team),
            environment=environment,
            status=status,
            project_name=str(project_name),
            project_link=str(project_link),
            homepage=str(homepage),
        )
    return MicroserviceAsset(
        id=asset_id,
        team_name=str(team),
        environment=environment,
        status=status,
        project_name=str(project_name),
        project_link=str(project_link),
        otel=_optional_str(record.get("otel")),
        mssdk=_optional_str(record.get("mssdk")),
    )


def classify_records(records: Iterable[Mapping[str, Any]]) -> ClassificationResult:
    """Classify a batch, excluding malformed records.

    Every excluded record is listed in ``diagnostics`` with its index and
    the offending field; the remaining records are still classified.
    """
    result = ClassificationResult()
    for index, record in enumerate(records):
        if not isinstance(record, Mapping):
            result.diagnostics.append(
                RecordDiagnostic(index=index, field="", message="record is not an object")
            )
            continue
        try:
            result.assets.append(classify(record, index))
        except MalformedRecord as exc:
            logger.warning("Skipping record %d: %s", index, exc.message)
            result.diagnostics.append(
                RecordDiagnostic(index=exc.index, field=exc.field, message=exc.message)
            )

    logger.debug(
        "Classified %d records (%d excluded)",
        len(result.assets), len(result.diagnostics),
    )
    return result


# -- helpers ------------------------------------------------------------------


def _required(record: Mapping[str, Any], key: str, index: int) -> Any:
    value = record.get(key)
    if value is None or value == "":
        raise MalformedRecord(key, index)
    return value


def _first(
    record: Mapping[str, Any], keys: tuple[str, ...], index: int, *, name: str
) -> Any:
    for key in keys:
        value = record.get(key)
        if value is not None and value != "":
            return value
    raise MalformedRecord(name, index)


def _parse_status(value: Any, index: int) -> MigrationStatus:
    if isinstance(value, MigrationStatus):
        return value
    normalised = str(value).strip().upper().replace("-", "_").replace(" ", "_")
    try:
        return MigrationStatus(normalised)
    except ValueError:
        raise MalformedRecord(
            "status", index, f"unrecognised status '{value}'"
        ) from None


def _parse_environment(value: Any, index: int) -> Environment:
    if isinstance(value, Environment):
        return value
    try:
        return Environment(str(value).strip().lower())
    except ValueError:
        raise MalformedRecord(
            "environment", index, f"unrecognised environment '{value}'"
        ) from None


def _optional_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)
