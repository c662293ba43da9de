"""Data sources delivering raw asset records to the view-state store."""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import urlsplit, urlunsplit

import requests
from dateutil.parser import parse as dt_parse

from migration_dashboard.core.data_models import ENVIRONMENT_ORDER, RawAssetSet
from migration_dashboard.core.errors import FetchFailure

logger = logging.getLogger(__name__)

_MAX_RETRIES = 4
_BACKOFF_BASE = 1.0  # seconds


class AssetSource(Protocol):
    """Anything that can deliver a :class:`RawAssetSet`."""

    def fetch_raw_asset_data(self) -> RawAssetSet:
        """Return the current raw records, raising :class:`FetchFailure` on error."""
        ...


class HttpAssetSource:
    """Fetch raw asset data from a JSON HTTP endpoint using ``requests``."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 30,
        department: str | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._url = apply_department_to_url(url, department)
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def url(self) -> str:
        return self._url

    def fetch_raw_asset_data(self) -> RawAssetSet:
        """GET the endpoint and parse its payload.

        Raises:
            FetchFailure: On network errors, non-2xx responses (after
                retrying 429s) or a body that is not valid JSON.
        """
        logger.info("Fetching asset data from %s", self._url)
        resp = self._get_with_retry()
        try:
            payload = resp.json()
        except ValueError as exc:
            raise FetchFailure(f"Invalid JSON from {self._url}: {exc}") from exc
        data = parse_payload(payload)
        logger.info("Fetched %d raw records from %s", len(data.records), self._url)
        return data

    def _get_with_retry(self) -> requests.Response:
        """Execute the GET with exponential backoff on 429."""
        for attempt in range(_MAX_RETRIES):
            try:
                resp = self._session.get(self._url, timeout=self._timeout)
            except requests.RequestException as exc:
                logger.error("Request to %s failed: %s", self._url, exc)
                raise FetchFailure(str(exc)) from exc

            if resp.status_code == 429 and attempt < _MAX_RETRIES - 1:
                delay = _BACKOFF_BASE * (2**attempt)
                logger.warning("Rate limited, retrying in %.1fs", delay)
                time.sleep(delay)
                continue
            if not resp.ok:
                raise FetchFailure(f"HTTP {resp.status_code} from {self._url}")
            return resp

        raise FetchFailure(f"Gave up on {self._url} after {_MAX_RETRIES} attempts")


class JsonFileAssetSource:
    """Read raw asset data from a local JSON file."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    def fetch_raw_asset_data(self) -> RawAssetSet:
        logger.info("Reading asset data from %s", self._path)
        try:
            with open(self._path, encoding="utf-8") as fh:
                payload = json.load(fh)
        except (json.JSONDecodeError, OSError) as exc:
            raise FetchFailure(f"Failed to read {self._path}: {exc}") from exc
        return parse_payload(payload)


def source_from_config(location: str, *, timeout: float = 30, department: str | None = None) -> AssetSource:
    """Build an HTTP source for URLs and a file source for anything else."""
    if urlsplit(location).scheme in ("http", "https"):
        return HttpAssetSource(location, timeout=timeout, department=department)
    return JsonFileAssetSource(Path(location))


def parse_payload(payload: Any) -> RawAssetSet:
    """Extract records from either supported payload shape.

    ``{"assets": [...]}`` lists records directly. The legacy dashboard shape
    ``{"spaData": [...], "msData": [...], "lastUpdate": ...}`` carries an
    ``environments`` flag map per record, which is expanded into one record
    per environment.

    Raises:
        FetchFailure: If *payload* matches neither shape.
    """
    if not isinstance(payload, dict):
        raise FetchFailure("Unexpected payload: expected a JSON object")

    last_update = _parse_dt(payload.get("lastUpdate") or payload.get("last_update"))

    if isinstance(payload.get("assets"), list):
        return RawAssetSet(records=list(payload["assets"]), last_update=last_update)

    spa = payload.get("spaData")
    ms = payload.get("msData")
    if isinstance(spa, list) or isinstance(ms, list):
        records: list[Any] = []
        for item in [*(spa or []), *(ms or [])]:
            records.extend(_expand_environments(item))
        return RawAssetSet(records=records, last_update=last_update)

    raise FetchFailure("Unexpected payload: no 'assets' or 'spaData'/'msData' lists")


def apply_department_to_url(url: str, department: str | None) -> str:
    """Insert *department* as a path segment before the last one.

    ``https://host/api/data.json`` with department ``retail`` becomes
    ``https://host/api/retail/data.json``. Relative paths are handled the
    same way.
    """
    if not url or not department:
        return url
    parts = urlsplit(url)
    segments = [s for s in parts.path.split("/") if s]
    if segments:
        last = segments.pop()
        segments.extend([department, last])
    else:
        segments.append(department)
    path = "/" + "/".join(segments)
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, parts.fragment))


# -- helpers ------------------------------------------------------------------


def _expand_environments(item: Any) -> list[Any]:
    if not isinstance(item, dict):
        return [item]
    envs = item.get("environments")
    if "environment" in item or "env" in item or not isinstance(envs, dict):
        return [dict(item, status=item.get("status", "MIGRATED"))]

    not_migrated = str(item.get("status", "")).upper() == "NOT_MIGRATED"
    expanded = []
    for env in ENVIRONMENT_ORDER:
        record = {k: v for k, v in item.items() if k != "environments"}
        record["environment"] = env.value
        if not_migrated:
            record["status"] = "NOT_MIGRATED"
        else:
            record["status"] = "MIGRATED" if envs.get(env.value) else "OUTSTANDING"
        expanded.append(record)
    return expanded


def _parse_dt(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return dt_parse(str(value))
    except (ValueError, TypeError, OverflowError):
        return None
