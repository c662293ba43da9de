"""Exception types raised by the migration dashboard core."""

from __future__ import annotations


class MigrationDashboardError(Exception):
    """Base class for every error raised by this package."""


class MalformedRecord(MigrationDashboardError):
    """A raw record could not be classified into an asset."""

    def __init__(self, field: str, index: int, message: str | None = None) -> None:
        self.field = field
        self.index = index
        self.message = message or f"missing required field '{field}'"
        super().__init__(f"record {index}: {self.message}")


class InvalidFilter(MigrationDashboardError):
    """An environment filter value is not a known environment or ``all``."""

    def __init__(self, value: object) -> None:
        self.value = value
        super().__init__(f"invalid environment filter: {value!r}")


class UnknownView(MigrationDashboardError):
    """A view key is not one of the recognised dashboard views."""

    def __init__(self, view: object) -> None:
        self.view = view
        super().__init__(f"unknown view: {view!r}")


class FetchFailure(MigrationDashboardError):
    """The data source failed to deliver raw asset data.

    ``message`` is the source-provided text and is surfaced to users verbatim.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)
