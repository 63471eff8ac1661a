"""Core data model shared by gatherers, the cache and widgets.

Series, points and queries are plain dataclasses. Datasources carry exactly
one backend block, mirroring the configuration file layout.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from termpulse.resilience import ConfigurationError


@dataclass(frozen=True)
class Query:
    """A metric query addressed to one datasource."""

    expression: str
    datasource_id: str


@dataclass(frozen=True)
class MetricPoint:
    """A measured value at a point in time."""

    value: float
    timestamp: datetime


@dataclass
class MetricSeries:
    """A group of points identified by an ID and a set of labels.

    Points are ordered by ascending timestamp as returned by the backend.
    """

    id: str
    labels: dict[str, str] = field(default_factory=dict)
    points: list[MetricPoint] = field(default_factory=list)

    @property
    def latest(self) -> MetricPoint | None:
        """Get the most recent point, if any."""
        return self.points[-1] if self.points else None


@dataclass(frozen=True)
class TimeRange:
    """A closed time range. An instant is a range with start == end."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"time range start {self.start} is after end {self.end}")

    @classmethod
    def instant(cls, at: datetime) -> TimeRange:
        return cls(start=at, end=at)

    @property
    def duration(self) -> float:
        """Range length in seconds."""
        return (self.end - self.start).total_seconds()

    @property
    def is_instant(self) -> bool:
        return self.start == self.end


# =============================================================================
# Datasources
# =============================================================================


class DatasourceKind(Enum):
    """Supported backend kinds."""

    PROMETHEUS = "prometheus"
    GRAPHITE = "graphite"
    INFLUXDB = "influxdb"
    FAKE = "fake"


@dataclass(frozen=True)
class PrometheusDatasource:
    address: str


@dataclass(frozen=True)
class GraphiteDatasource:
    address: str


@dataclass(frozen=True)
class InfluxDBDatasource:
    address: str
    database: str = ""
    username: str = ""
    password: str = ""
    insecure: bool = False


@dataclass(frozen=True)
class FakeDatasource:
    pass


@dataclass(frozen=True)
class Datasource:
    """A configured backend endpoint identified by a string ID.

    Exactly one of the kind blocks must be set.
    """

    id: str
    prometheus: PrometheusDatasource | None = None
    graphite: GraphiteDatasource | None = None
    influxdb: InfluxDBDatasource | None = None
    fake: FakeDatasource | None = None

    @property
    def kind(self) -> DatasourceKind:
        """Get the backend kind of this datasource.

        Raises:
            ConfigurationError: If zero or more than one kind is set.
        """
        kinds = [
            kind
            for kind, block in (
                (DatasourceKind.PROMETHEUS, self.prometheus),
                (DatasourceKind.GRAPHITE, self.graphite),
                (DatasourceKind.INFLUXDB, self.influxdb),
                (DatasourceKind.FAKE, self.fake),
            )
            if block is not None
        ]
        if len(kinds) != 1:
            raise ConfigurationError(
                f"datasource {self.id!r} must declare exactly one kind, got {len(kinds)}"
            )
        return kinds[0]
