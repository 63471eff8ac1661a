"""termpulse configuration management.

Loads configuration from termpulse.toml with sensible defaults. Every
component receives its settings through one of these dataclasses; nothing
reads process-wide mutable state.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from termpulse.model import (
    Datasource,
    DatasourceKind,
    FakeDatasource,
    GraphiteDatasource,
    InfluxDBDatasource,
    PrometheusDatasource,
)
from termpulse.resilience import ConfigurationError

CONFIG_FILENAME = "termpulse.toml"


@dataclass
class TimeoutConfig:
    """Timeout bounds and retry budget for resilient gatherers."""

    min_timeout: float = 1.0
    default_timeout: float = 5.0
    max_timeout: float = 30.0
    max_attempts: int = 3
    single_backoff_step: float = 0.1
    range_backoff_step: float = 0.25  # Range queries are costlier


@dataclass
class CacheConfig:
    """Metric cache configuration."""

    enabled: bool = True
    max_size: int = 100
    max_age: float = 30.0
    sweep_interval: float = 30.0


@dataclass
class ExecutorConfig:
    """Query executor configuration."""

    query_timeout: float = 5.0
    max_concurrent_queries: int = 10
    max_attempts: int = 3
    backoff_unit: float = 0.1
    default_step: float = 15.0


@dataclass
class AppConfig:
    """Process level refresh loop configuration."""

    refresh_interval: float = 10.0
    sync_timeout: float = 8.0
    relative_time_range: float = 3600.0
    time_range_start: datetime | None = None  # Fixed optional time
    time_range_end: datetime | None = None  # Fixed optional time


@dataclass
class DashboardConfig:
    """Dashboard wave configuration."""

    widget_timeout: float = 3.0
    sync_variables: dict[str, Any] = field(default_factory=dict)
    static_variables: dict[str, Any] = field(default_factory=dict)
    override_variables: dict[str, Any] = field(default_factory=dict)


@dataclass
class TermpulseConfig:
    """Root configuration for termpulse."""

    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    app: AppConfig = field(default_factory=AppConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    datasources: list[Datasource] = field(default_factory=list)  # User declared
    aliases: dict[str, str] = field(default_factory=dict)


def load_config(config_path: Path | None = None) -> TermpulseConfig:
    """Load configuration from termpulse.toml.

    Args:
        config_path: Path to config file. If None, searches current directory
                     and parent directories for termpulse.toml.

    Returns:
        TermpulseConfig with values from file or defaults.

    Raises:
        ConfigurationError: If a datasource entry is invalid.
    """
    if config_path is None:
        config_path = _find_config_file()

    if config_path is None or not config_path.exists():
        return TermpulseConfig()

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    return _parse_config(data)


def _find_config_file() -> Path | None:
    """Search for termpulse.toml in current and parent directories."""
    current = Path.cwd()

    for directory in [current, *current.parents]:
        config_file = directory / CONFIG_FILENAME
        if config_file.exists():
            return config_file

    return None


def _parse_config(data: dict) -> TermpulseConfig:
    """Parse configuration dictionary into TermpulseConfig."""
    timeouts_data = data.get("timeouts", {})
    cache_data = data.get("cache", {})
    executor_data = data.get("executor", {})
    app_data = data.get("app", {})
    dashboard_data = data.get("dashboard", {})

    timeouts = TimeoutConfig(
        min_timeout=float(timeouts_data.get("min_timeout", 1.0)),
        default_timeout=float(timeouts_data.get("default_timeout", 5.0)),
        max_timeout=float(timeouts_data.get("max_timeout", 30.0)),
        max_attempts=int(timeouts_data.get("max_attempts", 3)),
        single_backoff_step=float(timeouts_data.get("single_backoff_step", 0.1)),
        range_backoff_step=float(timeouts_data.get("range_backoff_step", 0.25)),
    )

    cache = CacheConfig(
        enabled=bool(cache_data.get("enabled", True)),
        max_size=int(cache_data.get("max_size", 100)),
        max_age=float(cache_data.get("max_age", 30.0)),
        sweep_interval=float(cache_data.get("sweep_interval", 30.0)),
    )

    executor = ExecutorConfig(
        query_timeout=float(executor_data.get("query_timeout", 5.0)),
        max_concurrent_queries=int(executor_data.get("max_concurrent_queries", 10)),
        max_attempts=int(executor_data.get("max_attempts", 3)),
        backoff_unit=float(executor_data.get("backoff_unit", 0.1)),
        default_step=float(executor_data.get("default_step", 15.0)),
    )

    # TOML has native datetimes, so fixed ranges come through as-is
    app = AppConfig(
        refresh_interval=float(app_data.get("refresh_interval", 10.0)),
        sync_timeout=float(app_data.get("sync_timeout", 8.0)),
        relative_time_range=float(app_data.get("relative_time_range", 3600.0)),
        time_range_start=app_data.get("time_range_start"),
        time_range_end=app_data.get("time_range_end"),
    )

    dashboard = DashboardConfig(
        widget_timeout=float(dashboard_data.get("widget_timeout", 3.0)),
        sync_variables=dict(dashboard_data.get("sync_variables", {})),
        static_variables=dict(dashboard_data.get("static_variables", {})),
        override_variables=dict(dashboard_data.get("override_variables", {})),
    )

    datasources = [parse_datasource(entry) for entry in data.get("datasources", [])]

    aliases = data.get("aliases", {})
    if not all(isinstance(k, str) and isinstance(v, str) for k, v in aliases.items()):
        raise ConfigurationError("aliases must map datasource IDs to datasource IDs")

    return TermpulseConfig(
        timeouts=timeouts,
        cache=cache,
        executor=executor,
        app=app,
        dashboard=dashboard,
        datasources=datasources,
        aliases=dict(aliases),
    )


def parse_datasource(entry: dict[str, Any]) -> Datasource:
    """Parse one [[datasources]] table.

    Args:
        entry: Table with an ``id``, a ``kind`` and kind specific keys.

    Returns:
        Datasource with the matching kind block set.

    Raises:
        ConfigurationError: If the ID is missing or the kind is unsupported.
    """
    ds_id = entry.get("id")
    if not ds_id:
        raise ConfigurationError("datasource entry is missing an id")

    raw_kind = entry.get("kind", "")
    try:
        kind = DatasourceKind(raw_kind)
    except ValueError:
        raise ConfigurationError(
            f"datasource {ds_id!r} has unsupported kind {raw_kind!r}"
        ) from None

    if kind == DatasourceKind.PROMETHEUS:
        return Datasource(id=ds_id, prometheus=PrometheusDatasource(address=entry.get("address", "")))
    if kind == DatasourceKind.GRAPHITE:
        return Datasource(id=ds_id, graphite=GraphiteDatasource(address=entry.get("address", "")))
    if kind == DatasourceKind.INFLUXDB:
        return Datasource(
            id=ds_id,
            influxdb=InfluxDBDatasource(
                address=entry.get("address", ""),
                database=entry.get("database", ""),
                username=entry.get("username", ""),
                password=entry.get("password", ""),
                insecure=bool(entry.get("insecure", False)),
            ),
        )
    return Datasource(id=ds_id, fake=FakeDatasource())
