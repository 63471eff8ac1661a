"""termpulse - a metric gathering engine for terminal dashboards."""

from termpulse.cache import MetricCache, make_cache_key
from termpulse.config import TermpulseConfig, load_config
from termpulse.controller import MetricController
from termpulse.engine import Engine, build_engine
from termpulse.executor import ParallelQueryExecutor, QueryExecutor, WidgetQuery, WidgetResult
from termpulse.model import Datasource, MetricPoint, MetricSeries, Query, TimeRange
from termpulse.resilience import (
    BackendError,
    ConfigurationError,
    DatasourceNotFoundError,
    RateLimitTimeoutError,
    RetriesExhaustedError,
    TermpulseError,
)

__version__ = "0.1.0"

__all__ = [
    "BackendError",
    "ConfigurationError",
    "Datasource",
    "DatasourceNotFoundError",
    "Engine",
    "MetricCache",
    "MetricController",
    "MetricPoint",
    "MetricSeries",
    "ParallelQueryExecutor",
    "Query",
    "QueryExecutor",
    "RateLimitTimeoutError",
    "RetriesExhaustedError",
    "TermpulseConfig",
    "TermpulseError",
    "TimeRange",
    "WidgetQuery",
    "WidgetResult",
    "build_engine",
    "load_config",
    "make_cache_key",
]
