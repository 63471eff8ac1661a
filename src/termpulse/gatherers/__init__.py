"""Backend gatherers, the resilient wrapper and the datasource router."""

from termpulse.gatherers.base import Gatherer, IdentifiableGatherer
from termpulse.gatherers.fake import FakeGatherer
from termpulse.gatherers.graphite import GraphiteGatherer
from termpulse.gatherers.influxdb import InfluxDBGatherer
from termpulse.gatherers.prometheus import PrometheusGatherer
from termpulse.gatherers.resilient import GathererStats, ResilientGatherer
from termpulse.gatherers.router import DEFAULT_FACTORIES, DatasourceRouter

__all__ = [
    "DEFAULT_FACTORIES",
    "DatasourceRouter",
    "FakeGatherer",
    "Gatherer",
    "GathererStats",
    "GraphiteGatherer",
    "IdentifiableGatherer",
    "InfluxDBGatherer",
    "PrometheusGatherer",
    "ResilientGatherer",
]
