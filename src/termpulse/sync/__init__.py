"""The process -> dashboard -> widget sync cascade."""

from termpulse.sync.app import App
from termpulse.sync.base import Syncer, SyncGuard, SyncRequest
from termpulse.sync.dashboard import Dashboard, WidgetDataMiddleware
from termpulse.sync.render import GaugeRenderer, GraphRenderer, LogRenderer, SinglestatRenderer
from termpulse.sync.widgets import (
    GaugeWidget,
    GraphWidget,
    SinglestatWidget,
    Threshold,
    Widget,
    color_for_value,
)

__all__ = [
    "App",
    "Dashboard",
    "GaugeRenderer",
    "GaugeWidget",
    "GraphRenderer",
    "GraphWidget",
    "LogRenderer",
    "SinglestatRenderer",
    "SinglestatWidget",
    "SyncGuard",
    "SyncRequest",
    "Syncer",
    "Threshold",
    "Widget",
    "WidgetDataMiddleware",
    "color_for_value",
]
