"""Rendering delegates widgets push their values to.

Terminal drawing lives outside the engine; widgets only depend on these
protocols. LogRenderer is a line based implementation used by the CLI.
"""

from __future__ import annotations

from typing import Protocol

import click

from termpulse.model import MetricSeries


class SinglestatRenderer(Protocol):
    def sync_text(self, text: str) -> None: ...

    def set_color(self, color: str) -> None: ...


class GaugeRenderer(Protocol):
    def sync_value(self, is_percent: bool, value: float) -> None: ...

    def set_color(self, color: str) -> None: ...


class GraphRenderer(Protocol):
    def sync_series(self, series: list[MetricSeries]) -> None: ...


class LogRenderer:
    """Echoes widget updates as plain lines."""

    def __init__(self, title: str):
        self.title = title
        self.color: str | None = None
        self.last_line: str | None = None

    def _emit(self, line: str) -> None:
        self.last_line = line
        # Hex colors from thresholds have no terminal name; print them plain
        click.secho(line, fg=self.color if self.color in _CLICK_COLORS else None)

    def sync_text(self, text: str) -> None:
        self._emit(f"{self.title}: {text}")

    def sync_value(self, is_percent: bool, value: float) -> None:
        suffix = "%" if is_percent else ""
        self._emit(f"{self.title}: {value:.2f}{suffix}")

    def sync_series(self, series: list[MetricSeries]) -> None:
        parts = []
        for s in series:
            latest = s.latest
            parts.append(f"{s.id}={latest.value:.2f}" if latest else f"{s.id}=n/a")
        self._emit(f"{self.title}: {len(series)} series [{', '.join(parts)}]")

    def set_color(self, color: str) -> None:
        self.color = color


_CLICK_COLORS = {
    "black", "red", "green", "yellow", "blue", "magenta", "cyan", "white",
    "bright_black", "bright_red", "bright_green", "bright_yellow",
    "bright_blue", "bright_magenta", "bright_cyan", "bright_white",
}
