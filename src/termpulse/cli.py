"""termpulse CLI.

Usage:
    termpulse run -q "CPU=prom:avg(rate(cpu[5m]))"     # Refresh widgets until Ctrl-C
    termpulse run -q "Load=fake:load" --once            # One refresh pass
    termpulse check --expr up                            # Probe every datasource
    termpulse stats -q "Load=fake:load"                  # One pass, then print counters
"""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

import click

from termpulse.config import TermpulseConfig, load_config
from termpulse.engine import Engine, build_engine
from termpulse.model import Query
from termpulse.resilience import ConfigurationError
from termpulse.sync.app import App
from termpulse.sync.dashboard import Dashboard
from termpulse.sync.render import LogRenderer
from termpulse.sync.widgets import SinglestatWidget


class CLIContext:
    """Context object passed to CLI commands."""

    def __init__(self, config_path: str | None = None, verbose: bool = False):
        self.verbose = verbose
        self.config_path = config_path
        self._config: TermpulseConfig | None = None

    @property
    def config(self) -> TermpulseConfig:
        """Lazy-load configuration."""
        if self._config is None:
            path = Path(self.config_path) if self.config_path else None
            try:
                self._config = load_config(path)
            except ConfigurationError as e:
                raise click.ClickException(f"Invalid configuration: {e}") from e
        return self._config

    def build_engine(self) -> Engine:
        try:
            return build_engine(self.config)
        except ConfigurationError as e:
            raise click.ClickException(f"Invalid configuration: {e}") from e


pass_context = click.make_pass_decorator(CLIContext)


def parse_widget_query(value: str) -> tuple[str, Query]:
    """Parse ``TITLE=DATASOURCE:EXPRESSION``.

    Raises:
        click.BadParameter: If the value is malformed.
    """
    title, sep, rest = value.partition("=")
    datasource_id, sep2, expression = rest.partition(":")
    if not sep or not sep2 or not title or not datasource_id or not expression:
        raise click.BadParameter(
            f"expected TITLE=DATASOURCE:EXPRESSION, got {value!r}", param_hint="--query"
        )
    return title.strip(), Query(expression=expression.strip(), datasource_id=datasource_id.strip())


def build_dashboard(engine: Engine, values: tuple[str, ...]) -> Dashboard:
    widgets = []
    for value in values:
        title, query = parse_widget_query(value)
        widgets.append(
            SinglestatWidget(title, engine.controller, query, LogRenderer(title))
        )
    return Dashboard(widgets, engine.config.dashboard)


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.option(
    "-c", "--config",
    type=click.Path(exists=True),
    help="Path to config file",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable verbose output",
)
@click.version_option(version="0.1.0", prog_name="termpulse")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """termpulse - periodic metric dashboards in the terminal.

    Queries Prometheus, Graphite, InfluxDB or synthetic datasources on a
    timer and prints widget values.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = CLIContext(config_path=config, verbose=verbose)


# =============================================================================
# Run Command
# =============================================================================


@cli.command()
@click.option(
    "-q", "--query", "queries",
    multiple=True,
    required=True,
    help="Widget as TITLE=DATASOURCE:EXPRESSION (repeatable)",
)
@click.option("--once", is_flag=True, help="Run a single refresh pass and exit")
@click.option("--interval", type=float, help="Refresh interval in seconds")
@click.option("--push", "pushgateway", help="Pushgateway URL for engine metrics")
@pass_context
def run(
    ctx: CLIContext,
    queries: tuple[str, ...],
    once: bool,
    interval: float | None,
    pushgateway: str | None,
) -> None:
    """Refresh widgets on a timer until interrupted."""
    if interval is not None:
        ctx.config.app.refresh_interval = interval

    async def _run() -> None:
        async with ctx.build_engine() as engine:
            dashboard = build_dashboard(engine, queries)
            app = App(dashboard, engine.config.app)
            await app.run(max_iterations=1 if once else None)
            if pushgateway:
                engine.update_telemetry().push(pushgateway)

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        click.echo("Stopped")


# =============================================================================
# Check Command
# =============================================================================


@cli.command()
@click.option("--expr", default="up", show_default=True, help="Expression to probe with")
@pass_context
def check(ctx: CLIContext, expr: str) -> None:
    """Query every configured datasource once and report its health."""

    async def _check() -> int:
        failures = 0
        now = datetime.now(timezone.utc)
        async with ctx.build_engine() as engine:
            ids = engine.router.datasource_ids()
            if not ids:
                click.echo("No datasources configured")
                return 0
            for ds_id in ids:
                try:
                    point = await engine.controller.get_single_metric(
                        Query(expression=expr, datasource_id=ds_id), now
                    )
                    click.secho(f"  ✓ {ds_id}: {point.value:g}", fg="green")
                except Exception as e:
                    failures += 1
                    click.secho(f"  ✗ {ds_id}: {e}", fg="red")
        return failures

    failures = asyncio.run(_check())
    if failures:
        sys.exit(1)


# =============================================================================
# Stats Command
# =============================================================================


@cli.command()
@click.option(
    "-q", "--query", "queries",
    multiple=True,
    required=True,
    help="Widget as TITLE=DATASOURCE:EXPRESSION (repeatable)",
)
@click.option("--passes", default=1, show_default=True, help="Refresh passes to run first")
@pass_context
def stats(ctx: CLIContext, queries: tuple[str, ...], passes: int) -> None:
    """Run refresh passes, then print engine counters in Prometheus format."""

    async def _stats() -> str:
        async with ctx.build_engine() as engine:
            dashboard = build_dashboard(engine, queries)
            app = App(dashboard, engine.config.app)
            for _ in range(passes):
                await app.sync_once()
            return engine.update_telemetry().render()

    click.echo(asyncio.run(_stats()), nl=False)


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
