"""Typer CLI root application."""

import typer

from medsales_geo.core.config import get_settings
from medsales_geo.core.logging import setup_logging

app = typer.Typer(name="medsales-geo", help="Multi-provider geocoding for healthcare-provider addresses")


@app.callback()
def _main_callback() -> None:
    """Initialize logging for all CLI commands."""
    settings = get_settings()
    setup_logging(settings.log_level, log_dir=settings.log_dir, json_logs=settings.log_json)


def _register_subcommands() -> None:
    """Register all CLI subcommand groups."""
    from medsales_geo.cli.geocode_cmd import geocode_app

    app.add_typer(geocode_app, name="geocode", help="Geocoding commands")


_register_subcommands()
