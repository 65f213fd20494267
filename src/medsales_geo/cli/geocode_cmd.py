"""Geocoding CLI commands: batch runs, provider listing and address normalization."""

import asyncio
import csv
from pathlib import Path

import typer

from medsales_geo.lib.geocoder.address import Address
from medsales_geo.schemas.geocoding import BatchReport, JobPriority

geocode_app = typer.Typer()

_CSV_COLUMNS = ("address_id", "street", "city", "state", "postal_code")


def read_addresses(path: Path) -> list[Address]:
    """Read ``address_id,street,city,state,postal_code`` rows from a CSV file.

    An optional ``street2`` column is carried into the second street line.

    Raises:
        ValueError: If a required column is missing.
    """
    with path.open(newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        missing = [c for c in _CSV_COLUMNS if c not in (reader.fieldnames or [])]
        if missing:
            msg = f"Missing required column(s): {', '.join(missing)}"
            raise ValueError(msg)
        return [
            Address(
                address_id=row["address_id"].strip(),
                street=row["street"] or "",
                street2=row.get("street2") or "",
                city=row["city"] or "",
                region=row["state"] or "",
                postal_code=row["postal_code"] or "",
            )
            for row in reader
        ]


@geocode_app.command("batch")
def batch_geocode(
    input_csv: Path = typer.Argument(..., exists=True, dir_okay=False, help="CSV of addresses"),  # noqa: B008
    priority: JobPriority = typer.Option(JobPriority.NORMAL, "--priority", help="Queue priority"),  # noqa: B008
    source_tag: str | None = typer.Option(None, "--source-tag", help="Label recorded on the job"),  # noqa: B008
    output: Path | None = typer.Option(None, "--output", help="Write outcomes and dead letters as JSON"),  # noqa: B008
) -> None:
    """Geocode every address in a CSV file through the configured providers."""
    try:
        addresses = read_addresses(input_csv)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    report = asyncio.run(_batch_geocode(addresses, priority, source_tag))
    if report is None:
        raise typer.Exit(code=1)

    status = report.job
    counts = status.counts
    typer.echo(f"Geocoding job {status.job_id}: {status.status}")
    typer.echo(f"  Total addresses: {counts.total}")
    typer.echo(f"  Unique:          {status.unique_addresses}")
    typer.echo(f"  Completed:       {counts.completed}")
    typer.echo(f"  Cache hits:      {counts.cache_hits}")
    typer.echo(f"  Failed:          {counts.failed}")
    for provider, calls in sorted(counts.provider_calls.items()):
        typer.echo(f"  Calls to {provider}: {calls}")

    if output is not None:
        output.write_text(report.model_dump_json(indent=2), encoding="utf-8")
        typer.echo(f"Outcomes written to {output}")


async def _batch_geocode(
    addresses: list[Address], priority: JobPriority, source_tag: str | None
) -> BatchReport | None:
    """Async implementation of batch geocoding."""
    from medsales_geo.core.config import ConfigurationError, GeocodingConfig, get_settings
    from medsales_geo.core.database import create_tables, dispose_engine, get_session_factory, init_engine
    from medsales_geo.lib.geocoder import InMemoryGeocodeCache, SqlGeocodeCache, get_configured_providers
    from medsales_geo.services.batch_service import GeocodingCoordinator
    from medsales_geo.services.location_store import InMemoryLocationStore, SqlLocationStore

    settings = get_settings()
    providers = get_configured_providers(settings)
    try:
        config = GeocodingConfig.from_settings(settings, [p.provider_name for p in providers])
    except ConfigurationError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        return None

    if settings.database_url:
        engine = init_engine(settings.database_url)
        await create_tables(engine)
        factory = get_session_factory()
        cache = SqlGeocodeCache(factory)
        store = SqlLocationStore(factory)
    else:
        cache = InMemoryGeocodeCache(maxsize=settings.geocoder_cache_maxsize)
        store = InMemoryLocationStore()

    try:
        async with GeocodingCoordinator(providers, cache, config, store=store) as coordinator:
            job_id = await coordinator.submit(addresses, priority=priority, source_tag=source_tag)
            typer.echo(f"Geocoding job created: {job_id} ({len(addresses)} addresses)")
            status = await coordinator.wait(job_id)
            failures = [record.to_response() for record in coordinator.list_failures(job_id)]
            return BatchReport(job=status, dead_letters=failures)
    finally:
        await dispose_engine()


@geocode_app.command("providers")
def list_providers() -> None:
    """List registered geocoding providers and whether they are configured."""
    from medsales_geo.core.config import get_settings
    from medsales_geo.lib.geocoder import get_all_provider_metadata

    settings = get_settings()
    order = settings.geocoder_fallback_order_list
    for meta in get_all_provider_metadata(settings):
        position = order.index(meta.name) + 1 if meta.name in order else "-"
        state = "configured" if meta.is_configured else "not configured"
        key = "api key" if meta.requires_api_key else "no key"
        typer.echo(
            f"{meta.name:<10} {state:<15} {key:<7} "
            f"rate={meta.rate_per_second}/s burst={meta.burst_capacity} order={position}"
        )


@geocode_app.command("normalize")
def normalize_addresses(
    addresses: list[str] = typer.Argument(..., help="One-line addresses, e.g. '123 N Main St, Springfield, IL 62701'"),  # noqa: B008
) -> None:
    """Print the canonical form and hash of each address."""
    from medsales_geo.lib.geocoder import normalize, parse_freeform_address

    for i, line in enumerate(addresses):
        normalized = normalize(parse_freeform_address(str(i), line))
        suffix = "  [non-geocodable]" if normalized.non_geocodable else ""
        typer.echo(f"{normalized.canonical}{suffix}")
        typer.echo(f"  {normalized.address_hash}")
