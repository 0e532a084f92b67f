#!/usr/bin/env python3
import asyncio
import json
import logging

import click
from geopy.point import Point

from carefinder.core.config import get_settings
from carefinder.core.errors import CareFinderError
from carefinder.core.geomath import validate_coordinates
from carefinder.core.log import configure_logging
from carefinder.core.models import InstitutionType, OwnershipType
from carefinder.export import export_csv
from carefinder.search.filters import ProviderFilter
from carefinder.search.orchestrator import SearchRequest, build_orchestrator
from carefinder.search.store import PostgresProviderStore

logger = logging.getLogger(__name__)


def parse_point(value):
    """'lat,lon' (or any format geopy understands) -> (lat, lon)."""
    try:
        point = Point(value)
    except ValueError as e:
        raise click.BadParameter(f"cannot parse point {value!r}: {e}")
    return point.latitude, point.longitude


def emit(payload):
    click.echo(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def run(coro):
    try:
        return asyncio.run(coro)
    except CareFinderError as e:
        raise click.ClickException(f"{type(e).__name__}: {e}")


# -----------------------------
# Async runners
# -----------------------------
async def run_search(settings, request, scope, csv_path):
    orchestrator = await build_orchestrator(settings)
    try:
        result = await orchestrator.search(request, scope=scope)
    finally:
        await orchestrator.aclose()
    if csv_path:
        export_csv(result.providers, csv_path, result.distances)
        logger.info("Wrote %d providers to %s", result.total_results, csv_path)
    return result.to_dict()


async def run_geocode(settings, address):
    orchestrator = await build_orchestrator(settings)
    try:
        result = await orchestrator.geocode_address(address)
    finally:
        await orchestrator.aclose()
    return {
        "latitude": result.latitude,
        "longitude": result.longitude,
        "formattedAddress": result.formatted_address,
        "country": result.country,
        "placeId": result.place_id,
    }


async def run_reverse(settings, latitude, longitude):
    orchestrator = await build_orchestrator(settings)
    try:
        result = await orchestrator.reverse_geocode(latitude, longitude)
    finally:
        await orchestrator.aclose()
    return {"country": result.country, "formattedAddress": result.formatted_address, "placeId": result.place_id}


async def run_filter(settings, criteria, scope, csv_path):
    store = await PostgresProviderStore.connect(settings.database_url)
    try:
        providers = await store.find(criteria, scope=scope)
    finally:
        await store.close()
    if csv_path:
        export_csv(providers, csv_path)
    return {"providers": [p.to_document() for p in providers], "metadata": {"totalResults": len(providers)}}


# -----------------------------
# CLI entry point
# -----------------------------
@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL from the environment")
@click.pass_context
def main(ctx, log_level):
    """Find healthcare providers across OpenStreetMap, Foursquare and Google Places."""
    settings = get_settings()
    configure_logging(log_level or settings.log_level)
    ctx.obj = settings


@main.command()
@click.option("--lat", type=float, help="Latitude of the search centre")
@click.option("--lon", type=float, help="Longitude of the search centre")
@click.option("--point", "point", help='Search centre as "lat,lon"')
@click.option("--address", help="Address to geocode and search around")
@click.option("--name", help="Provider name to search for")
@click.option("--scope", default=None, help="Result scope (defaults to DEFAULT_SCOPE)")
@click.option("--radius", type=float, default=None, help="Search radius in km")
@click.option("--csv", "csv_path", type=click.Path(dir_okay=False), help="Also write providers to this CSV file")
@click.pass_obj
def search(settings, lat, lon, point, address, name, scope, radius, csv_path):
    """Search by coordinates, address or name."""
    if point:
        if lat is not None or lon is not None:
            raise click.UsageError("use either --point or --lat/--lon")
        lat, lon = parse_point(point)
    if radius is not None:
        settings = settings.model_copy(update={"search_radius_km": radius})
    request = SearchRequest(latitude=lat, longitude=lon, address=address, name=name)
    emit(run(run_search(settings, request, scope or settings.default_scope, csv_path)))


@main.command()
@click.argument("address")
@click.pass_obj
def geocode(settings, address):
    """Forward-geocode ADDRESS."""
    emit(run(run_geocode(settings, address)))


@main.command()
@click.argument("latitude", type=float)
@click.argument("longitude", type=float)
@click.pass_obj
def reverse(settings, latitude, longitude):
    """Reverse-geocode LATITUDE LONGITUDE to a country and address."""
    emit(run(run_reverse(settings, latitude, longitude)))


@main.command(name="filter")
@click.option("--keyword", help="Case-insensitive regex over name, city, country and specialties")
@click.option("--type", "institution_type", type=click.Choice([t.value for t in InstitutionType]))
@click.option("--ownership", type=click.Choice([o.value for o in OwnershipType]))
@click.option("--specialty")
@click.option("--language")
@click.option("--emergency/--no-emergency", default=None)
@click.option("--open-now", is_flag=True, default=False)
@click.option("--near", help='User location as "lat,lon"')
@click.option("--max-distance", type=float, help="Maximum distance from --near in km (up to 10)")
@click.option("--scope", default=None)
@click.option("--csv", "csv_path", type=click.Path(dir_okay=False))
@click.pass_obj
def filter_providers(settings, keyword, institution_type, ownership, specialty, language, emergency,
                     open_now, near, max_distance, scope, csv_path):
    """Filter providers persisted by earlier searches."""
    if not settings.database_url:
        raise click.UsageError("filter reads persisted providers and needs DATABASE_URL")
    user_location = None
    if near:
        try:
            user_location = validate_coordinates(*parse_point(near))
        except CareFinderError as e:
            raise click.BadParameter(str(e), param_hint="--near")
    criteria = ProviderFilter(
        keyword=keyword,
        institution_type=InstitutionType(institution_type) if institution_type else None,
        ownership_type=OwnershipType(ownership) if ownership else None,
        specialty=specialty,
        language=language,
        emergency=emergency,
        open_now=open_now,
        user_location=user_location,
        max_distance_km=max_distance,
    )
    emit(run(run_filter(settings, criteria, scope, csv_path)))


if __name__ == "__main__":
    main()
