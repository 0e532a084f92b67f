"""Search orchestration.

A search walks ``IDLE -> VALIDATING -> RESOLVING -> FETCHING -> MERGING ->
RANKING -> PERSISTING -> DONE``; any step may end in ``FAILED``. Geocoding
failures escalate to the caller, adapter failures are contained and reported
in ``metadata.failedSources``.
"""
import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import httpx

from carefinder.core.cache import PLACES_NAME, MemoryCache, ResponseCache, SqliteCache
from carefinder.core.config import Settings
from carefinder.core.errors import CareFinderError, InvalidInput, UpstreamError
from carefinder.core.geomath import filter_by_distance, validate_coordinates
from carefinder.core.models import CanonicalProvider, Coordinates, RawProviderRecord
from carefinder.core.ratelimit import TokenBucket
from carefinder.discovery.base import AreaQuery, CachingSourceAdapter, NameQuery, Query, SourceAdapter
from carefinder.discovery.foursquare import FoursquareAdapter
from carefinder.discovery.google_places import GooglePlacesAdapter
from carefinder.discovery.overpass import OverpassAdapter
from carefinder.geocode.providers import (
    BaseGeocoder,
    CachingGeocoder,
    GeocodeResult,
    GoogleGeocodingClient,
    ReverseGeocodeResult,
    validate_address,
)
from carefinder.resolve.resolver import Resolver
from carefinder.search.store import MemoryProviderStore, PostgresProviderStore, ProviderStore

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_RADIUS_KM = 10
DEFAULT_SOURCE_TIMEOUT = 20


class SearchType(str, Enum):
    LOCATION = "location"
    ADDRESS = "address"
    NAME = "name"


class SearchState(str, Enum):
    IDLE = "IDLE"
    VALIDATING = "VALIDATING"
    RESOLVING = "RESOLVING"
    FETCHING = "FETCHING"
    MERGING = "MERGING"
    RANKING = "RANKING"
    PERSISTING = "PERSISTING"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass(frozen=True)
class SearchRequest:
    latitude: Any = None
    longitude: Any = None
    address: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SearchRequest":
        return cls(
            latitude=data.get("latitude", data.get("lat")),
            longitude=data.get("longitude", data.get("lon")),
            address=data.get("address"),
            name=data.get("name"),
        )

    def validate(self) -> SearchType:
        """Check that exactly one search mode is requested and it is well formed."""
        has_coordinates = self.latitude is not None or self.longitude is not None
        has_address = self.address is not None
        has_name = self.name is not None
        modes = sum((has_coordinates, has_address, has_name))
        if modes == 0:
            raise InvalidInput("Provide either coordinates, an address or a name")
        if modes > 1:
            raise InvalidInput("Provide only one of coordinates, address or name")

        if has_coordinates:
            if self.latitude is None or self.longitude is None:
                raise InvalidInput("Both latitude and longitude are required")
            validate_coordinates(self.latitude, self.longitude)
            return SearchType.LOCATION
        if has_address:
            validate_address(self.address)
            return SearchType.ADDRESS
        if not isinstance(self.name, str) or not self.name.strip():
            raise InvalidInput("Name cannot be empty")
        return SearchType.NAME


@dataclass
class SearchResult:
    providers: List[CanonicalProvider]
    search_type: SearchType
    search_location: Optional[Dict[str, Any]] = None
    failed_sources: List[str] = field(default_factory=list)
    states: List[SearchState] = field(default_factory=list)
    distances: Dict[str, float] = field(default_factory=dict)

    @property
    def total_results(self) -> int:
        return len(self.providers)

    def to_dict(self) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {
            "totalResults": self.total_results,
            "failedSources": list(self.failed_sources),
            "states": [s.value for s in self.states],
        }
        if self.search_location is not None:
            metadata["searchLocation"] = self.search_location
        providers = []
        for provider in self.providers:
            doc = provider.to_document()
            if provider.unique_id in self.distances:
                doc["distanceKm"] = self.distances[provider.unique_id]
            providers.append(doc)
        return {"providers": providers, "searchType": self.search_type.value, "metadata": metadata}


class _Run:
    """State trail of one search."""

    def __init__(self, scope: str):
        self.scope = scope
        self.states = [SearchState.IDLE]

    @property
    def state(self) -> SearchState:
        return self.states[-1]

    def advance(self, state: SearchState) -> None:
        logger.debug("search[%s] %s -> %s", self.scope, self.state.value, state.value)
        self.states.append(state)


class SearchOrchestrator:
    def __init__(
        self,
        geocoder: BaseGeocoder,
        area_adapters: Sequence[SourceAdapter],
        name_adapters: Sequence[SourceAdapter],
        store: Optional[ProviderStore] = None,
        resolver: Optional[Resolver] = None,
        search_radius_km: float = DEFAULT_SEARCH_RADIUS_KM,
        source_timeout: float = DEFAULT_SOURCE_TIMEOUT,
        fail_when_all_sources_fail: bool = False,
        closers: Optional[Sequence[Any]] = None,
    ):
        self.geocoder = geocoder
        self.area_adapters = list(area_adapters)
        self.name_adapters = list(name_adapters)
        self.store = store
        self.resolver = resolver or Resolver()
        self.search_radius_km = search_radius_km
        self.source_timeout = source_timeout
        self.fail_when_all_sources_fail = fail_when_all_sources_fail
        # a scope's lock lives only while a search holds or awaits it
        self._scope_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._closers: List[Any] = list(closers or [])

    # ------------------------------------------------------------------------------
    # Standalone geocoding
    # ------------------------------------------------------------------------------
    async def geocode_address(self, address: str) -> GeocodeResult:
        return await self.geocoder.geocode_address(address)

    async def reverse_geocode(self, latitude: float, longitude: float) -> ReverseGeocodeResult:
        return await self.geocoder.reverse_geocode(latitude, longitude)

    # ------------------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------------------
    async def search(self, request: SearchRequest, scope: str = "default") -> SearchResult:
        run = _Run(scope)
        try:
            return await self._search(run, request)
        except (CareFinderError, asyncio.CancelledError) as e:
            run.advance(SearchState.FAILED)
            logger.warning("search[%s] failed after %s: %r", scope, run.states[-2].value, e)
            raise
        except Exception:
            run.advance(SearchState.FAILED)
            logger.exception("search[%s] failed unexpectedly", scope)
            raise

    async def _search(self, run: _Run, request: SearchRequest) -> SearchResult:
        run.advance(SearchState.VALIDATING)
        search_type = request.validate()

        origin: Optional[Coordinates] = None
        search_location = None
        if search_type is not SearchType.NAME:
            run.advance(SearchState.RESOLVING)
            origin, search_location = await self._resolve_location(search_type, request)

        run.advance(SearchState.FETCHING)
        if origin is not None:
            query: Query = AreaQuery(origin, self.search_radius_km, search_location["country"])
            adapters = self.area_adapters
        else:
            query = NameQuery(request.name.strip())
            adapters = self.name_adapters
        records, failed = await self._fan_out(adapters, query)

        run.advance(SearchState.MERGING)
        providers = self.resolver.resolve(records)

        run.advance(SearchState.RANKING)
        distances: Dict[str, float] = {}
        if origin is not None:
            ranked = filter_by_distance(origin, providers, self.search_radius_km)
            providers = [r.item for r in ranked]
            distances = {r.item.unique_id: round(r.distance_km, 3) for r in ranked}

        run.advance(SearchState.PERSISTING)
        if self.store is not None:
            async with self._scope_lock(run.scope):
                if origin is not None:
                    await self.store.replace_scope(run.scope, providers)
                else:
                    await self.store.upsert_many(run.scope, providers)

        run.advance(SearchState.DONE)
        logger.info("search[%s] %s returned %d providers (failed sources: %s)",
                    run.scope, search_type.value, len(providers), ", ".join(failed) or "none")
        return SearchResult(
            providers=providers,
            search_type=search_type,
            search_location=search_location,
            failed_sources=failed,
            states=list(run.states),
            distances=distances,
        )

    async def _resolve_location(self, search_type: SearchType, request: SearchRequest) -> Tuple[Coordinates, Dict[str, Any]]:
        if search_type is SearchType.LOCATION:
            origin = validate_coordinates(request.latitude, request.longitude)
            reverse = await self.geocoder.reverse_geocode(origin.latitude, origin.longitude)
            return origin, {"latitude": origin.latitude, "longitude": origin.longitude, "country": reverse.country}

        geocoded = await self.geocoder.geocode_address(request.address)
        origin = Coordinates(latitude=geocoded.latitude, longitude=geocoded.longitude)
        return origin, {
            "latitude": geocoded.latitude,
            "longitude": geocoded.longitude,
            "country": geocoded.country,
            "formattedAddress": geocoded.formatted_address,
        }

    async def _fetch_one(self, adapter: SourceAdapter, query: Query) -> List[RawProviderRecord]:
        return await asyncio.wait_for(adapter.fetch(query), timeout=self.source_timeout)

    async def _fan_out(self, adapters: Sequence[SourceAdapter], query: Query) -> Tuple[List[RawProviderRecord], List[str]]:
        outcomes = await asyncio.gather(*(self._fetch_one(a, query) for a in adapters), return_exceptions=True)

        records: List[RawProviderRecord] = []
        failed: List[str] = []
        for adapter, outcome in zip(adapters, outcomes):
            if isinstance(outcome, asyncio.TimeoutError):
                logger.warning("%s timed out after %ss", adapter.name, self.source_timeout)
                failed.append(adapter.name)
            elif isinstance(outcome, CareFinderError):
                logger.warning("%s failed: %s", adapter.name, outcome)
                failed.append(adapter.name)
            elif isinstance(outcome, BaseException):
                logger.error("%s failed unexpectedly", adapter.name, exc_info=outcome)
                failed.append(adapter.name)
            else:
                logger.info("%s returned %d records", adapter.name, len(outcome))
                records.extend(outcome)

        if adapters and len(failed) == len(adapters) and self.fail_when_all_sources_fail:
            raise UpstreamError(f"All sources failed: {', '.join(failed)}")
        return records, failed

    def _scope_lock(self, scope: str) -> asyncio.Lock:
        lock = self._scope_locks.get(scope)
        if lock is None:
            lock = asyncio.Lock()
            self._scope_locks[scope] = lock
        return lock

    def add_closer(self, close) -> None:
        """Register an async callable that ``aclose`` awaits."""
        self._closers.append(close)

    async def aclose(self) -> None:
        for close in self._closers:
            await close()
        self._closers.clear()


# ------------------------------------------------------------------------------
# Wiring from settings
# ------------------------------------------------------------------------------
def build_cache(settings: Settings) -> Optional[ResponseCache]:
    if settings.cache_backend == "none":
        return None
    if settings.cache_backend == "sqlite":
        return SqliteCache(settings.cache_db_path)
    return MemoryCache()


async def build_orchestrator(settings: Settings, client: Optional[httpx.AsyncClient] = None) -> SearchOrchestrator:
    """Wire shared limiters, cache, adapters and store.

    Raises ConfigurationError when an API key is missing. When no ``client`` is
    given one shared ``httpx.AsyncClient`` is opened and closed by ``aclose``.
    """
    settings.require_credentials()

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=settings.timeout)

    geocoding_limiter = TokenBucket.per_second(settings.geocoding_rate_per_second)
    places_limiter = TokenBucket.per_second(settings.places_rate_per_second)
    foursquare_limiter = TokenBucket.per_second(settings.foursquare_rate_per_second)

    geocoder: BaseGeocoder = GoogleGeocodingClient(
        settings.google_maps_api_key, geocoding_limiter, settings.geocoding_url, settings.timeout, client
    )
    area_adapters: List[SourceAdapter] = [
        OverpassAdapter(settings.overpass_url, timeout=settings.timeout, client=client),
        FoursquareAdapter(
            settings.foursquare_api_key, foursquare_limiter, settings.foursquare_url, settings.timeout,
            settings.detail_concurrency, client=client,
        ),
    ]
    name_adapter: SourceAdapter = GooglePlacesAdapter(
        settings.google_places_api_key, places_limiter, settings.places_url, settings.timeout,
        settings.detail_concurrency, client,
    )

    cache = build_cache(settings)
    if cache is not None:
        geocoder = CachingGeocoder(geocoder, cache, settings.geocode_cache_ttl)
        name_adapter = CachingSourceAdapter(name_adapter, cache, PLACES_NAME, settings.name_search_cache_ttl)

    if settings.database_url:
        store: ProviderStore = await PostgresProviderStore.connect(settings.database_url)
    else:
        store = MemoryProviderStore()

    orchestrator = SearchOrchestrator(
        geocoder,
        area_adapters,
        [name_adapter],
        store=store,
        search_radius_km=settings.search_radius_km,
        source_timeout=settings.source_timeout,
        fail_when_all_sources_fail=settings.fail_when_all_sources_fail,
    )
    orchestrator.add_closer(store.close)
    if owns_client:
        orchestrator.add_closer(client.aclose)
    if isinstance(cache, SqliteCache):
        orchestrator.add_closer(lambda: asyncio.to_thread(cache.close))
    logger.info("Orchestrator ready: cache=%s store=%s", settings.cache_backend, type(store).__name__)
    return orchestrator
