# carefinder/geocode/providers.py
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

import httpx

from carefinder.core.cache import GEOCODE_ADDRESS, GEOCODE_REVERSE, ResponseCache, cache_key
from carefinder.core.errors import CacheError, InvalidInput, NotFound, RateLimited, UpstreamError
from carefinder.core.geomath import validate_coordinates
from carefinder.core.http import HttpClientMixin, acquire_or_raise, get_json
from carefinder.core.ratelimit import TokenBucket

logger = logging.getLogger(__name__)

SOURCE = "GoogleGeocoding"


@dataclass
class GeocodeResult:
    latitude: float
    longitude: float
    formatted_address: str
    country: str
    place_id: Optional[str] = None


@dataclass
class ReverseGeocodeResult:
    country: str
    formatted_address: str
    place_id: Optional[str] = None


def validate_address(address) -> str:
    if not isinstance(address, str) or not address.strip():
        raise InvalidInput("Address cannot be empty")
    return address.strip()


def extract_country(address_components: List[Dict[str, Any]]) -> str:
    for component in address_components or []:
        if "country" in component.get("types", []):
            return component.get("long_name", "")
    return ""


# -------------------------
# Provider base class (async)
# -------------------------
class BaseGeocoder:
    async def geocode_address(self, address: str) -> GeocodeResult:
        raise NotImplementedError

    async def reverse_geocode(self, latitude: float, longitude: float) -> ReverseGeocodeResult:
        raise NotImplementedError


# -------------------------
# Google provider
# -------------------------
class GoogleGeocodingClient(HttpClientMixin, BaseGeocoder):
    def __init__(
        self,
        key: str,
        rate_limiter: Optional[TokenBucket] = None,
        base_url: str = "https://maps.googleapis.com/maps/api/geocode/json",
        timeout: float = 10,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.key = key
        self.rate_limiter = rate_limiter
        self.base = base_url
        self.timeout = timeout
        self._client = client

    async def _query(self, params: Dict[str, str]) -> Dict[str, Any]:
        acquire_or_raise(self.rate_limiter, SOURCE)
        async with self._session() as client:
            data = await get_json(client, self.base, SOURCE, params={**params, "key": self.key})

        status = data.get("status")
        if status == "OK" and data.get("results"):
            return data["results"][0]
        if status == "ZERO_RESULTS" or (status == "OK" and not data.get("results")):
            raise NotFound("No results found for the given location")
        if status in ("OVER_QUERY_LIMIT", "RESOURCE_EXHAUSTED"):
            raise RateLimited(f"Google quota/limit reached: {status}")
        message = data.get("error_message") or status
        logger.error("Google geocoding failed: status=%s error_message=%s", status, data.get("error_message"))
        raise UpstreamError(f"Geocoding failed: {message}", source=SOURCE)

    async def geocode_address(self, address: str) -> GeocodeResult:
        address = validate_address(address)
        result = await self._query({"address": address})
        loc = result["geometry"]["location"]
        return GeocodeResult(
            latitude=float(loc["lat"]),
            longitude=float(loc["lng"]),
            formatted_address=result.get("formatted_address", ""),
            country=extract_country(result.get("address_components", [])),
            place_id=result.get("place_id"),
        )

    async def reverse_geocode(self, latitude: float, longitude: float) -> ReverseGeocodeResult:
        point = validate_coordinates(latitude, longitude)
        result = await self._query({"latlng": f"{point.latitude},{point.longitude}"})
        return ReverseGeocodeResult(
            country=extract_country(result.get("address_components", [])),
            formatted_address=result.get("formatted_address", ""),
            place_id=result.get("place_id"),
        )


# -------------------------
# CachingGeocoder: cache in front of any geocoder
# -------------------------
class CachingGeocoder(BaseGeocoder):
    def __init__(self, inner: BaseGeocoder, cache: ResponseCache, ttl: int = 60 * 60 * 24):
        self.inner = inner
        self.cache = cache
        self.ttl = ttl

    async def _cache_get(self, key: str):
        try:
            return await self.cache.get(key)
        except CacheError as e:
            logger.warning("geocode cache read failed, bypassing: %s", e)
            return None

    async def _cache_set(self, key: str, value: Dict[str, Any]):
        try:
            await self.cache.set(key, value, self.ttl)
        except CacheError as e:
            logger.warning("geocode cache write failed: %s", e)

    async def geocode_address(self, address: str) -> GeocodeResult:
        address = validate_address(address)
        key = cache_key(GEOCODE_ADDRESS, address)
        hit = await self._cache_get(key)
        if hit:
            logger.debug("geocode cache hit for '%s'", address)
            return GeocodeResult(**hit)

        result = await self.inner.geocode_address(address)
        await self._cache_set(key, asdict(result))
        return result

    async def reverse_geocode(self, latitude: float, longitude: float) -> ReverseGeocodeResult:
        point = validate_coordinates(latitude, longitude)
        key = cache_key(GEOCODE_REVERSE, f"{point.latitude},{point.longitude}")
        hit = await self._cache_get(key)
        if hit:
            logger.debug("reverse geocode cache hit for %s,%s", latitude, longitude)
            return ReverseGeocodeResult(**hit)

        result = await self.inner.reverse_geocode(point.latitude, point.longitude)
        await self._cache_set(key, asdict(result))
        return result
