"""Client utilities for the Google Places API (name searches)."""
import base64
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from carefinder.core.errors import CareFinderError, ConfigurationError, InvalidInput, RateLimited, UpstreamError
from carefinder.core.http import HttpClientMixin, acquire_or_raise, get_json, raise_for_upstream
from carefinder.core.models import (
    Address,
    ContactInfo,
    Coordinates,
    RawProviderRecord,
    ServiceCapabilities,
    Tip,
)
from carefinder.core.ratelimit import TokenBucket
from carefinder.discovery.base import DEFAULT_DETAIL_CONCURRENCY, NameQuery, SourceAdapter, gather_bounded
from carefinder.discovery.hours import parse_google_opening_hours
from carefinder.discovery.vocabulary import GOOGLE_PLACE_TYPES, infer_specialties, map_first_institution_type

logger = logging.getLogger(__name__)

DETAIL_FIELDS = (
    "place_id,name,formatted_address,geometry,formatted_phone_number,international_phone_number,"
    "website,opening_hours,types,photos,reviews,address_components"
)
PHOTO_MAX_WIDTH = 800


class GooglePlacesError(UpstreamError):
    """Raised when the Places API returns a non-successful status."""


def parse_address_components(components: List[Dict[str, Any]]) -> Dict[str, str]:
    result = {"street_number": "", "route": "", "city": "", "state": "", "country": "",
              "postal_code": "", "neighborhood": ""}
    for component in components or []:
        types = component.get("types") or []
        name = component.get("long_name", "")
        if "street_number" in types:
            result["street_number"] = name
        elif "route" in types:
            result["route"] = name
        elif "locality" in types:
            result["city"] = name
        elif "administrative_area_level_1" in types:
            result["state"] = name
        elif "country" in types:
            result["country"] = name
        elif "postal_code" in types:
            result["postal_code"] = name
        elif "neighborhood" in types:
            result["neighborhood"] = name
    return result


def reviews_to_tips(reviews: Any, place_id: Optional[str] = None) -> List[Tip]:
    """Malformed reviews are skipped; they never drop the place itself."""
    if not isinstance(reviews, list):
        return []
    tips = []
    for review in reviews:
        try:
            if not review.get("text"):
                continue
            tips.append(Tip(
                text=str(review["text"]),
                author=review.get("author_name") or "",
                likes=int(review.get("rating") or 0),
                date=datetime.fromtimestamp(review["time"], tz=timezone.utc) if review.get("time") else None,
            ))
        except (KeyError, TypeError, ValueError, AttributeError, OverflowError, OSError) as e:
            logger.warning("Skipping malformed review for %s: %s", place_id, e)
    return tips


class GooglePlacesAdapter(HttpClientMixin, SourceAdapter):
    name = "GooglePlaces"
    id_prefix = "GOOGLE"

    def __init__(
        self,
        api_key: str,
        rate_limiter: Optional[TokenBucket] = None,
        base_url: str = "https://maps.googleapis.com/maps/api/place",
        timeout: float = 10,
        detail_concurrency: int = DEFAULT_DETAIL_CONCURRENCY,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.rate_limiter = rate_limiter
        self.base = base_url.rstrip("/")
        self.timeout = timeout
        self.detail_concurrency = detail_concurrency
        self._client = client

    def _check_status(self, payload: Dict[str, Any], operation: str) -> None:
        status = payload.get("status")
        if status in {"OK", "ZERO_RESULTS"}:
            return
        logger.error("%s failed: status=%s, error_message=%s", operation, status, payload.get("error_message"))
        if status == "OVER_QUERY_LIMIT":
            raise RateLimited(f"Google Places quota reached during {operation}")
        raise GooglePlacesError(payload.get("error_message") or f"{operation}: {status}", source=self.name)

    async def text_search(self, client: httpx.AsyncClient, query: NameQuery) -> List[Dict[str, Any]]:
        text = f"{query.name} healthcare"
        if query.country and query.country.lower() != "global":
            text = f"{text} {query.country}"
        acquire_or_raise(self.rate_limiter, self.name)
        payload = await get_json(client, f"{self.base}/textsearch/json", self.name,
                                 params={"query": text, "type": "health", "key": self.api_key})
        self._check_status(payload, "text_search")
        return payload.get("results") or []

    async def place_details(self, client: httpx.AsyncClient, place_id: str) -> Dict[str, Any]:
        payload = await get_json(client, f"{self.base}/details/json", self.name,
                                 params={"place_id": place_id, "fields": DETAIL_FIELDS, "key": self.api_key})
        self._check_status(payload, "place_details")
        return payload.get("result") or {}

    async def fetch_photo(self, client: httpx.AsyncClient, photo_reference: str) -> str:
        """First photo as a data URI; '' on any failure."""
        try:
            resp = await client.get(
                f"{self.base}/photo",
                params={"maxwidth": PHOTO_MAX_WIDTH, "photo_reference": photo_reference, "key": self.api_key},
                follow_redirects=True,
            )
            raise_for_upstream(resp, self.name)
        except (CareFinderError, httpx.HTTPError) as e:
            logger.warning("Error fetching place photo %s: %s", photo_reference, e)
            return ""
        content_type = resp.headers.get("content-type", "image/jpeg")
        return f"data:{content_type};base64,{base64.b64encode(resp.content).decode('ascii')}"

    # The rate limiter gates text_search only; details and photos for one search
    # are bounded by detail_concurrency.
    async def fetch(self, query) -> List[RawProviderRecord]:
        if not isinstance(query, NameQuery):
            raise InvalidInput(f"{self.name} only supports name queries")
        if not self.api_key:
            raise ConfigurationError("API key is not set for Google Places (GOOGLE_PLACES_API_KEY)")

        logger.info("Searching Google Places for name=%s country=%s", query.name, query.country)
        async with self._session() as client:
            places = await self.text_search(client, query)
            detailed = await gather_bounded(places, lambda p: self._details_or_summary(client, p), self.detail_concurrency)

        records = self.normalize_all(detailed, self.place_to_record)
        logger.info("Google Places search completed: %d places, %d converted", len(places), len(records))
        return records

    async def _details_or_summary(self, client: httpx.AsyncClient, place: Dict[str, Any]) -> Dict[str, Any]:
        details = dict(place)
        try:
            details.update(await self.place_details(client, place["place_id"]))
        except (CareFinderError, KeyError) as e:
            logger.warning("Error fetching place details for %s: %s", place.get("place_id"), e)
        photos = details.get("photos")
        first = photos[0] if isinstance(photos, list) and photos else None
        reference = first.get("photo_reference") if isinstance(first, dict) else None
        if reference:
            details["main_photo"] = await self.fetch_photo(client, reference)
        return details

    # ------------------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------------------
    def place_to_record(self, place: Dict[str, Any]) -> Optional[RawProviderRecord]:
        location = ((place.get("geometry") or {}).get("location")) or {}
        if location.get("lat") is None or location.get("lng") is None:
            return None
        parts = parse_address_components(place.get("address_components"))
        street = " ".join(p for p in (parts["street_number"], parts["route"]) if p)
        types = place.get("types") or []

        tips = reviews_to_tips(place.get("reviews"), place.get("place_id"))
        phones = {p for p in (place.get("formatted_phone_number"), place.get("international_phone_number")) if p}

        return RawProviderRecord(
            source=self.name,
            source_id=place["place_id"],
            unique_id=self.unique_id(place["place_id"]),
            name=place["name"],
            coordinates=Coordinates(latitude=float(location["lat"]), longitude=float(location["lng"])),
            address=Address(
                street=street or (place.get("formatted_address") or "").split(",")[0].strip(),
                city=parts["city"],
                state=parts["state"],
                country=parts["country"],
                postal_code=parts["postal_code"],
            ),
            neighborhood=parts["neighborhood"],
            contact=ContactInfo(phone_numbers=phones, website=place.get("website") or ""),
            operating_hours=parse_google_opening_hours(place.get("opening_hours")),
            capabilities=ServiceCapabilities(
                specialties=infer_specialties(types),
                emergency=True if "emergency_room" in types else None,
            ),
            institution_type=map_first_institution_type(types, GOOGLE_PLACE_TYPES),
            photo=place.get("main_photo") or "",
            tips=tips,
        )
