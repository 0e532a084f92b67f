"""Foursquare Places API v3 adapter (area searches)."""
import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from carefinder.core.errors import CareFinderError, ConfigurationError, InvalidInput
from carefinder.core.http import HttpClientMixin, acquire_or_raise, get_json
from carefinder.core.models import (
    Address,
    ContactInfo,
    Coordinates,
    RawProviderRecord,
    ServiceCapabilities,
    Tip,
)
from carefinder.core.ratelimit import TokenBucket
from carefinder.discovery.base import DEFAULT_DETAIL_CONCURRENCY, AreaQuery, SourceAdapter, gather_bounded
from carefinder.discovery.hours import parse_foursquare_hours
from carefinder.discovery.vocabulary import FOURSQUARE_CATEGORY_TYPES, infer_specialties, match_institution_type

logger = logging.getLogger(__name__)

HEALTH_AND_MEDICINE = "15000"
MAX_RADIUS_M = 100_000
SEARCH_FIELDS = "fsq_id,name,geocodes,location,categories,tel,email,website,social_media,hours"
SOCIAL_URLS = {
    "facebook_id": ("facebook", "https://www.facebook.com/{}"),
    "twitter": ("twitter", "https://twitter.com/{}"),
    "instagram": ("instagram", "https://www.instagram.com/{}"),
}


class FoursquareAdapter(HttpClientMixin, SourceAdapter):
    name = "Foursquare"
    id_prefix = "FSQ"

    def __init__(
        self,
        api_key: str,
        rate_limiter: Optional[TokenBucket] = None,
        base_url: str = "https://api.foursquare.com/v3/places",
        timeout: float = 10,
        detail_concurrency: int = DEFAULT_DETAIL_CONCURRENCY,
        result_limit: int = 50,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.rate_limiter = rate_limiter
        self.base = base_url.rstrip("/")
        self.timeout = timeout
        self.detail_concurrency = detail_concurrency
        self.result_limit = result_limit
        self._client = client

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": self.api_key, "Accept": "application/json"}

    async def fetch(self, query) -> List[RawProviderRecord]:
        if not isinstance(query, AreaQuery):
            raise InvalidInput(f"{self.name} only supports area queries")
        if not self.api_key:
            raise ConfigurationError("API key is not set for Foursquare (FOURSQUARE_API_KEY)")

        params = {
            "ll": f"{query.center.latitude},{query.center.longitude}",
            "radius": min(int(query.radius_km * 1000), MAX_RADIUS_M),
            "categories": HEALTH_AND_MEDICINE,
            "limit": self.result_limit,
            "fields": SEARCH_FIELDS,
        }
        async with self._session() as client:
            acquire_or_raise(self.rate_limiter, self.name)
            data = await get_json(client, f"{self.base}/search", self.name, params=params, headers=self.headers)
            records = self.normalize_all(data.get("results") or [], self.place_to_record)
            records = await gather_bounded(records, lambda r: self._enrich(client, r), self.detail_concurrency)

        logger.info("%s returned %d places", self.name, len(records))
        return records

    # ------------------------------------------------------------------------------
    # Sub-detail fetches: a failure only empties the affected field. The rate
    # limiter gates the search call; detail calls are bounded by detail_concurrency.
    # ------------------------------------------------------------------------------
    async def _enrich(self, client: httpx.AsyncClient, record: RawProviderRecord) -> RawProviderRecord:
        tips = await self._fetch_tips(client, record.source_id)
        photo = await self._fetch_photo(client, record.source_id)
        return replace(record, tips=tips, photo=photo)

    async def _fetch_tips(self, client: httpx.AsyncClient, fsq_id: str) -> List[Tip]:
        try:
            data = await get_json(client, f"{self.base}/{fsq_id}/tips", self.name,
                                  params={"limit": 5}, headers=self.headers)
        except CareFinderError as e:
            logger.warning("Error fetching Foursquare tips for %s: %s", fsq_id, e)
            return []
        if not isinstance(data, list):
            logger.warning("Malformed Foursquare tips payload for %s: %s", fsq_id, type(data).__name__)
            return []
        tips = []
        for item in data:
            try:
                if item.get("text"):
                    tips.append(self._tip(item))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning("Skipping malformed Foursquare tip for %s: %s", fsq_id, e)
        return tips

    async def _fetch_photo(self, client: httpx.AsyncClient, fsq_id: str) -> str:
        try:
            data = await get_json(client, f"{self.base}/{fsq_id}/photos", self.name,
                                  params={"limit": 1}, headers=self.headers)
            if data:
                return f"{data[0]['prefix']}original{data[0]['suffix']}"
        except CareFinderError as e:
            logger.warning("Error fetching Foursquare photo for %s: %s", fsq_id, e)
        except (KeyError, IndexError, TypeError) as e:
            logger.warning("Malformed Foursquare photo payload for %s: %s", fsq_id, e)
        return ""

    @staticmethod
    def _tip(data: Dict[str, Any]) -> Tip:
        created = data.get("created_at")
        date = None
        if created:
            try:
                date = datetime.fromisoformat(created.replace("Z", "+00:00"))
            except (ValueError, AttributeError):
                date = None
        return Tip(text=str(data["text"]), author="", likes=int(data.get("agree_count") or 0), date=date)

    # ------------------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------------------
    def place_to_record(self, place: Dict[str, Any]) -> Optional[RawProviderRecord]:
        main = (place.get("geocodes") or {}).get("main") or {}
        if main.get("latitude") is None or main.get("longitude") is None:
            return None
        location = place.get("location") or {}
        labels = [c.get("name", "") for c in place.get("categories") or []]
        neighborhoods = location.get("neighborhood") or []

        social = {}
        for key, (network, template) in SOCIAL_URLS.items():
            handle = (place.get("social_media") or {}).get(key)
            if handle:
                social[network] = template.format(handle)

        fsq_id = place["fsq_id"]
        return RawProviderRecord(
            source=self.name,
            source_id=fsq_id,
            unique_id=self.unique_id(fsq_id),
            name=place["name"],
            coordinates=Coordinates(latitude=float(main["latitude"]), longitude=float(main["longitude"])),
            address=Address(
                street=location.get("address") or "",
                city=location.get("locality") or "",
                state=location.get("region") or "",
                country=location.get("country") or "",
                postal_code=location.get("postcode") or "",
            ),
            landmark=location.get("cross_street") or "",
            neighborhood=neighborhoods[0] if neighborhoods else "",
            contact=ContactInfo(
                phone_numbers={place["tel"]} if place.get("tel") else set(),
                email=place.get("email") or "",
                website=place.get("website") or "",
                social_links=social,
            ),
            operating_hours=parse_foursquare_hours(place.get("hours")),
            capabilities=ServiceCapabilities(
                specialties=infer_specialties(labels),
                emergency=True if any("emergency" in l.lower() for l in labels) else None,
            ),
            institution_type=match_institution_type(labels, FOURSQUARE_CATEGORY_TYPES),
        )
