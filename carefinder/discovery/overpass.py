import logging
import os
from typing import Any, Dict, List, Optional

import httpx
import overpy
import yaml

from carefinder.core.errors import InvalidInput, UpstreamError
from carefinder.core.http import HttpClientMixin, request_json
from carefinder.core.models import (
    Address,
    ContactInfo,
    Coordinates,
    RawProviderRecord,
    ServiceCapabilities,
)
from carefinder.discovery.base import AreaQuery, SourceAdapter
from carefinder.discovery.hours import parse_osm_opening_hours
from carefinder.discovery.vocabulary import (
    OSM_INSTITUTION_TYPES,
    OSM_OWNERSHIP_TYPES,
    map_institution_type,
    map_ownership_type,
)

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------------------
# Load Overpass filters
# ------------------------------------------------------------------------------
FILTERS_FILE = os.path.join(os.path.dirname(__file__), "healthcare_filters.yaml")


def load_filters(path: str = FILTERS_FILE) -> List[str]:
    with open(path, "r") as f:
        return yaml.safe_load(f).get("overpass_filters", [])


UNNAMED = "Unnamed Provider"
SOCIAL_TAGS = ("facebook", "twitter", "instagram")


def _split(value: Optional[str]) -> List[str]:
    return [v.strip() for v in (value or "").split(";") if v.strip()]


def _first(tags: Dict[str, str], *keys: str) -> str:
    for key in keys:
        if tags.get(key):
            return tags[key].strip()
    return ""


def _yes_no(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    value = value.strip().lower()
    if value in ("yes", "true", "1"):
        return True
    if value in ("no", "false", "0"):
        return False
    return None


class OverpassAdapter(HttpClientMixin, SourceAdapter):
    name = "OpenStreetMap"
    id_prefix = "OSM"

    def __init__(
        self,
        url: str = "https://overpass-api.de/api/interpreter",
        filters: Optional[List[str]] = None,
        timeout: float = 25,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.filters = filters if filters is not None else load_filters()
        self.timeout = timeout
        self._client = client
        self.api = overpy.Overpass(url=url)

    def build_query(self, bbox) -> str:
        south, west, north, east = bbox
        area = f"({south},{west},{north},{east})"
        clauses = []
        for f in self.filters:
            clauses.extend([
                f"node[{f}]{area};",
                f"way[{f}]{area};",
                f"relation[{f}]{area};",
            ])
        return f"[out:json][timeout:{int(self.timeout)}];({''.join(clauses)});out center;"

    async def fetch(self, query) -> List[RawProviderRecord]:
        if not isinstance(query, AreaQuery):
            raise InvalidInput(f"{self.name} only supports area queries")

        ql = self.build_query(query.bounding_box())
        async with self._session() as client:
            payload = await request_json(client, "POST", self.url, self.name, data={"data": ql})

        try:
            result = overpy.Result.from_json(payload, api=self.api)
        except (overpy.exception.OverPyException, AttributeError, ValueError, TypeError) as e:
            raise UpstreamError(f"{self.name} returned a malformed payload: {e}", source=self.name) from e

        elements = [("node", e) for e in result.nodes] + [("way", e) for e in result.ways] + [("relation", e) for e in result.relations]
        records = self.normalize_all(elements, self.element_to_record)
        logger.info("%s returned %d elements, %d usable", self.name, len(elements), len(records))
        return records

    # ------------------------------------------------------------------------------
    # Convert Overpass element to a raw provider record
    # ------------------------------------------------------------------------------
    def element_to_record(self, item) -> Optional[RawProviderRecord]:
        kind, element = item
        lat = getattr(element, "lat", None)
        lon = getattr(element, "lon", None)
        if lat is None or lon is None:
            lat, lon = getattr(element, "center_lat", None), getattr(element, "center_lon", None)
        if lat is None or lon is None:
            return None

        tags: Dict[str, Any] = element.tags or {}
        name = _first(tags, "name", "name:en") or UNNAMED
        alternates = []
        for key in ("alt_name", "official_name", "short_name", "name:en"):
            for alt in _split(tags.get(key)):
                if alt != name and alt not in alternates:
                    alternates.append(alt)

        source_id = f"{kind}_{element.id}"
        return RawProviderRecord(
            source=self.name,
            source_id=source_id,
            unique_id=self.unique_id(source_id),
            name=name,
            alternate_names=alternates,
            coordinates=Coordinates(latitude=float(lat), longitude=float(lon)),
            address=self._address(tags),
            neighborhood=_first(tags, "addr:suburb", "addr:neighbourhood", "addr:quarter"),
            contact=self._contact(tags),
            operating_hours=parse_osm_opening_hours(tags.get("opening_hours")),
            capabilities=self._capabilities(tags),
            institution_type=map_institution_type(_first(tags, "healthcare", "amenity"), OSM_INSTITUTION_TYPES),
            ownership_type=map_ownership_type(tags.get("operator:type"), OSM_OWNERSHIP_TYPES),
        )

    @staticmethod
    def _address(tags: Dict[str, str]) -> Address:
        street = _first(tags, "addr:street")
        housenumber = _first(tags, "addr:housenumber")
        if street and housenumber:
            street = f"{housenumber} {street}"
        return Address(
            street=street or _first(tags, "addr:full"),
            city=_first(tags, "addr:city", "addr:town", "addr:village"),
            state=_first(tags, "addr:state", "addr:province"),
            country=_first(tags, "addr:country"),
            postal_code=_first(tags, "addr:postcode"),
        )

    @staticmethod
    def _contact(tags: Dict[str, str]) -> ContactInfo:
        phones = set()
        for key in ("phone", "contact:phone", "contact:mobile", "emergency:phone"):
            phones.update(_split(tags.get(key)))
        social = {}
        for network in SOCIAL_TAGS:
            link = _first(tags, f"contact:{network}")
            if link:
                social[network] = link
        return ContactInfo(
            phone_numbers=phones,
            email=_first(tags, "email", "contact:email"),
            website=_first(tags, "website", "contact:website", "url"),
            social_links=social,
        )

    @staticmethod
    def _capabilities(tags: Dict[str, str]) -> ServiceCapabilities:
        specialties = {s.replace("_", " ").title() for s in _split(tags.get("healthcare:speciality"))}
        facilities = set()
        if _yes_no(tags.get("dispensing")):
            facilities.add("Dispensary")
        if tags.get("beds"):
            facilities.add("Inpatient Beds")
        accessibility = set()
        wheelchair = (tags.get("wheelchair") or "").lower()
        if wheelchair == "yes":
            accessibility.add("wheelchair")
        elif wheelchair == "limited":
            accessibility.add("wheelchair (limited)")
        languages = {key.split(":", 1)[1] for key, value in tags.items()
                     if key.startswith("language:") and _yes_no(value)}
        return ServiceCapabilities(
            specialties=specialties,
            facilities=facilities,
            languages=languages,
            accessibility=accessibility,
            emergency=_yes_no(tags.get("emergency")),
        )
