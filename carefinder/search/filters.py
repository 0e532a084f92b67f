"""Keyword-filter query path over stored providers."""
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from carefinder.core.errors import InvalidInput
from carefinder.core.geomath import filter_by_distance
from carefinder.core.models import CanonicalProvider, Coordinates, Day, InstitutionType, OperatingHours, OwnershipType

MAX_FILTER_DISTANCE_KM = 10


@dataclass
class ProviderFilter:
    """Criteria for the stored-provider query path.

    ``keyword`` is a case-insensitive regex. ``validate`` and the in-memory
    store use Python ``re``; ``PostgresProviderStore`` runs it as a POSIX
    ``~*`` regex. Stick to the common subset (literals, classes, anchors,
    alternation, quantifiers): inline flags such as ``(?i)`` and lookarounds
    pass ``validate`` but are rejected or behave differently in PostgreSQL.
    """

    keyword: Optional[str] = None
    institution_type: Optional[InstitutionType] = None
    ownership_type: Optional[OwnershipType] = None
    specialty: Optional[str] = None
    language: Optional[str] = None
    emergency: Optional[bool] = None
    open_now: bool = False
    user_location: Optional[Coordinates] = None
    max_distance_km: Optional[float] = None

    def validate(self) -> None:
        if self.keyword:
            try:
                re.compile(self.keyword)
            except re.error as e:
                raise InvalidInput(f"Invalid keyword pattern: {e}")
        if self.max_distance_km is not None:
            if self.max_distance_km <= 0 or self.max_distance_km > MAX_FILTER_DISTANCE_KM:
                raise InvalidInput(f"Distance must be between 1 to {MAX_FILTER_DISTANCE_KM} kilometers")
            if self.user_location is None:
                raise InvalidInput("User location is required when specifying distance")


def _contains(values: Iterable[str], wanted: str) -> bool:
    wanted = wanted.lower()
    return any(v.lower() == wanted for v in values)


def matches_keyword(provider: CanonicalProvider, pattern: "re.Pattern") -> bool:
    fields = [provider.name, provider.location.address.city, provider.location.address.country]
    fields.extend(provider.capabilities.specialties)
    return any(pattern.search(f) for f in fields if f)


def is_open_at(hours: List[OperatingHours], moment: datetime) -> bool:
    """Evaluate a weekly schedule at ``moment``, including spans past midnight."""
    today = Day.from_weekday(moment.weekday())
    yesterday = Day.from_weekday(moment.weekday() - 1)
    now = moment.strftime("%H:%M")
    for h in hours:
        if h.day == today:
            if h.is_24_hours:
                return True
            if h.open <= h.close:
                if h.open <= now < h.close:
                    return True
            elif now >= h.open:
                return True
        elif h.day == yesterday and not h.is_24_hours and h.close < h.open and now < h.close:
            return True
    return False


def apply_filter(
    providers: Iterable[CanonicalProvider],
    criteria: ProviderFilter,
    now: Optional[datetime] = None,
) -> List[CanonicalProvider]:
    criteria.validate()
    pattern = re.compile(criteria.keyword, re.IGNORECASE) if criteria.keyword else None
    moment = now or datetime.now()

    selected = []
    for p in providers:
        if pattern and not matches_keyword(p, pattern):
            continue
        if criteria.institution_type and p.institution_type != criteria.institution_type:
            continue
        if criteria.ownership_type and p.ownership_type != criteria.ownership_type:
            continue
        if criteria.specialty and not _contains(p.capabilities.specialties, criteria.specialty):
            continue
        if criteria.language and not _contains(p.capabilities.languages, criteria.language):
            continue
        if criteria.emergency is not None and bool(p.capabilities.emergency) != criteria.emergency:
            continue
        if criteria.open_now and not is_open_at(p.operating_hours, moment):
            continue
        selected.append(p)

    if criteria.user_location is not None and criteria.max_distance_km:
        return [r.item for r in filter_by_distance(criteria.user_location, selected, criteria.max_distance_km)]
    return selected
