"""Deduplication and field-level merge of raw provider records.

Sources share no identity key, so records are grouped on rounded coordinates
plus the normalized name. Four decimal places is roughly 11 m: tighter
rounding causes fewer false merges but misses the same facility reported with
slightly divergent coordinates. It is a heuristic, not entity resolution.

Merge rules are explicit per field:

* address subfields, photo, types, landmark, neighborhood: first non-empty wins
* phones, alternate names, source apis, capability sets: union
* email, website, social links, emergency flag: later non-empty value wins
* operating hours: replaced only by a strictly longer schedule
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from carefinder.core.models import (
    ADDRESS_FIELDS,
    CAPABILITY_SET_FIELDS,
    DEFAULT_INSTITUTION_TYPE,
    DEFAULT_OWNERSHIP_TYPE,
    CanonicalProvider,
    Location,
    RawProviderRecord,
)

logger = logging.getLogger(__name__)

COORDINATE_PRECISION = 4

GroupingKey = Tuple[float, float, str]


def normalize_name(name: str) -> str:
    return " ".join((name or "").lower().split())


def grouping_key(record: RawProviderRecord, precision: int = COORDINATE_PRECISION) -> GroupingKey:
    # + 0.0 folds -0.0 into 0.0 so both hemispheres' zero share a key
    return (
        round(record.coordinates.latitude, precision) + 0.0,
        round(record.coordinates.longitude, precision) + 0.0,
        normalize_name(record.name),
    )


def group_records(records: Iterable[RawProviderRecord], precision: int = COORDINATE_PRECISION) -> List[List[RawProviderRecord]]:
    """Groups in first-seen order; members keep input order."""
    groups: Dict[GroupingKey, List[RawProviderRecord]] = {}
    for record in records:
        groups.setdefault(grouping_key(record, precision), []).append(record)
    return list(groups.values())


def seed_canonical(record: RawProviderRecord) -> CanonicalProvider:
    return CanonicalProvider(
        unique_id=record.unique_id,
        name=record.name,
        location=Location(coordinates=record.coordinates),
    )


def absorb(canonical: CanonicalProvider, record: RawProviderRecord, now: Optional[datetime] = None) -> CanonicalProvider:
    """Merge one raw record into ``canonical`` in place and return it."""
    now = now or datetime.now(timezone.utc)
    canonical.source_apis.add(record.source)

    canonical.alternate_names.update(record.alternate_names)
    if record.name != canonical.name:
        canonical.alternate_names.add(record.name)
    canonical.alternate_names.discard(canonical.name)

    address = canonical.location.address
    for field_name in ADDRESS_FIELDS:
        incoming = getattr(record.address, field_name)
        if incoming and not getattr(address, field_name):
            setattr(address, field_name, incoming)

    if not canonical.photo and record.photo:
        canonical.photo = record.photo
    if canonical.institution_type is None and record.institution_type is not None:
        canonical.institution_type = record.institution_type
    if canonical.ownership_type is None and record.ownership_type is not None:
        canonical.ownership_type = record.ownership_type
    if not canonical.location.landmark and record.landmark:
        canonical.location.landmark = record.landmark
    if not canonical.location.neighborhood and record.neighborhood:
        canonical.location.neighborhood = record.neighborhood

    contact = canonical.contact
    contact.phone_numbers.update(record.contact.phone_numbers)
    if record.contact.email:
        contact.email = record.contact.email
    if record.contact.website:
        contact.website = record.contact.website
    for network, link in record.contact.social_links.items():
        if link:
            contact.social_links[network] = link

    if len(record.operating_hours) > len(canonical.operating_hours):
        canonical.operating_hours = list(record.operating_hours)

    capabilities = canonical.capabilities
    for field_name in CAPABILITY_SET_FIELDS:
        getattr(capabilities, field_name).update(getattr(record.capabilities, field_name))
    if record.capabilities.emergency is not None:
        capabilities.emergency = record.capabilities.emergency

    seen = {(t.author, t.text) for t in canonical.tips}
    for tip in record.tips:
        if (tip.author, tip.text) not in seen:
            canonical.tips.append(tip)
            seen.add((tip.author, tip.text))

    canonical.verified_date = now
    canonical.last_updated = now
    return canonical


class Resolver:
    def __init__(self, clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
                 precision: int = COORDINATE_PRECISION):
        self.clock = clock
        self.precision = precision

    def merge(self, group: List[RawProviderRecord]) -> CanonicalProvider:
        if not group:
            raise ValueError("cannot merge an empty group")
        now = self.clock()
        canonical = seed_canonical(group[0])
        for record in group:
            absorb(canonical, record, now)
        if canonical.institution_type is None:
            canonical.institution_type = DEFAULT_INSTITUTION_TYPE
        if canonical.ownership_type is None:
            canonical.ownership_type = DEFAULT_OWNERSHIP_TYPE
        return canonical

    def resolve(self, records: Iterable[RawProviderRecord]) -> List[CanonicalProvider]:
        records = list(records)
        groups = group_records(records, self.precision)
        merged = [self.merge(group) for group in groups]
        logger.info("Resolved %d raw records into %d providers", len(records), len(merged))
        return merged
