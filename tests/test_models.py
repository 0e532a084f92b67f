# tests/test_models.py
from datetime import datetime, timezone

from carefinder.core.models import (
    Address,
    CanonicalProvider,
    ContactInfo,
    Coordinates,
    Day,
    InstitutionType,
    Location,
    OperatingHours,
    RawProviderRecord,
    ServiceCapabilities,
    Tip,
)


def test_day_from_weekday_wraps():
    assert Day.from_weekday(0) is Day.MONDAY
    assert Day.from_weekday(-1) is Day.SUNDAY
    assert Day.from_weekday(7) is Day.MONDAY


def test_address_validity_requires_street_city_and_country():
    assert Address(street="1 Broad St", city="Lagos", country="Nigeria").is_valid()
    assert not Address(city="Lagos", country="Nigeria").is_valid()


def test_canonical_document_shape():
    provider = CanonicalProvider(
        unique_id="OSM_node_1",
        name="Ikeja General Hospital",
        location=Location(coordinates=Coordinates(6.6, 3.35), address=Address(city="Ikeja")),
        alternate_names={"b", "a"},
        institution_type=InstitutionType.HOSPITAL,
        contact=ContactInfo(phone_numbers={"2", "1"}),
        operating_hours=[OperatingHours(Day.MONDAY, "08:00", "17:00")],
        capabilities=ServiceCapabilities(specialties={"Paediatrics"}, emergency=True),
        tips=[Tip("Quick", "Ada", 2, datetime(2024, 1, 5, tzinfo=timezone.utc))],
        source_apis={"OpenStreetMap"},
        last_updated=datetime(2024, 5, 1, tzinfo=timezone.utc),
    )
    doc = provider.to_document()
    assert doc["location"]["coordinates"] == {"type": "Point", "coordinates": [3.35, 6.6]}
    assert doc["alternateNames"] == ["a", "b"]
    assert doc["contactInfo"]["phoneNumbers"] == ["1", "2"]
    assert doc["institutionType"] == "hospital"
    assert doc["ownershipType"] is None
    assert doc["lastUpdated"].startswith("2024-05-01")
    assert CanonicalProvider.from_document(doc).to_document() == doc


def test_raw_record_dict_round_trip_preserves_types():
    record = RawProviderRecord(
        source="Foursquare", source_id="abc", unique_id="FSQ_abc", name="Reddington Hospital",
        coordinates=Coordinates(6.6045, 3.354), contact=ContactInfo(phone_numbers={"1"}),
        operating_hours=[OperatingHours(Day.SUNDAY, "00:00", "23:59", True)],
        institution_type=InstitutionType.HOSPITAL,
    )
    assert RawProviderRecord.from_dict(record.to_dict()) == record
