"""Typed records flowing through the engine.

RawProviderRecord is what a source adapter emits for one facility;
CanonicalProvider is the merged, persisted representation. Sets are used for
every multi-value field so merging is a plain union; documents render them as
sorted lists to keep output deterministic.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set


class InstitutionType(str, Enum):
    HOSPITAL = "hospital"
    CLINIC = "clinic"
    MEDICAL_CENTER = "medical_center"
    DIAGNOSTIC_CENTER = "diagnostic_center"
    EMERGENCY_CARE = "emergency_care"
    SPECIALIZED_CARE = "specialized_care"
    PHARMACY = "pharmacy"


class OwnershipType(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    NON_PROFIT = "non_profit"
    GOVERNMENT = "government"
    CHARITABLE = "charitable"


DEFAULT_INSTITUTION_TYPE = InstitutionType.MEDICAL_CENTER
DEFAULT_OWNERSHIP_TYPE = OwnershipType.PRIVATE


class Day(str, Enum):
    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"
    SATURDAY = "Saturday"
    SUNDAY = "Sunday"

    @classmethod
    def from_weekday(cls, index: int) -> "Day":
        """Monday == 0, as returned by datetime.weekday()."""
        return list(cls)[index % 7]


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float

    def as_geojson(self) -> Dict[str, Any]:
        return {"type": "Point", "coordinates": [self.longitude, self.latitude]}

    @classmethod
    def from_geojson(cls, point: Dict[str, Any]) -> "Coordinates":
        lon, lat = point["coordinates"]
        return cls(latitude=float(lat), longitude=float(lon))


@dataclass
class Address:
    street: str = ""
    city: str = ""
    state: str = ""
    country: str = ""
    postal_code: str = ""

    def is_valid(self) -> bool:
        return bool(self.street and self.city and self.country)


ADDRESS_FIELDS = ("street", "city", "state", "country", "postal_code")


@dataclass
class ContactInfo:
    phone_numbers: Set[str] = field(default_factory=set)
    email: str = ""
    website: str = ""
    social_links: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class OperatingHours:
    day: Day
    open: str
    close: str
    is_24_hours: bool = False


@dataclass
class ServiceCapabilities:
    specialties: Set[str] = field(default_factory=set)
    facilities: Set[str] = field(default_factory=set)
    languages: Set[str] = field(default_factory=set)
    accessibility: Set[str] = field(default_factory=set)
    emergency: Optional[bool] = None


CAPABILITY_SET_FIELDS = ("specialties", "facilities", "languages", "accessibility")


@dataclass(frozen=True)
class Tip:
    text: str
    author: str = ""
    likes: int = 0
    date: Optional[datetime] = None


@dataclass
class Location:
    coordinates: Coordinates
    address: Address = field(default_factory=Address)
    landmark: str = ""
    neighborhood: str = ""


@dataclass
class RawProviderRecord:
    source: str
    source_id: str
    unique_id: str
    name: str
    coordinates: Coordinates
    alternate_names: List[str] = field(default_factory=list)
    address: Address = field(default_factory=Address)
    landmark: str = ""
    neighborhood: str = ""
    contact: ContactInfo = field(default_factory=ContactInfo)
    operating_hours: List[OperatingHours] = field(default_factory=list)
    capabilities: ServiceCapabilities = field(default_factory=ServiceCapabilities)
    institution_type: Optional[InstitutionType] = None
    ownership_type: Optional[OwnershipType] = None
    photo: str = ""
    tips: List[Tip] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "sourceId": self.source_id,
            "uniqueId": self.unique_id,
            "name": self.name,
            "coordinates": self.coordinates.as_geojson(),
            "alternateNames": list(self.alternate_names),
            "address": _address_to_dict(self.address),
            "landmark": self.landmark,
            "neighborhood": self.neighborhood,
            "contactInfo": _contact_to_dict(self.contact),
            "operatingHours": [_hours_to_dict(h) for h in self.operating_hours],
            "serviceCapabilities": _capabilities_to_dict(self.capabilities),
            "institutionType": _enum_value(self.institution_type),
            "ownershipType": _enum_value(self.ownership_type),
            "photo": self.photo,
            "tips": [_tip_to_dict(t) for t in self.tips],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RawProviderRecord":
        return cls(
            source=data["source"],
            source_id=data["sourceId"],
            unique_id=data["uniqueId"],
            name=data["name"],
            coordinates=Coordinates.from_geojson(data["coordinates"]),
            alternate_names=list(data.get("alternateNames") or []),
            address=_address_from_dict(data.get("address") or {}),
            landmark=data.get("landmark") or "",
            neighborhood=data.get("neighborhood") or "",
            contact=_contact_from_dict(data.get("contactInfo") or {}),
            operating_hours=[_hours_from_dict(h) for h in data.get("operatingHours") or []],
            capabilities=_capabilities_from_dict(data.get("serviceCapabilities") or {}),
            institution_type=_enum_or_none(InstitutionType, data.get("institutionType")),
            ownership_type=_enum_or_none(OwnershipType, data.get("ownershipType")),
            photo=data.get("photo") or "",
            tips=[_tip_from_dict(t) for t in data.get("tips") or []],
        )


@dataclass
class CanonicalProvider:
    unique_id: str
    name: str
    location: Location
    alternate_names: Set[str] = field(default_factory=set)
    institution_type: Optional[InstitutionType] = None
    ownership_type: Optional[OwnershipType] = None
    contact: ContactInfo = field(default_factory=ContactInfo)
    operating_hours: List[OperatingHours] = field(default_factory=list)
    capabilities: ServiceCapabilities = field(default_factory=ServiceCapabilities)
    tips: List[Tip] = field(default_factory=list)
    photo: str = ""
    source_apis: Set[str] = field(default_factory=set)
    verified_date: Optional[datetime] = None
    last_updated: Optional[datetime] = None

    def __setattr__(self, name, value):
        if name == "unique_id" and "unique_id" in self.__dict__:
            raise AttributeError("unique_id is immutable once assigned")
        super().__setattr__(name, value)

    @property
    def coordinates(self) -> Coordinates:
        return self.location.coordinates

    def to_document(self) -> Dict[str, Any]:
        return {
            "uniqueId": self.unique_id,
            "name": self.name,
            "alternateNames": sorted(self.alternate_names),
            "institutionType": _enum_value(self.institution_type),
            "ownershipType": _enum_value(self.ownership_type),
            "location": {
                "address": _address_to_dict(self.location.address),
                "coordinates": self.location.coordinates.as_geojson(),
                "landmark": self.location.landmark,
                "neighborhood": self.location.neighborhood,
            },
            "contactInfo": _contact_to_dict(self.contact),
            "operatingHours": [_hours_to_dict(h) for h in self.operating_hours],
            "serviceCapabilities": _capabilities_to_dict(self.capabilities),
            "tips": [_tip_to_dict(t) for t in self.tips],
            "photo": self.photo,
            "sourceApis": sorted(self.source_apis),
            "verifiedDate": _isoformat(self.verified_date),
            "lastUpdated": _isoformat(self.last_updated),
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "CanonicalProvider":
        location = doc["location"]
        return cls(
            unique_id=doc["uniqueId"],
            name=doc["name"],
            location=Location(
                coordinates=Coordinates.from_geojson(location["coordinates"]),
                address=_address_from_dict(location.get("address") or {}),
                landmark=location.get("landmark") or "",
                neighborhood=location.get("neighborhood") or "",
            ),
            alternate_names=set(doc.get("alternateNames") or []),
            institution_type=_enum_or_none(InstitutionType, doc.get("institutionType")),
            ownership_type=_enum_or_none(OwnershipType, doc.get("ownershipType")),
            contact=_contact_from_dict(doc.get("contactInfo") or {}),
            operating_hours=[_hours_from_dict(h) for h in doc.get("operatingHours") or []],
            capabilities=_capabilities_from_dict(doc.get("serviceCapabilities") or {}),
            tips=[_tip_from_dict(t) for t in doc.get("tips") or []],
            photo=doc.get("photo") or "",
            source_apis=set(doc.get("sourceApis") or []),
            verified_date=_parse_datetime(doc.get("verifiedDate")),
            last_updated=_parse_datetime(doc.get("lastUpdated")),
        )


# ------------------------------------------------------------------------------
# (de)serialisation helpers
# ------------------------------------------------------------------------------
def _enum_value(value: Optional[Enum]) -> Optional[str]:
    return value.value if value is not None else None


def _enum_or_none(enum_cls, value):
    if value is None:
        return None
    return enum_cls(value)


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_datetime(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _address_to_dict(address: Address) -> Dict[str, str]:
    return {
        "streetAddress": address.street,
        "city": address.city,
        "state": address.state,
        "country": address.country,
        "postalCode": address.postal_code,
    }


def _address_from_dict(data: Dict[str, Any]) -> Address:
    return Address(
        street=data.get("streetAddress") or "",
        city=data.get("city") or "",
        state=data.get("state") or "",
        country=data.get("country") or "",
        postal_code=data.get("postalCode") or "",
    )


def _contact_to_dict(contact: ContactInfo) -> Dict[str, Any]:
    return {
        "phoneNumbers": sorted(contact.phone_numbers),
        "email": contact.email,
        "website": contact.website,
        "socialMedia": dict(sorted(contact.social_links.items())),
    }


def _contact_from_dict(data: Dict[str, Any]) -> ContactInfo:
    return ContactInfo(
        phone_numbers=set(data.get("phoneNumbers") or []),
        email=data.get("email") or "",
        website=data.get("website") or "",
        social_links=dict(data.get("socialMedia") or {}),
    )


def _hours_to_dict(hours: OperatingHours) -> Dict[str, Any]:
    return {
        "day": hours.day.value,
        "openTime": hours.open,
        "closeTime": hours.close,
        "isOpen24Hours": hours.is_24_hours,
    }


def _hours_from_dict(data: Dict[str, Any]) -> OperatingHours:
    return OperatingHours(
        day=Day(data["day"]),
        open=data.get("openTime") or "",
        close=data.get("closeTime") or "",
        is_24_hours=bool(data.get("isOpen24Hours")),
    )


def _capabilities_to_dict(capabilities: ServiceCapabilities) -> Dict[str, Any]:
    return {
        "specialties": sorted(capabilities.specialties),
        "facilities": sorted(capabilities.facilities),
        "languages": sorted(capabilities.languages),
        "accessibility": sorted(capabilities.accessibility),
        "emergencyServices": capabilities.emergency,
    }


def _capabilities_from_dict(data: Dict[str, Any]) -> ServiceCapabilities:
    return ServiceCapabilities(
        specialties=set(data.get("specialties") or []),
        facilities=set(data.get("facilities") or []),
        languages=set(data.get("languages") or []),
        accessibility=set(data.get("accessibility") or []),
        emergency=data.get("emergencyServices"),
    )


def _tip_to_dict(tip: Tip) -> Dict[str, Any]:
    return {"text": tip.text, "author": tip.author, "likes": tip.likes, "date": _isoformat(tip.date)}


def _tip_from_dict(data: Dict[str, Any]) -> Tip:
    return Tip(
        text=data.get("text") or "",
        author=data.get("author") or "",
        likes=int(data.get("likes") or 0),
        date=_parse_datetime(data.get("date")),
    )
