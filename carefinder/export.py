from typing import Dict, Iterable, List, Optional

import pandas as pd

from carefinder.core.models import CanonicalProvider

COLUMNS = [
    "uniqueId", "name", "institutionType", "ownershipType", "latitude", "longitude", "distanceKm",
    "street", "city", "state", "country", "postalCode", "phoneNumbers", "email", "website",
    "specialties", "emergency", "sourceApis",
]


def flatten_provider(provider: CanonicalProvider, distance_km: Optional[float] = None) -> Dict[str, object]:
    address = provider.location.address
    return {
        "uniqueId": provider.unique_id,
        "name": provider.name,
        "institutionType": provider.institution_type.value if provider.institution_type else "",
        "ownershipType": provider.ownership_type.value if provider.ownership_type else "",
        "latitude": provider.coordinates.latitude,
        "longitude": provider.coordinates.longitude,
        "distanceKm": distance_km,
        "street": address.street,
        "city": address.city,
        "state": address.state,
        "country": address.country,
        "postalCode": address.postal_code,
        "phoneNumbers": "; ".join(sorted(provider.contact.phone_numbers)),
        "email": provider.contact.email,
        "website": provider.contact.website,
        "specialties": "; ".join(sorted(provider.capabilities.specialties)),
        "emergency": provider.capabilities.emergency,
        "sourceApis": "; ".join(sorted(provider.source_apis)),
    }


def providers_frame(providers: Iterable[CanonicalProvider], distances: Optional[Dict[str, float]] = None) -> pd.DataFrame:
    distances = distances or {}
    rows: List[Dict[str, object]] = [flatten_provider(p, distances.get(p.unique_id)) for p in providers]
    return pd.DataFrame(rows, columns=COLUMNS)


def export_csv(providers, path="providers.csv", distances=None):
    providers_frame(providers, distances).to_csv(path, index=False)
    return path
