"""Lookup tables from source vocabularies to the canonical enumerations."""
from typing import Dict, Iterable, Optional, Set

from carefinder.core.models import (
    DEFAULT_INSTITUTION_TYPE,
    DEFAULT_OWNERSHIP_TYPE,
    InstitutionType,
    OwnershipType,
)

# OSM `healthcare=*` and `amenity=*` values
OSM_INSTITUTION_TYPES: Dict[str, InstitutionType] = {
    "hospital": InstitutionType.HOSPITAL,
    "clinic": InstitutionType.CLINIC,
    "doctor": InstitutionType.CLINIC,
    "doctors": InstitutionType.CLINIC,
    "centre": InstitutionType.MEDICAL_CENTER,
    "medical": InstitutionType.MEDICAL_CENTER,
    "laboratory": InstitutionType.DIAGNOSTIC_CENTER,
    "sample_collection": InstitutionType.DIAGNOSTIC_CENTER,
    "blood_donation": InstitutionType.DIAGNOSTIC_CENTER,
    "emergency": InstitutionType.EMERGENCY_CARE,
    "dentist": InstitutionType.SPECIALIZED_CARE,
    "physiotherapist": InstitutionType.SPECIALIZED_CARE,
    "optometrist": InstitutionType.SPECIALIZED_CARE,
    "rehabilitation": InstitutionType.SPECIALIZED_CARE,
    "dialysis": InstitutionType.SPECIALIZED_CARE,
    "birthing_centre": InstitutionType.SPECIALIZED_CARE,
    "pharmacy": InstitutionType.PHARMACY,
}

# OSM `operator:type=*`
OSM_OWNERSHIP_TYPES: Dict[str, OwnershipType] = {
    "public": OwnershipType.PUBLIC,
    "private": OwnershipType.PRIVATE,
    "government": OwnershipType.GOVERNMENT,
    "military": OwnershipType.GOVERNMENT,
    "community": OwnershipType.NON_PROFIT,
    "non_profit": OwnershipType.NON_PROFIT,
    "ngo": OwnershipType.NON_PROFIT,
    "charity": OwnershipType.CHARITABLE,
    "charitable": OwnershipType.CHARITABLE,
    "religious": OwnershipType.CHARITABLE,
}

# Foursquare category names, matched as lower-cased substrings
FOURSQUARE_CATEGORY_TYPES: Dict[str, InstitutionType] = {
    "hospital": InstitutionType.HOSPITAL,
    "emergency": InstitutionType.EMERGENCY_CARE,
    "urgent care": InstitutionType.EMERGENCY_CARE,
    "medical center": InstitutionType.MEDICAL_CENTER,
    "medical lab": InstitutionType.DIAGNOSTIC_CENTER,
    "diagnostic": InstitutionType.DIAGNOSTIC_CENTER,
    "imaging": InstitutionType.DIAGNOSTIC_CENTER,
    "doctor": InstitutionType.CLINIC,
    "clinic": InstitutionType.CLINIC,
    "dentist": InstitutionType.SPECIALIZED_CARE,
    "physical therap": InstitutionType.SPECIALIZED_CARE,
    "optometrist": InstitutionType.SPECIALIZED_CARE,
    "pharmacy": InstitutionType.PHARMACY,
}

# Google Places `types`
GOOGLE_PLACE_TYPES: Dict[str, InstitutionType] = {
    "hospital": InstitutionType.HOSPITAL,
    "doctor": InstitutionType.CLINIC,
    "health": InstitutionType.MEDICAL_CENTER,
    "medical_center": InstitutionType.MEDICAL_CENTER,
    "emergency_room": InstitutionType.EMERGENCY_CARE,
    "dentist": InstitutionType.SPECIALIZED_CARE,
    "physiotherapist": InstitutionType.SPECIALIZED_CARE,
    "pharmacy": InstitutionType.PHARMACY,
    "drugstore": InstitutionType.PHARMACY,
}

SPECIALTIES_BY_KEYWORD: Dict[str, str] = {
    "dentist": "Dental Care",
    "dental": "Dental Care",
    "physiotherapist": "Physical Therapy",
    "physical therap": "Physical Therapy",
    "doctor": "General Practice",
    "general": "General Practice",
    "hospital": "General Medicine",
    "emergency": "Emergency Medicine",
    "paediatric": "Paediatrics",
    "pediatric": "Paediatrics",
    "gynaecolog": "Obstetrics & Gynaecology",
    "obstetric": "Obstetrics & Gynaecology",
    "optometrist": "Eye Care",
    "ophthalmolog": "Eye Care",
    "cardiolog": "Cardiology",
    "dialysis": "Nephrology",
}


def map_institution_type(value: Optional[str], table: Dict[str, InstitutionType]) -> Optional[InstitutionType]:
    """Exact lookup; unknown non-empty values map to the fallback, absent ones to None."""
    if not value:
        return None
    return table.get(value.strip().lower(), DEFAULT_INSTITUTION_TYPE)


def map_first_institution_type(values: Iterable[str], table: Dict[str, InstitutionType]) -> Optional[InstitutionType]:
    values = [v for v in values or [] if v]
    if not values:
        return None
    for value in values:
        mapped = table.get(value.strip().lower())
        if mapped:
            return mapped
    return DEFAULT_INSTITUTION_TYPE


def match_institution_type(labels: Iterable[str], table: Dict[str, InstitutionType]) -> Optional[InstitutionType]:
    """Substring match for free-text category labels (Foursquare)."""
    labels = [l.lower() for l in labels or [] if l]
    if not labels:
        return None
    for label in labels:
        for keyword, institution in table.items():
            if keyword in label:
                return institution
    return DEFAULT_INSTITUTION_TYPE


def map_ownership_type(value: Optional[str], table: Dict[str, OwnershipType]) -> Optional[OwnershipType]:
    if not value:
        return None
    return table.get(value.strip().lower(), DEFAULT_OWNERSHIP_TYPE)


def infer_specialties(labels: Iterable[str]) -> Set[str]:
    found = set()
    for label in labels or []:
        label = label.lower()
        for keyword, specialty in SPECIALTIES_BY_KEYWORD.items():
            if keyword in label:
                found.add(specialty)
    return found
