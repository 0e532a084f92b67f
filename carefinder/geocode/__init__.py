# carefinder/geocode/__init__.py
from .providers import (
    BaseGeocoder,
    CachingGeocoder,
    GeocodeResult,
    GoogleGeocodingClient,
    ReverseGeocodeResult,
)

__all__ = ["BaseGeocoder", "CachingGeocoder", "GeocodeResult", "GoogleGeocodingClient", "ReverseGeocodeResult"]
