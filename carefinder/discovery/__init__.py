from .base import AreaQuery, CachingSourceAdapter, NameQuery, SourceAdapter
from .foursquare import FoursquareAdapter
from .google_places import GooglePlacesAdapter
from .overpass import OverpassAdapter

__all__ = [
    "AreaQuery",
    "CachingSourceAdapter",
    "FoursquareAdapter",
    "GooglePlacesAdapter",
    "NameQuery",
    "OverpassAdapter",
    "SourceAdapter",
]
