"""Error taxonomy shared by every layer of the engine.

Outer layers (HTTP handlers, the CLI) translate these into responses using
``http_status``; nothing inside the core depends on that mapping.
"""
from typing import Optional


class CareFinderError(RuntimeError):
    http_status = 500


class InvalidInput(CareFinderError):
    """Malformed or missing request fields. Never retried."""

    http_status = 400


class NotFound(CareFinderError):
    """An authoritative lookup (geocoding) returned zero results."""

    http_status = 404


class RateLimited(CareFinderError):
    """Local token bucket or upstream quota exhausted. Safe to retry later."""

    http_status = 429


class UpstreamError(CareFinderError):
    """Transport or HTTP failure talking to a third-party API."""

    http_status = 502

    def __init__(self, message: str, source: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.source = source
        self.status_code = status_code

    def __str__(self):
        base = super().__str__()
        if self.status_code is not None:
            return f"{base} (status={self.status_code})"
        return base


class ConfigurationError(CareFinderError):
    """A required credential or setting is missing. Fatal at startup."""


class CacheError(CareFinderError):
    pass
