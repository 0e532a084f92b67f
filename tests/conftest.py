# tests/conftest.py
import sys
from pathlib import Path

import httpx
import pytest

# add repo root to sys.path so tests can import the "carefinder" package
repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from carefinder.core.models import (  # noqa: E402
    Address,
    ContactInfo,
    Coordinates,
    RawProviderRecord,
    ServiceCapabilities,
)


class FakeClock:
    """Manually advanced clock for TTL and token-bucket tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_record():
    def _make(name="Lagos Island General Hospital", lat=6.4550, lon=3.3941, source="OpenStreetMap",
              source_id="node_1", **fields):
        prefix = {"OpenStreetMap": "OSM", "Foursquare": "FSQ", "GooglePlaces": "GOOGLE"}.get(source, "SRC")
        fields.setdefault("address", Address())
        fields.setdefault("contact", ContactInfo())
        fields.setdefault("capabilities", ServiceCapabilities())
        return RawProviderRecord(
            source=source,
            source_id=source_id,
            unique_id=f"{prefix}_{source_id}",
            name=name,
            coordinates=Coordinates(latitude=lat, longitude=lon),
            **fields,
        )

    return _make


@pytest.fixture
def mock_client():
    """Build an AsyncClient whose requests are answered by ``handler``; records every request."""

    def _build(handler):
        seen = []

        def _recording(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return handler(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(_recording))
        client.requests = seen
        return client

    return _build
