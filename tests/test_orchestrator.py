# tests/test_orchestrator.py
import asyncio
import gc

import pytest

from carefinder.core.errors import InvalidInput, NotFound, UpstreamError
from carefinder.discovery.base import AreaQuery, NameQuery, SourceAdapter
from carefinder.geocode.providers import BaseGeocoder, GeocodeResult, ReverseGeocodeResult
from carefinder.search.orchestrator import SearchOrchestrator, SearchRequest, SearchState, SearchType
from carefinder.search.store import MemoryProviderStore


class FakeGeocoder(BaseGeocoder):
    def __init__(self, fail_with=None):
        self.calls = []
        self.fail_with = fail_with

    async def geocode_address(self, address):
        self.calls.append(("geocode", address))
        if self.fail_with:
            raise self.fail_with
        return GeocodeResult(6.6018, 3.3515, "Ikeja, Lagos, Nigeria", "Nigeria", "ChIJikeja")

    async def reverse_geocode(self, latitude, longitude):
        self.calls.append(("reverse", latitude, longitude))
        if self.fail_with:
            raise self.fail_with
        return ReverseGeocodeResult("Nigeria", "Ikeja, Lagos, Nigeria")


class FakeAdapter(SourceAdapter):
    def __init__(self, name, records=None, error=None, delay=0.0, started=None):
        self.name = name
        self.records = records or []
        self.error = error
        self.delay = delay
        self.started = started
        self.queries = []

    async def fetch(self, query):
        self.queries.append(query)
        if self.started is not None:
            self.started.set()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return list(self.records)


def orchestrator(area=(), name=(), geocoder=None, store=None, **kwargs):
    return SearchOrchestrator(geocoder or FakeGeocoder(), list(area), list(name), store=store, **kwargs)


# -------------------------
# Validation
# -------------------------
@pytest.mark.parametrize("data", [
    {},
    {"address": "Ikeja", "name": "Reddington"},
    {"latitude": 6.6, "longitude": 3.35, "name": "Reddington"},
    {"latitude": 6.6},
    {"latitude": 91, "longitude": 0},
    {"latitude": 0, "longitude": 181},
    {"address": "   "},
    {"name": ""},
])
def test_invalid_requests_are_rejected(data):
    with pytest.raises(InvalidInput):
        SearchRequest.from_mapping(data).validate()


def test_request_modes():
    assert SearchRequest.from_mapping({"lat": 6.6, "lon": 3.35}).validate() is SearchType.LOCATION
    assert SearchRequest.from_mapping({"address": "Ikeja"}).validate() is SearchType.ADDRESS
    assert SearchRequest.from_mapping({"name": "Reddington"}).validate() is SearchType.NAME


@pytest.mark.asyncio
async def test_validation_happens_before_any_external_call():
    geocoder = FakeGeocoder()
    adapter = FakeAdapter("OpenStreetMap")
    with pytest.raises(InvalidInput):
        await orchestrator([adapter], geocoder=geocoder).search(SearchRequest(address="Ikeja", name="Reddington"))
    assert geocoder.calls == [] and adapter.queries == []


# -------------------------
# Scenarios
# -------------------------
@pytest.mark.asyncio
async def test_location_search_merges_same_facility_from_two_sources(make_record):
    osm = FakeAdapter("OpenStreetMap", [make_record("Ikeja General Hospital", 6.6101, 3.3560)])
    fsq = FakeAdapter("Foursquare", [make_record("Ikeja General Hospital", 6.61012, 3.35598,
                                                 source="Foursquare", source_id="fsq1")])
    store = MemoryProviderStore()
    result = await orchestrator([osm, fsq], store=store).search(SearchRequest(latitude=6.60, longitude=3.35))

    assert len(result.providers) == 1
    assert result.providers[0].source_apis == {"OpenStreetMap", "Foursquare"}
    assert result.search_type is SearchType.LOCATION
    assert result.search_location["country"] == "Nigeria"
    assert osm.queries[0] == AreaQuery(osm.queries[0].center, 10, "Nigeria")
    assert result.states == [SearchState.IDLE, SearchState.VALIDATING, SearchState.RESOLVING, SearchState.FETCHING,
                             SearchState.MERGING, SearchState.RANKING, SearchState.PERSISTING, SearchState.DONE]
    assert 0 < result.distances[result.providers[0].unique_id] < 2
    assert store.count("default") == 1

    doc = result.to_dict()
    assert doc["searchType"] == "location"
    assert doc["metadata"]["totalResults"] == 1
    assert doc["metadata"]["searchLocation"]["latitude"] == 6.60
    assert doc["providers"][0]["sourceApis"] == ["Foursquare", "OpenStreetMap"]


@pytest.mark.asyncio
async def test_no_results_is_not_an_error():
    result = await orchestrator([FakeAdapter("OpenStreetMap"), FakeAdapter("Foursquare")]).search(
        SearchRequest(latitude=6.6, longitude=3.35))
    assert result.providers == []
    assert result.to_dict()["metadata"]["totalResults"] == 0
    assert result.failed_sources == []


@pytest.mark.asyncio
async def test_partial_failure_keeps_other_sources(make_record):
    records = [make_record(f"Clinic {i}", 6.60 + i * 0.001, 3.35, source="Foursquare", source_id=str(i)) for i in range(3)]
    broken = FakeAdapter("OpenStreetMap", error=UpstreamError("connection reset", source="OpenStreetMap"))
    result = await orchestrator([broken, FakeAdapter("Foursquare", records)]).search(
        SearchRequest(latitude=6.6, longitude=3.35))
    assert len(result.providers) == 3
    assert result.failed_sources == ["OpenStreetMap"]


@pytest.mark.asyncio
async def test_unexpected_adapter_exception_is_contained(make_record):
    broken = FakeAdapter("OpenStreetMap", error=KeyError("elements"))
    result = await orchestrator([broken, FakeAdapter("Foursquare", [make_record()])]).search(
        SearchRequest(latitude=6.45, longitude=3.39))
    assert len(result.providers) == 1
    assert result.failed_sources == ["OpenStreetMap"]


@pytest.mark.asyncio
async def test_slow_source_times_out_without_sinking_search(make_record):
    slow = FakeAdapter("OpenStreetMap", [make_record()], delay=5)
    fast = FakeAdapter("Foursquare", [make_record("Other Clinic", source="Foursquare", source_id="f")])
    result = await orchestrator([slow, fast], source_timeout=0.05).search(SearchRequest(latitude=6.45, longitude=3.39))
    assert [p.name for p in result.providers] == ["Other Clinic"]
    assert result.failed_sources == ["OpenStreetMap"]


@pytest.mark.asyncio
async def test_all_sources_failing_can_be_escalated():
    adapters = [FakeAdapter("OpenStreetMap", error=UpstreamError("down")),
                FakeAdapter("Foursquare", error=UpstreamError("down"))]
    relaxed = await orchestrator(adapters).search(SearchRequest(latitude=6.6, longitude=3.35))
    assert relaxed.providers == [] and relaxed.failed_sources == ["OpenStreetMap", "Foursquare"]

    with pytest.raises(UpstreamError):
        await orchestrator(adapters, fail_when_all_sources_fail=True).search(SearchRequest(latitude=6.6, longitude=3.35))


@pytest.mark.asyncio
async def test_results_outside_radius_are_dropped_and_sorted(make_record):
    records = [make_record("Far", 6.68, 3.35, source_id="1"), make_record("Near", 6.601, 3.35, source_id="2"),
               make_record("Outside", 6.80, 3.35, source_id="3")]
    result = await orchestrator([FakeAdapter("OpenStreetMap", records)]).search(SearchRequest(latitude=6.6, longitude=3.35))
    assert [p.name for p in result.providers] == ["Near", "Far"]


@pytest.mark.asyncio
async def test_geocoding_failure_escalates():
    adapter = FakeAdapter("OpenStreetMap")
    o = orchestrator([adapter], geocoder=FakeGeocoder(fail_with=NotFound("no results")))
    with pytest.raises(NotFound):
        await o.search(SearchRequest(address="Atlantis"))
    assert adapter.queries == []


@pytest.mark.asyncio
async def test_address_search_uses_geocoded_centre(make_record):
    adapter = FakeAdapter("OpenStreetMap", [make_record("Ikeja Clinic", 6.6020, 3.3517)])
    result = await orchestrator([adapter]).search(SearchRequest(address="Ikeja, Lagos"))
    assert adapter.queries[0].center.latitude == 6.6018
    assert result.search_location["formattedAddress"] == "Ikeja, Lagos, Nigeria"
    assert result.search_type is SearchType.ADDRESS


@pytest.mark.asyncio
async def test_name_search_skips_geocoding_and_ranking(make_record):
    geocoder = FakeGeocoder()
    places = FakeAdapter("GooglePlaces", [make_record("Reddington Hospital", 6.6, 3.35, source="GooglePlaces", source_id="a"),
                                          make_record("Reddington Hospital", 9.0, 7.4, source="GooglePlaces", source_id="b")])
    area = FakeAdapter("OpenStreetMap")
    result = await orchestrator([area], [places], geocoder=geocoder).search(SearchRequest(name=" Reddington "))
    assert geocoder.calls == [] and area.queries == []
    assert places.queries == [NameQuery("Reddington")]
    assert len(result.providers) == 2
    assert SearchState.RESOLVING not in result.states
    assert "searchLocation" not in result.to_dict()["metadata"]


# -------------------------
# Persistence
# -------------------------
@pytest.mark.asyncio
async def test_location_search_replaces_scope_but_name_search_accumulates(make_record):
    store = MemoryProviderStore()
    first = FakeAdapter("OpenStreetMap", [make_record("A", 6.6, 3.35, source_id="a")])
    o = orchestrator([first], [FakeAdapter("GooglePlaces", [make_record("N", 6.6, 3.36, source="GooglePlaces", source_id="n")])],
                     store=store)
    await o.search(SearchRequest(latitude=6.6, longitude=3.35), scope="s1")
    await o.search(SearchRequest(name="N"), scope="s1")
    assert store.count("s1") == 2

    first.records = [make_record("B", 6.6, 3.35, source_id="b")]
    await o.search(SearchRequest(latitude=6.6, longitude=3.35), scope="s1")
    assert store.count("s1") == 1
    assert await store.get("OSM_b", scope="s1") is not None


@pytest.mark.asyncio
async def test_scopes_do_not_clobber_each_other(make_record):
    store = MemoryProviderStore()
    o = orchestrator([FakeAdapter("OpenStreetMap", [make_record()])], store=store)
    await asyncio.gather(o.search(SearchRequest(latitude=6.45, longitude=3.39), scope="alice"),
                         o.search(SearchRequest(latitude=6.45, longitude=3.39), scope="bob"))
    assert store.count("alice") == 1 and store.count("bob") == 1


@pytest.mark.asyncio
async def test_scope_locks_are_released_after_searches(make_record):
    o = orchestrator([FakeAdapter("OpenStreetMap", [make_record()])], store=MemoryProviderStore())
    held = o._scope_lock("busy")
    assert o._scope_lock("busy") is held

    await asyncio.gather(*(o.search(SearchRequest(latitude=6.45, longitude=3.39), scope=f"session-{i}")
                           for i in range(50)))
    gc.collect()
    assert list(o._scope_locks) == ["busy"]

    del held
    gc.collect()
    assert len(o._scope_locks) == 0


@pytest.mark.asyncio
async def test_cancellation_skips_persistence(make_record):
    store = MemoryProviderStore()
    previous = make_record("Previous", source_id="old")
    await store.upsert_many("s1", orchestrator().resolver.resolve([previous]))

    started = asyncio.Event()
    adapter = FakeAdapter("OpenStreetMap", [make_record()], delay=5, started=started)
    task = asyncio.create_task(orchestrator([adapter], store=store).search(SearchRequest(latitude=6.45, longitude=3.39), scope="s1"))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert store.count("s1") == 1
    assert await store.get("OSM_old", scope="s1") is not None


@pytest.mark.asyncio
async def test_geocoding_pass_throughs():
    o = orchestrator()
    assert (await o.geocode_address("Ikeja")).country == "Nigeria"
    assert (await o.reverse_geocode(6.6, 3.35)).formatted_address == "Ikeja, Lagos, Nigeria"


@pytest.mark.asyncio
async def test_aclose_awaits_registered_closers_once():
    closed = []

    async def close_store():
        closed.append("store")

    async def close_client():
        closed.append("client")

    o = SearchOrchestrator(FakeGeocoder(), [], [], closers=[close_store])
    o.add_closer(close_client)
    await o.aclose()
    await o.aclose()
    assert closed == ["store", "client"]
