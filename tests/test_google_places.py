# tests/test_google_places.py
import base64

import httpx
import pytest

from carefinder.core.errors import RateLimited
from carefinder.core.models import Day, InstitutionType
from carefinder.core.ratelimit import TokenBucket
from carefinder.discovery.base import NameQuery
from carefinder.discovery.google_places import (
    GooglePlacesAdapter,
    GooglePlacesError,
    parse_address_components,
    reviews_to_tips,
)

BASE = "https://maps.googleapis.test/maps/api/place"

SEARCH = {
    "status": "OK",
    "results": [{
        "place_id": "gp1",
        "name": "Reddington Hospital",
        "formatted_address": "12 Idowu Martins St, Ikeja, Lagos, Nigeria",
        "geometry": {"location": {"lat": 6.6045, "lng": 3.3540}},
        "types": ["hospital", "health"],
        "photos": [{"photo_reference": "ref1"}],
    }],
}

DETAILS = {
    "status": "OK",
    "result": {
        "place_id": "gp1",
        "name": "Reddington Hospital",
        "formatted_phone_number": "01 271 5341",
        "website": "https://reddingtonhospital.example",
        "address_components": [
            {"long_name": "12", "types": ["street_number"]},
            {"long_name": "Idowu Martins Street", "types": ["route"]},
            {"long_name": "Ikeja", "types": ["locality"]},
            {"long_name": "Lagos", "types": ["administrative_area_level_1"]},
            {"long_name": "Nigeria", "types": ["country"]},
        ],
        "opening_hours": {"periods": [{"open": {"day": 1, "time": "0800"}, "close": {"day": 1, "time": "1700"}}]},
        "reviews": [{"author_name": "Ada", "text": "Friendly staff", "rating": 5, "time": 1700000000}],
    },
}


def routes(details_status="OK"):
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/textsearch/json"):
            return httpx.Response(200, json=SEARCH)
        if path.endswith("/details/json"):
            if details_status != "OK":
                return httpx.Response(200, json={"status": details_status})
            return httpx.Response(200, json=DETAILS)
        if path.endswith("/photo"):
            return httpx.Response(200, content=b"\xff\xd8jpeg", headers={"content-type": "image/jpeg"})
        return httpx.Response(404)
    return handler


def test_parse_address_components():
    parts = parse_address_components(DETAILS["result"]["address_components"])
    assert parts["street_number"] == "12"
    assert parts["city"] == "Ikeja"
    assert parts["country"] == "Nigeria"
    assert parts["postal_code"] == ""


@pytest.mark.asyncio
async def test_name_search_merges_details_photo_and_reviews(mock_client):
    client = mock_client(routes())
    records = await GooglePlacesAdapter("GKEY", base_url=BASE, client=client).fetch(NameQuery("Reddington"))

    assert len(records) == 1
    record = records[0]
    assert record.unique_id == "GOOGLE_gp1"
    assert record.address.street == "12 Idowu Martins Street"
    assert record.address.state == "Lagos"
    assert record.contact.phone_numbers == {"01 271 5341"}
    assert record.institution_type == InstitutionType.HOSPITAL
    assert record.operating_hours[0].day == Day.MONDAY
    assert record.tips[0].author == "Ada" and record.tips[0].likes == 5
    assert record.photo == "data:image/jpeg;base64," + base64.b64encode(b"\xff\xd8jpeg").decode()

    assert client.requests[0].url.params["query"] == "Reddington healthcare"


@pytest.mark.asyncio
@pytest.mark.parametrize("country,expected", [("Nigeria", "Reddington healthcare Nigeria"),
                                              ("global", "Reddington healthcare"),
                                              ("", "Reddington healthcare")])
async def test_country_is_appended_unless_global(mock_client, country, expected):
    client = mock_client(routes())
    await GooglePlacesAdapter("GKEY", base_url=BASE, client=client).fetch(NameQuery("Reddington", country))
    assert client.requests[0].url.params["query"] == expected


@pytest.mark.asyncio
async def test_details_failure_falls_back_to_search_summary(mock_client):
    client = mock_client(routes(details_status="INVALID_REQUEST"))
    records = await GooglePlacesAdapter("GKEY", base_url=BASE, client=client).fetch(NameQuery("Reddington"))
    assert records[0].name == "Reddington Hospital"
    assert records[0].address.street == "12 Idowu Martins St"
    assert records[0].tips == []


@pytest.mark.asyncio
async def test_search_status_errors_are_typed(mock_client):
    denied = mock_client(lambda r: httpx.Response(200, json={"status": "REQUEST_DENIED", "error_message": "bad key"}))
    with pytest.raises(GooglePlacesError):
        await GooglePlacesAdapter("GKEY", base_url=BASE, client=denied).fetch(NameQuery("Reddington"))

    quota = mock_client(lambda r: httpx.Response(200, json={"status": "OVER_QUERY_LIMIT"}))
    with pytest.raises(RateLimited):
        await GooglePlacesAdapter("GKEY", base_url=BASE, client=quota).fetch(NameQuery("Reddington"))


@pytest.mark.asyncio
async def test_zero_results_is_an_empty_list(mock_client):
    client = mock_client(lambda r: httpx.Response(200, json={"status": "ZERO_RESULTS", "results": []}))
    assert await GooglePlacesAdapter("GKEY", base_url=BASE, client=client).fetch(NameQuery("Nothing")) == []


@pytest.mark.asyncio
async def test_bad_review_is_skipped_without_dropping_the_place(mock_client):
    details = {"status": "OK", "result": dict(DETAILS["result"], reviews=[
        {"author_name": "Bola", "text": "Long wait", "time": "yesterday"},
        "not a review",
        {"author_name": "Ada", "text": "Friendly staff", "rating": 5, "time": 1700000000},
    ])}
    base = routes()

    def handler(request):
        if request.url.path.endswith("/details/json"):
            return httpx.Response(200, json=details)
        return base(request)

    records = await GooglePlacesAdapter("GKEY", base_url=BASE, client=mock_client(handler)).fetch(NameQuery("Reddington"))
    assert len(records) == 1
    assert [t.author for t in records[0].tips] == ["Ada"]
    assert records[0].contact.phone_numbers == {"01 271 5341"}


def test_reviews_that_are_not_a_list_give_no_tips():
    assert reviews_to_tips({"text": "oops"}) == []
    assert reviews_to_tips(None) == []


@pytest.mark.asyncio
async def test_default_limiter_does_not_starve_details_of_a_full_page(mock_client, clock):
    places = [{"place_id": f"gp{i}", "name": f"Clinic {i}",
               "geometry": {"location": {"lat": 6.6 + i / 1000, "lng": 3.35}},
               "photos": [{"photo_reference": f"ref{i}"}]} for i in range(20)]

    def handler(request):
        path = request.url.path
        if path.endswith("/textsearch/json"):
            return httpx.Response(200, json={"status": "OK", "results": places})
        if path.endswith("/details/json"):
            place_id = request.url.params["place_id"]
            return httpx.Response(200, json={"status": "OK",
                                             "result": {"place_id": place_id, "formatted_phone_number": "0800"}})
        if path.endswith("/photo"):
            return httpx.Response(200, content=b"jpeg", headers={"content-type": "image/jpeg"})
        return httpx.Response(404)

    bucket = TokenBucket.per_second(10, clock=clock)
    adapter = GooglePlacesAdapter("GKEY", rate_limiter=bucket, base_url=BASE, client=mock_client(handler))
    records = await adapter.fetch(NameQuery("Clinic"))

    assert len(records) == 20
    assert all(r.contact.phone_numbers == {"0800"} for r in records)
    assert all(r.photo.startswith("data:image/jpeg") for r in records)
