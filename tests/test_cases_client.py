import asyncio
from datetime import date

import pytest
from aiohttp import web

from casemap.cases.client import Case, CaseStatus, CasesClient, CasesClientConfig
from casemap.errors import CaseFetchError
from casemap.provider.base import LatLng

from conftest import html_handler, start_case_api, slow_handler


def test_filters_map_to_query_parameters():
    client = CasesClient()
    params = client.build_params({"search": "ksar", "status": "missing", "age_min": 5, "gender": ""}, page=2)
    assert params == {"page": "2", "name_or_location": "ksar", "status": "missing", "age_min": "5"}


def test_case_parsing_tolerates_bad_data():
    case = Case.from_dict({
        "id": 7,
        "first_name": "Aminata",
        "last_name": None,
        "status": "UNDER_INVESTIGATION",
        "latitude": "18.07",
        "longitude": -15.95,
        "last_seen_date": "2024-03-01T10:00:00Z",
        "reporter": "family",
    })
    assert case.full_name == "Aminata"
    assert case.status == CaseStatus.UNDER_INVESTIGATION
    assert case.location == LatLng(18.07, -15.95)
    assert case.last_seen_date == date(2024, 3, 1)
    assert case.extra == {"reporter": "family"}

    assert Case.from_dict({"id": 8, "latitude": "abc", "longitude": 1}).location is None
    assert Case.from_dict({"id": 9, "latitude": True, "longitude": 1}).location is None
    assert CaseStatus.from_value("closed") == CaseStatus.UNKNOWN


def test_page_accepts_list_or_envelope():
    client = CasesClient()
    bare = client._parse_page([{"id": 1}, {"id": 2}, {"no_id": True}])
    assert [c.id for c in bare.results] == [1, 2]
    assert bare.next is None

    envelope = client._parse_page({"results": [{"id": 3}], "count": 40, "next": "http://x/?page=2"})
    assert envelope.count == 40
    assert envelope.next == "http://x/?page=2"

    assert client._parse_page(None).results == []


def test_fetch_all_follows_next_links(monkeypatch):
    client = CasesClient(CasesClientConfig(base_url="http://cases.local", max_pages=3))
    pages = {
        "http://cases.local/api/cases/": {"results": [{"id": 1}], "count": 4, "next": "p2"},
        "p2": {"results": [{"id": 2}], "count": 4, "next": "p3"},
        "p3": {"results": [{"id": 3}], "count": 4, "next": "p4"},
        "p4": {"results": [{"id": 4}], "count": 4, "next": None},
    }
    requested = []

    async def fake_request(url, params=None):
        requested.append(url)
        return pages[url]

    monkeypatch.setattr(client, "_request", fake_request)

    page = asyncio.run(client.fetch_all_cases({"status": "missing"}))

    assert [c.id for c in page.results] == [1, 2, 3]
    assert page.count == 4
    assert requested == ["http://cases.local/api/cases/", "p2", "p3"]


def test_search_uses_name_or_location(monkeypatch):
    client = CasesClient()
    seen = {}

    async def fake_request(url, params=None):
        seen.update(params)
        return [{"id": 5, "latitude": 1, "longitude": 2}]

    monkeypatch.setattr(client, "_request", fake_request)

    results = asyncio.run(client.search_cases("atar"))

    assert seen["name_or_location"] == "atar"
    assert results[0].id == 5


def test_errors_propagate(monkeypatch):
    client = CasesClient()

    async def failing(url, params=None):
        raise CaseFetchError("Case API error: HTTP 500")

    monkeypatch.setattr(client, "_request", failing)

    with pytest.raises(CaseFetchError):
        asyncio.run(client.fetch_all_cases())


def _fetch_from(handler, timeout_sec=5.0):
    async def run():
        server = await start_case_api(handler)
        client = CasesClient(CasesClientConfig(base_url=str(server.make_url("")), timeout_sec=timeout_sec))
        try:
            return await client.fetch_all_cases()
        finally:
            await client.close()
            await server.close()

    return asyncio.run(run())


def test_timeout_becomes_case_fetch_error():
    with pytest.raises(CaseFetchError, match="timed out"):
        _fetch_from(slow_handler, timeout_sec=0.1)


def test_non_json_body_becomes_case_fetch_error():
    with pytest.raises(CaseFetchError, match="invalid JSON"):
        _fetch_from(html_handler)


def test_unexpected_payload_shape_is_rejected():
    async def scalar_handler(request):
        return web.json_response("maintenance")

    with pytest.raises(CaseFetchError, match="Unexpected case list payload"):
        _fetch_from(scalar_handler)


def test_real_server_round_trip():
    async def handler(request):
        assert request.query["page"] == "1"
        return web.json_response({"results": [{"id": 11, "latitude": 18.1, "longitude": -15.9}], "count": 1, "next": None})

    page = _fetch_from(handler)

    assert [c.id for c in page.results] == [11]
    assert page.results[0].location == LatLng(18.1, -15.9)
