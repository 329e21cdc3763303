"""Shared fakes: a counting map provider and an in-memory case API."""

import asyncio
from datetime import date
from typing import Any, Dict, List, Optional

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from casemap.cases.client import Case, CasePage
from casemap.errors import CaseFetchError, ProviderLoadError
from casemap.provider.base import DEFAULT_LIBRARIES, LatLng, MapProvider
from casemap.provider.scene import SceneProviderHandle


def make_case(
    case_id,
    lat=18.07,
    lng=-15.95,
    status="missing",
    first_name="Aminata",
    last_name="Ba",
    location="Nouakchott",
    last_seen: Optional[date] = None,
    photo: Optional[str] = None,
) -> Case:
    return Case.from_dict({
        "id": case_id,
        "first_name": first_name,
        "last_name": last_name,
        "status": status,
        "latitude": lat,
        "longitude": lng,
        "last_seen_location": location,
        "last_seen_date": last_seen.isoformat() if last_seen else None,
        "photo": photo,
    })


async def start_case_api(handler) -> TestServer:
    """Serve handler at /api/cases/ on a local port."""
    app = web.Application()
    app.router.add_get("/api/cases/", handler)
    server = TestServer(app)
    await server.start_server()
    return server


async def slow_handler(request):
    await asyncio.sleep(1.0)
    return web.json_response([])


async def html_handler(request):
    return web.Response(text="<html><body>Bad gateway</body></html>", content_type="text/html")


class FakeProvider(MapProvider):
    """Counts loads; can fail a number of times or wait on a gate."""

    def __init__(self, libraries=DEFAULT_LIBRARIES, failures: int = 0, delay: float = 0.0):
        self.libraries = tuple(libraries)
        self.failures = failures
        self.delay = delay
        self.gate: Optional[asyncio.Event] = None
        self.loads = 0
        self.handles: List[SceneProviderHandle] = []

    async def load(self, api_key, libraries):
        self.loads += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.gate is not None:
            await self.gate.wait()
        if self.failures > 0:
            self.failures -= 1
            raise ProviderLoadError("script request failed")
        handle = SceneProviderHandle(libraries=self.libraries)
        self.handles.append(handle)
        return handle


class FakeCasesClient:
    """In-memory stand-in for CasesClient."""

    def __init__(self, cases: Optional[List[Case]] = None):
        self.cases: List[Case] = list(cases or [])
        self.fail = False
        self.fetch_delays: List[float] = []
        self.fetch_results: List[List[Case]] = []
        self.fetch_calls: List[Dict[str, Any]] = []

        self.remote: Dict[str, List[Case]] = {}
        self.search_gates: Dict[str, asyncio.Event] = {}
        self.search_fail = False
        self.search_calls: List[str] = []
        self.closed = False

    async def fetch_all_cases(self, filters=None) -> CasePage:
        self.fetch_calls.append(dict(filters or {}))
        delay = self.fetch_delays.pop(0) if self.fetch_delays else 0.0
        results = self.fetch_results.pop(0) if self.fetch_results else list(self.cases)
        if delay:
            await asyncio.sleep(delay)
        if self.fail:
            raise CaseFetchError("Case API error: HTTP 500")
        return CasePage(results=results, count=len(results))

    async def search_cases(self, query: str) -> List[Case]:
        self.search_calls.append(query)
        gate = self.search_gates.get(query)
        if gate is not None:
            await gate.wait()
        if self.search_fail:
            raise CaseFetchError("Case API error: HTTP 502")
        return list(self.remote.get(query, []))

    async def close(self):
        self.closed = True


@pytest.fixture
def case_seven():
    return make_case(7, lat=18.07, lng=-15.95)


@pytest.fixture
def spread_cases():
    return [
        make_case(1, lat=18.05, lng=-15.98, first_name="Moussa", last_name="Diallo", location="Tevragh Zeina"),
        make_case(2, lat=18.10, lng=-15.93, status="found", first_name="Fatimetou", last_name="Sall", location="Ksar"),
        make_case(3, lat=18.08, lng=-15.96, status="under_investigation", first_name="Oumar", last_name="Kane", location="Sebkha"),
    ]


@pytest.fixture
def scene_map():
    handle = SceneProviderHandle(libraries=DEFAULT_LIBRARIES)
    return handle.create_map("case-map", {"center": LatLng(0.0, 0.0), "zoom": 3})
