import asyncio

import pytest

from casemap.errors import CaseFetchError
from casemap.view.search import SearchController, case_matches
from casemap.view.viewport import ViewportFitter

from conftest import FakeCasesClient, make_case

QUIET = 0.05


def test_local_match_is_case_insensitive(spread_cases):
    assert case_matches(spread_cases[0], "DIALLO")
    assert case_matches(spread_cases[1], "ksar")
    assert not case_matches(spread_cases[0], "   ")


def test_keystrokes_within_quiet_period_execute_once(spread_cases):
    search = SearchController(FakeCasesClient(), quiet_period=QUIET)
    search.set_cases(spread_cases)

    async def run():
        for text in ("m", "mo", "mou", "mous", "moussa"):
            search.on_input(text)
            await asyncio.sleep(QUIET / 5)
        await asyncio.sleep(QUIET * 3)

    asyncio.run(run())

    assert search.execution_count == 1
    assert [c.id for c in search.results] == [1]


def test_local_results_skip_remote_search(spread_cases):
    client = FakeCasesClient()
    search = SearchController(client, quiet_period=QUIET)
    search.set_cases(spread_cases)

    results = asyncio.run(search.query("kane"))

    assert [c.id for c in results] == [3]
    assert client.search_calls == []


def test_remote_results_without_location_are_dropped():
    client = FakeCasesClient()
    client.remote["atar"] = [
        make_case(20, lat=20.5, lng=-13.05, location="Atar"),
        make_case(21, lat="abc", lng=None, location="Atar"),
    ]
    search = SearchController(client, quiet_period=QUIET)

    results = asyncio.run(search.query("atar"))

    assert [c.id for c in results] == [20]
    assert client.search_calls == ["atar"]


def test_stale_results_are_discarded():
    client = FakeCasesClient()
    client.remote["a"] = [make_case(30, first_name="A-result")]
    client.remote["ab"] = [make_case(31, first_name="AB-result")]
    search = SearchController(client, quiet_period=QUIET)

    async def run():
        gate = asyncio.Event()
        client.search_gates["a"] = gate

        search.on_input("a")
        await asyncio.sleep(QUIET * 2)        # "a" dispatched, waiting on the gate
        search.on_input("ab")
        await asyncio.sleep(QUIET * 2)        # "ab" dispatched and applied
        gate.set()                            # "a" resolves last
        await asyncio.sleep(QUIET)

    asyncio.run(run())

    assert client.search_calls == ["a", "ab"]
    assert [c.id for c in search.results] == [31]
    assert search.execution_count == 2


def test_remote_failure_surfaces_error():
    client = FakeCasesClient()
    client.search_fail = True
    search = SearchController(client, quiet_period=QUIET)

    with pytest.raises(CaseFetchError):
        asyncio.run(search.query("zzz"))
    assert search.error
    assert not search.searching


def test_blank_input_clears_results(spread_cases):
    search = SearchController(FakeCasesClient(), quiet_period=QUIET)
    search.set_cases(spread_cases)

    async def run():
        await search.query("sall")
        assert search.results
        return await search.query("  ")

    assert asyncio.run(run()) == []
    assert search.results == []


def test_results_ignored_when_view_inactive(spread_cases):
    active = {"value": True}
    search = SearchController(FakeCasesClient(), quiet_period=QUIET, is_active=lambda: active["value"])
    search.set_cases(spread_cases)

    async def run():
        search.on_input("sall")
        active["value"] = False
        await asyncio.sleep(QUIET * 3)

    asyncio.run(run())

    assert search.results == []


def test_select_centres_map_at_detail_zoom(scene_map, case_seven):
    search = SearchController(FakeCasesClient(), detail_zoom=16)
    search.bind(ViewportFitter(scene_map))

    search.select(case_seven)

    assert scene_map.get_center() == case_seven.location
    assert scene_map.get_zoom() == 16
    assert search.selected is case_seven


def test_selecting_unlocated_case_keeps_camera(scene_map):
    search = SearchController(FakeCasesClient())
    search.bind(ViewportFitter(scene_map))
    before = (scene_map.get_center(), scene_map.get_zoom())

    search.select(make_case(8, lat="abc", lng=None))

    assert (scene_map.get_center(), scene_map.get_zoom()) == before
