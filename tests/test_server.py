import pytest
from fastapi.testclient import TestClient

from casemap.api.server import create_app
from casemap.app import API_KEY_ENV, CaseMapApp

from conftest import FakeCasesClient, FakeProvider, make_case


def build_app(cases, api_key="test-key"):
    map_app = CaseMapApp(config={
        "maps": {"api_key": api_key, "search_quiet_period_sec": 0.01},
        "web": {"port": 8080},
    })
    provider = FakeProvider()
    client = FakeCasesClient(cases)
    map_app.initialize(provider=provider, cases_client=client)
    return map_app, provider, client


@pytest.fixture(autouse=True)
def no_env_key(monkeypatch):
    monkeypatch.delenv(API_KEY_ENV, raising=False)


def test_state_after_startup(spread_cases):
    map_app, provider, _ = build_app(spread_cases)

    with TestClient(create_app(map_app)) as client:
        state = client.get("/api/map/state").json()

    assert state["state"] == "ready"
    assert len(state["markers"]) == 3
    assert provider.loads == 1


def test_shutdown_closes_sessions(spread_cases):
    map_app, _, cases_client = build_app(spread_cases)

    with TestClient(create_app(map_app)):
        pass

    assert cases_client.closed
    assert not map_app.view.is_active


def test_index_page_served(spread_cases):
    map_app, _, _ = build_app(spread_cases)
    with TestClient(create_app(map_app)) as client:
        r = client.get("/")
    assert r.status_code == 200
    assert "case-map" in r.text
    assert "innerHTML = `" not in r.text
    assert "textContent" in r.text


def test_config_exposes_map_settings(spread_cases):
    map_app, _, _ = build_app(spread_cases)
    with TestClient(create_app(map_app)) as client:
        config = client.get("/api/config").json()
    assert config["maps"]["api_key"] == "test-key"
    assert config["maps"]["default_zoom"] == 13


def test_missing_key_reports_configuration_error(spread_cases):
    map_app, provider, _ = build_app(spread_cases, api_key="")

    with TestClient(create_app(map_app)) as client:
        state = client.get("/api/map/state").json()
        retry = client.post("/api/map/retry").json()

    assert state["state"] == "failed"
    assert state["error"]["kind"] == "configuration"
    assert state["error"]["retryable"] is False
    assert retry["status"] == "error"
    assert provider.loads == 0


def test_environment_key_overrides_file(monkeypatch, spread_cases):
    monkeypatch.setenv(API_KEY_ENV, "env-key")
    map_app, _, _ = build_app(spread_cases, api_key="")
    assert map_app.map_config().api_key == "env-key"


def test_filters_round_trip(spread_cases):
    map_app, _, cases_client = build_app(spread_cases)

    with TestClient(create_app(map_app)) as client:
        r = client.post("/api/map/filters", json={"status": "missing", "age_min": 10})
        assert r.status_code == 200
        assert r.json()["state"]["filters"]["status"] == "missing"
        assert cases_client.fetch_calls[-1]["age_min"] == 10

        bad = client.post("/api/map/filters", json={"time_range": "1y"})
        assert bad.status_code == 400

        cleared = client.delete("/api/map/filters").json()
        assert cleared["state"]["filters"]["status"] == ""


def test_marker_events(case_seven):
    map_app, _, _ = build_app([case_seven])

    with TestClient(create_app(map_app)) as client:
        enter = client.post("/api/map/markers/7/events", json={"event": "pointerenter"}).json()
        assert enter["hovered_id"] == 7
        assert enter["tooltip"]["title"] == "Aminata Ba"

        click = client.post("/api/map/markers/7/events", json={"event": "click"}).json()
        assert click["navigation"] == "/cases/7"

        assert client.post("/api/map/markers/99/events", json={"event": "click"}).status_code == 404
        assert client.post("/api/map/markers/7/events", json={"event": "drag"}).status_code == 400


def test_pointerenter_uses_reported_marker_rect(case_seven):
    map_app, _, _ = build_app([case_seven])
    rect = {"left": 410.0, "top": 120.0, "width": 44.0, "height": 54.0}

    with TestClient(create_app(map_app)) as client:
        enter = client.post("/api/map/markers/7/events", json={"event": "pointerenter", "rect": rect}).json()
        bad = client.post("/api/map/markers/7/events", json={"event": "pointerenter", "rect": {"left": "x"}})

    tooltip = enter["tooltip"]
    assert tooltip["left"] + tooltip["width"] / 2 == 432.0
    assert tooltip["top"] + tooltip["height"] < 120.0
    assert bad.status_code == 400


def test_search_and_select(spread_cases):
    map_app, _, _ = build_app(spread_cases)

    with TestClient(create_app(map_app)) as client:
        found = client.get("/api/map/search", params={"q": "fatimetou"}).json()
        assert [c["id"] for c in found["results"]] == [2]

        selected = client.post("/api/map/search/2/select").json()
        assert selected["camera"]["zoom"] == 16
        assert selected["camera"]["center"] == {"lat": 18.10, "lng": -15.93}

        assert client.post("/api/map/search/404/select").status_code == 404


def test_remote_search_failure_returns_error(spread_cases):
    map_app, _, cases_client = build_app(spread_cases)
    cases_client.search_fail = True

    with TestClient(create_app(map_app)) as client:
        r = client.get("/api/map/search", params={"q": "nobody"})

    assert r.status_code == 502
    assert "Search failed" in r.json()["error"]


def test_camera_and_center(spread_cases):
    map_app, _, _ = build_app(spread_cases)

    with TestClient(create_app(map_app)) as client:
        r = client.post("/api/map/camera", json={"center": {"lat": 18.0, "lng": -16.0}, "zoom": 9})
        assert r.status_code == 200
        assert client.get("/api/map/state").json()["camera"]["zoom"] == 9

        assert client.post("/api/map/camera", json={"zoom": 9}).status_code == 400

        camera = client.post("/api/map/center").json()["camera"]
        assert camera["zoom"] == 13
        assert camera["center"] == {"lat": 18.0735, "lng": -15.9582}


def test_list_fetch_error_then_retry(spread_cases):
    map_app, _, cases_client = build_app(spread_cases)

    with TestClient(create_app(map_app)) as client:
        cases_client.fail = True
        failed = client.post("/api/map/filters", json={"status": "found"}).json()
        assert failed["status"] == "error"
        assert failed["state"]["error"]["kind"] == "list_fetch"
        assert len(failed["state"]["markers"]) == 3

        cases_client.fail = False
        retried = client.post("/api/map/retry").json()
        assert retried["status"] == "ok"
        assert retried["state"]["error"] is None
