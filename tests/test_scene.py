import asyncio

import pytest

from casemap.errors import ConfigurationError, MapFailure
from casemap.provider.base import LatLng, LatLngBounds
from casemap.provider.scene import (
    GoogleMapsProvider,
    MercatorProjection,
    SceneProviderHandle,
    world_point,
    world_to_lat_lng,
)


def test_world_point_round_trip():
    position = LatLng(18.0735, -15.9582)
    back = world_to_lat_lng(world_point(position))
    assert back.lat == pytest.approx(position.lat)
    assert back.lng == pytest.approx(position.lng)


def test_projection_puts_center_in_the_middle():
    projection = MercatorProjection(LatLng(10.0, 20.0), 8, 800, 600)
    p = projection.from_lat_lng_to_div_pixel(LatLng(10.0, 20.0))
    assert p.x == pytest.approx(400.0)
    assert p.y == pytest.approx(300.0)


def test_zoom_is_clamped_to_integer_range(scene_map):
    scene_map.set_zoom(30)
    assert scene_map.get_zoom() == 21
    scene_map.set_zoom(7.6)
    assert scene_map.get_zoom() == 8


def test_fit_bounds_picks_largest_fitting_zoom(scene_map):
    scene_map.fit_bounds(LatLngBounds(-10.0, -10.0, 10.0, 10.0), padding=50)
    zoom = scene_map.get_zoom()

    projection = scene_map.get_projection()
    ne = projection.from_lat_lng_to_div_pixel(LatLng(10.0, 10.0))
    sw = projection.from_lat_lng_to_div_pixel(LatLng(-10.0, -10.0))
    assert ne.x - sw.x <= 700
    assert sw.y - ne.y <= 500
    # One level deeper would overflow
    assert (ne.x - sw.x) * 2 > 700 or (sw.y - ne.y) * 2 > 500
    assert zoom > 0


def test_invalidated_map_rejects_camera_writes(scene_map):
    scene_map.invalidate("gone")
    with pytest.raises(MapFailure):
        scene_map.set_center(LatLng(1.0, 1.0))
    assert scene_map.get_projection() is None
    assert scene_map.snapshot()["valid"] is False


def test_projection_listeners_fire_on_camera_moves(scene_map):
    calls = []
    token = scene_map.add_listener("projection_changed", lambda m: calls.append(m.get_zoom()))
    scene_map.move_camera(LatLng(0.0, 0.0), 5)
    scene_map.remove_listener(token)
    scene_map.move_camera(LatLng(0.0, 0.0), 6)
    assert calls == [5]


def test_native_markers_need_the_marker_library(scene_map):
    assert SceneProviderHandle(libraries=("places", "marker")).supports_native_markers
    without = SceneProviderHandle(libraries=("places",))
    assert not without.supports_native_markers
    assert without.create_native_marker(scene_map, LatLng(0.0, 0.0), None) is None


def test_script_url_includes_key_and_libraries():
    url = GoogleMapsProvider().build_url("abc", ("places", "marker"))
    assert url.startswith("https://maps.googleapis.com/maps/api/js?key=abc")
    assert "libraries=places,marker" in url


def test_provider_refuses_empty_key():
    with pytest.raises(ConfigurationError):
        asyncio.run(GoogleMapsProvider().load("", ("places",)))
