from casemap.provider.base import LatLng
from casemap.view.viewport import FIT_PADDING_PX, SINGLE_POINT_MAX_ZOOM, ViewportFitter, compute_bounds

from conftest import make_case


def test_single_case_centres_exactly_with_capped_zoom(scene_map, case_seven):
    fitter = ViewportFitter(scene_map)

    frame = fitter.fit([case_seven])

    assert scene_map.get_center() == LatLng(18.07, -15.95)
    assert scene_map.get_zoom() <= SINGLE_POINT_MAX_ZOOM
    assert frame.point_count == 1


def test_coincident_points_are_capped_like_a_single_point(scene_map):
    fitter = ViewportFitter(scene_map)
    fitter.fit([make_case(1, lat=18.1, lng=-15.9), make_case(2, lat=18.1, lng=-15.9)])

    assert scene_map.get_zoom() == SINGLE_POINT_MAX_ZOOM
    assert scene_map.get_center() == LatLng(18.1, -15.9)


def test_every_location_is_inside_the_padded_viewport(scene_map, spread_cases):
    fitter = ViewportFitter(scene_map)
    fitter.fit(spread_cases)

    projection = scene_map.get_projection()
    for case in spread_cases:
        p = projection.from_lat_lng_to_div_pixel(case.location)
        assert FIT_PADDING_PX - 1e-6 <= p.x <= scene_map.width - FIT_PADDING_PX + 1e-6
        assert FIT_PADDING_PX - 1e-6 <= p.y <= scene_map.height - FIT_PADDING_PX + 1e-6
    assert scene_map.get_zoom() > SINGLE_POINT_MAX_ZOOM - 10


def test_no_located_cases_leaves_camera_alone(scene_map):
    fitter = ViewportFitter(scene_map)
    before = (scene_map.get_center(), scene_map.get_zoom())

    assert fitter.fit([]) is None
    assert fitter.fit([make_case(1, lat="abc", lng=None)]) is None
    assert (scene_map.get_center(), scene_map.get_zoom()) == before


def test_bounds_ignore_unlocated_cases():
    bounds = compute_bounds([
        make_case(1, lat=10.0, lng=20.0),
        make_case(2, lat=12.0, lng=18.0),
        make_case(3, lat="abc", lng=5.0),
    ])
    assert (bounds.south, bounds.west, bounds.north, bounds.east) == (10.0, 18.0, 12.0, 20.0)
    assert bounds.span == (2.0, 2.0)


def test_reset_and_focus_move_the_camera(scene_map):
    fitter = ViewportFitter(scene_map)
    fitter.focus(LatLng(18.0, -16.0), 16)
    assert scene_map.get_zoom() == 16

    fitter.reset(LatLng(18.0735, -15.9582), 13)
    assert scene_map.get_center() == LatLng(18.0735, -15.9582)
    assert scene_map.get_zoom() == 13
    assert fitter.last_frame is None
