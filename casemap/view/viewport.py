"""
Viewport framing over the active marker set.

- zero located cases: camera untouched
- one location (or all points coincident): centre on it, zoom capped
- several locations: fit the bounding box with padding
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np

from ..cases.client import Case
from ..provider.base import LatLng, LatLngBounds, MapHandle

logger = logging.getLogger(__name__)

SINGLE_POINT_MAX_ZOOM = 15
FIT_PADDING_PX = 50


@dataclass(frozen=True)
class ViewportFrame:
    bounds: LatLngBounds
    center: LatLng
    zoom: float
    point_count: int

    def to_dict(self) -> dict:
        return {
            "bounds": self.bounds.to_dict(),
            "center": self.center.to_dict(),
            "zoom": self.zoom,
            "points": self.point_count,
        }


def compute_bounds(cases: Iterable[Case]) -> Optional[LatLngBounds]:
    """Minimal bounding box over every case with a location."""
    coords = np.array(
        [(loc.lat, loc.lng) for loc in (c.location for c in cases) if loc is not None],
        dtype=float,
    )
    if coords.size == 0:
        return None
    south, west = coords.min(axis=0)
    north, east = coords.max(axis=0)
    return LatLngBounds(float(south), float(west), float(north), float(east))


class ViewportFitter:
    """
    Frames the map around a set of cases.

    Also the only other writer of the camera: focus() for search selection
    and reset() for "center map".
    """

    def __init__(
        self,
        map_handle: MapHandle,
        single_point_max_zoom: float = SINGLE_POINT_MAX_ZOOM,
        padding: float = FIT_PADDING_PX,
    ):
        self.map = map_handle
        self.single_point_max_zoom = single_point_max_zoom
        self.padding = padding
        self.last_frame: Optional[ViewportFrame] = None

    def fit(self, cases: Iterable[Case]) -> Optional[ViewportFrame]:
        cases = list(cases)
        bounds = compute_bounds(cases)
        if bounds is None:
            logger.debug("No located cases; keeping current view")
            self.last_frame = None
            return None

        point_count = sum(1 for c in cases if c.location is not None)
        self.map.fit_bounds(bounds, self.padding)

        if bounds.is_point:
            # Never over-zoom a single point
            if self.map.get_zoom() > self.single_point_max_zoom:
                self.map.set_zoom(self.single_point_max_zoom)
            self.map.set_center(bounds.center)

        self.last_frame = ViewportFrame(
            bounds=bounds,
            center=self.map.get_center(),
            zoom=self.map.get_zoom(),
            point_count=point_count,
        )
        logger.debug(f"Viewport fit over {point_count} points -> zoom {self.last_frame.zoom}")
        return self.last_frame

    def focus(self, location: LatLng, zoom: float):
        self.map.set_center(location)
        self.map.set_zoom(zoom)

    def reset(self, center: LatLng, zoom: float):
        self.map.set_center(center)
        self.map.set_zoom(zoom)
        self.last_frame = None
