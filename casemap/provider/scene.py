"""
Retained-mode map scene backed by the Google Maps JavaScript API.

GoogleMapsProvider fetches the provider bootstrap script once (validating the
key and network path) and hands out a SceneProviderHandle. Maps created from
the handle keep the authoritative camera and marker layers server-side:

- Web Mercator projection with 256px world tiles
- integer zoom levels clamped to [min_zoom, max_zoom]
- marker pane (native markers) and overlay pane (fallback overlays)
- projection change listeners fired on every camera move

The dashboard page loads the same script in the browser and renders the
scene from snapshot().
"""

import logging
import math
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiohttp

from ..errors import ConfigurationError, MapFailure, ProviderLoadError
from ..markers.element import VisualElement, place_element
from .base import (
    LatLng,
    LatLngBounds,
    MapHandle,
    MapProvider,
    NativeMarkerHandle,
    OverlayView,
    Point,
    Projection,
    ProviderHandle,
)

logger = logging.getLogger(__name__)

SCRIPT_URL = "https://maps.googleapis.com/maps/api/js"

TILE_SIZE = 256
MIN_ZOOM = 0
MAX_ZOOM = 21
# Mercator is undefined at the poles
MAX_SIN_LAT = 0.9999


def world_point(position: LatLng) -> Point:
    """Project a position to world coordinates at zoom 0."""
    siny = math.sin(math.radians(position.lat))
    siny = min(max(siny, -MAX_SIN_LAT), MAX_SIN_LAT)
    x = TILE_SIZE * (0.5 + position.lng / 360.0)
    y = TILE_SIZE * (0.5 - math.log((1 + siny) / (1 - siny)) / (4 * math.pi))
    return Point(x, y)


def world_to_lat_lng(point: Point) -> LatLng:
    lng = (point.x / TILE_SIZE - 0.5) * 360.0
    lat = math.degrees(math.atan(math.sinh(math.pi * (1 - 2 * point.y / TILE_SIZE))))
    return LatLng(lat, lng)


class MercatorProjection(Projection):
    """Projection for a fixed camera (center, zoom) and viewport size."""

    def __init__(self, center: LatLng, zoom: float, width: int, height: int):
        self.zoom = zoom
        self.scale = 2 ** zoom
        self.width = width
        self.height = height
        c = world_point(center)
        self._origin = Point(c.x * self.scale - width / 2, c.y * self.scale - height / 2)

    def from_lat_lng_to_div_pixel(self, position: LatLng) -> Point:
        w = world_point(position)
        return Point(w.x * self.scale - self._origin.x, w.y * self.scale - self._origin.y)

    def from_div_pixel_to_lat_lng(self, point: Point) -> LatLng:
        return world_to_lat_lng(Point(
            (point.x + self._origin.x) / self.scale,
            (point.y + self._origin.y) / self.scale,
        ))


class MapPanes:
    """Element layers of a scene map."""

    def __init__(self):
        self.marker_layer = VisualElement("div", "map-marker-layer")
        self.overlay_mouse_target = VisualElement("div", "map-overlay-layer")


class SceneNativeMarker(NativeMarkerHandle):
    """Native ("advanced") marker living in the map's marker pane."""

    def __init__(self, position: LatLng, content: VisualElement, z_index: int = 0, title: str = ""):
        self.position = position
        self.content = content
        self.z_index = z_index
        self.title = title
        self._map: Optional["SceneMap"] = None

    @property
    def map(self) -> Optional["SceneMap"]:
        return self._map

    def set_map(self, map_handle: Optional[MapHandle]):
        if map_handle is self._map:
            return
        previous = self._map
        self._map = None
        if previous is not None:
            previous._remove_native_marker(self)
        if map_handle is not None:
            if not isinstance(map_handle, SceneMap):
                raise TypeError("SceneNativeMarker can only be attached to a SceneMap")
            map_handle._add_native_marker(self)
            self._map = map_handle

    def reposition(self, projection: Projection):
        place_element(self.content, projection.from_lat_lng_to_div_pixel(self.position))


class SceneMap(MapHandle):
    """
    Server-side map state for one container.

    Camera writes (set_center / set_zoom / fit_bounds / move_camera) trigger a
    redraw: native markers are repositioned, overlays get draw(), and
    "projection_changed" listeners fire.
    """

    def __init__(
        self,
        container: str,
        options: Optional[Dict[str, Any]] = None,
        width: int = 800,
        height: int = 600,
    ):
        options = dict(options or {})
        self.container = container
        self.options = options
        self.width = int(options.get("width", width))
        self.height = int(options.get("height", height))
        self.min_zoom = int(options.get("min_zoom", MIN_ZOOM))
        self.max_zoom = int(options.get("max_zoom", MAX_ZOOM))
        self.map_id = options.get("map_id")

        center = options.get("center", LatLng(0.0, 0.0))
        if isinstance(center, dict):
            center = LatLng.from_dict(center)
        self._center: LatLng = center
        self._zoom: int = self._clamp_zoom(options.get("zoom", 2))

        self._panes = MapPanes()
        self._overlays: List[OverlayView] = []
        self._native_markers: List[SceneNativeMarker] = []
        self._listeners: Dict[int, Tuple[str, Callable[..., None]]] = {}
        self._next_listener = 1
        self._valid = True
        self._invalid_reason = ""
        self.redraw_count = 0

    # ---- validity ----

    @property
    def is_valid(self) -> bool:
        return self._valid

    def invalidate(self, reason: str = ""):
        self._valid = False
        self._invalid_reason = reason or "map handle invalidated"
        logger.warning(f"Map {self.container} invalidated: {self._invalid_reason}")

    def _check(self):
        if not self._valid:
            raise MapFailure(f"Map {self.container} is no longer usable: {self._invalid_reason}")

    # ---- camera ----

    def _clamp_zoom(self, zoom: float) -> int:
        return int(max(self.min_zoom, min(self.max_zoom, round(zoom))))

    def get_center(self) -> LatLng:
        return self._center

    def get_zoom(self) -> int:
        return self._zoom

    def set_center(self, center: LatLng):
        self._check()
        self._center = center
        self._redraw()

    def set_zoom(self, zoom: float):
        self._check()
        self._zoom = self._clamp_zoom(zoom)
        self._redraw()

    def move_camera(self, center: LatLng, zoom: float):
        self._check()
        self._center = center
        self._zoom = self._clamp_zoom(zoom)
        self._redraw()

    def fit_bounds(self, bounds: LatLngBounds, padding: float = 0):
        """Largest integer zoom at which bounds fit inside the padded viewport."""
        self._check()
        ne = world_point(LatLng(bounds.north, bounds.east))
        sw = world_point(LatLng(bounds.south, bounds.west))
        span_x = abs(ne.x - sw.x)
        span_y = abs(sw.y - ne.y)
        avail_x = max(self.width - 2 * padding, 1)
        avail_y = max(self.height - 2 * padding, 1)

        zoom_x = math.log2(avail_x / span_x) if span_x > 0 else float(self.max_zoom)
        zoom_y = math.log2(avail_y / span_y) if span_y > 0 else float(self.max_zoom)
        zoom = max(self.min_zoom, min(self.max_zoom, math.floor(min(zoom_x, zoom_y))))

        self._center = world_to_lat_lng(Point((ne.x + sw.x) / 2, (ne.y + sw.y) / 2))
        self._zoom = int(zoom)
        self._redraw()

    def get_projection(self) -> Optional[MercatorProjection]:
        if not self._valid:
            return None
        return MercatorProjection(self._center, self._zoom, self.width, self.height)

    def _redraw(self):
        self.redraw_count += 1
        projection = self.get_projection()
        for marker in list(self._native_markers):
            marker.reposition(projection)
        for overlay in list(self._overlays):
            overlay.draw()
        for event, callback in list(self._listeners.values()):
            if event == "projection_changed":
                callback(self)

    # ---- layers ----

    @property
    def panes(self) -> MapPanes:
        return self._panes

    def add_overlay(self, overlay: OverlayView):
        self._check()
        if overlay in self._overlays:
            return
        self._overlays.append(overlay)
        overlay.on_add()
        overlay.draw()

    def remove_overlay(self, overlay: OverlayView):
        # Removal stays possible after invalidation so teardown can finish
        if overlay not in self._overlays:
            return
        self._overlays.remove(overlay)
        overlay.on_remove()

    def _add_native_marker(self, marker: SceneNativeMarker):
        self._check()
        self._native_markers.append(marker)
        self._panes.marker_layer.append(marker.content)
        marker.reposition(self.get_projection())

    def _remove_native_marker(self, marker: SceneNativeMarker):
        if marker in self._native_markers:
            self._native_markers.remove(marker)
        marker.content.remove()

    @property
    def overlay_count(self) -> int:
        return len(self._overlays)

    @property
    def native_marker_count(self) -> int:
        return len(self._native_markers)

    # ---- listeners ----

    def add_listener(self, event: str, callback: Callable[..., None]) -> int:
        token = self._next_listener
        self._next_listener += 1
        self._listeners[token] = (event, callback)
        return token

    def remove_listener(self, token: Any):
        self._listeners.pop(token, None)

    # ---- serialization ----

    def snapshot(self) -> Dict[str, Any]:
        return {
            "container": self.container,
            "map_id": self.map_id,
            "valid": self._valid,
            "center": self._center.to_dict(),
            "zoom": self._zoom,
            "size": {"width": self.width, "height": self.height},
            "native_markers": len(self._native_markers),
            "overlays": len(self._overlays),
        }


class SceneProviderHandle(ProviderHandle):
    """Handle returned once the provider script is available."""

    def __init__(self, libraries: Tuple[str, ...] = (), script_url: str = ""):
        self.libraries = tuple(libraries)
        self.script_url = script_url
        self.maps: List[SceneMap] = []

    @property
    def supports_native_markers(self) -> bool:
        return "marker" in self.libraries

    def create_map(self, container: str, options: Dict[str, Any]) -> SceneMap:
        scene = SceneMap(container, options)
        self.maps.append(scene)
        logger.debug(f"Created map for container {container} (zoom {scene.get_zoom()})")
        return scene

    def create_native_marker(
        self,
        map_handle: MapHandle,
        position: LatLng,
        content: Any,
        z_index: int = 0,
        title: str = "",
    ) -> Optional[SceneNativeMarker]:
        if not self.supports_native_markers:
            return None
        marker = SceneNativeMarker(position, content, z_index=z_index, title=title)
        marker.set_map(map_handle)
        return marker


class GoogleMapsProvider(MapProvider):
    """
    Loads the Google Maps JavaScript API bootstrap script.

    Usage:
        loader = ProviderLoader(GoogleMapsProvider())
        handle = await loader.ensure_loaded(api_key, ("places", "marker"))
    """

    def __init__(self, script_url: str = SCRIPT_URL, timeout: float = 15.0):
        self.script_url = script_url
        self.timeout = timeout

    def build_url(self, api_key: str, libraries: Tuple[str, ...]) -> str:
        url = f"{self.script_url}?key={api_key}&loading=async"
        if libraries:
            url += f"&libraries={','.join(libraries)}"
        return url

    async def load(self, api_key: str, libraries: Tuple[str, ...]) -> SceneProviderHandle:
        if not api_key:
            raise ConfigurationError("Map provider API key is missing")

        url = self.build_url(api_key, libraries)
        logger.debug(f"Fetching provider script: {url.replace(api_key, 'API_KEY_HIDDEN')}")

        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as session:
                async with session.get(url) as resp:
                    if resp.status != 200:
                        raise ProviderLoadError(f"Provider script error: HTTP {resp.status}")
                    body = await resp.text()
        except aiohttp.ClientError as e:
            logger.error(f"Provider script request failed: {e}")
            raise ProviderLoadError(f"Provider script request failed: {e}") from e

        if not body.strip():
            raise ProviderLoadError("Provider script response was empty")

        logger.info(f"Provider script loaded ({len(body)} bytes)")
        return SceneProviderHandle(libraries=libraries, script_url=url)
