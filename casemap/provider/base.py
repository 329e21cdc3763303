"""
Mapping provider boundary.

The provider is treated as an opaque external service that can:
- load its script (once)
- construct a map bound to a container
- accept positioned visual content (native markers or overlays)
- report projection changes (pan/zoom) so overlays can redraw

Everything the view layer touches goes through the abstract classes below,
so the native-marker path and the overlay fallback are interchangeable.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

DEFAULT_LIBRARIES: Tuple[str, ...] = ("places", "marker")


@dataclass(frozen=True)
class LatLng:
    """Geographic position in degrees."""
    lat: float
    lng: float

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}

    @classmethod
    def from_dict(cls, data: Dict) -> "LatLng":
        return cls(lat=float(data["lat"]), lng=float(data["lng"]))


@dataclass(frozen=True)
class Point:
    """Pixel position relative to the map container's top-left corner."""
    x: float
    y: float


@dataclass(frozen=True)
class LatLngBounds:
    south: float
    west: float
    north: float
    east: float

    @classmethod
    def from_points(cls, points: Iterable[LatLng]) -> "LatLngBounds":
        points = list(points)
        if not points:
            raise ValueError("Cannot build bounds from an empty point set")
        return cls(
            south=min(p.lat for p in points),
            west=min(p.lng for p in points),
            north=max(p.lat for p in points),
            east=max(p.lng for p in points),
        )

    def extend(self, point: LatLng) -> "LatLngBounds":
        return LatLngBounds(
            south=min(self.south, point.lat),
            west=min(self.west, point.lng),
            north=max(self.north, point.lat),
            east=max(self.east, point.lng),
        )

    def contains(self, point: LatLng) -> bool:
        return (self.south <= point.lat <= self.north
                and self.west <= point.lng <= self.east)

    @property
    def center(self) -> LatLng:
        return LatLng((self.south + self.north) / 2, (self.west + self.east) / 2)

    @property
    def span(self) -> Tuple[float, float]:
        """(latitude span, longitude span) in degrees."""
        return (self.north - self.south, self.east - self.west)

    @property
    def is_point(self) -> bool:
        """True when every enclosed point is the same coordinate."""
        return math.isclose(self.south, self.north) and math.isclose(self.west, self.east)

    def to_dict(self) -> Dict[str, float]:
        return {
            "south": self.south,
            "west": self.west,
            "north": self.north,
            "east": self.east,
        }


class Projection(ABC):
    """Converts geographic positions to container pixels for the current camera."""

    @abstractmethod
    def from_lat_lng_to_div_pixel(self, position: LatLng) -> Point:
        ...

    @abstractmethod
    def from_div_pixel_to_lat_lng(self, point: Point) -> LatLng:
        ...


class NativeMarkerHandle(ABC):
    """Provider-owned marker primitive ("advanced marker")."""

    @abstractmethod
    def set_map(self, map_handle: Optional["MapHandle"]):
        """Attach to a map, or detach when map_handle is None."""

    @property
    @abstractmethod
    def map(self) -> Optional["MapHandle"]:
        ...


class MapHandle(ABC):
    """A constructed map bound to one container."""

    @abstractmethod
    def set_center(self, center: LatLng):
        ...

    @abstractmethod
    def get_center(self) -> LatLng:
        ...

    @abstractmethod
    def set_zoom(self, zoom: float):
        ...

    @abstractmethod
    def get_zoom(self) -> float:
        ...

    @abstractmethod
    def fit_bounds(self, bounds: LatLngBounds, padding: float = 0):
        ...

    @abstractmethod
    def move_camera(self, center: LatLng, zoom: float):
        """Apply a camera change reported by the provider (user pan/zoom)."""

    @abstractmethod
    def get_projection(self) -> Optional[Projection]:
        ...

    @property
    @abstractmethod
    def panes(self) -> Any:
        """Layer containers overlays insert their elements into."""

    @abstractmethod
    def add_overlay(self, overlay: "OverlayView"):
        ...

    @abstractmethod
    def remove_overlay(self, overlay: "OverlayView"):
        ...

    @abstractmethod
    def add_listener(self, event: str, callback: Callable[..., None]) -> Any:
        ...

    @abstractmethod
    def remove_listener(self, token: Any):
        ...

    @property
    @abstractmethod
    def is_valid(self) -> bool:
        ...

    @abstractmethod
    def invalidate(self, reason: str = ""):
        """Mark the handle unusable (provider torn down underneath us)."""


class OverlayView(ABC):
    """
    Base class for custom overlays.

    Subclasses implement on_add / draw / on_remove. The map calls on_add and
    draw when the overlay is added, draw again on every projection change,
    and on_remove when the overlay is removed.
    """

    def __init__(self):
        self._map: Optional[MapHandle] = None

    def set_map(self, map_handle: Optional[MapHandle]):
        if map_handle is self._map:
            return
        previous = self._map
        self._map = None
        if previous is not None:
            previous.remove_overlay(self)
        if map_handle is not None:
            self._map = map_handle
            try:
                map_handle.add_overlay(self)
            except Exception:
                self._map = None
                raise

    def get_map(self) -> Optional[MapHandle]:
        return self._map

    def get_panes(self) -> Any:
        return self._map.panes if self._map else None

    def get_projection(self) -> Optional[Projection]:
        return self._map.get_projection() if self._map else None

    @abstractmethod
    def on_add(self):
        ...

    @abstractmethod
    def draw(self):
        ...

    @abstractmethod
    def on_remove(self):
        ...


class ProviderHandle(ABC):
    """Initialized reference to the loaded mapping library."""

    @property
    @abstractmethod
    def supports_native_markers(self) -> bool:
        ...

    @abstractmethod
    def create_map(self, container: str, options: Dict[str, Any]) -> MapHandle:
        ...

    @abstractmethod
    def create_native_marker(
        self,
        map_handle: MapHandle,
        position: LatLng,
        content: Any,
        z_index: int = 0,
        title: str = "",
    ) -> Optional[NativeMarkerHandle]:
        """Returns None when the provider lacks a native marker primitive."""


class MapProvider(ABC):
    """Loadable mapping provider."""

    @abstractmethod
    async def load(self, api_key: str, libraries: Tuple[str, ...]) -> ProviderHandle:
        ...
