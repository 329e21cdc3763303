# Mapping provider boundary and script loader
# (the scene map lives in casemap.provider.scene; it depends on casemap.markers)
from .base import (
    DEFAULT_LIBRARIES,
    LatLng,
    LatLngBounds,
    MapHandle,
    MapProvider,
    OverlayView,
    Point,
    ProviderHandle,
)
from .loader import ProviderLoader

__all__ = [
    "DEFAULT_LIBRARIES",
    "LatLng",
    "LatLngBounds",
    "MapHandle",
    "MapProvider",
    "OverlayView",
    "Point",
    "ProviderHandle",
    "ProviderLoader",
]
