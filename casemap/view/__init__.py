# Map view state: lifecycle, viewport, search and hover tooltip
from .viewport import ViewportFitter, ViewportFrame
from .search import SearchController
from .tooltip import HoverTooltipController, Tooltip
from .map_view import (
    ErrorKind,
    MapFilters,
    MapState,
    MapStats,
    MapView,
    MapViewConfig,
    ViewError,
)

__all__ = [
    "ViewportFitter",
    "ViewportFrame",
    "SearchController",
    "HoverTooltipController",
    "Tooltip",
    "ErrorKind",
    "MapFilters",
    "MapState",
    "MapStats",
    "MapView",
    "MapViewConfig",
    "ViewError",
]
