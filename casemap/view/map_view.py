"""
Case map view.

Owns the lifecycle of one embedded map:

    UNINITIALIZED -> LOADING -> READY <-> POPULATING
                        |         |
                        +-> FAILED <-+   (retry re-enters LOADING)

- provider script loaded through the shared ProviderLoader
- case list fetched with the current filters, markers replaced in one pass
- list-fetch failures keep the last good marker set and offer a retry
- a map-level failure tears the map down; retry rebuilds it

Every continuation after an await checks that the view is still mounted
before it touches state.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..cases.client import Case, CaseStatus, CasesClient
from ..errors import CaseFetchError, ConfigurationError, MapFailure, ProviderLoadError
from ..markers.element import ScreenRect
from ..markers.factory import DEFAULT_AVATAR, MarkerFactory
from ..markers.marker_set import MarkerRecord, MarkerSetController
from ..markers.photos import PhotoLoader
from ..provider.base import DEFAULT_LIBRARIES, LatLng, MapHandle, ProviderHandle
from ..provider.loader import ProviderLoader
from .search import DETAIL_ZOOM, SEARCH_QUIET_PERIOD_SEC, SearchController
from .tooltip import HoverTooltipController
from .viewport import FIT_PADDING_PX, SINGLE_POINT_MAX_ZOOM, ViewportFitter

logger = logging.getLogger(__name__)

# Nouakchott
DEFAULT_CENTER = LatLng(18.0735, -15.9582)
DEFAULT_ZOOM = 13

TIME_RANGES = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}

MARKER_EVENTS = ("click", "pointerenter", "pointerleave")


class MapState(Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    POPULATING = "populating"
    FAILED = "failed"


class ErrorKind(Enum):
    CONFIGURATION = "configuration"
    LOAD = "load"
    LIST_FETCH = "list_fetch"
    MAP = "map"


@dataclass
class ViewError:
    kind: ErrorKind
    message: str

    @property
    def retryable(self) -> bool:
        return self.kind != ErrorKind.CONFIGURATION

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "retryable": self.retryable}


@dataclass
class MapFilters:
    """Filters applied to the case list shown on the map."""
    status: str = ""
    time_range: str = ""          # "", "24h", "7d", "30d"
    age_min: Optional[int] = None
    age_max: Optional[int] = None
    search: str = ""

    def to_query(self) -> Dict[str, Any]:
        """Filters forwarded to the case API."""
        return {
            "status": self.status,
            "age_min": self.age_min,
            "age_max": self.age_max,
            "search": self.search,
        }

    def matches(self, case: Case, today: Optional[date] = None) -> bool:
        """Filters applied locally (time range on last-seen date)."""
        window = TIME_RANGES.get(self.time_range)
        if window is None:
            return True
        if case.last_seen_date is None:
            return False
        today = today or date.today()
        return case.last_seen_date >= today - window

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "time_range": self.time_range,
            "age_min": self.age_min,
            "age_max": self.age_max,
            "search": self.search,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "MapFilters":
        def _int(value):
            if value in (None, ""):
                return None
            return int(value)

        time_range = data.get("time_range", "") or ""
        if time_range and time_range not in TIME_RANGES:
            raise ValueError(f"Unknown time range: {time_range}")
        return cls(
            status=data.get("status", "") or "",
            time_range=time_range,
            age_min=_int(data.get("age_min")),
            age_max=_int(data.get("age_max")),
            search=data.get("search", "") or "",
        )


@dataclass
class MapStats:
    total_cases: int = 0
    active_cases: int = 0
    found_cases: int = 0
    located_cases: int = 0

    @classmethod
    def from_cases(cls, cases: List[Case], total: int, located: int) -> "MapStats":
        return cls(
            total_cases=total,
            active_cases=sum(1 for c in cases if c.status == CaseStatus.MISSING),
            found_cases=sum(1 for c in cases if c.status == CaseStatus.FOUND),
            located_cases=located,
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "total_cases": self.total_cases,
            "active_cases": self.active_cases,
            "found_cases": self.found_cases,
            "located_cases": self.located_cases,
        }


@dataclass
class MapViewConfig:
    """Map view configuration (settings.yaml "maps" section)."""
    api_key: str = ""
    map_id: Optional[str] = None
    libraries: Tuple[str, ...] = DEFAULT_LIBRARIES
    container: str = "case-map"
    default_center: LatLng = field(default_factory=lambda: DEFAULT_CENTER)
    default_zoom: int = DEFAULT_ZOOM
    detail_zoom: int = DETAIL_ZOOM
    single_point_max_zoom: int = SINGLE_POINT_MAX_ZOOM
    fit_padding_px: float = FIT_PADDING_PX
    search_quiet_period_sec: float = SEARCH_QUIET_PERIOD_SEC
    default_avatar_url: str = DEFAULT_AVATAR
    case_detail_url: str = "/cases/{case_id}"
    width: int = 800
    height: int = 600

    def to_dict(self) -> Dict[str, Any]:
        return {
            "api_key": self.api_key,
            "map_id": self.map_id,
            "libraries": list(self.libraries),
            "container": self.container,
            "default_center": self.default_center.to_dict(),
            "default_zoom": self.default_zoom,
            "detail_zoom": self.detail_zoom,
            "single_point_max_zoom": self.single_point_max_zoom,
            "fit_padding_px": self.fit_padding_px,
            "search_quiet_period_sec": self.search_quiet_period_sec,
            "default_avatar_url": self.default_avatar_url,
            "case_detail_url": self.case_detail_url,
            "width": self.width,
            "height": self.height,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "MapViewConfig":
        center = data.get("default_center")
        return cls(
            api_key=data.get("api_key", "") or "",
            map_id=data.get("map_id"),
            libraries=tuple(data.get("libraries", DEFAULT_LIBRARIES)),
            container=data.get("container", "case-map"),
            default_center=LatLng.from_dict(center) if center else DEFAULT_CENTER,
            default_zoom=data.get("default_zoom", DEFAULT_ZOOM),
            detail_zoom=data.get("detail_zoom", DETAIL_ZOOM),
            single_point_max_zoom=data.get("single_point_max_zoom", SINGLE_POINT_MAX_ZOOM),
            fit_padding_px=data.get("fit_padding_px", FIT_PADDING_PX),
            search_quiet_period_sec=data.get("search_quiet_period_sec", SEARCH_QUIET_PERIOD_SEC),
            default_avatar_url=data.get("default_avatar_url", DEFAULT_AVATAR),
            case_detail_url=data.get("case_detail_url", "/cases/{case_id}"),
            width=data.get("width", 800),
            height=data.get("height", 600),
        )


class MapView:
    """
    Embedded case map.

    Usage:
        view = MapView(config, loader, cases_client)
        await view.mount()
        await view.apply_filters(MapFilters(status="missing"))
        state = view.snapshot()
        view.unmount()
    """

    def __init__(
        self,
        config: MapViewConfig,
        loader: ProviderLoader,
        cases_client: CasesClient,
        photo_loader: Optional[PhotoLoader] = None,
        navigate: Optional[Callable[[Any], None]] = None,
    ):
        self.config = config
        self.loader = loader
        self.cases_client = cases_client
        self.photo_loader = photo_loader
        self._navigate = navigate

        self.state = MapState.UNINITIALIZED
        self.error: Optional[ViewError] = None
        self.loading = False
        self.filters = MapFilters()
        self.cases: List[Case] = []
        self.stats = MapStats()
        self.selected_case: Optional[Case] = None
        self.navigation: Optional[str] = None

        self.tooltip = HoverTooltipController()
        self.search = SearchController(
            cases_client,
            quiet_period=config.search_quiet_period_sec,
            detail_zoom=config.detail_zoom,
            is_active=lambda: self._active,
        )

        self._active = False
        self._provider: Optional[ProviderHandle] = None
        self._map: Optional[MapHandle] = None
        self.fitter: Optional[ViewportFitter] = None
        self.markers: Optional[MarkerSetController] = None
        self._refresh_seq = 0

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def map(self) -> Optional[MapHandle]:
        return self._map

    # ---- lifecycle ----

    async def mount(self):
        """Attach the view: load the provider, build the map, load cases."""
        self._active = True
        await self._initialize()

    def unmount(self):
        """Detach the view; in-flight results are ignored from here on."""
        self._active = False
        self.search.clear()
        self._teardown_map()
        self.state = MapState.UNINITIALIZED
        logger.info("Map view unmounted")

    async def _initialize(self):
        self._teardown_map()
        self.state = MapState.LOADING
        self.error = None

        try:
            provider = await self.loader.ensure_loaded(self.config.api_key, self.config.libraries)
        except ConfigurationError as e:
            logger.error(f"Map configuration error: {e}")
            self._set_error(ErrorKind.CONFIGURATION, str(e))
            return
        except ProviderLoadError as e:
            if self._active:
                logger.error(f"Map provider failed to load: {e}")
                self._set_error(ErrorKind.LOAD, "Failed to load the map provider. Please retry.")
            return

        if not self._active:
            logger.debug("View unmounted while the provider was loading")
            return

        try:
            self._build_map(provider)
        except MapFailure as e:
            self._fail_map(e)
            return

        self.state = MapState.READY
        logger.info("Map ready")
        await self.refresh()

    def _build_map(self, provider: ProviderHandle):
        options = {
            "center": self.config.default_center,
            "zoom": self.config.default_zoom,
            "map_id": self.config.map_id,
            "width": self.config.width,
            "height": self.config.height,
        }
        self._provider = provider
        self._map = provider.create_map(self.config.container, options)
        self.fitter = ViewportFitter(
            self._map,
            single_point_max_zoom=self.config.single_point_max_zoom,
            padding=self.config.fit_padding_px,
        )
        factory = MarkerFactory(
            on_click=self.go_to_case_detail,
            on_hover_enter=self.tooltip.on_enter,
            on_hover_leave=self.tooltip.on_leave,
            photo_loader=self.photo_loader,
            default_avatar=self.config.default_avatar_url,
        )
        self.markers = MarkerSetController(self._map, provider, factory, fitter=self.fitter)
        self.search.bind(self.fitter)

    def _teardown_map(self):
        if self.markers is not None:
            self.markers.clear()
        self.markers = None
        self.fitter = None
        self._map = None
        self.search.bind(None)
        self.tooltip.on_leave()

    def _set_error(self, kind: ErrorKind, message: str):
        self.error = ViewError(kind, message)
        self.loading = False
        if kind != ErrorKind.LIST_FETCH:
            self.state = MapState.FAILED

    def _fail_map(self, error: Exception):
        logger.error(f"Map-level failure: {error}")
        self._teardown_map()
        self._set_error(ErrorKind.MAP, "The map stopped responding. Retry to reload it.")

    def check_map(self) -> bool:
        """Detect a provider handle that was invalidated underneath the view."""
        if self._map is not None and not self._map.is_valid:
            self._fail_map(MapFailure("map handle invalidated"))
            return False
        return self._map is not None

    async def retry(self) -> bool:
        """Retry after an error; configuration errors need a config fix instead."""
        if not self._active:
            return False
        if self.error is not None and self.error.kind == ErrorKind.CONFIGURATION:
            logger.info("Retry ignored: configuration errors require a settings change")
            return False
        if self.markers is not None and (self.error is None or self.error.kind == ErrorKind.LIST_FETCH):
            return await self.refresh()
        await self._initialize()
        return self.state == MapState.READY

    # ---- data ----

    async def refresh(self) -> bool:
        """Fetch the filtered case list and replace the marker set."""
        if not self._active or self.markers is None:
            return False

        self._refresh_seq += 1
        seq = self._refresh_seq
        self.loading = True

        try:
            page = await self.cases_client.fetch_all_cases(self.filters.to_query())
        except CaseFetchError as e:
            if self._is_current(seq):
                logger.error(f"Failed to load map data: {e}")
                self._set_error(ErrorKind.LIST_FETCH, "Failed to load map data. Please try again.")
            return False

        if not self._is_current(seq):
            logger.debug("Discarding stale case list")
            return False
        self.loading = False
        if self.markers is None:
            return False

        cases = [c for c in page.results if self.filters.matches(c)]
        total = len(cases) if self.filters.time_range else page.count

        self.cases = cases
        self.search.set_cases(cases)
        if self.error is not None and self.error.kind == ErrorKind.LIST_FETCH:
            self.error = None

        return self._populate(cases, total)

    def _is_current(self, seq: int) -> bool:
        return self._active and seq == self._refresh_seq

    def _populate(self, cases: List[Case], total: int) -> bool:
        self.state = MapState.POPULATING
        try:
            self.markers.replace(cases)
        except MapFailure as e:
            self._fail_map(e)
            return False

        if self.tooltip.hovered_id is not None and self.tooltip.hovered_id not in self.markers:
            self.tooltip.on_leave()

        self.stats = MapStats.from_cases(cases, total=total, located=len(self.markers))
        self.state = MapState.READY
        return True

    async def apply_filters(self, filters: MapFilters) -> bool:
        self.filters = filters
        return await self.refresh()

    async def clear_filters(self) -> bool:
        self.filters = MapFilters()
        return await self.refresh()

    # ---- camera / interaction ----

    def center_map(self) -> bool:
        if self.fitter is None:
            return False
        try:
            self.fitter.reset(self.config.default_center, self.config.default_zoom)
        except MapFailure as e:
            self._fail_map(e)
            return False
        return True

    def sync_camera(self, center: LatLng, zoom: float) -> bool:
        """Apply a pan/zoom reported by the browser; overlays redraw."""
        if self._map is None:
            return False
        try:
            self._map.move_camera(center, zoom)
        except MapFailure as e:
            self._fail_map(e)
            return False
        return True

    def find_case(self, case_id: Any) -> Optional[Case]:
        for case in self.cases:
            if str(case.id) == str(case_id):
                return case
        return self.search.find_result(case_id)

    def find_record(self, case_id: Any) -> Optional[MarkerRecord]:
        if self.markers is None:
            return None
        record = self.markers.get(case_id)
        if record is not None:
            return record
        for key in self.markers.keys():
            if str(key) == str(case_id):
                return self.markers.get(key)
        return None

    def select_search_result(self, case_id: Any) -> Optional[Case]:
        case = self.search.find_result(case_id) or self.find_case(case_id)
        if case is None:
            return None
        try:
            self.search.select(case)
        except MapFailure as e:
            self._fail_map(e)
            return None
        self.selected_case = case
        return case

    def dispatch_marker_event(self, case_id: Any, event: str, rect: Optional[ScreenRect] = None) -> bool:
        """
        Forward a pointer event from the renderer to the marker's hooks.

        rect is the marker's on-screen rectangle in map container pixels, as
        measured by the renderer; the tooltip is placed above it.
        """
        if event not in MARKER_EVENTS:
            raise ValueError(f"Unsupported marker event: {event}")
        record = self.find_record(case_id)
        if record is None:
            return False
        if rect is not None:
            return record.marker.element.dispatch(event, rect=rect) > 0
        return record.marker.element.dispatch(event) > 0

    def go_to_case_detail(self, case_id: Any):
        self.navigation = self.config.case_detail_url.format(case_id=case_id)
        logger.info(f"Navigate to case {case_id}")
        if self._navigate:
            self._navigate(case_id)

    # ---- serialization ----

    def snapshot(self) -> Dict[str, Any]:
        markers = self.markers.records() if self.markers else []
        selected = self.search.selected or self.selected_case
        return {
            "state": self.state.value,
            "error": self.error.to_dict() if self.error else None,
            "loading": self.loading,
            "filters": self.filters.to_dict(),
            "stats": self.stats.to_dict(),
            "camera": self._map.snapshot() if self._map is not None and hasattr(self._map, "snapshot") else None,
            "frame": self.fitter.last_frame.to_dict() if self.fitter and self.fitter.last_frame else None,
            "markers": [r.to_dict() for r in markers],
            "hovered_id": self.tooltip.hovered_id,
            "tooltip": self.tooltip.tooltip.to_dict() if self.tooltip.tooltip else None,
            "selected": selected.to_dict() if selected else None,
            "search": {
                "text": self.search.text,
                "searching": self.search.searching,
                "error": self.search.error,
                "results": [c.to_dict() for c in self.search.results],
            },
            "navigation": self.navigation,
        }
