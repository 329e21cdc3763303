"""
Marker attachments.

A marker reaches the map through one of two attachments with the same
attach / detach / redraw surface:

- NativeMarkerAttachment: the provider's advanced marker primitive
- OverlayAdapter: fallback overlay that re-projects the marker element on
  every projection change

detach() is idempotent and never raises, because marker-set replacement can
race with map teardown.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..errors import MapFailure
from ..provider.base import LatLng, MapHandle, OverlayView, ProviderHandle
from .element import place_element
from .factory import VisualMarker

logger = logging.getLogger(__name__)


class MarkerAttachment(ABC):
    """Something attachable to, detachable from and redrawable on a map."""

    def __init__(self, marker: VisualMarker, position: LatLng):
        self.marker = marker
        self.position = position

    @property
    @abstractmethod
    def attached(self) -> bool:
        ...

    @abstractmethod
    def attach(self, map_handle: MapHandle):
        ...

    @abstractmethod
    def detach(self):
        ...

    @abstractmethod
    def redraw(self):
        ...

    @property
    def mode(self) -> str:
        return "native"


class NativeMarkerAttachment(MarkerAttachment):
    """Attachment through the provider's native marker primitive."""

    def __init__(self, provider: ProviderHandle, marker: VisualMarker, position: LatLng):
        super().__init__(marker, position)
        self.provider = provider
        self._handle = None

    @property
    def attached(self) -> bool:
        return self._handle is not None and self._handle.map is not None

    def attach(self, map_handle: MapHandle):
        if self.attached:
            if self._handle.map is map_handle:
                return
            self.detach()
        handle = self.provider.create_native_marker(
            map_handle,
            self.position,
            self.marker.element,
            z_index=self.marker.z_index,
            title=self.marker.case.full_name,
        )
        if handle is None:
            raise RuntimeError("Provider has no native marker primitive")
        self._handle = handle

    def detach(self):
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            handle.set_map(None)
        except MapFailure as e:
            logger.debug(f"Native marker detach after map teardown: {e}")

    def redraw(self):
        if self.attached:
            map_handle = self._handle.map
            projection = map_handle.get_projection()
            if projection is not None:
                place_element(self.marker.element, projection.from_lat_lng_to_div_pixel(self.position))


class OverlayAdapter(OverlayView, MarkerAttachment):
    """
    Fallback positioning for providers without a native marker primitive.

    on_add inserts the marker element into the overlay pane, draw re-projects
    it from the current projection, on_remove takes it out again.
    """

    def __init__(self, marker: VisualMarker, position: LatLng):
        OverlayView.__init__(self)
        MarkerAttachment.__init__(self, marker, position)
        self.draw_count = 0

    @property
    def mode(self) -> str:
        return "overlay"

    @property
    def attached(self) -> bool:
        return self.get_map() is not None

    def attach(self, map_handle: MapHandle):
        # set_map moves the overlay off any previous map first
        self.set_map(map_handle)

    def detach(self):
        if self.get_map() is None:
            return
        try:
            self.set_map(None)
        except MapFailure as e:
            logger.debug(f"Overlay detach after map teardown: {e}")
        finally:
            self._map = None
            self.marker.element.remove()

    def redraw(self):
        self.draw()

    # ---- OverlayView hooks ----

    def on_add(self):
        panes = self.get_panes()
        if panes is not None:
            panes.overlay_mouse_target.append(self.marker.element)

    def draw(self):
        projection = self.get_projection()
        if projection is None:
            return
        point = projection.from_lat_lng_to_div_pixel(self.position)
        place_element(self.marker.element, point)
        self.draw_count += 1

    def on_remove(self):
        self.marker.element.remove()


def create_attachment(
    provider: ProviderHandle,
    marker: VisualMarker,
    position: LatLng,
    map_handle: MapHandle,
) -> MarkerAttachment:
    """Attach marker to map through the native primitive when available."""
    attachment: Optional[MarkerAttachment] = None
    if provider.supports_native_markers:
        attachment = NativeMarkerAttachment(provider, marker, position)
    else:
        attachment = OverlayAdapter(marker, position)
    attachment.attach(map_handle)
    return attachment
