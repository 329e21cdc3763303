# Marker construction, attachment and set management
from .element import ScreenRect, VisualElement
from .factory import MarkerFactory, VisualMarker
from .overlay import MarkerAttachment, NativeMarkerAttachment, OverlayAdapter
from .marker_set import MarkerRecord, MarkerSetController
from .photos import PhotoLoader

__all__ = [
    "ScreenRect",
    "VisualElement",
    "MarkerFactory",
    "VisualMarker",
    "MarkerAttachment",
    "NativeMarkerAttachment",
    "OverlayAdapter",
    "MarkerRecord",
    "MarkerSetController",
    "PhotoLoader",
]
