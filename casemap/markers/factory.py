"""
Case marker construction.

Each marker is a status-coloured teardrop pin with a circular photo inset:

    case-marker            wrapper, carries z-index / hover transform
      case-marker-pin      teardrop shape in the status colour
        case-marker-photo  circular image (case photo or default avatar)

Markers for missing cases stack above found / under investigation, which
stack above unknown statuses, so the most urgent case is on top when pins
share a coordinate.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from ..cases.client import Case, CaseStatus
from ..errors import PhotoDecodeError
from .element import ScreenRect, VisualElement
from .photos import PhotoLoader

logger = logging.getLogger(__name__)

STATUS_COLORS: Dict[CaseStatus, str] = {
    CaseStatus.MISSING: "#ef4444",              # red
    CaseStatus.FOUND: "#10b981",                # green
    CaseStatus.UNDER_INVESTIGATION: "#f59e0b",  # amber
    CaseStatus.UNKNOWN: "#6b7280",              # gray
}

STACKING: Dict[CaseStatus, int] = {
    CaseStatus.MISSING: 300,
    CaseStatus.FOUND: 200,
    CaseStatus.UNDER_INVESTIGATION: 200,
    CaseStatus.UNKNOWN: 100,
}

HOVER_Z_INDEX = 10000
HOVER_SCALE = 1.15

MARKER_WIDTH = 44
MARKER_HEIGHT = 54
PHOTO_SIZE = 32

DEFAULT_AVATAR = "/default-avatar.png"


def marker_color(status: CaseStatus) -> str:
    return STATUS_COLORS.get(status, STATUS_COLORS[CaseStatus.UNKNOWN])


def stacking_priority(status: CaseStatus) -> int:
    return STACKING.get(status, STACKING[CaseStatus.UNKNOWN])


@dataclass
class VisualMarker:
    """Built marker: element tree plus its interaction state."""
    case: Case
    element: VisualElement
    photo: VisualElement
    z_index: int
    hovered: bool = False
    released: bool = False
    photo_task: Optional[asyncio.Task] = None

    @property
    def case_id(self) -> Any:
        return self.case.id

    def release(self):
        """Drop hooks and remove the element; pending photo results are ignored."""
        self.released = True
        self.element.clear_handlers()
        self.element.remove()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "case_id": self.case.id,
            "z_index": self.z_index,
            "hovered": self.hovered,
            "element": self.element.to_dict(),
        }


class MarkerFactory:
    """
    Builds one VisualMarker per case.

    Callbacks:
        on_click(case_id)            - navigation to the case detail
        on_hover_enter(case, rect)   - tooltip controller enter
        on_hover_leave()             - tooltip controller leave
    """

    def __init__(
        self,
        on_click: Optional[Callable[[Any], None]] = None,
        on_hover_enter: Optional[Callable[[Case, ScreenRect], None]] = None,
        on_hover_leave: Optional[Callable[[], None]] = None,
        photo_loader: Optional[PhotoLoader] = None,
        default_avatar: str = DEFAULT_AVATAR,
    ):
        self.on_click = on_click
        self.on_hover_enter = on_hover_enter
        self.on_hover_leave = on_hover_leave
        self.photo_loader = photo_loader
        self.default_avatar = default_avatar

    def build(self, case: Case) -> VisualMarker:
        color = marker_color(case.status)
        z_index = stacking_priority(case.status)

        root = VisualElement(
            "div",
            "case-marker",
            style={
                "z-index": str(z_index),
                "transform": "scale(1)",
                "transform-origin": "bottom center",
                "cursor": "pointer",
            },
            attrs={"title": case.full_name, "data-case-id": str(case.id)},
            width=MARKER_WIDTH,
            height=MARKER_HEIGHT,
        )
        pin = root.append(VisualElement(
            "div",
            "case-marker-pin",
            style={
                "width": f"{MARKER_WIDTH}px",
                "height": f"{MARKER_WIDTH}px",
                "background-color": color,
                "border-radius": "50% 50% 50% 0",
                "transform": "rotate(-45deg)",
                "border": "2px solid #ffffff",
                "box-shadow": "0 2px 4px rgba(0,0,0,0.3)",
            },
            width=MARKER_WIDTH,
            height=MARKER_WIDTH,
        ))
        photo = pin.append(VisualElement(
            "img",
            "case-marker-photo",
            style={
                "width": f"{PHOTO_SIZE}px",
                "height": f"{PHOTO_SIZE}px",
                "border-radius": "50%",
                "object-fit": "cover",
                "transform": "rotate(45deg)",
            },
            attrs={"src": case.photo or self.default_avatar, "alt": case.full_name},
            width=PHOTO_SIZE,
            height=PHOTO_SIZE,
        ))

        marker = VisualMarker(case=case, element=root, photo=photo, z_index=z_index)
        self._bind_hooks(marker)

        if self.photo_loader and case.photo:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
            if loop is not None:
                marker.photo_task = loop.create_task(self._load_photo(marker))

        return marker

    def _bind_hooks(self, marker: VisualMarker):
        case = marker.case

        def on_photo_error(element: VisualElement, **_):
            if element.attrs.get("src") != self.default_avatar:
                element.attrs["src"] = self.default_avatar

        def on_click(element: VisualElement, **_):
            if self.on_click:
                self.on_click(case.id)

        def on_enter(element: VisualElement, rect: Optional[ScreenRect] = None, **_):
            marker.hovered = True
            element.style["transform"] = f"scale({HOVER_SCALE})"
            element.style["z-index"] = str(HOVER_Z_INDEX)
            if self.on_hover_enter:
                # The renderer reports where the marker really is on screen
                rect = rect or element.rect or ScreenRect(0, 0, element.width, element.height)
                self.on_hover_enter(case, rect)

        def on_leave(element: VisualElement, **_):
            marker.hovered = False
            element.style["transform"] = "scale(1)"
            element.style["z-index"] = str(marker.z_index)
            if self.on_hover_leave:
                self.on_hover_leave()

        marker.photo.on("error", on_photo_error)
        marker.element.on("click", on_click)
        marker.element.on("pointerenter", on_enter)
        marker.element.on("pointerleave", on_leave)

    async def _load_photo(self, marker: VisualMarker):
        try:
            uri = await self.photo_loader.load(marker.case.photo)
        except PhotoDecodeError as e:
            logger.debug(f"Photo for case {marker.case_id} unavailable: {e}")
            if not marker.released:
                marker.photo.dispatch("error")
            return
        except Exception as e:
            logger.warning(f"Photo load error for case {marker.case_id}: {e}")
            if not marker.released:
                marker.photo.dispatch("error")
            return

        if marker.released:
            return
        marker.photo.attrs["src"] = uri
