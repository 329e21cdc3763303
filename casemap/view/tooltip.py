"""Hover tooltip for case markers."""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..cases.client import Case
from ..markers.element import ScreenRect

TOOLTIP_WIDTH = 220
TOOLTIP_HEIGHT = 64
TOOLTIP_OFFSET = 8


@dataclass(frozen=True)
class Tooltip:
    case_id: Any
    title: str
    status: str
    last_seen_location: str
    left: float
    top: float
    width: float
    height: float

    @property
    def bottom(self) -> float:
        return self.top + self.height

    def to_dict(self) -> Dict[str, Any]:
        return {
            "case_id": self.case_id,
            "title": self.title,
            "status": self.status,
            "last_seen_location": self.last_seen_location,
            "left": self.left,
            "top": self.top,
            "width": self.width,
            "height": self.height,
        }


class HoverTooltipController:
    """
    Tracks the hovered marker and positions a single tooltip above it.

    Enter sets the hovered case, leave clears it; the last event wins.
    """

    def __init__(
        self,
        width: float = TOOLTIP_WIDTH,
        height: float = TOOLTIP_HEIGHT,
        offset: float = TOOLTIP_OFFSET,
    ):
        self.width = width
        self.height = height
        self.offset = offset
        self.tooltip: Optional[Tooltip] = None

    @property
    def hovered_id(self) -> Optional[Any]:
        return self.tooltip.case_id if self.tooltip else None

    def on_enter(self, case: Case, rect: ScreenRect) -> Tooltip:
        self.tooltip = Tooltip(
            case_id=case.id,
            title=case.full_name,
            status=case.status.label,
            last_seen_location=case.last_seen_location,
            left=rect.center_x - self.width / 2,
            top=rect.top - self.offset - self.height,
            width=self.width,
            height=self.height,
        )
        return self.tooltip

    def on_leave(self):
        self.tooltip = None
