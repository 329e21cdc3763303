"""
Visual element tree.

A small retained element model used for marker content and map panes. Each
element carries a tag, CSS class, inline style, attributes, children and
event handlers, plus the screen rectangle it currently occupies. Trees are
serialized with to_dict() for the dashboard API and to_html() for the
browser renderer.
"""

import html
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional

if TYPE_CHECKING:
    from ..provider.base import Point


@dataclass(frozen=True)
class ScreenRect:
    """Rectangle in container pixels."""
    left: float
    top: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height

    @property
    def center_x(self) -> float:
        return self.left + self.width / 2

    def to_dict(self) -> Dict[str, float]:
        return {
            "left": self.left,
            "top": self.top,
            "width": self.width,
            "height": self.height,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScreenRect":
        return cls(
            left=float(data["left"]),
            top=float(data["top"]),
            width=float(data["width"]),
            height=float(data["height"]),
        )


class VisualElement:
    """Node in a visual element tree."""

    VOID_TAGS = {"img", "br", "hr"}

    def __init__(
        self,
        tag: str = "div",
        class_name: str = "",
        style: Optional[Dict[str, str]] = None,
        attrs: Optional[Dict[str, str]] = None,
        width: float = 0.0,
        height: float = 0.0,
    ):
        self.tag = tag
        self.class_name = class_name
        self.style: Dict[str, str] = dict(style or {})
        self.attrs: Dict[str, str] = dict(attrs or {})
        self.width = width
        self.height = height
        self.children: List["VisualElement"] = []
        self.parent: Optional["VisualElement"] = None
        self.rect: Optional[ScreenRect] = None
        self._handlers: Dict[str, List[Callable[..., None]]] = {}

    # ---- tree ----

    def append(self, child: "VisualElement") -> "VisualElement":
        if child.parent is not None:
            child.remove()
        child.parent = self
        self.children.append(child)
        return child

    def remove(self):
        """Detach from the parent; no-op when already detached."""
        if self.parent is None:
            return
        try:
            self.parent.children.remove(self)
        except ValueError:
            pass
        self.parent = None

    def find(self, class_name: str) -> Optional["VisualElement"]:
        """Depth-first search by CSS class."""
        if class_name in self.class_name.split():
            return self
        for child in self.children:
            found = child.find(class_name)
            if found is not None:
                return found
        return None

    # ---- events ----

    def on(self, event: str, handler: Callable[..., None]):
        self._handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: Optional[Callable[..., None]] = None):
        if handler is None:
            self._handlers.pop(event, None)
            return
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def clear_handlers(self):
        self._handlers.clear()
        for child in self.children:
            child.clear_handlers()

    def has_handlers(self, event: str) -> bool:
        return bool(self._handlers.get(event))

    def dispatch(self, event: str, **payload: Any) -> int:
        """Call handlers for event; returns the number of handlers invoked."""
        handlers = list(self._handlers.get(event, []))
        for handler in handlers:
            handler(self, **payload)
        return len(handlers)

    # ---- serialization ----

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tag": self.tag,
            "class": self.class_name,
            "style": dict(self.style),
            "attrs": dict(self.attrs),
            "children": [c.to_dict() for c in self.children],
        }

    def to_html(self, skip_style: Iterable[str] = ()) -> str:
        """Serialize the tree; skip_style drops those properties from this node only."""
        parts = [self.tag]
        if self.class_name:
            parts.append(f'class="{html.escape(self.class_name)}"')
        style = {k: v for k, v in self.style.items() if k not in skip_style}
        if style:
            style_text = "; ".join(f"{k}: {v}" for k, v in style.items())
            parts.append(f'style="{html.escape(style_text)}"')
        for key, value in self.attrs.items():
            parts.append(f'{key}="{html.escape(str(value))}"')
        opening = "<" + " ".join(parts) + ">"
        if self.tag in self.VOID_TAGS:
            return opening
        inner = "".join(c.to_html() for c in self.children)
        return f"{opening}{inner}</{self.tag}>"

    def __repr__(self) -> str:
        return f"VisualElement({self.tag}.{self.class_name}, children={len(self.children)})"


def place_element(element: VisualElement, point: "Point") -> ScreenRect:
    """
    Position an element so its bottom-centre sits on point.

    Markers are pin-shaped, so the geographic position is the pin tip.
    """
    left = point.x - element.width / 2
    top = point.y - element.height
    element.style["position"] = "absolute"
    element.style["left"] = f"{left:.1f}px"
    element.style["top"] = f"{top:.1f}px"
    element.rect = ScreenRect(left, top, element.width, element.height)
    return element.rect
