"""
Active marker set.

MarkerSetController owns the authoritative mapping case id -> MarkerRecord
for one map. replace() swaps the whole set in one synchronous pass:

1. keep cases with a valid location (others are expected data, not errors)
2. detach and release every current record
3. build and attach a marker per case; a failing case is logged and skipped
4. hand the placed cases to the viewport fitter

No await happens between detaching the old set and attaching the new one,
so a partially replaced set is never observable.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..cases.client import Case
from ..errors import MapFailure
from ..provider.base import MapHandle, ProviderHandle
from .factory import MarkerFactory, VisualMarker
from .overlay import MarkerAttachment, create_attachment

logger = logging.getLogger(__name__)

# Root styles owned by the renderer: placement comes from the browser map,
# stacking from the marker z_index and hover scaling from CSS.
RENDERER_STYLES = ("position", "left", "top", "z-index", "transform")


@dataclass
class MarkerRecord:
    case: Case
    marker: VisualMarker
    attachment: MarkerAttachment
    z_index: int

    @property
    def case_id(self) -> Any:
        return self.case.id

    def release(self):
        try:
            self.attachment.detach()
        finally:
            self.marker.release()

    @property
    def render_key(self) -> str:
        """Changes only when the marker content itself changes."""
        return f"{self.case.id}|{self.case.status.value}|{self.marker.photo.attrs.get('src', '')}"

    def to_dict(self) -> Dict[str, Any]:
        position = self.attachment.position
        return {
            "case_id": self.case.id,
            "lat": position.lat,
            "lng": position.lng,
            "status": self.case.status.value,
            "title": self.case.full_name,
            "z_index": self.z_index,
            "hovered": self.marker.hovered,
            "mode": self.attachment.mode,
            "rect": self.marker.element.rect.to_dict() if self.marker.element.rect else None,
            "render_key": self.render_key,
            "html": self.marker.element.to_html(skip_style=RENDERER_STYLES),
        }


class MarkerSetController:
    """
    Owns the markers currently displayed on a map.

    Usage:
        markers = MarkerSetController(map_handle, provider, factory, fitter=fitter)
        placed = markers.replace(cases)
        ...
        markers.clear()
    """

    def __init__(
        self,
        map_handle: MapHandle,
        provider: ProviderHandle,
        factory: MarkerFactory,
        fitter: Optional[Any] = None,
        attach: Callable[..., MarkerAttachment] = create_attachment,
    ):
        self.map = map_handle
        self.provider = provider
        self.factory = factory
        self.fitter = fitter
        self._attach = attach
        self._records: Dict[Any, MarkerRecord] = {}
        self.replace_count = 0

    # ---- queries ----

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, case_id: Any) -> bool:
        return case_id in self._records

    def keys(self) -> List[Any]:
        return list(self._records.keys())

    def get(self, case_id: Any) -> Optional[MarkerRecord]:
        return self._records.get(case_id)

    def records(self) -> List[MarkerRecord]:
        return list(self._records.values())

    # ---- mutation ----

    def clear(self):
        """Detach and release every record; safe after map teardown."""
        records, self._records = self._records, {}
        for record in records.values():
            try:
                record.release()
            except Exception as e:
                logger.warning(f"Failed to release marker for case {record.case_id}: {e}")

    def replace(self, cases: Iterable[Case]) -> List[Case]:
        """Replace the marker set; returns the cases now on the map."""
        located = [c for c in cases if c.location is not None]

        self.clear()

        new_records: Dict[Any, MarkerRecord] = {}
        skipped = 0
        for case in located:
            try:
                record = self._build_record(case)
            except MapFailure:
                # Map-level failure: nothing further can be attached
                for built in new_records.values():
                    built.release()
                raise
            except Exception as e:
                skipped += 1
                logger.warning(f"Skipping marker for case {case.id}: {e}")
                continue

            previous = new_records.pop(case.id, None)
            if previous is not None:
                logger.debug(f"Duplicate case id {case.id} in batch; keeping the later entry")
                previous.release()
            new_records[case.id] = record

        self._records = new_records
        self.replace_count += 1
        placed = [r.case for r in new_records.values()]

        logger.info(
            f"Marker set replaced: {len(placed)} placed, {skipped} failed, "
            f"{len(located) - len(placed) - skipped} duplicates"
        )

        if self.fitter is not None:
            self.fitter.fit(placed)
        return placed

    def _build_record(self, case: Case) -> MarkerRecord:
        position = case.location
        if position is None:
            raise ValueError("case has no valid location")

        marker = self.factory.build(case)
        try:
            attachment = self._attach(self.provider, marker, position, self.map)
        except Exception:
            marker.release()
            raise
        return MarkerRecord(case=case, marker=marker, attachment=attachment, z_index=marker.z_index)

    def redraw(self):
        for record in self._records.values():
            record.attachment.redraw()
