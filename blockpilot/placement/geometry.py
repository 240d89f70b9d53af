"""Screen-space connection anchors computed from rendered block boxes."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from ..config import GeometryConfig
from ..errors import RemoteError
from ..remote import BoundingBox, RemoteTarget

LOGGER = logging.getLogger("blockpilot.geometry")


class AnchorKind(str, Enum):
    PREVIOUS = "previous"
    NEXT = "next"
    BAY = "bay"


@dataclass(frozen=True)
class Point:
    x: float
    y: float

    def distance_to(self, other: "Point") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)


@dataclass(frozen=True)
class ConnectionAnchor:
    x: float
    y: float
    kind: AnchorKind

    @property
    def point(self) -> Point:
        return Point(self.x, self.y)


@dataclass(frozen=True)
class LayoutConstants:
    previous_offset_x: float
    bay_offset_x: float
    bay_offset_y: float
    snap_radius: float
    source: str = "fallback"

    @classmethod
    def from_config(cls, config: GeometryConfig) -> "LayoutConstants":
        return cls(
            previous_offset_x=config.previous_offset_x,
            bay_offset_x=config.bay_offset_x,
            bay_offset_y=config.bay_offset_y,
            snap_radius=config.snap_radius,
        )


@dataclass(frozen=True)
class DragPlan:
    start: Point
    end: Point
    source_anchor: ConnectionAnchor
    target_anchor: ConnectionAnchor
    scale: float


def anchor_from_box(box: BoundingBox, scale: float, kind: AnchorKind, constants: LayoutConstants) -> ConnectionAnchor:
    if kind is AnchorKind.PREVIOUS:
        return ConnectionAnchor(box.left + constants.previous_offset_x * scale, box.top, kind)
    if kind is AnchorKind.NEXT:
        return ConnectionAnchor(box.left + constants.previous_offset_x * scale, box.top + box.height, kind)
    return ConnectionAnchor(
        box.left + constants.bay_offset_x * scale,
        box.top + constants.bay_offset_y * scale,
        kind,
    )


class GeometryResolver:
    """Resolves anchors fresh on every call; only the layout constants are cached."""

    def __init__(self, remote: RemoteTarget, fallback: Optional[GeometryConfig] = None) -> None:
        self.remote = remote
        self.config = fallback or GeometryConfig()
        self._constants: Optional[LayoutConstants] = None

    @property
    def constants(self) -> LayoutConstants:
        if self._constants is None:
            self._constants = self._introspect()
        return self._constants

    def _introspect(self) -> LayoutConstants:
        fallback = LayoutConstants.from_config(self.config)
        try:
            raw: Optional[Dict[str, float]] = self.remote.layout_constants()
        except RemoteError as exc:
            LOGGER.warning("Layout introspection failed, using fallback constants: %s", exc)
            return fallback
        if not raw:
            LOGGER.warning("Renderer exposes no layout constants, using fallback")
            return fallback
        try:
            constants = LayoutConstants(
                previous_offset_x=float(raw["previous_offset_x"]),
                bay_offset_x=float(raw["bay_offset_x"]),
                bay_offset_y=float(raw["bay_offset_y"]),
                snap_radius=float(raw["snap_radius"]),
                source="introspected",
            )
        except (KeyError, TypeError, ValueError) as exc:
            LOGGER.warning("Unusable layout constants %r (%s), using fallback", raw, exc)
            return fallback
        LOGGER.info("Layout constants introspected: %s", constants)
        return constants

    def connection_anchor(self, node_id: str, kind: AnchorKind) -> ConnectionAnchor:
        box = self.remote.bounding_box(node_id)
        return anchor_from_box(box, self.remote.view_scale(), AnchorKind(kind), self.constants)

    def grab_point(self, node_id: str) -> Point:
        """Point just inside the origin corner; the runtime keeps this offset while dragging."""
        box = self.remote.bounding_box(node_id)
        inset = self.config.grab_inset * self.remote.view_scale()
        return Point(box.left + inset, box.top + inset)

    def is_eligible(self, source: ConnectionAnchor, target: ConnectionAnchor, scale: float) -> bool:
        if source.kind is not AnchorKind.PREVIOUS or target.kind is AnchorKind.PREVIOUS:
            return False
        return source.point.distance_to(target.point) <= self.constants.snap_radius * scale

    def plan_drag(self, source_id: str, target_id: str, kind: AnchorKind) -> DragPlan:
        kind = AnchorKind(kind)
        if kind is AnchorKind.PREVIOUS:
            raise ValueError("a block can only be dropped onto a next or bay anchor")
        scale = self.remote.view_scale()
        source_box = self.remote.bounding_box(source_id)
        source_anchor = anchor_from_box(source_box, scale, AnchorKind.PREVIOUS, self.constants)
        target_anchor = anchor_from_box(self.remote.bounding_box(target_id), scale, kind, self.constants)
        inset = self.config.grab_inset * scale
        start = Point(source_box.left + inset, source_box.top + inset)
        end = Point(
            start.x + (target_anchor.x - source_anchor.x),
            start.y + (target_anchor.y - source_anchor.y),
        )
        LOGGER.debug("Drag plan %s -> %s (%s): %s -> %s", source_id, target_id, kind.value, start, end)
        return DragPlan(start=start, end=end, source_anchor=source_anchor, target_anchor=target_anchor, scale=scale)
