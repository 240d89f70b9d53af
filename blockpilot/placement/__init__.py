"""Gesture-based block placement and read-back verification."""

from .drag import DragSimulator, DragTrace, interpolate
from .geometry import AnchorKind, ConnectionAnchor, DragPlan, GeometryResolver, LayoutConstants, Point
from .verify import (
    Classification,
    ExpectedEdges,
    PlacementIntent,
    PlacementOutcome,
    VerificationLoop,
    VerificationReport,
    edges_from_graph,
)

__all__ = [
    "AnchorKind",
    "Classification",
    "ConnectionAnchor",
    "DragPlan",
    "DragSimulator",
    "DragTrace",
    "ExpectedEdges",
    "GeometryResolver",
    "LayoutConstants",
    "PlacementIntent",
    "PlacementOutcome",
    "Point",
    "VerificationLoop",
    "VerificationReport",
    "edges_from_graph",
    "interpolate",
]
