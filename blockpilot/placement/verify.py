"""Read-back verification of placements and whole-graph repair.

The runtime's read-back is authoritative: a gesture can look right and still
leave a block floating. Any disagreement is repaired by committing the full
intended graph, never by patching a single edge.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..config import VerifyConfig
from ..errors import GestureError, GestureErrorKind, PlacementError, RemoteError
from ..graph.model import BlockGraph, ChannelTable
from ..mutation import CommitAck, SnapshotMutationProtocol
from ..remote import ActualGraph, RemoteTarget
from .drag import DragSimulator
from .geometry import AnchorKind, GeometryResolver

LOGGER = logging.getLogger("blockpilot.verify")

BAY_INPUT = "SUBSTACK"


class Classification(str, Enum):
    DISCONNECTED = "disconnected"
    WRONG_PARENT = "wrong_parent"
    WRONG_NEXT = "wrong_next"
    MISSING = "missing"


@dataclass(frozen=True)
class ExpectedEdges:
    parent_id: Optional[str]
    next_id: Optional[str]
    top_level: bool


@dataclass(frozen=True)
class Finding:
    node_id: str
    classification: Classification
    detail: str = ""


@dataclass
class VerificationReport:
    target: str
    checked: int
    findings: List[Finding] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.findings

    @property
    def disconnected(self) -> List[str]:
        return [f.node_id for f in self.findings if f.classification is Classification.DISCONNECTED]

    def summary(self) -> str:
        if self.ok:
            return f"{self.checked} node(s) match"
        parts = [f"{f.node_id}={f.classification.value}" for f in self.findings]
        return f"{len(self.findings)}/{self.checked} mismatched: " + ", ".join(parts)


@dataclass(frozen=True)
class PlacementIntent:
    """Connect the stack starting at ``source_id`` under ``target_id``."""

    source_id: str
    target_id: str
    kind: AnchorKind = AnchorKind.NEXT

    def apply(self, graph: BlockGraph) -> BlockGraph:
        """The graph as it should look once the placement succeeded."""
        out = graph.copy()
        source = out[self.source_id]
        target = out[self.target_id]
        if self.target_id in out.stack(self.source_id):
            raise ValueError(f"{self.target_id} moves with {self.source_id}; it cannot receive its own stack")
        tail_id = out.chain(self.source_id)[-1]
        old_parent = out.get(source.parent_id)
        if old_parent is not None:
            if old_parent.next_id == self.source_id:
                old_parent.next_id = None
            old_parent.inputs = {
                name: value for name, value in old_parent.inputs.items() if self.source_id not in value[1:]
            }
        if AnchorKind(self.kind) is AnchorKind.BAY:
            existing = target.inputs.get(BAY_INPUT)
            displaced = existing[1] if existing and isinstance(existing[1], str) else None
            target.inputs[BAY_INPUT] = [2, self.source_id]
        else:
            displaced = target.next_id
            target.next_id = self.source_id
        source.parent_id = self.target_id
        source.top_level = False
        source.x = source.y = None
        if displaced is not None:
            out[tail_id].next_id = displaced
            out[displaced].parent_id = tail_id
        return out


@dataclass
class PlacementOutcome:
    report: VerificationReport
    repaired: bool
    gesture_error: Optional[GestureError] = None
    ack: Optional[CommitAck] = None


def edges_from_graph(graph: BlockGraph) -> Dict[str, ExpectedEdges]:
    return {
        node_id: ExpectedEdges(parent_id=node.parent_id, next_id=node.next_id, top_level=node.top_level)
        for node_id, node in graph.items()
    }


class VerificationLoop:
    def __init__(
        self,
        remote: RemoteTarget,
        mutation: SnapshotMutationProtocol,
        *,
        geometry: Optional[GeometryResolver] = None,
        drag: Optional[DragSimulator] = None,
        config: Optional[VerifyConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.remote = remote
        self.mutation = mutation
        self.geometry = geometry
        self.drag = drag
        self.config = config or VerifyConfig()
        self._sleep = sleep
        self._clock = clock

    def settle(self, target: str) -> ActualGraph:
        """Read until two consecutive reads agree or the settle window closes."""
        deadline = self._clock() + self.config.settle_timeout_s
        previous: Optional[ActualGraph] = None
        last_error: Optional[RemoteError] = None
        while True:
            try:
                current = self.remote.read_actual_graph(target)
            except RemoteError as exc:
                last_error = exc
                current = None
            if current is not None and current == previous:
                return current
            if current is not None:
                previous = current
            if self._clock() >= deadline:
                if previous is not None:
                    LOGGER.warning("Layout of %s did not settle within %.1fs", target, self.config.settle_timeout_s)
                    return previous
                raise last_error or RemoteError(f"no read-back for {target}")
            self._sleep(self.config.settle_poll_s)

    def verify(self, target: str, intended: Dict[str, ExpectedEdges]) -> VerificationReport:
        actual = self.settle(target).blocks
        report = VerificationReport(target=target, checked=len(intended))
        for node_id, expected in intended.items():
            found = actual.get(node_id)
            if found is None:
                report.findings.append(Finding(node_id, Classification.MISSING))
            elif expected.parent_id is not None and found.top_level:
                report.findings.append(
                    Finding(node_id, Classification.DISCONNECTED, f"expected under {expected.parent_id}")
                )
            elif found.parent_id != expected.parent_id or found.top_level != expected.top_level:
                report.findings.append(
                    Finding(node_id, Classification.WRONG_PARENT, f"{found.parent_id} != {expected.parent_id}")
                )
            elif found.next_id != expected.next_id:
                report.findings.append(
                    Finding(node_id, Classification.WRONG_NEXT, f"{found.next_id} != {expected.next_id}")
                )
        LOGGER.info("Verified %s: %s", target, report.summary())
        return report

    def repair(self, target: str, intended_graph: BlockGraph, *, channels: Optional[ChannelTable] = None) -> CommitAck:
        LOGGER.info("Repairing %s with a full commit of %d nodes", target, len(intended_graph))
        return self.mutation.commit(target, intended_graph, channels=channels)

    def commit(
        self, target: str, intended_graph: BlockGraph, *, channels: Optional[ChannelTable] = None
    ) -> PlacementOutcome:
        """Direct placement: commit the whole graph, then trust only the read-back."""
        ack = self.mutation.commit(target, intended_graph, channels=channels)
        return self._confirm(target, intended_graph, channels, ack=ack)

    def place(self, target: str, intent: PlacementIntent) -> PlacementOutcome:
        """Drag ``intent.source_id`` onto ``intent.target_id``, then verify and repair."""
        if self.geometry is None or self.drag is None:
            raise RuntimeError("placement by gesture needs a geometry resolver and a drag simulator")
        snapshot = self.mutation.read()
        owner = snapshot.find(target)
        if owner is None:
            raise KeyError(target)
        intended_graph = intent.apply(owner.graph)

        gesture_error = self._gesture(intent)
        if (
            gesture_error is not None
            and gesture_error.kind is GestureErrorKind.NO_SNAP_HIGHLIGHT
            and not self._eligible(intent)
        ):
            LOGGER.info("Re-deriving anchors for %s -> %s", intent.source_id, intent.target_id)
            gesture_error = self._gesture(intent)
        return self._confirm(target, intended_graph, snapshot.channels, gesture_error=gesture_error)

    def _gesture(self, intent: PlacementIntent) -> Optional[GestureError]:
        plan = self.geometry.plan_drag(intent.source_id, intent.target_id, intent.kind)
        try:
            self.drag.simulate_drag(plan.start, plan.end)
        except GestureError as exc:
            LOGGER.warning("Gesture %s -> %s failed: %s", intent.source_id, intent.target_id, exc)
            return exc
        return None

    def _eligible(self, intent: PlacementIntent) -> bool:
        """Whether the source now rests within snap distance of its intended anchor."""
        try:
            source = self.geometry.connection_anchor(intent.source_id, AnchorKind.PREVIOUS)
            anchor = self.geometry.connection_anchor(intent.target_id, intent.kind)
            scale = self.remote.view_scale()
        except RemoteError as exc:
            LOGGER.warning("Anchors unavailable after gesture: %s", exc)
            return False
        return self.geometry.is_eligible(source, anchor, scale)

    def _confirm(
        self,
        target: str,
        intended_graph: BlockGraph,
        channels: Optional[ChannelTable],
        *,
        ack: Optional[CommitAck] = None,
        gesture_error: Optional[GestureError] = None,
    ) -> PlacementOutcome:
        intended = edges_from_graph(intended_graph)
        report = self.verify(target, intended)
        if report.ok:
            return PlacementOutcome(report=report, repaired=False, gesture_error=gesture_error, ack=ack)

        ack = self.repair(target, intended_graph, channels=channels)
        report = self.verify(target, intended)
        if not report.ok:
            raise PlacementError(target, report)
        return PlacementOutcome(report=report, repaired=True, gesture_error=gesture_error, ack=ack)
