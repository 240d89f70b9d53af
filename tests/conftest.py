"""Shared pytest fixtures for blockpilot.

Provides an in-memory stand-in for the browser runtime that reproduces the
behaviours the automation depends on: a reload that turns local-only costumes
into placeholders, a detach that silently refuses to empty a costume list, a
pointer that snaps dragged stacks onto nearby anchors, and a deterministic
"green flag" run trace.
"""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from blockpilot.errors import RemoteError  # noqa: E402
from blockpilot.graph.model import (  # noqa: E402
    STAGE_SELECTOR,
    AssetDescriptor,
    AssetKind,
    BlockGraph,
    GraphSnapshot,
    Target,
)
from blockpilot.graph.serialization import project_from_snapshot, snapshot_from_project  # noqa: E402
from blockpilot.remote import ActualAsset, ActualBlock, ActualGraph, BoundingBox, ResyncEntry  # noqa: E402

BACKDROP_ID = "cd21514d0531fdffb22204e0ec5ed84a"
SPRITE_COSTUME_ID = "bcf454acf82e4504149f7ffe07081dbc"

BLOCK_WIDTH = 120.0
BLOCK_HEIGHT = 40.0
PREVIOUS_X = 16.0
BAY_X = 16.0
BAY_Y = 48.0
SNAP_RADIUS = 48.0
ORIGIN = (200.0, 100.0)
MAX_TRACE = 500


@dataclass
class FakeCostume:
    descriptor: AssetDescriptor
    placeholder: bool = False


def default_snapshot() -> GraphSnapshot:
    stage = Target(
        name="Stage",
        is_stage=True,
        assets=[AssetDescriptor(id=BACKDROP_ID, kind=AssetKind.VECTOR, name="backdrop1")],
    )
    sprite = Target(
        name="Sprite1",
        assets=[AssetDescriptor(id=SPRITE_COSTUME_ID, kind=AssetKind.VECTOR, name="costume1")],
        extras={"x": 0, "y": 0, "visible": True},
    )
    return GraphSnapshot(targets=[stage, sprite], meta={"monitors": [], "extensions": []})


class FakeRuntime:
    """Implements ``RemoteTarget`` and ``Pointer`` in memory."""

    def __init__(self, *, catalogue: Sequence[str] = (), scale: float = 1.0) -> None:
        self.catalogue = {BACKDROP_ID, SPRITE_COSTUME_ID, *catalogue}
        self.scale = scale
        self.registered: Dict[str, AssetDescriptor] = {}
        self.constants: Optional[Dict[str, float]] = None
        self.calls: List[str] = []
        self.asset_counts: Dict[str, List[int]] = {}
        self.screenshots: List[Path] = []
        self.closed = False

        # fault injection
        self.fail_reads = 0
        self.fail_loads = 0
        self.fail_imports = 0
        self.missed_snaps = 0
        self.drop_on_reload: List[str] = []
        self.blind_highlight = False
        # Loads that accept the program but leave the first next link floating.
        self.loose_loads = 0

        self._snapshot = GraphSnapshot()
        self._costumes: Dict[str, List[FakeCostume]] = {}
        self._install(default_snapshot(), placeholders=False)

        self._pointer = (0.0, 0.0)
        self._pressed = False
        self._dragged: Optional[str] = None
        self._grab_offset = (0.0, 0.0)

    # helpers

    def _install(self, snapshot: GraphSnapshot, *, placeholders: bool, embedded: Sequence[str] = ()) -> None:
        self._snapshot = snapshot.copy()
        self._costumes = {}
        for target in self._snapshot.targets:
            self._costumes[target.name] = [
                FakeCostume(
                    descriptor=d,
                    placeholder=placeholders and d.id not in self.catalogue and d.id not in embedded,
                )
                for d in target.assets
            ]

    def _loosen_first_link(self) -> None:
        graph = self._sprite_graph()
        for node_id, node in graph.items():
            if node.next_id is not None:
                floating = graph[node.next_id]
                node.next_id = None
                floating.parent_id = None
                floating.top_level = True
                return

    def _target(self, name: str) -> Target:
        target = self._snapshot.find(name)
        if target is None:
            raise RemoteError(f"target_missing:{name}")
        return target

    def _costume_list(self, name: str) -> List[FakeCostume]:
        return self._costumes[self._target(name).name]

    def _note_count(self, name: str) -> None:
        key = self._target(name).name
        self.asset_counts.setdefault(key, []).append(len(self._costumes[key]))

    def graph(self, name: str) -> BlockGraph:
        return self._target(name).graph

    # RemoteTarget

    def get_snapshot(self) -> GraphSnapshot:
        self.calls.append("get_snapshot")
        if self.fail_reads:
            self.fail_reads -= 1
            raise RemoteError("timeout")
        snapshot = self._snapshot.copy()
        for target in snapshot.targets:
            target.assets = [c.descriptor for c in self._costumes[target.name]]
        return snapshot

    def load_snapshot(self, snapshot: GraphSnapshot, resync: Sequence[ResyncEntry] = ()) -> None:
        self.calls.append("load_snapshot")
        if self.fail_loads:
            self.fail_loads -= 1
            raise RemoteError("timeout")
        self._install(snapshot, placeholders=True)
        if self.loose_loads:
            self.loose_loads -= 1
            self._loosen_first_link()
        for entry in resync:
            costumes = self._costume_list(entry.target)
            slots = {c.descriptor.id: index for index, c in enumerate(costumes)}
            original = len(costumes)
            for descriptor in entry.descriptors:
                costumes.append(FakeCostume(descriptor))
            ids = {d.id for d in entry.descriptors}
            for index in range(original - 1, -1, -1):
                if costumes[index].placeholder and costumes[index].descriptor.id in ids:
                    del costumes[index]
            costumes.sort(key=lambda c: slots.get(c.descriptor.id, len(slots)))

    def register_asset(self, descriptor: AssetDescriptor) -> None:
        self.calls.append("register_asset")
        self.registered[descriptor.id] = descriptor

    def attach_asset(self, target: str, descriptor: AssetDescriptor) -> None:
        self.calls.append("attach_asset")
        self._costume_list(target).append(FakeCostume(descriptor))
        self._note_count(target)

    def detach_asset(self, target: str, index: int) -> None:
        self.calls.append("detach_asset")
        costumes = self._costume_list(target)
        if len(costumes) <= 1:
            return
        del costumes[index]
        self._note_count(target)

    def list_assets(self, target: str) -> List[ActualAsset]:
        return [
            ActualAsset(id=c.descriptor.id, name=c.descriptor.name, placeholder=c.placeholder)
            for c in self._costume_list(target)
        ]

    def read_actual_graph(self, target: str) -> ActualGraph:
        self.calls.append("read_actual_graph")
        graph = self.graph(target)
        blocks = {
            node_id: ActualBlock(node.opcode, node.parent_id, node.next_id, node.top_level)
            for node_id, node in graph.items()
        }
        return ActualGraph(blocks=blocks, assets=self.list_assets(target))

    def run_from_start(self) -> Dict[str, Any]:
        self.calls.append("run_from_start")
        traces: Dict[str, List[str]] = {t.name: [] for t in self._snapshot.targets}
        queue: List[Tuple[Target, str]] = []
        for target in self._snapshot.targets:
            for node_id in target.graph.top_level_ids():
                if target.graph[node_id].opcode == "event_whenflagclicked":
                    queue.append((target, node_id))
        steps = 0
        while queue and steps < MAX_TRACE:
            target, hat_id = queue.pop(0)
            for step in self._walk(target.graph, hat_id):
                steps += 1
                traces[target.name].append(step)
                if step.startswith("event_broadcast:"):
                    channel_id = step.split(":", 1)[1]
                    queue.extend(self._receivers(channel_id))
        observed: Dict[str, Any] = {}
        for target in self._snapshot.targets:
            costumes = self._costumes[target.name]
            observed[target.name] = {
                "trace": traces[target.name],
                "costumes": [c.descriptor.name for c in costumes if not c.placeholder],
            }
        return observed

    def _walk(self, graph: BlockGraph, start_id: str) -> List[str]:
        out: List[str] = []
        for node_id in graph.chain(start_id):
            node = graph[node_id]
            label = node.opcode
            broadcast = node.inputs.get("BROADCAST_INPUT")
            if broadcast and isinstance(broadcast[1], list):
                label = f"event_broadcast:{broadcast[1][2]}"
            for name, value in sorted(node.inputs.items()):
                ref = value[1] if len(value) > 1 else None
                child = graph.get(ref) if isinstance(ref, str) else None
                if child is not None and child.literal:
                    label += f" {name}={next(iter(child.fields.values()))[0]}"
            out.append(label)
            substack = node.inputs.get("SUBSTACK")
            if substack and isinstance(substack[1], str):
                out.extend(self._walk(graph, substack[1]))
        return out

    def _receivers(self, channel_id: str) -> List[Tuple[Target, str]]:
        found = []
        for target in self._snapshot.targets:
            for node_id in target.graph.top_level_ids():
                option = target.graph[node_id].fields.get("BROADCAST_OPTION")
                if option and option[1] == channel_id:
                    found.append((target, node_id))
        return found

    def export_project(self) -> bytes:
        self.calls.append("export_project")
        snapshot = self.get_snapshot()
        for target in snapshot.targets:
            target.graph = BlockGraph(
                {k: v for k, v in target.graph.items() if k not in self.drop_on_reload}
            )
        embedded = sorted(
            {c.descriptor.id for costumes in self._costumes.values() for c in costumes if not c.placeholder}
        )
        return json.dumps({"project": project_from_snapshot(snapshot), "embedded": embedded}).encode("utf-8")

    def import_project(self, data: bytes) -> None:
        self.calls.append("import_project")
        if self.fail_imports:
            self.fail_imports -= 1
            raise RemoteError("project could not be parsed")
        payload = json.loads(data.decode("utf-8"))
        self._install(snapshot_from_project(payload["project"]), placeholders=True, embedded=payload["embedded"])

    def screenshot(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"\x89PNG\r\n\x1a\n")
        self.screenshots.append(path)
        return path

    def close(self) -> None:
        self.closed = True

    # layout

    def _workspace_positions(self, graph: BlockGraph) -> Dict[str, Tuple[float, float]]:
        positions: Dict[str, Tuple[float, float]] = {}

        def place(node_id: str, x: float, y: float) -> None:
            for offset, chained in enumerate(graph.chain(node_id)):
                top = y + offset * BLOCK_HEIGHT
                positions[chained] = (x, top)
                substack = graph[chained].inputs.get("SUBSTACK")
                if substack and isinstance(substack[1], str) and substack[1] in graph:
                    place(substack[1], x + BAY_X, top + BAY_Y)

        for node_id in graph.top_level_ids():
            node = graph[node_id]
            place(node_id, node.x or 0.0, node.y or 0.0)
        return positions

    def _sprite_graph(self) -> BlockGraph:
        for target in self._snapshot.targets:
            if not target.is_stage:
                return target.graph
        return self._snapshot.stage.graph

    def bounding_box(self, node_id: str) -> BoundingBox:
        positions = self._workspace_positions(self._sprite_graph())
        if node_id not in positions:
            raise RemoteError(f"block_not_rendered:{node_id}")
        x, y = positions[node_id]
        return BoundingBox(
            left=ORIGIN[0] + x * self.scale,
            top=ORIGIN[1] + y * self.scale,
            width=BLOCK_WIDTH * self.scale,
            height=BLOCK_HEIGHT * self.scale,
        )

    def view_scale(self) -> float:
        return self.scale

    def layout_constants(self) -> Optional[Dict[str, float]]:
        return self.constants

    def _snap_candidate(self) -> Optional[Tuple[str, str]]:
        if self._dragged is None:
            return None
        graph = self._sprite_graph()
        left = self._pointer[0] - self._grab_offset[0]
        top = self._pointer[1] - self._grab_offset[1]
        anchor = (left + PREVIOUS_X * self.scale, top)
        moving = set(graph.chain(self._dragged))
        best: Optional[Tuple[float, str, str]] = None
        for node_id in graph:
            if node_id in moving or graph[node_id].literal:
                continue
            box = self.bounding_box(node_id)
            candidates = [("next", (box.left + PREVIOUS_X * self.scale, box.top + box.height))]
            if graph[node_id].opcode.startswith("control_"):
                candidates.append(("bay", (box.left + BAY_X * self.scale, box.top + BAY_Y * self.scale)))
            for kind, point in candidates:
                distance = ((point[0] - anchor[0]) ** 2 + (point[1] - anchor[1]) ** 2) ** 0.5
                if distance <= SNAP_RADIUS * self.scale and (best is None or distance < best[0]):
                    best = (distance, node_id, kind)
        return (best[1], best[2]) if best else None

    def snap_highlighted(self) -> bool:
        if self.blind_highlight:
            return False
        return self._pressed and self._snap_candidate() is not None

    # Pointer

    def move(self, x: float, y: float) -> None:
        self._pointer = (x, y)

    def down(self) -> None:
        self._pressed = True
        graph = self._sprite_graph()
        px, py = self._pointer
        for node_id in graph:
            if graph[node_id].literal:
                continue
            box = self.bounding_box(node_id)
            if box.left <= px <= box.left + box.width and box.top <= py <= box.top + box.height:
                self._dragged = node_id
                self._grab_offset = (px - box.left, py - box.top)
                return

    def up(self) -> None:
        graph = self._sprite_graph()
        dragged, candidate = self._dragged, self._snap_candidate()
        self._pressed = False
        self._dragged = None
        if dragged is None:
            return
        self._detach(graph, dragged)
        if candidate is not None and self.missed_snaps:
            self.missed_snaps -= 1
            candidate = None
        if candidate is None:
            node = graph[dragged]
            node.top_level = True
            node.x = (self._pointer[0] - self._grab_offset[0] - ORIGIN[0]) / self.scale
            node.y = (self._pointer[1] - self._grab_offset[1] - ORIGIN[1]) / self.scale
            return
        target_id, kind = candidate
        tail = graph.chain(dragged)[-1]
        target = graph[target_id]
        if kind == "bay":
            existing = target.inputs.get("SUBSTACK")
            displaced = existing[1] if existing and isinstance(existing[1], str) else None
            target.inputs["SUBSTACK"] = [2, dragged]
        else:
            displaced = target.next_id
            target.next_id = dragged
        node = graph[dragged]
        node.parent_id = target_id
        node.top_level = False
        node.x = node.y = None
        if displaced is not None:
            graph[tail].next_id = displaced
            graph[displaced].parent_id = tail

    def _detach(self, graph: BlockGraph, node_id: str) -> None:
        node = graph[node_id]
        parent = graph.get(node.parent_id)
        if parent is None:
            return
        if parent.next_id == node_id:
            parent.next_id = None
        parent.inputs = {k: v for k, v in parent.inputs.items() if v[1:] != [node_id]}
        node.parent_id = None


@pytest.fixture()
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture()
def no_sleep():
    return lambda seconds: None


@pytest.fixture()
def stage_selector() -> str:
    return STAGE_SELECTOR
