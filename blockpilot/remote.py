"""Interfaces of the browser-hosted runtime as seen by the automation.

Every method is a blocking call that either returns once the runtime has
acknowledged it or raises :class:`blockpilot.errors.RemoteError`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from .graph.model import AssetDescriptor, GraphSnapshot


@dataclass(frozen=True)
class ActualBlock:
    opcode: str
    parent_id: Optional[str]
    next_id: Optional[str]
    top_level: bool


@dataclass(frozen=True)
class ActualAsset:
    id: str
    name: str
    placeholder: bool = False


@dataclass
class ActualGraph:
    """What the runtime really holds for one target."""

    blocks: Dict[str, ActualBlock] = field(default_factory=dict)
    assets: List[ActualAsset] = field(default_factory=list)

    @property
    def placeholders(self) -> List[ActualAsset]:
        return [asset for asset in self.assets if asset.placeholder]


@dataclass(frozen=True)
class BoundingBox:
    left: float
    top: float
    width: float
    height: float


@dataclass(frozen=True)
class ResyncEntry:
    """Local-only assets to re-attach to ``target`` right after a load."""

    target: str
    descriptors: Tuple[AssetDescriptor, ...]


class Pointer(Protocol):
    def move(self, x: float, y: float) -> None: ...

    def down(self) -> None: ...

    def up(self) -> None: ...


class RemoteTarget(Protocol):
    def get_snapshot(self) -> GraphSnapshot: ...

    def load_snapshot(self, snapshot: GraphSnapshot, resync: Sequence[ResyncEntry] = ()) -> None: ...

    def register_asset(self, descriptor: AssetDescriptor) -> None: ...

    def attach_asset(self, target: str, descriptor: AssetDescriptor) -> None: ...

    def detach_asset(self, target: str, index: int) -> None: ...

    def list_assets(self, target: str) -> List[ActualAsset]: ...

    def run_from_start(self) -> Dict[str, Any]: ...

    def read_actual_graph(self, target: str) -> ActualGraph: ...

    def bounding_box(self, node_id: str) -> BoundingBox: ...

    def view_scale(self) -> float: ...

    def layout_constants(self) -> Optional[Dict[str, float]]: ...

    def snap_highlighted(self) -> bool: ...

    def export_project(self) -> bytes: ...

    def import_project(self, data: bytes) -> None: ...

    def screenshot(self, path: Path) -> Path: ...

    def close(self) -> None: ...


__all__ = [
    "ActualAsset",
    "ActualBlock",
    "ActualGraph",
    "BoundingBox",
    "Pointer",
    "RemoteTarget",
    "ResyncEntry",
]
