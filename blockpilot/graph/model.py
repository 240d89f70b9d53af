"""In-memory program model: block graphs, assets, channels and snapshots."""

from __future__ import annotations

import copy
import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

STAGE_SELECTOR = "@stage"


class AssetKind(str, Enum):
    VECTOR = "vector"
    RASTER = "raster"

    @property
    def data_format(self) -> str:
        return "svg" if self is AssetKind.VECTOR else "png"

    @classmethod
    def from_format(cls, data_format: str) -> "AssetKind":
        return cls.VECTOR if data_format.lower() == "svg" else cls.RASTER


def content_hash(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


@dataclass
class BlockNode:
    opcode: str
    parent_id: Optional[str] = None
    next_id: Optional[str] = None
    inputs: Dict[str, List[Any]] = field(default_factory=dict)
    fields: Dict[str, List[Any]] = field(default_factory=dict)
    top_level: bool = False
    literal: bool = False
    x: Optional[float] = None
    y: Optional[float] = None

    def input_refs(self) -> List[str]:
        """Ids of blocks referenced by input edges (value blocks and shadows)."""
        refs: List[str] = []
        for value in self.inputs.values():
            for item in value[1:]:
                if isinstance(item, str):
                    refs.append(item)
        return refs


class BlockGraph:
    """Mapping of node id to :class:`BlockNode` for one target."""

    def __init__(self, nodes: Optional[Dict[str, BlockNode]] = None) -> None:
        self.nodes: Dict[str, BlockNode] = dict(nodes or {})

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    def __getitem__(self, node_id: str) -> BlockNode:
        return self.nodes[node_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, BlockGraph) and self.nodes == other.nodes

    def get(self, node_id: Optional[str]) -> Optional[BlockNode]:
        if node_id is None:
            return None
        return self.nodes.get(node_id)

    def add(self, node_id: str, node: BlockNode) -> BlockNode:
        self.nodes[node_id] = node
        return node

    def items(self):
        return self.nodes.items()

    def top_level_ids(self) -> List[str]:
        return [node_id for node_id, node in self.nodes.items() if node.top_level]

    def chain(self, start_id: str) -> List[str]:
        """Follow ``next_id`` links from ``start_id``."""
        out: List[str] = []
        seen = set()
        current: Optional[str] = start_id
        while current is not None and current in self.nodes and current not in seen:
            seen.add(current)
            out.append(current)
            current = self.nodes[current].next_id
        return out

    def stack(self, start_id: str) -> List[str]:
        """Every node that moves with ``start_id``: its next chain and everything nested in it."""
        out: List[str] = []
        seen = set()
        pending = [start_id]
        while pending:
            current = pending.pop()
            if current in seen or current not in self.nodes:
                continue
            seen.add(current)
            out.append(current)
            node = self.nodes[current]
            pending.extend(node.input_refs())
            if node.next_id is not None:
                pending.append(node.next_id)
        return out

    def copy(self) -> "BlockGraph":
        return BlockGraph(copy.deepcopy(self.nodes))


@dataclass(frozen=True)
class AssetDescriptor:
    """A costume-like binary asset. The content hash is its only identity."""

    id: str
    kind: AssetKind = field(compare=False)
    data: bytes = field(default=b"", repr=False, compare=False)
    name: str = field(default="", compare=False)
    anchor_x: float = field(default=0.0, compare=False)
    anchor_y: float = field(default=0.0, compare=False)
    scale_factor: int = field(default=1, compare=False)

    @property
    def data_format(self) -> str:
        return self.kind.data_format

    @property
    def md5ext(self) -> str:
        return f"{self.id}.{self.data_format}"


class ChannelTable:
    """Broadcast channels: stable ids mapped to renameable display names."""

    def __init__(self, entries: Optional[Dict[str, str]] = None) -> None:
        self._entries: Dict[str, str] = dict(entries or {})

    def __contains__(self, channel_id: object) -> bool:
        return channel_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, ChannelTable) and self._entries == other._entries

    def add(self, name: str, channel_id: Optional[str] = None) -> str:
        if channel_id is None:
            for existing_id, existing_name in self._entries.items():
                if existing_name == name:
                    return existing_id
            channel_id = "channel_" + hashlib.sha1(name.encode("utf-8")).hexdigest()[:12]
        self._entries[channel_id] = name
        return channel_id

    def rename(self, channel_id: str, name: str) -> None:
        if channel_id not in self._entries:
            raise KeyError(channel_id)
        self._entries[channel_id] = name

    def name_of(self, channel_id: str) -> str:
        return self._entries[channel_id]

    def merge(self, other: "ChannelTable") -> None:
        for channel_id, name in other.items():
            self._entries.setdefault(channel_id, name)

    def items(self):
        return self._entries.items()

    def to_dict(self) -> Dict[str, str]:
        return dict(self._entries)

    def copy(self) -> "ChannelTable":
        return ChannelTable(self._entries)


@dataclass
class Target:
    name: str
    is_stage: bool = False
    graph: BlockGraph = field(default_factory=BlockGraph)
    assets: List[AssetDescriptor] = field(default_factory=list)
    current_asset: int = 0
    # Unmodelled project fields (variables, sounds, position...) kept for round-trips.
    extras: Dict[str, Any] = field(default_factory=dict)


@dataclass
class GraphSnapshot:
    targets: List[Target] = field(default_factory=list)
    channels: ChannelTable = field(default_factory=ChannelTable)
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def stage(self) -> Optional[Target]:
        for target in self.targets:
            if target.is_stage:
                return target
        return None

    def find(self, selector: str) -> Optional[Target]:
        if selector == STAGE_SELECTOR:
            return self.stage
        for target in self.targets:
            if target.name == selector:
                return target
        return None

    def with_graph(self, selector: str, graph: BlockGraph) -> "GraphSnapshot":
        """Return a copy with the selected target's whole graph replaced."""
        clone = self.copy()
        target = clone.find(selector)
        if target is None:
            raise KeyError(selector)
        target.graph = graph.copy()
        return clone

    def copy(self) -> "GraphSnapshot":
        return copy.deepcopy(self)
