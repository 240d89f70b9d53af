"""Program model, invariants and runtime serialization."""

from .builder import GraphBuilder
from .model import (
    STAGE_SELECTOR,
    AssetDescriptor,
    AssetKind,
    BlockGraph,
    BlockNode,
    ChannelTable,
    GraphSnapshot,
    Target,
    content_hash,
)
from .serialization import load_graph_file, project_from_snapshot, snapshot_from_project
from .validation import channel_refs, graph_violations, snapshot_violations

__all__ = [
    "STAGE_SELECTOR",
    "AssetDescriptor",
    "AssetKind",
    "BlockGraph",
    "BlockNode",
    "ChannelTable",
    "GraphBuilder",
    "GraphSnapshot",
    "Target",
    "channel_refs",
    "content_hash",
    "graph_violations",
    "load_graph_file",
    "project_from_snapshot",
    "snapshot_from_project",
    "snapshot_violations",
]
