"""Structural invariant checks run before anything is sent to the runtime."""

from __future__ import annotations

from collections import Counter
from typing import Dict, List, Optional, Set

from .model import BlockGraph, ChannelTable, GraphSnapshot

BROADCAST_FIELD = "BROADCAST_OPTION"
BROADCAST_PRIMITIVE = 11


def channel_refs(graph: BlockGraph) -> List[str]:
    """Channel ids referenced by receive fields and broadcast literals."""
    refs: List[str] = []
    for node in graph.nodes.values():
        field_value = node.fields.get(BROADCAST_FIELD)
        if field_value and len(field_value) > 1 and field_value[1]:
            refs.append(field_value[1])
        for value in node.inputs.values():
            for item in value[1:]:
                if isinstance(item, list) and len(item) >= 3 and item[0] == BROADCAST_PRIMITIVE:
                    refs.append(item[2])
    return refs


def _parent_loops(graph: BlockGraph, node_id: str) -> bool:
    seen = set()
    current: Optional[str] = node_id
    while current is not None and current in graph:
        if current in seen:
            return True
        seen.add(current)
        current = graph[current].parent_id
    return False


def graph_violations(graph: BlockGraph, channels: Optional[ChannelTable] = None) -> List[str]:
    problems: List[str] = []

    next_counts = Counter(node.next_id for node in graph.nodes.values() if node.next_id is not None)
    for node_id, count in sorted(next_counts.items()):
        if count > 1:
            problems.append(f"{node_id}: named as next by {count} nodes")

    referrers: Dict[str, Set[str]] = {}
    for node_id, node in graph.items():
        children = node.input_refs() + ([node.next_id] if node.next_id is not None else [])
        for child_id in children:
            referrers.setdefault(child_id, set()).add(node_id)
    for child_id, owners in sorted(referrers.items()):
        if len(owners) > 1:
            problems.append(f"{child_id}: child of {len(owners)} nodes ({', '.join(sorted(owners))})")
        elif child_id in graph and graph[child_id].parent_id not in owners:
            owner = next(iter(owners))
            problems.append(f"{child_id}: parent {graph[child_id].parent_id} disagrees with {owner}")

    for node_id, node in graph.items():
        if node.top_level and node.parent_id is not None:
            problems.append(f"{node_id}: top-level node has parent {node.parent_id}")
        if node.parent_id is None and not node.top_level and not node.literal:
            problems.append(f"{node_id}: detached node is not top-level")
        if node.literal and node.parent_id is None:
            problems.append(f"{node_id}: literal node without parent")
        if node.next_id is not None and node.next_id not in graph:
            problems.append(f"{node_id}: next {node.next_id} does not exist")
        if node.parent_id is not None and node.parent_id not in graph:
            problems.append(f"{node_id}: parent {node.parent_id} does not exist")
        for ref in node.input_refs():
            if ref not in graph:
                problems.append(f"{node_id}: input references missing node {ref}")
        if _parent_loops(graph, node_id):
            problems.append(f"{node_id}: parent chain loops and never reaches a top-level node")

    if channels is not None:
        for channel_id in channel_refs(graph):
            if channel_id not in channels:
                problems.append(f"channel {channel_id} is referenced but not declared")
    return problems


def snapshot_violations(snapshot: GraphSnapshot) -> List[str]:
    problems: List[str] = []
    stages = [t for t in snapshot.targets if t.is_stage]
    if len(stages) != 1:
        problems.append(f"expected exactly one stage, found {len(stages)}")
    names = Counter(t.name for t in snapshot.targets if not t.is_stage)
    for name, count in sorted(names.items()):
        if count > 1:
            problems.append(f"actor name {name!r} used {count} times")
    for target in snapshot.targets:
        for problem in graph_violations(target.graph, snapshot.channels):
            problems.append(f"{target.name}: {problem}")
    return problems
