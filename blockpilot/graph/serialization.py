"""Conversion between the model and the runtime's project JSON."""

from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any, Dict, Optional

from .model import AssetDescriptor, AssetKind, BlockGraph, BlockNode, ChannelTable, GraphSnapshot, Target
from .validation import BROADCAST_FIELD, BROADCAST_PRIMITIVE

_TARGET_KEYS = {"isStage", "name", "blocks", "costumes", "currentCostume", "broadcasts"}


def graph_from_blocks(blocks: Dict[str, Any]) -> tuple[BlockGraph, Dict[str, Any]]:
    """Split a ``blocks`` mapping into a graph and loose top-level primitives."""
    graph = BlockGraph()
    primitives: Dict[str, Any] = {}
    for block_id, raw in blocks.items():
        if isinstance(raw, list):
            primitives[block_id] = raw
            continue
        graph.add(
            block_id,
            BlockNode(
                opcode=raw["opcode"],
                parent_id=raw.get("parent"),
                next_id=raw.get("next"),
                inputs=copy.deepcopy(raw.get("inputs") or {}),
                fields=copy.deepcopy(raw.get("fields") or {}),
                top_level=bool(raw.get("topLevel", False)),
                literal=bool(raw.get("shadow", False)),
                x=raw.get("x"),
                y=raw.get("y"),
            ),
        )
    return graph, primitives


def _refresh_channel_names(value: Any, channels: Optional[ChannelTable]) -> Any:
    if channels is None or not isinstance(value, list):
        return value
    out = []
    for item in value:
        if (
            isinstance(item, list)
            and len(item) >= 3
            and item[0] == BROADCAST_PRIMITIVE
            and item[2] in channels
        ):
            item = [item[0], channels.name_of(item[2]), item[2], *item[3:]]
        out.append(item)
    return out


def blocks_from_graph(graph: BlockGraph, channels: Optional[ChannelTable] = None) -> Dict[str, Any]:
    blocks: Dict[str, Any] = {}
    for block_id, node in graph.items():
        fields = copy.deepcopy(node.fields)
        receive = fields.get(BROADCAST_FIELD)
        if channels is not None and receive and len(receive) > 1 and receive[1] in channels:
            fields[BROADCAST_FIELD] = [channels.name_of(receive[1]), receive[1]]
        raw: Dict[str, Any] = {
            "opcode": node.opcode,
            "next": node.next_id,
            "parent": node.parent_id,
            "inputs": {name: _refresh_channel_names(copy.deepcopy(v), channels) for name, v in node.inputs.items()},
            "fields": fields,
            "shadow": node.literal,
            "topLevel": node.top_level,
        }
        if node.top_level:
            raw["x"] = node.x if node.x is not None else 0
            raw["y"] = node.y if node.y is not None else 0
        blocks[block_id] = raw
    return blocks


def _descriptor_from_costume(costume: Dict[str, Any]) -> AssetDescriptor:
    data_format = costume.get("dataFormat") or str(costume.get("md5ext", ".svg")).rsplit(".", 1)[-1]
    return AssetDescriptor(
        id=costume["assetId"],
        kind=AssetKind.from_format(data_format),
        name=costume.get("name", ""),
        anchor_x=float(costume.get("rotationCenterX", 0)),
        anchor_y=float(costume.get("rotationCenterY", 0)),
        scale_factor=int(costume.get("bitmapResolution", 1)),
    )


def costume_from_descriptor(descriptor: AssetDescriptor) -> Dict[str, Any]:
    return {
        "name": descriptor.name or descriptor.id,
        "assetId": descriptor.id,
        "md5ext": descriptor.md5ext,
        "dataFormat": descriptor.data_format,
        "rotationCenterX": descriptor.anchor_x,
        "rotationCenterY": descriptor.anchor_y,
        "bitmapResolution": descriptor.scale_factor,
    }


def snapshot_from_project(project: Dict[str, Any]) -> GraphSnapshot:
    snapshot = GraphSnapshot(meta={k: copy.deepcopy(v) for k, v in project.items() if k != "targets"})
    for raw in project.get("targets", []):
        graph, primitives = graph_from_blocks(raw.get("blocks") or {})
        extras = {k: copy.deepcopy(v) for k, v in raw.items() if k not in _TARGET_KEYS}
        if primitives:
            extras["primitive_blocks"] = primitives
        target = Target(
            name=raw["name"],
            is_stage=bool(raw.get("isStage", False)),
            graph=graph,
            assets=[_descriptor_from_costume(c) for c in raw.get("costumes", [])],
            current_asset=int(raw.get("currentCostume", 0)),
            extras=extras,
        )
        if target.is_stage:
            for channel_id, name in (raw.get("broadcasts") or {}).items():
                snapshot.channels.add(name, channel_id)
        snapshot.targets.append(target)
    return snapshot


def project_from_snapshot(snapshot: GraphSnapshot) -> Dict[str, Any]:
    targets = []
    for target in snapshot.targets:
        extras = copy.deepcopy(target.extras)
        primitives = extras.pop("primitive_blocks", {})
        raw: Dict[str, Any] = {
            "isStage": target.is_stage,
            "name": target.name,
            "blocks": {**blocks_from_graph(target.graph, snapshot.channels), **primitives},
            "costumes": [costume_from_descriptor(d) for d in target.assets],
            "currentCostume": min(target.current_asset, max(0, len(target.assets) - 1)),
            "broadcasts": snapshot.channels.to_dict() if target.is_stage else {},
        }
        raw.update(extras)
        targets.append(raw)
    project = copy.deepcopy(snapshot.meta)
    project["targets"] = targets
    project.setdefault("monitors", [])
    project.setdefault("extensions", [])
    project.setdefault("meta", {"semver": "3.0.0", "vm": "0.2.0", "agent": "blockpilot"})
    return project


def load_graph_file(path: Path) -> tuple[BlockGraph, ChannelTable]:
    """Read a graph file: ``{"blocks": {...}, "broadcasts": {...}}``."""
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    graph, _ = graph_from_blocks(payload.get("blocks") or {})
    channels = ChannelTable()
    for channel_id, name in (payload.get("broadcasts") or {}).items():
        channels.add(name, channel_id)
    return graph, channels
