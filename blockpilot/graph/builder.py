"""Deterministic builder for invariant-satisfying block graphs."""

from __future__ import annotations

from hashlib import sha1
from typing import Any, Dict, List, Optional

from .model import BlockGraph, BlockNode, ChannelTable

INPUT_SAME_BLOCK_SHADOW = 1
INPUT_NO_SHADOW = 2


class GraphBuilder:
    """Owns node identifiers and keeps parent/next links consistent."""

    def __init__(self, namespace: str = "script") -> None:
        self.namespace = namespace
        self.graph = BlockGraph()
        self.channels = ChannelTable()
        self._sequence = 0

    def script(
        self,
        opcode: str,
        *,
        x: float = 0,
        y: float = 0,
        fields: Optional[Dict[str, List[Any]]] = None,
    ) -> str:
        node_id = self._build_id(opcode)
        self.graph.add(node_id, BlockNode(opcode=opcode, fields=dict(fields or {}), top_level=True, x=x, y=y))
        return node_id

    def append(
        self,
        after_id: str,
        opcode: str,
        *,
        fields: Optional[Dict[str, List[Any]]] = None,
    ) -> str:
        previous = self.graph[after_id]
        if previous.next_id is not None:
            raise ValueError(f"{after_id} already has a next node")
        node_id = self._build_id(opcode)
        self.graph.add(node_id, BlockNode(opcode=opcode, parent_id=after_id, fields=dict(fields or {})))
        previous.next_id = node_id
        return node_id

    def chain(self, after_id: str, *opcodes: str) -> str:
        last = after_id
        for opcode in opcodes:
            last = self.append(last, opcode)
        return last

    def literal(
        self,
        parent_id: str,
        input_name: str,
        value: Any,
        *,
        opcode: str = "text",
        field: str = "TEXT",
    ) -> str:
        node_id = self._build_id(opcode)
        self.graph.add(
            node_id,
            BlockNode(opcode=opcode, parent_id=parent_id, fields={field: [value, None]}, literal=True),
        )
        self.graph[parent_id].inputs[input_name] = [INPUT_SAME_BLOCK_SHADOW, node_id]
        return node_id

    def substack(self, container_id: str, opcode: str, *, input_name: str = "SUBSTACK") -> str:
        container = self.graph[container_id]
        if input_name in container.inputs:
            raise ValueError(f"{container_id}.{input_name} is already filled")
        node_id = self._build_id(opcode)
        self.graph.add(node_id, BlockNode(opcode=opcode, parent_id=container_id))
        container.inputs[input_name] = [INPUT_NO_SHADOW, node_id]
        return node_id

    def broadcast(self, after_id: str, channel_name: str) -> str:
        channel_id = self.channels.add(channel_name)
        node_id = self.append(after_id, "event_broadcast")
        self.graph[node_id].inputs["BROADCAST_INPUT"] = [INPUT_SAME_BLOCK_SHADOW, [11, channel_name, channel_id]]
        return node_id

    def receiver(self, channel_name: str, *, x: float = 0, y: float = 0) -> str:
        channel_id = self.channels.add(channel_name)
        return self.script(
            "event_whenbroadcastreceived",
            x=x,
            y=y,
            fields={"BROADCAST_OPTION": [channel_name, channel_id]},
        )

    def build(self) -> BlockGraph:
        return self.graph.copy()

    def _build_id(self, opcode: str) -> str:
        self._sequence += 1
        signature = f"{self.namespace}:{self._sequence}:{opcode}"
        return sha1(signature.encode("utf-8")).hexdigest()[:12]
