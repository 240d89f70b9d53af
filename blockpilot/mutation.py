"""Snapshot mutation: whole-snapshot read-modify-write against the runtime.

The runtime's incremental block APIs leave parent/next/channel fields
inconsistent on non-trivial graphs, so every change is expressed as a
complete snapshot load. A load drops local-only assets; the resync plan
travels with the load so the runtime re-attaches them in the same call.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, TypeVar

from .assets import AssetLifecycleManager
from .config import MutationConfig
from .errors import MutationError, MutationErrorKind, RemoteError
from .graph.model import BlockGraph, ChannelTable, GraphSnapshot
from .graph.validation import graph_violations, snapshot_violations
from .remote import RemoteTarget

LOGGER = logging.getLogger("blockpilot.mutation")

T = TypeVar("T")


@dataclass(frozen=True)
class CommitAck:
    target: Optional[str]
    nodes: int
    resynced: int
    attempts: int


class SnapshotMutationProtocol:
    def __init__(
        self,
        remote: RemoteTarget,
        assets: AssetLifecycleManager,
        config: Optional[MutationConfig] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.remote = remote
        self.assets = assets
        self.config = config or MutationConfig()
        self._sleep = sleep

    def commit(
        self,
        target_selector: str,
        new_graph: BlockGraph,
        *,
        channels: Optional[ChannelTable] = None,
    ) -> CommitAck:
        """Replace the whole graph of one target."""
        violations = graph_violations(new_graph)
        if violations:
            raise MutationError(
                MutationErrorKind.INVARIANT_VIOLATION,
                f"graph for {target_selector} violates {len(violations)} invariant(s)",
                violations=violations,
            )
        current = self.read()
        target = current.find(target_selector)
        if target is None:
            raise MutationError(MutationErrorKind.TARGET_NOT_FOUND, f"no target {target_selector!r}")
        outgoing = current.with_graph(target_selector, new_graph)
        if channels is not None:
            outgoing.channels.merge(channels)
        return self._send(outgoing, target.name, len(new_graph))

    def read(self) -> GraphSnapshot:
        snapshot, _ = self._with_retries("read", self.remote.get_snapshot)
        return snapshot

    def commit_snapshot(self, snapshot: GraphSnapshot) -> CommitAck:
        """Replace the whole program."""
        outgoing = snapshot.copy()
        return self._send(outgoing, None, sum(len(t.graph) for t in outgoing.targets))

    def _send(self, outgoing: GraphSnapshot, target_name: Optional[str], nodes: int) -> CommitAck:
        violations = snapshot_violations(outgoing)
        if violations:
            raise MutationError(
                MutationErrorKind.INVARIANT_VIOLATION,
                f"snapshot violates {len(violations)} invariant(s)",
                violations=violations,
            )
        plan = self.assets.resync_plan(outgoing)
        _, attempts = self._with_retries("commit", lambda: self.remote.load_snapshot(outgoing, plan))
        resynced = sum(len(entry.descriptors) for entry in plan)
        LOGGER.info(
            "Committed %s (%d nodes, %d assets resynced, %d attempt(s))",
            target_name or "snapshot",
            nodes,
            resynced,
            attempts,
        )
        return CommitAck(target=target_name, nodes=nodes, resynced=resynced, attempts=attempts)

    def _with_retries(self, label: str, call: Callable[[], T]) -> Tuple[T, int]:
        delay = self.config.base_delay
        attempts = max(0, self.config.retries) + 1
        for attempt in range(1, attempts + 1):
            try:
                return call(), attempt
            except RemoteError as exc:
                LOGGER.warning("Remote %s rejected (attempt %d/%d): %s", label, attempt, attempts, exc)
                if attempt == attempts:
                    raise MutationError(
                        MutationErrorKind.REMOTE_REJECTED,
                        f"{label} failed after {attempt} attempt(s): {exc}",
                        attempts=attempt,
                    ) from exc
                self._sleep(delay)
                delay = min(self.config.max_delay, delay * self.config.factor)
        raise AssertionError("unreachable")
