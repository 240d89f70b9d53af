"""Facade tying the runtime, the mutation protocol and the validation ledger together.

The CLI and the HTTP API both talk to :class:`BlockPilotEngine`; every method
returns an :class:`EngineResult` instead of raising, so surfaces only render.
"""

from __future__ import annotations

import importlib
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .assets import AssetLifecycleManager
from .config import AppConfig
from .errors import BlockPilotError
from .graph.model import AssetKind
from .graph.serialization import load_graph_file
from .mutation import SnapshotMutationProtocol
from .placement.drag import DragSimulator
from .placement.geometry import AnchorKind, GeometryResolver
from .placement.verify import PlacementIntent, VerificationLoop, edges_from_graph
from .remote import RemoteTarget
from .services.catalogue import AssetCatalogue
from .services.logging import tail_log_file
from .validation.contract import ComponentContract
from .validation.ledger import ValidationLedger
from .validation.service import ValidationService

LOGGER = logging.getLogger("blockpilot.engine")


@dataclass
class EngineResult:
    ok: bool
    payload: Dict[str, Any]
    error: Optional[str] = None


def load_agent(ref: str) -> Any:
    """Resolve ``package.module:attr``; classes are instantiated without arguments."""
    module_name, _, attr = ref.partition(":")
    if not module_name or not attr:
        raise ValueError(f"agent must look like 'module:attr', got {ref!r}")
    obj = getattr(importlib.import_module(module_name), attr)
    return obj() if isinstance(obj, type) else obj


class BlockPilotEngine:
    def __init__(
        self,
        config: AppConfig,
        ledger: ValidationLedger,
        target_factory: Callable[[], RemoteTarget],
    ) -> None:
        self.config = config
        self.ledger = ledger
        self.target_factory = target_factory
        self.catalogue = AssetCatalogue(config.catalogue_url)
        self._remote: Optional[RemoteTarget] = None
        self._assets: Optional[AssetLifecycleManager] = None
        self._mutation: Optional[SnapshotMutationProtocol] = None

    def _open(self) -> None:
        if self._remote is None:
            self._remote = self.target_factory()
            self._assets = AssetLifecycleManager(self._remote, self.catalogue)
            self._mutation = SnapshotMutationProtocol(self._remote, self._assets, self.config.mutation)

    @property
    def remote(self) -> RemoteTarget:
        self._open()
        return self._remote

    @property
    def assets(self) -> AssetLifecycleManager:
        self._open()
        return self._assets

    @property
    def mutation(self) -> SnapshotMutationProtocol:
        self._open()
        return self._mutation

    def verification_loop(self) -> VerificationLoop:
        remote = self.remote
        return VerificationLoop(
            remote,
            self.mutation,
            geometry=GeometryResolver(remote, self.config.geometry),
            drag=DragSimulator(remote, self.config.drag, highlight_probe=remote.snap_highlighted),
            config=self.config.verify,
        )

    def shutdown(self) -> None:
        if self._remote is not None:
            self._remote.close()
        self._remote = self._assets = self._mutation = None

    # Program editing

    def commit_graph(self, target: str, graph_path: Path) -> EngineResult:
        try:
            graph, channels = load_graph_file(graph_path)
            outcome = self.verification_loop().commit(target, graph, channels=channels)
        except (BlockPilotError, OSError, ValueError) as exc:
            return self._failed("commit", exc)
        ack = outcome.ack
        return EngineResult(
            True,
            {
                "target": ack.target,
                "nodes": ack.nodes,
                "resynced": ack.resynced,
                "attempts": ack.attempts,
                "verified": outcome.report.ok,
                "repaired": outcome.repaired,
                "summary": outcome.report.summary(),
            },
        )

    def verify_graph(self, target: str, graph_path: Path) -> EngineResult:
        try:
            graph, _ = load_graph_file(graph_path)
            report = self.verification_loop().verify(target, edges_from_graph(graph))
        except (BlockPilotError, OSError, ValueError) as exc:
            return self._failed("verify", exc)
        return EngineResult(
            True,
            {
                "target": report.target,
                "ok": report.ok,
                "checked": report.checked,
                "findings": [
                    {"node_id": f.node_id, "classification": f.classification.value, "detail": f.detail}
                    for f in report.findings
                ],
            },
        )

    def attach_asset(
        self,
        target: str,
        paths: list[Path],
        *,
        replace: bool = False,
        anchor: tuple[float, float] = (0.0, 0.0),
    ) -> EngineResult:
        try:
            descriptors = []
            for path in paths:
                kind = AssetKind.VECTOR if path.suffix.lower() == ".svg" else AssetKind.RASTER
                descriptors.append(
                    self.assets.register(
                        path.read_bytes(),
                        kind,
                        name=path.stem,
                        anchor_x=anchor[0],
                        anchor_y=anchor[1],
                        scale_factor=2 if kind is AssetKind.RASTER else 1,
                    )
                )
            if replace:
                self.assets.replace(target, descriptors)
            else:
                for descriptor in descriptors:
                    self.assets.attach(descriptor, target)
        except (BlockPilotError, OSError, ValueError, KeyError) as exc:
            return self._failed("attach-asset", exc)
        return EngineResult(
            True,
            {
                "target": target,
                "attached": [d.md5ext for d in descriptors],
                "assets": [asset.id for asset in self.remote.list_assets(target)],
            },
        )

    def place(self, target: str, source_id: str, target_id: str, kind: str = "next") -> EngineResult:
        try:
            intent = PlacementIntent(source_id, target_id, AnchorKind(kind))
            outcome = self.verification_loop().place(target, intent)
        except (BlockPilotError, ValueError, KeyError) as exc:
            return self._failed("place", exc)
        return EngineResult(
            True,
            {
                "target": target,
                "repaired": outcome.repaired,
                "gesture_error": str(outcome.gesture_error) if outcome.gesture_error else None,
                "summary": outcome.report.summary(),
            },
        )

    def export(self, output: Path) -> EngineResult:
        try:
            data = self.remote.export_project()
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_bytes(data)
        except (BlockPilotError, OSError) as exc:
            return self._failed("export", exc)
        return EngineResult(True, {"path": str(output), "bytes": len(data)})

    # Validation

    def validate(self, contract_path: Path, agent_ref: str) -> EngineResult:
        try:
            contract = ComponentContract.from_dict(json.loads(Path(contract_path).read_text(encoding="utf-8")))
            agent = load_agent(agent_ref)
        except (OSError, ValueError, KeyError, ImportError, AttributeError) as exc:
            return self._failed("validate", exc)
        service = ValidationService(
            self.ledger,
            self.target_factory,
            self.config.artifacts_dir,
            mutation_config=self.config.mutation,
            drag_config=self.config.drag,
        )
        try:
            report = service.validate(contract, agent)
        except BlockPilotError as exc:
            return self._failed("validate", exc)
        payload = report.to_dict()
        payload["stable"] = self.ledger.is_stable(contract.name, contract.version)
        return EngineResult(True, payload)

    def runs(self, component: Optional[str] = None, limit: int = 50) -> EngineResult:
        if component:
            return EngineResult(True, {"component": component, "runs": self.ledger.history(component, limit)})
        return EngineResult(True, {"components": self.ledger.components()})

    def stability(self, component: str, version: Optional[str] = None) -> EngineResult:
        return EngineResult(True, self.ledger.stability(component, version))

    def logs(self, lines: int = 200) -> EngineResult:
        return EngineResult(True, {"lines": tail_log_file(self.config.log_file_path, lines)})

    @staticmethod
    def _failed(operation: str, exc: Exception) -> EngineResult:
        LOGGER.error("%s failed: %s", operation, exc)
        return EngineResult(False, {}, str(exc))
