"""Black-box validation of a component contract by an isolated agent.

A run is a one-shot state machine::

    SPAWNED -> BUILDING -> PERSISTING -> RELOADING -> REPORTING -> DONE

Failures jump straight to REPORTING. The agent only ever sees the published
contract and the commit/drag primitives bound to a fresh runtime.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from ..assets import AssetLifecycleManager
from ..config import DragConfig, MutationConfig
from ..errors import BlockPilotError, ProtocolError
from ..mutation import SnapshotMutationProtocol
from ..placement.drag import DragSimulator
from ..remote import RemoteTarget
from .contract import BuildResult, ComponentContract, ExemplarAgent, Gap, ValidationPrimitives

LOGGER = logging.getLogger("blockpilot.validation")


class ValidationState(str, Enum):
    SPAWNED = "spawned"
    BUILDING = "building"
    PERSISTING = "persisting"
    RELOADING = "reloading"
    REPORTING = "reporting"
    DONE = "done"


class Verdict(str, Enum):
    PASS = "pass"
    PARTIAL = "partial"
    FAIL = "fail"


_TRANSITIONS: Dict[ValidationState, Tuple[ValidationState, ...]] = {
    ValidationState.SPAWNED: (ValidationState.BUILDING,),
    ValidationState.BUILDING: (ValidationState.PERSISTING, ValidationState.REPORTING),
    ValidationState.PERSISTING: (ValidationState.RELOADING, ValidationState.REPORTING),
    ValidationState.RELOADING: (ValidationState.REPORTING,),
    ValidationState.REPORTING: (ValidationState.DONE,),
    ValidationState.DONE: (),
}


@dataclass(frozen=True)
class ValidationArtifacts:
    build_screenshot: Path
    reload_screenshot: Path
    program: Path
    verdict: Path

    @classmethod
    def in_directory(cls, run_dir: Path) -> "ValidationArtifacts":
        return cls(
            build_screenshot=run_dir / "build.png",
            reload_screenshot=run_dir / "reload.png",
            program=run_dir / "program.sb3",
            verdict=run_dir / "verdict.json",
        )


@dataclass
class ValidationReport:
    component: str
    version: str
    verdict: Verdict
    exemplar_id: Optional[str]
    gaps: List[Gap] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)
    build_observation: Optional[Dict[str, Any]] = None
    reload_observation: Optional[Dict[str, Any]] = None
    artifacts: Optional[ValidationArtifacts] = None
    finished_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "component": self.component,
            "version": self.version,
            "verdict": self.verdict.value,
            "exemplar_id": self.exemplar_id,
            "gaps": [asdict(gap) for gap in self.gaps],
            "failures": list(self.failures),
            "round_trip_identical": (
                self.build_observation is not None and self.build_observation == self.reload_observation
            ),
            "artifacts": {k: str(v) for k, v in asdict(self.artifacts).items()} if self.artifacts else None,
            "finished_at": self.finished_at.replace(microsecond=0).isoformat(),
        }


class ValidationRun:
    def __init__(
        self,
        contract: ComponentContract,
        agent: ExemplarAgent,
        target_factory: Callable[[], RemoteTarget],
        run_dir: Path,
        *,
        excluded_exemplars: FrozenSet[str] = frozenset(),
        mutation_config: Optional[MutationConfig] = None,
        drag_config: Optional[DragConfig] = None,
    ) -> None:
        self.contract = contract
        self.agent = agent
        self.target_factory = target_factory
        self.artifacts = ValidationArtifacts.in_directory(run_dir)
        self.excluded = frozenset(contract.authoring_exemplars) | frozenset(excluded_exemplars)
        self.mutation_config = mutation_config
        self.drag_config = drag_config
        self._state = ValidationState.SPAWNED
        self._history: List[ValidationState] = [self._state]

    @property
    def state(self) -> ValidationState:
        return self._state

    @property
    def history(self) -> Tuple[ValidationState, ...]:
        return tuple(self._history)

    def advance(self, new_state: ValidationState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise ProtocolError(f"illegal transition {self._state.value} -> {new_state.value}")
        LOGGER.debug("Validation %s: %s -> %s", self.contract.name, self._state.value, new_state.value)
        self._state = new_state
        self._history.append(new_state)

    def execute(self) -> ValidationReport:
        if self._state is not ValidationState.SPAWNED:
            raise ProtocolError("a validation run executes once")
        self.artifacts.program.parent.mkdir(parents=True, exist_ok=True)
        failures: List[str] = []
        result: Optional[BuildResult] = None
        build_observation: Optional[Dict[str, Any]] = None
        reload_observation: Optional[Dict[str, Any]] = None

        self.advance(ValidationState.BUILDING)
        target = self.target_factory()
        try:
            result, build_observation = self._build(target, failures)
            if not failures:
                self.advance(ValidationState.PERSISTING)
                self._persist(target, failures)
        finally:
            target.close()

        if not failures:
            self.advance(ValidationState.RELOADING)
            reload_observation = self._reload(failures)

        self.advance(ValidationState.REPORTING)
        report = self._report(result, failures, build_observation, reload_observation)
        self.advance(ValidationState.DONE)
        return report

    def _build(
        self, target: RemoteTarget, failures: List[str]
    ) -> Tuple[Optional[BuildResult], Optional[Dict[str, Any]]]:
        assets = AssetLifecycleManager(target)
        mutation = SnapshotMutationProtocol(target, assets, self.mutation_config)
        drag = DragSimulator(target, self.drag_config, highlight_probe=target.snap_highlighted)
        primitives = ValidationPrimitives(commit=mutation.commit, simulate_drag=drag.simulate_drag)
        try:
            result = self.agent.build(MappingProxyType(self.contract.published()), primitives, self.excluded)
        except BlockPilotError as exc:
            failures.append(f"build failed: {exc}")
            return None, None
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Agent %s crashed while building", type(self.agent).__name__)
            failures.append(f"build failed: {type(exc).__name__}: {exc}")
            return None, None
        if result.exemplar_id in self.excluded:
            failures.append(f"exemplar {result.exemplar_id!r} was already used; build a different program")
            return result, None
        try:
            observation = target.run_from_start()
            target.screenshot(self.artifacts.build_screenshot)
        except BlockPilotError as exc:
            failures.append(f"build run failed: {exc}")
            return result, None
        return result, observation

    def _persist(self, target: RemoteTarget, failures: List[str]) -> None:
        try:
            self.artifacts.program.write_bytes(target.export_project())
        except BlockPilotError as exc:
            failures.append(f"export failed: {exc}")

    def _reload(self, failures: List[str]) -> Optional[Dict[str, Any]]:
        target = self.target_factory()
        try:
            target.import_project(self.artifacts.program.read_bytes())
            observation = target.run_from_start()
            target.screenshot(self.artifacts.reload_screenshot)
            return observation
        except BlockPilotError as exc:
            failures.append(f"reload failed: {exc}")
            return None
        finally:
            target.close()

    def _report(
        self,
        result: Optional[BuildResult],
        failures: List[str],
        build_observation: Optional[Dict[str, Any]],
        reload_observation: Optional[Dict[str, Any]],
    ) -> ValidationReport:
        gaps = list(result.gaps) if result else []
        known = {clause.id for clause in self.contract.clauses}
        for gap in gaps:
            if gap.clause_id not in known:
                LOGGER.warning("Gap references unknown clause %s", gap.clause_id)
        if not failures and build_observation != reload_observation:
            failures.append("reloaded program behaves differently from the built one")

        if failures:
            verdict = Verdict.FAIL
        elif gaps:
            verdict = Verdict.PARTIAL
        else:
            verdict = Verdict.PASS

        report = ValidationReport(
            component=self.contract.name,
            version=self.contract.version,
            verdict=verdict,
            exemplar_id=result.exemplar_id if result else None,
            gaps=gaps,
            failures=failures,
            build_observation=build_observation,
            reload_observation=reload_observation,
            artifacts=self.artifacts,
        )
        self.artifacts.verdict.write_text(
            json.dumps(report.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8"
        )
        LOGGER.info(
            "Validation of %s@%s: %s (%d gap(s), %d failure(s))",
            report.component,
            report.version,
            verdict.value,
            len(gaps),
            len(failures),
        )
        return report
