"""Immutable inputs handed to an isolated validation agent."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Mapping, Protocol, Tuple

from ..mutation import CommitAck
from ..placement.drag import DragTrace
from ..placement.geometry import Point


@dataclass(frozen=True)
class ContractClause:
    id: str
    text: str


@dataclass(frozen=True)
class ComponentContract:
    """The published documentation of a reusable building block."""

    name: str
    version: str
    summary: str
    clauses: Tuple[ContractClause, ...] = ()
    authoring_exemplars: FrozenSet[str] = frozenset()

    def clause(self, clause_id: str) -> ContractClause:
        for clause in self.clauses:
            if clause.id == clause_id:
                return clause
        raise KeyError(clause_id)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ComponentContract":
        clauses = tuple(
            ContractClause(id=str(item["id"]), text=str(item["text"])) for item in payload.get("clauses", [])
        )
        return cls(
            name=str(payload["name"]),
            version=str(payload.get("version", "1")),
            summary=str(payload.get("summary", "")),
            clauses=clauses,
            authoring_exemplars=frozenset(payload.get("authoring_exemplars", [])),
        )

    def published(self) -> Dict[str, Any]:
        """What the agent may read: everything except the authoring history."""
        return {
            "name": self.name,
            "version": self.version,
            "summary": self.summary,
            "clauses": [{"id": c.id, "text": c.text} for c in self.clauses],
        }


@dataclass(frozen=True)
class ValidationPrimitives:
    commit: Callable[..., CommitAck]
    simulate_drag: Callable[[Point, Point], DragTrace]


@dataclass(frozen=True)
class Gap:
    clause_id: str
    problem: str


@dataclass(frozen=True)
class BuildResult:
    exemplar_id: str
    gaps: Tuple[Gap, ...] = ()
    notes: str = ""


class ExemplarAgent(Protocol):
    def build(
        self,
        contract: Mapping[str, Any],
        primitives: ValidationPrimitives,
        excluded_exemplars: FrozenSet[str],
    ) -> BuildResult: ...
