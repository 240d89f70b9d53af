"""Persistent history of validation runs per component."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..database import Database
from ..repositories import ValidationRunRepository
from .protocol import ValidationReport, Verdict

LOGGER = logging.getLogger("blockpilot.ledger")

STABLE_STREAK = 2


def _serialize_run(record) -> Dict[str, Any]:
    return {
        "id": record.id,
        "component": record.component,
        "version": record.version,
        "verdict": record.verdict,
        "exemplar_id": record.exemplar_id,
        "gaps": [{"clause_id": gap.clause_id, "problem": gap.problem} for gap in record.gaps],
        "failures": list(record.failures or []),
        "artifacts": dict(record.artifacts or {}),
        "created_at": record.created_at.isoformat() if record.created_at else None,
    }


class ValidationLedger:
    def __init__(self, database: Database) -> None:
        self.database = database

    def record(self, report: ValidationReport) -> int:
        payload = report.to_dict()
        with self.database.session() as session:
            record = ValidationRunRepository(session).add(
                component=report.component,
                version=report.version,
                verdict=report.verdict.value,
                exemplar_id=report.exemplar_id,
                gaps=[(gap.clause_id, gap.problem) for gap in report.gaps],
                failures=report.failures,
                artifacts=payload["artifacts"] or {},
            )
            run_id = record.id
        LOGGER.info("Recorded %s run #%d for %s", report.verdict.value, run_id, report.component)
        return run_id

    def history(self, component: str, limit: int = 50, version: Optional[str] = None) -> List[Dict[str, Any]]:
        with self.database.session() as session:
            records = ValidationRunRepository(session).for_component(component, limit, version=version)
            return [_serialize_run(record) for record in records]

    def used_exemplars(self, component: str) -> List[str]:
        with self.database.session() as session:
            return ValidationRunRepository(session).used_exemplars(component)

    def components(self) -> List[str]:
        with self.database.session() as session:
            return ValidationRunRepository(session).components()

    def latest_version(self, component: str) -> Optional[str]:
        latest = self.history(component, limit=1)
        return latest[0]["version"] if latest else None

    def _streak(self, component: str, version: Optional[str]) -> List[Dict[str, Any]]:
        version = version if version is not None else self.latest_version(component)
        if version is None:
            return []
        return self.history(component, limit=STABLE_STREAK, version=version)

    def is_stable(self, component: str, version: Optional[str] = None) -> bool:
        """Two most recent runs of one contract version both passed, on different exemplars.

        Without ``version`` the most recently validated version is judged.
        """
        recent = self._streak(component, version)
        if len(recent) < STABLE_STREAK:
            return False
        if any(run["verdict"] != Verdict.PASS.value for run in recent):
            return False
        exemplars = {run["exemplar_id"] for run in recent}
        return len(exemplars) == STABLE_STREAK

    def stability(self, component: str, version: Optional[str] = None) -> Dict[str, Any]:
        version = version if version is not None else self.latest_version(component)
        recent = self._streak(component, version)
        return {
            "component": component,
            "version": version,
            "stable": self.is_stable(component, version),
            "recent": [{"verdict": run["verdict"], "exemplar_id": run["exemplar_id"]} for run in recent],
        }
