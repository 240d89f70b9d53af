"""Repository layer for the validation ledger."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import distinct, select
from sqlalchemy.orm import Session, selectinload

from . import models


class BaseRepository:
    def __init__(self, session: Session):
        self.session = session


class ValidationRunRepository(BaseRepository):
    def add(
        self,
        component: str,
        version: str,
        verdict: str,
        exemplar_id: Optional[str],
        gaps: Iterable[Tuple[str, str]],
        failures: List[str],
        artifacts: Dict[str, Any],
        created_at: Optional[datetime] = None,
    ) -> models.ValidationRunRecord:
        record = models.ValidationRunRecord(
            component=component,
            version=version,
            verdict=verdict,
            exemplar_id=exemplar_id,
            failures=list(failures),
            artifacts=dict(artifacts),
            created_at=created_at or datetime.utcnow(),
        )
        record.gaps = [models.ValidationGapRecord(clause_id=clause_id, problem=problem) for clause_id, problem in gaps]
        self.session.add(record)
        self.session.flush()
        return record

    def for_component(
        self, component: str, limit: Optional[int] = None, version: Optional[str] = None
    ) -> List[models.ValidationRunRecord]:
        stmt = (
            select(models.ValidationRunRecord)
            .where(models.ValidationRunRecord.component == component)
            .options(selectinload(models.ValidationRunRecord.gaps))
            .order_by(models.ValidationRunRecord.created_at.desc(), models.ValidationRunRecord.id.desc())
        )
        if version is not None:
            stmt = stmt.where(models.ValidationRunRecord.version == version)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt))

    def used_exemplars(self, component: str) -> List[str]:
        stmt = select(distinct(models.ValidationRunRecord.exemplar_id)).where(
            models.ValidationRunRecord.component == component,
            models.ValidationRunRecord.exemplar_id.is_not(None),
        )
        return [value for value in self.session.scalars(stmt)]

    def components(self) -> List[str]:
        stmt = select(distinct(models.ValidationRunRecord.component)).order_by(models.ValidationRunRecord.component)
        return list(self.session.scalars(stmt))
