"""ORM models of the validation ledger."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base

VerdictKind = Enum("pass", "partial", "fail", name="verdict_kind")


class ValidationRunRecord(Base):
    __tablename__ = "validation_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    component: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    version: Mapped[str] = mapped_column(String(32), nullable=False)
    verdict: Mapped[str] = mapped_column(VerdictKind, nullable=False)
    exemplar_id: Mapped[Optional[str]] = mapped_column(String(128))
    failures: Mapped[List[str]] = mapped_column(JSON, default=list)
    artifacts: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    gaps: Mapped[List["ValidationGapRecord"]] = relationship(
        "ValidationGapRecord", back_populates="run", cascade="all, delete-orphan"
    )


class ValidationGapRecord(Base):
    __tablename__ = "validation_gaps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    run_id: Mapped[int] = mapped_column(ForeignKey("validation_runs.id"))
    clause_id: Mapped[str] = mapped_column(String(64), nullable=False)
    problem: Mapped[str] = mapped_column(Text, nullable=False)

    run: Mapped["ValidationRunRecord"] = relationship("ValidationRunRecord", back_populates="gaps")
