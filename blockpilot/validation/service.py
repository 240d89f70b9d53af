"""Runs a validation and records it in the ledger."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from ..config import DragConfig, MutationConfig
from ..remote import RemoteTarget
from .contract import ComponentContract, ExemplarAgent
from .ledger import ValidationLedger
from .protocol import ValidationReport, ValidationRun

LOGGER = logging.getLogger("blockpilot.validation")


class ValidationService:
    def __init__(
        self,
        ledger: ValidationLedger,
        target_factory: Callable[[], RemoteTarget],
        artifacts_dir: Path,
        *,
        mutation_config: Optional[MutationConfig] = None,
        drag_config: Optional[DragConfig] = None,
    ) -> None:
        self.ledger = ledger
        self.target_factory = target_factory
        self.artifacts_dir = Path(artifacts_dir)
        self.mutation_config = mutation_config
        self.drag_config = drag_config

    def run_dir(self, contract: ComponentContract) -> Path:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        return self.artifacts_dir / "validation" / contract.name / f"{contract.version}-{stamp}"

    def validate(self, contract: ComponentContract, agent: ExemplarAgent) -> ValidationReport:
        # Exemplars from earlier runs are off-limits too, so consecutive passes are independent.
        excluded = frozenset(self.ledger.used_exemplars(contract.name))
        run = ValidationRun(
            contract,
            agent,
            self.target_factory,
            self.run_dir(contract),
            excluded_exemplars=excluded,
            mutation_config=self.mutation_config,
            drag_config=self.drag_config,
        )
        LOGGER.info("Validating %s@%s (%d exemplar(s) excluded)", contract.name, contract.version, len(run.excluded))
        report = run.execute()
        self.ledger.record(report)
        return report
