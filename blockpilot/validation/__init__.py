"""Independent validation of component contracts."""

from .contract import (
    BuildResult,
    ComponentContract,
    ContractClause,
    ExemplarAgent,
    Gap,
    ValidationPrimitives,
)
from .ledger import ValidationLedger
from .protocol import ValidationArtifacts, ValidationReport, ValidationRun, ValidationState, Verdict
from .service import ValidationService

__all__ = [
    "BuildResult",
    "ComponentContract",
    "ContractClause",
    "ExemplarAgent",
    "Gap",
    "ValidationArtifacts",
    "ValidationLedger",
    "ValidationPrimitives",
    "ValidationReport",
    "ValidationRun",
    "ValidationService",
    "ValidationState",
    "Verdict",
]
