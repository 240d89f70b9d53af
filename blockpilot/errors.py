"""Exception taxonomy shared by the mutation, asset, placement and validation layers."""

from __future__ import annotations

from enum import Enum
from typing import Sequence


class BlockPilotError(Exception):
    """Base class for all blockpilot errors."""


class RemoteError(BlockPilotError):
    """A remote call failed or timed out; the payload may be resent unchanged."""


class MutationErrorKind(str, Enum):
    TARGET_NOT_FOUND = "target_not_found"
    INVARIANT_VIOLATION = "invariant_violation"
    REMOTE_REJECTED = "remote_rejected"


class MutationError(BlockPilotError):
    def __init__(
        self,
        kind: MutationErrorKind,
        detail: str,
        *,
        violations: Sequence[str] = (),
        attempts: int = 0,
    ) -> None:
        self.kind = kind
        self.detail = detail
        self.violations = tuple(violations)
        self.attempts = attempts
        super().__init__(f"{kind.value}: {detail}")

    @property
    def retryable(self) -> bool:
        return self.kind is MutationErrorKind.REMOTE_REJECTED


class DetachErrorKind(str, Enum):
    LAST_ASSET_PROTECTED = "last_asset_protected"
    UNKNOWN_ASSET = "unknown_asset"


class DetachError(BlockPilotError):
    def __init__(self, kind: DetachErrorKind, descriptor_id: str, target: str) -> None:
        self.kind = kind
        self.descriptor_id = descriptor_id
        self.target = target
        super().__init__(f"{kind.value}: asset {descriptor_id} on {target}")


class GestureErrorKind(str, Enum):
    NO_SNAP_HIGHLIGHT = "no_snap_highlight"
    POINTER_FAILED = "pointer_failed"


class GestureError(BlockPilotError):
    def __init__(self, kind: GestureErrorKind, detail: str = "") -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)


class PlacementError(BlockPilotError):
    """Repair committed the intended graph but the read-back still disagrees."""

    def __init__(self, target: str, report) -> None:
        self.target = target
        self.report = report
        super().__init__(f"placement on {target} did not converge: {report.summary()}")


class ProtocolError(BlockPilotError):
    """Illegal transition of the validation state machine."""
