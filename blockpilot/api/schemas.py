"""Response envelopes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Tuple

from flask import Response, jsonify


def iso(dt: datetime | None = None) -> str:
    dt = dt or datetime.now(timezone.utc)
    return dt.replace(microsecond=0).isoformat()


@dataclass
class Envelope:
    ok: bool
    payload: Dict[str, Any]
    error: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": self.ok, "payload": self.payload, "error": self.error, "timestamp": iso()}


def success(payload: Dict[str, Any]) -> Envelope:
    return Envelope(True, payload)


def failure(message: str) -> Envelope:
    return Envelope(False, {}, message)


def json_error(message: str, status: int = 400) -> Tuple[Response, int]:
    return jsonify(failure(message).to_dict()), status
