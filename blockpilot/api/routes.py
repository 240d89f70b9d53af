"""Flask blueprint for blockpilot."""

from __future__ import annotations

from pathlib import Path

from flask import Blueprint, jsonify, request

from ..engine import BlockPilotEngine, EngineResult
from . import schemas


def _render(result: EngineResult):
    if not result.ok:
        return schemas.json_error(result.error or "error")
    return jsonify(schemas.success(result.payload).to_dict())


def create_blueprint(engine: BlockPilotEngine) -> Blueprint:
    bp = Blueprint("blockpilot_api", __name__)

    @bp.route("/health", methods=["GET"])
    def health():
        return jsonify(schemas.success({"status": "ok"}).to_dict())

    @bp.route("/components", methods=["GET"])
    def components():
        return _render(engine.runs())

    @bp.route("/components/<name>/runs", methods=["GET"])
    def component_runs(name: str):
        try:
            limit = int(request.args.get("limit", 50))
        except ValueError:
            return schemas.json_error("limit must be an integer")
        return _render(engine.runs(name, max(1, min(limit, 500))))

    @bp.route("/components/<name>/stability", methods=["GET"])
    def component_stability(name: str):
        return _render(engine.stability(name, request.args.get("version")))

    @bp.route("/validations", methods=["POST"])
    def validate():
        payload = request.get_json(force=True, silent=True) or {}
        missing = {"contract", "agent"} - set(payload)
        if missing:
            return schemas.json_error(f"missing fields: {', '.join(sorted(missing))}")
        return _render(engine.validate(Path(payload["contract"]), str(payload["agent"])))

    @bp.route("/logs", methods=["GET"])
    def logs():
        try:
            lines = int(request.args.get("lines", 200))
        except ValueError:
            return schemas.json_error("lines must be an integer")
        return _render(engine.logs(lines))

    return bp
