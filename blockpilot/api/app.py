"""Flask application entry point for blockpilot."""

from __future__ import annotations

import atexit
from pathlib import Path
from typing import Optional

from flask import Flask

from ..bootstrap import BlockPilotContext, build_context
from .routes import create_blueprint


def create_app(ctx: Optional[BlockPilotContext] = None, base_dir: Optional[Path] = None) -> Flask:
    ctx = ctx or build_context(base_dir)
    app = Flask(__name__)
    app.config["BLOCKPILOT_CONFIG"] = ctx.config
    app.register_blueprint(create_blueprint(ctx.engine), url_prefix="/blockpilot")
    atexit.register(ctx.engine.shutdown)
    return app


if __name__ == "__main__":
    app = create_app()
    app.run(host="0.0.0.0", port=8261)
