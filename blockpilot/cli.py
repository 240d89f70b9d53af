"""CLI for blockpilot."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from .bootstrap import build_context


def _print(data):
    print(json.dumps(data, indent=2, ensure_ascii=False))


def build_parser():
    parser = argparse.ArgumentParser(description="blockpilot CLI")
    parser.add_argument("--base-dir")
    sub = parser.add_subparsers(dest="command", required=True)

    commit = sub.add_parser("commit", help="Replace the block graph of a target")
    commit.add_argument("--target", required=True)
    commit.add_argument("--graph", required=True, help="JSON file with blocks and broadcasts")

    verify = sub.add_parser("verify", help="Compare the runtime read-back with a graph file")
    verify.add_argument("--target", required=True)
    verify.add_argument("--graph", required=True)

    attach = sub.add_parser("attach-asset", help="Register and attach costume files")
    attach.add_argument("--target", required=True)
    attach.add_argument("files", nargs="+")
    attach.add_argument("--replace", action="store_true", help="Swap the whole asset list")
    attach.add_argument("--anchor", type=float, nargs=2, default=(0.0, 0.0), metavar=("X", "Y"))

    place = sub.add_parser("place", help="Drag a stack under another block and verify")
    place.add_argument("--target", required=True)
    place.add_argument("--source", required=True)
    place.add_argument("--onto", required=True)
    place.add_argument("--kind", choices=["next", "bay"], default="next")

    export = sub.add_parser("export", help="Save the current program")
    export.add_argument("--output", required=True)

    validate = sub.add_parser("validate", help="Validate a component contract with an isolated agent")
    validate.add_argument("--contract", required=True)
    validate.add_argument("--agent", required=True, help="module:attr of the exemplar agent")

    runs = sub.add_parser("runs", help="List recorded validation runs")
    runs.add_argument("--component")
    runs.add_argument("--limit", type=int, default=50)

    stability = sub.add_parser("stability", help="Is a component stable")
    stability.add_argument("--component", required=True)
    stability.add_argument("--version", help="Contract version (default: most recently validated)")

    logs = sub.add_parser("logs", help="Tail the log file")
    logs.add_argument("--lines", type=int, default=200)

    serve = sub.add_parser("runserver", help="Run HTTP server")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8261)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    ctx = build_context(Path(args.base_dir) if args.base_dir else None, console_logging=False)
    engine = ctx.engine

    if args.command == "runserver":
        from .api.app import create_app

        app = create_app(ctx)
        app.run(host=args.host, port=args.port)
        return 0

    try:
        if args.command == "commit":
            result = engine.commit_graph(args.target, Path(args.graph))
        elif args.command == "verify":
            result = engine.verify_graph(args.target, Path(args.graph))
        elif args.command == "attach-asset":
            result = engine.attach_asset(
                args.target, [Path(p) for p in args.files], replace=args.replace, anchor=tuple(args.anchor)
            )
        elif args.command == "place":
            result = engine.place(args.target, args.source, args.onto, args.kind)
        elif args.command == "export":
            result = engine.export(Path(args.output))
        elif args.command == "validate":
            result = engine.validate(Path(args.contract), args.agent)
        elif args.command == "runs":
            result = engine.runs(args.component, args.limit)
        elif args.command == "stability":
            result = engine.stability(args.component, args.version)
        else:
            result = engine.logs(args.lines)
    finally:
        engine.shutdown()

    _print(result.payload if result.ok else {"error": result.error})
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
