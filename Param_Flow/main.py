# main.py

"""Command line entry point for inspecting and evaluating graph files."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from collections import Counter
from dataclasses import dataclass
from typing import Any

from Param_Flow.config import Config
from Param_Flow.errors import GraphFormatError


def _configure_logging(filename: str | None = None) -> None:
    """Configure application logging and capture uncaught exceptions."""

    logging.basicConfig(
        level=getattr(logging, str(Config.log_level).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        filename=filename,
        filemode="a",
    )

    def _log_excepthook(exc_type, exc, tb) -> None:
        logging.getLogger(__name__).exception(
            "Uncaught exception", exc_info=(exc_type, exc, tb)
        )

    sys.excepthook = _log_excepthook


def _summary(document) -> dict[str, Any]:
    types = Counter(node.type for node in document.nodes)
    return {
        "version": document.version,
        "units": document.units,
        "tolerance": document.tolerance,
        "nodes": len(document.nodes),
        "edges": len(document.edges),
        "dirty": sum(1 for node in document.nodes if node.dirty),
        "types": dict(sorted(types.items())),
    }


@dataclass
class MainService:
    """Handle CLI parsing and dispatch to the selected command."""

    argv: list[str] | None = None

    def run(self) -> int:
        args = self._parse_args()
        if args.config and os.path.exists(args.config):
            Config.load_from_file(args.config)
        if args.log_level:
            Config.log_level = args.log_level
        if args.journal_dir:
            Config.journal_dir = os.path.abspath(args.journal_dir)
        _configure_logging(args.log_file)
        try:
            return args.handler(args)
        except (OSError, GraphFormatError) as exc:
            logging.getLogger(__name__).error("%s", exc)
            print(f"error: {exc}", file=sys.stderr)
            return 2

    # ------------------------------------------------------------------
    def _parse_args(self) -> argparse.Namespace:
        parser = argparse.ArgumentParser(
            description="Inspect, validate and evaluate parametric node graphs"
        )
        parser.add_argument(
            "--config",
            default=Config.input_path("config.json"),
            help="Path to JSON or YAML configuration file",
        )
        parser.add_argument("--log-level", default=None, help="Logging level")
        parser.add_argument("--log-file", default=None, help="Append logs to file")
        parser.add_argument(
            "--journal-dir", default=None, help="Directory for JSON line journals"
        )
        sub = parser.add_subparsers(dest="command", required=True)

        info = sub.add_parser("info", help="Summarise a graph file")
        info.add_argument("graph", help="Path to graph JSON file")
        info.set_defaults(handler=self._info)

        validate = sub.add_parser("validate", help="Check a graph file")
        validate.add_argument("graph", help="Path to graph JSON file")
        validate.set_defaults(handler=self._validate)

        evaluate = sub.add_parser(
            "evaluate", help="Evaluate a graph file against a remote engine"
        )
        evaluate.add_argument("graph", help="Path to graph JSON file")
        evaluate.add_argument("--ws-url", default=None, help="WebSocket URL of engine")
        evaluate.add_argument("--token", default=None, help="Session token")
        evaluate.add_argument(
            "--output", default=None, help="Write the evaluated graph to this path"
        )
        evaluate.set_defaults(handler=self._evaluate)
        return parser.parse_args(self.argv)

    # ------------------------------------------------------------------
    @staticmethod
    def _info(args: argparse.Namespace) -> int:
        from Param_Flow.graph.io import load_graph

        document = load_graph(args.graph)
        print(json.dumps(_summary(document), indent=2))
        return 0

    @staticmethod
    def _validate(args: argparse.Namespace) -> int:
        from Param_Flow.graph.io import load_graph
        from Param_Flow.graph.manager import DocumentManager

        problems = DocumentManager(load_graph(args.graph)).validate()
        for problem in problems:
            print(problem)
        if not problems:
            print("ok")
        return 1 if problems else 0

    @staticmethod
    def _evaluate(args: argparse.Namespace) -> int:
        from Param_Flow.engine.client import WebSocketEngine
        from Param_Flow.engine.handle import EngineHandle, EngineStatus
        from Param_Flow.graph.io import load_graph
        from Param_Flow.orchestrator import EvaluationOutcome, GraphOrchestrator

        document = load_graph(args.graph)
        engine = WebSocketEngine(args.ws_url, args.token)
        orch = GraphOrchestrator(EngineHandle(engine=engine))
        if not orch.import_graph(document):
            for message in orch.warnings:
                print(f"error: {message}", file=sys.stderr)
            return 1

        async def runner() -> EvaluationOutcome:
            try:
                if await orch.initialize_engine() is not EngineStatus.READY:
                    return EvaluationOutcome.NOT_READY
                return await orch.evaluate_graph()
            finally:
                await orch.engine_handle.reset()

        outcome = asyncio.run(runner())
        for message in orch.warnings:
            print(f"warning: {message}", file=sys.stderr)
        for node_id, message in sorted(orch.errors.items()):
            print(f"{node_id}: {message}", file=sys.stderr)
        print(outcome.value)
        if args.output:
            orch.save_file(args.output)
        ok = outcome in (EvaluationOutcome.COMPLETED, EvaluationOutcome.UP_TO_DATE)
        return 0 if ok else 1


def main(argv: list[str] | None = None) -> int:
    """Run the command line interface."""
    return MainService(argv).run()


if __name__ == "__main__":
    sys.exit(main())
