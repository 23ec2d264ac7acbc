"""
comfy-client command line.

Usage:
    comfy-client run WORKFLOW.json [--config PATH] [--seed-node ID | --seed-title TITLE]
                     [--seed-input seed] [--set NODE.INPUT=VALUE ...]
                     [--output-dir DIR] [--wait SECONDS]

Loads an API-format workflow, applies edits, randomizes the sampler seed,
submits it, and writes every downloaded image to the output directory.
The run ends at the first batch of downloaded images, or at execution_success
for workflows that save nothing through /view.
Exit status: 0 completed, 1 failed or timed out, 2 bad arguments.
"""
from __future__ import annotations

import argparse
import json
import sys
import threading
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

from comfyclient.config import load_config
from comfyclient.errors import ComfyClientError, ExecutionError
from comfyclient.graph_editor import (
    find_node_id_by_title,
    generate_seed,
    load_workflow,
    update_node_input,
)
from comfyclient.handlers import BaseGenerationHandler, BaseSessionHandler
from comfyclient.logging_utils import configure_logging
from comfyclient.session import ComfySession


class ImageCollector(BaseGenerationHandler):
    """Collects downloaded images and signals when the prompt is done."""

    def __init__(self):
        self.images: List[bytes] = []
        self.errors: List[BaseException] = []
        self.done = threading.Event()
        self.failed = False
        self.succeeded = False

    def on_progress(self, value: int, max_value: int) -> None:
        print(f"progress {value}/{max_value}", file=sys.stderr)

    def on_download_image(self, data: bytes) -> None:
        self.images.append(data)

    def on_completed(self) -> None:
        self.done.set()

    def on_success(self) -> None:
        self.succeeded = True
        self.done.set()

    def on_error(self, error: BaseException) -> None:
        self.errors.append(error)
        if isinstance(error, ExecutionError):
            self.failed = True
            self.done.set()


class ChannelWatcher(BaseSessionHandler):
    def __init__(self, collector: ImageCollector):
        self.collector = collector

    def on_close(self, code: int, reason: str) -> None:
        super().on_close(code, reason)
        self.collector.done.set()


def parse_assignment(text: str) -> Tuple[str, str, Any]:
    """Parse ``NODE.INPUT=VALUE``; VALUE is JSON when it parses, else a string."""
    target, sep, raw = text.partition("=")
    node_id, dot, input_name = target.partition(".")
    if not sep or not dot or not node_id or not input_name:
        raise argparse.ArgumentTypeError(f"expected NODE.INPUT=VALUE, got {text!r}")
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        value = raw
    return node_id, input_name, value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="comfy-client", description="Submit workflows to a ComfyUI server.")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Submit a workflow and save its images")
    run.add_argument("workflow", type=Path, help="API-format workflow JSON")
    run.add_argument("--config", type=Path, default=None, help="YAML config file")
    seed_target = run.add_mutually_exclusive_group()
    seed_target.add_argument("--seed-node", default=None, help="Node id whose seed is randomized")
    seed_target.add_argument("--seed-title", default=None, help="Node title whose seed is randomized")
    run.add_argument("--seed-input", default="seed", help="Input name for the seed [default: seed]")
    run.add_argument("--set", dest="assignments", action="append", type=parse_assignment, default=[],
                     metavar="NODE.INPUT=VALUE", help="Set a node input (repeatable)")
    run.add_argument("--output-dir", type=Path, default=Path("."), help="Where images are written")
    run.add_argument("--wait", type=float, default=600.0,
                     help="Seconds to wait for images or execution_success [default: 600]")
    return parser


def run_workflow(args: argparse.Namespace, session_factory=ComfySession) -> int:
    try:
        config = load_config(args.config)
        workflow = load_workflow(args.workflow)
    except (ComfyClientError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    for node_id, input_name, value in args.assignments:
        if not update_node_input(workflow, node_id, input_name, value):
            print(f"error: node {node_id!r} not found in workflow", file=sys.stderr)
            return 1

    seed_node = args.seed_node
    if args.seed_title is not None:
        seed_node = find_node_id_by_title(workflow, args.seed_title)
        if seed_node is None:
            print(f"error: no node titled {args.seed_title!r}", file=sys.stderr)
            return 1
    if seed_node is not None:
        seed = generate_seed()
        if not update_node_input(workflow, seed_node, args.seed_input, seed):
            print(f"error: node {seed_node!r} not found in workflow", file=sys.stderr)
            return 1
        print(f"seed {seed} -> node {seed_node}", file=sys.stderr)

    collector = ImageCollector()
    session = session_factory(config, ChannelWatcher(collector))
    try:
        if not session.connect():
            print(f"error: could not connect to {session.ws_url}", file=sys.stderr)
            return 1
        try:
            prompt_id = session.submit(workflow, collector)
        except ComfyClientError as e:
            print(f"error: {e}", file=sys.stderr)
            return 1

        if not collector.done.wait(args.wait):
            print(f"error: prompt {prompt_id} did not finish within {args.wait}s", file=sys.stderr)
            return 1
    finally:
        session.close()

    args.output_dir.mkdir(parents=True, exist_ok=True)
    for index, data in enumerate(collector.images):
        path = args.output_dir / f"{prompt_id}_{index}.png"
        path.write_bytes(data)
        print(str(path))

    for error in collector.errors:
        print(f"warning: {error}", file=sys.stderr)

    if collector.failed:
        return 1
    if not collector.images and not collector.succeeded:
        return 1
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()
    if args.command == "run":
        return run_workflow(args)
    return 2


if __name__ == "__main__":
    sys.exit(main())
