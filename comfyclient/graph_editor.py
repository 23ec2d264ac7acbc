"""
Helpers for editing ComfyUI workflows in API format.

An API-format workflow is a JSON object keyed by node id::

    {
        "3": {"class_type": "KSampler",
              "inputs": {"seed": 1, "steps": 20},
              "_meta": {"title": "KSampler"}},
        ...
    }
"""
from __future__ import annotations

import json
import random
from pathlib import Path
from typing import Any, Dict, Optional, Union

from comfyclient.errors import WorkflowError

WorkflowGraph = Dict[str, Dict[str, Any]]

SEED_MAX = 2**63 - 1

# Used when callers don't pass their own generator; pass ``rng`` for reproducible seeds.
DEFAULT_RNG = random.Random()


def find_node_id_by_title(workflow: WorkflowGraph, title: str) -> Optional[str]:
    """Return the id of the first node whose ``_meta.title`` equals *title*.

    Matching is exact and case-sensitive; nodes are visited in the workflow's
    iteration order.
    """
    for node_id, node in workflow.items():
        if not isinstance(node, dict):
            continue
        meta = node.get("_meta")
        if isinstance(meta, dict) and meta.get("title") == title:
            return node_id
    return None


def update_node_input(workflow: WorkflowGraph, node_id: str, input_name: str, value: Any) -> bool:
    """Set ``inputs[input_name]`` on node *node_id*.

    Returns False (and leaves the workflow untouched) when the node does not
    exist. The ``inputs`` mapping is created if the node lacks one.
    """
    node = workflow.get(node_id)
    if node is None:
        return False

    inputs = node.get("inputs")
    if not isinstance(inputs, dict):
        inputs = {}
        node["inputs"] = inputs
    inputs[input_name] = value
    return True


def generate_seed(rng: Optional[random.Random] = None) -> int:
    """Return a non-negative 64-bit seed for KSampler-style nodes.

    The seed is the absolute value of a signed 64-bit draw, so the distribution
    is not uniform over [0, 2**63 - 1]. The one draw whose magnitude does not
    fit (-2**63) is clamped to ``SEED_MAX``.
    """
    if rng is None:
        rng = DEFAULT_RNG

    signed = rng.getrandbits(64) - 2**63
    return min(abs(signed), SEED_MAX)


def load_workflow(path: Union[str, Path]) -> WorkflowGraph:
    """Read an API-format workflow from a UTF-8 JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as exc:
            raise WorkflowError(f"Workflow {path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise WorkflowError(f"Workflow {path} must be a JSON object keyed by node id")
    return data
