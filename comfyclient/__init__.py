"""Thin client for a ComfyUI server: submit workflows, follow execution, download images."""

from comfyclient.config import ComfyConfig, load_config
from comfyclient.errors import (
    ArtifactFetchError,
    ComfyClientError,
    ConfigError,
    ConnectError,
    ExecutionError,
    SubmissionError,
    WorkflowError,
)
from comfyclient.graph_editor import (
    find_node_id_by_title,
    generate_seed,
    load_workflow,
    update_node_input,
)
from comfyclient.handlers import (
    BaseGenerationHandler,
    BaseSessionHandler,
    GenerationHandler,
    SessionHandler,
)
from comfyclient.session import ComfySession, SessionState

__version__ = "0.1.0"

__all__ = [
    "ArtifactFetchError",
    "BaseGenerationHandler",
    "BaseSessionHandler",
    "ComfyClientError",
    "ComfyConfig",
    "ComfySession",
    "ConfigError",
    "ConnectError",
    "ExecutionError",
    "GenerationHandler",
    "SessionHandler",
    "SessionState",
    "SubmissionError",
    "WorkflowError",
    "find_node_id_by_title",
    "generate_seed",
    "load_config",
    "load_workflow",
    "update_node_input",
]
