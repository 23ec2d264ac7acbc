from __future__ import annotations

from typing import Dict, List, Optional


CUDA_UNSUPPORTED_REMEDIATION = [
    "The ComfyUI server is using a PyTorch/CUDA build that doesn’t support this GPU architecture.",
    "Fix: reinstall PyTorch with a CUDA build that supports the GPU (or build from source), then restart ComfyUI.",
    "After a GPU upgrade (e.g., RTX 50xx), older wheels often won’t include the needed SM kernels.",
]


class ComfyClientError(Exception):
    """Base class for errors raised by the client."""


class ConfigError(ComfyClientError):
    """Configuration could not be loaded or validated."""


class WorkflowError(ComfyClientError):
    """A workflow document is not a JSON object of nodes."""


class ConnectError(ComfyClientError):
    """The event channel could not be opened."""

    def __init__(self, url: str, cause: Optional[BaseException] = None):
        self.url = url
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Failed to connect to {url}{detail}")


class SubmissionError(ComfyClientError):
    """POST /prompt did not return a usable prompt_id."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class ArtifactFetchError(ComfyClientError):
    """GET /view returned a non-success status."""

    def __init__(self, filename: str, status_code: int, body: str = ""):
        self.filename = filename
        self.status_code = status_code
        self.body = body
        super().__init__(f"Failed to download {filename!r}: HTTP {status_code}")


class ExecutionError(ComfyClientError):
    """The server reported that a prompt failed or was interrupted."""

    def __init__(
        self,
        message: str,
        prompt_id: Optional[str] = None,
        node_id: Optional[str] = None,
        node_type: Optional[str] = None,
        exception_type: Optional[str] = None,
    ):
        self.prompt_id = prompt_id
        self.node_id = node_id
        self.node_type = node_type
        self.exception_type = exception_type
        self.classification = classify_comfy_error(message)
        super().__init__(message)

    @property
    def category(self) -> str:
        return str(self.classification["category"])


def _contains_any(message: str, needles: List[str]) -> bool:
    lowered = message.lower()
    return any(needle.lower() in lowered for needle in needles)


def classify_comfy_error(msg: str) -> Dict[str, object]:
    """Classify ComfyUI error messages for display + remediation guidance."""
    message = msg or ""
    if _contains_any(message, ["no kernel image is available for execution on the device"]):
        return {
            "category": "cuda_unsupported_arch",
            "short": "Torch/CUDA build doesn’t support this GPU (kernel image not available).",
            "action": CUDA_UNSUPPORTED_REMEDIATION,
        }
    if _contains_any(message, ["cuda out of memory"]):
        return {
            "category": "oom",
            "short": "CUDA out of memory.",
            "action": [
                "Reduce resolution, steps, or batch size.",
                "Close other GPU workloads and resubmit.",
            ],
        }
    if _contains_any(message, ["could not find checkpoint", "checkpoint not found", "value not in list: ckpt_name"]):
        return {
            "category": "missing_checkpoint",
            "short": "Checkpoint not found.",
            "action": [
                "Install the checkpoint on the ComfyUI server.",
                "Verify the checkpoint filename in the workflow's loader node.",
            ],
        }
    if _contains_any(message, ["interrupted"]):
        return {
            "category": "interrupted",
            "short": "Execution was interrupted.",
            "action": ["Resubmit the workflow if the interruption was not intended."],
        }
    return {
        "category": "unknown",
        "short": "ComfyUI execution error.",
        "action": ["Check the ComfyUI server log for the full traceback."],
    }
