"""Callback interfaces invoked by ComfySession.

Callers implement these structurally; subclassing the ``Base*`` classes is
only a convenience for handlers that care about a few events.
Callbacks run on the session's reader thread.
"""
from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

log = logging.getLogger("comfy-client.handlers")


@runtime_checkable
class SessionHandler(Protocol):
    """Channel-level events."""

    def on_open(self) -> None: ...

    def on_sid(self, sid: str) -> None: ...

    def on_queue_status(self, remaining: int) -> None: ...

    def on_close(self, code: int, reason: str) -> None: ...

    def on_error(self, error: BaseException) -> None: ...


@runtime_checkable
class GenerationHandler(Protocol):
    """Events for one submitted prompt."""

    def on_start(self) -> None: ...

    def on_node(self, node_id: str) -> None: ...

    def on_progress(self, value: int, max_value: int) -> None: ...

    def on_download_image(self, data: bytes) -> None: ...

    def on_completed(self) -> None: ...

    def on_error(self, error: BaseException) -> None: ...


class BaseSessionHandler:
    def on_open(self) -> None:
        log.debug("Event channel opened")

    def on_sid(self, sid: str) -> None:
        log.debug(f"Session id assigned: {sid}")

    def on_queue_status(self, remaining: int) -> None:
        log.debug(f"Queue remaining: {remaining}")

    def on_close(self, code: int, reason: str) -> None:
        log.debug(f"Event channel closed: {code} {reason}")

    def on_error(self, error: BaseException) -> None:
        log.warning(f"Session error: {error}")


class BaseGenerationHandler:
    def on_start(self) -> None:
        pass

    def on_node(self, node_id: str) -> None:
        pass

    def on_progress(self, value: int, max_value: int) -> None:
        pass

    def on_download_image(self, data: bytes) -> None:
        pass

    def on_completed(self) -> None:
        pass

    def on_error(self, error: BaseException) -> None:
        log.warning(f"Generation error: {error}")

    def on_success(self) -> None:
        """Optional hook: the prompt finished (``execution_success``)."""
        pass
