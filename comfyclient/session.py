"""
ComfyUI session: prompt submission and event-channel tracking.

A session owns one websocket to ComfyUI (``/ws?clientId=...``) and submits
prompts over HTTP with the same client id, so the server routes execution
events for those prompts to this channel. Each submitted prompt is bound to
a GenerationHandler until a terminal event arrives.

ComfyUI websocket message types:
- status: Queue status update (sid on first message, queue_remaining)
- execution_start: Prompt started executing (includes prompt_id)
- executing: Currently executing a node (includes prompt_id, node)
- progress: Sampler progress (includes prompt_id, value, max)
- executed: Node completed (includes prompt_id, node, output.images)
- execution_success: Prompt finished (terminal)
- execution_error: Execution failed (terminal)
- execution_interrupted: Prompt was interrupted (terminal)

Jobs have no local timeout: a prompt whose terminal event never arrives keeps
its handler bound for the lifetime of the session.
"""

from __future__ import annotations

import enum
import json
import logging
import threading
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK
from websockets.sync.client import connect as ws_client_connect

from comfyclient import json_codec
from comfyclient.config import ComfyConfig
from comfyclient.errors import (
    ArtifactFetchError,
    ConnectError,
    ExecutionError,
    SubmissionError,
)
from comfyclient.graph_editor import WorkflowGraph
from comfyclient.handlers import GenerationHandler, SessionHandler
from comfyclient.http_client import LoggedHTTPClient, comfyui_client
from comfyclient.logging_utils import get_logger

log = logging.getLogger("comfy-client.session")

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006


class SessionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


def _find_value(node: Any, key: str) -> Any:
    """Depth-first search for the first value stored under ``key``."""
    if isinstance(node, dict):
        for name, value in node.items():
            if name == key:
                return value
            found = _find_value(value, key)
            if found is not None:
                return found
    elif isinstance(node, list):
        for item in node:
            found = _find_value(item, key)
            if found is not None:
                return found
    return None


def _as_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    return default


def _close_info(exc: ConnectionClosed) -> Tuple[int, str]:
    frame = exc.rcvd or exc.sent
    if frame is None:
        return ABNORMAL_CLOSURE, ""
    return frame.code, frame.reason


class ComfySession:
    """
    Client session against one ComfyUI server.

    Typical use::

        with ComfySession(config, handler=my_session_handler) as session:
            prompt_id = session.submit(workflow, my_generation_handler)
            ...

    ``connect()`` blocks until the channel is open or has failed; events are
    then delivered on a background reader thread, one message at a time.
    """

    def __init__(
        self,
        config: Optional[ComfyConfig] = None,
        handler: Optional[SessionHandler] = None,
        *,
        client_id: Optional[str] = None,
        http_client: Optional[LoggedHTTPClient] = None,
        ws_connect: Optional[Callable[..., Any]] = None,
    ):
        self.config = config or ComfyConfig()
        self.handler = handler
        self.client_id = client_id or str(uuid.uuid4())
        self.slog = get_logger(self.client_id)

        self._http = http_client or comfyui_client(
            self.config.base_url, self.config.http_timeout(), logger=self.slog
        )
        self._ws_connect = ws_connect or ws_client_connect

        self._ws: Any = None
        self._state = SessionState.DISCONNECTED
        self._state_lock = threading.Lock()
        self._reader: Optional[threading.Thread] = None

        # prompt_id -> handler; shared between submit() and the reader thread
        self._handlers: Dict[str, GenerationHandler] = {}
        self._handlers_lock = threading.Lock()

        # Fragments of the message currently being received
        self._frame_buffer: List[Union[str, bytes]] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        with self._state_lock:
            return self._state

    @property
    def ws_url(self) -> str:
        return f"{self.config.ws_url}?clientId={self.client_id}"

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def connect(self) -> bool:
        """
        Open the event channel and block until it is open or has failed.

        Failures are reported through ``handler.on_error`` and never raised.
        Returns True when the channel is open.
        """
        with self._state_lock:
            if self._state in (SessionState.OPEN, SessionState.CONNECTING):
                log.warning(f"connect() called while session is {self._state.value}")
                return self._state is SessionState.OPEN
            self._state = SessionState.CONNECTING

        previous = self._reader
        if previous is not None and previous.is_alive():
            # The previous reader must exit before the frame buffer is reused.
            previous.join(self.config.ws_open_timeout_s)

        opened = threading.Event()
        self._reader = threading.Thread(
            target=self._run,
            args=(opened,),
            name=f"comfy-ws-{self.client_id[:8]}",
            daemon=True,
        )
        self._reader.start()
        opened.wait()
        return self.state is SessionState.OPEN

    def disconnect(self) -> None:
        """Send a normal closure if the channel is open; does not wait for the reply."""
        with self._state_lock:
            ws = self._ws
            if self._state is not SessionState.OPEN or ws is None:
                return
            self._state = SessionState.CLOSED

        threading.Thread(
            target=self._send_close,
            args=(ws,),
            name=f"comfy-ws-close-{self.client_id[:8]}",
            daemon=True,
        ).start()

    def close(self) -> None:
        """Disconnect and release the HTTP client."""
        self.disconnect()
        self._http.close()

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the reader thread to exit."""
        if self._reader is not None:
            self._reader.join(timeout)

    def _send_close(self, ws: Any) -> None:
        try:
            ws.close(code=NORMAL_CLOSURE, reason="Disconnecting")
        except Exception as e:
            log.warning(f"Error while closing ComfyUI websocket: {e}")

    def _run(self, opened: threading.Event) -> None:
        url = self.ws_url
        self.slog.info("ws_connecting", url=url)
        try:
            ws = self._ws_connect(url, open_timeout=self.config.ws_open_timeout_s, max_size=None)
        except Exception as e:
            with self._state_lock:
                self._state = SessionState.DISCONNECTED
            self.slog.error("ws_connect_failed", error=str(e), url=url)
            try:
                self._notify_session("on_error", ConnectError(url, e))
            finally:
                opened.set()
            return

        with self._state_lock:
            self._ws = ws
            self._state = SessionState.OPEN
        self.slog.info("ws_open", url=url)
        try:
            self._notify_session("on_open")
        finally:
            opened.set()

        self._receive_loop(ws)

    def _receive_loop(self, ws: Any) -> None:
        code, reason = ABNORMAL_CLOSURE, ""
        try:
            while True:
                for fragment in ws.recv_streaming():
                    self._on_fragment(fragment)
                self._on_message_end()
        except ConnectionClosedOK as e:
            code, reason = _close_info(e)
        except ConnectionClosed as e:
            code, reason = _close_info(e)
            log.warning(f"ComfyUI websocket connection closed unexpectedly: {e}")
            self._notify_session("on_error", e)
        except Exception as e:
            log.warning(f"ComfyUI websocket transport error: {e}")
            self._notify_session("on_error", e)
        finally:
            with self._state_lock:
                if self._ws is ws:
                    self._state = SessionState.CLOSED
                    self._ws = None
            self._frame_buffer = []

        self.slog.info("ws_closed", code=code, reason=reason)
        self._notify_session("on_close", code, reason)

    # ------------------------------------------------------------------
    # Outbound: prompts and artifacts
    # ------------------------------------------------------------------

    def submit(self, workflow: WorkflowGraph, handler: GenerationHandler) -> str:
        """
        Queue ``workflow`` on the server and bind ``handler`` to its events.

        Blocks for one HTTP round trip, not for execution. Raises
        SubmissionError when the server does not accept the prompt.
        """
        if not isinstance(workflow, dict):
            raise TypeError(f"workflow must be a dict, got {type(workflow).__name__}")
        if handler is None:
            raise TypeError("handler must not be None")

        body = json_codec.dumps({"prompt": workflow, "client_id": self.client_id})

        try:
            response = self._http.post(
                "/prompt",
                content=body,
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            self.slog.error("prompt_submit_failed", error=str(e))
            raise SubmissionError(f"Failed to submit prompt: {e}") from e

        if response.status_code != 200:
            text = response.text
            self.slog.error("prompt_submit_failed", error=text[:500], status_code=response.status_code)
            raise SubmissionError(
                f"Failed to submit prompt: HTTP {response.status_code}: {text}",
                status_code=response.status_code,
                body=text,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise SubmissionError(
                f"Prompt response is not JSON: {e}", status_code=response.status_code, body=response.text
            ) from e

        prompt_id = payload.get("prompt_id") if isinstance(payload, dict) else None
        if not isinstance(prompt_id, str) or not prompt_id:
            raise SubmissionError(
                "Prompt response has no prompt_id", status_code=response.status_code, body=response.text
            )

        with self._handlers_lock:
            self._handlers[prompt_id] = handler

        self.slog.info("prompt_submitted", prompt_id=prompt_id, number=payload.get("number"))
        return prompt_id

    def fetch_artifact(self, filename: str, kind: str, subfolder: str) -> bytes:
        """Download one output file via GET /view."""
        log.info(f"Downloading artifact {filename!r} (type={kind}, subfolder={subfolder!r})")
        response = self._http.get(
            "/view",
            params={"filename": filename, "type": kind, "subfolder": subfolder},
        )
        if not response.is_success:
            raise ArtifactFetchError(filename, response.status_code, response.text[:500])
        return response.content

    # ------------------------------------------------------------------
    # Bindings
    # ------------------------------------------------------------------

    def pending_prompts(self) -> List[str]:
        """Prompt ids whose handlers are still bound."""
        with self._handlers_lock:
            return list(self._handlers)

    def is_bound(self, prompt_id: str) -> bool:
        with self._handlers_lock:
            return prompt_id in self._handlers

    def _get_handler(self, prompt_id: Optional[str]) -> Optional[GenerationHandler]:
        if prompt_id is None:
            return None
        with self._handlers_lock:
            return self._handlers.get(prompt_id)

    def _pop_handler(self, prompt_id: Optional[str]) -> Optional[GenerationHandler]:
        if prompt_id is None:
            return None
        with self._handlers_lock:
            return self._handlers.pop(prompt_id, None)

    # ------------------------------------------------------------------
    # Inbound: frames and messages
    # ------------------------------------------------------------------

    def _on_fragment(self, fragment: Union[str, bytes]) -> None:
        self._frame_buffer.append(fragment)

    def _on_message_end(self) -> None:
        fragments = self._frame_buffer
        self._frame_buffer = []
        if not fragments:
            return

        if isinstance(fragments[0], bytes):
            # Binary frames carry preview/websocket-saved images; not decoded here.
            size = sum(len(f) for f in fragments)
            self.slog.debug("ws_binary_frame", size=size)
            return

        self._handle_message("".join(fragments))

    def _handle_message(self, message: str) -> None:
        """Decode and dispatch one complete text message; never raises."""
        try:
            document = json.loads(message)
            if not isinstance(document, dict):
                raise ValueError(f"Expected a JSON object, got {type(document).__name__}")
            self._dispatch(document)
        except Exception as e:
            self.slog.error("ws_message_error", error=f"{type(e).__name__}: {e}", message=message[:200])
            self._notify_session("on_error", e)

    def _dispatch(self, document: Dict[str, Any]) -> None:
        msg_type = document.get("type")
        msg_data = document.get("data")
        if not isinstance(msg_data, dict):
            msg_data = {}

        prompt_id = msg_data.get("prompt_id")
        if not isinstance(prompt_id, str) or not prompt_id:
            prompt_id = None

        log.debug(f"ComfyUI WS message: type={msg_type}, prompt_id={prompt_id}")

        if msg_type == "status":
            sid = msg_data.get("sid")
            if isinstance(sid, str) and sid:
                self._notify_session("on_sid", sid)
            remaining = _find_value(document, "queue_remaining")
            if isinstance(remaining, int) and not isinstance(remaining, bool) and remaining >= 0:
                self._notify_session("on_queue_status", remaining)
            return

        if msg_type == "execution_start":
            handler = self._get_handler(prompt_id)
            if handler is not None:
                self.slog.info("execution_start", prompt_id=prompt_id)
                handler.on_start()
            return

        if msg_type == "executing":
            node_id = msg_data.get("node")
            if node_id is None or node_id == "null":
                return
            handler = self._get_handler(prompt_id)
            if handler is not None:
                self.slog.debug("executing_node", prompt_id=prompt_id, node=node_id)
                handler.on_node(str(node_id))
            return

        if msg_type == "progress":
            handler = self._get_handler(prompt_id)
            if handler is not None:
                value = _as_int(msg_data.get("value"))
                max_value = _as_int(msg_data.get("max"))
                self.slog.debug("progress", prompt_id=prompt_id, value=value, max=max_value)
                handler.on_progress(value, max_value)
            return

        if msg_type == "executed":
            self._on_executed(prompt_id, msg_data)
            return

        if msg_type == "execution_success":
            if prompt_id is None:
                found = _find_value(document, "prompt_id")
                prompt_id = found if isinstance(found, str) and found else None
            handler = self._pop_handler(prompt_id)
            if handler is not None:
                self.slog.info("execution_success", prompt_id=prompt_id)
                # Optional hook, not part of GenerationHandler
                on_success = getattr(handler, "on_success", None)
                if callable(on_success):
                    on_success()
            return

        if msg_type == "execution_error":
            handler = self._pop_handler(prompt_id)
            if handler is not None:
                exception_type = msg_data.get("exception_type") or "Unknown"
                exception_message = msg_data.get("exception_message") or "No message"
                error = ExecutionError(
                    f"{exception_type}: {exception_message}",
                    prompt_id=prompt_id,
                    node_id=msg_data.get("node_id"),
                    node_type=msg_data.get("node_type"),
                    exception_type=exception_type,
                )
                self.slog.error(
                    "execution_error",
                    prompt_id=prompt_id,
                    error=str(error),
                    node_id=error.node_id,
                    node_type=error.node_type,
                    category=error.category,
                )
                handler.on_error(error)
            return

        if msg_type == "execution_interrupted":
            handler = self._pop_handler(prompt_id)
            if handler is not None:
                self.slog.warning("execution_interrupted", prompt_id=prompt_id)
                handler.on_error(
                    ExecutionError(
                        "Execution was interrupted",
                        prompt_id=prompt_id,
                        node_id=msg_data.get("node_id"),
                        node_type=msg_data.get("node_type"),
                    )
                )
            return

    def _on_executed(self, prompt_id: Optional[str], msg_data: Dict[str, Any]) -> None:
        output = msg_data.get("output")
        images = output.get("images") if isinstance(output, dict) else None
        if not isinstance(images, list) or not images:
            return

        handler = self._get_handler(prompt_id)
        if handler is None:
            log.debug(f"Ignoring executed event for unbound prompt {prompt_id}")
            return

        self.slog.info("node_executed", prompt_id=prompt_id, node=msg_data.get("node"), images=len(images))
        for image in images:
            if not isinstance(image, dict):
                continue
            filename = str(image.get("filename") or "")
            kind = str(image.get("type") or "")
            subfolder = str(image.get("subfolder") or "")
            try:
                data = self.fetch_artifact(filename, kind, subfolder)
            except Exception as e:
                self.slog.warning("artifact_fetch_failed", prompt_id=prompt_id, error=str(e), filename=filename)
                handler.on_error(e)
                continue
            handler.on_download_image(data)

        handler.on_completed()

    def _notify_session(self, method: str, *args: Any) -> None:
        if self.handler is None:
            return
        try:
            getattr(self.handler, method)(*args)
        except Exception as e:
            log.warning(f"Session handler {method} error: {e}")
