"""Transport wrapper and the bidirectional relay between client and adapter."""
from __future__ import annotations

import asyncio
import codecs
import logging
import re
from typing import Awaitable, Callable, List, Optional, Tuple, Union

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from .adapters.base import BackendAdapter
from .config import GatewayConfig
from .errors import AdapterRuntimeError, TransportError
from .record import CloseReason

logger = logging.getLogger(__name__)

Frame = Union[str, bytes]
TerminalCallback = Callable[[CloseReason, Optional[BaseException]], object]
ResizeCallback = Callable[[int, int], Awaitable[None]]

_RESIZE_RE = re.compile(r"^RESIZE:(\d{1,5}):(\d{1,5})$")

ERROR_NOTICE = "\r\n\x1b[31mError: {message}\x1b[0m"
CLOSED_NOTICE = "\r\n\x1b[31mConnection closed\x1b[0m"


def error_notice(message: str) -> str:
    return ERROR_NOTICE.format(message=message)


class WebSocketTransport:
    """Message-oriented view of one accepted WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed or self.websocket.client_state == WebSocketState.DISCONNECTED

    async def receive(self) -> Frame:
        if self.closed:
            raise TransportError("Transport closed")
        msg = await self.websocket.receive()
        if msg["type"] == "websocket.disconnect":
            self._closed = True
            raise TransportError(f"Client disconnected (code {msg.get('code')})")
        if msg.get("text") is not None:
            return msg["text"]
        if msg.get("bytes") is not None:
            return msg["bytes"]
        return b""

    async def send(self, frame: Frame) -> None:
        if self.closed:
            raise TransportError("Transport closed")
        try:
            if isinstance(frame, str):
                await self.websocket.send_text(frame)
            else:
                await self.websocket.send_bytes(frame)
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            self._closed = True
            raise TransportError(f"Send failed: {exc}") from exc

    async def close(self, code: int = 1000) -> None:
        if self.closed:
            return
        self._closed = True
        try:
            await self.websocket.close(code=code)
        except (RuntimeError, OSError) as exc:
            logger.debug("WebSocket close raised: %s", exc)


def parse_resize_frame(text: str) -> Optional[Tuple[int, int]]:
    match = _RESIZE_RE.match(text)
    if not match:
        return None
    columns, rows = int(match.group(1)), int(match.group(2))
    if columns < 1 or rows < 1:
        return None
    return columns, rows


class Relay:
    """Pumps adapter output to the client and client input to the adapter.

    Three tasks per session: output forwarder, transport receiver and input
    writer. Both directions go through bounded queues, so a slow client
    suspends the adapter reader and a slow backend suspends the receiver;
    neither buffers without limit. A blocked backend write never holds up
    output forwarding because writes run in their own task.
    """

    def __init__(
        self,
        session_id: str,
        transport,
        adapter: BackendAdapter,
        config: GatewayConfig,
        *,
        on_terminal: TerminalCallback,
        on_resize: Optional[ResizeCallback] = None,
    ) -> None:
        self.session_id = session_id
        self.transport = transport
        self.adapter = adapter
        self.config = config
        self._on_terminal = on_terminal
        self._on_resize = on_resize
        self._output: asyncio.Queue = asyncio.Queue(maxsize=max(1, config.max_pending_output))
        self._input: asyncio.Queue = asyncio.Queue(maxsize=max(1, config.max_pending_output))
        self._decoder = None if config.binary_output else codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._tasks: List[asyncio.Task] = []
        self.bytes_out = 0
        self.bytes_in = 0

    def bind(self) -> None:
        """Subscribe to adapter output. Call before the adapter starts."""
        self.adapter.on_data(self._output.put)

    def start(self) -> None:
        self._tasks = [
            asyncio.create_task(self._forward_output(), name=f"{self.session_id}:output"),
            asyncio.create_task(self._receive_input(), name=f"{self.session_id}:receive"),
            asyncio.create_task(self._write_input(), name=f"{self.session_id}:write"),
        ]

    def _encode(self, chunk: bytes, final: bool = False) -> Optional[Frame]:
        if self._decoder is None:
            return bytes(chunk) if chunk else None
        text = self._decoder.decode(chunk, final=final)
        return text or None

    async def _forward_output(self) -> None:
        while True:
            chunk = await self._output.get()
            try:
                frame = self._encode(chunk)
                if frame is None:
                    continue
                try:
                    await self.transport.send(frame)
                except TransportError as exc:
                    self._on_terminal(CloseReason.TRANSPORT_ERROR, exc)
                    return
                self.bytes_out += len(chunk)
            finally:
                self._output.task_done()

    async def _receive_input(self) -> None:
        while True:
            try:
                frame = await self.transport.receive()
            except TransportError as exc:
                self._on_terminal(CloseReason.TRANSPORT_CLOSED, exc)
                return
            if isinstance(frame, str):
                if self.config.resize_frames:
                    dims = parse_resize_frame(frame)
                    if dims is not None:
                        await self._input.put(dims)
                        continue
                frame = frame.encode("utf-8")
            if frame:
                await self._input.put(bytes(frame))

    async def _write_input(self) -> None:
        while True:
            item = await self._input.get()
            try:
                if isinstance(item, tuple):
                    if self._on_resize is not None:
                        await self._on_resize(*item)
                    continue
                await self.adapter.write(item)
                self.bytes_in += len(item)
            except AdapterRuntimeError as exc:
                self._on_terminal(CloseReason.ADAPTER_ERROR, exc)
                return

    async def stop(self, *, drain: bool = False) -> None:
        """Cancel the pumps; with `drain`, let queued output reach the client first."""
        tasks, self._tasks = self._tasks, []
        forwarder = tasks[0] if tasks else None
        for task in tasks[1:]:
            task.cancel()
        if drain and forwarder is not None and not forwarder.done():
            try:
                await asyncio.wait_for(self._output.join(), timeout=self.config.stop_grace_period)
            except asyncio.TimeoutError:
                logger.debug("[%s] output drain timed out", self.session_id)
        if forwarder is not None:
            forwarder.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.debug("[%s] relay task %s ended with %s", self.session_id, task.get_name(), exc)
        if not drain:
            return
        tail = self._encode(b"", final=True)
        if tail is None:
            return
        try:
            await self.transport.send(tail)
        except TransportError as exc:
            logger.debug("[%s] dropped trailing output: %s", self.session_id, exc)
