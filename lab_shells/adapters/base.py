from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..config import GatewayConfig
from ..errors import AdapterRuntimeError
from ..handshake import HandshakeRequest, TargetKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExitInfo:
    exit_code: Optional[int] = None
    signal: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"exit_code": self.exit_code, "signal": self.signal}


MaybeAwaitable = Union[None, Awaitable[None]]
DataCallback = Callable[[bytes], MaybeAwaitable]
ExitCallback = Callable[[ExitInfo], MaybeAwaitable]
ErrorCallback = Callable[[BaseException], MaybeAwaitable]


async def _call(cb: Callable[..., MaybeAwaitable], *args: Any) -> None:
    result = cb(*args)
    if inspect.isawaitable(result):
        await result


class BackendAdapter(ABC):
    """Uniform wrapper around one interactive backend session.

    Output is pushed to `on_data` callbacks in the order it is produced; an
    async callback is awaited before the next read, so a slow consumer slows
    the reader down instead of growing a buffer. Exit and error are terminal
    and fire at most once between them. `stop()` is idempotent.
    """

    kind: TargetKind

    def __init__(self, target: str, config: GatewayConfig) -> None:
        self.target = target
        self.config = config
        self.exit_info: Optional[ExitInfo] = None
        self.error: Optional[BaseException] = None
        self._data_callbacks: List[DataCallback] = []
        self._exit_callbacks: List[ExitCallback] = []
        self._error_callbacks: List[ErrorCallback] = []
        self._started = False
        self._finished = False
        self._stopped = False

    # ------------------------------------------------------------------
    # Event registration

    def on_data(self, callback: DataCallback) -> None:
        self._data_callbacks.append(callback)

    def on_exit(self, callback: ExitCallback) -> None:
        self._exit_callbacks.append(callback)

    def on_error(self, callback: ErrorCallback) -> None:
        self._error_callbacks.append(callback)

    @property
    def dead(self) -> bool:
        return self._finished or self._stopped

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def pid(self) -> Optional[int]:
        return None

    async def _emit_data(self, chunk: bytes) -> None:
        for cb in list(self._data_callbacks):
            await _call(cb, chunk)

    async def _emit_exit(self, info: ExitInfo) -> None:
        if self._finished:
            return
        self._finished = True
        self.exit_info = info
        for cb in list(self._exit_callbacks):
            await _call(cb, info)

    async def _emit_error(self, exc: BaseException) -> None:
        if self._finished:
            return
        self._finished = True
        self.error = exc
        for cb in list(self._error_callbacks):
            await _call(cb, exc)

    # ------------------------------------------------------------------
    # Public contract

    async def start(self, request: HandshakeRequest) -> None:
        """Bring the backend session up. Raises ConnectError on failure."""
        if self._started:
            raise AdapterRuntimeError(f"{self.kind.value} adapter already started")
        if self._stopped:
            raise AdapterRuntimeError(f"{self.kind.value} adapter was stopped before start")
        self._started = True
        await self._start(request)
        if self._stopped:
            await self._stop()

    async def write(self, data: bytes) -> None:
        if self.dead:
            raise AdapterRuntimeError(f"{self.kind.value} adapter is closed")
        if data:
            await self._write(data)

    async def resize(self, columns: int, rows: int) -> None:
        if self.dead:
            raise AdapterRuntimeError(f"{self.kind.value} adapter is closed")
        await self._resize(max(1, int(columns)), max(1, int(rows)))

    async def stop(self) -> bool:
        """Release the backend. Returns False when already stopped."""
        if self._stopped:
            return False
        self._stopped = True
        try:
            await self._stop()
        except Exception as exc:
            logger.debug("%s stop for %s raised: %s", self.kind.value, self.target, exc)
        return True

    def describe(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "target": self.target,
            "pid": self.pid,
            "dead": self.dead,
            "exit": self.exit_info.to_dict() if self.exit_info else None,
            "error": str(self.error) if self.error else None,
        }

    # ------------------------------------------------------------------
    # Variant hooks

    @abstractmethod
    async def _start(self, request: HandshakeRequest) -> None: ...

    @abstractmethod
    async def _write(self, data: bytes) -> None: ...

    @abstractmethod
    async def _resize(self, columns: int, rows: int) -> None: ...

    @abstractmethod
    async def _stop(self) -> None: ...
