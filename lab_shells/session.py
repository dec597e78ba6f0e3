"""Per-connection lifecycle: handshake, active relay, exactly-once teardown."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from .adapters import AdapterFactory, BackendAdapter, ExitInfo, build_adapter
from .config import GatewayConfig
from .errors import (
    ConnectError,
    ConnectReason,
    InvalidHandshake,
    InvalidTransition,
    TransportError,
    UnsupportedKind,
)
from .events import EventBus, EventType, SessionEvent, get_event_bus
from .handshake import HandshakeRequest, ResolvedHandshake, TargetKind, resolve_handshake
from .record import CloseReason, SessionRecord, SessionState, new_session_id
from .relay import CLOSED_NOTICE, Relay, error_notice

logger = logging.getLogger(__name__)

# INIT -> CLOSING: the handshake timed out or the client left before its
# first frame. A timeout still gets an error notice before the close.
TRANSITIONS: Dict[SessionState, frozenset] = {
    SessionState.INIT: frozenset({SessionState.HANDSHAKING, SessionState.CLOSING, SessionState.CLOSED}),
    SessionState.HANDSHAKING: frozenset({SessionState.ACTIVE, SessionState.CLOSING, SessionState.CLOSED}),
    SessionState.ACTIVE: frozenset({SessionState.CLOSING}),
    SessionState.CLOSING: frozenset({SessionState.CLOSED}),
    SessionState.CLOSED: frozenset(),
}

# WebSocket close codes per reason.
CLOSE_CODES: Dict[CloseReason, int] = {
    CloseReason.HANDSHAKE_FAILED: 1008,
    CloseReason.CONNECT_FAILED: 1011,
    CloseReason.ADAPTER_ERROR: 1011,
    CloseReason.ADAPTER_EXIT: 1000,
    CloseReason.TRANSPORT_CLOSED: 1000,
    CloseReason.TRANSPORT_ERROR: 1000,
    CloseReason.SHUTDOWN: 1001,
}


class TerminalSession:
    """One client connection bound to at most one backend adapter.

    All state changes happen on the event loop without awaiting between the
    check and the write, so adapter callbacks and transport events for the
    same session cannot interleave inside a transition. The first terminal
    signal wins; `close()` performs the teardown exactly once.
    """

    def __init__(
        self,
        transport,
        config: GatewayConfig,
        *,
        adapter_factory: Optional[AdapterFactory] = None,
        event_bus: Optional[EventBus] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.id = session_id or new_session_id()
        self.transport = transport
        self.config = config
        self.record = SessionRecord(id=self.id)
        self.kind: Optional[TargetKind] = None
        self.request: Optional[HandshakeRequest] = None
        self.adapter: Optional[BackendAdapter] = None
        self.close_reason: Optional[CloseReason] = None
        self.error: Optional[BaseException] = None
        self._adapter_factory = adapter_factory or build_adapter
        self._event_bus = event_bus or get_event_bus()
        self._relay: Optional[Relay] = None
        self._terminal = asyncio.Event()
        self._closing = False
        self._closed = asyncio.Event()

    # ------------------------------------------------------------------
    # State

    @property
    def state(self) -> SessionState:
        return self.record.state

    @property
    def dimensions(self) -> Dict[str, Optional[int]]:
        return {"columns": self.record.columns, "rows": self.record.rows}

    def _transition(self, target: SessionState) -> None:
        current = self.record.state
        if target not in TRANSITIONS[current]:
            raise InvalidTransition(current.value, target.value)
        self.record.state = target
        self.record.touch()
        logger.debug("[%s] %s -> %s", self.id, current.value, target.value)

    async def _emit(self, event_type: EventType, **extra: Any) -> None:
        event = SessionEvent(
            type=event_type,
            session_id=self.id,
            data={**self.record.to_payload(), **extra},
        )
        await self._event_bus.publish(event)

    def signal_terminal(self, reason: CloseReason, error: Optional[BaseException] = None) -> bool:
        """Record a terminal signal. Returns False if another one already won."""
        if self.close_reason is not None:
            logger.debug("[%s] ignoring %s, already closing for %s", self.id, reason.value, self.close_reason.value)
            return False
        self.close_reason = reason
        self.error = error
        self.record.close_reason = reason
        if error is not None:
            self.record.error = str(error)
        self._terminal.set()
        return True

    # ------------------------------------------------------------------
    # Adapter events

    def _on_adapter_exit(self, info: ExitInfo) -> None:
        self.record.exit_code = info.exit_code
        self.record.exit_signal = info.signal
        self.signal_terminal(CloseReason.ADAPTER_EXIT)

    def _on_adapter_error(self, exc: BaseException) -> None:
        logger.error("[%s] %s error: %s", self.id, self.kind.value if self.kind else "adapter", exc)
        self.signal_terminal(CloseReason.ADAPTER_ERROR, exc)

    async def resize(self, columns: int, rows: int) -> None:
        if self.state is not SessionState.ACTIVE or self.adapter is None:
            return
        self.record.columns = columns
        self.record.rows = rows
        self.record.touch()
        await self.adapter.resize(columns, rows)

    # ------------------------------------------------------------------
    # Lifecycle

    async def run(self) -> None:
        """Drive the session from accepted connection to CLOSED."""
        logger.info("[%s] terminal connection accepted", self.id)
        await self._emit(EventType.SESSION_CREATED)
        try:
            await self._handshake()
            if self.state is SessionState.ACTIVE:
                await self._terminal.wait()
        finally:
            await self.close()

    async def _handshake(self) -> None:
        try:
            message = await asyncio.wait_for(self.transport.receive(), timeout=self.config.handshake_timeout)
        except asyncio.TimeoutError:
            self.signal_terminal(CloseReason.HANDSHAKE_FAILED, InvalidHandshake("Handshake timeout"))
            return
        except TransportError as exc:
            self.signal_terminal(CloseReason.TRANSPORT_CLOSED, exc)
            return
        if self._closing:
            return

        self._transition(SessionState.HANDSHAKING)
        await self._emit(EventType.SESSION_HANDSHAKING)
        try:
            resolved = resolve_handshake(message, self.config)
        except (InvalidHandshake, UnsupportedKind) as exc:
            logger.warning("[%s] rejected handshake: %s", self.id, exc)
            self.signal_terminal(CloseReason.HANDSHAKE_FAILED, exc)
            return

        self._bind_request(resolved)
        adapter = self._adapter_factory(resolved, self.config)
        self.adapter = adapter
        adapter.on_exit(self._on_adapter_exit)
        adapter.on_error(self._on_adapter_error)
        self._relay = Relay(
            self.id,
            self.transport,
            adapter,
            self.config,
            on_terminal=self.signal_terminal,
            on_resize=self.resize,
        )
        self._relay.bind()

        try:
            await adapter.start(resolved.request)
        except ConnectError as exc:
            logger.error("[%s] %s connect to %s failed (%s): %s", self.id, resolved.kind.value, resolved.target, exc.reason.value, exc.message)
            self.signal_terminal(CloseReason.CONNECT_FAILED, exc)
            return
        except Exception as exc:
            logger.exception("[%s] %s adapter for %s failed to start", self.id, resolved.kind.value, resolved.target)
            self.signal_terminal(
                CloseReason.CONNECT_FAILED,
                ConnectError(ConnectReason.UNKNOWN, str(exc) or exc.__class__.__name__),
            )
            return

        self.record.pid = adapter.pid
        if self._closing:
            return
        self._transition(SessionState.ACTIVE)
        logger.info("[%s] %s session to %s active", self.id, resolved.kind.value, resolved.target)
        self._relay.start()
        await self._emit(EventType.SESSION_ACTIVE)

    def _bind_request(self, resolved: ResolvedHandshake) -> None:
        request = resolved.request
        self.kind = resolved.kind
        self.request = request
        self.record.kind = resolved.kind.value
        self.record.target_kind = request.target_kind
        self.record.target = resolved.target
        self.record.target_name = request.target_name
        self.record.target_address = request.target_address
        self.record.username = request.username
        self.record.columns = request.columns
        self.record.rows = request.rows
        self.record.touch()

    def _closing_notice(self) -> Optional[str]:
        reason = self.close_reason
        if reason in (CloseReason.HANDSHAKE_FAILED, CloseReason.CONNECT_FAILED, CloseReason.ADAPTER_ERROR):
            message = getattr(self.error, "message", None) or str(self.error or reason.value)
            return error_notice(message)
        if reason in (CloseReason.ADAPTER_EXIT, CloseReason.SHUTDOWN):
            return CLOSED_NOTICE
        return None

    async def close(self, reason: CloseReason = CloseReason.SHUTDOWN) -> None:
        """Tear the session down once; concurrent callers wait for it."""
        if self._closing:
            await self._closed.wait()
            return
        self._closing = True
        self.signal_terminal(reason)
        self._transition(SessionState.CLOSING)
        await self._emit(EventType.SESSION_CLOSING)

        try:
            if self._relay is not None:
                await self._relay.stop(drain=self.close_reason is CloseReason.ADAPTER_EXIT)
            notice = self._closing_notice()
            if notice is not None and not self.transport.closed:
                try:
                    await self.transport.send(notice)
                except Exception as exc:
                    logger.debug("[%s] could not deliver closing notice: %s", self.id, exc)
        finally:
            if self.adapter is not None:
                await self.adapter.stop()
            await self.transport.close(CLOSE_CODES.get(self.close_reason, 1000))
            self._transition(SessionState.CLOSED)
            self._closed.set()
            logger.info(
                "[%s] session closed (%s)", self.id, self.close_reason.value if self.close_reason else "unknown",
            )
            await self._emit(EventType.SESSION_CLOSED)

    def describe(self) -> Dict[str, Any]:
        payload = self.record.to_payload()
        payload["adapter"] = self.adapter.describe() if self.adapter is not None else None
        if self._relay is not None:
            payload["bytes_in"] = self._relay.bytes_in
            payload["bytes_out"] = self._relay.bytes_out
        return payload
