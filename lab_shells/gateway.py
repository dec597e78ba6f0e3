from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from .adapters import AdapterFactory, build_adapter
from .config import GatewayConfig, load_config
from .events import EventBus, get_event_bus
from .record import CloseReason, SessionState
from .session import TerminalSession

logger = logging.getLogger(__name__)


class SessionGateway:
    """Accepts terminal transports and tracks the sessions running on them.

    Sessions share nothing but this registry and the adapter factory; each
    one runs on the task that accepted its connection.
    """

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        *,
        adapter_factory: Optional[AdapterFactory] = None,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        self.config = config or load_config()
        self.adapter_factory = adapter_factory or build_adapter
        self.event_bus = event_bus or get_event_bus()
        self.started_at = time.time()
        self._sessions: Dict[str, TerminalSession] = {}
        self.total_sessions = 0

    def create_session(self, transport) -> TerminalSession:
        session = TerminalSession(
            transport,
            self.config,
            adapter_factory=self.adapter_factory,
            event_bus=self.event_bus,
        )
        self._sessions[session.id] = session
        self.total_sessions += 1
        return session

    async def handle(self, transport) -> TerminalSession:
        """Run one session to completion on the calling task."""
        session = self.create_session(transport)
        try:
            await session.run()
        finally:
            self._sessions.pop(session.id, None)
        return session

    def list_sessions(self, state: Optional[SessionState] = None) -> List[TerminalSession]:
        sessions = list(self._sessions.values())
        if state is not None:
            sessions = [s for s in sessions if s.state is state]
        return sessions

    def get_session(self, session_id: str) -> Optional[TerminalSession]:
        return self._sessions.get(session_id)

    def stats(self) -> Dict[str, Any]:
        by_state: Dict[str, int] = {}
        by_kind: Dict[str, int] = {}
        for session in self._sessions.values():
            by_state[session.state.value] = by_state.get(session.state.value, 0) + 1
            if session.kind is not None:
                by_kind[session.kind.value] = by_kind.get(session.kind.value, 0) + 1
        return {
            "live": len(self._sessions),
            "total": self.total_sessions,
            "by_state": by_state,
            "by_kind": by_kind,
            "uptime": max(0.0, time.time() - self.started_at),
        }

    async def close_session(self, session_id: str, reason: CloseReason = CloseReason.SHUTDOWN) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        await session.close(reason)
        return True

    async def shutdown(self) -> None:
        """Close every live session, e.g. on server shutdown."""
        sessions = list(self._sessions.values())
        if not sessions:
            return
        logger.info("Closing %d live terminal session(s)", len(sessions))
        results = await asyncio.gather(
            *(s.close(CloseReason.SHUTDOWN) for s in sessions),
            return_exceptions=True,
        )
        for session, result in zip(sessions, results):
            if isinstance(result, Exception):
                logger.warning("[%s] shutdown raised: %s", session.id, result)
