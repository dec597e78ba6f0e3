from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional
import time
import uuid


class SessionState(Enum):
    INIT = "init"
    HANDSHAKING = "handshaking"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class CloseReason(Enum):
    HANDSHAKE_FAILED = "handshake_failed"
    CONNECT_FAILED = "connect_failed"
    ADAPTER_EXIT = "adapter_exit"
    ADAPTER_ERROR = "adapter_error"
    TRANSPORT_CLOSED = "transport_closed"
    TRANSPORT_ERROR = "transport_error"
    SHUTDOWN = "shutdown"


def new_session_id() -> str:
    return f"ls_{int(time.time())}_{uuid.uuid4().hex[:8]}"


@dataclass
class SessionRecord:
    """Serializable metadata describing one terminal session."""

    id: str
    state: SessionState = SessionState.INIT
    kind: Optional[str] = None
    target_kind: Optional[str] = None
    target: Optional[str] = None
    target_name: Optional[str] = None
    target_address: Optional[str] = None
    username: Optional[str] = None
    columns: Optional[int] = None
    rows: Optional[int] = None
    pid: Optional[int] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    close_reason: Optional[CloseReason] = None
    exit_code: Optional[int] = None
    exit_signal: Optional[int] = None
    error: Optional[str] = None

    def touch(self) -> None:
        self.updated_at = time.time()

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "state": self.state.value,
            "kind": self.kind,
            "target_kind": self.target_kind,
            "target": self.target,
            "target_name": self.target_name,
            "target_address": self.target_address,
            "username": self.username,
            "columns": self.columns,
            "rows": self.rows,
            "pid": self.pid,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "close_reason": self.close_reason.value if self.close_reason else None,
            "exit_code": self.exit_code,
            "exit_signal": self.exit_signal,
            "error": self.error,
        }
