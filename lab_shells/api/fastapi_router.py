from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from starlette.requests import HTTPConnection

from ..gateway import SessionGateway
from ..record import SessionState

router = APIRouter()


def get_gateway_dep(conn: HTTPConnection) -> SessionGateway:
    return conn.app.state.gateway


@router.get("/api/health")
async def health(gateway: SessionGateway = Depends(get_gateway_dep)):
    return {"ok": True, "data": gateway.stats()}


@router.get("/api/sessions")
async def list_sessions(
    state: Optional[str] = Query(None),
    gateway: SessionGateway = Depends(get_gateway_dep),
):
    state_filter = None
    if state:
        try:
            state_filter = SessionState(state)
        except ValueError:
            raise HTTPException(400, f"Unknown session state: {state}")
    sessions = gateway.list_sessions(state_filter)
    return {"ok": True, "data": [s.record.to_payload() for s in sessions]}


@router.get("/api/sessions/{session_id}")
async def get_session(
    session_id: str,
    gateway: SessionGateway = Depends(get_gateway_dep),
):
    session = gateway.get_session(session_id)
    if not session:
        raise HTTPException(404, "Session not found")
    return {"ok": True, "data": session.describe()}
