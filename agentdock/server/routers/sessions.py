from fastapi import APIRouter, Query

from agentdock.constants import MAX_SESSION_PAGE
from agentdock.server.runtime import get_runtime
from agentdock.server.schemas import CreateSessionRequest, UpdateSessionRequest
from agentdock.sessions.models import SessionState

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post("", status_code=201)
async def create_session(req: CreateSessionRequest):
    runtime = get_runtime()
    session = await runtime.session_service.create(req.project_path, req.provider, context=req.context)
    return session.to_dict()


@router.get("")
async def list_sessions(
    state: SessionState | None = None,
    working: bool | None = None,
    limit: int = Query(default=MAX_SESSION_PAGE, ge=1),
    offset: int = Query(default=0, ge=0),
):
    runtime = get_runtime()
    return await runtime.session_service.list(state=state, is_working=working, limit=limit, offset=offset)


@router.get("/{session_id}")
async def get_session(session_id: str):
    runtime = get_runtime()
    session = await runtime.session_service.get(session_id)
    return session.to_dict()


@router.patch("/{session_id}")
async def update_session(session_id: str, req: UpdateSessionRequest):
    runtime = get_runtime()
    session = await runtime.session_service.update(session_id, context=req.context, metadata=req.metadata)
    return session.to_dict()


@router.delete("/{session_id}")
async def delete_session(session_id: str):
    runtime = get_runtime()
    await runtime.session_service.delete(session_id)
    return {"status": "deleted", "sessionId": session_id}
