from fastapi import APIRouter, Query
from fastapi.responses import StreamingResponse

from agentdock.constants import DEFAULT_MESSAGE_PAGE, MAX_MESSAGE_PAGE
from agentdock.errors import ValidationError
from agentdock.server.runtime import get_runtime
from agentdock.server.schemas import SendMessageRequest
from agentdock.server.stream import SSE_HEADERS, stream_events

router = APIRouter(prefix="/sessions/{session_id}", tags=["messages"])


@router.post("/messages", status_code=202)
async def send_message(session_id: str, req: SendMessageRequest):
    if not req.content.strip():
        raise ValidationError("content must not be empty")
    runtime = get_runtime()
    return await runtime.prompt_service.enqueue_prompt(
        session_id, req.content, model=req.model, allowed_tools=req.allowed_tools
    )


@router.get("/messages")
async def get_messages(
    session_id: str,
    cursor: str | None = None,
    limit: int = Query(default=DEFAULT_MESSAGE_PAGE, ge=1, le=MAX_MESSAGE_PAGE),
):
    runtime = get_runtime()
    return await runtime.prompt_service.get_messages(session_id, cursor=cursor, limit=limit)


@router.get("/messages/raw")
async def get_raw_messages(session_id: str):
    runtime = get_runtime()
    return {"messages": await runtime.prompt_service.get_raw_messages(session_id)}


@router.get("/messages/stream")
async def stream_messages(session_id: str) -> StreamingResponse:
    runtime = get_runtime()
    sub = await runtime.prompt_service.subscribe(session_id)
    return StreamingResponse(
        stream_events(runtime.bus, sub),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/cancel")
async def cancel(session_id: str):
    runtime = get_runtime()
    return await runtime.prompt_service.cancel_session(session_id)
