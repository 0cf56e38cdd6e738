"""Chat API routes."""
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from cart_assistant.agent.context import RequestContext
from cart_assistant.agent.factory import AssistantContainer
from cart_assistant.analytics.logger import logger
from cart_assistant.api.middleware import client_ip
from cart_assistant.api.schemas import ChatMessage, ChatResponse, HistoryResponse, SessionResponse
from cart_assistant.utils.exceptions import PersistenceError

router = APIRouter(prefix="/api/chat", tags=["chat"])

ERROR_STATUS = {
    "invalid_session": 401,
    "rate_limited": 429,
    "invalid_message": 400,
}


def get_container(request: Request) -> AssistantContainer:
    return request.app.state.container


def build_context(
    request: Request, session_id: str, user_id: Optional[int]
) -> RequestContext:
    return RequestContext(
        session_id=session_id,
        client_ip=client_ip(request),
        user_id=user_id,
        user_agent=request.headers.get("user-agent", ""),
    )


# X-User-Id is set by the authenticating proxy in front of this service
@router.post("/session", response_model=SessionResponse)
async def create_session(
    request: Request,
    x_user_id: Optional[int] = Header(default=None),
    container: AssistantContainer = Depends(get_container),
):
    """Start a chat session bound to the caller."""
    session_id = await container.sessions.create_session(x_user_id, client_ip(request))
    return SessionResponse(session_id=session_id, expires_in=container.sessions.timeout)


@router.delete("/session/{session_id}")
async def end_session(
    session_id: str,
    request: Request,
    x_user_id: Optional[int] = Header(default=None),
    container: AssistantContainer = Depends(get_container),
):
    """End a session owned by the caller."""
    if not await container.sessions.validate(session_id, x_user_id, client_ip(request)):
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    await container.sessions.end(session_id)
    return {"ended": True}


@router.post("/", response_model=ChatResponse)
async def chat(
    message: ChatMessage,
    request: Request,
    x_user_id: Optional[int] = Header(default=None),
    container: AssistantContainer = Depends(get_container),
):
    """Process a chat message."""
    context = build_context(request, message.session_id, x_user_id)
    result = await container.orchestrator.process_message(message.message, context)

    status_code = ERROR_STATUS.get(result.error, 200)
    headers = {"Retry-After": str(result.retry_after)} if result.retry_after is not None else None
    if status_code != 200:
        logger.info(f"Chat request rejected: {result.error}")
    return JSONResponse(
        status_code=status_code,
        content=ChatResponse(**result.to_dict()).model_dump(),
        headers=headers,
    )


@router.get("/history", response_model=HistoryResponse)
async def get_chat_history(
    limit: int = Query(default=10, ge=1, le=50),
    offset: int = Query(default=0, ge=0),
    x_user_id: Optional[int] = Header(default=None),
    container: AssistantContainer = Depends(get_container),
):
    """Past conversations of the signed-in user."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Sign in to see your chat history")
    try:
        conversations = await container.orchestrator.get_history(x_user_id, limit=limit, offset=offset)
    except PersistenceError as e:
        logger.error(f"Error loading chat history: {e}", exc_info=True)
        raise HTTPException(status_code=503, detail="History is temporarily unavailable")
    return HistoryResponse(conversations=conversations, limit=limit, offset=offset)
