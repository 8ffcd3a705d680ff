"""API routes for the agent."""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from config.settings import settings
from deo.agent.events import AgentEvent
from deo.agent.loop import AgentLoop
from deo.agent.modes import LoopMode, get_mode_by_name
from deo.errors import TurnInProgressError
from deo.llm.local import LocalLLM
from deo.sessions.kv import JsonFileKeyValueStore
from deo.sessions.store import SessionStore

logger = logging.getLogger(__name__)

router = APIRouter()

# Shared instances
_store: SessionStore | None = None
_llm: LocalLLM | None = None
_loop: AgentLoop | None = None


def get_store() -> SessionStore:
    """Get or create the session store."""
    global _store
    if _store is None:
        _store = SessionStore(JsonFileKeyValueStore(settings.sessions_path))
    return _store


def get_llm() -> LocalLLM:
    """Get or create the inference client."""
    global _llm
    if _llm is None:
        _llm = LocalLLM()
    return _llm


def get_loop() -> AgentLoop:
    """Get or create the agent loop."""
    global _loop
    if _loop is None:
        _loop = AgentLoop(get_store(), llm=get_llm())
    return _loop


# Request/Response models


class SessionInfo(BaseModel):
    """One entry of the session listing."""

    id: str
    title: str
    message_count: int
    created_at: float
    active: bool


class SessionListResponse(BaseModel):
    """Response model for the session listing."""

    sessions: list[SessionInfo]
    active_id: str


class MessagesResponse(BaseModel):
    """Response model for a session's message log."""

    session_id: str
    title: str
    messages: list[dict[str, Any]]


class TurnRequest(BaseModel):
    """Request model for running a turn."""

    request: str = Field(..., min_length=1, description="What the agent should do")
    mode: str | None = Field(default=None, description="Loop mode: iterative or single_shot")
    session_id: str | None = Field(default=None, description="Target session; defaults to the active one")


class TurnResponse(BaseModel):
    """Response model for a finished turn."""

    session_id: str
    mode: str
    status: str
    response: str
    steps_executed: int
    touched_paths: list[str]
    corrections: int
    stopped_early: bool
    outcomes: list[dict[str, Any]] = Field(default_factory=list)
    events: list[dict[str, Any]] = Field(default_factory=list)


class ModelsResponse(BaseModel):
    """Response model for the model listing."""

    models: list[str]
    current: str


def _session_listing(store: SessionStore) -> SessionListResponse:
    return SessionListResponse(
        sessions=[SessionInfo(**entry) for entry in store.summary()],
        active_id=store.active_id,
    )


# Endpoints


@router.get("/sessions", response_model=SessionListResponse)
def list_sessions() -> SessionListResponse:
    """List sessions, oldest first."""
    return _session_listing(get_store())


@router.post("/sessions", response_model=SessionInfo)
def create_session() -> SessionInfo:
    """Create a session and make it active."""
    store = get_store()
    session = store.new_session()
    return SessionInfo(
        id=session.id,
        title=session.title,
        message_count=len(session.messages),
        created_at=session.created_at,
        active=True,
    )


@router.post("/sessions/{session_id}/activate", response_model=SessionListResponse)
def activate_session(session_id: str) -> SessionListResponse:
    """Switch the active session."""
    store = get_store()
    try:
        store.set_active(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    return _session_listing(store)


@router.get("/sessions/{session_id}/messages", response_model=MessagesResponse)
def get_messages(session_id: str) -> MessagesResponse:
    """Return a session's message log."""
    session = get_store().get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    return MessagesResponse(
        session_id=session.id,
        title=session.title,
        messages=[message.to_dict() for message in session.messages],
    )


@router.post("/turns", response_model=TurnResponse)
def run_turn(request: TurnRequest) -> TurnResponse:
    """
    Run one agent turn.

    The turn runs on the given session, or the active one, and returns
    once the loop reaches Done or Aborted. Events emitted along the way
    are returned in order.
    """
    mode: LoopMode | None = None
    if request.mode:
        mode = get_mode_by_name(request.mode)
        if mode is None:
            raise HTTPException(status_code=422, detail=f"Unknown mode: {request.mode}")

    loop = get_loop()
    session_id = request.session_id or loop.store.active_id
    if loop.store.get(session_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")

    events: list[AgentEvent] = []
    try:
        result = loop.run(
            request.request,
            session_id=session_id,
            mode=mode,
            event_callback=events.append,
        )
    except TurnInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Turn failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    data = result.to_dict()
    return TurnResponse(**data, events=[event.to_dict() for event in events])


@router.get("/models", response_model=ModelsResponse)
def list_models() -> ModelsResponse:
    """List models installed on the inference endpoint."""
    llm = get_llm()
    return ModelsResponse(models=llm.list_available_models(), current=llm.get_model())
