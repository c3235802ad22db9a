"""
FastAPI Service Bus
-------------------
Internal API for session control.
Sessions run on a worker pool; clients poll state and events.
Finished sessions are deleted explicitly or evicted once idle past a TTL.

This is NOT an external-facing API - it's for internal service communication.
"""

from concurrent.futures import Executor, Future, ThreadPoolExecutor
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import logging
import threading
import time

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from core.state_machine import StateKind


FINISHED_KINDS = frozenset({StateKind.IDLE, StateKind.COMPLETED, StateKind.ERROR})


# Request/Response Models

class StartSessionRequest(BaseModel):
    """Start a new session."""
    goal: str = Field(..., min_length=1, description="What the user wants done")
    prior_history: List[str] = Field(default_factory=list, description="Earlier user messages")
    session_id: Optional[str] = Field(None, description="Optional caller-chosen id")


class ResumeRequest(BaseModel):
    """Answer a clarification question."""
    input: str = Field(..., min_length=1, description="User answer")


class SessionResponse(BaseModel):
    """Session snapshot."""
    id: str
    goal: str
    iteration: int
    consecutive_failures: int
    history_length: int
    history_summary: str = ""
    state: Dict[str, Any]


class EventResponse(BaseModel):
    session_id: str
    kind: str
    iteration: int
    description: str
    timestamp: str


class MethodInfo(BaseModel):
    """Execution method information."""
    id: str
    priority: int
    supported_actions: List[str]
    available: bool


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str = "0.1.0"
    sessions: int = 0
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())


# Service Bus

class ServiceBus:
    """
    Internal service bus for DroidPilot.

    Provides REST API for:
    - Session start / resume / cancel
    - Session state and event polling
    - Execution method information
    """

    def __init__(
        self,
        orchestrator=None,
        max_workers: int = 4,
        executor: Optional[Executor] = None,
        session_ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self._orchestrator = orchestrator
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="session"
        )
        self._sessions: Dict[str, Any] = {}
        self._pending: Dict[str, Future] = {}
        self._touched: Dict[str, float] = {}
        self.session_ttl_seconds = session_ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._logger = logging.getLogger("droidpilot.infra.service_bus")
        self._app: Optional[FastAPI] = None

    def set_orchestrator(self, orchestrator) -> None:
        """Set the orchestrator instance."""
        self._orchestrator = orchestrator

    def get_session(self, session_id: str):
        with self._lock:
            return self._sessions.get(session_id)

    def shutdown(self) -> None:
        """Cancel every session and stop the worker pool."""
        with self._lock:
            sessions = list(self._sessions.values())
        for session in sessions:
            if session.state.kind in (StateKind.RUNNING, StateKind.NEEDS_CLARIFICATION):
                session.cancel()
        self._executor.shutdown(wait=False)

    def _touch(self, session_id: str) -> None:
        with self._lock:
            if session_id in self._sessions:
                self._touched[session_id] = self._clock()

    def _is_finished(self, session_id: str) -> bool:
        future = self._pending.get(session_id)
        if future is not None and not future.done():
            return False
        return self._sessions[session_id].state.kind in FINISHED_KINDS

    def remove_session(self, session_id: str) -> bool:
        """Drop a session, cancelling it first if it is still active."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
            self._pending.pop(session_id, None)
            self._touched.pop(session_id, None)
        if session is None:
            return False
        if session.state.kind not in FINISHED_KINDS:
            session.cancel()
        self._logger.info(f"Session {session_id} removed")
        return True

    def evict_expired(self) -> List[str]:
        """Drop finished sessions untouched for longer than the TTL."""
        now = self._clock()
        with self._lock:
            expired = [
                session_id for session_id, touched in self._touched.items()
                if now - touched > self.session_ttl_seconds and self._is_finished(session_id)
            ]
            for session_id in expired:
                del self._sessions[session_id]
                self._pending.pop(session_id, None)
                del self._touched[session_id]
        if expired:
            self._logger.info(f"Evicted {len(expired)} expired sessions")
        return expired

    def _submit(self, session, fn, *args) -> Future:
        self._touch(session.id)
        future = self._executor.submit(fn, *args)
        with self._lock:
            if session.id in self._sessions:
                self._pending[session.id] = future

        def _done(f: Future) -> None:
            self._touch(session.id)
            error = f.exception()
            if error is not None:
                self._logger.error(f"Session {session.id} run failed: {error}")

        future.add_done_callback(_done)
        return future

    def create_app(self) -> FastAPI:
        """Create and configure the FastAPI application."""

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            self._logger.info("Service bus starting...")
            yield
            self._logger.info("Service bus shutting down...")
            self.shutdown()

        app = FastAPI(
            title="DroidPilot Internal API",
            description="Internal service bus for workflow sessions",
            version="0.1.0",
            lifespan=lifespan
        )

        self._register_routes(app)

        self._app = app
        return app

    def _require_orchestrator(self):
        if not self._orchestrator:
            raise HTTPException(status_code=503, detail="Orchestrator not initialized")
        return self._orchestrator

    def _require_session(self, session_id: str):
        session = self.get_session(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
        return session

    def _register_routes(self, app: FastAPI) -> None:
        """Register all API routes."""

        @app.get("/health", response_model=HealthResponse, tags=["System"])
        async def health_check():
            """Health check endpoint."""
            self.evict_expired()
            with self._lock:
                count = len(self._sessions)
            return HealthResponse(status="healthy", sessions=count)

        @app.get("/methods", response_model=List[MethodInfo], tags=["System"])
        async def list_methods():
            """List execution methods in dispatch order."""
            orchestrator = self._require_orchestrator()
            return [MethodInfo(**d.to_dict()) for d in orchestrator.router.describe_methods()]

        @app.post("/sessions", response_model=SessionResponse, status_code=202, tags=["Sessions"])
        async def start_session(request: StartSessionRequest):
            """Create a session and start it on the worker pool."""
            orchestrator = self._require_orchestrator()
            self.evict_expired()

            with self._lock:
                if request.session_id and request.session_id in self._sessions:
                    raise HTTPException(status_code=409, detail="Session id already exists")
                session = orchestrator.create_session(request.session_id)
                self._sessions[session.id] = session

            self._submit(session, session.start, request.goal, request.prior_history)
            self._logger.info(f"Session {session.id} submitted: {request.goal}")
            return SessionResponse(**session.snapshot())

        @app.get("/sessions/{session_id}", response_model=SessionResponse, tags=["Sessions"])
        async def get_session(session_id: str):
            """Get a session snapshot."""
            return SessionResponse(**self._require_session(session_id).snapshot())

        @app.post("/sessions/{session_id}/resume", response_model=SessionResponse,
                  status_code=202, tags=["Sessions"])
        async def resume_session(session_id: str, request: ResumeRequest):
            """Answer a clarification and continue the session."""
            session = self._require_session(session_id)
            if session.state.kind != StateKind.NEEDS_CLARIFICATION:
                raise HTTPException(
                    status_code=409,
                    detail=f"Session is {session.state.kind.name}, not awaiting clarification"
                )

            self._submit(session, session.resume, request.input)
            return SessionResponse(**session.snapshot())

        @app.post("/sessions/{session_id}/cancel", response_model=SessionResponse, tags=["Sessions"])
        async def cancel_session(session_id: str):
            """Cancel a session; it returns to Idle immediately."""
            session = self._require_session(session_id)
            session.cancel()
            self._touch(session_id)
            return SessionResponse(**session.snapshot())

        @app.delete("/sessions/{session_id}", status_code=204, tags=["Sessions"])
        async def delete_session(session_id: str):
            """Forget a session, cancelling it first if it is still active."""
            if not self.remove_session(session_id):
                raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")

        @app.get("/sessions/{session_id}/events", response_model=List[EventResponse], tags=["Sessions"])
        async def poll_events(session_id: str, max_items: Optional[int] = None):
            """Drain queued events, oldest first."""
            session = self._require_session(session_id)
            return [EventResponse(**e.to_dict()) for e in session.events.poll(max_items)]


def create_app(orchestrator=None, **kwargs) -> FastAPI:
    """Create the FastAPI application."""
    bus = ServiceBus(orchestrator, **kwargs)
    return bus.create_app()
