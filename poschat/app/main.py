#!/usr/bin/env python3
"""
Main FastAPI application for the POS chat backend.
"""

import threading
import uuid
from typing import Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..schemas.io_models import (
    ChatRequest,
    ChatResponse,
    HistoryResponse,
    SessionCreateRequest,
    SessionCreateResponse,
)
from ..schemas.receipt_models import Receipt
from ..utils.logger import get_logger
from .controller import ChatOrchestrator
from .factory import ServiceContainer
from .gateway import ModelGatewayError

logger = get_logger("api")

# Initialize FastAPI app
app = FastAPI(
    title="POS Chat API",
    description="Conversational point-of-sale ordering backed by a transaction kernel",
    version=__version__,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify your frontend domain
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class OrchestratorRegistry:
    """One orchestrator per chat session."""

    def __init__(self, container: ServiceContainer):
        self.container = container
        self._orchestrators: Dict[str, ChatOrchestrator] = {}
        self._lock = threading.Lock()

    def create(self, session_id: Optional[str]):
        session_id = session_id or str(uuid.uuid4())
        with self._lock:
            existing = self._orchestrators.get(session_id)
            if existing is not None:
                return session_id, False, existing
            orchestrator = self.container.create_orchestrator(session_id)
            self._orchestrators[session_id] = orchestrator
        return session_id, True, orchestrator

    def get(self, session_id: str) -> ChatOrchestrator:
        orchestrator = self._orchestrators.get(session_id)
        if orchestrator is None:
            raise HTTPException(status_code=404, detail=f"Unknown session {session_id}")
        return orchestrator

    def remove(self, session_id: str) -> ChatOrchestrator:
        with self._lock:
            orchestrator = self._orchestrators.pop(session_id, None)
        if orchestrator is None:
            raise HTTPException(status_code=404, detail=f"Unknown session {session_id}")
        return orchestrator


_registry: Optional[OrchestratorRegistry] = None
_registry_lock = threading.Lock()


def get_registry() -> OrchestratorRegistry:
    """Build the shared services on first use."""
    global _registry
    with _registry_lock:
        if _registry is None:
            _registry = OrchestratorRegistry(ServiceContainer.from_config())
        return _registry


@app.exception_handler(ModelGatewayError)
async def gateway_error_handler(request: Request, exc: ModelGatewayError):
    logger.error(f"[API] language model failure on {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"detail": f"Language model unavailable: {exc}"})


@app.post("/session", response_model=SessionCreateResponse)
def create_session(request: SessionCreateRequest, registry: OrchestratorRegistry = Depends(get_registry)):
    """
    Create a chat session and greet the customer.

    Args:
        request: Session creation request

    Returns:
        Session creation response
    """
    session_id, created, orchestrator = registry.create(request.session_id)
    if created:
        greeting = orchestrator.initialize()
    else:
        greeting = orchestrator.history[0].text if orchestrator.history else ""
    return SessionCreateResponse(session_id=session_id, created=created, greeting=greeting)


@app.post("/chat", response_model=ChatResponse)
def chat(request: ChatRequest, registry: OrchestratorRegistry = Depends(get_registry)):
    """Process one customer message."""
    orchestrator = registry.get(request.session_id)
    logger.info(f"[API] chat for session {request.session_id}")
    if not request.message.strip():
        raise HTTPException(status_code=422, detail="message must not be blank")
    response = orchestrator.process_user_input(request.message)
    return ChatResponse(
        session_id=request.session_id,
        response=response,
        payment_state=orchestrator.payment_state.state.value,
        receipt=orchestrator.receipt,
    )


@app.get("/receipt/{session_id}", response_model=Receipt)
def get_receipt(session_id: str, registry: OrchestratorRegistry = Depends(get_registry)):
    return registry.get(session_id).receipt


@app.get("/history/{session_id}", response_model=HistoryResponse)
def get_history(session_id: str, registry: OrchestratorRegistry = Depends(get_registry)):
    return HistoryResponse(session_id=session_id, turns=registry.get(session_id).history)


@app.post("/session/{session_id}/next-customer", response_model=ChatResponse)
def next_customer(session_id: str, registry: OrchestratorRegistry = Depends(get_registry)):
    orchestrator = registry.get(session_id)
    greeting = orchestrator.prepare_next_customer()
    return ChatResponse(
        session_id=session_id,
        response=greeting,
        payment_state=orchestrator.payment_state.state.value,
        receipt=orchestrator.receipt,
    )


@app.delete("/session/{session_id}")
def delete_session(session_id: str, registry: OrchestratorRegistry = Depends(get_registry)):
    orchestrator = registry.remove(session_id)
    orchestrator.shutdown()
    if orchestrator.sessions is not None:
        orchestrator.sessions.clear_session(session_id)
    return {"session_id": session_id, "deleted": True}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
