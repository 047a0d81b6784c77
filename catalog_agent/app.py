from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv
from fastapi import FastAPI

from .agent import CatalogAgent
from .catalog import JsonCatalogStore
from .config import load_settings
from .gemini_client import GeminiClient
from .models import AgentEnvelope, ChatRequest, ChoiceRequest, NonceRequest, SessionRequest
from .session_store import SessionStore

BASE_DIR = Path(__file__).resolve().parent

log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

logging.getLogger("catalog_agent").setLevel(log_level)
logger = logging.getLogger("catalog_agent.app")

ENV_PATH = BASE_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=True)

app = FastAPI(title="Catalog Agent")

settings = load_settings()
session_store = SessionStore(
    settings.session_store_path,
    max_sessions=settings.max_sessions,
    ttl_sec=settings.session_ttl_sec,
)
catalog = JsonCatalogStore(settings.catalog_path)

if settings.gemini_api_key:
    gemini = GeminiClient(settings)
else:
    logger.warning("GEMINI_API_KEY not set; running without the language model")
    gemini = None

agent = CatalogAgent(
    store=session_store,
    catalog=catalog,
    llm=gemini,
    page_size=settings.selection_page_size,
    cache_limit=settings.selection_cache_limit,
)


def _respond(session_id: str, envelope: Dict[str, Any]) -> AgentEnvelope:
    return AgentEnvelope(session_id=session_id, **envelope)


@app.post("/api/chat", response_model=AgentEnvelope)
def chat(request: ChatRequest) -> AgentEnvelope:
    """Purpose: Run one dialogue turn for the session.
    Inputs/Outputs: Input is ChatRequest; output is the agent envelope with session_id.
    Side Effects / State: The agent patches the session store; a new id is minted if absent.
    Dependencies: Uses CatalogAgent.handle_message.
    Failure Modes: Unexpected exceptions propagate as 500 errors; collaborator outages
        degrade inside the agent.
    If Removed: The chat UI cannot talk to the agent.
    Testing Notes: Post "precio 100" and check mode execute plus pending_action in session_state.
    """
    # Sessions are created lazily by the store on first access.
    session_id = request.session_id or uuid.uuid4().hex
    return _respond(session_id, agent.handle_message(session_id, request.message))


@app.get("/api/state/{session_id}")
def get_state(session_id: str) -> dict:
    return {"session_id": session_id, "session_state": agent.state(session_id)}


@app.post("/api/pending/ack", response_model=AgentEnvelope)
def ack_pending(request: NonceRequest) -> AgentEnvelope:
    """Purpose: Executor success acknowledgement for the pending action.
    Inputs/Outputs: Input is NonceRequest; output is the envelope (ok False for a stale nonce).
    Side Effects / State: Clears pending_action when the nonce matches.
    Dependencies: Uses CatalogAgent.ack_pending.
    Failure Modes: A stale nonce changes nothing.
    If Removed: Executed actions stay pending until the TTL.
    Testing Notes: Ack twice with the same nonce; the second answer has ok False.
    """
    # Compare-and-swap on the nonce lives in the pending manager.
    return _respond(request.session_id, agent.ack_pending(request.session_id, request.nonce))


@app.post("/api/pending/cancel", response_model=AgentEnvelope)
def cancel_pending(request: NonceRequest) -> AgentEnvelope:
    return _respond(request.session_id, agent.cancel_pending(request.session_id, request.nonce))


@app.post("/api/pending/choice", response_model=AgentEnvelope)
def resolve_choice(request: ChoiceRequest) -> AgentEnvelope:
    return _respond(request.session_id, agent.resolve_choice(request.session_id, request.choice))


@app.post("/api/selection/more", response_model=AgentEnvelope)
def selection_more(request: SessionRequest) -> AgentEnvelope:
    return _respond(request.session_id, agent.load_more(request.session_id))


@app.post("/api/reset")
def reset(request: SessionRequest) -> dict:
    """Clear every dialogue key of the session."""
    return {"session_id": request.session_id, "session_state": agent.reset(request.session_id)}
