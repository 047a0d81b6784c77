from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    """Request payload for chat API."""
    session_id: Optional[str] = Field(default=None)
    message: str


class SessionRequest(BaseModel):
    """Payload for endpoints that only need the session."""
    session_id: str


class NonceRequest(BaseModel):
    """Executor acknowledgement or cancel button payload."""
    session_id: str
    nonce: str


class ChoiceRequest(BaseModel):
    """Answer to the keep/replace prompt."""
    session_id: str
    choice: str


class AgentEnvelope(BaseModel):
    """Single outbound envelope of every agent turn."""
    ok: bool
    mode: str
    message_to_user: str
    actions: List[Dict[str, Any]] = Field(default_factory=list)
    confirmation: Optional[Dict[str, Any]] = None
    clarification: Optional[Dict[str, Any]] = None
    meta: Dict[str, Any] = Field(default_factory=dict)
    session_state: Dict[str, Any] = Field(default_factory=dict)
    session_id: str
