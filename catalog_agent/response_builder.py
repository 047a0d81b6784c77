from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from . import nlg

logger = logging.getLogger("catalog_agent.response")

MODES = ("chat", "consult", "execute", "clarify")
NO_PENDING_GUARDRAIL = (
    "Parece que no hay acciones pendientes en tu tienda, todo está en orden. "
    "Si querés hacer un cambio, decime por ejemplo: \"cambiá el precio del último a 200\"."
)


@dataclass
class AgentResponse:
    """What a flow answers before the session snapshot is attached."""
    mode: str
    message: str
    actions: List[Dict[str, Any]] = field(default_factory=list)
    confirmation: Optional[Dict[str, Any]] = None
    clarification: Optional[Dict[str, Any]] = None
    meta: Dict[str, Any] = field(default_factory=dict)
    ok: bool = True


def chat(message: str, **meta: Any) -> AgentResponse:
    return AgentResponse(mode="chat", message=message, meta=dict(meta))


def consult(message: str, **meta: Any) -> AgentResponse:
    return AgentResponse(mode="consult", message=message, meta=dict(meta))


def clarify(message: str, options: Optional[List[str]] = None, **meta: Any) -> AgentResponse:
    clarification = {"options": list(options or [])} if options else None
    return AgentResponse(mode="clarify", message=message, clarification=clarification, meta=dict(meta))


def execute(message: str, action: Dict[str, Any], **meta: Any) -> AgentResponse:
    return AgentResponse(
        mode="execute",
        message=message,
        actions=[action],
        confirmation=nlg.confirmation_object(),
        meta=dict(meta),
    )


def _looks_like_pending_instructions(message: str) -> bool:
    text = (message or "").lower()
    return (
        ("botón" in text and "confirm" in text)
        or "confirmar y ejecutar" in text
        or ("usá el botón" in text and "confirm" in text)
    )


class ResponseBuilder:
    """Turns an AgentResponse into the outbound envelope with the authoritative snapshot."""

    def __init__(self, store) -> None:
        self._store = store

    def build(self, tenant: str, response: AgentResponse, trace: Optional[List[Dict[str, str]]] = None) -> Dict[str, Any]:
        """Purpose: Assemble the single outbound envelope for a turn.
        Inputs/Outputs: Inputs are tenant, the flow's AgentResponse and the turn trace; output is
            {ok, mode, message_to_user, actions, confirmation, clarification, meta, session_state}.
        Side Effects / State: Consumes last_event so it appears in exactly one snapshot. The
            emitted session_state is the state read before that consumption, so it still
            carries the event; the store itself no longer does once build returns.
        Dependencies: SessionStore.snapshot/consume_last_event and nlg copy.
        Failure Modes: Unknown modes are coerced to "chat".
        If Removed: Callers would have to guess pending state from the message text.
        Testing Notes: After a cancel the snapshot carries last_event once; the next turn does not.
        """
        # Read server truth after every mutation of the turn.
        snapshot = self._store.snapshot(tenant)
        message = response.message or ""
        event = snapshot.get("last_event")
        if isinstance(event, dict):
            if event.get("type") == "expired" and not snapshot.get("pending_action"):
                message = nlg.msg_pending_expired(str(event.get("summary") or "")) + "\n\n" + message
            self._store.consume_last_event(tenant)

        confirmation = dict(response.confirmation) if response.confirmation else None
        if confirmation and confirmation.get("required") and not str(confirmation.get("prompt") or "").strip():
            confirmation["prompt"] = nlg.CONFIRM_PROMPT

        if not response.actions and not snapshot.get("pending_action") and _looks_like_pending_instructions(message):
            message = NO_PENDING_GUARDRAIL

        mode = response.mode if response.mode in MODES else "chat"
        meta = dict(response.meta or {})
        meta["trace"] = list(trace or [])
        logger.debug("tenant=%s mode=%s route=%s", tenant, mode, meta.get("route", ""))
        return {
            "ok": bool(response.ok),
            "mode": mode,
            "message_to_user": message.strip(),
            "actions": list(response.actions or []),
            "confirmation": confirmation,
            "clarification": response.clarification,
            "meta": meta,
            "session_state": snapshot,
        }
