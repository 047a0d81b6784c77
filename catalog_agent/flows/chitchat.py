from __future__ import annotations

import logging
from typing import Optional

from .. import nlg
from ..context_lite import build_context_lite, context_lite_json
from ..errors import ExternalError
from ..patterns import (
    ACK_RE,
    GREETING_RE,
    MONEY_FEELING_RE,
    is_capabilities_question,
    is_chitchat,
    is_physical_location,
)
from ..response_builder import AgentResponse, chat
from ..router import TurnContext
from .base import FlowServices, has_blocking_state

logger = logging.getLogger("catalog_agent.flows.chitchat")


class ChitchatFlow:
    """Greetings, thanks, help questions and off-domain physical requests."""

    def __init__(self, services: FlowServices) -> None:
        self._services = services

    def try_handle(self, context: TurnContext) -> Optional[AgentResponse]:
        """Purpose: Answer small talk and off-domain requests without touching pending state.
        Inputs/Outputs: Input is the turn context; output is a chat response or None.
        Side Effects / State: None; the language model may draft the greeting.
        Dependencies: Pattern predicates, optional llm.draft_chitchat, canned nlg copy.
        Failure Modes: A model failure degrades to the canned reply.
        If Removed: "hola" reaches the semantic interpreter and costs a model call.
        Testing Notes: Declines whenever a pending action, selection or choice is open.
        """
        # The pending guard owns every reply while something is open.
        if has_blocking_state(context.state):
            return None
        text = context.normalized
        if is_physical_location(text):
            return chat(nlg.OFFDOMAIN_PHYSICAL, offdomain=True)
        if is_capabilities_question(text):
            return chat(nlg.CAPABILITIES)
        if not is_chitchat(text):
            return None
        if ACK_RE.match(text):
            return chat(nlg.ACK)
        if MONEY_FEELING_RE.search(text) and not GREETING_RE.search(text):
            return chat(nlg.MONEY_TALK)
        return chat(self._draft(context) or nlg.GREETING)

    def _draft(self, context: TurnContext) -> str:
        llm = self._services.llm
        if llm is None:
            return ""
        lite = context_lite_json(build_context_lite(context.state, self._services.catalog))
        try:
            result = llm.draft_chitchat(context.raw, lite)
        except ExternalError as exc:
            logger.warning("tenant=%s chitchat draft failed: %s", context.tenant, exc)
            context.log("chitchat", "draft failed, canned reply", status="error")
            return ""
        if not result.get("ok"):
            return ""
        return str(result.get("text") or "").strip()
