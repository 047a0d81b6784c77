from __future__ import annotations

import logging
from typing import Optional

from .. import nlg
from ..context_lite import build_context_lite, context_lite_json
from ..errors import ExternalError
from ..response_builder import AgentResponse, chat
from ..router import TurnContext
from .base import FlowServices

logger = logging.getLogger("catalog_agent.flows.fallback")


class ModelFallbackFlow:
    """Terminal flow: always answers, never proposes."""

    def __init__(self, services: FlowServices) -> None:
        self._services = services

    def try_handle(self, context: TurnContext) -> Optional[AgentResponse]:
        """Purpose: Produce a conversational answer when no other flow handled the message.
        Inputs/Outputs: Input is the turn context; output is always a chat response.
        Side Effects / State: None; the model draft is prose only and carries no actions.
        Dependencies: Optional llm.draft_chitchat and Context Lite.
        Failure Modes: Model errors or empty drafts degrade to the canned fallback.
        If Removed: Unrecognized messages would reach the router's last-resort reply.
        Testing Notes: With a model that raises ExternalError the canned FALLBACK is returned.
        """
        # Prose only: the response never carries actions or a confirmation.
        llm = self._services.llm
        if llm is None:
            return chat(nlg.FALLBACK, fallback="canned")
        lite = context_lite_json(build_context_lite(context.state, self._services.catalog))
        try:
            draft = llm.draft_chitchat(context.raw, lite)
        except ExternalError as exc:
            logger.warning("tenant=%s fallback draft failed: %s", context.tenant, exc)
            context.log("fallback", "draft failed, canned reply", status="error")
            return chat(nlg.FALLBACK, fallback="canned")
        text = str(draft.get("text") or "").strip() if draft.get("ok") else ""
        if not text:
            return chat(nlg.FALLBACK, fallback="canned")
        return chat(text, fallback="model")
