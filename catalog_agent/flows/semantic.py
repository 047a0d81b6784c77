from __future__ import annotations

import json
import logging
from typing import Optional

from ..context_lite import build_context_lite, context_lite_json
from ..parsers import Selector, extract_value, parse_number
from ..queries import run_query_code
from ..response_builder import AgentResponse, clarify, consult
from ..router import TurnContext
from ..semantic_gate import ACTION_INTENTS, NormalizedIntent, clarify_options
from .base import FlowServices, has_blocking_state, propose_intent, resolve_target, target_label_for

logger = logging.getLogger("catalog_agent.flows.semantic")


class SemanticFlow:
    """Model-parsed intents, acted on only after the semantic gate accepts them."""

    def __init__(self, services: FlowServices) -> None:
        self._services = services

    def try_handle(self, context: TurnContext) -> Optional[AgentResponse]:
        """Purpose: Ask the model for a normalized intent and dispatch it when it passes the gate.
        Inputs/Outputs: Input is the turn context; output is a proposal, query answer,
            clarify, or None for rejected/chitchat parses.
        Side Effects / State: Actions go through the same resolve/propose helpers as the
            deterministic flows.
        Dependencies: llm.parse_intent, SemanticGate.validate, queries.run_query_code.
        Failure Modes: Schema or grounding rejections decline silently; model failures raise
            ExternalError and the router declines the flow.
        If Removed: Free-form phrasings outside the regex table reach only the fallback.
        Testing Notes: A fake model returning an id that is not in the message must decline.
        """
        # Never consulted while something is pending or without a model.
        llm = self._services.llm
        if llm is None or has_blocking_state(context.state):
            return None
        lite = context_lite_json(build_context_lite(context.state, self._services.catalog))
        raw_output = llm.parse_intent(context.raw, lite)
        result = self._services.gate.validate(raw_output, context.raw)
        if not result.ok or result.intent is None:
            context.log("semantic", f"rejected reason={result.reason}", status="declined")
            return None
        intent = result.intent
        context.log("semantic", f"accepted kind={intent.kind} confidence={intent.confidence:.2f}")
        logger.debug("tenant=%s intent=%s", context.tenant, json.dumps(intent.__dict__, ensure_ascii=True))
        if intent.kind == "action":
            return self._action(context, intent, floored=result.floored)
        if intent.kind == "query":
            query = intent.query or {}
            answer = run_query_code(self._services.catalog, query.get("code", ""), query.get("mode", "summary"))
            if answer is None:
                return None
            return consult(answer["message"], query=answer["code"], semantic=True)
        if intent.kind == "clarify":
            question = str((intent.clarify or {}).get("question") or "")
            return clarify(question, clarify_options(intent), semantic=True)
        return None

    def _action(self, context: TurnContext, intent: NormalizedIntent, floored: bool) -> Optional[AgentResponse]:
        action = intent.action or {}
        selector_data = action.get("selector") or {}
        selector_type = str(selector_data.get("type") or "")
        if selector_type in {"last", "first"}:
            selector = Selector(kind=selector_type, index=1)
        else:
            selector = Selector(kind=selector_type, value=str(selector_data.get("value") or ""))
        value = parse_number(str(action.get("raw_value_text") or ""))
        if value is None:
            value = extract_value(context.normalized)
        if value is None:
            return None
        record = {"kind": ACTION_INTENTS[action["intent"]], "value": value}
        candidate, response = resolve_target(self._services, context, selector, record)
        if response is not None:
            return response
        proposal = propose_intent(self._services, context, candidate, record, target_label_for(selector))
        proposal.meta.update({"semantic": True, "confidence": intent.confidence, "floored": floored})
        return proposal
