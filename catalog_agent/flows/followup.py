"""Follow-up completion: one missing piece of an earlier instruction.

Role:
    Completes pending_last_update ("¿precio o stock?"), pending_followup_action with
    expect number/field/target, handles target corrections ("perdón, era el #149") and
    clears stale follow-ups when a clearly new instruction arrives.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional

from .. import nlg
from ..catalog import Candidate
from ..errors import ValidationError
from ..parsers import Selector, extract_selector, parse_number
from ..patterns import NUMERIC_ONLY_RAW_RE, is_action_like, looks_like_target_selection_reply
from ..queries import is_bare_health, is_health_request, looks_like_product_info, match_report
from ..response_builder import AgentResponse, chat, clarify
from ..router import TurnContext
from ..session_store import FOLLOWUP_KEYS
from .base import FlowServices, has_blocking_state, propose_intent, resolve_target, value_changes

logger = logging.getLogger("catalog_agent.flows.followup")

FIELD_REPLY_RE = re.compile(r"^(?:el\s+|es\s+(?:el\s+)?)?(precio|stock)$")
TARGET_CORRECTION_RE = re.compile(
    r"^(?:(?:perdon|perdona|disculpa|disculpame|me equivoque|no)[\s,.]*)?"
    r"(?:era|es|quise decir|queria decir)\s+(?:el\s+)?(?:#\s*|id\s*|producto\s+)(\d{1,10})$"
)
NEW_INSTRUCTION_MIN_WORDS = 4


def _is_catalog_question(normalized: str, raw: str) -> bool:
    """Read-only questions the query flow answers; they never name a follow-up target."""
    if match_report(normalized) or is_health_request(normalized) or is_bare_health(normalized):
        return True
    return looks_like_product_info(normalized, raw)


class FollowupFlow:
    def __init__(self, services: FlowServices) -> None:
        self._services = services

    def try_handle(self, context: TurnContext) -> Optional[AgentResponse]:
        """Purpose: Finish an instruction that was waiting for one more token.
        Inputs/Outputs: Input is the turn context; output is a proposal, a question or None.
        Side Effects / State: Consumes or replaces follow-up envelopes; proposals clear them
            through the pending manager.
        Dependencies: parsers, resolve_target/propose_intent helpers.
        Failure Modes: Unrelated replies fall through; long new instructions clear stale
            follow-ups and fall through.
        If Removed: "¿precio o stock?" could never be answered.
        Testing Notes: "el ultimo a 100" then "precio" proposes a price of 100.00.
        """
        # Target corrections and follow-ups only run while nothing else is open.
        if has_blocking_state(context.state):
            return None
        state = context.state
        text = context.normalized

        correction = TARGET_CORRECTION_RE.match(text)
        if correction:
            return self._correct_target(context, int(correction.group(1)))

        last_update = state.get("pending_last_update")
        if isinstance(last_update, dict):
            field_reply = FIELD_REPLY_RE.match(text)
            if field_reply:
                return self._complete_field(context, last_update, field_reply.group(1))

        followup = state.get("pending_followup_action")
        if isinstance(followup, dict):
            response = self._complete_followup(context, followup)
            if response is not None:
                return response

        if NUMERIC_ONLY_RAW_RE.match(context.raw or ""):
            return self._bare_number(context)

        if (last_update or followup) and is_action_like(text) and len(text.split()) >= NEW_INSTRUCTION_MIN_WORDS:
            self._services.store.patch(context.tenant, {key: None for key in FOLLOWUP_KEYS})
            context.state = self._services.store.get(context.tenant)
            context.log("followup", "stale follow-ups cleared by a new instruction")
        return None

    def _candidate(self, entity_id: Any) -> Optional[Candidate]:
        if not entity_id:
            return None
        return self._services.resolver.candidate(int(entity_id))

    def _complete_field(self, context: TurnContext, record: Dict[str, Any], word: str) -> AgentResponse:
        candidate = self._candidate(record.get("entity_id"))
        self._services.store.patch(context.tenant, {"pending_last_update": None, "pending_followup_action": None})
        if candidate is None:
            return chat(nlg.ASK_TARGET)
        kind = "price" if word == "precio" else "stock"
        context.log("followup", f"field answered kind={kind}")
        intent = {"kind": kind, "value": record.get("value")}
        return propose_intent(self._services, context, candidate, intent, str(record.get("target_label") or "producto"))

    def _complete_followup(self, context: TurnContext, record: Dict[str, Any]) -> Optional[AgentResponse]:
        expect = record.get("expect")
        text = context.normalized
        if expect == "field":
            field_reply = FIELD_REPLY_RE.match(text)
            if not field_reply:
                return None
            return self._complete_field(context, record, field_reply.group(1))
        if expect == "number":
            if not NUMERIC_ONLY_RAW_RE.match(context.raw or ""):
                return None
            intent = {"kind": record.get("field_kind") or "price", "value": parse_number(context.raw)}
            try:
                value_changes(intent["kind"], intent["value"])
            except ValidationError as exc:
                context.log("validate", exc.user_message, status="error")
                return chat(exc.user_message, validation_error=exc.field)
            candidate = self._candidate(record.get("entity_id"))
            self._services.store.patch(context.tenant, {"pending_followup_action": None})
            if candidate is None:
                return chat(nlg.ASK_TARGET)
            context.log("followup", "number answered")
            return propose_intent(self._services, context, candidate, intent)
        if expect == "target":
            if is_action_like(text):
                return None
            if _is_catalog_question(text, context.raw):
                self._services.store.patch(context.tenant, {key: None for key in FOLLOWUP_KEYS})
                context.state = self._services.store.get(context.tenant)
                context.log("followup", "stale follow-up cleared by a catalog question")
                return None
            selector = extract_selector(context.raw, text)
            if re.fullmatch(r"\d{1,10}", text):
                selector = Selector(kind="id", value=text)
            elif selector.kind == "unknown" and looks_like_target_selection_reply(context.raw):
                selector = Selector(kind="name", value=context.raw.strip())
            if selector.kind not in {"id", "sku", "name"}:
                return None
            intent = dict(record.get("intent") or {})
            self._services.store.patch(context.tenant, {"pending_followup_action": None})
            candidate, response = resolve_target(self._services, context, selector, intent)
            if response is not None:
                return response
            context.log("followup", f"target answered entity={candidate.id}")
            return propose_intent(self._services, context, candidate, intent)
        return None

    def _correct_target(self, context: TurnContext, entity_id: int) -> AgentResponse:
        candidate = self._candidate(entity_id)
        if candidate is None:
            return chat(nlg.msg_not_found("id", str(entity_id)))
        partial: Dict[str, Any] = {
            "last_target_product_id": candidate.id,
            "last_product": {"id": candidate.id, "title": candidate.title},
        }
        for key in ("pending_last_update", "pending_followup_action"):
            record = context.state.get(key)
            if isinstance(record, dict) and record.get("entity_id"):
                updated = dict(record)
                updated["entity_id"] = candidate.id
                partial[key] = updated
        self._services.store.patch(context.tenant, partial)
        context.log("followup", f"target corrected entity={candidate.id}")
        return chat(nlg.msg_target_corrected(candidate.id, candidate.title))

    def _bare_number(self, context: TurnContext) -> AgentResponse:
        candidate = self._candidate(context.state.get("last_target_product_id"))
        if candidate is None:
            return chat(nlg.USAGE_HINT)
        value = parse_number(context.raw)
        self._services.store.patch(
            context.tenant,
            {
                "pending_followup_action": {
                    "expect": "field",
                    "entity_id": candidate.id,
                    "value": value,
                    "created_at": self._services.clock(),
                }
            },
        )
        context.log("followup", "bare number, asking precio or stock")
        return clarify(nlg.msg_ask_price_or_stock(context.raw.strip()), ["precio", "stock"], expect="field")
