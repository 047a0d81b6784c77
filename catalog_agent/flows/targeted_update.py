"""Targeted price/stock updates by id, SKU, name or context, plus selection answers.

Role:
    Owns two paths. While a target selection is open it reads the user's pick (or
    "cargar más") and finishes the stored intent. Otherwise it parses requests such as
    "cambiá el precio del #12 a 100" or "stock de la remera azul: 5", resolves the target
    and proposes the change, opening a selection or asking for the product when needed.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .. import nlg
from ..catalog import Candidate
from ..errors import ValidationError
from ..parsers import extract_selector, extract_value
from ..patterns import LOAD_MORE_RE, PRICE_WORD_RE, STOCK_WORD_RE, is_action_like
from ..response_builder import AgentResponse, chat, clarify
from ..router import TurnContext
from .base import (
    FlowServices,
    propose_intent,
    resolve_target,
    selection_response,
    target_label_for,
    value_changes,
)
from .deterministic import FIELD_EDIT_WORD_RE

logger = logging.getLogger("catalog_agent.flows.targeted")


class TargetedUpdateFlow:
    def __init__(self, services: FlowServices) -> None:
        self._services = services

    def try_handle(self, context: TurnContext) -> Optional[AgentResponse]:
        """Purpose: Resolve the target of a price/stock request and propose the change.
        Inputs/Outputs: Input is the turn context; output is a proposal, a selection page,
            a question for the missing piece, or None.
        Side Effects / State: May open/advance pending_target_selection, store a follow-up
            or persist a pending action.
        Dependencies: TargetResolver, resolve_target/propose_intent helpers.
        Failure Modes: Validation errors answer without state changes; catalog failures
            raise ExternalError.
        If Removed: Only shorthand and ordinal commands can change a product.
        Testing Notes: "cambia el precio de remera a 500" over three remeras opens a
            selection; replying "2" proposes for the second candidate.
        """
        # A pending action means the guard already declined to block this message.
        state = context.state
        if state.get("pending_action"):
            return None
        selection = state.get("pending_target_selection")
        if isinstance(selection, dict):
            return self._answer_selection(context, selection)
        return self._new_request(context)

    def _answer_selection(self, context: TurnContext, selection: Dict[str, Any]) -> Optional[AgentResponse]:
        resolver = self._services.resolver
        if LOAD_MORE_RE.match(context.normalized):
            before = int(selection.get("offset") or 0)
            updated = resolver.load_more(selection)
            self._services.store.patch(context.tenant, {"pending_target_selection": updated})
            if int(updated.get("offset") or 0) == before:
                context.log("selection", "no more results")
                return clarify(nlg.SELECTION_END, selection_total=int(updated.get("total") or 0))
            context.log("selection", f"page offset={updated['offset']} total={updated['total']}")
            return selection_response(self._services, updated)
        picked = resolver.pick(selection, context.raw)
        if picked is None:
            context.log("selection", "reply did not identify one candidate", status="declined")
            return selection_response(self._services, selection)
        candidate = resolver.candidate(picked)
        if candidate is None:
            return chat(nlg.msg_not_found("id", str(picked)))
        intent = dict(selection.get("intent") or {})
        self._services.store.patch(context.tenant, {"pending_target_selection": None})
        context.log("selection", f"picked entity={picked}")
        if intent.get("kind") in {"price", "stock"} and intent.get("value") is None:
            return self._ask_value(context, candidate, str(intent["kind"]))
        response = propose_intent(self._services, context, candidate, intent)
        if response.mode != "execute":
            self._services.store.patch(
                context.tenant,
                {
                    "last_target_product_id": candidate.id,
                    "last_product": {"id": candidate.id, "title": candidate.title},
                },
            )
        return response

    def _new_request(self, context: TurnContext) -> Optional[AgentResponse]:
        text = context.normalized
        if FIELD_EDIT_WORD_RE.search(text):
            return None
        has_price = bool(PRICE_WORD_RE.search(text))
        has_stock = bool(STOCK_WORD_RE.search(text))
        if has_price == has_stock:
            return None
        if not is_action_like(text):
            return None
        kind = "price" if has_price else "stock"
        value = extract_value(text)
        selector = extract_selector(context.raw, text)

        if value is not None:
            try:
                value_changes(kind, value)
            except ValidationError as exc:
                context.log("targeted", exc.user_message, status="error")
                return chat(exc.user_message, validation_error=exc.field)

        if not selector.is_known():
            intent = {"kind": kind, "value": value}
            if value is None:
                return None
            self._services.store.patch(
                context.tenant,
                {"pending_followup_action": {"expect": "target", "intent": intent, "created_at": self._services.clock()}},
            )
            context.log("targeted", "value without target, asking for the product")
            return clarify(nlg.ASK_TARGET, expect="target")

        intent = {"kind": kind, "value": value}
        candidate, response = resolve_target(self._services, context, selector, intent)
        if response is not None:
            return response
        if value is None:
            return self._ask_value(context, candidate, kind)
        context.log("targeted", f"kind={kind} selector={selector.kind} entity={candidate.id}")
        return propose_intent(self._services, context, candidate, intent, target_label_for(selector))

    def _ask_value(self, context: TurnContext, candidate: Candidate, kind: str) -> AgentResponse:
        """Store an expect=number follow-up for a known product and ask for the value."""
        self._services.store.patch(
            context.tenant,
            {
                "pending_followup_action": {
                    "expect": "number",
                    "entity_id": candidate.id,
                    "field_kind": kind,
                    "created_at": self._services.clock(),
                },
                "last_target_product_id": candidate.id,
                "last_product": {"id": candidate.id, "title": candidate.title},
            },
        )
        what = "precio" if kind == "price" else "stock"
        context.log("targeted", "target without value, asking for the number")
        return clarify(f"¿A qué {what} querés dejar el {nlg.product_label(candidate.id, candidate.title)}?", expect="number")
