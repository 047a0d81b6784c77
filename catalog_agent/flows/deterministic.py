"""Deterministic shorthand and ordinal commands.

Role:
    Handles "precio 100", "stock: 5", "cambiá el precio del último a 2500" and
    "stock del tercero a 4" without any model call. "Último" is always the highest
    product id and "N-th" the N-th lowest id; creation timestamps are never used.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from .. import nlg
from ..catalog import candidate_from_product
from ..errors import NotFoundError, ValidationError
from ..parsers import Selector, extract_explicit_id, extract_sku, extract_value, parse_number, parse_ordinal
from ..patterns import PRICE_WORD_RE, STOCK_WORD_RE
from ..response_builder import AgentResponse, chat, clarify
from ..router import TurnContext
from .base import FlowServices, has_blocking_state, propose_changes, target_label_for, value_changes

logger = logging.getLogger("catalog_agent.flows.deterministic")

SHORTHAND_RE = re.compile(
    r"^(?:el\s+)?(precio|stock)\s*[:=]?\s*(-?\s*\$?\s*-?\d[\d.,\s]*(?:\s*(?:k|mil|miles|lucas?))?)$"
)
FIELD_EDIT_WORD_RE = re.compile(r"\b(nombre|titulo|descripcion|categoria|categorias)\b")


class DeterministicFlow:
    def __init__(self, services: FlowServices) -> None:
        self._services = services

    def try_handle(self, context: TurnContext) -> Optional[AgentResponse]:
        """Purpose: Parse shorthand and ordinal price/stock commands deterministically.
        Inputs/Outputs: Input is the turn context; output is a proposal, a validation answer,
            a precio-or-stock question, or None.
        Side Effects / State: Proposals persist a pending action; the implicit-kind question
            stores pending_last_update.
        Dependencies: parsers, PendingActionManager through propose_changes.
        Failure Modes: Validation errors answer with the corrective message and change nothing.
        If Removed: "precio 100" needs the language model to be understood.
        Testing Notes: "precio 100" with no context targets the highest id; "stock -5" is
            rejected without creating a pending action.
        """
        # Shorthand first; ordinal commands only when no explicit id/sku is present.
        if has_blocking_state(context.state):
            return None
        match = SHORTHAND_RE.match(context.normalized)
        if match:
            return self._shorthand(context, match.group(1), match.group(2))
        return self._ordinal_command(context)

    def _shorthand(self, context: TurnContext, kind_word: str, value_text: str) -> AgentResponse:
        kind = "price" if kind_word == "precio" else "stock"
        try:
            changes = value_changes(kind, parse_number(value_text))
        except ValidationError as exc:
            context.log("deterministic", exc.user_message, status="error")
            return chat(exc.user_message, validation_error=exc.field)

        catalog = self._services.catalog
        target_label = "producto"
        product = None
        last_id = context.state.get("last_target_product_id")
        if last_id:
            product = catalog.get_product(int(last_id))
        if product is None:
            newest = catalog.nth_by_id(1, descending=True)
            product = catalog.get_product(newest) if newest else None
            target_label = "último producto"
        if product is None:
            return chat(nlg.ASK_TARGET)
        context.log("deterministic", f"shorthand kind={kind} entity={product['id']}")
        return propose_changes(self._services, context, candidate_from_product(product), kind, changes, target_label)

    def _ordinal_command(self, context: TurnContext) -> Optional[AgentResponse]:
        text = context.normalized
        ordinal = parse_ordinal(text)
        if ordinal is None:
            return None
        if extract_explicit_id(text) is not None or extract_sku(context.raw):
            return None
        if FIELD_EDIT_WORD_RE.search(text):
            return None
        value = extract_value(text)
        if value is None:
            return None
        has_price = bool(PRICE_WORD_RE.search(text))
        has_stock = bool(STOCK_WORD_RE.search(text))
        if has_price and has_stock:
            return None
        if "?" in context.raw and not (has_price or has_stock):
            return None

        selector = Selector(kind="last", index=1) if ordinal.from_end else Selector(kind="first", index=ordinal.index)
        try:
            candidate = self._services.resolver.resolve_one(selector, context.state)
        except NotFoundError:
            return chat(nlg.ASK_TARGET)
        target_label = target_label_for(selector)

        if has_price:
            kind = "price"
        elif has_stock:
            kind = "stock"
        else:
            kind = str(context.state.get("last_action_kind") or "")
            if kind not in {"price", "stock"}:
                self._services.store.patch(
                    context.tenant,
                    {
                        "pending_last_update": {
                            "expect": "field",
                            "entity_id": candidate.id,
                            "value": value,
                            "target_label": target_label,
                            "created_at": self._services.clock(),
                        }
                    },
                )
                context.log("deterministic", "implicit kind, asking precio or stock")
                return clarify(nlg.PRICE_OR_STOCK_QUESTION, ["precio", "stock"], expect="field")

        try:
            changes = value_changes(kind, value)
        except ValidationError as exc:
            context.log("deterministic", exc.user_message, status="error")
            return chat(exc.user_message, validation_error=exc.field)
        context.log("deterministic", f"ordinal kind={kind} entity={candidate.id}")
        return propose_changes(self._services, context, candidate, kind, changes, target_label)
