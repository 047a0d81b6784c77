from __future__ import annotations

import logging
from typing import Optional

from .. import nlg
from ..catalog import candidate_from_product
from ..parsers import extract_selector
from ..patterns import ACTION_VERB_RE, looks_like_target_selection_reply
from ..queries import is_bare_health, looks_like_product_info, render_product_info, run_report_query
from ..response_builder import AgentResponse, clarify, consult
from ..router import TurnContext
from .base import FlowServices

logger = logging.getLogger("catalog_agent.flows.query")

INFO_SELECTOR_KINDS = {"id", "sku", "last", "first", "contextual"}


class QueryFlow:
    """Read-only questions; passes through every pending state."""

    def __init__(self, services: FlowServices) -> None:
        self._services = services

    def try_handle(self, context: TurnContext) -> Optional[AgentResponse]:
        """Purpose: Answer report queries, product info questions and help words.
        Inputs/Outputs: Input is the turn context; output is a consult/clarify response or None.
        Side Effects / State: Product info questions set last_target_product_id; nothing
            else is written and pending state is never read for a decision.
        Dependencies: queries module, extract_selector, TargetResolver.
        Failure Modes: Catalog failures raise ExternalError (router declines the flow).
        If Removed: "productos sin precio" is blocked by the pending guard.
        Testing Notes: With a pending action, "productos sin sku" still answers and the
            pending action survives.
        """
        # Selection answers belong to the selection, change verbs to the update flows.
        text = context.normalized
        if context.state.get("pending_target_selection") and looks_like_target_selection_reply(context.raw):
            return None
        if ACTION_VERB_RE.search(text):
            return None
        if text == "precio":
            return consult(nlg.PRICE_HELP)
        if text == "stock":
            return consult(nlg.STOCK_HELP)
        if is_bare_health(text):
            return clarify(
                "¿Querés ver la **salud del catálogo**? Puedo mostrarte el resumen o el detalle.",
                ["salud del catálogo", "salud del catálogo detallada"],
            )
        report = run_report_query(self._services.catalog, text)
        if report is not None:
            context.log("query", f"report code={report['code']}")
            return consult(report["message"], query=report["code"], **report["meta"])
        if looks_like_product_info(text, context.raw):
            return self._product_info(context)
        return None

    def _product_info(self, context: TurnContext) -> Optional[AgentResponse]:
        selector = extract_selector(context.raw, context.normalized)
        if selector.kind not in INFO_SELECTOR_KINDS:
            return None
        result = self._services.resolver.resolve(selector, context.state)
        if result.total != 1 or not result.items:
            return consult(nlg.msg_not_found(selector.kind, selector.value))
        product = self._services.catalog.get_product(result.items[0].id)
        if product is None:
            return None
        candidate = candidate_from_product(product)
        self._services.store.patch(
            context.tenant,
            {
                "last_target_product_id": candidate.id,
                "last_product": {"id": candidate.id, "title": candidate.title},
            },
        )
        context.log("query", f"product info entity={candidate.id}")
        return consult(render_product_info(product, context.normalized), query="product_info", entity_id=candidate.id)
