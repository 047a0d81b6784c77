"""Name, description and category edits.

Role:
    Parses "cambiá el nombre del #12 a Remera azul", "descripción corta del #12: ...",
    "agregale la categoría Ofertas al #12", "quitale la categoría X al último" and
    "poné el #12 solo en Remeras". Unknown categories open a follow-up
    (pending_field_edit, stage need_category) answered by the next plain reply.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from .. import nlg
from ..catalog import Candidate
from ..parsers import extract_selector, extract_value_after_connector
from ..patterns import ACTION_VERB_RE, is_action_like
from ..response_builder import AgentResponse, chat, clarify
from ..router import TurnContext
from .base import FIELD_LABELS, FlowServices, has_blocking_state, propose_intent

logger = logging.getLogger("catalog_agent.flows.field_edit")

NAME_WORD_RE = re.compile(r"\b(nombre|titulo)\b")
SHORT_DESC_WORD_RE = re.compile(r"\bdescripcion corta\b|\bresumen\b")
DESC_WORD_RE = re.compile(r"\bdescripcion\b")
CATEGORY_WORD_RE = re.compile(r"\bcategorias?\b")
CAT_REMOVE_RE = re.compile(r"\b(quita\w*|saca\w*|borra\w*|elimina\w*)\b")
CAT_SET_RE = re.compile(r"\b(?:solo|solamente|unicamente) en\b|\bcambia\w* (?:la |las )?categorias?\b")
SOLO_EN_RAW_RE = re.compile(r"\b(?:s[oó]lo|solamente|[uú]nicamente)\s+en\s+[\"“«']?(.+?)[\"”»']?\s*$", re.IGNORECASE)
CAT_BEFORE_TARGET_RAW_RE = re.compile(
    r"categor[ií]as?\s*:?\s*[\"“«']?(.+?)[\"”»']?\s+(?:al|a|del|de|en|para)\s+"
    r"(?:el\s+|la\s+)?(?:#|id\b|producto\b|sku\b|[uú]ltim|primer|este\b|ese\b)",
    re.IGNORECASE,
)
CAT_TAIL_RAW_RE = re.compile(r"categor[ií]as?\s*:?\s*(.+)$", re.IGNORECASE)
LEADING_TARGET_RAW_RE = re.compile(
    r"^(?:al|a|del|de)\s+(?:el\s+|la\s+)?(?:#|id\b|producto\b|sku\b|[uú]ltim|primer|este\b|ese\b)",
    re.IGNORECASE,
)
NAME_SPLIT_RE = re.compile(r"\s*(?:,|\by\b)\s*")
TARGET_KINDS = {"id", "sku", "last", "first", "contextual"}


def _detect_field(normalized: str) -> Optional[str]:
    if CATEGORY_WORD_RE.search(normalized) or CAT_SET_RE.search(normalized):
        return "categories"
    if NAME_WORD_RE.search(normalized):
        return "name"
    if SHORT_DESC_WORD_RE.search(normalized):
        return "short_description"
    if DESC_WORD_RE.search(normalized):
        return "description"
    return None


def category_mode(normalized: str) -> str:
    if CAT_REMOVE_RE.search(normalized):
        return "remove"
    if CAT_SET_RE.search(normalized):
        return "set"
    return "add"


def extract_category_names(raw: str, mode: str) -> List[str]:
    """Purpose: Read the category names of an add/remove/set edit from the raw message.
    Inputs/Outputs: Inputs are the raw message and the mode; output is a list of names.
    Side Effects / State: None.
    Dependencies: "solo en X", "categoría X al #12", "categoría: X" shapes, then the
        value-after-connector extractor.
    Failure Modes: Returns [] when no name can be isolated.
    If Removed: Category edits cannot tell the category from the target.
    Testing Notes: "agregale la categoría Ofertas al #12" -> ["Ofertas"];
        "poné el #12 solo en Remeras y Verano" -> ["Remeras", "Verano"].
    """
    # Most specific shapes first.
    text = (raw or "").strip().rstrip(".!?")
    value: Optional[str] = None
    solo = SOLO_EN_RAW_RE.search(text)
    if solo:
        value = solo.group(1)
    if value is None:
        before = CAT_BEFORE_TARGET_RAW_RE.search(text)
        if before:
            value = before.group(1)
    if value is None and mode != "set":
        tail = CAT_TAIL_RAW_RE.search(text)
        if tail and not LEADING_TARGET_RAW_RE.match(tail.group(1).strip()):
            value = tail.group(1)
    if value is None:
        value = extract_value_after_connector(text)
    if not value:
        return []
    names = [part.strip(" \"'“”«».") for part in NAME_SPLIT_RE.split(value)]
    return [name for name in names if name]


class FieldEditFlow:
    def __init__(self, services: FlowServices) -> None:
        self._services = services

    def try_handle(self, context: TurnContext) -> Optional[AgentResponse]:
        """Purpose: Propose name, description and category edits.
        Inputs/Outputs: Input is the turn context; output is a proposal, a clarify or None.
        Side Effects / State: Stores or clears pending_field_edit; proposals persist a
            pending action.
        Dependencies: extract_selector, category helpers, propose_intent.
        Failure Modes: Unknown categories never reach the pending action; they produce a
            clarify with suggestions instead.
        If Removed: Only price and stock can be changed from chat.
        Testing Notes: "agregale la categoria Inexistente al #12" asks with suggestions and
            the reply "Ofertas" proposes the final category list.
        """
        # Continue an open field edit before reading a new command.
        if has_blocking_state(context.state):
            return None
        record = context.state.get("pending_field_edit")
        if isinstance(record, dict):
            if not (ACTION_VERB_RE.search(context.normalized) and is_action_like(context.normalized)):
                return self._continue(context, record)
            self._services.store.patch(context.tenant, {"pending_field_edit": None})
            context.log("field_edit", "open edit replaced by a new command")

        field_name = _detect_field(context.normalized)
        if field_name is None:
            return None
        if not (ACTION_VERB_RE.search(context.normalized) or ":" in context.raw or CAT_SET_RE.search(context.normalized)):
            return None
        return self._new_edit(context, field_name)

    def _target(self, context: TurnContext) -> Optional[Candidate]:
        selector = extract_selector(context.raw, context.normalized)
        resolver = self._services.resolver
        if selector.kind in TARGET_KINDS:
            result = resolver.resolve(selector, context.state)
            if result.total == 1 and result.items:
                return result.items[0]
            return None
        last_id = context.state.get("last_target_product_id")
        return resolver.candidate(int(last_id)) if last_id else None

    def _new_edit(self, context: TurnContext, field_name: str) -> AgentResponse:
        if field_name == "categories":
            mode = category_mode(context.normalized)
            intent: Dict[str, Any] = {
                "kind": "field",
                "field": "categories",
                "cat_mode": mode,
                "categories": extract_category_names(context.raw, mode),
            }
        else:
            intent = {"kind": "field", "field": field_name, "value": extract_value_after_connector(context.raw) or ""}

        candidate = self._target(context)
        if candidate is None:
            self._services.store.patch(
                context.tenant,
                {"pending_followup_action": {"expect": "target", "intent": intent, "created_at": self._services.clock()}},
            )
            context.log("field_edit", "target missing")
            return clarify(nlg.ASK_TARGET, expect="target")

        if field_name == "categories":
            return self._categories(context, candidate, intent)
        if not intent["value"]:
            self._open(context, candidate, field_name, stage="need_value")
            return clarify(f"¿Qué {FIELD_LABELS[field_name]} querés ponerle al {nlg.product_label(candidate.id, candidate.title)}?")
        context.log("field_edit", f"field={field_name} entity={candidate.id}")
        return propose_intent(self._services, context, candidate, intent)

    def _categories(self, context: TurnContext, candidate: Candidate, intent: Dict[str, Any]) -> AgentResponse:
        catalog = self._services.catalog
        mode = str(intent.get("cat_mode") or "add")
        requested = list(intent.get("categories") or [])
        if not requested:
            self._open(context, candidate, "categories", stage="need_category", cat_mode=mode, resolved=[])
            return clarify(f"¿Qué categoría? Estas son las que existen: {', '.join(catalog.category_names()[:10])}")
        resolved: List[str] = []
        for name in requested:
            found = catalog.find_category(name)
            if found is None:
                self._open(context, candidate, "categories", stage="need_category", cat_mode=mode, resolved=resolved)
                suggestions = catalog.suggest_categories(name, 3)
                context.log("field_edit", f"unknown category={name}")
                return clarify(nlg.msg_category_unknown(name, suggestions), suggestions)
            resolved.append(found)
        final_intent = dict(intent)
        final_intent["categories"] = resolved
        context.log("field_edit", f"categories mode={mode} entity={candidate.id}")
        return propose_intent(self._services, context, candidate, final_intent)

    def _open(self, context: TurnContext, candidate: Candidate, field_name: str, stage: str, **extra: Any) -> None:
        record = {
            "entity_id": candidate.id,
            "field": field_name,
            "stage": stage,
            "created_at": self._services.clock(),
        }
        record.update(extra)
        self._services.store.patch(
            context.tenant,
            {
                "pending_field_edit": record,
                "last_target_product_id": candidate.id,
                "last_product": {"id": candidate.id, "title": candidate.title},
            },
        )

    def _continue(self, context: TurnContext, record: Dict[str, Any]) -> Optional[AgentResponse]:
        """Use the reply as the missing category or value of the open edit."""
        candidate = self._services.resolver.candidate(int(record.get("entity_id") or 0))
        if candidate is None:
            self._services.store.patch(context.tenant, {"pending_field_edit": None})
            return chat(nlg.ASK_TARGET)
        reply = context.raw.strip().strip("\"'“”«»")
        if not reply:
            return None
        field_name = str(record.get("field") or "")
        if field_name != "categories":
            self._services.store.patch(context.tenant, {"pending_field_edit": None})
            return propose_intent(self._services, context, candidate, {"kind": "field", "field": field_name, "value": reply})

        catalog = self._services.catalog
        found = catalog.find_category(reply)
        if found is None:
            suggestions = catalog.suggest_categories(reply, 3)
            context.log("field_edit", f"unknown category={reply}")
            return clarify(nlg.msg_category_unknown(reply, suggestions), suggestions)
        names = list(record.get("resolved") or []) + [found]
        self._services.store.patch(context.tenant, {"pending_field_edit": None})
        intent = {"kind": "field", "field": "categories", "cat_mode": record.get("cat_mode") or "add", "categories": names}
        context.log("field_edit", f"category completed={found}")
        return propose_intent(self._services, context, candidate, intent)
