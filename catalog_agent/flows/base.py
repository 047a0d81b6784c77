"""Shared services and proposal helpers for the dialogue flows.

Role:
    FlowServices bundles the collaborators every flow receives. The helpers below are
    the single path from "resolved product + parsed value" to a pending action proposal,
    so validation, no-op answers and target selection behave the same in every flow.

Intent record (stored in selections and follow-ups so a later reply can finish the job):
    {"kind": "price"|"stock", "value": float}
    {"kind": "field", "field": "name"|"short_description"|"description", "value": str}
    {"kind": "field", "field": "categories", "cat_mode": "add"|"remove"|"set", "categories": [str]}
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from .. import nlg
from ..catalog import DEFAULT_CATEGORY, Candidate
from ..errors import AmbiguousError, NotFoundError, ValidationError
from ..parsers import Selector, format_price, validate_price, validate_stock
from ..response_builder import AgentResponse, chat, clarify, execute
from ..router import TurnContext
from ..utils import normalize_key

logger = logging.getLogger("catalog_agent.flows")

FIELD_LABELS = {
    "name": "nombre",
    "short_description": "descripción corta",
    "description": "descripción",
    "categories": "categorías",
}


@dataclass
class FlowServices:
    """Collaborators shared by every flow of one agent."""
    store: Any
    catalog: Any
    resolver: Any
    pending: Any
    gate: Any
    llm: Optional[Any] = None
    clock: Callable[[], float] = time.time


def has_blocking_state(state: Dict[str, Any]) -> bool:
    """Pending action, open selection or open replace choice."""
    return bool(state.get("pending_action") or state.get("pending_target_selection") or state.get("pending_choice"))


def value_changes(kind: str, value: Optional[float]) -> Dict[str, Any]:
    """Validated catalog changes for a price or stock value; raises ValidationError."""
    if kind == "price":
        return {"regular_price": format_price(validate_price(value))}
    return {"manage_stock": True, "stock_quantity": validate_stock(value)}


def category_changes(catalog, entity_id: int, mode: str, names: List[str]) -> Dict[str, Any]:
    """Purpose: Compute the final category list of a product for an add/remove/set edit.
    Inputs/Outputs: Inputs are the catalog, product id, mode and resolved category names;
        output is {"categories": [...]}.
    Side Effects / State: None.
    Dependencies: catalog.read_current_fields and normalize_key for comparisons.
    Failure Modes: An empty result falls back to the default category.
    If Removed: Category edits cannot be expressed as a full replacement list.
    Testing Notes: Removing the only category yields ["Uncategorized"]; adding a real one
        drops "Uncategorized".
    """
    # Work on normalized keys, keep the catalog's spelling.
    current = list(catalog.read_current_fields(entity_id, ["categories"]).get("categories") or [])
    wanted_keys = {normalize_key(name) for name in names}
    default_key = normalize_key(DEFAULT_CATEGORY)
    if mode == "set":
        final = list(names)
    elif mode == "remove":
        final = [name for name in current if normalize_key(name) not in wanted_keys]
    else:
        final = [name for name in current if normalize_key(name) != default_key]
        known = {normalize_key(name) for name in final}
        for name in names:
            if normalize_key(name) not in known:
                final.append(name)
                known.add(normalize_key(name))
    if not final:
        final = [DEFAULT_CATEGORY]
    return {"categories": final}


def intent_changes(catalog, entity_id: int, intent: Dict[str, Any]) -> Tuple[str, Dict[str, Any], str]:
    """(kind, changes, field_label) for an intent record; raises ValidationError for bad values."""
    kind = str(intent.get("kind") or "")
    if kind in {"price", "stock"}:
        return kind, value_changes(kind, intent.get("value")), kind
    field_name = str(intent.get("field") or "")
    if field_name == "categories":
        names = []
        for name in intent.get("categories") or []:
            found = catalog.find_category(name)
            if found is None:
                raise ValidationError(nlg.msg_category_unknown(name, catalog.suggest_categories(name, 3)), "categories")
            names.append(found)
        if not names:
            raise ValidationError("¿Qué categoría? Decime el nombre exacto de una categoría existente.", "categories")
        changes = category_changes(catalog, entity_id, str(intent.get("cat_mode") or "add"), names)
        return "field", changes, FIELD_LABELS["categories"]
    value = str(intent.get("value") or "").strip()
    if field_name not in FIELD_LABELS or not value:
        raise ValidationError("No me quedó claro el nuevo valor. ¿Cuál querés poner?", field_name or "field")
    return "field", {field_name: value}, FIELD_LABELS[field_name]


def propose_changes(
    services: FlowServices,
    context: TurnContext,
    candidate: Candidate,
    kind: str,
    changes: Dict[str, Any],
    target_label: str = "producto",
    field_label: str = "",
) -> AgentResponse:
    """Purpose: Hand validated changes to the pending manager and phrase the outcome.
    Inputs/Outputs: Inputs are services, the turn context, the target candidate, the kind,
        the changes and labels; output is an execute, no-op or block response.
    Side Effects / State: PendingActionManager.propose persists the envelope when not a no-op.
    Dependencies: PendingActionManager, nlg copy.
    Failure Modes: Catalog failures raise ExternalError (router turns it into a decline).
    If Removed: Each flow would phrase proposals and no-ops differently.
    Testing Notes: Proposing the current price returns "ya estaba" and no pending action.
    """
    # No-op answers leave the session untouched.
    outcome = services.pending.propose(context.tenant, candidate.id, changes, kind, candidate.title)
    label = nlg.product_label(candidate.id, candidate.title, target_label)
    if outcome.status == "blocked":
        context.log("propose", "blocked by pending action", status="declined")
        return chat(nlg.msg_pending_block(), pending_blocked=True)
    if outcome.status == "noop":
        context.log("propose", f"noop entity={candidate.id}")
        if kind == "price":
            message = nlg.msg_price_noop(changes["regular_price"])
        elif kind == "stock":
            message = nlg.msg_stock_noop(changes["stock_quantity"])
        elif "categories" in changes:
            message = nlg.msg_categories_noop()
        else:
            message = f"El {field_label or 'campo'} ya estaba así. No hice cambios."
        return chat(message, noop=True, entity_id=candidate.id)
    action = outcome.action or {}
    context.log("propose", str(action.get("human_summary") or ""))
    if kind == "price":
        message = nlg.msg_price_prepared(label, action["changes"]["regular_price"])
    elif kind == "stock":
        message = nlg.msg_stock_prepared(label, action["changes"]["stock_quantity"])
    elif field_label:
        message = nlg.msg_field_prepared(field_label, label)
    else:
        message = nlg.msg_action_prepared_default()
    return execute(message, action, nonce=(outcome.envelope or {}).get("nonce"))


def propose_intent(
    services: FlowServices,
    context: TurnContext,
    candidate: Candidate,
    intent: Dict[str, Any],
    target_label: str = "producto",
) -> AgentResponse:
    """Validate an intent record against a resolved product and propose it."""
    try:
        kind, changes, field_label = intent_changes(services.catalog, candidate.id, intent)
    except ValidationError as exc:
        context.log("validate", exc.user_message, status="error")
        return chat(exc.user_message, validation_error=exc.field)
    return propose_changes(services, context, candidate, kind, changes, target_label, field_label)


def resolve_target(
    services: FlowServices,
    context: TurnContext,
    selector: Selector,
    intent: Dict[str, Any],
) -> Tuple[Optional[Candidate], Optional[AgentResponse]]:
    """Purpose: Resolve a selector to one product or answer the disambiguation step.
    Inputs/Outputs: Inputs are services, context, the selector and the intent to finish
        later; output is (candidate, None) or (None, response).
    Side Effects / State: NotFound stores a target follow-up; ambiguity opens
        pending_target_selection and clears stale follow-ups.
    Dependencies: TargetResolver.resolve_one/open_selection/page.
    Failure Modes: Catalog failures raise ExternalError.
    If Removed: Updates by name could not ask "¿cuál de estos?".
    Testing Notes: A name matching three titles opens a selection with total 3.
    """
    # 0 -> ask, 1 -> proceed, N -> open a selection.
    try:
        return services.resolver.resolve_one(selector, context.state), None
    except NotFoundError as exc:
        context.log("resolve", f"not found kind={exc.selector_kind}", status="declined")
        services.store.patch(
            context.tenant,
            {
                "pending_followup_action": {
                    "expect": "target",
                    "intent": dict(intent),
                    "created_at": services.clock(),
                }
            },
        )
        return None, clarify(nlg.msg_not_found(exc.selector_kind, exc.query), expect="target")
    except AmbiguousError as exc:
        selection = services.resolver.open_selection(exc, intent)
        services.store.patch(
            context.tenant,
            {
                "pending_target_selection": selection,
                "pending_followup_action": None,
                "pending_last_update": None,
            },
        )
        context.log("resolve", f"ambiguous total={exc.total}")
        return None, selection_response(services, selection)


def selection_response(services: FlowServices, selection: Dict[str, Any]) -> AgentResponse:
    items = services.resolver.page(selection)
    message = nlg.msg_selection(int(selection.get("total") or 0), items, int(selection.get("offset") or 0))
    response = clarify(
        message,
        [f"#{item['id']} {item.get('title') or ''}".strip() for item in items],
        selection_total=int(selection.get("total") or 0),
        selection_offset=int(selection.get("offset") or 0),
    )
    response.meta["candidates"] = items
    return response


def target_label_for(selector: Selector) -> str:
    if selector.kind == "last":
        return "último producto"
    if selector.kind == "first" and selector.index == 1:
        return "primer producto"
    return "producto"
