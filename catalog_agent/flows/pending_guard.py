"""Pending-action guard.

Role:
    Runs after the read-only paths and before every flow that can create a proposal.
    While a pending action, a target selection or a replace choice is open, this flow
    sees the message first and either handles it (cancel, confirm hint, merge, replace
    choice, block) or lets a selection answer through to the targeted update flow.

Decision order:
    1. Open replace choice: "seguir con la pendiente" / "reemplazar por la nueva".
    2. Open target selection: cancel, pass selection answers, remind otherwise.
    3. Nothing pending: confirm/cancel tokens get a friendly "nothing pending" answer;
       cancel also drops an open field-edit or follow-up question.
    4. Smalltalk: block message, state only touched.
    5. Cancel token: cancel the pending action.
    6. Confirm token: hint that execution happens through the confirm button.
    7. Short follow-up edit of the same kind ("mejor a 120"): merge.
    8. Price/stock request on the same product: merge.
    9. Any other change request: replace choice with the message deferred verbatim.
   10. Anything else: block message.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from .. import nlg
from ..errors import ValidationError
from ..parsers import extract_selector, extract_value
from ..patterns import (
    LOAD_MORE_RE,
    PRICE_WORD_RE,
    SELECTION_CANCEL_RE,
    STOCK_WORD_RE,
    classify_followup_edit,
    is_action_like,
    is_cancel_token,
    is_confirm_token,
    is_keep_choice,
    is_replace_choice,
    is_smalltalk,
    looks_like_target_selection_reply,
)
from ..response_builder import AgentResponse, chat, clarify, execute
from ..router import TurnContext
from ..session_store import FOLLOWUP_KEYS
from .base import FlowServices, value_changes

logger = logging.getLogger("catalog_agent.flows.guard")

Replay = Callable[[TurnContext, str], AgentResponse]


class PendingGuardFlow:
    def __init__(self, services: FlowServices, replay: Optional[Replay] = None) -> None:
        """Purpose: Build the guard with its services and the router replay hook.
        Inputs/Outputs: Inputs are FlowServices and a replay callable used when the user
            picks "reemplazar por la nueva"; no return value.
        Side Effects / State: None at init.
        Dependencies: PendingActionManager, SessionStore, TargetResolver via services.
        Failure Modes: Without replay, a replace choice only cancels and asks again.
        If Removed: A second request could silently create a second pending action.
        Testing Notes: With a pending action, "hola" is blocked and a request for another
            product opens the keep/replace choice.
        """
        # The replay hook re-runs the router for the deferred message.
        self._services = services
        self._replay = replay

    def try_handle(self, context: TurnContext) -> Optional[AgentResponse]:
        state = context.state
        text = context.normalized

        choice = state.get("pending_choice")
        if isinstance(choice, dict) and state.get("pending_action"):
            if is_keep_choice(text):
                return self._keep(context)
            if is_replace_choice(text):
                return self._replace(context)

        selection = state.get("pending_target_selection")
        if isinstance(selection, dict):
            return self._guard_selection(context, selection)

        envelope = state.get("pending_action")
        if not isinstance(envelope, dict):
            return self._nothing_pending(context)

        action = envelope.get("action") or {}
        if is_smalltalk(text):
            self._services.store.touch(context.tenant)
            context.log("guard", "smalltalk blocked")
            return self._block()
        if is_cancel_token(text):
            cancelled = self._services.pending.cancel(context.tenant, source="chat")
            summary = str(((cancelled or {}).get("action") or {}).get("human_summary") or "")
            context.log("guard", "pending action cancelled")
            return chat(nlg.msg_pending_cancelled(summary), cancelled=True)
        if is_confirm_token(text):
            context.log("guard", "confirm token, pointing to the button")
            return chat(nlg.CONFIRM_HINT, pending=True)

        kind = str(action.get("kind") or "")
        accepted, rule = classify_followup_edit(text, context.raw, kind)
        if accepted and kind in {"price", "stock", "multi"}:
            response = self._merge_followup(context, kind)
            if response is not None:
                context.log("guard", f"follow-up edit rule={rule}")
                return response

        if is_action_like(text):
            same = self._merge_same_product(context, action)
            if same is not None:
                return same
            return self._open_choice(context)
        context.log("guard", "blocked")
        return self._block()

    def _block(self) -> AgentResponse:
        return chat(nlg.msg_pending_block(), pending=True)

    def _nothing_pending(self, context: TurnContext) -> Optional[AgentResponse]:
        text = context.normalized
        if is_cancel_token(text):
            open_keys = [key for key in FOLLOWUP_KEYS if context.state.get(key)]
            if open_keys:
                self._services.store.patch(context.tenant, {key: None for key in FOLLOWUP_KEYS})
                context.log("guard", "follow-up dropped: " + ",".join(open_keys))
                return chat(nlg.FIELD_EDIT_CANCELLED)
            return chat(nlg.NO_PENDING_TO_CANCEL)
        if is_confirm_token(text):
            return chat(nlg.NO_PENDING_TO_CONFIRM)
        return None

    def _guard_selection(self, context: TurnContext, selection: Dict[str, Any]) -> Optional[AgentResponse]:
        text = context.normalized
        explicit_cancel = SELECTION_CANCEL_RE.search(text) and not looks_like_target_selection_reply(context.raw)
        if is_cancel_token(text) or explicit_cancel:
            self._services.store.patch(context.tenant, {"pending_target_selection": None})
            context.log("guard", "selection cancelled")
            return chat(nlg.SELECTION_CANCELLED)
        if LOAD_MORE_RE.match(text) or looks_like_target_selection_reply(context.raw):
            return None
        context.log("guard", "selection reminder")
        return clarify(nlg.SELECTION_REMINDER, selection_total=int(selection.get("total") or 0))

    def _changes_from_message(self, context: TurnContext, kind: str) -> Optional[Dict[str, Any]]:
        """Price or stock changes parsed from the message; raises ValidationError."""
        text = context.normalized
        if kind == "multi":
            if PRICE_WORD_RE.search(text) and not STOCK_WORD_RE.search(text):
                kind = "price"
            elif STOCK_WORD_RE.search(text) and not PRICE_WORD_RE.search(text):
                kind = "stock"
            else:
                return None
        value = extract_value(text)
        if value is None:
            return None
        return value_changes(kind, value)

    def _merge_followup(self, context: TurnContext, kind: str) -> Optional[AgentResponse]:
        try:
            changes = self._changes_from_message(context, kind)
        except ValidationError as exc:
            return chat(exc.user_message, validation_error=exc.field, pending=True)
        if not changes:
            return None
        return self._apply_merge(context, changes)

    def _merge_same_product(self, context: TurnContext, action: Dict[str, Any]) -> Optional[AgentResponse]:
        """Merge a price/stock request that targets the pending product, else None."""
        text = context.normalized
        has_price = bool(PRICE_WORD_RE.search(text))
        has_stock = bool(STOCK_WORD_RE.search(text))
        if has_price == has_stock:
            return None
        pending_id = int(action.get("entity_id") or action.get("product_id") or 0)
        selector = extract_selector(context.raw, text)
        if selector.kind in {"id", "sku", "last", "first", "name"}:
            result = self._services.resolver.resolve(selector, context.state)
            if result.total != 1 or not result.items or result.items[0].id != pending_id:
                return None
        elif selector.kind not in {"contextual", "unknown"}:
            return None
        try:
            changes = self._changes_from_message(context, "price" if has_price else "stock")
        except ValidationError as exc:
            return chat(exc.user_message, validation_error=exc.field, pending=True)
        if not changes:
            return None
        context.log("guard", f"same product request merged entity={pending_id}")
        return self._apply_merge(context, changes)

    def _apply_merge(self, context: TurnContext, changes: Dict[str, Any]) -> AgentResponse:
        outcome = self._services.pending.merge(context.tenant, changes)
        if outcome.status == "merged":
            return execute(nlg.msg_pending_merge_added(), outcome.action or {}, merged=True, nonce=(outcome.envelope or {}).get("nonce"))
        if outcome.status == "noop":
            return execute(nlg.msg_pending_merge_noop(), outcome.action or {}, merged=False, nonce=(outcome.envelope or {}).get("nonce"))
        if outcome.status == "dropped":
            return chat(nlg.NOOP_GENERIC + " Descarté la acción pendiente porque ya no cambiaba nada.", noop=True)
        return self._block()

    def _open_choice(self, context: TurnContext) -> AgentResponse:
        self._services.pending.open_choice(context.tenant, context.raw)
        context.log("guard", "replace choice opened")
        labels = nlg.choice_labels()
        return clarify(
            nlg.msg_pending_guard_choice(),
            [labels["confirm"], labels["cancel"]],
            pending_choice="swap_to_deferred",
            deferred_message=context.raw,
            ui_labels=labels,
        )

    def _keep(self, context: TurnContext) -> AgentResponse:
        outcome = self._services.pending.resolve_choice(context.tenant, "keep")
        context.log("guard", "replace choice: keep")
        if outcome.envelope:
            return execute(nlg.msg_pending_kept(), outcome.action or {}, nonce=outcome.envelope.get("nonce"))
        return chat(nlg.NO_PENDING_TO_CONFIRM)

    def _replace(self, context: TurnContext) -> AgentResponse:
        outcome = self._services.pending.resolve_choice(context.tenant, "replace")
        deferred = str(outcome.detail.get("deferred_message") or "")
        context.log("guard", "replace choice: replace")
        if self._replay is None or not deferred:
            return chat(nlg.msg_pending_cancelled(str((outcome.action or {}).get("human_summary") or "")))
        response = self._replay(context, deferred)
        response.meta["replayed_from_choice"] = True
        return response
