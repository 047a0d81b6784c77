"""Catalog agent orchestration.

Role:
    Wires the session store, catalog, resolver, pending manager and semantic gate into
    the ordered flow chain and exposes the operations used by the HTTP layer: chat turns,
    executor acknowledgements, button cancels, replace-choice resolution, "load more"
    for target selections and session reset.

Route order (first flow that answers wins):
    chitchat -> deterministic -> followup -> query -> pending_guard ->
    targeted_update -> field_edit -> semantic -> model_fallback

    Chit-chat, deterministic and follow-up flows decline whenever a pending action,
    target selection or replace choice is open, so the pending guard intercepts every
    non read-only message before any flow that could create a second proposal.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from . import nlg
from .errors import ExternalError
from .flows.base import FlowServices, selection_response
from .flows.chitchat import ChitchatFlow
from .flows.deterministic import DeterministicFlow
from .flows.field_edit import FieldEditFlow
from .flows.followup import FollowupFlow
from .flows.model_fallback import ModelFallbackFlow
from .flows.pending_guard import PendingGuardFlow
from .flows.query import QueryFlow
from .flows.semantic import SemanticFlow
from .flows.targeted_update import TargetedUpdateFlow
from .pending import PendingActionManager
from .response_builder import AgentResponse, ResponseBuilder, chat, clarify, execute
from .router import FlowRouter, RouteStep, TurnContext
from .semantic_gate import SemanticGate
from .session_store import SessionStore
from .target_resolver import TargetResolver
from .utils import normalize_message

logger = logging.getLogger("catalog_agent.agent")

ROUTE_ORDER = (
    "chitchat",
    "deterministic",
    "followup",
    "query",
    "pending_guard",
    "targeted_update",
    "field_edit",
    "semantic",
    "model_fallback",
)
MAX_MESSAGE_CHARS = 2000


class CatalogAgent:
    def __init__(
        self,
        store: SessionStore,
        catalog,
        llm=None,
        gate: Optional[SemanticGate] = None,
        page_size: int = 20,
        cache_limit: int = 50,
        clock: Callable[[], float] = time.time,
        nonce_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        """Purpose: Initialize collaborators and build the flow router.
        Inputs/Outputs: Inputs are the session store, catalog store, optional language model
            client, optional gate, selection limits, clock and nonce factory; no return value.
        Side Effects / State: Constructs a FlowRouter with the steps of ROUTE_ORDER.
        Dependencies: Every flow module, PendingActionManager, TargetResolver, ResponseBuilder.
        Failure Modes: None at init; catalog file errors surface on first use.
        If Removed: The HTTP layer has nothing to dispatch messages to.
        Testing Notes: Build with an in-memory JsonCatalogStore and a fake llm.
        """
        # Shared services first, then one flow object per route step.
        self._store = store
        self._catalog = catalog
        self._clock = clock
        manager_kwargs: Dict[str, Any] = {"clock": clock}
        if nonce_factory is not None:
            manager_kwargs["nonce_factory"] = nonce_factory
        self._pending = PendingActionManager(store, catalog, **manager_kwargs)
        self._resolver = TargetResolver(catalog, page_size=page_size, cache_limit=cache_limit, clock=clock)
        self._services = FlowServices(
            store=store,
            catalog=catalog,
            resolver=self._resolver,
            pending=self._pending,
            gate=gate or SemanticGate(),
            llm=llm,
            clock=clock,
        )
        self._builder = ResponseBuilder(store)
        flows = {
            "chitchat": ChitchatFlow(self._services),
            "deterministic": DeterministicFlow(self._services),
            "followup": FollowupFlow(self._services),
            "query": QueryFlow(self._services),
            "pending_guard": PendingGuardFlow(self._services, replay=self._replay),
            "targeted_update": TargetedUpdateFlow(self._services),
            "field_edit": FieldEditFlow(self._services),
            "semantic": SemanticFlow(self._services),
            "model_fallback": ModelFallbackFlow(self._services),
        }
        self._router = FlowRouter([RouteStep(name, flows[name].try_handle) for name in ROUTE_ORDER])

    @property
    def route_names(self) -> List[str]:
        return self._router.names

    def handle_message(self, session_id: str, message: str) -> Dict[str, Any]:
        """Purpose: Run one chat turn and return the outbound envelope.
        Inputs/Outputs: Inputs are the session id and the raw message; output is the
            envelope dict {ok, mode, message_to_user, actions, confirmation, clarification,
            meta, session_state}.
        Side Effects / State: Flows patch the session store; last_event is consumed.
        Dependencies: FlowRouter.route and ResponseBuilder.build.
        Failure Modes: Collaborator failures are declined inside the router; an empty
            message gets the usage hint without touching state.
        If Removed: The chat endpoint cannot answer.
        Testing Notes: "precio 100" on an empty session returns mode execute with one action.
        """
        # One message in, one envelope out.
        raw = (message or "").strip()[:MAX_MESSAGE_CHARS]
        logger.info("session=%s message=%s", session_id, raw)
        if not raw:
            return self._builder.build(session_id, chat(nlg.USAGE_HINT, route="empty"), [])
        context = self._new_context(session_id, raw)
        response = self._router.route(context)
        envelope = self._builder.build(session_id, response, context.trace)
        logger.info(
            "session=%s route=%s mode=%s pending=%s",
            session_id,
            context.route,
            envelope["mode"],
            bool(envelope["session_state"].get("pending_action")),
        )
        return envelope

    def _new_context(self, session_id: str, raw: str) -> TurnContext:
        return TurnContext(
            tenant=session_id,
            raw=raw,
            normalized=normalize_message(raw),
            state=self._store.get(session_id),
        )

    def _replay(self, context: TurnContext, message: str) -> AgentResponse:
        """Re-run the router for a deferred message after the pending action was replaced."""
        replay_context = self._new_context(context.tenant, message)
        replay_context.trace = context.trace
        context.log("replay", "deferred message re-submitted")
        response = self._router.route(replay_context)
        return response

    def state(self, session_id: str) -> Dict[str, Any]:
        return self._store.snapshot(session_id)

    def ack_pending(self, session_id: str, nonce: str) -> Dict[str, Any]:
        """Executor success acknowledgement; clears the pending action only for a matching nonce."""
        return self._guarded(session_id, "ack", lambda: self._ack_pending(session_id, nonce))

    def _ack_pending(self, session_id: str, nonce: str) -> Dict[str, Any]:
        outcome = self._pending.ack(session_id, nonce)
        if outcome.status != "acked":
            response = chat(nlg.STALE_NONCE, route="ack")
            response.ok = False
            return self._builder.build(session_id, response, [])
        summary = str((outcome.action or {}).get("human_summary") or "")
        return self._builder.build(session_id, chat(nlg.msg_pending_executed(summary), route="ack"), [])

    def cancel_pending(self, session_id: str, nonce: str) -> Dict[str, Any]:
        """Cancel button; a stale nonce changes nothing and returns ok False."""
        return self._guarded(session_id, "cancel", lambda: self._cancel_pending(session_id, nonce))

    def _cancel_pending(self, session_id: str, nonce: str) -> Dict[str, Any]:
        outcome = self._pending.cancel_with_nonce(session_id, nonce)
        if outcome.status != "cancelled":
            response = chat(nlg.STALE_NONCE, route="cancel")
            response.ok = False
            return self._builder.build(session_id, response, [])
        summary = str((outcome.action or {}).get("human_summary") or "")
        return self._builder.build(session_id, chat(nlg.msg_pending_cancelled(summary), route="cancel"), [])

    def resolve_choice(self, session_id: str, choice: str) -> Dict[str, Any]:
        """Purpose: Resolve the replace choice from its buttons.
        Inputs/Outputs: Inputs are the session id and "keep" or "replace"; output is the envelope.
        Side Effects / State: keep clears pending_choice; replace cancels the pending action
            and re-runs the deferred message through the router.
        Dependencies: PendingActionManager.resolve_choice and the router.
        Failure Modes: Without an open choice the answer is ok False and nothing changes.
        If Removed: The choice prompt's buttons do nothing.
        Testing Notes: With #5 pending, "cambiá el stock del producto 999 a 4" then replace
            proposes the stock change for #999.
        """
        # The deferred message runs from scratch with the pending action gone.
        outcome = self._pending.resolve_choice(session_id, choice)
        if outcome.status == "kept":
            response = execute(nlg.msg_pending_kept(), outcome.action or {}, route="choice", nonce=(outcome.envelope or {}).get("nonce"))
            return self._builder.build(session_id, response, [])
        if outcome.status == "replaced":
            deferred = str(outcome.detail.get("deferred_message") or "")
            context = self._new_context(session_id, deferred)
            context.log("replay", "deferred message re-submitted")
            response = self._router.route(context)
            response.meta["replayed_from_choice"] = True
            return self._builder.build(session_id, response, context.trace)
        response = chat(nlg.NO_PENDING_TO_CONFIRM, route="choice")
        response.ok = False
        return self._builder.build(session_id, response, [])

    def load_more(self, session_id: str) -> Dict[str, Any]:
        """Next page of the open target selection."""
        return self._guarded(session_id, "selection", lambda: self._load_more(session_id))

    def _load_more(self, session_id: str) -> Dict[str, Any]:
        selection = self._store.get(session_id).get("pending_target_selection")
        if not isinstance(selection, dict):
            response = chat("No hay una selección de producto abierta.", route="selection")
            response.ok = False
            return self._builder.build(session_id, response, [])
        before = int(selection.get("offset") or 0)
        updated = self._resolver.load_more(selection)
        self._store.patch(session_id, {"pending_target_selection": updated})
        if int(updated.get("offset") or 0) == before:
            response = clarify(nlg.SELECTION_END, route="selection")
        else:
            response = selection_response(self._services, updated)
            response.meta["route"] = "selection"
        return self._builder.build(session_id, response, [])

    def _guarded(self, session_id: str, route: str, handler: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
        """Run a button operation, answering a collaborator failure with the canned fallback."""
        try:
            return handler()
        except ExternalError as exc:
            logger.warning("session=%s route=%s external error: %s", session_id, route, exc)
            response = chat(nlg.FALLBACK, route=route, fallback="canned")
            response.ok = False
            trace = [{"event": route, "step": route, "detail": f"{exc.collaborator} unavailable", "status": "error"}]
            return self._builder.build(session_id, response, trace)

    def reset(self, session_id: str) -> Dict[str, Any]:
        self._store.clear(session_id)
        logger.info("session=%s reset", session_id)
        return self._store.snapshot(session_id)
