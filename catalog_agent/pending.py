"""Pending action state machine.

    NONE --propose (not a no-op)--> PROPOSED
    PROPOSED --cancel--> NONE                      (last_event: cancelled)
    PROPOSED --ack(nonce)--> NONE                  (last_event: executed)
    PROPOSED --merge--> PROPOSED                   (changes rewritten, same nonce)
    PROPOSED --open_choice--> PROPOSED + pending_choice
    pending_choice --keep--> PROPOSED | --replace--> NONE + deferred message

This module never executes anything. The executor calls ack() after a successful write.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from . import nlg
from .noop import filter_noop_changes, values_equal
from .session_store import FOLLOWUP_KEYS

logger = logging.getLogger("catalog_agent.pending")

ACTION_TYPE = "update_product"


@dataclass
class PendingOutcome:
    """Result of a state machine transition."""
    status: str
    envelope: Optional[Dict[str, Any]] = None
    detail: Dict[str, Any] = field(default_factory=dict)

    @property
    def action(self) -> Optional[Dict[str, Any]]:
        return (self.envelope or {}).get("action")


def _new_nonce() -> str:
    return secrets.token_hex(8)


class PendingActionManager:
    def __init__(
        self,
        store,
        catalog,
        clock: Callable[[], float] = time.time,
        nonce_factory: Callable[[], str] = _new_nonce,
    ) -> None:
        self._store = store
        self._catalog = catalog
        self._clock = clock
        self._nonce_factory = nonce_factory

    def current(self, tenant: str) -> Optional[Dict[str, Any]]:
        envelope = self._store.get(tenant).get("pending_action")
        return envelope if isinstance(envelope, dict) else None

    def build_action(self, entity_id: int, changes: Dict[str, Any], kind: str, title: str = "") -> Dict[str, Any]:
        return {
            "type": ACTION_TYPE,
            "kind": kind,
            "entity_id": int(entity_id),
            "product_id": int(entity_id),
            "product": {"id": int(entity_id), "title": title},
            "changes": dict(changes),
            "change_keys": list(changes.keys()),
            "human_summary": nlg.summarize_update_product_changes(changes),
        }

    def propose(self, tenant: str, entity_id: int, changes: Dict[str, Any], kind: str, title: str = "") -> PendingOutcome:
        """Purpose: Create the pending action for a deterministic change.
        Inputs/Outputs: Inputs are tenant, product id, desired changes, kind and title; output
            is PendingOutcome with status proposed, noop or blocked.
        Side Effects / State: On proposed, persists the envelope {type, action, created_at, nonce}
            and clears target selection, follow-up keys and pending_choice.
        Dependencies: filter_noop_changes reads current catalog values.
        Failure Modes: An existing pending action blocks the proposal; a full no-op leaves the
            state untouched; catalog failures raise ExternalError.
        If Removed: No flow can put a change in front of the user for confirmation.
        Testing Notes: Proposing twice keeps one pending action; an all-equal change returns noop.
        """
        # One pending action at a time, and never a no-op.
        if self.current(tenant):
            logger.info("tenant=%s propose blocked: pending action exists", tenant)
            return PendingOutcome(status="blocked", envelope=self.current(tenant))
        filtered = filter_noop_changes(self._catalog, entity_id, changes)
        if filtered.noop:
            logger.info("tenant=%s propose noop entity=%s keys=%s", tenant, entity_id, ",".join(changes.keys()))
            return PendingOutcome(status="noop", detail={"current": filtered.current, "dropped": filtered.dropped})
        envelope = {
            "type": ACTION_TYPE,
            "action": self.build_action(entity_id, filtered.changes, kind, title),
            "created_at": self._clock(),
            "nonce": self._nonce_factory(),
        }
        partial: Dict[str, Any] = {key: None for key in FOLLOWUP_KEYS}
        partial.update(
            {
                "pending_action": envelope,
                "pending_target_selection": None,
                "pending_choice": None,
                "last_target_product_id": int(entity_id),
                "last_action_kind": kind,
                "last_product": {"id": int(entity_id), "title": title},
            }
        )
        self._store.patch(tenant, partial)
        logger.info(
            "tenant=%s proposed entity=%s kind=%s summary=%s",
            tenant,
            entity_id,
            kind,
            envelope["action"]["human_summary"],
        )
        return PendingOutcome(status="proposed", envelope=envelope)

    def cancel(self, tenant: str, source: str = "chat") -> Optional[Dict[str, Any]]:
        """Cancel the pending action and every follow-up envelope; returns the cancelled envelope."""
        envelope = self.current(tenant)
        if not envelope:
            return None
        summary = str((envelope.get("action") or {}).get("human_summary") or "")
        partial: Dict[str, Any] = {key: None for key in FOLLOWUP_KEYS}
        partial.update(
            {
                "pending_action": None,
                "pending_choice": None,
                "last_event": {"type": "cancelled", "summary": summary, "source": source, "at": self._clock()},
            }
        )
        self._store.patch(tenant, partial)
        logger.info("tenant=%s cancelled source=%s summary=%s", tenant, source, summary)
        return envelope

    def ack(self, tenant: str, nonce: str) -> PendingOutcome:
        """Purpose: Executor acknowledgement, cleared only when the nonce still matches.
        Inputs/Outputs: Inputs are tenant and the nonce shown with the pending card; output is
            PendingOutcome acked or stale.
        Side Effects / State: On acked, clears pending_action/pending_choice and records
            last_event {type: executed}.
        Dependencies: SessionStore get/patch.
        Failure Modes: A stale or missing nonce changes nothing.
        If Removed: A double click on confirm and cancel could both succeed.
        Testing Notes: ack with the right nonce succeeds once; a second ack is stale.
        """
        # Compare-and-swap on the nonce.
        envelope = self.current(tenant)
        if not envelope or not nonce or envelope.get("nonce") != nonce:
            logger.info("tenant=%s ack rejected: stale nonce", tenant)
            return PendingOutcome(status="stale")
        summary = str((envelope.get("action") or {}).get("human_summary") or "")
        self._store.patch(
            tenant,
            {
                "pending_action": None,
                "pending_choice": None,
                "last_event": {"type": "executed", "summary": summary, "at": self._clock()},
            },
        )
        logger.info("tenant=%s executed summary=%s", tenant, summary)
        return PendingOutcome(status="acked", envelope=envelope)

    def cancel_with_nonce(self, tenant: str, nonce: str) -> PendingOutcome:
        envelope = self.current(tenant)
        if not envelope or not nonce or envelope.get("nonce") != nonce:
            logger.info("tenant=%s cancel rejected: stale nonce", tenant)
            return PendingOutcome(status="stale")
        self.cancel(tenant, source="button")
        return PendingOutcome(status="cancelled", envelope=envelope)

    def merge(self, tenant: str, new_changes: Dict[str, Any]) -> PendingOutcome:
        """Purpose: Merge or adjust changes into the pending action of the same product.
        Inputs/Outputs: Inputs are tenant and the newly parsed changes; output is PendingOutcome
            with status merged, noop (already pending), dropped (everything back to the catalog
            value) or none (nothing pending).
        Side Effects / State: Rewrites action.changes/human_summary in place, keeping the nonce.
        Dependencies: values_equal for pending comparison, filter_noop_changes for the catalog.
        Failure Modes: Catalog failures raise ExternalError.
        If Removed: "mejor a 120" would need cancel + a new request.
        Testing Notes: Merging the same value twice yields the same changes as merging once.
        """
        # Drop keys already pending, then re-run the catalog no-op filter on the result.
        envelope = self.current(tenant)
        if not envelope:
            return PendingOutcome(status="none")
        action = dict(envelope.get("action") or {})
        pending_changes = dict(action.get("changes") or {})
        effective = dict(new_changes or {})
        if "stock_quantity" in effective and values_equal(
            "stock_quantity", effective["stock_quantity"], pending_changes.get("stock_quantity")
        ):
            effective.pop("stock_quantity", None)
            effective.pop("manage_stock", None)
        for key in list(effective.keys()):
            if key in pending_changes and values_equal(key, effective[key], pending_changes[key]):
                effective.pop(key)
        if not effective:
            return PendingOutcome(status="noop", envelope=envelope)

        entity_id = int(action.get("entity_id") or action.get("product_id") or 0)
        merged = dict(pending_changes)
        merged.update(effective)
        filtered = filter_noop_changes(self._catalog, entity_id, merged)
        if filtered.noop:
            self._store.patch(
                tenant,
                {
                    "pending_action": None,
                    "pending_choice": None,
                    "last_event": {
                        "type": "noop",
                        "summary": str(action.get("human_summary") or ""),
                        "at": self._clock(),
                    },
                },
            )
            logger.info("tenant=%s merge collapsed to catalog values entity=%s", tenant, entity_id)
            return PendingOutcome(status="dropped", envelope=envelope, detail={"current": filtered.current})

        action["changes"] = filtered.changes
        action["change_keys"] = list(filtered.changes.keys())
        action["human_summary"] = nlg.summarize_update_product_changes(filtered.changes)
        action["kind"] = _kind_of(filtered.changes)
        updated = dict(envelope)
        updated["action"] = action
        self._store.patch(tenant, {"pending_action": updated})
        logger.info("tenant=%s merged entity=%s summary=%s", tenant, entity_id, action["human_summary"])
        return PendingOutcome(status="merged", envelope=updated)

    def open_choice(self, tenant: str, deferred_message: str) -> Dict[str, Any]:
        """Store the REPLACE_CHOICE record with the deferred message kept verbatim."""
        envelope = self.current(tenant) or {}
        choice = {
            "deferred_message": deferred_message,
            "nonce": envelope.get("nonce"),
            "created_at": self._clock(),
        }
        self._store.patch(tenant, {"pending_choice": choice})
        logger.info("tenant=%s replace choice opened", tenant)
        return choice

    def resolve_choice(self, tenant: str, choice: str) -> PendingOutcome:
        """Purpose: Resolve an open REPLACE_CHOICE.
        Inputs/Outputs: Inputs are tenant and "keep" or "replace"; output is PendingOutcome
            kept (envelope unchanged), replaced (detail.deferred_message to re-submit) or none.
        Side Effects / State: Clears pending_choice; replace also cancels the pending action.
        Dependencies: cancel().
        Failure Modes: Unknown choices and missing records return none.
        If Removed: The two buttons of the choice prompt do nothing.
        Testing Notes: replace returns the deferred message verbatim and leaves no pending action.
        """
        # The deferred message is re-run by the caller through the router.
        record = self._store.get(tenant).get("pending_choice")
        if not isinstance(record, dict) or choice not in {"keep", "replace"}:
            return PendingOutcome(status="none")
        envelope = self.current(tenant)
        if choice == "keep" or not envelope:
            self._store.patch(tenant, {"pending_choice": None})
            return PendingOutcome(status="kept" if envelope else "none", envelope=envelope)
        self.cancel(tenant, source="replace")
        return PendingOutcome(
            status="replaced",
            envelope=envelope,
            detail={"deferred_message": str(record.get("deferred_message") or "")},
        )


def _kind_of(changes: Dict[str, Any]) -> str:
    has_price = "regular_price" in changes
    has_stock = "stock_quantity" in changes
    if has_price and has_stock:
        return "multi"
    if has_price:
        return "price"
    if has_stock:
        return "stock"
    return "field"
