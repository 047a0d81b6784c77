from __future__ import annotations

import json
import logging
from typing import Any, Dict

logger = logging.getLogger("catalog_agent.context")

LITE_VERSION = "1.0"
MAX_LITE_CHARS = 2500


def build_context_lite(state: Dict[str, Any], catalog=None) -> Dict[str, Any]:
    """Purpose: Build the compact context the language model is allowed to see.
    Inputs/Outputs: Inputs are the session state and an optional catalog; output is a
        JSON-able dict {lite_version, stats, store_state, flags}.
    Side Effects / State: None; reads catalog.count() when a catalog is given.
    Dependencies: None beyond the catalog store interface.
    Failure Modes: Catalog errors propagate as ExternalError to the calling flow.
    If Removed: Prompts carry no session context and follow-ups read worse.
    Testing Notes: A pending action sets flags.has_pending_action without leaking its changes.
    """
    # Only booleans, ids and short labels; never raw product data or pending changes.
    state = state or {}
    last_product = state.get("last_product") if isinstance(state.get("last_product"), dict) else None
    stats = {"total_products": catalog.count() if catalog is not None else None}
    return {
        "lite_version": LITE_VERSION,
        "stats": stats,
        "store_state": {
            "has_pending_action": bool(state.get("pending_action")),
            "has_pending_target_selection": bool(state.get("pending_target_selection")),
            "last_target_product_id": state.get("last_target_product_id"),
            "last_action_kind": state.get("last_action_kind"),
            "last_product": {"id": last_product.get("id"), "title": str(last_product.get("title") or "")[:80]}
            if last_product
            else None,
        },
        "flags": {
            "has_followup": bool(state.get("pending_followup_action") or state.get("pending_last_update")),
            "has_field_edit": bool(state.get("pending_field_edit")),
            "has_pending_choice": bool(state.get("pending_choice")),
        },
    }


def context_lite_json(lite: Dict[str, Any]) -> str:
    """Serialize Context Lite, falling back to a minimal form above MAX_LITE_CHARS."""
    encoded = json.dumps(lite, ensure_ascii=False)
    if len(encoded) <= MAX_LITE_CHARS:
        return encoded
    store_state = lite.get("store_state") or {}
    minimal = {
        "lite_version": lite.get("lite_version", LITE_VERSION),
        "trimmed": True,
        "store_state": {
            "has_pending_action": store_state.get("has_pending_action"),
            "has_pending_target_selection": store_state.get("has_pending_target_selection"),
            "last_target_product_id": store_state.get("last_target_product_id"),
        },
    }
    logger.debug("context lite trimmed from %s chars", len(encoded))
    return json.dumps(minimal, ensure_ascii=False)
