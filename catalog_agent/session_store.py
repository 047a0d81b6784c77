from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Callable, Dict, Optional

logger = logging.getLogger("catalog_agent.session")

SNAPSHOT_KEYS = (
    "pending_action",
    "pending_target_selection",
    "pending_followup_action",
    "pending_last_update",
    "pending_field_edit",
    "pending_choice",
    "last_target_product_id",
    "last_action_kind",
    "last_product",
    "last_event",
    "updated_at",
)
FOLLOWUP_KEYS = (
    "pending_followup_action",
    "pending_last_update",
    "pending_field_edit",
)


class SessionStore:
    """Per-tenant conversation state with shallow-patch semantics, TTL and a JSON durable copy."""

    def __init__(
        self,
        path: Optional[Path] = None,
        max_sessions: Optional[int] = None,
        ttl_sec: int = 2 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Purpose: Initialize the store and hydrate it from the durable copy if present.
        Inputs/Outputs: Inputs are an optional JSON path, a max_sessions cap, the TTL in
            seconds and a clock callable; no return value.
        Side Effects / State: Loads persisted states into the in-memory cache.
        Dependencies: Calls _load; the clock is injectable for TTL tests.
        Failure Modes: JSON decode errors leave an empty cache.
        If Removed: Pending actions and follow-ups are forgotten between messages.
        Testing Notes: Use tmp_path and a fake clock to cover TTL and persistence.
        """
        # Keep configuration and preload persisted states if present.
        self._path = path
        self._max_sessions = max_sessions
        self._ttl_sec = ttl_sec
        self._clock = clock
        self._states: Dict[str, Dict[str, object]] = {}
        self._load()

    def _load(self) -> None:
        """Read the durable copy into memory, dropping malformed entries."""
        if not self._path or not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("session store file is not valid JSON path=%s", self._path)
            return
        states = data.get("states", {}) if isinstance(data, dict) else {}
        if isinstance(states, dict):
            self._states = {tenant: state for tenant, state in states.items() if isinstance(state, dict)}
        if self._prune_sessions():
            self._persist()

    def _persist(self) -> None:
        """Purpose: Write every tenant state to the durable JSON copy.
        Inputs/Outputs: Writes to self._path; no return value.
        Side Effects / State: Creates the parent directory and rewrites the file.
        Dependencies: Uses json.dumps and Path.write_text.
        Failure Modes: IO errors raise exceptions (not caught here).
        If Removed: A restart loses every pending action.
        Testing Notes: Patch a state, build a new store on the same path and read it back.
        """
        # Serialize the whole cache; states are small dicts.
        if not self._path:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"states": self._states}
        self._path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")

    def _is_expired(self, state: Dict[str, object]) -> bool:
        updated_at = state.get("updated_at")
        if not isinstance(updated_at, (int, float)):
            return False
        return (self._clock() - updated_at) > self._ttl_sec

    def _expire(self, tenant: str, state: Dict[str, object]) -> Dict[str, object]:
        """Purpose: Replace an expired state, keeping one "expired" event for a dropped action.
        Inputs/Outputs: Inputs are tenant and the stale state; output is the fresh state.
        Side Effects / State: Rewrites the cached state and persists it.
        Dependencies: Uses _persist and the clock.
        Failure Modes: None beyond persistence IO errors.
        If Removed: Stale pending actions resurface after the TTL without notice.
        Testing Notes: Advance the fake clock past the TTL and read last_event once.
        """
        # Drop everything; surface an expired pending action once through last_event.
        fresh: Dict[str, object] = {}
        pending = state.get("pending_action")
        if isinstance(pending, dict):
            action = pending.get("action") or {}
            fresh["last_event"] = {
                "type": "expired",
                "summary": str(action.get("human_summary") or ""),
                "at": self._clock(),
            }
            logger.info("tenant=%s pending_action expired", tenant)
        fresh["updated_at"] = self._clock()
        self._states[tenant] = fresh
        self._persist()
        return fresh

    def get(self, tenant: str) -> Dict[str, object]:
        """Return a shallow copy of the tenant state, expiring it when past the TTL."""
        state = self._states.get(tenant)
        if state is None:
            return {}
        if self._is_expired(state):
            state = self._expire(tenant, state)
        return dict(state)

    def patch(self, tenant: str, partial: Dict[str, object]) -> Dict[str, object]:
        """Purpose: Shallow-merge keys into the tenant state and stamp updated_at.
        Inputs/Outputs: Inputs are tenant and a partial dict; output is the new state copy.
        Side Effects / State: Mutates the cache, prunes old sessions and persists.
        Dependencies: Uses get (for TTL), _prune_sessions and _persist.
        Failure Modes: Persistence IO errors propagate.
        If Removed: Flows cannot store pending actions or follow-ups.
        Testing Notes: Patch twice with different keys and check both survive; None values
            are stored as explicit nulls.
        """
        # Last write wins; no per-field locking.
        state = self.get(tenant)
        state.update(partial or {})
        state["updated_at"] = self._clock()
        self._states[tenant] = state
        self._prune_sessions()
        self._persist()
        return dict(state)

    def touch(self, tenant: str) -> Dict[str, object]:
        return self.patch(tenant, {})

    def clear(self, tenant: str) -> None:
        if self._states.pop(tenant, None) is not None:
            self._persist()

    def consume_last_event(self, tenant: str) -> Optional[Dict[str, object]]:
        """Pop last_event so it is reported exactly once."""
        state = self.get(tenant)
        event = state.get("last_event")
        if not isinstance(event, dict):
            return None
        self.patch(tenant, {"last_event": None})
        return event

    def snapshot(self, tenant: str) -> Dict[str, object]:
        """Authoritative view of the tenant state with every known key present."""
        state = self.get(tenant)
        snapshot: Dict[str, object] = {key: state.get(key) for key in SNAPSHOT_KEYS}
        for key, value in state.items():
            snapshot.setdefault(key, value)
        return snapshot

    def _prune_sessions(self) -> bool:
        """Drop least-recent tenants above max_sessions; returns True when something was removed."""
        if not self._max_sessions or self._max_sessions <= 0:
            return False
        if len(self._states) <= self._max_sessions:
            return False
        ordered = sorted(
            self._states.items(),
            key=lambda item: float(item[1].get("updated_at") or 0),
            reverse=True,
        )
        keep = {tenant for tenant, _ in ordered[: self._max_sessions]}
        removed = [tenant for tenant in list(self._states.keys()) if tenant not in keep]
        for tenant in removed:
            self._states.pop(tenant, None)
        return bool(removed)
