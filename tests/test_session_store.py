from catalog_agent.session_store import SessionStore

from conftest import FakeClock


def test_patch_is_a_shallow_merge(store):
    store.patch("t1", {"last_target_product_id": 12})
    store.patch("t1", {"last_action_kind": "price"})
    state = store.get("t1")
    assert state["last_target_product_id"] == 12
    assert state["last_action_kind"] == "price"
    assert "updated_at" in state


def test_get_returns_a_copy(store):
    store.patch("t1", {"last_action_kind": "stock"})
    state = store.get("t1")
    state["last_action_kind"] = "price"
    assert store.get("t1")["last_action_kind"] == "stock"


def test_snapshot_contains_every_known_key(store):
    snapshot = store.snapshot("unknown")
    assert snapshot["pending_action"] is None
    assert snapshot["pending_target_selection"] is None
    assert snapshot["last_event"] is None


def test_expired_pending_action_is_reported_once(clock, store):
    store.patch("t1", {"pending_action": {"action": {"human_summary": "Actualizar producto: precio 100"}}})
    clock.advance(601)
    state = store.get("t1")
    assert state.get("pending_action") is None
    assert state["last_event"]["type"] == "expired"
    event = store.consume_last_event("t1")
    assert event["summary"] == "Actualizar producto: precio 100"
    assert store.consume_last_event("t1") is None


def test_state_without_pending_expires_silently(clock, store):
    store.patch("t1", {"last_target_product_id": 7})
    clock.advance(601)
    state = store.get("t1")
    assert "last_event" not in state
    assert state.get("last_target_product_id") is None


def test_durable_copy_round_trip(tmp_path):
    path = tmp_path / "sessions.json"
    clock = FakeClock()
    SessionStore(path, clock=clock).patch("t1", {"last_action_kind": "price"})
    reloaded = SessionStore(path, clock=clock)
    assert reloaded.get("t1")["last_action_kind"] == "price"


def test_max_sessions_prunes_least_recent(clock):
    store = SessionStore(max_sessions=2, clock=clock)
    for tenant in ("a", "b", "c"):
        store.patch(tenant, {"last_action_kind": "price"})
        clock.advance(1)
    assert store.get("a") == {}
    assert store.get("c")["last_action_kind"] == "price"


def test_clear_drops_everything(store):
    store.patch("t1", {"pending_action": {"nonce": "x"}})
    store.clear("t1")
    assert store.get("t1") == {}
