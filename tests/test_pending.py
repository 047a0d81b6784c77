import itertools

import pytest

from catalog_agent.pending import PendingActionManager


@pytest.fixture
def manager(store, catalog, clock):
    counter = itertools.count(1)
    return PendingActionManager(store, catalog, clock=clock, nonce_factory=lambda: f"n{next(counter)}")


def test_propose_persists_single_envelope(manager, store):
    outcome = manager.propose("t1", 5, {"regular_price": "4500.00"}, "price", "Buzo Canguro")
    assert outcome.status == "proposed"
    envelope = store.get("t1")["pending_action"]
    assert envelope["nonce"] == "n1"
    assert envelope["action"]["changes"] == {"regular_price": "4500.00"}
    assert envelope["action"]["human_summary"] == "Actualizar producto: precio 4500"

    second = manager.propose("t1", 12, {"regular_price": "1.00"}, "price")
    assert second.status == "blocked"
    assert store.get("t1")["pending_action"]["action"]["entity_id"] == 5


def test_noop_proposal_leaves_state_untouched(manager, store):
    outcome = manager.propose("t1", 5, {"regular_price": "5000"}, "price")
    assert outcome.status == "noop"
    assert store.get("t1") == {}


def test_propose_clears_followups(manager, store):
    store.patch("t1", {"pending_followup_action": {"expect": "number"}, "pending_target_selection": {"total": 3}})
    manager.propose("t1", 5, {"regular_price": "4500.00"}, "price")
    state = store.get("t1")
    assert state["pending_followup_action"] is None
    assert state["pending_target_selection"] is None
    assert state["last_target_product_id"] == 5


def test_ack_is_compare_and_swap(manager, store):
    manager.propose("t1", 5, {"regular_price": "4500.00"}, "price")
    assert manager.ack("t1", "wrong").status == "stale"
    assert store.get("t1")["pending_action"] is not None
    assert manager.ack("t1", "n1").status == "acked"
    assert manager.ack("t1", "n1").status == "stale"
    assert manager.cancel_with_nonce("t1", "n1").status == "stale"
    assert store.get("t1")["last_event"]["type"] == "executed"


def test_cancel_with_nonce_then_ack_is_stale(manager, store):
    manager.propose("t1", 5, {"regular_price": "4500.00"}, "price")
    assert manager.cancel_with_nonce("t1", "n1").status == "cancelled"
    assert manager.ack("t1", "n1").status == "stale"
    assert store.get("t1")["last_event"]["type"] == "cancelled"


def test_merge_is_idempotent(manager):
    manager.propose("t1", 5, {"regular_price": "4500.00"}, "price")
    first = manager.merge("t1", {"manage_stock": True, "stock_quantity": 9})
    assert first.status == "merged"
    assert first.action["changes"] == {"regular_price": "4500.00", "manage_stock": True, "stock_quantity": 9}
    assert first.action["kind"] == "multi"
    assert first.envelope["nonce"] == "n1"
    again = manager.merge("t1", {"manage_stock": True, "stock_quantity": 9})
    assert again.status == "noop"
    assert again.action["changes"] == first.action["changes"]


def test_merge_back_to_catalog_value_drops_the_action(manager, store):
    manager.propose("t1", 5, {"regular_price": "4500.00"}, "price")
    outcome = manager.merge("t1", {"regular_price": "5000.00"})
    assert outcome.status == "dropped"
    assert store.get("t1")["pending_action"] is None


def test_replace_choice_returns_deferred_message(manager, store):
    manager.propose("t1", 5, {"regular_price": "4500.00"}, "price")
    manager.open_choice("t1", "cambiá el stock del producto 999 a 4")
    outcome = manager.resolve_choice("t1", "replace")
    assert outcome.status == "replaced"
    assert outcome.detail["deferred_message"] == "cambiá el stock del producto 999 a 4"
    state = store.get("t1")
    assert state["pending_action"] is None
    assert state["pending_choice"] is None


def test_keep_choice_keeps_pending(manager, store):
    manager.propose("t1", 5, {"regular_price": "4500.00"}, "price")
    manager.open_choice("t1", "otra cosa")
    assert manager.resolve_choice("t1", "keep").status == "kept"
    assert store.get("t1")["pending_action"]["nonce"] == "n1"
    assert manager.resolve_choice("t1", "keep").status == "none"
