import json

from catalog_agent.context_lite import MAX_LITE_CHARS, build_context_lite, context_lite_json


def test_pending_action_is_flagged_without_its_changes(catalog):
    state = {
        "pending_action": {"nonce": "n1", "action": {"changes": {"regular_price": "1.00"}}},
        "last_product": {"id": 12, "title": "Remera Azul"},
        "last_target_product_id": 12,
    }
    lite = build_context_lite(state, catalog)
    assert lite["store_state"]["has_pending_action"] is True
    assert lite["stats"]["total_products"] == 7
    assert "regular_price" not in context_lite_json(lite)


def test_oversized_context_is_trimmed():
    lite = build_context_lite({"last_product": {"id": 1, "title": "x"}})
    lite["stats"]["padding"] = "y" * (MAX_LITE_CHARS + 10)
    decoded = json.loads(context_lite_json(lite))
    assert decoded["trimmed"] is True
    assert "stats" not in decoded
