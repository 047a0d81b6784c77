import json

import pytest

from catalog_agent.semantic_gate import STRUCTURAL_FLOOR, SemanticGate, is_selector_grounded


def _action(intent="set_price", field="price", selector=None, raw_value_text="5", confidence=0.9):
    return {
        "schema_version": "1.0",
        "kind": "action",
        "confidence": confidence,
        "action": {
            "intent": intent,
            "field": field,
            "selector": selector or {"type": "id", "value": "150"},
            "raw_value_text": raw_value_text,
        },
    }


@pytest.fixture
def gate():
    return SemanticGate()


def test_grounded_action_is_accepted(gate):
    result = gate.validate(_action(), "precio del #150 a 5")
    assert result.ok
    assert result.intent.action["selector"] == {"type": "id", "value": "150"}
    assert not result.floored


def test_raw_json_text_is_parsed(gate):
    raw = "```json\n" + json.dumps(_action()) + "\n```"
    assert gate.validate(raw, "precio del #150 a 5").ok


def test_ungrounded_selector_is_rejected(gate):
    result = gate.validate(_action(), "precio del ultimo a 5")
    assert not result.ok
    assert result.reason == "selector_not_grounded:id"


@pytest.mark.parametrize(
    "payload,reason",
    [
        (dict(_action(), schema_version="2.0"), "bad_schema_version"),
        (dict(_action(), kind="delete"), "bad_kind"),
        (_action(intent="delete_product"), "action_not_allowlisted"),
        (_action(field="stock"), "intent_field_mismatch"),
        (_action(raw_value_text=""), "missing_raw_value_text"),
    ],
)
def test_schema_violations(gate, payload, reason):
    result = gate.validate(payload, "precio del #150 a 5")
    assert not result.ok
    assert result.reason == reason


def test_low_confidence_complete_action_is_floored(gate):
    result = gate.validate(_action(confidence=0.1), "precio del #150 a 5")
    assert result.ok and result.floored
    assert result.intent.confidence == STRUCTURAL_FLOOR


def test_low_confidence_incomplete_action_becomes_clarify(gate):
    result = gate.validate(_action(raw_value_text="", confidence=0.2), "cambia el precio")
    assert result.ok
    assert result.intent.kind == "clarify"
    assert len(result.intent.clarify["options"]) == 2


def test_query_allowlist(gate):
    ok = gate.validate({"schema_version": "1.0", "kind": "query", "confidence": 0.9, "query": {"code": "a1", "mode": "FULL"}}, "x")
    assert ok.intent.query == {"code": "A1", "mode": "full"}
    bad = gate.validate({"schema_version": "1.0", "kind": "query", "confidence": 0.9, "query": {"code": "Z9"}}, "x")
    assert bad.reason == "query_not_allowlisted"


def test_garbage_output_is_rejected(gate):
    assert not gate.validate("no json here", "hola").ok


def test_grounding_rules():
    assert is_selector_grounded("last", "", "precio del último a 5")
    assert is_selector_grounded("sku", "REM-AZ", "stock del rem-az a 3")
    assert is_selector_grounded("name", "Remera Azul", "que la remera azul salga 10")
    assert not is_selector_grounded("name", "Remera Roja", "que la remera azul salga 10")
    assert not is_selector_grounded("id", "15", "precio del #150 a 5")


def _clarify(options):
    return {
        "schema_version": "1.0",
        "kind": "clarify",
        "confidence": 0.8,
        "clarify": {"question": "¿Qué producto?", "options": options},
    }


def test_clarify_needs_at_least_two_options(gate):
    result = gate.validate(_clarify(["Remera Azul"]), "cambia la remera")
    assert not result.ok
    assert result.reason == "clarify_too_few_options"
    assert gate.validate(_clarify(["Remera Azul", ""]), "cambia la remera").reason == "clarify_too_few_options"


def test_clarify_options_are_capped_at_four(gate):
    options = ["Remera Azul", "Remera Roja", "Remera Negra", "Buzo Canguro", "Gorra Trucker"]
    result = gate.validate(_clarify(options), "cambia la remera")
    assert result.ok
    assert result.intent.clarify["options"] == options[:4]
