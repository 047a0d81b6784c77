import pytest

from catalog_agent import nlg
from catalog_agent.agent import CatalogAgent

from conftest import FakeLLM, pending_of


def _price_intent(selector, raw_value_text="3100", confidence=0.9):
    return {
        "schema_version": "1.0",
        "kind": "action",
        "confidence": confidence,
        "action": {"intent": "set_price", "field": "price", "selector": selector, "raw_value_text": raw_value_text},
    }


@pytest.fixture
def make_agent(store, catalog, clock):
    def build(llm):
        return CatalogAgent(store=store, catalog=catalog, llm=llm, clock=clock)

    return build


def test_grounded_model_action_is_proposed(make_agent):
    llm = FakeLLM(intent=_price_intent({"type": "name", "value": "Remera Azul"}))
    envelope = make_agent(llm).handle_message("t1", "quiero que la remera azul salga 3100")
    assert envelope["mode"] == "execute"
    assert envelope["actions"][0]["entity_id"] == 12
    assert envelope["actions"][0]["changes"] == {"regular_price": "3100.00"}
    assert envelope["meta"]["semantic"] is True
    assert envelope["meta"]["route"] == "semantic"


def test_ungrounded_selector_falls_back_to_prose(make_agent):
    llm = FakeLLM(intent=_price_intent({"type": "id", "value": "150"}, raw_value_text="50"), draft="No entendí bien, ¿qué producto?")
    envelope = make_agent(llm).handle_message("t1", "quiero que la gorra salga 50")
    assert envelope["mode"] == "chat"
    assert envelope["actions"] == []
    assert envelope["message_to_user"] == "No entendí bien, ¿qué producto?"
    assert envelope["meta"]["route"] == "model_fallback"
    assert pending_of(envelope) is None


def test_model_query_code_is_answered(make_agent):
    llm = FakeLLM(intent={"schema_version": "1.0", "kind": "query", "confidence": 0.9, "query": {"code": "A3"}})
    envelope = make_agent(llm).handle_message("t1", "mostrame los que no tienen codigo")
    assert envelope["mode"] == "consult"
    assert "Pantalón Cargo (ID 30)" in envelope["message_to_user"]
    assert envelope["meta"]["route"] == "semantic"


def test_model_failure_degrades_to_canned_reply(make_agent):
    envelope = make_agent(FakeLLM(fail=True)).handle_message("t1", "quiero que la gorra salga 50")
    assert envelope["message_to_user"] == nlg.FALLBACK
    assert envelope["meta"]["fallback"] == "canned"
    statuses = {entry["step"]: entry["status"] for entry in envelope["meta"]["trace"] if "step" in entry}
    assert statuses.get("semantic") == "error"


def test_greeting_uses_model_draft(make_agent):
    llm = FakeLLM(draft="¡Buenas! Contame qué querés cambiar.")
    assert make_agent(llm).handle_message("t1", "hola")["message_to_user"] == "¡Buenas! Contame qué querés cambiar."
    assert make_agent(FakeLLM(fail=True)).handle_message("t2", "hola")["message_to_user"] == nlg.GREETING


def test_model_is_not_consulted_while_pending(make_agent):
    llm = FakeLLM(intent=_price_intent({"type": "name", "value": "Remera Azul"}))
    agent = make_agent(llm)
    agent.handle_message("t1", "precio 100")
    agent.handle_message("t1", "hola")
    assert llm.calls == []
