from catalog_agent import nlg
from catalog_agent.errors import ExternalError

from conftest import pending_of


def _strip(snapshot):
    return {key: value for key, value in snapshot.items() if key != "updated_at"}


def test_shorthand_price_targets_newest_product(agent):
    envelope = agent.handle_message("t1", "precio 100")
    assert envelope["mode"] == "execute"
    assert "100" in envelope["message_to_user"]
    action = envelope["actions"][0]
    assert action["entity_id"] == 1000
    assert action["changes"] == {"regular_price": "100.00"}
    assert envelope["confirmation"]["required"] is True
    assert pending_of(envelope)["action"]["changes"]["regular_price"] == "100.00"
    assert envelope["meta"]["route"] == "deterministic"


def test_repeated_request_merges_instead_of_stacking(agent):
    first = agent.handle_message("t1", "cambiá el precio del último a 9999")
    nonce = pending_of(first)["nonce"]
    second = agent.handle_message("t1", "cambiá el precio del último a 9999")
    assert second["mode"] == "execute"
    assert second["actions"][0]["changes"]["regular_price"] == "9999.00"
    assert pending_of(second)["nonce"] == nonce
    assert second["meta"]["route"] == "pending_guard"


def test_negative_stock_is_rejected_without_pending(agent):
    envelope = agent.handle_message("t1", "stock -5")
    assert envelope["mode"] == "chat"
    assert "no puede ser negativo" in envelope["message_to_user"]
    assert pending_of(envelope) is None


def test_name_selection_then_index_reply(agent):
    envelope = agent.handle_message("t1", "cambiá el precio de remera a 3000")
    assert envelope["mode"] == "clarify"
    selection = envelope["session_state"]["pending_target_selection"]
    assert selection["total"] == 3
    assert [item["id"] for item in envelope["meta"]["candidates"]] == [21, 15, 12]

    picked = agent.handle_message("t1", "2")
    assert picked["mode"] == "execute"
    assert picked["actions"][0]["entity_id"] == 15
    assert picked["actions"][0]["changes"] == {"regular_price": "3000.00"}
    assert picked["session_state"]["pending_target_selection"] is None


def test_smalltalk_is_blocked_and_only_touches_state(agent, store, clock):
    agent.handle_message("t1", "precio 100")
    before = store.snapshot("t1")
    clock.advance(5)
    envelope = agent.handle_message("t1", "hola")
    assert envelope["mode"] == "chat"
    assert envelope["message_to_user"] == nlg.msg_pending_block()
    after = store.snapshot("t1")
    assert _strip(after) == _strip(before)
    assert after["updated_at"] > before["updated_at"]


def test_other_product_request_opens_replace_choice(agent):
    agent.handle_message("t1", "cambiá el precio del #5 a 4500")
    raw = "cambiá el stock del producto 999 a 4"
    envelope = agent.handle_message("t1", raw)
    assert envelope["mode"] == "clarify"
    assert envelope["clarification"]["options"] == [nlg.KEEP_LABEL, nlg.REPLACE_LABEL]
    assert envelope["meta"]["deferred_message"] == raw
    assert envelope["session_state"]["pending_choice"]["deferred_message"] == raw
    assert pending_of(envelope)["action"]["entity_id"] == 5


def test_replace_choice_runs_deferred_message(agent):
    agent.handle_message("t1", "cambiá el precio del #5 a 4500")
    agent.handle_message("t1", "cambiá el stock del producto 999 a 4")
    envelope = agent.handle_message("t1", "reemplazar por la nueva")
    assert envelope["mode"] == "execute"
    assert envelope["meta"]["replayed_from_choice"] is True
    action = envelope["actions"][0]
    assert action["entity_id"] == 999
    assert action["changes"] == {"manage_stock": True, "stock_quantity": 4}


def test_keep_choice_button(agent):
    agent.handle_message("t1", "cambiá el precio del #5 a 4500")
    agent.handle_message("t1", "cambiá el stock del producto 999 a 4")
    envelope = agent.resolve_choice("t1", "keep")
    assert envelope["mode"] == "execute"
    assert envelope["actions"][0]["entity_id"] == 5
    assert envelope["session_state"]["pending_choice"] is None


def test_followup_value_edit_merges(agent):
    agent.handle_message("t1", "cambiá el precio del #5 a 4500")
    envelope = agent.handle_message("t1", "mejor a 4200")
    assert envelope["mode"] == "execute"
    assert envelope["actions"][0]["changes"] == {"regular_price": "4200.00"}
    assert envelope["meta"]["merged"] is True


def test_cancel_by_chat_reports_event_once(agent):
    agent.handle_message("t1", "precio 100")
    envelope = agent.handle_message("t1", "ccancelar")
    assert envelope["message_to_user"].startswith("❌ Acción cancelada")
    assert pending_of(envelope) is None
    assert envelope["session_state"]["last_event"]["type"] == "cancelled"
    assert agent.state("t1")["last_event"] is None


def test_confirm_word_points_to_button(agent):
    agent.handle_message("t1", "precio 100")
    assert agent.handle_message("t1", "confirmar")["message_to_user"] == nlg.CONFIRM_HINT
    assert agent.handle_message("t2", "confirmar")["message_to_user"] == nlg.NO_PENDING_TO_CONFIRM


def test_ack_and_cancel_buttons_use_the_nonce(agent):
    nonce = pending_of(agent.handle_message("t1", "precio 100"))["nonce"]
    done = agent.ack_pending("t1", nonce)
    assert done["ok"] is True
    assert done["message_to_user"].startswith("✅ Acción ejecutada")
    late_cancel = agent.cancel_pending("t1", nonce)
    assert late_cancel["ok"] is False
    assert late_cancel["message_to_user"] == nlg.STALE_NONCE


def test_expired_pending_action_is_announced(agent, clock):
    agent.handle_message("t1", "precio 100")
    clock.advance(601)
    envelope = agent.handle_message("t1", "gracias")
    assert envelope["message_to_user"].startswith("⏱️ La acción pendiente venció")
    assert pending_of(envelope) is None
    follow = agent.handle_message("t1", "gracias")
    assert "venció" not in follow["message_to_user"]


def test_implicit_kind_question_then_field_reply(agent):
    question = agent.handle_message("t1", "el último a 100")
    assert question["mode"] == "clarify"
    assert question["message_to_user"] == nlg.PRICE_OR_STOCK_QUESTION
    envelope = agent.handle_message("t1", "precio")
    assert envelope["mode"] == "execute"
    assert envelope["actions"][0]["entity_id"] == 1000
    assert envelope["actions"][0]["changes"] == {"regular_price": "100.00"}


def test_bare_number_after_product_info(agent):
    info = agent.handle_message("t1", "¿qué precio tiene el #12?")
    assert info["mode"] == "consult"
    assert info["message_to_user"] == "El precio del producto #12 (Remera Azul) es $2500."
    question = agent.handle_message("t1", "500")
    assert question["mode"] == "clarify"
    envelope = agent.handle_message("t1", "stock")
    assert envelope["actions"][0]["entity_id"] == 12
    assert envelope["actions"][0]["changes"] == {"manage_stock": True, "stock_quantity": 500}


def test_value_without_target_asks_for_product(agent):
    question = agent.handle_message("t1", "cambiá el stock a 8")
    assert question["mode"] == "clarify"
    assert question["session_state"]["pending_followup_action"]["expect"] == "target"
    envelope = agent.handle_message("t1", "#15")
    assert envelope["actions"][0]["entity_id"] == 15
    assert envelope["actions"][0]["changes"]["stock_quantity"] == 8


def test_noop_price_answers_already_set(agent):
    envelope = agent.handle_message("t1", "cambiá el precio del #12 a 2500")
    assert envelope["mode"] == "chat"
    assert "ya estaba" in envelope["message_to_user"]
    assert pending_of(envelope) is None


def test_queries_pass_through_pending_action(agent):
    agent.handle_message("t1", "precio 100")
    envelope = agent.handle_message("t1", "productos sin precio")
    assert envelope["mode"] == "consult"
    assert "Pantalón Cargo (ID 30)" in envelope["message_to_user"]
    assert pending_of(envelope) is not None


def test_greeting_without_model_is_canned(agent):
    envelope = agent.handle_message("t1", "hola")
    assert envelope["message_to_user"] == nlg.GREETING
    assert envelope["actions"] == []


def test_empty_message_gets_usage_hint(agent):
    assert agent.handle_message("t1", "   ")["message_to_user"] == nlg.USAGE_HINT


def test_selection_load_more_and_cancel(agent):
    agent.handle_message("t1", "cambiá el precio de remera a 3000")
    end = agent.load_more("t1")
    assert end["message_to_user"] == nlg.SELECTION_END
    reminder = agent.handle_message("t1", "hola")
    assert reminder["message_to_user"] == nlg.SELECTION_REMINDER
    cancelled = agent.handle_message("t1", "cancelar")
    assert cancelled["message_to_user"] == nlg.SELECTION_CANCELLED
    assert cancelled["session_state"]["pending_target_selection"] is None


def test_ordinal_indicator_targets_catalog_position(agent):
    envelope = agent.handle_message("t1", "cambiá el precio del 2º a 500")
    assert envelope["mode"] == "execute"
    assert envelope["actions"][0]["entity_id"] == 12
    assert envelope["actions"][0]["changes"] == {"regular_price": "500.00"}


def test_catalog_question_drops_waiting_target_followup(agent):
    agent.handle_message("t1", "cambiá el stock a 8")
    envelope = agent.handle_message("t1", "productos sin precio")
    assert envelope["mode"] == "consult"
    assert envelope["meta"]["route"] == "query"
    assert "Pantalón Cargo (ID 30)" in envelope["message_to_user"]
    assert envelope["session_state"]["pending_followup_action"] is None


def test_invalid_number_reply_keeps_value_question_open(agent):
    question = agent.handle_message("t1", "cambiá el stock del #12")
    assert question["session_state"]["pending_followup_action"]["expect"] == "number"
    rejected = agent.handle_message("t1", "-5")
    assert "no puede ser negativo" in rejected["message_to_user"]
    assert rejected["session_state"]["pending_followup_action"]["expect"] == "number"
    envelope = agent.handle_message("t1", "7")
    assert envelope["mode"] == "execute"
    assert envelope["actions"][0]["entity_id"] == 12
    assert envelope["actions"][0]["changes"] == {"manage_stock": True, "stock_quantity": 7}


def test_button_operations_survive_catalog_failures(agent, monkeypatch):
    def unavailable(*args, **kwargs):
        raise ExternalError("catalog", "timeout")

    agent.handle_message("t1", "cambiá el precio de remera a 3000")
    monkeypatch.setattr(agent._resolver, "load_more", unavailable)
    page = agent.load_more("t1")
    assert page["ok"] is False
    assert page["message_to_user"] == nlg.FALLBACK
    assert page["meta"]["trace"][0]["status"] == "error"
    assert page["session_state"]["pending_target_selection"] is not None

    monkeypatch.setattr(agent._pending, "ack", unavailable)
    monkeypatch.setattr(agent._pending, "cancel_with_nonce", unavailable)
    assert agent.ack_pending("t1", "n1")["message_to_user"] == nlg.FALLBACK
    assert agent.cancel_pending("t1", "n1")["ok"] is False
