from catalog_agent import nlg
from catalog_agent.flows.field_edit import category_mode, extract_category_names

from conftest import pending_of


def test_category_names_from_message_shapes():
    assert extract_category_names("agregale la categoría Ofertas al #12", "add") == ["Ofertas"]
    assert extract_category_names("poné el #12 solo en Remeras y Verano", "set") == ["Remeras", "Verano"]
    assert extract_category_names("agregá categoría: Ofertas", "add") == ["Ofertas"]


def test_category_mode_words():
    assert category_mode("quitale la categoria remeras al #15") == "remove"
    assert category_mode("pone el #12 solo en verano") == "set"
    assert category_mode("agregale la categoria ofertas al #12") == "add"


def test_add_category_proposes_full_list(agent):
    envelope = agent.handle_message("t1", "agregale la categoría Ofertas al #12")
    assert envelope["mode"] == "execute"
    action = envelope["actions"][0]
    assert action["entity_id"] == 12
    assert action["changes"] == {"categories": ["Remeras", "Ofertas"]}


def test_remove_and_set_categories(agent):
    removed = agent.handle_message("t1", "quitale la categoría Remeras al #15")
    assert removed["actions"][0]["changes"] == {"categories": ["Verano"]}
    agent.cancel_pending("t1", pending_of(removed)["nonce"])
    replaced = agent.handle_message("t1", "poné el #12 solo en Verano")
    assert replaced["actions"][0]["changes"] == {"categories": ["Verano"]}


def test_unknown_category_suggests_and_reply_completes(agent):
    question = agent.handle_message("t1", "agregale la categoría Ofertaz al #12")
    assert question["mode"] == "clarify"
    assert question["clarification"]["options"][0] == "Ofertas"
    assert pending_of(question) is None
    assert question["session_state"]["pending_field_edit"]["stage"] == "need_category"

    envelope = agent.handle_message("t1", "Ofertas")
    assert envelope["mode"] == "execute"
    assert envelope["actions"][0]["changes"] == {"categories": ["Remeras", "Ofertas"]}
    assert envelope["session_state"]["pending_field_edit"] is None


def test_existing_category_is_a_noop(agent):
    envelope = agent.handle_message("t1", "agregale la categoría Remeras al #12")
    assert envelope["message_to_user"] == nlg.msg_categories_noop()
    assert pending_of(envelope) is None


def test_rename_product(agent):
    envelope = agent.handle_message("t1", "cambiá el nombre del #12 a Remera Azul Lisa")
    assert envelope["mode"] == "execute"
    assert envelope["actions"][0]["changes"] == {"name": "Remera Azul Lisa"}
    assert envelope["message_to_user"].startswith("Dale, preparé el cambio de nombre")


def test_description_asks_for_value_then_uses_reply(agent):
    question = agent.handle_message("t1", "cambiá la descripción del #12")
    assert question["mode"] == "clarify"
    assert question["message_to_user"] == "¿Qué descripción querés ponerle al producto #12 (Remera Azul)?"
    envelope = agent.handle_message("t1", "Tela suave y fresca")
    assert envelope["actions"][0]["changes"] == {"description": "Tela suave y fresca"}
