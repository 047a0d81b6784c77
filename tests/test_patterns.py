import pytest

from catalog_agent.patterns import (
    classify_followup_edit,
    is_action_like,
    is_cancel_token,
    is_chitchat,
    is_confirm_token,
    is_physical_location,
    is_smalltalk,
    looks_like_target_selection_reply,
)
from catalog_agent.utils import normalize_text


def _classify(raw, kind="price"):
    return classify_followup_edit(normalize_text(raw), raw, kind)


@pytest.mark.parametrize(
    "raw,kind,expected",
    [
        ("mejor a 120", "price", (True, "followup_prefix")),
        ("que sea 80", "price", (True, "followup_prefix")),
        ("precio 150", "price", (True, "same_kind_command")),
        ("stock 7", "stock", (True, "same_kind_command")),
        ("120", "price", (True, "numeric_only")),
        ("precio del producto 9 a 5", "price", (False, "too_many_words")),
        ("mejor #12", "price", (False, "explicit_hash")),
        ("mejor id 4", "price", (False, "explicit_id")),
        ("mejor el ultimo", "price", (False, "explicit_ordinal")),
        ("5 o 6", "price", (False, "multiple_numbers")),
        ("que lindo", "price", (False, "no_accept_rule")),
    ],
)
def test_followup_edit_table(raw, kind, expected):
    assert _classify(raw, kind) == expected


@pytest.mark.parametrize("text", ["cancelar", "ccancelar", "canceelar", "cancelr", "no", "dejala de lado", "olvidalo"])
def test_cancel_tokens_tolerate_typos(text):
    assert is_cancel_token(text)


@pytest.mark.parametrize("text", ["cantidad", "canasta", "cancelar el precio del ultimo y poner otro"])
def test_not_cancel_tokens(text):
    assert not is_cancel_token(text)


def test_confirm_tokens():
    assert is_confirm_token("confirmar")
    assert is_confirm_token("si")
    assert not is_confirm_token("si pero cambialo")


@pytest.mark.parametrize("raw", ["2", "el 2", "opción 3", "#123", "id 9", "sku REM-1", "el segundo", "Remera azul lisa"])
def test_selection_replies(raw):
    assert looks_like_target_selection_reply(raw)


@pytest.mark.parametrize("raw", ["hola", "", "cambiá el precio a 5", "ok"])
def test_not_selection_replies(raw):
    assert not looks_like_target_selection_reply(raw)


def test_action_like_and_smalltalk():
    assert is_action_like("baja el stock del primero a 5")
    assert is_action_like("precio 100")
    assert not is_action_like("el stock del ultimo")
    assert is_smalltalk("hola")
    assert not is_smalltalk("hola cambia el precio a 5")
    assert is_chitchat("gracias")
    assert not is_chitchat("precio 100")


def test_physical_location_needs_furniture():
    assert is_physical_location("move el producto al lado del sillon")
    assert not is_physical_location("move el producto a ofertas")
