import pytest

from catalog_agent.errors import ValidationError
from catalog_agent.parsers import (
    extract_ordinal_index,
    extract_selector,
    extract_value,
    extract_value_after_connector,
    format_price,
    parse_number,
    parse_ordinal,
    validate_price,
    validate_stock,
)
from catalog_agent.utils import normalize_message, normalize_text


@pytest.mark.parametrize(
    "phrase,expected",
    [
        ("100", 100.0),
        ("$1.000", 1000.0),
        ("1,000", 1000.0),
        ("1,5", 1.5),
        ("1.5", 1.5),
        ("10k", 10000.0),
        ("10 mil", 10000.0),
        ("10 lucas", 10000.0),
        ("-5", -5.0),
        ("abc", None),
        ("", None),
    ],
)
def test_parse_number_formats(phrase, expected):
    assert parse_number(phrase) == expected


def test_validate_price_rejects_zero_and_negative():
    with pytest.raises(ValidationError) as excinfo:
        validate_price(-1)
    assert "negativo" in excinfo.value.user_message
    with pytest.raises(ValidationError):
        validate_price(0)
    assert validate_price(10) == 10.0


def test_validate_stock_rejects_negative_and_fractional():
    with pytest.raises(ValidationError) as excinfo:
        validate_stock(-5)
    assert excinfo.value.user_message == "El stock no puede ser negativo."
    with pytest.raises(ValidationError):
        validate_stock(1.5)
    assert validate_stock(4.0) == 4


def test_format_price_two_decimals():
    assert format_price(100) == "100.00"
    assert format_price(9999) == "9999.00"


def test_ordinals():
    assert extract_ordinal_index("el segundo") == 2
    assert extract_ordinal_index("stock del 3ro a 4") == 3
    assert extract_ordinal_index("producto numero 4") == 4
    assert extract_ordinal_index("hola") == 0
    last = parse_ordinal("precio del ultimo a 5")
    assert last is not None and last.from_end


def test_ordinal_indicator_marks_are_read_as_positions():
    assert normalize_text("del 2º a 500") == "del 2o a 500"
    assert extract_ordinal_index(normalize_text("del 2º a 500")) == 2
    assert extract_ordinal_index(normalize_text("stock del 1° a 3")) == 1
    assert extract_ordinal_index(normalize_text("el 3º producto")) == 3
    assert extract_ordinal_index(normalize_text("producto nº 4")) == 4
    assert extract_value(normalize_text("cambiá el precio del 2º a 500")) == 500.0


def test_extract_selector_kinds():
    def selector(raw):
        return extract_selector(raw, normalize_text(raw))

    assert selector("precio del #12 a 5").kind == "id"
    assert selector("stock del producto 999 a 4").value == "999"
    assert selector("precio del sku REM-AZ a 5").value == "REM-AZ"
    assert selector('precio de "Remera Azul" a 5').kind == "name"
    assert selector("precio del último a 5").kind == "last"
    second = selector("stock del segundo a 5")
    assert (second.kind, second.index) == ("first", 2)
    assert selector("ponele 5 a este").kind == "contextual"
    assert selector("cambiá el precio de la remera azul a 500").value == "remera azul"
    assert selector("precio 100").kind == "unknown"


def test_extract_value_ignores_selector_digits():
    assert extract_value(normalize_text("cambiá el precio del #12 a 500")) == 500.0
    assert extract_value(normalize_text("stock del producto 999 a 4")) == 4.0
    assert extract_value(normalize_text("cambiá el precio del último")) is None


def test_value_after_connector():
    assert extract_value_after_connector("nombre del #12: Remera lisa") == "Remera lisa"
    assert extract_value_after_connector("cambiá el nombre del #12 a Remera lisa") == "Remera lisa"
    assert extract_value_after_connector("nombre nuevo") is None


def test_normalize_message_folds_and_strips_fillers():
    assert normalize_text("Cambiá el PRECIO del Último") == "cambia el precio del ultimo"
    assert normalize_message("ok, y el stock") == "y el stock"
