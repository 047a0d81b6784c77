"""Side-effect free lexical parsers: ordinals, money and stock numbers, selectors and
values after a connector. Parsers return None (or an "unknown" selector) instead of
raising; only validate_price/validate_stock raise ValidationError.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .errors import ValidationError
from .patterns import LAST_WORD_RE

ORDINAL_WORDS: List[Tuple["re.Pattern[str]", int]] = [
    (re.compile(r"\bprimer(?:o|a)?\b"), 1),
    (re.compile(r"\bsegund(?:o|a)\b"), 2),
    (re.compile(r"\btercer(?:o|a)?\b"), 3),
    (re.compile(r"\bcuart(?:o|a)\b"), 4),
    (re.compile(r"\bquint(?:o|a)\b"), 5),
    (re.compile(r"\bsext(?:o|a)\b"), 6),
    (re.compile(r"\bseptim(?:o|a)\b"), 7),
    (re.compile(r"\boctav(?:o|a)\b"), 8),
    (re.compile(r"\bnoven(?:o|a)\b"), 9),
    (re.compile(r"\bdecim(?:o|a)\b"), 10),
]
# "2º" and "1°" reach these patterns as "2o" and "1o" after normalize_text.
ORDINAL_SUFFIX = r"(?:o|\s*(?:er|ro|do|to|mo|vo|no))"
NUMERIC_ORDINAL_RE = re.compile(rf"\b(10|[1-9]){ORDINAL_SUFFIX}(?=\s|$|[.,])", re.IGNORECASE)
POSITION_PRODUCT_RE = re.compile(r"\b(\d{1,2})o?\s*producto\b")
NUMERO_PRODUCT_RE = re.compile(r"\bproducto\s+(?:numero|num|nro|no|n)\s*(\d{1,2})\b")

EXPLICIT_ID_RES = [
    re.compile(r"#\s*(\d{1,10})\b"),
    re.compile(r"\bid\s*[:#=]?\s*(\d{1,10})\b"),
    re.compile(r"\bproducto\s+(?:id\s*)?(\d{1,10})\b"),
]
SKU_RAW_RE = re.compile(r"\bsku\s*[:#=]?\s*([A-Za-z0-9][A-Za-z0-9_\-.]{1,63})", re.IGNORECASE)
QUOTED_RAW_RE = re.compile(r"[\"“«']([^\"”»']{2,140})[\"”»']")
CONTEXTUAL_RE = re.compile(r"\b(este|ese|esta|esa|mismo|misma|aquel|aquella)\b(?!\s+(?:precio|stock))")
NAME_PHRASE_RAW_RE = re.compile(
    r"\b(?:de\s+la|de\s+los|de\s+las|de\s+el|del|al|a\s+la|para\s+el|para\s+la|de)\s+"
    r"(?!producto\b)(.+?)"
    r"(?=\s+(?:a|en)\s+[$\-+]?\s*\d|\s*[:=]|\s+(?:a|en)\s*$|$)",
    re.IGNORECASE,
)
NAME_STOPWORDS = {
    "precio",
    "stock",
    "ultimo",
    "ultima",
    "primero",
    "primer",
    "primera",
    "producto",
    "productos",
    "catalogo",
    "tienda",
}

NUMBER_PHRASE_AFTER_RE = re.compile(
    r"(?:\b(?:a|en)\b|[=:])\s*(-?\s*\$?\s*-?\d[\d.,\s]*(?:\s*(?:k|mil|miles|lucas?)\b)?)",
    re.IGNORECASE,
)
NUMBER_PHRASE_RE = re.compile(r"(-?\s*\$?\s*-?\d[\d.,\s]*(?:\s*(?:k|mil|miles|lucas?)\b)?)", re.IGNORECASE)
MULTIPLIER_RE = re.compile(r"(k|mil|miles|lucas?)\s*$", re.IGNORECASE)
THOUSANDS_DOT_RE = re.compile(r"^\d{1,3}(?:\.\d{3})+$")
THOUSANDS_COMMA_RE = re.compile(r"^\d{1,3}(?:,\d{3})+$")

CONNECTOR_DASH_RE = re.compile(r"\s[—–-]\s")
CONNECTOR_A_RE = re.compile(r"\s(?:a|por)\s", re.IGNORECASE)


@dataclass(frozen=True)
class OrdinalRef:
    """1-based position in catalog creation order; from_end means counting from the newest."""
    index: int
    from_end: bool = False


@dataclass(frozen=True)
class Selector:
    """Target selector extracted from a message."""
    kind: str
    value: str = ""
    index: int = 0

    def is_known(self) -> bool:
        return self.kind != "unknown"


def extract_ordinal_index(normalized: str) -> int:
    """Purpose: Parse a Spanish ordinal reference into a 1-based catalog position.
    Inputs/Outputs: Input is normalized text; output is the index or 0 when absent.
    Side Effects / State: None.
    Dependencies: ORDINAL_WORDS, NUMERIC_ORDINAL_RE and the "N producto" forms.
    Failure Modes: Only positions 1..10 (words) or 1..99 ("3 producto") are recognized.
    If Removed: "el tercero" and "2º producto" (normalized to "2o producto") stop resolving to a product.
    Testing Notes: "segundo" -> 2, "3ro" -> 3, "2o" -> 2, "producto numero 4" -> 4, "hola" -> 0.
    """
    # Words first, then numeric ordinals, then positional product forms.
    text = normalized or ""
    for pattern, index in ORDINAL_WORDS:
        if pattern.search(text):
            return index
    match = NUMERIC_ORDINAL_RE.search(text)
    if match:
        return int(match.group(1))
    match = NUMERO_PRODUCT_RE.search(text) or POSITION_PRODUCT_RE.search(text)
    if match:
        return int(match.group(1))
    return 0


def parse_ordinal(normalized: str) -> Optional[OrdinalRef]:
    """Return the ordinal reference in a message ("ultimo" counts from the end)."""
    text = normalized or ""
    if LAST_WORD_RE.search(text):
        return OrdinalRef(index=1, from_end=True)
    index = extract_ordinal_index(text)
    if index > 0:
        return OrdinalRef(index=index, from_end=False)
    return None


def extract_numeric_phrase(text: str) -> Optional[str]:
    """Find the numeric phrase of a message, preferring the one after "a", "en", "=" or ":"."""
    if not text:
        return None
    for pattern in (NUMBER_PHRASE_AFTER_RE, NUMBER_PHRASE_RE):
        matches = list(pattern.finditer(text))
        if matches:
            phrase = matches[-1].group(1) if pattern is NUMBER_PHRASE_AFTER_RE else matches[0].group(1)
            return phrase.strip()
    return None


def parse_number(phrase: str) -> Optional[float]:
    """Purpose: Parse human money/number formats into a float.
    Inputs/Outputs: Input is a phrase such as "$1.000", "1,000", "10k", "10 mil",
        "10 lucas", "1.5", "-5"; output is the float value or None for garbage.
    Side Effects / State: None.
    Dependencies: Thousands regexes and the multiplier suffix regex.
    Failure Modes: Returns None when no digits remain after cleanup.
    If Removed: Price and stock commands cannot read their values.
    Testing Notes: "$1.000" -> 1000, "1,5" -> 1.5, "10 lucas" -> 10000, "abc" -> None.
    """
    # Strip currency and spacing, then resolve the decimal separator.
    if phrase is None:
        return None
    text = str(phrase).strip().lower()
    if not text:
        return None
    multiplier = 1.0
    suffix = MULTIPLIER_RE.search(text)
    if suffix:
        multiplier = 1000.0
        text = text[: suffix.start()].strip()
    compact = text.replace("$", "").replace(" ", "")
    negative = compact.startswith("-")
    if "-" in compact.lstrip("-+"):
        return None
    text = text.replace("$", "").replace("-", "").replace("+", "")
    text = re.sub(r"(?<=\d)\s+(?=\d{3}\b)", "", text).strip()
    if not re.fullmatch(r"\d[\d.,]*", text):
        return None
    text = text.rstrip(".,")
    if "." in text and "," in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "." in text:
        if THOUSANDS_DOT_RE.match(text):
            text = text.replace(".", "")
    elif "," in text:
        if THOUSANDS_COMMA_RE.match(text):
            text = text.replace(",", "")
        else:
            text = text.replace(",", ".")
    try:
        value = float(text)
    except ValueError:
        return None
    value *= multiplier
    return -value if negative else value


def validate_price(value: Optional[float]) -> float:
    """Reject zero, negative or missing prices with the user-facing message."""
    if value is None:
        raise ValidationError("Ese precio no me quedó claro. ¿Qué valor querés poner? (ej: 999, 10k, 10 lucas)", "price")
    if value < 0:
        raise ValidationError("El precio no puede ser negativo.", "price")
    if value == 0:
        raise ValidationError("El precio debe ser mayor a 0.", "price")
    return float(value)


def validate_stock(value: Optional[float]) -> int:
    """Reject negative, fractional or missing stock values with the user-facing message."""
    if value is None:
        raise ValidationError("Ese stock no me quedó claro. ¿Cuántas unidades querés dejar?", "stock")
    if value < 0:
        raise ValidationError("El stock no puede ser negativo.", "stock")
    if float(value) != int(value):
        raise ValidationError("El stock tiene que ser un número entero.", "stock")
    return int(value)


def format_price(value: float) -> str:
    """Catalog price string with two decimals ("100.00")."""
    return f"{float(value):.2f}"


def format_price_human(value: object) -> str:
    """Price for messages: integers without decimals, the rest with two."""
    try:
        number = float(str(value))
    except (TypeError, ValueError):
        return str(value or "")
    if number == int(number):
        return str(int(number))
    return f"{number:.2f}"


def extract_explicit_id(normalized: str) -> Optional[int]:
    """Explicit product id written as "#12", "id 12" or "producto 12"."""
    text = normalized or ""
    for pattern in EXPLICIT_ID_RES:
        match = pattern.search(text)
        if match:
            return int(match.group(1))
    return None


def extract_sku(raw: str) -> Optional[str]:
    match = SKU_RAW_RE.search(raw or "")
    return match.group(1).strip(".") if match else None


def extract_quoted_name(raw: str) -> Optional[str]:
    match = QUOTED_RAW_RE.search(raw or "")
    if not match:
        return None
    name = match.group(1).strip()
    return name or None


def extract_name_phrase(raw: str) -> Optional[str]:
    """Purpose: Capture a best-effort product name between connector words.
    Inputs/Outputs: Input is raw text such as "cambiá el precio de la Remera Azul a 500";
        output is "Remera Azul" or None.
    Side Effects / State: None.
    Dependencies: NAME_PHRASE_RAW_RE and NAME_STOPWORDS.
    Failure Modes: Returns None for ordinal/field words and for phrases shorter than 3 chars.
    If Removed: Updates by product name always need a quoted name or an id.
    Testing Notes: "precio de la remera azul a 500" -> "remera azul"; "precio del ultimo a 5" -> None.
    """
    # Take the first connector phrase that is not a field or ordinal word.
    for match in NAME_PHRASE_RAW_RE.finditer(raw or ""):
        candidate = match.group(1).strip(" .,:;!?¿¡\"'")
        if len(candidate) < 3:
            continue
        words = re.sub(r"[^\w\s]", " ", candidate.lower()).split()
        folded = {_fold(word) for word in words}
        if not words or folded <= NAME_STOPWORDS or _fold(words[0]) in NAME_STOPWORDS:
            continue
        if re.fullmatch(r"[\d\s.,$]+", candidate):
            continue
        return candidate
    return None


def _fold(word: str) -> str:
    return word.translate(str.maketrans("áéíóúü", "aeiouu"))


def extract_selector(raw: str, normalized: str) -> Selector:
    """Purpose: Extract the target selector of a message.
    Inputs/Outputs: Inputs are raw and normalized text; output is a Selector whose kind is
        one of id, sku, name, last, first, contextual or unknown.
    Side Effects / State: None.
    Dependencies: Explicit id/sku/quoted regexes, ordinal parser and name-phrase extractor.
    Failure Modes: Returns Selector("unknown") rather than raising.
    If Removed: Targeted updates and the follow-up merge cannot tell which product is meant.
    Testing Notes: "#12" -> id, "sku REM-1" -> sku, "\"Remera\"" -> name, "ultimo" -> last,
        "el segundo" -> first(index=2), "este" -> contextual.
    """
    # Explicit tokens win over ordinals, ordinals over contextual words and names.
    explicit_id = extract_explicit_id(normalized)
    if explicit_id is not None:
        return Selector(kind="id", value=str(explicit_id))
    sku = extract_sku(raw)
    if sku:
        return Selector(kind="sku", value=sku)
    quoted = extract_quoted_name(raw)
    if quoted:
        return Selector(kind="name", value=quoted)
    ordinal = parse_ordinal(normalized)
    if ordinal is not None:
        if ordinal.from_end:
            return Selector(kind="last", index=1)
        return Selector(kind="first", index=ordinal.index)
    if CONTEXTUAL_RE.search(normalized or ""):
        return Selector(kind="contextual")
    name = extract_name_phrase(raw)
    if name:
        return Selector(kind="name", value=name)
    return Selector(kind="unknown")


def extract_value_after_connector(raw: str) -> Optional[str]:
    """Purpose: Capture free text after ":", a spaced dash, or the last " a ".
    Inputs/Outputs: Input is raw text; output is the trimmed value or None.
    Side Effects / State: None.
    Dependencies: CONNECTOR_DASH_RE and CONNECTOR_A_RE.
    Failure Modes: Returns None when no connector is present or the value is empty.
    If Removed: Name, description and category edits cannot read their new value.
    Testing Notes: "nombre del #12: Remera" -> "Remera"; "nombre del #12 a Remera lisa" -> "Remera lisa".
    """
    # Colon first, then a spaced dash, then the last " a ".
    text = (raw or "").strip()
    if not text:
        return None
    value: Optional[str] = None
    if ":" in text:
        value = text.split(":", 1)[1]
    else:
        dashes = list(CONNECTOR_DASH_RE.finditer(text))
        if dashes:
            value = text[dashes[0].end():]
        else:
            connectors = list(CONNECTOR_A_RE.finditer(text))
            if connectors:
                value = text[connectors[-1].end():]
    if value is None:
        return None
    value = value.strip().strip("\"“”«»'").strip()
    return value or None


SELECTOR_TOKEN_RES = [
    re.compile(r"#\s*\d{1,10}\b"),
    re.compile(r"\bid\s*[:#=]?\s*\d{1,10}\b"),
    re.compile(r"\bproducto\s+(?:numero|num|nro|no|n|id)?\s*\d{1,10}\b"),
    re.compile(r"\b\d{1,2}o?\s*producto\b"),
    re.compile(rf"\b(?:10|[1-9]){ORDINAL_SUFFIX}(?=\s|$|[.,])"),
    re.compile(r"\bsku\s*[:#=]?\s*[a-z0-9][a-z0-9_\-.]{1,63}"),
]


def strip_selector_tokens(normalized: str) -> str:
    """Remove id, sku and ordinal tokens so their digits are not read as the new value."""
    text = normalized or ""
    for pattern in SELECTOR_TOKEN_RES:
        text = pattern.sub(" ", text)
    return re.sub(r"\s+", " ", text).strip()


def extract_value(normalized: str) -> Optional[float]:
    """Numeric value of a change request once selector tokens are removed."""
    phrase = extract_numeric_phrase(strip_selector_tokens(normalized))
    return parse_number(phrase) if phrase else None
