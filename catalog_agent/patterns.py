"""Pattern table and short-reply predicates used by the dialogue flows.

Every regex here runs against normalize_text() output (lowercase, accents folded) unless
the name ends in _RAW_RE. Predicates that decide how a short reply is read while a pending
action or a target selection is open are table driven so each rule can be tested alone.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, List, Tuple

from .utils import levenshtein, normalize_text

ACTION_VERB_RE = re.compile(
    r"\b(cambia\w*|cambiar|pone|pon|poner|ponele|ponelo|ponela|setea\w*|set|actualiza\w*|"
    r"modifica\w*|ajusta\w*|baja\w*|sube\w*|subi\w*|deja|dejalo|dejala|dejar|edita\w*|"
    r"renombra\w*|agrega\w*|quita\w*|saca\w*|suma\w*|mete\w*|pasa\w*|update)\b"
)
PRICE_WORD_RE = re.compile(r"\b(precio|precios|price|valor|cuesta|vale|\$)\b|\$")
STOCK_WORD_RE = re.compile(r"\b(stock|existencia|existencias|inventario|cantidad|unidades)\b")
LAST_WORD_RE = re.compile(r"\b(ultimo|ultima|last)\b")
FIRST_WORD_RE = re.compile(r"\b(primer|primero|primera|first)\b")
PRODUCT_WORD_RE = re.compile(r"\bproducto\b")
ID_WORD_RE = re.compile(r"\bid\b")
DIGIT_RE = re.compile(r"\d")
NUMBER_GROUP_RAW_RE = re.compile(r"\d+(?:[.,]\d+)*")
NUMERIC_ONLY_RAW_RE = re.compile(r"^\s*\$?\s*[-+]?\d+(?:[.,]\d+)*\s*(?:k|mil|miles|luca|lucas)?\s*$", re.IGNORECASE)

GREETING_RE = re.compile(
    r"^(hola|holis|buenas|buen dia|buenos dias|buenas tardes|buenas noches|hey|hello|hi|que tal|"
    r"como estas|como va|todo bien|gracias|muchas gracias|genial|joya|ok|oka|okay)\b"
)
CAPABILITIES_RE = re.compile(
    r"\b(que podes hacer|que puedes hacer|que haces|ayuda|help|funciones|para que servis|como funciona)\b"
)
ACK_RE = re.compile(r"^(gracias|muchas gracias|ok|oka|okay|dale|listo|joya|genial|perfecto|buenisimo)$")
MONEY_FEELING_RE = re.compile(r"\b(billetera|plata|caro|barato|presupuesto|no tengo un peso)\b")
PHYSICAL_MOVE_RE = re.compile(r"\b(move\w*|mueve\w*|movelo|llevalo|lleva\w*|pone\w*|ponelo|coloca\w*)\b")
FURNITURE_RE = re.compile(r"\b(sillon|mesa|silla|estante|estanteria|cama|placard|ropero|escritorio|puerta|ventana)\b")

CONFIRM_TOKEN_RE = re.compile(
    r"^(confirmar|confirmo|confirma|confirmado|si|si confirmo|dale confirmo|ejecutar|ejecuta|ejecutalo|"
    r"aplicar|aplica|aplicalo|hacelo|confirmar y ejecutar accion)$"
)
CANCEL_TOKEN_RE = re.compile(
    r"^(cancelar|cancela|cancelalo|cancelala|cancele|cancelemos|no|nop|no gracias|olvidalo|olvidate|"
    r"descartar|descartala|descartalo|anular|anula|anulala)$"
)
CANCEL_PHRASES = {
    "cancelar y continuar",
    "dejala de lado",
    "dejarla de lado",
    "dejalo de lado",
    "dejarlo de lado",
}
SELECTION_CANCEL_RE = re.compile(r"\b(cancelar|cancela|dejalo|dejala|dejarlo|dejarla|olvidalo)\b")
LOAD_MORE_RE = re.compile(r"^(cargar mas|ver mas|mas resultados|mostrame mas|mas opciones|siguientes)$")

KEEP_CHOICE_RE = re.compile(r"^(seguir con la pendiente|seguir|mantener|mantenela|la pendiente|quedate con la pendiente)$")
REPLACE_CHOICE_RE = re.compile(r"^(reemplazar por la nueva|reemplazar|reemplazala|la nueva|cambiar por la nueva|usar la nueva)$")

FOLLOWUP_PREFIX_RE = re.compile(
    r"^(mejor|perdon|en realidad|no mejor|no,? mejor|que sea|corrijo|ahora a|ahora en|no era|era|"
    r"mas bien|cambialo a|dejalo en|ponelo a|ponelo en)\b"
)
PRICE_HINT_RE = re.compile(r"\b(precio|cambia\w*|actualiza\w*|modifica\w*|poner|pone|setea\w*|luca|lucas|mil|k)\b|\$")
STOCK_HINT_RE = re.compile(r"\b(stock|existenc\w*|inventario|cantidad|unidades)\b")

TITLE_ACTION_RAW_RE = re.compile(
    r"\b(cambia|cambiá|cambiar|pone|poné|poner|actualiza|actualizá|crear|crea|borra|borrá|elimina|eliminá)\b",
    re.IGNORECASE,
)
ORDINAL_WORD_REPLY_RE = re.compile(
    r"\b(primero|primer|primera|segunda|segundo|tercera|tercero|cuarta|cuarto|quinta|quinto)\b",
    re.IGNORECASE,
)

SMALLTALK_MAX_LEN = 24
FOLLOWUP_MAX_WORDS = 4
CANCEL_TYPO_MAX_LEN = 12
CANCEL_TYPO_MAX_DISTANCE = 2
TITLE_REPLY_MIN_LEN = 6
TITLE_REPLY_MAX_LEN = 140


def is_action_like(normalized: str) -> bool:
    """Purpose: Detect messages that read like a catalog change request.
    Inputs/Outputs: Input is normalized text; output is True for verb-led or field+number text.
    Side Effects / State: None.
    Dependencies: ACTION_VERB_RE, PRICE_WORD_RE, STOCK_WORD_RE.
    Failure Modes: Verb-less requests without a number ("el stock del ultimo") return False.
    If Removed: The pending guard cannot tell a new request from smalltalk.
    Testing Notes: "baja el stock del primero a 5" and "precio 100" are action-like.
    """
    # A change verb, or a field word next to a number, marks a change request.
    text = normalized or ""
    if ACTION_VERB_RE.search(text):
        return True
    has_field = bool(PRICE_WORD_RE.search(text) or STOCK_WORD_RE.search(text))
    return has_field and bool(DIGIT_RE.search(text))


def is_smalltalk(normalized: str) -> bool:
    """Short greeting-like text that does not read as a command."""
    text = (normalized or "").strip()
    if not text:
        return True
    if len(text) > SMALLTALK_MAX_LEN:
        return False
    if is_action_like(text):
        return False
    return bool(GREETING_RE.search(text))


def is_confirm_token(normalized: str) -> bool:
    return bool(CONFIRM_TOKEN_RE.match((normalized or "").strip()))


def is_cancel_token(normalized: str) -> bool:
    """Purpose: Detect a cancel reply, tolerating short typos of "cancelar".
    Inputs/Outputs: Input is normalized text; output is True when it means cancel.
    Side Effects / State: None.
    Dependencies: CANCEL_TOKEN_RE, CANCEL_PHRASES and levenshtein.
    Failure Modes: Long sentences that mention cancelling are not tokens.
    If Removed: Typos such as "ccancelar" or "canceelar" leave the pending action alive.
    Testing Notes: "ccancelar", "canceelar", "dejala de lado" are cancel; "cantidad" is not.
    """
    # Typo-tolerant exact-token match.
    text = (normalized or "").strip()
    if not text:
        return False
    if re.match(r"^c+ancelar$", text):
        return True
    if text in CANCEL_PHRASES:
        return True
    if CANCEL_TOKEN_RE.match(text):
        return True
    if len(text) <= CANCEL_TYPO_MAX_LEN and text.startswith("c"):
        return levenshtein(text, "cancelar") <= CANCEL_TYPO_MAX_DISTANCE
    return False


def is_keep_choice(normalized: str) -> bool:
    return bool(KEEP_CHOICE_RE.match((normalized or "").strip()))


def is_replace_choice(normalized: str) -> bool:
    return bool(REPLACE_CHOICE_RE.match((normalized or "").strip()))


def is_greeting(normalized: str) -> bool:
    return bool(GREETING_RE.search((normalized or "").strip()))


def is_capabilities_question(normalized: str) -> bool:
    return bool(CAPABILITIES_RE.search(normalized or ""))


def is_physical_location(normalized: str) -> bool:
    """Requests to move a product next to furniture are about the physical world, not the catalog."""
    text = normalized or ""
    return bool(PHYSICAL_MOVE_RE.search(text) and FURNITURE_RE.search(text))


def is_chitchat(normalized: str) -> bool:
    """Greetings, help questions, money small talk and acknowledgements."""
    text = (normalized or "").strip()
    if not text:
        return False
    if is_action_like(text):
        return False
    return bool(
        GREETING_RE.search(text)
        or CAPABILITIES_RE.search(text)
        or MONEY_FEELING_RE.search(text)
        or ACK_RE.match(text)
    )


def looks_like_target_selection_reply(raw: str) -> bool:
    """Purpose: Decide whether a reply could be an answer to an open target selection.
    Inputs/Outputs: Input is the raw message; output is True for index/id/sku/ordinal/title replies.
    Side Effects / State: None.
    Dependencies: Regexes for numeric, "opcion N", "#N", "id N", "sku X", ordinal words.
    Failure Modes: A plain title is accepted only between 6 and 140 chars, with letters,
        and when it is neither a greeting nor a new change request.
    If Removed: The pending guard blocks legitimate selection answers.
    Testing Notes: "2", "el 2", "#123", "id 9", "sku REM-1", "el segundo" and
        "Remera azul lisa" are replies; "hola" is not.
    """
    # Try the cheap explicit shapes first, then the title heuristic.
    text = (raw or "").strip()
    if not text:
        return False
    lowered = text.lower()
    if re.match(r"^\d+$", text):
        return True
    if re.match(r"^(opcion|opción)\s*\d+$", lowered):
        return True
    if re.match(r"^(la|el)\s*\d+$", lowered):
        return True
    if re.match(r"^(?:#\s*)?\d{1,10}$", text):
        return True
    if re.match(r"^id\s*[:#]?\s*\d{1,10}$", lowered):
        return True
    if re.match(r"^sku\s*[:#]?\s*[a-z0-9_\-.]{2,64}$", lowered):
        return True
    if ORDINAL_WORD_REPLY_RE.search(text):
        return True
    no_hash = re.sub(r"^\s*#\s*", "", text).strip()
    if not no_hash:
        return False
    if is_greeting(normalize_text(no_hash)):
        return False
    if TITLE_ACTION_RAW_RE.search(no_hash):
        return False
    if not re.search(r"[^\W\d_]{3,}", no_hash):
        return False
    return TITLE_REPLY_MIN_LEN <= len(no_hash) <= TITLE_REPLY_MAX_LEN


@dataclass(frozen=True)
class FollowupEditRule:
    """One row of the follow-up edit table."""
    name: str
    test: Callable[[str, str, str], bool]


def _word_count(normalized: str) -> int:
    return len([word for word in (normalized or "").split() if word])


def _same_kind_command(normalized: str, raw: str, kind: str) -> bool:
    if not DIGIT_RE.search(raw or ""):
        return False
    if kind == "price":
        return bool(PRICE_HINT_RE.search(normalized))
    if kind == "stock":
        return bool(STOCK_HINT_RE.search(normalized))
    return False


FOLLOWUP_EDIT_REJECT_RULES: List[FollowupEditRule] = [
    FollowupEditRule("too_many_words", lambda norm, raw, kind: _word_count(norm) > FOLLOWUP_MAX_WORDS),
    FollowupEditRule("explicit_hash", lambda norm, raw, kind: "#" in norm),
    FollowupEditRule("explicit_id", lambda norm, raw, kind: bool(ID_WORD_RE.search(norm))),
    FollowupEditRule(
        "explicit_ordinal",
        lambda norm, raw, kind: bool(re.search(r"\b(primer|primero|primera|ultim\w*)\b", norm)),
    ),
    FollowupEditRule("explicit_product", lambda norm, raw, kind: bool(PRODUCT_WORD_RE.search(norm))),
    FollowupEditRule(
        "multiple_numbers",
        lambda norm, raw, kind: len(NUMBER_GROUP_RAW_RE.findall(raw or "")) > 1,
    ),
]

FOLLOWUP_EDIT_ACCEPT_RULES: List[FollowupEditRule] = [
    FollowupEditRule("followup_prefix", lambda norm, raw, kind: bool(FOLLOWUP_PREFIX_RE.search(norm))),
    FollowupEditRule("same_kind_command", _same_kind_command),
    FollowupEditRule("numeric_only", lambda norm, raw, kind: bool(NUMERIC_ONLY_RAW_RE.match(raw or ""))),
]


def classify_followup_edit(normalized: str, raw: str, pending_kind: str) -> Tuple[bool, str]:
    """Purpose: Decide whether a short reply edits the value of the pending action.
    Inputs/Outputs: Inputs are normalized text, raw text and the pending kind (price/stock);
        output is (accepted, rule_name) naming the rule that decided.
    Side Effects / State: None.
    Dependencies: FOLLOWUP_EDIT_REJECT_RULES then FOLLOWUP_EDIT_ACCEPT_RULES, in order.
    Failure Modes: Returns (False, "no_accept_rule") when nothing matches.
    If Removed: Replies like "mejor a 120" would be read as a brand new request.
    Testing Notes: "mejor a 120" accepts via followup_prefix; "precio del producto 9 a 5"
        rejects via too_many_words; "5 o 6" rejects via multiple_numbers.
    """
    # Any reject rule wins; otherwise the first accept rule decides.
    for rule in FOLLOWUP_EDIT_REJECT_RULES:
        if rule.test(normalized, raw, pending_kind):
            return False, rule.name
    for rule in FOLLOWUP_EDIT_ACCEPT_RULES:
        if rule.test(normalized, raw, pending_kind):
            return True, rule.name
    return False, "no_accept_rule"
