import json
import re
import unicodedata
from typing import Any, Dict, Optional

LEADING_FILLERS = (
    "ok",
    "oka",
    "okay",
    "dale",
    "bueno",
    "bien",
    "listo",
    "perfecto",
    "genial",
    "joya",
    "che",
    "ah",
    "eh",
    "mmm",
    "mm",
    "a ver",
    "entonces",
)
_FILLER_RE = re.compile(
    r"^(?:(?:" + "|".join(re.escape(word) for word in LEADING_FILLERS) + r")\b[\s,;.!]*)+",
)


def normalize_text(text: str) -> str:
    """Purpose: Normalize free-form Spanish text for stable matching in the pipeline.
    Inputs/Outputs: Input is a raw string; output is a lowercase ASCII-only string with
        diacritics folded and whitespace collapsed.
    Side Effects / State: None; pure function.
    Dependencies: Uses unicodedata and regex; called by every parser, guard and flow.
    Failure Modes: Returns an empty string when input is falsy; symbols outside the kept
        set (digits, #, $, punctuation used by numbers and selectors) become spaces.
    If Removed: Accented variants ("cambiá", "último") stop matching the pattern table.
    Testing Notes: Validate "Cambiá el PRECIO del Último" -> "cambia el precio del ultimo".
    """
    # Lowercase, fold accents, then keep only the characters parsers rely on.
    if not text:
        return ""
    lowered = text.lower()
    lowered = lowered.replace("—", " - ").replace("–", " - ")
    lowered = lowered.replace("º", "o").replace("°", "o")
    decomposed = unicodedata.normalize("NFD", lowered)
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    cleaned = re.sub(r"[^a-z0-9\s#$%.,:=_/\-]+", " ", stripped)
    return re.sub(r"\s+", " ", cleaned).strip()


def strip_leading_fillers(normalized: str) -> str:
    """Drop leading filler words ("ok, y el stock" -> "y el stock") unless nothing is left."""
    if not normalized:
        return ""
    rest = _FILLER_RE.sub("", normalized).strip()
    return rest or normalized


def normalize_message(text: str) -> str:
    """Full normalization used by the router: fold, collapse and strip fillers."""
    return strip_leading_fillers(normalize_text(text))


def normalize_key(text: str) -> str:
    """Purpose: Produce a compact normalization key without spaces or punctuation.
    Inputs/Outputs: Input is a raw string; output is normalized string with separators removed.
    Side Effects / State: None; pure function.
    Dependencies: Calls normalize_text; used for title and category comparisons.
    Failure Modes: Returns empty string for falsy input; otherwise deterministic.
    If Removed: Title matching during target selection becomes punctuation-sensitive.
    Testing Notes: "Remera - Azul" and "remera azul" share the key "remeraazul".
    """
    # Collapse normalization output into a compact key.
    return re.sub(r"[^a-z0-9]+", "", normalize_text(text))


def normalize_title(text: str) -> str:
    """Normalize a title for equality checks, keeping single spaces between words."""
    return re.sub(r"\s+", " ", re.sub(r"[^a-z0-9]+", " ", normalize_text(text))).strip()


def truncate_text(text: str, limit: int = 80) -> str:
    """Trim text to limit characters, appending an ellipsis when cut."""
    cleaned = re.sub(r"\s+", " ", str(text or "")).strip()
    if len(cleaned) <= limit:
        return cleaned
    return cleaned[: max(limit - 1, 0)].rstrip() + "…"


def levenshtein(a: str, b: str) -> int:
    """Edit distance between two short strings (used for typo-tolerant tokens)."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (0 if ca == cb else 1),
                )
            )
        previous = current
    return previous[-1]


def extract_json_block(text: str) -> Optional[str]:
    """Purpose: Extract the first JSON object block from an arbitrary string.
    Inputs/Outputs: Input is a raw string; output is JSON substring or None.
    Side Effects / State: None; pure function.
    Dependencies: None beyond built-ins; used by safe_json_loads.
    Failure Modes: Returns None if braces are missing or inverted.
    If Removed: Model outputs wrapped in prose or code fences cannot be parsed.
    Testing Notes: Provide strings with extra text before/after JSON and ensure extraction.
    """
    # Locate the outermost JSON braces to extract a parseable block.
    if not text:
        return None
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return text[start : end + 1]


def safe_json_loads(text: str) -> Optional[Dict[str, Any]]:
    """Purpose: Parse a JSON object from a model output string safely.
    Inputs/Outputs: Input is raw text; output is a dict or None if parsing fails.
    Side Effects / State: None; pure function.
    Dependencies: Uses extract_json_block and json.loads; called by the semantic gate.
    Failure Modes: Returns None on JSONDecodeError, missing block or non-object JSON.
    If Removed: The semantic interpreter crashes on malformed model output.
    Testing Notes: Validate valid JSON parses and malformed JSON returns None.
    """
    # Parse only the extracted JSON block to avoid non-JSON prefixes/suffixes.
    block = extract_json_block(text)
    if not block:
        return None
    try:
        data = json.loads(block)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None
