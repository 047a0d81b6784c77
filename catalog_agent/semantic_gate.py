"""Validation gate for the language model's normalized intent JSON.

Nothing the model returns is acted on unless it passes this gate: schema version, kind,
allowlisted intent/query code, confidence thresholds and, for actions, lexical grounding
of the selector in the raw user message.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import GroundingRejected, SchemaError
from .patterns import FIRST_WORD_RE, LAST_WORD_RE
from .utils import normalize_text, normalize_title, safe_json_loads

logger = logging.getLogger("catalog_agent.semantic")

SCHEMA_VERSION = "1.0"
KINDS = ("action", "query", "chitchat", "clarify", "unknown")
ACTION_INTENTS = {"set_price": "price", "set_stock": "stock"}
SELECTOR_TYPES = ("last", "first", "id", "sku", "name")
QUERY_CODES = ("A1", "A2", "A3", "A4", "A5", "A6", "A7", "A8")
QUERY_MODES = ("summary", "full", "top5")
THRESHOLDS = {"action": 0.65, "query": 0.60, "chitchat": 0.50}
STRUCTURAL_FLOOR = 0.70
NAME_SELECTOR_MIN_LEN = 3
MIN_CLARIFY_OPTIONS = 2
MAX_CLARIFY_OPTIONS = 4


@dataclass
class NormalizedIntent:
    """Validated model output."""
    kind: str
    confidence: float
    action: Optional[Dict[str, Any]] = None
    query: Optional[Dict[str, str]] = None
    clarify: Optional[Dict[str, Any]] = None


@dataclass
class GateResult:
    ok: bool
    intent: Optional[NormalizedIntent] = None
    reason: str = ""
    floored: bool = False
    trace: Dict[str, Any] = field(default_factory=dict)


def _str(value: Any) -> str:
    return str(value if value is not None else "").strip()


def _confidence(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def is_selector_grounded(selector_type: str, value: str, raw_message: str) -> bool:
    """Purpose: Check that a model-inferred selector literally appears in the user's text.
    Inputs/Outputs: Inputs are selector type/value and the raw message; output is a bool.
    Side Effects / State: None.
    Dependencies: normalize_text plus per-type regexes.
    Failure Modes: Unknown selector types are never grounded.
    If Removed: The model could retarget "el #150" to "the last product" unnoticed.
    Testing Notes: id 150 is grounded in "precio del #150 a 5" but not in "precio del ultimo a 5".
    """
    # Each selector type has its own literal evidence.
    text = normalize_text(raw_message)
    value = _str(value)
    if selector_type == "last":
        return bool(LAST_WORD_RE.search(text))
    if selector_type == "first":
        return bool(FIRST_WORD_RE.search(text))
    if selector_type == "id":
        if not value.isdigit():
            return False
        return bool(re.search(r"(?:\bid|#|\bproducto)\s*[:#-]?\s*" + re.escape(value) + r"\b", text))
    if selector_type == "sku":
        if not value:
            return False
        return bool(re.search(r"(?<![a-z0-9])" + re.escape(normalize_text(value)) + r"(?![a-z0-9])", text))
    if selector_type == "name":
        wanted = normalize_title(value)
        return bool(wanted) and wanted in normalize_title(raw_message)
    return False


def _clarify_for_action(field_name: str) -> Dict[str, Any]:
    what = "stock" if field_name == "stock" else "precio"
    return {
        "question": f"Entendí que querés cambiar el **{what}**, pero necesito confirmación rápida.",
        "options": [
            f"cambiar {what} del **último** a un valor (ej: \"{what} del último a 5\")",
            f"cambiar {what} del **#ID** (ej: \"{what} del #150 a 5\")",
        ],
    }


class SemanticGate:
    """Schema, allowlist, confidence and grounding policy for model intents."""

    def parse(self, raw_output: str) -> Dict[str, Any]:
        payload = safe_json_loads(raw_output or "")
        if payload is None:
            raise SchemaError("model output is not a JSON object")
        return payload

    def validate(self, payload: Any, raw_message: str) -> GateResult:
        """Purpose: Accept or reject one model payload.
        Inputs/Outputs: Inputs are the payload (dict or raw string) and the raw user message;
            output is GateResult(ok, intent, reason).
        Side Effects / State: None; logs the decision.
        Dependencies: _check raises SchemaError/GroundingRejected, caught here.
        Failure Modes: Any violation returns ok=False with a reason; never raises.
        If Removed: Model output would drive catalog proposals unchecked.
        Testing Notes: Cover wrong schema_version, intent/field mismatch, ungrounded id,
            low-confidence complete action (floored) and incomplete action (clarify).
        """
        # Rejections are data, not exceptions, past this point.
        try:
            data = self.parse(payload) if isinstance(payload, str) else payload
            if not isinstance(data, dict):
                raise SchemaError("payload is not an object")
            result = self._check(data, raw_message)
        except SchemaError as exc:
            logger.info("semantic gate rejected reason=%s", exc.reason)
            return GateResult(ok=False, reason=exc.reason)
        except GroundingRejected as exc:
            logger.info("semantic gate rejected ungrounded selector type=%s", exc.selector_type)
            return GateResult(ok=False, reason=f"selector_not_grounded:{exc.selector_type}")
        logger.info(
            "semantic gate accepted kind=%s confidence=%.2f floored=%s",
            result.intent.kind if result.intent else "",
            result.intent.confidence if result.intent else 0.0,
            result.floored,
        )
        return result

    def _check(self, data: Dict[str, Any], raw_message: str) -> GateResult:
        if _str(data.get("schema_version")) != SCHEMA_VERSION:
            raise SchemaError("bad_schema_version")
        kind = _str(data.get("kind")).lower()
        if kind not in KINDS:
            raise SchemaError("bad_kind")
        confidence = _confidence(data.get("confidence"))

        if kind == "clarify" or data.get("needs_clarification"):
            return self._check_clarify(data, confidence)
        if kind == "action":
            return self._check_action(data, confidence, raw_message)
        if kind == "query":
            if confidence < THRESHOLDS["query"]:
                raise SchemaError("low_confidence_query")
            return self._check_query(data, confidence)
        if kind == "chitchat" and confidence < THRESHOLDS["chitchat"]:
            raise SchemaError("low_confidence_chitchat")
        return GateResult(ok=True, intent=NormalizedIntent(kind=kind, confidence=confidence))

    def _check_clarify(self, data: Dict[str, Any], confidence: float) -> GateResult:
        clarify = data.get("clarify") if isinstance(data.get("clarify"), dict) else {}
        question = _str(clarify.get("question"))
        if not question:
            raise SchemaError("clarify_missing_question")
        options = [_str(option) for option in clarify.get("options") or [] if _str(option)]
        if len(options) < MIN_CLARIFY_OPTIONS:
            raise SchemaError("clarify_too_few_options")
        intent = NormalizedIntent(
            kind="clarify",
            confidence=confidence,
            clarify={"question": question, "options": options[:MAX_CLARIFY_OPTIONS]},
        )
        return GateResult(ok=True, intent=intent)

    def _check_query(self, data: Dict[str, Any], confidence: float) -> GateResult:
        query = data.get("query") if isinstance(data.get("query"), dict) else {}
        code = _str(query.get("code")).upper()
        if code not in QUERY_CODES:
            raise SchemaError("query_not_allowlisted")
        mode = _str(query.get("mode")).lower().replace(" ", "")
        if mode not in QUERY_MODES:
            mode = "summary"
        return GateResult(ok=True, intent=NormalizedIntent(kind="query", confidence=confidence, query={"code": code, "mode": mode}))

    def _check_action(self, data: Dict[str, Any], confidence: float, raw_message: str) -> GateResult:
        """Purpose: Validate an action payload, flooring or clarifying low confidence.
        Inputs/Outputs: Inputs are the payload, its confidence and the raw message; output is
            an action GateResult or a clarify GateResult.
        Side Effects / State: None.
        Dependencies: ACTION_INTENTS, SELECTOR_TYPES, is_selector_grounded.
        Failure Modes: Raises SchemaError for allowlist/shape violations and GroundingRejected
            for selectors missing from the raw message.
        If Removed: set_price/set_stock from the model would be trusted blindly.
        Testing Notes: confidence 0.1 with a complete grounded action floors to 0.70.
        """
        # Structural completeness decides between the floor and a clarify.
        action = data.get("action") if isinstance(data.get("action"), dict) else {}
        intent_name = _str(action.get("intent")).lower()
        field_name = _str(action.get("field")).lower()
        selector = action.get("selector") if isinstance(action.get("selector"), dict) else {}
        selector_type = _str(selector.get("type")).lower()
        selector_value = _str(selector.get("value"))
        raw_value_text = _str(action.get("raw_value_text"))

        complete = (
            intent_name in ACTION_INTENTS
            and ACTION_INTENTS[intent_name] == field_name
            and selector_type in SELECTOR_TYPES
            and bool(raw_value_text)
        )
        floored = False
        if confidence < THRESHOLDS["action"]:
            if not complete:
                clarify = _clarify_for_action(field_name)
                return GateResult(
                    ok=True,
                    intent=NormalizedIntent(kind="clarify", confidence=confidence, clarify=clarify),
                    reason="low_confidence_action_clarify",
                )
            confidence = STRUCTURAL_FLOOR
            floored = True

        if intent_name not in ACTION_INTENTS:
            raise SchemaError("action_not_allowlisted")
        if ACTION_INTENTS[intent_name] != field_name:
            raise SchemaError("intent_field_mismatch")
        if selector_type not in SELECTOR_TYPES:
            raise SchemaError("selector_unknown")
        if not raw_value_text:
            raise SchemaError("missing_raw_value_text")
        if selector_type == "name" and len(selector_value) < NAME_SELECTOR_MIN_LEN:
            raise SchemaError("selector_name_too_short")
        if selector_type in {"id", "sku"} and not selector_value:
            raise SchemaError("selector_value_missing")
        if not is_selector_grounded(selector_type, selector_value, raw_message):
            raise GroundingRejected(selector_type, selector_value)

        normalized_action = {
            "intent": intent_name,
            "field": field_name,
            "selector": {"type": selector_type, "value": selector_value},
            "raw_value_text": raw_value_text,
        }
        return GateResult(
            ok=True,
            intent=NormalizedIntent(kind="action", confidence=confidence, action=normalized_action),
            floored=floored,
        )


def clarify_options(intent: NormalizedIntent) -> List[str]:
    return list((intent.clarify or {}).get("options") or [])
