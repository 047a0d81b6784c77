"""Deterministic user-facing copy. No decisions happen here, only templates."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from .parsers import format_price_human
from .utils import truncate_text

CONFIRM_LABEL = "Confirmar y ejecutar acción"
CANCEL_LABEL = "Cancelar"
KEEP_LABEL = "Seguir con la pendiente"
REPLACE_LABEL = "Reemplazar por la nueva"
CANCEL_TOKENS = ["cancelar", "cancelá", "cancela", "no", "olvidalo", "dejalo"]

DEFAULT_SUMMARY = "Cambiar un producto en el catálogo."
PRICE_OR_STOCK_QUESTION = "¿Querés cambiar el **precio** o el **stock**?"
ASK_TARGET = "¿De qué producto? Pasame el **ID** (ej: #123), el **SKU** o el nombre exacto 😊"
USAGE_HINT = (
    "Podés pedirme cosas como **precio 100** (último producto), "
    "**cambiá el stock del #12 a 5** o **productos sin precio**."
)
PRICE_HELP = "Para cambiar un precio decime, por ejemplo: **precio 2500** o **cambiá el precio del #12 a 2500**."
STOCK_HELP = "Para cambiar el stock decime, por ejemplo: **stock 5** o **cambiá el stock del #12 a 5**."
OFFDOMAIN_PHYSICAL = (
    "Eso suena a mover algo en el mundo físico 😅 Yo solo puedo ayudarte con el catálogo: "
    "precios, stock, nombres, categorías y consultas."
)
CAPABILITIES = (
    "Puedo ayudarte con tu catálogo 😊\n"
    "• Cambiar **precio** o **stock** (ej: precio 100, stock del #12 a 5)\n"
    "• Cambiar **nombre**, **descripción** o **categorías**\n"
    "• Consultas: productos sin precio, sin SKU, sin imagen, sin stock, salud del catálogo\n"
    "Siempre te muestro la acción antes de ejecutarla."
)
GREETING = "¡Hola! 😊 ¿Qué querés hacer con el catálogo hoy?"
ACK = "¡De nada! Si necesitás otro cambio, decime 😊"
MONEY_TALK = "Te entiendo 😅 Si querés, puedo ayudarte a revisar precios del catálogo."
FALLBACK = "No estoy seguro de haber entendido 🤔 " + USAGE_HINT
SELECTION_REMINDER = (
    "Tengo una selección de producto pendiente. Elegí uno de la lista (número, #ID o SKU), "
    "escribí **cargar más** para ver más opciones, o **cancelar** para descartarla."
)
SELECTION_CANCELLED = "Listo, descarté la selección de producto 👍"
SELECTION_END = "No hay más resultados para mostrar."
NO_PENDING_TO_CONFIRM = "Parece que no hay acciones pendientes para confirmar. ¿Qué querés cambiar? 😊"
NO_PENDING_TO_CANCEL = "No hay ninguna acción pendiente para cancelar 😊"
CONFIRM_HINT = (
    "Para ejecutar la acción pendiente, usá el botón **Confirmar y ejecutar acción**. "
    "Si querés descartarla, escribí **cancelar**."
)
CONFIRM_PROMPT = "¿Confirmás ejecutar esta acción?"
NOOP_GENERIC = "Ya estaba así. No hice cambios."
STALE_NONCE = "Esa acción ya no está pendiente (puede que ya se haya confirmado o cancelado)."
FIELD_EDIT_CANCELLED = "Listo, dejé de lado ese cambio 👍"


def summarize_update_product_changes(changes: Optional[Dict[str, Any]]) -> str:
    """Compact summary such as "Actualizar producto: precio 9999 + stock 4"."""
    if not isinstance(changes, dict):
        return DEFAULT_SUMMARY
    parts: List[str] = []
    if "regular_price" in changes:
        price = format_price_human(changes["regular_price"])
        if price:
            parts.append(f"precio {price}")
    if "stock_quantity" in changes:
        parts.append(f"stock {int(changes['stock_quantity'])}")
    if "name" in changes:
        parts.append(f"nombre “{truncate_text(str(changes['name']), 60)}”")
    if "short_description" in changes:
        parts.append("descripción corta")
    if "description" in changes:
        parts.append("descripción")
    if "categories" in changes:
        parts.append("categorías " + ", ".join(str(c) for c in changes["categories"]))
    if not parts:
        return DEFAULT_SUMMARY
    return "Actualizar producto: " + " + ".join(parts)


def product_label(entity_id: int, title: str = "", target_label: str = "") -> str:
    name = truncate_text(title, 80)
    base = target_label or "producto"
    if name:
        return f"{base} #{entity_id} ({name})"
    return f"{base} #{entity_id}"


def msg_price_prepared(label: str, price: Any) -> str:
    return f"Dale, preparé el cambio de precio del {label} a {format_price_human(price)}."


def msg_stock_prepared(label: str, qty: int) -> str:
    return f"Dale, preparé el cambio de stock del {label} a {int(qty)}."


def msg_field_prepared(field_label: str, label: str) -> str:
    return f"Dale, preparé el cambio de {field_label} del {label}."


def msg_action_prepared_default() -> str:
    return "Dale, preparé la acción."


def msg_pending_merge_added() -> str:
    return "Listo 😊 sumé ese cambio a la acción propuesta."


def msg_pending_merge_noop() -> str:
    return "Ese cambio ya estaba contemplado, así que no hace falta sumarlo 😊"


def msg_pending_guard_choice() -> str:
    return "Un segundo 😊 hay una acción pendiente. ¿Querés seguir con la pendiente o dejarla de lado?"


def msg_pending_block() -> str:
    return (
        "Antes de seguir, tenés una **acción pendiente**. Confirmá o cancelá la acción propuesta "
        "(o decime \"mejor a ...\" para corregir)."
    )


def msg_pending_cancelled(human_summary: str) -> str:
    summary = (human_summary or "").strip() or "la acción propuesta"
    suffix = "" if summary.endswith(".") else "."
    return f"❌ Acción cancelada: {summary}{suffix}\n\nListo."


def msg_pending_executed(human_summary: str) -> str:
    return f"✅ Acción ejecutada correctamente: {human_summary}"


def msg_pending_kept() -> str:
    return "Perfecto, seguimos con la acción pendiente 👇"


def msg_pending_expired(human_summary: str) -> str:
    summary = (human_summary or "").strip() or "la acción propuesta"
    return f"⏱️ La acción pendiente venció y la descarté: {summary}."


def msg_noop(field_label: str, value: Any) -> str:
    return f"El {field_label} ya estaba en {value}. No hice cambios."


def msg_price_noop(price: Any) -> str:
    return msg_noop("precio", format_price_human(price))


def msg_stock_noop(qty: Any) -> str:
    return msg_noop("stock", int(qty))


def msg_not_found(selector_kind: str, query: str) -> str:
    if selector_kind == "id" and query:
        return f"No encontré el producto #{query}. {ASK_TARGET}"
    if query:
        return f"No encontré productos para “{truncate_text(query, 60)}”. {ASK_TARGET}"
    return ASK_TARGET


def msg_selection(total: int, items: Iterable[Dict[str, Any]], offset: int = 0) -> str:
    lines = [f"Encontré {int(total)} productos que coinciden. ¿Cuál querés? Respondé con el número, el #ID o el SKU:"]
    for position, item in enumerate(items, start=offset + 1):
        sku = f" · SKU {item['sku']}" if item.get("sku") else ""
        lines.append(f"{position}. {truncate_text(str(item.get('title') or ''), 80)} (#{item['id']}{sku})")
    return "\n".join(lines)


def msg_target_corrected(entity_id: int, title: str) -> str:
    return f"Perfecto, tomo el {product_label(entity_id, title)} como referencia 👍"


def msg_ask_price_or_stock(value: Any) -> str:
    return f"¿{value} es el **precio** o el **stock**?"


def msg_category_unknown(name: str, suggestions: List[str]) -> str:
    if suggestions:
        options = ", ".join(f"**{item}**" for item in suggestions)
        return f"No encontré la categoría “{name}”. ¿Quisiste decir {options}? Escribí el nombre exacto o **cancelar**."
    return f"No encontré la categoría “{name}”. Escribí el nombre exacto de una categoría existente o **cancelar**."


def msg_categories_noop() -> str:
    return "Las categorías ya estaban así. No hice cambios."


def confirmation_object(prompt: str = CONFIRM_PROMPT) -> Dict[str, Any]:
    return {
        "required": True,
        "prompt": prompt,
        "ok": CONFIRM_LABEL,
        "cancel": CANCEL_LABEL,
        "cancel_tokens": list(CANCEL_TOKENS),
    }


def choice_labels() -> Dict[str, str]:
    return {"confirm": KEEP_LABEL, "cancel": REPLACE_LABEL}
