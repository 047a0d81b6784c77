"""Read-only catalog queries: the A1..A8 report registry and product info answers.

Role:
    Maps a normalized message (or an allowlisted query code coming through the semantic
    gate) to one catalog report and renders it as a consult message. Nothing here reads
    or writes session pending state.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .catalog import LOW_STOCK_THRESHOLD
from .parsers import format_price_human
from .utils import truncate_text

logger = logging.getLogger("catalog_agent.queries")

SUMMARY_LIMIT = 5
FULL_LIMIT = 50

COUNT_RE = re.compile(r"\b(cuantos|cuantas|cantidad de|numero de)\b")
FULL_RE = re.compile(r"\b(full|top|detall\w*|todos|todas|completo|completa|lista completa)\b")
HEALTH_RE = re.compile(r"\b(salud del catalogo|salud de la tienda|salud catalogo|estado del catalogo|health)\b")
BARE_HEALTH_RE = re.compile(r"^(la\s+)?salud\??$")

REASON_LABELS = {
    "no_category": "sin categoría",
    "no_featured_image": "sin imagen",
    "no_price": "sin precio",
    "no_description": "sin descripción",
    "variable_product": "variable",
}


@dataclass(frozen=True)
class QueryReport:
    """One row of the report registry."""
    code: str
    key: str
    pattern: "re.Pattern[str]"
    label: str
    fetch: Callable[[Any], List[Dict[str, Any]]]


REPORTS: List[QueryReport] = [
    QueryReport("A1", "no_price", re.compile(r"\bsin precios?\b"), "sin precio", lambda c: c.without_price()),
    QueryReport(
        "A2",
        "no_description",
        re.compile(r"\bsin (?:la )?descripcion(?:es)?\b"),
        "sin descripción",
        lambda c: c.without_description(),
    ),
    QueryReport("A3", "no_sku", re.compile(r"\bsin skus?\b"), "sin SKU", lambda c: c.without_sku()),
    QueryReport(
        "A4",
        "no_category",
        re.compile(r"\b(?:sin categorias?|sin categorizar|uncategorized)\b"),
        "sin categoría",
        lambda c: c.without_category(),
    ),
    QueryReport(
        "A5",
        "no_featured_image",
        re.compile(r"\bsin (?:imagen|imagenes|foto|fotos)(?: destacada)?\b"),
        "sin imagen destacada",
        lambda c: c.without_image(),
    ),
    QueryReport(
        "A6",
        "incomplete",
        re.compile(r"\bincomplet[oa]s?\b|\ba medio cargar\b"),
        "incompletos",
        lambda c: c.incomplete(),
    ),
    QueryReport(
        "A7",
        "out_of_stock",
        re.compile(r"\b(?:sin stock|agotad[oa]s?|sin existencias?)\b"),
        "sin stock",
        lambda c: c.out_of_stock(),
    ),
    QueryReport(
        "A7",
        "low_stock",
        re.compile(r"\b(?:bajo stock|poco stock|stock bajo|por agotarse)\b"),
        f"con stock bajo (≤ {LOW_STOCK_THRESHOLD})",
        lambda c: c.low_stock(),
    ),
    QueryReport(
        "A7",
        "backorder",
        re.compile(r"\b(?:backorder|en espera|pedido pendiente)\b"),
        "en backorder",
        lambda c: c.backorder(),
    ),
]

HEALTH_LABELS = [
    ("no_price", "sin precio"),
    ("no_description", "sin descripción"),
    ("no_sku", "sin SKU"),
    ("no_category", "sin categoría"),
    ("no_featured_image", "sin imagen destacada"),
    ("out_of_stock", "sin stock"),
    ("low_stock", "stock bajo"),
    ("backorder", "en backorder"),
]

PRODUCT_INFO_START_RE = re.compile(
    r"^(que|cual|cuales|cuanto|cuanta|cuantas|cuantos|mostrame|mostra|ver|info|informacion|detalle|dame|decime|como)\b"
)
PRODUCT_INFO_FIELD_RE = re.compile(r"\b(precio|stock|categorias?|sku|info|informacion|detalle|datos|producto)\b")


def match_report(normalized: str) -> Optional[QueryReport]:
    for report in REPORTS:
        if report.pattern.search(normalized or ""):
            return report
    return None


def reports_for_code(code: str) -> List[QueryReport]:
    return [report for report in REPORTS if report.code == code]


def is_health_request(normalized: str) -> bool:
    return bool(HEALTH_RE.search(normalized or ""))


def is_bare_health(normalized: str) -> bool:
    return bool(BARE_HEALTH_RE.match((normalized or "").strip()))


def _plural(count: int) -> str:
    return "producto" if count == 1 else "productos"


def _row_line(row: Dict[str, Any], with_reasons: bool = False) -> str:
    line = f"• {truncate_text(str(row.get('title') or ''), 80)} (ID {row['id']})"
    if with_reasons and row.get("reasons"):
        labels = [REASON_LABELS.get(reason, reason) for reason in row["reasons"]]
        line += " — " + ", ".join(labels)
    return line


def render_report(report: QueryReport, rows: List[Dict[str, Any]], count_only: bool, limit: int) -> str:
    """Purpose: Render one report as the consult message.
    Inputs/Outputs: Inputs are the report row, its result rows, the count flag and the
        listing limit; output is the Spanish message.
    Side Effects / State: None.
    Dependencies: truncate_text and REASON_LABELS.
    Failure Modes: None; empty results render a positive message.
    If Removed: Query answers have no consistent wording.
    Testing Notes: Two products without price render "Encontré 2 productos sin precio."
        in count mode and a bullet list otherwise.
    """
    # Empty, count and listing variants.
    total = len(rows)
    if total == 0:
        return f"No encontré productos {report.label} ✅"
    if count_only:
        return f"Encontré {total} {_plural(total)} {report.label}."
    shown = rows[:limit]
    header = f"Encontré {total} {_plural(total)} {report.label}. Te muestro hasta {limit}:"
    lines = [header] + [_row_line(row, with_reasons=(report.key == "incomplete")) for row in shown]
    return "\n".join(lines)


def render_health(health: Dict[str, Any], full: bool = False) -> str:
    """Catalog health summary; full mode lists the top products of each bucket."""
    counts = health.get("counts") or {}
    lines = [
        f"Salud del catálogo: **{health.get('score', 0)}/100** ({health.get('total_products', 0)} productos publicados)",
    ]
    for key, label in HEALTH_LABELS:
        lines.append(f"• {label}: {int(counts.get(key) or 0)}")
    if full:
        top = health.get("top") or {}
        for key, label in HEALTH_LABELS:
            rows = top.get(key) or []
            if not rows:
                continue
            lines.append(f"\nTop {label}:")
            lines.extend(f"  - {truncate_text(str(row['title']), 80)} (ID {row['id']})" for row in rows)
    return "\n".join(lines)


def run_report_query(catalog, normalized: str) -> Optional[Dict[str, Any]]:
    """Purpose: Answer a report query written in natural language.
    Inputs/Outputs: Inputs are the catalog store and the normalized message; output is
        {code, message, meta} or None when the message is not a report query.
    Side Effects / State: None; reads the catalog only.
    Dependencies: REPORTS registry, catalog.health for A8.
    Failure Modes: Catalog failures raise ExternalError (caught by the router).
    If Removed: "productos sin precio" falls through to the language model.
    Testing Notes: "cuantos productos sin sku hay" returns a count sentence.
    """
    # A8 wins over single reports because the health summary mentions all of them.
    text = normalized or ""
    wants_full = bool(FULL_RE.search(text))
    if is_health_request(text):
        health = catalog.health(top_limit=SUMMARY_LIMIT)
        logger.info("query code=A8 score=%s", health["score"])
        return {"code": "A8", "message": render_health(health, full=wants_full), "meta": {"score": health["score"]}}
    report = match_report(text)
    if report is None:
        return None
    rows = report.fetch(catalog)
    limit = FULL_LIMIT if wants_full else SUMMARY_LIMIT
    message = render_report(report, rows, count_only=bool(COUNT_RE.search(text)), limit=limit)
    logger.info("query code=%s key=%s total=%s", report.code, report.key, len(rows))
    return {"code": report.code, "message": message, "meta": {"report": report.key, "total": len(rows)}}


def run_query_code(catalog, code: str, mode: str = "summary") -> Optional[Dict[str, Any]]:
    """Answer an allowlisted query code coming from the semantic gate."""
    if code == "A8":
        health = catalog.health(top_limit=SUMMARY_LIMIT)
        return {"code": "A8", "message": render_health(health, full=(mode in {"full", "top5"})), "meta": {"score": health["score"]}}
    reports = reports_for_code(code)
    if not reports:
        return None
    limit = FULL_LIMIT if mode == "full" else SUMMARY_LIMIT
    parts = [render_report(report, report.fetch(catalog), count_only=False, limit=limit) for report in reports]
    return {"code": code, "message": "\n\n".join(parts), "meta": {"mode": mode}}


def looks_like_product_info(normalized: str, raw: str) -> bool:
    """Question-shaped message about one product ("¿qué precio tiene el #12?")."""
    text = normalized or ""
    if not PRODUCT_INFO_FIELD_RE.search(text):
        return False
    return bool(PRODUCT_INFO_START_RE.search(text) or "?" in (raw or ""))


def render_product_info(product: Dict[str, Any], normalized: str) -> str:
    """Purpose: Describe one product, focusing on the field the user asked about.
    Inputs/Outputs: Inputs are the catalog product dict and the normalized question; output
        is the consult message.
    Side Effects / State: None.
    Dependencies: format_price_human, truncate_text.
    Failure Modes: Missing fields render as "sin ..." instead of raising.
    If Removed: Product info questions get a generic listing.
    Testing Notes: "que precio tiene el #12" on a product priced 100.00 mentions "$100".
    """
    # One line for a focused question, a short card otherwise.
    title = truncate_text(str(product.get("title") or ""), 80)
    label = f"#{product['id']} ({title})"
    price = product.get("regular_price")
    price_text = f"${format_price_human(price)}" if price else "sin precio"
    qty = product.get("stock_quantity")
    if product.get("manage_stock") and qty is not None:
        stock_text = f"{int(qty)} unidades"
    else:
        stock_text = "sin gestión de stock" if product.get("stock_status") != "outofstock" else "agotado"
    categories = ", ".join(product.get("categories") or []) or "sin categoría"
    if re.search(r"\bprecio\b", normalized):
        return f"El precio del producto {label} es {price_text}."
    if re.search(r"\bstock\b", normalized):
        return f"El stock del producto {label} es {stock_text}."
    if re.search(r"\bcategorias?\b", normalized):
        return f"El producto {label} está en: {categories}."
    if re.search(r"\bsku\b", normalized):
        sku = product.get("sku") or "sin SKU"
        return f"El SKU del producto {label} es {sku}."
    lines = [
        f"Producto {label}",
        f"• Precio: {price_text}",
        f"• Stock: {stock_text}",
        f"• SKU: {product.get('sku') or 'sin SKU'}",
        f"• Categorías: {categories}",
    ]
    return "\n".join(lines)
