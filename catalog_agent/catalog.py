"""Read-only catalog store and the report queries behind the A1..A8 health checks.

Products are loaded from a JSON file (a list, or a dict with "products"/"items") into
normalized dicts. Only products with status "publish" are visible. Nothing in this
module writes to the catalog; the executor that applies confirmed actions lives outside
the dialogue core.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .errors import ExternalError
from .utils import levenshtein, normalize_key, normalize_title

logger = logging.getLogger("catalog_agent.catalog")

DEFAULT_CATEGORY = "Uncategorized"
DEFAULT_CATEGORY_ALIASES = {"uncategorized", "sincategorizar", "sincategoria"}
LOW_STOCK_THRESHOLD = 3
MAX_SEARCH_LIMIT = 100
DEFAULT_SEARCH_LIMIT = 20

READABLE_FIELDS = (
    "title",
    "sku",
    "regular_price",
    "manage_stock",
    "stock_quantity",
    "stock_status",
    "categories",
    "description",
    "short_description",
    "image",
)


@dataclass
class Candidate:
    """Read projection of one catalog product."""
    id: int
    title: str
    sku: str = ""
    price: str = ""
    thumb_url: str = ""
    categories: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SearchResult:
    """Resolver answer: the full match count plus one page of candidates."""
    total: int
    items: List[Candidate] = field(default_factory=list)


@dataclass
class CatalogMeta:
    """Metadata describing the loaded catalog file for logging."""
    file_name: str
    updated_at: str
    sha256: str


def candidate_from_product(product: Dict[str, Any]) -> Candidate:
    return Candidate(
        id=int(product["id"]),
        title=str(product.get("title") or ""),
        sku=str(product.get("sku") or ""),
        price=str(product.get("regular_price") or ""),
        thumb_url=str(product.get("image") or ""),
        categories=list(product.get("categories") or []),
    )


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "yes", "true", "si", "on"}


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(str(value)))
    except ValueError:
        return None


def normalize_product(item: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Purpose: Coerce one raw product record into the store's canonical shape.
    Inputs/Outputs: Input is a raw dict; output is a normalized dict or None without id.
    Side Effects / State: None.
    Dependencies: _to_bool/_to_int helpers.
    Failure Modes: Records without a positive integer id are skipped (None).
    If Removed: Lookups compare mixed types ("12" vs 12) and report filters misfire.
    Testing Notes: Feed string ids, "yes" flags and comma-separated categories.
    """
    # Accept a few common aliases so exported catalogs load unchanged.
    product_id = _to_int(item.get("id", item.get("ID")))
    if not product_id or product_id <= 0:
        return None
    categories = item.get("categories") or []
    if isinstance(categories, str):
        categories = [part.strip() for part in categories.split(",")]
    names: List[str] = []
    for category in categories:
        name = category.get("name") if isinstance(category, dict) else category
        if name and str(name).strip():
            names.append(str(name).strip())
    image = item.get("image") or ""
    if isinstance(image, dict):
        image = image.get("src") or ""
    return {
        "id": product_id,
        "title": str(item.get("title", item.get("name")) or "").strip(),
        "sku": str(item.get("sku") or "").strip(),
        "regular_price": str(item.get("regular_price", item.get("price")) or "").strip(),
        "manage_stock": _to_bool(item.get("manage_stock")),
        "stock_quantity": _to_int(item.get("stock_quantity")),
        "stock_status": str(item.get("stock_status") or "instock").strip(),
        "categories": names,
        "description": str(item.get("description") or ""),
        "short_description": str(item.get("short_description") or ""),
        "image": str(image or ""),
        "type": str(item.get("type") or "simple"),
        "status": str(item.get("status") or "publish"),
    }


class JsonCatalogStore:
    """Read-only catalog backed by a JSON file or an in-memory product list."""

    def __init__(
        self,
        path: Optional[Path] = None,
        products: Optional[Iterable[Dict[str, Any]]] = None,
        categories: Optional[Iterable[str]] = None,
    ) -> None:
        """Purpose: Configure the store with a file path or preloaded products.
        Inputs/Outputs: Inputs are an optional path, product list and extra category names.
        Side Effects / State: In-memory products are normalized immediately; files load lazily.
        Dependencies: normalize_product; _load for file-backed stores.
        Failure Modes: None at init; file errors surface as ExternalError on first use.
        If Removed: Resolver, no-op filter and queries have nothing to read.
        Testing Notes: Tests pass products=[...] to avoid touching the filesystem.
        """
        # Keep the source and defer file reads until the first lookup.
        self._path = path
        self._products: Optional[Dict[int, Dict[str, Any]]] = None
        self._extra_categories = [str(name) for name in (categories or [])]
        self.meta: Optional[CatalogMeta] = None
        if products is not None:
            self._products = self._index(products)

    @staticmethod
    def _index(items: Iterable[Dict[str, Any]]) -> Dict[int, Dict[str, Any]]:
        indexed: Dict[int, Dict[str, Any]] = {}
        for item in items:
            if not isinstance(item, dict):
                continue
            product = normalize_product(item)
            if product:
                indexed[product["id"]] = product
        return indexed

    def _load(self) -> Dict[int, Dict[str, Any]]:
        """Purpose: Read and index the catalog file once.
        Inputs/Outputs: No inputs; returns the id -> product mapping.
        Side Effects / State: Caches products and meta (file name, mtime, sha256).
        Dependencies: json, hashlib, normalize_product.
        Failure Modes: Missing file or invalid JSON raises ExternalError("catalog").
        If Removed: File-backed deployments cannot read products.
        Testing Notes: Point CATALOG_PATH at a temp file and check meta.sha256.
        """
        # Read bytes for hashing and parse JSON into normalized products.
        if self._products is not None:
            return self._products
        if not self._path:
            self._products = {}
            return self._products
        try:
            raw_bytes = self._path.read_bytes()
            data = json.loads(raw_bytes.decode("utf-8-sig"))
        except (OSError, ValueError) as exc:
            raise ExternalError("catalog", str(exc)) from exc
        if isinstance(data, dict):
            self._extra_categories.extend(str(name) for name in data.get("categories", []) or [])
            items = data.get("products", data.get("items", []))
        elif isinstance(data, list):
            items = data
        else:
            items = []
        self._products = self._index(items)
        self.meta = CatalogMeta(
            file_name=self._path.name,
            updated_at=datetime.fromtimestamp(self._path.stat().st_mtime).isoformat(),
            sha256=hashlib.sha256(raw_bytes).hexdigest(),
        )
        logger.info(
            "catalog loaded file=%s products=%s sha256=%s",
            self.meta.file_name,
            len(self._products),
            self.meta.sha256[:12],
        )
        return self._products

    def _published(self) -> List[Dict[str, Any]]:
        return [product for product in self._load().values() if product.get("status") == "publish"]

    def published_desc(self) -> List[Dict[str, Any]]:
        """Published products ordered by id, newest first."""
        return sorted(self._published(), key=lambda product: product["id"], reverse=True)

    def count(self) -> int:
        return len(self._published())

    def get_product(self, entity_id: int) -> Optional[Dict[str, Any]]:
        product = self._load().get(int(entity_id))
        if not product or product.get("status") != "publish":
            return None
        return dict(product)

    def resolve_by_id(self, entity_id: int) -> SearchResult:
        product = self.get_product(entity_id)
        if not product:
            return SearchResult(total=0)
        return SearchResult(total=1, items=[candidate_from_product(product)])

    def resolve_by_sku(self, sku: str) -> SearchResult:
        wanted = (sku or "").strip().lower()
        if not wanted:
            return SearchResult(total=0)
        for product in self.published_desc():
            if product.get("sku", "").lower() == wanted:
                return SearchResult(total=1, items=[candidate_from_product(product)])
        return SearchResult(total=0)

    def resolve_by_name_exact(self, name: str) -> SearchResult:
        """Case and accent insensitive title equality."""
        wanted = normalize_title(name)
        if not wanted:
            return SearchResult(total=0)
        hits = [candidate_from_product(p) for p in self.published_desc() if normalize_title(p["title"]) == wanted]
        return SearchResult(total=len(hits), items=hits)

    def search_by_title_like(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT, offset: int = 0) -> SearchResult:
        """Purpose: Paginated substring search over titles, newest first.
        Inputs/Outputs: Inputs are query, limit (clamped to 1..100) and offset; output is
            SearchResult with the full match count and one page of candidates.
        Side Effects / State: None.
        Dependencies: normalize_title for both sides of the comparison.
        Failure Modes: Empty queries return total 0.
        If Removed: Updates by product name cannot open a target selection.
        Testing Notes: With 3 "remera" products, limit=2 returns total=3 and 2 items.
        """
        # Filter on normalized titles, then slice the requested page.
        wanted = normalize_title(query)
        if not wanted:
            return SearchResult(total=0)
        limit = max(1, min(int(limit or DEFAULT_SEARCH_LIMIT), MAX_SEARCH_LIMIT))
        offset = max(0, int(offset or 0))
        hits = [p for p in self.published_desc() if wanted in normalize_title(p["title"])]
        page = hits[offset : offset + limit]
        return SearchResult(total=len(hits), items=[candidate_from_product(p) for p in page])

    def nth_by_id(self, n: int, descending: bool = False) -> Optional[int]:
        """N-th published product id (1-based) by creation id; descending counts from the newest."""
        if n <= 0:
            return None
        ordered = sorted(self._published(), key=lambda product: product["id"], reverse=descending)
        if n > len(ordered):
            return None
        return int(ordered[n - 1]["id"])

    def read_current_fields(self, entity_id: int, keys: Iterable[str]) -> Dict[str, Any]:
        """Current values for the given keys; "name" is accepted as an alias of "title"."""
        product = self.get_product(entity_id)
        if not product:
            return {}
        current: Dict[str, Any] = {}
        for key in keys:
            source = "title" if key == "name" else key
            if source in product:
                value = product[source]
                current[key] = list(value) if isinstance(value, list) else value
        return current

    def category_names(self) -> List[str]:
        names: Dict[str, str] = {}
        for product in self._published():
            for name in product.get("categories") or []:
                names.setdefault(normalize_key(name), name)
        for name in self._extra_categories:
            names.setdefault(normalize_key(name), name)
        return sorted(names.values(), key=str.lower)

    def find_category(self, name: str) -> Optional[str]:
        """Existing category whose normalized key equals the requested name."""
        wanted = normalize_key(name)
        if not wanted:
            return None
        for existing in self.category_names():
            if normalize_key(existing) == wanted:
                return existing
        return None

    def suggest_categories(self, name: str, limit: int = 3) -> List[str]:
        """Closest category names by substring first, then edit distance."""
        wanted = normalize_key(name)
        if not wanted:
            return []
        scored = []
        for existing in self.category_names():
            key = normalize_key(existing)
            if not key:
                continue
            if wanted in key or key in wanted:
                score = 0
            else:
                score = levenshtein(wanted, key)
            scored.append((score, existing))
        scored.sort(key=lambda item: (item[0], item[1].lower()))
        threshold = max(3, len(wanted) // 2)
        return [name for score, name in scored if score <= threshold][:limit]

    # --- report queries (A1..A8) ---

    def without_price(self) -> List[Dict[str, Any]]:
        return [p for p in self.published_desc() if not p.get("regular_price")]

    def without_description(self) -> List[Dict[str, Any]]:
        return [
            p
            for p in self.published_desc()
            if not p.get("description", "").strip() and not p.get("short_description", "").strip()
        ]

    def without_sku(self) -> List[Dict[str, Any]]:
        return [p for p in self.published_desc() if not p.get("sku")]

    def without_category(self) -> List[Dict[str, Any]]:
        """Products with no category other than the default "Uncategorized"."""
        rows = []
        for product in self.published_desc():
            real = [c for c in product.get("categories") or [] if normalize_key(c) not in DEFAULT_CATEGORY_ALIASES]
            if not real:
                rows.append(product)
        return rows

    def without_image(self) -> List[Dict[str, Any]]:
        return [p for p in self.published_desc() if not p.get("image")]

    def incomplete(self) -> List[Dict[str, Any]]:
        """Products missing category, image, price or description (variable products always listed)."""
        rows = []
        no_category = {p["id"] for p in self.without_category()}
        for product in self.published_desc():
            reasons = []
            if product["id"] in no_category:
                reasons.append("no_category")
            if not product.get("image"):
                reasons.append("no_featured_image")
            if not product.get("regular_price") or product.get("regular_price") in {"0", "0.00"}:
                reasons.append("no_price")
            if not product.get("description", "").strip():
                reasons.append("no_description")
            if product.get("type") == "variable":
                reasons.append("variable_product")
            if reasons:
                row = dict(product)
                row["reasons"] = reasons
                rows.append(row)
        return rows

    def out_of_stock(self) -> List[Dict[str, Any]]:
        rows = []
        for product in self.published_desc():
            qty = product.get("stock_quantity")
            if product.get("stock_status") == "outofstock" or (product.get("manage_stock") and qty is not None and qty <= 0):
                rows.append(product)
        return rows

    def low_stock(self, threshold: int = LOW_STOCK_THRESHOLD) -> List[Dict[str, Any]]:
        rows = []
        for product in self.published_desc():
            qty = product.get("stock_quantity")
            if product.get("manage_stock") and qty is not None and 0 < qty <= threshold:
                rows.append(product)
        return rows

    def backorder(self) -> List[Dict[str, Any]]:
        return [p for p in self.published_desc() if p.get("stock_status") == "onbackorder"]

    def health(self, top_limit: int = 5, low_threshold: int = LOW_STOCK_THRESHOLD) -> Dict[str, Any]:
        """Purpose: Aggregate A1..A7 counts into a 0..100 catalog health score.
        Inputs/Outputs: Inputs are the example count per bucket and the low stock threshold;
            output is {total_products, low_threshold, score, counts, top}.
        Side Effects / State: None.
        Dependencies: The report helpers above.
        Failure Modes: An empty catalog scores 100.
        If Removed: "salud del catálogo" has no data to present.
        Testing Notes: A catalog where every product lacks a price scores at most 79.
        """
        # Data gaps weigh 70% and stock problems 30% of the final score.
        total = self.count()
        buckets = {
            "no_price": self.without_price(),
            "no_description": self.without_description(),
            "no_sku": self.without_sku(),
            "no_category": self.without_category(),
            "no_featured_image": self.without_image(),
            "out_of_stock": self.out_of_stock(),
            "low_stock": self.low_stock(low_threshold),
            "backorder": self.backorder(),
        }
        counts = {key: len(rows) for key, rows in buckets.items()}
        score = 100
        if total > 0:
            ratio = {key: min(1.0, value / total) for key, value in counts.items()}
            data_pen = (
                0.30 * ratio["no_price"]
                + 0.25 * ratio["no_description"]
                + 0.15 * ratio["no_featured_image"]
                + 0.15 * ratio["no_category"]
                + 0.15 * ratio["no_sku"]
            )
            stock_pen = 0.50 * ratio["out_of_stock"] + 0.30 * ratio["low_stock"] + 0.20 * ratio["backorder"]
            score_data = round(100 * (1.0 - data_pen))
            score_stock = round(100 * (1.0 - stock_pen))
            score = max(0, min(100, int(round(0.70 * score_data + 0.30 * score_stock))))
        top = {key: [{"id": p["id"], "title": p["title"]} for p in rows[:top_limit]] for key, rows in buckets.items()}
        return {
            "total_products": total,
            "low_threshold": low_threshold,
            "score": score,
            "counts": counts,
            "top": top,
        }
