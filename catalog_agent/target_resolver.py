"""Selector -> catalog candidates, plus the target selection sub-protocol.

A selection keeps at most `cache_limit` candidates and shows `page_size` of them at a
time. The cached list is not the full result set: `total` may be larger, and it never
decreases while the user pages through results of the same query.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any, Callable, Dict, List, Optional

from .catalog import Candidate, SearchResult, candidate_from_product
from .errors import AmbiguousError, NotFoundError
from .parsers import Selector, extract_explicit_id, extract_ordinal_index, extract_sku
from .utils import normalize_text, normalize_title

logger = logging.getLogger("catalog_agent.resolver")

INDEX_REPLY_RE = re.compile(r"^(?:(?:la|el)\s+|opcion\s*)?(\d{1,4})$")
UNIQUE_SUBSTRING_MIN_LEN = 6


class TargetResolver:
    def __init__(
        self,
        catalog,
        page_size: int = 20,
        cache_limit: int = 50,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._catalog = catalog
        self._page_size = page_size
        self._cache_limit = cache_limit
        self._clock = clock

    def resolve(self, selector: Selector, state: Optional[Dict[str, Any]] = None) -> SearchResult:
        """Purpose: Map a selector to zero, one or many catalog candidates.
        Inputs/Outputs: Inputs are a Selector and the session state (for "contextual");
            output is SearchResult{total, items}.
        Side Effects / State: None.
        Dependencies: Catalog store lookups; "last"/"first" use creation id order.
        Failure Modes: Unknown selectors and unresolvable contexts return total 0.
        If Removed: No flow can tell which product a change targets.
        Testing Notes: "last" returns the highest id; a name hitting 3 titles returns total 3.
        """
        # Exact lookups first; names try title equality before substring search.
        kind = selector.kind
        if kind == "id":
            return self._catalog.resolve_by_id(int(selector.value))
        if kind == "sku":
            return self._catalog.resolve_by_sku(selector.value)
        if kind in {"last", "first"}:
            entity_id = self._catalog.nth_by_id(max(selector.index, 1), descending=(kind == "last"))
            if entity_id is None:
                return SearchResult(total=0)
            return self._catalog.resolve_by_id(entity_id)
        if kind == "contextual":
            last_id = (state or {}).get("last_target_product_id")
            if not last_id:
                return SearchResult(total=0)
            return self._catalog.resolve_by_id(int(last_id))
        if kind == "name":
            exact = self._catalog.resolve_by_name_exact(selector.value)
            if exact.total >= 1:
                return exact
            return self._catalog.search_by_title_like(selector.value, limit=self._cache_limit, offset=0)
        return SearchResult(total=0)

    def resolve_one(self, selector: Selector, state: Optional[Dict[str, Any]] = None) -> Candidate:
        """Single candidate or NotFoundError/AmbiguousError."""
        result = self.resolve(selector, state)
        if result.total == 0 or not result.items:
            raise NotFoundError(selector.kind, selector.value)
        if result.total > 1:
            raise AmbiguousError(selector.kind, selector.value, result.total, result.items)
        return result.items[0]

    def open_selection(self, error: AmbiguousError, intent: Dict[str, Any]) -> Dict[str, Any]:
        """Build the pending_target_selection record for an ambiguous selector."""
        items = [item.to_dict() if isinstance(item, Candidate) else dict(item) for item in error.items]
        return {
            "selector_kind": error.selector_kind,
            "query": error.query,
            "candidates": items[: self._cache_limit],
            "total": int(error.total),
            "limit": self._page_size,
            "offset": 0,
            "asked_at": self._clock(),
            "intent": dict(intent or {}),
        }

    def page(self, selection: Dict[str, Any]) -> List[Dict[str, Any]]:
        offset = int(selection.get("offset") or 0)
        limit = int(selection.get("limit") or self._page_size)
        return list(selection.get("candidates") or [])[offset : offset + limit]

    def load_more(self, selection: Dict[str, Any]) -> Dict[str, Any]:
        """Purpose: Advance an open selection to its next page.
        Inputs/Outputs: Input is the selection record; output is the updated record.
        Side Effects / State: None; the caller persists the result.
        Dependencies: catalog.search_by_title_like for name selections beyond the cache.
        Failure Modes: At the end of the results the offset stays on the last page.
        If Removed: Candidates past the first page cannot be reached.
        Testing Notes: Repeated calls never lower "total" even if the catalog shrinks.
        """
        # Fetch missing candidates from the store, keep total monotonic.
        updated = dict(selection)
        cached = list(selection.get("candidates") or [])
        limit = int(selection.get("limit") or self._page_size)
        offset = int(selection.get("offset") or 0) + limit
        total = int(selection.get("total") or 0)
        if offset >= len(cached) and selection.get("selector_kind") == "name" and len(cached) < total:
            result = self._catalog.search_by_title_like(str(selection.get("query") or ""), limit=limit, offset=len(cached))
            known = {int(item["id"]) for item in cached}
            for item in result.items:
                if item.id not in known:
                    cached.append(item.to_dict())
            total = max(total, result.total)
        if offset >= len(cached):
            offset = max(0, int(selection.get("offset") or 0))
        updated["candidates"] = cached
        updated["total"] = max(int(selection.get("total") or 0), total)
        updated["offset"] = offset
        return updated

    def pick(self, selection: Dict[str, Any], raw: str) -> Optional[int]:
        """Purpose: Turn a reply into one of the selection's candidates.
        Inputs/Outputs: Inputs are the selection record and the raw reply; output is the
            chosen product id or None when the reply does not identify exactly one.
        Side Effects / State: None.
        Dependencies: Index/ordinal parsing, explicit id/sku tokens, title matching.
        Failure Modes: Ambiguous substrings and out-of-range indexes return None.
        If Removed: Users cannot answer "¿cuál de estos?".
        Testing Notes: "2" and "el segundo" pick the second cached candidate; "#123" picks by id;
            a unique 6+ char substring of one title picks that product.
        """
        # Index, ordinal, id, sku, exact title, then a unique substring.
        candidates = list(selection.get("candidates") or [])
        if not candidates:
            return None
        text = (raw or "").strip()
        normalized = normalize_text(text)
        ids = [int(item["id"]) for item in candidates]

        index_match = INDEX_REPLY_RE.match(normalized)
        if index_match:
            number = int(index_match.group(1))
            if 1 <= number <= len(candidates):
                return ids[number - 1]
            if number in ids:
                return number
            return None

        explicit_id = extract_explicit_id(normalized)
        if explicit_id is not None:
            if explicit_id in ids:
                return explicit_id
            product = self._catalog.get_product(explicit_id)
            query = normalize_title(str(selection.get("query") or ""))
            if product and query and query in normalize_title(product.get("title", "")):
                return explicit_id
            return None

        sku = extract_sku(text)
        if sku:
            for item in candidates:
                if str(item.get("sku") or "").lower() == sku.lower():
                    return int(item["id"])
            return None

        ordinal = extract_ordinal_index(normalized)
        if ordinal and 1 <= ordinal <= len(candidates):
            return ids[ordinal - 1]

        wanted = normalize_title(re.sub(r"^\s*#\s*", "", text))
        if not wanted:
            return None
        exact = [int(item["id"]) for item in candidates if normalize_title(item.get("title", "")) == wanted]
        if len(exact) == 1:
            return exact[0]
        if len(wanted) >= UNIQUE_SUBSTRING_MIN_LEN:
            partial = [int(item["id"]) for item in candidates if wanted in normalize_title(item.get("title", ""))]
            if len(partial) == 1:
                return partial[0]
        return None

    def candidate(self, entity_id: int) -> Optional[Candidate]:
        product = self._catalog.get_product(entity_id)
        return candidate_from_product(product) if product else None
