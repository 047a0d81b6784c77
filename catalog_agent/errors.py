"""Error taxonomy shared by parsers, resolvers, the semantic gate and the router.

Only ValidationError carries a message meant for the end user. The others are caught
inside the dialogue pipeline and turned into a follow-up, a target selection, a silent
fall-through or a canned reply.
"""

from __future__ import annotations

from typing import List, Optional


class CatalogAgentError(Exception):
    """Base class for every error raised inside the dialogue pipeline."""


class ValidationError(CatalogAgentError):
    """A user-supplied value is invalid (negative price, negative stock, garbage number)."""

    def __init__(self, message: str, field: str = "") -> None:
        super().__init__(message)
        self.user_message = message
        self.field = field


class NotFoundError(CatalogAgentError):
    """A selector resolved to zero catalog candidates."""

    def __init__(self, selector_kind: str, query: str) -> None:
        super().__init__(f"no candidates for {selector_kind}={query!r}")
        self.selector_kind = selector_kind
        self.query = query


class AmbiguousError(CatalogAgentError):
    """A selector resolved to more than one catalog candidate."""

    def __init__(self, selector_kind: str, query: str, total: int, items: Optional[List[object]] = None) -> None:
        super().__init__(f"{total} candidates for {selector_kind}={query!r}")
        self.selector_kind = selector_kind
        self.query = query
        self.total = total
        self.items = list(items or [])


class GroundingRejected(CatalogAgentError):
    """A model-inferred selector does not appear in the raw user message."""

    def __init__(self, selector_type: str, value: str = "") -> None:
        super().__init__(f"selector {selector_type}={value!r} not grounded in message")
        self.selector_type = selector_type
        self.value = value


class SchemaError(CatalogAgentError):
    """Model output is malformed or outside the allowlist."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ExternalError(CatalogAgentError):
    """The catalog store or the language model failed or timed out."""

    def __init__(self, collaborator: str, detail: str = "") -> None:
        super().__init__(f"{collaborator} failed: {detail}" if detail else f"{collaborator} failed")
        self.collaborator = collaborator
        self.detail = detail
