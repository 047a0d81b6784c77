from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import pytest

from catalog_agent.agent import CatalogAgent
from catalog_agent.catalog import JsonCatalogStore
from catalog_agent.errors import ExternalError
from catalog_agent.session_store import SessionStore

PRODUCTS: List[Dict[str, Any]] = [
    {
        "id": 5,
        "title": "Buzo Canguro",
        "sku": "BUZ-01",
        "regular_price": "5000.00",
        "manage_stock": True,
        "stock_quantity": 4,
        "categories": ["Ofertas"],
        "description": "Buzo frisado.",
        "image": "https://cdn.example.com/buzo.jpg",
    },
    {
        "id": 12,
        "title": "Remera Azul",
        "sku": "REM-AZ",
        "regular_price": "2500.00",
        "manage_stock": True,
        "stock_quantity": 10,
        "categories": ["Remeras"],
        "description": "Algodón.",
        "image": "https://cdn.example.com/remera-azul.jpg",
    },
    {
        "id": 15,
        "title": "Remera Roja",
        "sku": "REM-RO",
        "regular_price": "2500.00",
        "manage_stock": True,
        "stock_quantity": 2,
        "categories": ["Remeras", "Verano"],
        "description": "Algodón.",
        "image": "https://cdn.example.com/remera-roja.jpg",
    },
    {
        "id": 21,
        "title": "Remera Negra",
        "sku": "REM-NE",
        "regular_price": "2700.00",
        "manage_stock": True,
        "stock_quantity": 0,
        "stock_status": "outofstock",
        "categories": ["Remeras"],
        "description": "Básica.",
        "image": "https://cdn.example.com/remera-negra.jpg",
    },
    {
        "id": 30,
        "title": "Pantalón Cargo",
        "sku": "",
        "regular_price": "",
        "manage_stock": True,
        "stock_quantity": 7,
        "categories": ["Pantalones"],
        "description": "Gabardina.",
        "image": "https://cdn.example.com/pantalon.jpg",
    },
    {
        "id": 999,
        "title": "Gorra Trucker",
        "sku": "GOR-999",
        "regular_price": "1800.00",
        "manage_stock": True,
        "stock_quantity": 25,
        "categories": [],
        "description": "Gorra con malla.",
        "image": "",
    },
    {
        "id": 1000,
        "title": "Campera Rompeviento",
        "sku": "CAM-1000",
        "regular_price": "9000.00",
        "manage_stock": True,
        "stock_quantity": 3,
        "categories": ["Abrigos"],
        "description": "Impermeable.",
        "image": "https://cdn.example.com/campera.jpg",
    },
]
CATEGORIES = ["Remeras", "Ofertas", "Abrigos", "Verano", "Pantalones", "Uncategorized"]


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLLM:
    """Stands in for GeminiClient: canned intent JSON and chit-chat drafts."""

    def __init__(self, intent: Optional[Dict[str, Any]] = None, draft: str = "¡Hola! ¿En qué te ayudo?", fail: bool = False) -> None:
        self.intent = intent
        self.draft = draft
        self.fail = fail
        self.calls: List[str] = []

    def parse_intent(self, text: str, context_lite: str) -> str:
        self.calls.append("parse_intent")
        if self.fail:
            raise ExternalError("llm", "timeout")
        return json.dumps(self.intent or {"schema_version": "1.0", "kind": "unknown", "confidence": 0.2})

    def draft_chitchat(self, text: str, context_lite: str) -> Dict[str, object]:
        self.calls.append("draft_chitchat")
        if self.fail:
            raise ExternalError("llm", "timeout")
        return {"ok": True, "text": self.draft}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def catalog() -> JsonCatalogStore:
    return JsonCatalogStore(products=[dict(product) for product in PRODUCTS], categories=CATEGORIES)


@pytest.fixture
def store(clock: FakeClock) -> SessionStore:
    return SessionStore(ttl_sec=600, clock=clock)


@pytest.fixture
def agent(store: SessionStore, catalog: JsonCatalogStore, clock: FakeClock) -> CatalogAgent:
    return CatalogAgent(store=store, catalog=catalog, clock=clock)


def pending_of(envelope: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return envelope["session_state"].get("pending_action")
