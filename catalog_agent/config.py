from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class Settings:
    """Configuration container for the language model, storage and dialogue limits."""
    gemini_api_key: str
    gemini_model: str
    llm_timeout_sec: float
    session_ttl_sec: int
    session_store_path: Path
    max_sessions: int
    catalog_path: Path
    prompts_dir: Path
    selection_page_size: int
    selection_cache_limit: int
    log_level: str


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables and filesystem paths.
    Dependencies: Uses os.getenv and BASE_DIR for default paths.
    Failure Modes: Invalid numeric env values raise ValueError.
    If Removed: App cannot configure the model, the session store or the catalog.
    Testing Notes: Verify defaults and overrides via environment variables.
    """
    # Resolve data paths, then build Settings.
    data_dir = (BASE_DIR / "data").resolve()
    store_path = os.getenv("SESSION_STORE_PATH")
    catalog_path = os.getenv("CATALOG_PATH")

    return Settings(
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        llm_timeout_sec=float(os.getenv("LLM_TIMEOUT_SEC", "12")),
        session_ttl_sec=int(os.getenv("SESSION_TTL_SEC", str(2 * 60 * 60))),
        session_store_path=Path(store_path) if store_path else data_dir / "sessions.json",
        max_sessions=int(os.getenv("MAX_SESSIONS", "200")),
        catalog_path=Path(catalog_path) if catalog_path else (BASE_DIR / ".." / "resources" / "catalog.json").resolve(),
        prompts_dir=(BASE_DIR / "prompts").resolve(),
        selection_page_size=int(os.getenv("SELECTION_PAGE_SIZE", "20")),
        selection_cache_limit=int(os.getenv("SELECTION_CACHE_LIMIT", "50")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
