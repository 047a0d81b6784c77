"""Prompt templates for the language-model collaborator.

Templates live in catalog_agent/prompts/ and carry <<MESSAGE>> and <<CONTEXT_LITE>>
placeholders. Rendering is a single pass, so a user message that happens to contain
"<<CONTEXT_LITE>>" is inserted literally instead of being expanded.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Dict

from .errors import ExternalError

PLACEHOLDER_RE = re.compile(r"<<([A-Z_]+)>>")
REQUIRED_PLACEHOLDERS = ("MESSAGE", "CONTEXT_LITE")


def load_prompt(prompt_path: Path) -> str:
    """Read a template as UTF-8, dropping a BOM and any undecodable bytes."""
    raw = prompt_path.read_bytes()
    return raw.decode("utf-8", errors="ignore").lstrip("\ufeff")


def render_prompt(prompts_dir: Path, name: str, message: str, context_lite: str) -> str:
    """Purpose: Build the final prompt for one model call from a named template.
    Inputs/Outputs: Inputs are the prompts directory, the template file name, the user
        message and the context-lite JSON; output is the rendered prompt text.
    Side Effects / State: None; reads the template file.
    Dependencies: load_prompt; GeminiClient.draft_chitchat and parse_intent.
    Failure Modes: A missing or unreadable template, or one without both placeholders,
        raises ExternalError("llm") so callers degrade like any other model failure.
    If Removed: The chit-chat and intent-parse calls have no prompt.
    Testing Notes: A message containing "<<CONTEXT_LITE>>" stays literal in the output.
    """
    # Validate placeholders before substituting anything.
    path = Path(prompts_dir) / name
    try:
        template = load_prompt(path)
    except OSError as exc:
        raise ExternalError("llm", f"prompt {name} unavailable: {exc}") from exc
    missing = [key for key in REQUIRED_PLACEHOLDERS if f"<<{key}>>" not in template]
    if missing:
        raise ExternalError("llm", f"prompt {name} lacks {', '.join(missing)}")
    values: Dict[str, str] = {"MESSAGE": message or "", "CONTEXT_LITE": context_lite or "{}"}
    return PLACEHOLDER_RE.sub(lambda match: values.get(match.group(1), match.group(0)), template)
