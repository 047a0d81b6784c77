from __future__ import annotations

import logging
from typing import Dict, Optional

import google.generativeai as genai
from google.generativeai.types import HarmBlockThreshold, HarmCategory

from .config import Settings
from .errors import ExternalError
from .prompt_loader import render_prompt

logger = logging.getLogger("catalog_agent.llm")

DEFAULT_SAFETY_SETTINGS = [
    {"category": HarmCategory.HARM_CATEGORY_HARASSMENT, "threshold": HarmBlockThreshold.BLOCK_NONE},
    {"category": HarmCategory.HARM_CATEGORY_HATE_SPEECH, "threshold": HarmBlockThreshold.BLOCK_NONE},
    {"category": HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT, "threshold": HarmBlockThreshold.BLOCK_NONE},
    {"category": HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT, "threshold": HarmBlockThreshold.BLOCK_NONE},
]

CHITCHAT_TEMPERATURE = 0.6
CHITCHAT_MAX_TOKENS = 220
INTENT_TEMPERATURE = 0.0
INTENT_MAX_TOKENS = 280


class GeminiClient:
    """Thin wrapper around the Gemini SDK exposing the two dialogue operations."""

    def __init__(self, settings: Settings) -> None:
        """Purpose: Configure the Gemini SDK and initialize the model cache.
        Inputs/Outputs: Input is Settings; no return value.
        Side Effects / State: Configures the SDK API key and caches model instances.
        Dependencies: Uses google.generativeai and Settings from config.
        Failure Modes: Raises ValueError if the API key or model name is missing.
        If Removed: The agent runs with canned chit-chat and no semantic interpreter.
        Testing Notes: Tests use a fake client with draft_chitchat/parse_intent instead.
        """
        # Configure API key and seed default model cache.
        self._settings = settings
        if not settings.gemini_api_key:
            raise ValueError("GEMINI_API_KEY is required")
        genai.configure(api_key=settings.gemini_api_key)
        self._models: Dict[str, genai.GenerativeModel] = {}
        self._default_model = _normalize_model_name(settings.gemini_model)
        if not self._default_model:
            raise ValueError("Gemini model name is required")
        self._models[self._default_model] = genai.GenerativeModel(self._default_model)
        self._timeout = settings.llm_timeout_sec
        self._prompts_dir = settings.prompts_dir

    def generate_text(
        self,
        prompt: str,
        model: Optional[str] = None,
        temperature: float = 0.2,
        max_output_tokens: int = 1024,
    ) -> str:
        """Purpose: Generate a single text response from a string prompt.
        Inputs/Outputs: Input is the prompt and optional model/config; returns stripped text.
        Side Effects / State: May add a model to the internal cache.
        Dependencies: Uses genai.GenerativeModel.generate_content with a request timeout.
        Failure Modes: SDK errors and timeouts are raised as ExternalError("llm").
        If Removed: Neither chit-chat drafting nor intent parsing can call the model.
        Testing Notes: Ensure ExternalError wraps SDK exceptions.
        """
        # Resolve model name and ensure cached model instance exists.
        model_name = _normalize_model_name(model) if model else self._default_model
        if model_name not in self._models:
            self._models[model_name] = genai.GenerativeModel(model_name)
        try:
            response = self._models[model_name].generate_content(
                prompt,
                generation_config={
                    "temperature": temperature,
                    "max_output_tokens": max_output_tokens,
                },
                safety_settings=DEFAULT_SAFETY_SETTINGS,
                request_options={"timeout": self._timeout},
            )
            text: Optional[str] = getattr(response, "text", None)
        except Exception as exc:
            logger.warning("gemini call failed model=%s error=%s", model_name, exc)
            raise ExternalError("llm", str(exc)) from exc
        return (text or "").strip()

    def draft_chitchat(self, text: str, context_lite: str) -> Dict[str, object]:
        """Best-effort conversational reply; never trusted to carry actionable fields."""
        prompt = render_prompt(self._prompts_dir, "chitchat.txt", text, context_lite)
        reply = self.generate_text(prompt, temperature=CHITCHAT_TEMPERATURE, max_output_tokens=CHITCHAT_MAX_TOKENS)
        return {"ok": bool(reply), "text": reply}

    def parse_intent(self, text: str, context_lite: str) -> str:
        """Raw normalized-intent JSON text; callers must pass it through the semantic gate."""
        prompt = render_prompt(self._prompts_dir, "intent_parse.txt", text, context_lite)
        return self.generate_text(prompt, temperature=INTENT_TEMPERATURE, max_output_tokens=INTENT_MAX_TOKENS)


def _normalize_model_name(name: Optional[str]) -> str:
    """Strip the "models/" prefix and whitespace from a model name."""
    if not name:
        return ""
    cleaned = name.strip()
    if cleaned.startswith("models/"):
        return cleaned.split("/", 1)[1]
    return cleaned
