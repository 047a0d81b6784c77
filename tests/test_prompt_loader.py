from pathlib import Path

import pytest

from catalog_agent import prompt_loader
from catalog_agent.errors import ExternalError
from catalog_agent.prompt_loader import render_prompt

PROMPTS_DIR = Path(prompt_loader.__file__).parent / "prompts"


def test_bundled_templates_fill_both_placeholders():
    for name in ("chitchat.txt", "intent_parse.txt"):
        prompt = render_prompt(PROMPTS_DIR, name, "precio 100", '{"stats":{}}')
        assert "precio 100" in prompt
        assert '{"stats":{}}' in prompt
        assert "<<" not in prompt


def test_message_placeholders_are_not_expanded(tmp_path):
    (tmp_path / "t.txt").write_text("\ufeffctx=<<CONTEXT_LITE>> msg=<<MESSAGE>>", encoding="utf-8")
    prompt = render_prompt(tmp_path, "t.txt", "hola <<CONTEXT_LITE>>", '{"a":1}')
    assert prompt == 'ctx={"a":1} msg=hola <<CONTEXT_LITE>>'


def test_missing_or_incomplete_template_is_an_llm_failure(tmp_path):
    with pytest.raises(ExternalError) as missing:
        render_prompt(tmp_path, "nope.txt", "hola", "{}")
    assert missing.value.collaborator == "llm"
    (tmp_path / "bare.txt").write_text("solo <<MESSAGE>>", encoding="utf-8")
    with pytest.raises(ExternalError):
        render_prompt(tmp_path, "bare.txt", "hola", "{}")
