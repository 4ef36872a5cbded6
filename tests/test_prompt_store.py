from __future__ import annotations

import pytest

from app.services.prompt_store import render_prompt


def test_render_prompt_substitutes_template_values():
    prompt = render_prompt("research.extract_prompt", topic="grid storage")

    assert "Extract key information about grid storage." in prompt


def test_render_prompt_joins_line_lists():
    prompt = render_prompt("chat.title_prompt", message="hello there")

    assert "\n" in prompt
    assert prompt.endswith("Message: hello there")


def test_render_prompt_raises_for_unknown_key():
    with pytest.raises(KeyError):
        render_prompt("missing.prompt.key")


def test_render_prompt_raises_for_missing_value():
    with pytest.raises(KeyError, match="topic"):
        render_prompt("research.extract_prompt")
