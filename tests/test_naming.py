from __future__ import annotations

import time
from unittest.mock import MagicMock, patch

import pytest

from rextract.config import RextractConfig
from rextract.errors import RextractAPIError
from rextract.naming import (
    _ApiTimeout,
    _llm_name,
    _run_with_timeout,
    existing_function_names,
    suggest_name,
)
from rextract.selection import build_config

SOURCE = """fn total_price(price: u64, qty: u64) -> u64 {
    let subtotal = price * qty;
    subtotal + 5
}

fn helper() {}
"""


def _config():
    start = SOURCE.index("let subtotal")
    end = start + len("let subtotal = price * qty;")
    return build_config(SOURCE, start, end)


def _mock_response(name):
    block = MagicMock()
    block.type = "tool_use"
    block.name = "name_extracted_function"
    block.input = {"name": name}
    response = MagicMock()
    response.content = [block]
    return response


@pytest.fixture
def anthropic_key(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")


# ---------------------------------------------------------------------------
# _run_with_timeout
# ---------------------------------------------------------------------------


def test_run_with_timeout_success():
    assert _run_with_timeout(lambda x: x * 2, 5, 21) == 42


def test_run_with_timeout_exceeds():
    with pytest.raises(_ApiTimeout):
        _run_with_timeout(lambda: time.sleep(10), timeout=0.05)


def test_run_with_timeout_propagates_exception():
    def _raise():
        raise ValueError("test error")

    with pytest.raises(ValueError, match="test error"):
        _run_with_timeout(_raise, 5)


# ---------------------------------------------------------------------------
# _llm_name
# ---------------------------------------------------------------------------


def test_llm_name_strips_leading_underscores():
    client = MagicMock()
    client.messages.create.return_value = _mock_response("__subtotal_of")
    assert _llm_name(client, "m", "anthropic", _config()) == "subtotal_of"


def test_llm_name_without_tool_use_is_none():
    client = MagicMock()
    response = MagicMock()
    response.content = []
    client.messages.create.return_value = response
    assert _llm_name(client, "m", "anthropic", _config()) is None


def test_llm_name_prompt_mentions_enclosing_function():
    client = MagicMock()
    client.messages.create.return_value = _mock_response("subtotal_of")
    _llm_name(client, "m", "anthropic", _config())
    kwargs = client.messages.create.call_args.kwargs
    prompt = kwargs["messages"][0]["content"]
    assert "'total_price'" in prompt
    assert "price: u64, qty: u64" in prompt
    assert "let subtotal = price * qty;" in prompt
    assert kwargs["tool_choice"] == {
        "type": "tool",
        "name": "name_extracted_function",
    }


# ---------------------------------------------------------------------------
# suggest_name
# ---------------------------------------------------------------------------


@patch("rextract.llm_client.anthropic")
def test_suggest_name_uses_llm_answer(mock_anthropic, anthropic_key):
    client = mock_anthropic.Anthropic.return_value
    client.messages.create.return_value = _mock_response("subtotal_of")
    assert suggest_name(_config(), RextractConfig()) == "subtotal_of"


def test_suggest_name_missing_key_falls_back(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    messages = []
    name = suggest_name(_config(), RextractConfig(default_name="step"), messages)
    assert name == "step"
    assert "ANTHROPIC_API_KEY is not set" in messages[0]


@patch("rextract.llm_client.call_with_tool")
def test_suggest_name_api_error_falls_back(mock_call, anthropic_key):
    mock_call.side_effect = RextractAPIError("rextract naming: boom")
    messages = []
    assert suggest_name(_config(), RextractConfig(), messages) == "extracted"
    assert "boom" in messages[0]


@patch("rextract.llm_client.call_with_tool")
def test_suggest_name_rejects_keyword(mock_call, anthropic_key):
    mock_call.return_value = {"name": "match"}
    messages = []
    assert suggest_name(_config(), RextractConfig(), messages) == "extracted"
    assert "not an identifier" in messages[0]


@patch("rextract.llm_client.call_with_tool")
def test_suggest_name_rejects_existing_function(mock_call, anthropic_key):
    mock_call.return_value = {"name": "helper"}
    messages = []
    assert suggest_name(_config(), RextractConfig(), messages) == "extracted"
    assert "already defined" in messages[0]


@patch("rextract.llm_client.call_with_tool", return_value=None)
def test_suggest_name_no_answer_falls_back(mock_call, anthropic_key):
    assert suggest_name(_config(), RextractConfig()) == "extracted"


@patch("rextract.naming._run_with_timeout", side_effect=_ApiTimeout("too slow"))
def test_suggest_name_timeout_falls_back(mock_run, anthropic_key):
    messages = []
    assert suggest_name(_config(), RextractConfig(), messages) == "extracted"
    assert "too slow" in messages[0]


def test_existing_function_names():
    assert existing_function_names(SOURCE) == {"total_price", "helper"}
