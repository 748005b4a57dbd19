"""Ask an LLM to name the extracted function."""

from __future__ import annotations

import re
import threading
from typing import List, Optional

from . import llm_client as _llm_client
from .config import RextractConfig
from .errors import InvalidIdentifier
from .selection import ExtractionConfig, validate_identifier

# Hard wall-clock margin on top of the client's own HTTP timeout.
_API_TIMEOUT_MARGIN = 30

_FN_NAME = re.compile(r"\bfn\s+([A-Za-z_][A-Za-z0-9_]*)")

_NAME_TOOL: dict = {
    "name": "name_extracted_function",
    "description": "Suggest a concise name for a function extracted from Rust code",
    "input_schema": {
        "type": "object",
        "properties": {
            "name": {
                "type": "string",
                "description": "snake_case Rust identifier, no leading underscore",
            },
        },
        "required": ["name"],
    },
}


class _ApiTimeout(Exception):
    """Raised when an LLM API call exceeds the hard per-call timeout."""


def _run_with_timeout(func, timeout, *args, **kwargs):
    """Run *func* in a daemon thread; raise _ApiTimeout if it doesn't finish."""
    result: list = [None]
    exc: list = [None]

    def target():
        try:
            result[0] = func(*args, **kwargs)
        except BaseException as e:
            exc[0] = e

    t = threading.Thread(target=target, daemon=True)
    t.start()
    t.join(timeout=timeout)
    if t.is_alive():
        raise _ApiTimeout(f"API call exceeded {timeout}s hard limit")
    if exc[0] is not None:
        raise exc[0]
    return result[0]


def existing_function_names(source: str) -> set:
    return set(_FN_NAME.findall(source))


def _prompt(config: ExtractionConfig) -> str:
    params = ", ".join(p.declaration for p in config.selected_parameters) or "none"
    returns = config.return_value.type if config.return_value else "()"
    body = "\n".join(e.text for e in config.elements)
    return (
        "Name this Rust function, extracted from "
        f"'{config.function.name}'. Provide one concise snake_case name.\n\n"
        f"Parameters: {params}\n"
        f"Returns: {returns}\n"
        f"Body:\n```rust\n{body.strip()}\n```"
    )


def _llm_name(
    client, model: str, provider: str, config: ExtractionConfig
) -> Optional[str]:
    result = _llm_client.call_with_tool(
        client,
        provider,
        model,
        128,
        _NAME_TOOL,
        "name_extracted_function",
        [{"role": "user", "content": _prompt(config)}],
        caller="rextract naming",
    )
    if not result or not isinstance(result.get("name"), str):
        return None
    return result["name"].strip().lstrip("_") or None


def suggest_name(
    config: ExtractionConfig,
    settings: RextractConfig,
    messages: Optional[List[str]] = None,
) -> str:
    """Return an LLM-proposed name for the new function, or the default name.

    Any failure (missing key, API error, timeout, unusable or already
    taken name) falls back to ``settings.default_name`` and is reported in
    *messages*.
    """
    fallback = settings.default_name
    try:
        api_key = _llm_client.get_api_key(settings.provider, "rextract naming")
        client = _llm_client.make_client(
            settings.provider, api_key, settings.api_timeout, settings.base_url
        )
        name = _run_with_timeout(
            _llm_name,
            settings.api_timeout + _API_TIMEOUT_MARGIN,
            client,
            settings.model,
            settings.provider,
            config,
        )
    except Exception as exc:
        if messages is not None:
            messages.append(f"name suggestion failed, using {fallback!r}: {exc}")
        return fallback
    if name is None:
        return fallback
    try:
        validate_identifier(name)
    except InvalidIdentifier:
        if messages is not None:
            messages.append(f"ignoring suggested name {name!r}: not an identifier")
        return fallback
    if name in existing_function_names(config.source):
        if messages is not None:
            messages.append(f"ignoring suggested name {name!r}: already defined")
        return fallback
    return name
