"""Replace the selected run with a call to the extracted function."""

from __future__ import annotations

from .edits import Edit
from .selection import ExtractionConfig, Owner

_MEMBER_OWNERS = (Owner.INHERENT_IMPL, Owner.TRAIT_IMPL, Owner.TRAIT)


def call_expression(config: ExtractionConfig) -> str:
    """Build ``self.name(args)``, ``Self::name(args)`` or ``name(args)``."""
    selected = config.selected_parameters
    args = config.arguments_text
    if selected and selected[0].is_self:
        call = f"self.{config.name}({args})"
    elif config.function.owner in _MEMBER_OWNERS:
        call = f"Self::{config.name}({args})"
    else:
        call = f"{config.name}({args})"
    if config.is_async:
        call += ".await"
    return call


def call_site_text(config: ExtractionConfig) -> str:
    """Return the text that replaces the whole selected run."""
    rv = config.return_value
    text = call_expression(config)
    if rv is not None and rv.expr_text is not None:
        text = f"let {rv.expr_text} = {text}"
    last = config.elements[-1]
    if last.is_statement:
        if last.kind == "expression_statement":
            if rv is None or rv.expr_text is not None:
                text += ";"
        else:
            text += ";"
    return text


def call_site_edit(config: ExtractionConfig) -> Edit:
    """Delete every selected element but the last and replace the last with the call."""
    return Edit(config.start, config.end, call_site_text(config))
