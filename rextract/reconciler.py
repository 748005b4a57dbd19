"""Apply user-edited parameter names to the synthesized function."""

from __future__ import annotations

from typing import Optional

from tree_sitter import Node

from .edits import EditTransaction
from .errors import RenameCollision, SynthesisError
from .scopes import collect_bindings, collect_uses, references, resolve
from .selection import ExtractionConfig, validate_identifier
from .syntax import SourceFile


def _first_function(sf: SourceFile) -> Optional[Node]:
    for node in sf.root.named_children:
        if node.type == "function_item":
            return node
    return None


def reconcile_parameters(function_text: str, config: ExtractionConfig) -> str:
    """Rename parameters of *function_text* whose final name was edited.

    The synthesized text uses the inferred names; every parameter whose
    ``name`` differs from its ``original_name`` is renamed in the signature
    and in every reference inside this function, and nowhere else.  A name
    that is already bound in the function raises :class:`RenameCollision`
    before anything is changed.
    """
    params = [p for p in config.selected_parameters if not p.is_self]
    renames = {p.original_name: p.name for p in params if p.name != p.original_name}
    if not renames:
        return function_text

    final_names = [p.name for p in params]
    if len(set(final_names)) != len(final_names):
        raise RenameCollision(f"duplicate parameter names in {final_names}")

    sf = SourceFile(function_text)
    fn = _first_function(sf)
    if fn is None:
        raise SynthesisError("synthesized function text does not parse")
    bindings = collect_bindings(fn)
    uses = collect_uses(fn.child_by_field_name("body"), bindings)
    refs = references(uses, bindings)
    by_name = {b.name: b for b in bindings if b.kind == "param"}
    locals_ = {b.name for b in bindings if b.kind not in ("param", "self")}
    free_names = {sf.text_of(u) for u in uses if resolve(u, bindings) is None}

    txn = EditTransaction(function_text)
    for old, new in renames.items():
        validate_identifier(new)
        binding = by_name.get(old)
        if binding is None:
            raise SynthesisError(f"parameter {old!r} missing from {config.name!r}")
        if new in locals_ or new in free_names or new == config.name:
            raise RenameCollision(f"{new!r} is already bound in {config.name!r}")
        start, end = sf.span(binding.node)
        txn.replace(start, end, new)
        for use in refs.get(binding.key, []):
            start, end = sf.span(use)
            parent = use.parent
            if parent is not None and parent.type == "shorthand_field_initializer":
                txn.replace(start, end, f"{old}: {new}")
            else:
                txn.replace(start, end, new)
    return txn.commit()
