"""Render the extracted function and find where it goes."""

from __future__ import annotations

import re
import textwrap
from typing import Dict, List, Optional, Protocol, Sequence

from tree_sitter import Node

from .edits import Edit
from .errors import InvalidInsertionPoint
from .selection import ExtractionConfig, Owner, output_names
from .syntax import SourceFile, named_children, walk

_INDENT = "    "
_TYPE_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_DEFINITION = r"\b(?:struct|enum|union|trait|type)\s+{}\b"


# ---------------------------------------------------------------------------
# Text rendering
# ---------------------------------------------------------------------------


def _strip_indent(line: str, indent: str) -> str:
    if line.startswith(indent):
        return line[len(indent) :]
    return line.lstrip(" \t")


def render_body(config: ExtractionConfig) -> str:
    """Return the new function's body, dedented, without braces."""
    source = config.source
    start, end = config.start, config.end
    pieces = []
    cursor = start
    for offset in config.deref_offsets:
        if start <= offset < end:
            pieces.append(source[cursor:offset])
            pieces.append("*")
            cursor = offset
    pieces.append(source[cursor:end])
    raw = "".join(pieces)

    line_start = source.rfind("\n", 0, start) + 1
    prefix = source[line_start:start]
    first_indent = prefix if not prefix.strip() else ""
    if not first_indent:
        line = source[line_start:]
        first_indent = line[: len(line) - len(line.lstrip(" \t"))]

    lines = raw.split("\n")
    body = [lines[0]] + [_strip_indent(line, first_indent) for line in lines[1:]]
    names = output_names(config)
    if names:
        body.append(names[0] if len(names) == 1 else "(" + ", ".join(names) + ")")
    return "\n".join(body)


def render_function(config: ExtractionConfig) -> str:
    """Return ``signature { body }`` for the new function, at column zero."""
    body = textwrap.indent(render_body(config), _INDENT)
    return f"{config.signature} {{\n{body}\n}}"


# ---------------------------------------------------------------------------
# Insertion target
# ---------------------------------------------------------------------------


def _node_at(sf: SourceFile, kind: str, start: int, end: int) -> Optional[Node]:
    for node in walk(sf.root):
        if node.type == kind and sf.span(node) == (start, end):
            return node
    return None


def _normalized(text: str) -> str:
    return "".join(text.split())


def find_existing_inherent_impl(sf: SourceFile, trait_impl: Node) -> Optional[Node]:
    """Find an inherent impl of the same type as *trait_impl*.

    Only impls at the same tree level are checked, and only those without
    generic parameters.
    """
    type_node = trait_impl.child_by_field_name("type")
    parent = trait_impl.parent
    if type_node is None or parent is None:
        return None
    wanted = _normalized(sf.text_of(type_node))
    for sibling in parent.named_children:
        if sibling.type != "impl_item" or sibling == trait_impl:
            continue
        if sibling.child_by_field_name("trait") is not None:
            continue
        if sibling.child_by_field_name("type_parameters") is not None:
            continue
        if sibling.child_by_field_name("body") is None:
            continue
        candidate = sibling.child_by_field_name("type")
        if candidate is not None and _normalized(sf.text_of(candidate)) == wanted:
            return sibling
    return None


def _append_to_impl(sf: SourceFile, impl: Node, function_text: str) -> Edit:
    body = impl.child_by_field_name("body")
    if body is None or not body.children or body.children[-1].type != "}":
        raise InvalidInsertionPoint("inherent impl has no body to insert into")
    rbrace = body.children[-1]
    impl_indent = sf.line_indent(sf.start(impl))
    items = named_children(body)
    if items:
        anchor = sf.end(items[-1])
        prefix = "\n\n"
    else:
        anchor = sf.end(body.children[0])
        prefix = "\n"
    between = sf.text[anchor : sf.start(rbrace)]
    suffix = "" if "\n" in between else "\n" + impl_indent
    text = prefix + textwrap.indent(function_text, impl_indent + _INDENT) + suffix
    return Edit(anchor, anchor, text)


def _new_impl_after(
    sf: SourceFile, trait_impl: Node, config: ExtractionConfig, function_text: str
) -> Edit:
    fi = config.function
    impl_indent = sf.line_indent(sf.start(trait_impl))
    where = f"{fi.impl_where} " if fi.impl_where else ""
    header = f"impl{fi.impl_generics} {fi.impl_type} {where}{{"
    text = (
        "\n\n"
        + impl_indent
        + header
        + "\n"
        + textwrap.indent(function_text, impl_indent + _INDENT)
        + "\n"
        + impl_indent
        + "}"
    )
    end = sf.end(trait_impl)
    return Edit(end, end, text)


def resolve_insertion(config: ExtractionConfig, function_text: str) -> Edit:
    """Return the edit that inserts *function_text* into ``config.source``.

    A function inside a trait impl gets its helper in an inherent impl of
    the same type (an existing one, or a new one right after the trait
    impl).  Anything else gets it right after itself, after a blank line.
    """
    fi = config.function
    source = config.source
    if fi.owner is Owner.TRAIT_IMPL:
        if fi.impl_start is None or fi.impl_end is None or not fi.impl_type:
            raise InvalidInsertionPoint("trait impl has no self type")
        sf = SourceFile(source)
        trait_impl = _node_at(sf, "impl_item", fi.impl_start, fi.impl_end)
        if trait_impl is None:
            raise InvalidInsertionPoint("trait impl no longer exists")
        existing = find_existing_inherent_impl(sf, trait_impl)
        if existing is not None:
            return _append_to_impl(sf, existing, function_text)
        return _new_impl_after(sf, trait_impl, config, function_text)
    if not 0 < fi.end <= len(source) or source[fi.end - 1] != "}":
        raise InvalidInsertionPoint(f"function {fi.name!r} has no closing brace")
    text = "\n\n" + textwrap.indent(function_text, fi.indent)
    return Edit(fi.end, fi.end, text)


# ---------------------------------------------------------------------------
# Imports
# ---------------------------------------------------------------------------


class ImportResolver(Protocol):
    """Decides which ``use`` declarations the new signature needs."""

    def use_declarations(self, types: Sequence[str], source: str) -> List[str]:
        """Return ``use ...;`` lines to add to *source* for *types*."""


class MappingImportResolver:
    """Resolve type names through a fixed name -> path table."""

    def __init__(self, paths: Optional[Dict[str, str]] = None) -> None:
        self.paths = dict(paths or {})

    def use_declarations(self, types: Sequence[str], source: str) -> List[str]:
        wanted: List[str] = []
        for type_text in types:
            for name in _TYPE_NAME.findall(type_text):
                path = self.paths.get(name)
                if path is None or path in wanted:
                    continue
                escaped = re.escape(name)
                if re.search(rf"\buse\s[^;]*\b{escaped}\b", source):
                    continue
                if re.search(_DEFINITION.format(escaped), source):
                    continue
                wanted.append(path)
        return [f"use {path};" for path in wanted]


def signature_types(config: ExtractionConfig) -> List[str]:
    types = [p.type for p in config.selected_parameters if not p.is_self]
    if config.return_value is not None:
        types.append(config.return_value.type)
    return types


def import_edit(source: str, declarations: Sequence[str]) -> Optional[Edit]:
    """Return an edit adding *declarations* after the file's existing imports."""
    if not declarations:
        return None
    block = "\n".join(declarations)
    sf = SourceFile(source)
    top = named_children(sf.root)
    uses = [node for node in top if node.type == "use_declaration"]
    if uses:
        offset = sf.end(uses[-1])
        return Edit(offset, offset, "\n" + block)
    header_end = 0
    for node in sf.root.named_children:
        text = sf.text_of(node)
        if node.type == "inner_attribute_item" or text.startswith("//!"):
            header_end = sf.end(node)
            continue
        break
    if header_end:
        return Edit(header_end, header_end, "\n\n" + block)
    return Edit(0, 0, block + "\n\n")
