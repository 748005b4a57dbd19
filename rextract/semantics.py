"""Semantic model used for parameter and return typing.

Type inference proper belongs to a compiler front end; the pipeline only
needs the narrow :class:`SemanticModel` contract.  :class:`HeuristicSemantics`
covers the literal, annotated and constructor cases that make up most
extractions.  Anything it cannot type comes back as ``None`` and is rendered
as ``_`` for the borrow-inference stage to settle.
"""

from __future__ import annotations

import re
from typing import Callable, List, Optional, Protocol

from tree_sitter import Node

from .syntax import SourceFile, walk

TypeLookup = Callable[[Node], Optional[str]]

UNKNOWN_TYPE = "_"

_INT_SUFFIX = re.compile(r"(i8|i16|i32|i64|i128|isize|u8|u16|u32|u64|u128|usize)$")
_FLOAT_SUFFIX = re.compile(r"(f32|f64)$")

_COPY_TYPES = frozenset(
    {
        "i8",
        "i16",
        "i32",
        "i64",
        "i128",
        "isize",
        "u8",
        "u16",
        "u32",
        "u64",
        "u128",
        "usize",
        "f32",
        "f64",
        "bool",
        "char",
        "()",
    }
)

_COMPARISON_OPS = frozenset({"==", "!=", "<", ">", "<=", ">=", "&&", "||"})

# Std methods whose receiver is ``&mut self``.
MUTATING_METHODS = frozenset(
    {
        "append",
        "as_mut",
        "clear",
        "dedup",
        "drain",
        "entry",
        "extend",
        "fill",
        "first_mut",
        "get_mut",
        "get_or_insert",
        "insert",
        "iter_mut",
        "last_mut",
        "pop",
        "pop_back",
        "pop_front",
        "push",
        "push_back",
        "push_front",
        "push_str",
        "remove",
        "reserve",
        "resize",
        "retain",
        "reverse",
        "set",
        "sort",
        "sort_by",
        "sort_by_key",
        "sort_unstable",
        "split_off",
        "swap",
        "take",
        "truncate",
        "values_mut",
    }
)

_USIZE_METHODS = frozenset({"len", "count", "capacity"})
_BOOL_METHODS = frozenset(
    {"is_empty", "contains", "starts_with", "ends_with", "is_some", "is_none"}
)
_STRING_METHODS = frozenset({"to_string", "to_owned", "to_uppercase", "to_lowercase"})
_CONSTRUCTORS = frozenset({"new", "from", "default", "with_capacity"})


class SemanticModel(Protocol):
    """Narrow semantic contract consumed by selection analysis."""

    def type_of(self, node: Node, lookup: TypeLookup) -> Optional[str]:
        """Return the type of expression *node*, or None when unknown."""

    def is_copy(self, type_text: str) -> bool:
        """Return True if values of *type_text* are implicitly copied."""

    def is_mutating_method(self, name: str) -> bool:
        """Return True if method *name* takes its receiver as ``&mut self``."""


def strip_reference(type_text: str) -> str:
    """Return *type_text* with one leading ``&`` / ``&mut`` removed."""
    if type_text.startswith("&mut "):
        return type_text[5:].strip()
    if type_text.startswith("&"):
        return type_text[1:].strip()
    return type_text


class HeuristicSemantics:
    """Syntax-driven stand-in for a compiler's type inference."""

    def type_of(self, node: Node, lookup: TypeLookup) -> Optional[str]:
        kind = node.type
        text = node.text.decode("utf-8")
        if kind == "integer_literal":
            match = _INT_SUFFIX.search(text)
            return match.group(1) if match else "i32"
        if kind == "float_literal":
            match = _FLOAT_SUFFIX.search(text)
            return match.group(1) if match else "f64"
        if kind in ("string_literal", "raw_string_literal"):
            return "&str"
        if kind == "char_literal":
            return "char"
        if kind == "boolean_literal":
            return "bool"
        if kind in ("identifier", "self"):
            return lookup(node)
        if kind == "parenthesized_expression":
            inner = node.named_children
            return self.type_of(inner[0], lookup) if inner else None
        if kind == "unary_expression":
            return self._unary_type(node, lookup)
        if kind == "reference_expression":
            value = node.child_by_field_name("value")
            inner = self.type_of(value, lookup) if value is not None else None
            if inner is None:
                return None
            if any(c.type == "mutable_specifier" for c in node.children):
                return f"&mut {inner}"
            return f"&{inner}"
        if kind == "binary_expression":
            return self._binary_type(node, lookup)
        if kind == "type_cast_expression":
            target = node.child_by_field_name("type")
            return target.text.decode("utf-8") if target is not None else None
        if kind == "call_expression":
            return self._call_type(node, lookup)
        if kind == "macro_invocation":
            return self._macro_type(node, lookup)
        if kind == "tuple_expression":
            parts = [self.type_of(c, lookup) for c in node.named_children]
            if parts and all(parts):
                return "(" + ", ".join(parts) + ")"
            return None
        if kind == "struct_expression":
            name = node.child_by_field_name("name")
            return name.text.decode("utf-8") if name is not None else None
        return None

    def _unary_type(self, node: Node, lookup: TypeLookup) -> Optional[str]:
        operand = node.named_children[-1] if node.named_children else None
        if operand is None:
            return None
        inner = self.type_of(operand, lookup)
        if inner is None:
            return None
        if node.children and node.children[0].type == "*":
            return strip_reference(inner)
        return inner

    def _binary_type(self, node: Node, lookup: TypeLookup) -> Optional[str]:
        operator = node.child_by_field_name("operator")
        if operator is not None and operator.type in _COMPARISON_OPS:
            return "bool"
        for side in ("left", "right"):
            operand = node.child_by_field_name(side)
            if operand is None:
                continue
            found = self.type_of(operand, lookup)
            if found is not None and found != "&str":
                return strip_reference(found)
        return None

    def _call_type(self, node: Node, lookup: TypeLookup) -> Optional[str]:
        function = node.child_by_field_name("function")
        if function is None:
            return None
        if function.type == "scoped_identifier":
            path = function.child_by_field_name("path")
            name = function.child_by_field_name("name")
            if path is None or name is None:
                return None
            type_name = path.text.decode("utf-8")
            if name.text.decode("utf-8") in _CONSTRUCTORS and type_name[:1].isupper():
                if type_name in ("Vec", "HashMap", "HashSet", "VecDeque"):
                    return None
                return type_name
            return None
        if function.type == "field_expression":
            method = function.child_by_field_name("field")
            receiver = function.child_by_field_name("value")
            if method is None:
                return None
            method_name = method.text.decode("utf-8")
            if method_name in _USIZE_METHODS:
                return "usize"
            if method_name in _BOOL_METHODS:
                return "bool"
            if method_name in _STRING_METHODS:
                return "String"
            if method_name == "clone" and receiver is not None:
                found = self.type_of(receiver, lookup)
                return strip_reference(found) if found is not None else None
        return None

    def _macro_type(self, node: Node, lookup: TypeLookup) -> Optional[str]:
        macro = node.child_by_field_name("macro")
        if macro is None:
            return None
        name = macro.text.decode("utf-8")
        if name == "format":
            return "String"
        if name == "vec":
            for token in walk(node):
                if token.type in ("token_tree", "macro_invocation", "identifier"):
                    if token.type == "identifier" and token != macro:
                        found = lookup(token)
                        return f"Vec<{found}>" if found else None
                    continue
                if token.is_named:
                    found = self.type_of(token, lookup)
                    return f"Vec<{found}>" if found else None
        return None

    def is_copy(self, type_text: str) -> bool:
        text = type_text.strip()
        if text in _COPY_TYPES:
            return True
        if text.startswith("&") and not text.startswith("&mut"):
            return True
        if text.startswith("(") and text.endswith(")"):
            inner = [p.strip() for p in text[1:-1].split(",") if p.strip()]
            return all(self.is_copy(p) for p in inner)
        return False

    def is_mutating_method(self, name: str) -> bool:
        return name in MUTATING_METHODS


def mutating_method_calls(
    function_text: str, semantics: Optional[SemanticModel] = None
) -> List[str]:
    """Return the text of method calls in *function_text* that mutate their receiver.

    The list is consumed by the borrow-inference stage, which cannot resolve
    methods itself.
    """
    semantics = semantics or HeuristicSemantics()
    sf = SourceFile(function_text)
    calls: List[str] = []
    for node in walk(sf.root):
        if node.type != "call_expression":
            continue
        function = node.child_by_field_name("function")
        if function is None or function.type != "field_expression":
            continue
        method = function.child_by_field_name("field")
        if method is not None and semantics.is_mutating_method(
            method.text.decode("utf-8")
        ):
            calls.append(sf.text_of(node))
    return calls
