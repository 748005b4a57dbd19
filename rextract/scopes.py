"""Local binding and reference resolution inside a single Rust function."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

from tree_sitter import Node

from .syntax import ancestors, contains, walk

# Parents under which an identifier is a path segment or an item name, never
# a reference to a local binding.
_NON_LOCAL_PARENTS = frozenset(
    {
        "scoped_identifier",
        "scoped_type_identifier",
        "scoped_use_list",
        "use_declaration",
        "use_as_clause",
        "use_list",
        "function_item",
        "function_signature_item",
        "const_item",
        "static_item",
        "macro_definition",
        "label",
        "generic_function",
        "lifetime",
    }
)

_ATTRIBUTE_TYPES = frozenset({"attribute_item", "inner_attribute_item"})


@dataclass
class Binding:
    """A name introduced by a pattern, a parameter or the ``self`` receiver."""

    name: str
    node: Node  # identifier (or self) at the binding site
    # "param", "self", "let", "for", "closure", "match" or "let_condition"
    kind: str
    visible_from: int  # byte offset from which references may resolve here
    scope: Node  # references must lie inside this node
    mutable: bool
    decl: Node  # parameter, let_declaration, for_expression, ...

    @property
    def key(self) -> Tuple[int, int]:
        return (self.node.start_byte, self.node.end_byte)


def _key(node: Node) -> Tuple[int, int]:
    return (node.start_byte, node.end_byte)


def _is_constant_like(name: str) -> bool:
    return name[:1].isupper()


def pattern_bindings(pattern: Node) -> List[Node]:
    """Return the identifier nodes a pattern binds, in source order."""
    found: List[Node] = []
    for node in walk(pattern):
        if node.type == "shorthand_field_identifier":
            found.append(node)
            continue
        if node.type != "identifier":
            continue
        parent = node.parent
        if parent is not None:
            if parent.type in _NON_LOCAL_PARENTS:
                continue
            if parent.type in ("tuple_struct_pattern", "struct_pattern"):
                type_node = parent.child_by_field_name("type")
                if type_node is not None and _key(type_node) == _key(node):
                    continue
        if _is_constant_like(node.text.decode("utf-8")):
            continue
        found.append(node)
    return found


def _has_mut(node: Node) -> bool:
    return any(c.type == "mutable_specifier" for c in node.children)


def _binding_is_mutable(ident: Node, decl: Node) -> bool:
    parent = ident.parent
    if parent is not None and parent.type == "mut_pattern":
        return True
    if decl.type in ("let_declaration", "parameter") and _has_mut(decl):
        # ``let mut (a, b)`` is not valid Rust, so the specifier belongs to
        # the single identifier pattern.
        pattern = decl.child_by_field_name("pattern")
        return pattern is not None and _key(pattern) == _key(ident)
    return False


def _add_pattern(
    bindings: List[Binding],
    pattern: Optional[Node],
    kind: str,
    visible_from: int,
    scope: Node,
    decl: Node,
) -> None:
    if pattern is None:
        return
    for ident in pattern_bindings(pattern):
        bindings.append(
            Binding(
                name=ident.text.decode("utf-8"),
                node=ident,
                kind=kind,
                visible_from=visible_from,
                scope=scope,
                mutable=_binding_is_mutable(ident, decl),
                decl=decl,
            )
        )


def _condition_scope(let_condition: Node) -> Optional[Node]:
    """Return the block in which an ``if let`` / ``while let`` binding is visible."""
    for parent in ancestors(let_condition):
        if parent.type == "if_expression":
            return parent.child_by_field_name("consequence")
        if parent.type == "while_expression":
            return parent.child_by_field_name("body")
    return None


def _iter_local(root: Node):
    """Walk *root* without descending into nested function items."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        for child in reversed(node.children):
            if child.type == "function_item":
                continue
            stack.append(child)


def collect_bindings(fn: Node) -> List[Binding]:
    """Collect every local binding of function item *fn*."""
    bindings: List[Binding] = []
    body = fn.child_by_field_name("body")
    params = fn.child_by_field_name("parameters")
    if body is None:
        return bindings
    if params is not None:
        for param in params.named_children:
            if param.type == "self_parameter":
                for child in param.children:
                    if child.type == "self":
                        bindings.append(
                            Binding(
                                name="self",
                                node=child,
                                kind="self",
                                visible_from=body.start_byte,
                                scope=body,
                                mutable=_has_mut(param),
                                decl=param,
                            )
                        )
            elif param.type == "parameter":
                _add_pattern(
                    bindings,
                    param.child_by_field_name("pattern"),
                    "param",
                    body.start_byte,
                    body,
                    param,
                )

    for node in _iter_local(body):
        kind = node.type
        if kind == "let_declaration" and node.parent is not None:
            _add_pattern(
                bindings,
                node.child_by_field_name("pattern"),
                "let",
                node.end_byte,
                node.parent,
                node,
            )
        elif kind == "for_expression":
            loop_body = node.child_by_field_name("body")
            if loop_body is not None:
                _add_pattern(
                    bindings,
                    node.child_by_field_name("pattern"),
                    "for",
                    loop_body.start_byte,
                    loop_body,
                    node,
                )
        elif kind == "closure_expression":
            closure_body = node.child_by_field_name("body")
            closure_params = node.child_by_field_name("parameters")
            if closure_body is not None and closure_params is not None:
                for param in closure_params.named_children:
                    pattern = param
                    if param.type == "parameter":
                        pattern = param.child_by_field_name("pattern")
                    _add_pattern(
                        bindings,
                        pattern,
                        "closure",
                        closure_body.start_byte,
                        closure_body,
                        param,
                    )
        elif kind == "match_arm":
            pattern = node.child_by_field_name("pattern")
            if pattern is not None:
                _add_pattern(
                    bindings, pattern, "match", pattern.end_byte, node, node
                )
        elif kind in ("let_condition", "if_let_expression", "while_let_expression"):
            if kind == "let_condition":
                scope = _condition_scope(node)
            elif kind == "if_let_expression":
                scope = node.child_by_field_name("consequence")
            else:
                scope = node.child_by_field_name("body")
            if scope is not None:
                _add_pattern(
                    bindings,
                    node.child_by_field_name("pattern"),
                    "let_condition",
                    scope.start_byte,
                    scope,
                    node,
                )
    return bindings


def _in_attribute(node: Node) -> bool:
    return any(parent.type in _ATTRIBUTE_TYPES for parent in ancestors(node))


def collect_uses(root: Node, bindings: List[Binding]) -> List[Node]:
    """Return identifier and ``self`` nodes under *root* that may name a local.

    Binding sites themselves are excluded.  Nested function items are skipped.
    """
    binding_keys: Set[Tuple[int, int]] = {b.key for b in bindings}
    uses: List[Node] = []
    for node in _iter_local(root):
        if node.type not in ("identifier", "self"):
            continue
        if _key(node) in binding_keys:
            continue
        parent = node.parent
        if parent is not None:
            if parent.type in _NON_LOCAL_PARENTS or parent.type == "self_parameter":
                continue
            if parent.type == "macro_invocation":
                macro = parent.child_by_field_name("macro")
                if macro is not None and _key(macro) == _key(node):
                    continue
        if _in_attribute(node):
            continue
        uses.append(node)
    return uses


def resolve(use: Node, bindings: List[Binding]) -> Optional[Binding]:
    """Return the binding *use* refers to, or None for non-local names."""
    name = use.text.decode("utf-8")
    best: Optional[Binding] = None
    for binding in bindings:
        if binding.name != name or binding.visible_from > use.start_byte:
            continue
        if not contains(binding.scope, use.start_byte, use.end_byte):
            continue
        if best is None or binding.visible_from >= best.visible_from:
            best = binding
    return best


def references(
    uses: List[Node], bindings: List[Binding]
) -> Dict[Tuple[int, int], List[Node]]:
    """Map each binding key to the uses that resolve to it."""
    result: Dict[Tuple[int, int], List[Node]] = {}
    for use in uses:
        binding = resolve(use, bindings)
        if binding is not None:
            result.setdefault(binding.key, []).append(use)
    return result
