"""Rust syntax trees via tree-sitter, addressed by character offsets."""

from __future__ import annotations

from typing import Iterator, List, Optional, Tuple

import tree_sitter_rust
from tree_sitter import Language, Node, Parser

_RUST = Language(tree_sitter_rust.language())

# Direct block children that are statements rather than a tail expression.
STATEMENT_TYPES = frozenset(
    {
        "expression_statement",
        "let_declaration",
        "empty_statement",
        "function_item",
        "struct_item",
        "enum_item",
        "union_item",
        "impl_item",
        "trait_item",
        "const_item",
        "static_item",
        "use_declaration",
        "mod_item",
        "type_item",
        "macro_definition",
        "extern_crate_declaration",
        "foreign_mod_item",
        "attribute_item",
    }
)

COMMENT_TYPES = frozenset({"line_comment", "block_comment"})


class SourceFile:
    """A parsed Rust source text.

    tree-sitter reports byte offsets; every public method here speaks
    character offsets into ``text`` so callers can slice strings directly.
    """

    def __init__(self, text: str) -> None:
        self.text = text
        self.data = text.encode("utf-8")
        self.tree = Parser(_RUST).parse(self.data)
        self._char_of_byte: Optional[List[int]] = None
        if not text.isascii():
            table = []
            for index, char in enumerate(text):
                table.extend([index] * len(char.encode("utf-8")))
            table.append(len(text))
            self._char_of_byte = table

    @property
    def root(self) -> Node:
        return self.tree.root_node

    def to_char(self, byte_offset: int) -> int:
        if self._char_of_byte is None:
            return byte_offset
        return self._char_of_byte[byte_offset]

    def to_byte(self, char_offset: int) -> int:
        if self._char_of_byte is None:
            return char_offset
        return len(self.text[:char_offset].encode("utf-8"))

    def start(self, node: Node) -> int:
        return self.to_char(node.start_byte)

    def end(self, node: Node) -> int:
        return self.to_char(node.end_byte)

    def span(self, node: Node) -> Tuple[int, int]:
        return self.start(node), self.end(node)

    def text_of(self, node: Node) -> str:
        return node.text.decode("utf-8")

    def line_indent(self, offset: int) -> str:
        """Return the leading whitespace of the line containing *offset*."""
        line_start = self.text.rfind("\n", 0, offset) + 1
        line = self.text[line_start:]
        return line[: len(line) - len(line.lstrip(" \t"))]


# ---------------------------------------------------------------------------
# Tree navigation
# ---------------------------------------------------------------------------


def walk(node: Node) -> Iterator[Node]:
    """Yield *node* and all of its descendants in source order."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def ancestors(node: Node) -> Iterator[Node]:
    parent = node.parent
    while parent is not None:
        yield parent
        parent = parent.parent


def contains(node: Node, start_byte: int, end_byte: int) -> bool:
    return node.start_byte <= start_byte and end_byte <= node.end_byte


def named_children(node: Node) -> List[Node]:
    """Named children of *node*, comments excluded."""
    return [c for c in node.named_children if c.type not in COMMENT_TYPES]


def is_statement(node: Node) -> bool:
    """Return True if *node*, a direct block child, is a statement."""
    if node.type in STATEMENT_TYPES:
        return True
    sibling = node.next_sibling
    return sibling is not None and sibling.type == ";"


def is_unterminated_expression_statement(node: Node) -> bool:
    """Return True for a block-like expression (`match`, `if`, ...) with no `;`.

    tree-sitter wraps these in an `expression_statement` even when they end
    the block and produce its value.
    """
    return node.type == "expression_statement" and not any(
        c.type == ";" for c in node.children
    )


def is_tail_expression(node: Node) -> bool:
    """Return True if *node* is the value-producing last expression of a block."""
    parent = node.parent
    if parent is None or parent.type != "block":
        return False
    if is_statement(node) and not is_unterminated_expression_statement(node):
        return False
    children = named_children(parent)
    return bool(children) and children[-1] == node


def function_name(fn: Node) -> str:
    name = fn.child_by_field_name("name")
    return name.text.decode("utf-8") if name is not None else ""


def self_parameter(fn: Node) -> Optional[Node]:
    params = fn.child_by_field_name("parameters")
    if params is None:
        return None
    for child in params.named_children:
        if child.type == "self_parameter":
            return child
    return None


def has_modifier(fn: Node, keyword: str) -> bool:
    """Return True if *fn* carries *keyword* (e.g. ``async``) among its modifiers."""
    for child in fn.children:
        if child.type == "function_modifiers":
            return any(m.type == keyword for m in child.children)
    return False


def enclosing_function(sf: SourceFile, start: int, end: int) -> Optional[Node]:
    """Return the innermost function whose body contains ``[start, end)``."""
    start_byte, end_byte = sf.to_byte(start), sf.to_byte(end)
    best: Optional[Node] = None
    for node in walk(sf.root):
        if node.type != "function_item":
            continue
        body = node.child_by_field_name("body")
        if body is None or not contains(body, start_byte, end_byte):
            continue
        # Strictly inside the braces.
        if start_byte <= body.start_byte or end_byte >= body.end_byte:
            continue
        if best is None or contains(best, node.start_byte, node.end_byte):
            best = node
    return best


def innermost_block(scope: Node, start_byte: int, end_byte: int) -> Optional[Node]:
    """Return the smallest ``block`` under *scope* whose braces enclose the range."""
    best: Optional[Node] = None
    for node in walk(scope):
        if node.type != "block":
            continue
        if not (node.start_byte < start_byte and end_byte < node.end_byte):
            continue
        size = node.end_byte - node.start_byte
        if best is None or size < best.end_byte - best.start_byte:
            best = node
    return best
