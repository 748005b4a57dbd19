"""Selection model: what a user-chosen range turns into before synthesis."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from tree_sitter import Node

from .errors import (
    EmptySelection,
    InvalidIdentifier,
    NoEnclosingFunction,
    SelectionError,
)
from .scopes import Binding, collect_bindings, collect_uses, resolve
from .semantics import UNKNOWN_TYPE, HeuristicSemantics, SemanticModel
from .syntax import (
    COMMENT_TYPES,
    STATEMENT_TYPES,
    SourceFile,
    enclosing_function,
    function_name,
    has_modifier,
    innermost_block,
    is_statement,
    is_tail_expression,
    is_unterminated_expression_statement,
    named_children,
    self_parameter,
    walk,
)

_RUST_KEYWORDS = frozenset(
    {
        "as",
        "async",
        "await",
        "break",
        "const",
        "continue",
        "crate",
        "dyn",
        "else",
        "enum",
        "extern",
        "false",
        "fn",
        "for",
        "if",
        "impl",
        "in",
        "let",
        "loop",
        "match",
        "mod",
        "move",
        "mut",
        "pub",
        "ref",
        "return",
        "self",
        "Self",
        "static",
        "struct",
        "super",
        "trait",
        "true",
        "type",
        "unsafe",
        "use",
        "where",
        "while",
        "abstract",
        "become",
        "box",
        "do",
        "final",
        "macro",
        "override",
        "priv",
        "typeof",
        "unsized",
        "virtual",
        "yield",
        "try",
    }
)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_LOOPS = frozenset({"for_expression", "while_expression", "loop_expression"})
# Expressions a block's value passes through on its way out.
_VALUE_WRAPPERS = frozenset(
    {"else_clause", "if_expression", "match_arm", "match_block", "match_expression"}
)


def validate_identifier(name: str) -> str:
    """Return *name* unchanged if it is a usable Rust identifier."""
    if not _IDENTIFIER.match(name) or name == "_" or name in _RUST_KEYWORDS:
        raise InvalidIdentifier(f"{name!r} is not a valid Rust identifier")
    return name


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


class Mode(enum.IntEnum):
    """How a parameter is passed; ordered so that ``max`` is the join."""

    BY_VALUE = 0
    SHARED_REF = 1
    MUT_REF = 2


class Owner(enum.Enum):
    FREE = "free"
    INHERENT_IMPL = "inherent_impl"
    TRAIT_IMPL = "trait_impl"
    TRAIT = "trait"


@dataclass
class Parameter:
    name: str
    type: str
    is_self: bool = False
    is_selected: bool = True
    is_self_mutable: bool = False
    mode: Mode = Mode.BY_VALUE
    # Name of the binding at the call site; ``name`` may be edited by the user.
    original_name: str = ""

    def __post_init__(self) -> None:
        if not self.original_name:
            self.original_name = self.name

    @property
    def declaration(self) -> str:
        """Text of this parameter in the new function's signature."""
        if self.is_self:
            return "&mut self" if self.is_self_mutable else "&self"
        if self.mode is Mode.MUT_REF:
            return f"{self.name}: &mut {self.type}"
        if self.mode is Mode.SHARED_REF:
            return f"{self.name}: &{self.type}"
        return f"{self.name}: {self.type}"

    @property
    def argument(self) -> str:
        """Text passed for this parameter at the call site."""
        if self.mode is Mode.MUT_REF:
            return f"&mut {self.original_name}"
        if self.mode is Mode.SHARED_REF:
            return f"&{self.original_name}"
        return self.original_name


@dataclass(frozen=True)
class ReturnValue:
    # ``None`` when the selection ends in a tail expression whose value
    # flows out directly; otherwise the pattern bound at the call site.
    expr_text: Optional[str]
    type: str


@dataclass(frozen=True)
class SyntaxElement:
    kind: str
    start: int
    end: int
    text: str
    is_statement: bool


@dataclass(frozen=True)
class FunctionInfo:
    name: str
    start: int
    end: int
    body_start: int
    body_end: int
    indent: str
    owner: Owner
    self_param: Optional[str]
    return_type: Optional[str]
    is_async: bool
    impl_start: Optional[int] = None
    impl_end: Optional[int] = None
    impl_type: Optional[str] = None
    impl_generics: str = ""
    impl_where: str = ""


@dataclass
class ExtractionConfig:
    """Everything needed to synthesize the new function and its call."""

    source: str
    function: FunctionInfo
    elements: Tuple[SyntaxElement, ...]
    parameters: List[Parameter]
    return_value: Optional[ReturnValue]
    name: str
    visibility_is_public: bool = False
    is_async: bool = False
    # Offsets (into ``source``) of parameter uses that need a ``*`` once the
    # parameter is passed by reference.
    deref_offsets: Tuple[int, ...] = ()
    path: Optional[str] = None

    @property
    def selected_parameters(self) -> List[Parameter]:
        return [p for p in self.parameters if p.is_selected]

    @property
    def start(self) -> int:
        return self.elements[0].start

    @property
    def end(self) -> int:
        return self.elements[-1].end

    @property
    def parameters_text(self) -> str:
        return ", ".join(p.declaration for p in self.selected_parameters)

    @property
    def arguments_text(self) -> str:
        return ", ".join(
            p.argument for p in self.selected_parameters if not p.is_self
        )

    @property
    def signature(self) -> str:
        parts = []
        if self.visibility_is_public:
            parts.append("pub ")
        if self.is_async:
            parts.append("async ")
        parts.append(f"fn {self.name}({self.parameters_text})")
        if self.return_value is not None:
            parts.append(f" -> {self.return_value.type}")
        return "".join(parts)

    def rename_parameters(self, names: Sequence[str]) -> None:
        """Assign final names to the selected non-self parameters, in order."""
        targets = [p for p in self.selected_parameters if not p.is_self]
        if len(names) != len(targets):
            raise InvalidIdentifier(
                f"expected {len(targets)} parameter names, got {len(names)}"
            )
        for param, name in zip(targets, names):
            param.name = validate_identifier(name)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def _key(node: Node) -> Tuple[int, int]:
    return (node.start_byte, node.end_byte)


def _same(a: Optional[Node], b: Node) -> bool:
    return a is not None and _key(a) == _key(b)


def _trim(source: str, start: int, end: int) -> Tuple[int, int]:
    while start < end and source[start].isspace():
        start += 1
    while end > start and source[end - 1].isspace():
        end -= 1
    return start, end


def _owner_info(sf: SourceFile, fn: Node) -> Dict:
    parent = fn.parent
    info: Dict = {"owner": Owner.FREE}
    if parent is None or parent.type != "declaration_list" or parent.parent is None:
        return info
    container = parent.parent
    if container.type == "trait_item":
        info["owner"] = Owner.TRAIT
        return info
    if container.type != "impl_item":
        return info
    trait = container.child_by_field_name("trait")
    info["owner"] = Owner.INHERENT_IMPL if trait is None else Owner.TRAIT_IMPL
    info["impl_start"], info["impl_end"] = sf.span(container)
    type_node = container.child_by_field_name("type")
    if type_node is not None:
        info["impl_type"] = sf.text_of(type_node)
    generics = container.child_by_field_name("type_parameters")
    if generics is not None:
        info["impl_generics"] = sf.text_of(generics)
    for child in container.children:
        if child.type == "where_clause":
            info["impl_where"] = sf.text_of(child)
    return info


def _function_info(sf: SourceFile, fn: Node) -> FunctionInfo:
    body = fn.child_by_field_name("body")
    receiver = self_parameter(fn)
    return_type = fn.child_by_field_name("return_type")
    return FunctionInfo(
        name=function_name(fn),
        start=sf.start(fn),
        end=sf.end(fn),
        body_start=sf.start(body),
        body_end=sf.end(body),
        indent=sf.line_indent(sf.start(fn)),
        self_param=sf.text_of(receiver) if receiver is not None else None,
        return_type=sf.text_of(return_type) if return_type is not None else None,
        is_async=has_modifier(fn, "async"),
        **_owner_info(sf, fn),
    )


def _is_expression(node: Node) -> bool:
    """Return True if *node* can be replaced by a call expression."""
    if not node.is_named or node.type == "block":
        return False
    if node.type in STATEMENT_TYPES or node.type in COMMENT_TYPES:
        return False
    if node.type.endswith(("_type", "_pattern", "_identifier", "_specifier")):
        return False
    parent = node.parent
    if parent is not None and parent.type == "let_declaration":
        return not _same(parent.child_by_field_name("pattern"), node)
    return True


def _select_elements(
    sf: SourceFile, fn: Node, start: int, end: int
) -> Tuple[Node, List[Node]]:
    """Return ``(block, elements)`` for the trimmed range ``[start, end)``."""
    start_b, end_b = sf.to_byte(start), sf.to_byte(end)
    block = innermost_block(fn, start_b, end_b)
    if block is None:
        raise NoEnclosingFunction("selection is not inside a function body")
    covered: List[Node] = []
    partial = False
    for child in named_children(block):
        if child.end_byte <= start_b or child.start_byte >= end_b:
            continue
        if start_b <= child.start_byte and child.end_byte <= end_b:
            covered.append(child)
        else:
            partial = True
    if covered and not partial:
        return block, covered
    for node in walk(block):
        if node.start_byte != start_b or node.end_byte != end_b:
            continue
        if _is_expression(node):
            return block, [node]
    if partial:
        raise SelectionError("selection does not cover whole statements")
    raise EmptySelection("no statement or expression lies within the selection")


class _Analysis:
    """Binding-aware walk over the enclosing function of a selection."""

    def __init__(
        self, sf: SourceFile, fn: Node, semantics: SemanticModel
    ) -> None:
        self.sf = sf
        self.fn = fn
        self.semantics = semantics
        self.bindings = collect_bindings(fn)
        self.uses = collect_uses(fn.child_by_field_name("body"), self.bindings)
        self._types: Dict[Tuple[int, int], Optional[str]] = {}

    def lookup(self, node: Node) -> Optional[str]:
        binding = resolve(node, self.bindings)
        return self.binding_type(binding) if binding is not None else None

    def binding_type(self, binding: Binding) -> Optional[str]:
        if binding.key in self._types:
            return self._types[binding.key]
        self._types[binding.key] = None  # guards self-referential lets
        found = self._compute_type(binding)
        self._types[binding.key] = found
        return found

    def _compute_type(self, binding: Binding) -> Optional[str]:
        decl = binding.decl
        if binding.kind == "self":
            return "Self"
        if binding.kind in ("param", "closure") and decl.type == "parameter":
            type_node = decl.child_by_field_name("type")
            return self.sf.text_of(type_node) if type_node is not None else None
        if binding.kind == "let":
            pattern = decl.child_by_field_name("pattern")
            type_node = decl.child_by_field_name("type")
            value = decl.child_by_field_name("value")
            if pattern is not None and _same(pattern, binding.node):
                if type_node is not None:
                    return self.sf.text_of(type_node)
                if value is not None:
                    return self.semantics.type_of(value, self.lookup)
                return None
            if (
                pattern is not None
                and pattern.type == "tuple_pattern"
                and value is not None
                and value.type == "tuple_expression"
            ):
                slots = pattern.named_children
                values = value.named_children
                for index, slot in enumerate(slots):
                    if _same(slot, binding.node) and index < len(values):
                        return self.semantics.type_of(values[index], self.lookup)
            return None
        if binding.kind == "for":
            iterable = decl.child_by_field_name("value")
            if iterable is not None and iterable.type == "range_expression":
                for bound in iterable.named_children:
                    found = self.semantics.type_of(bound, self.lookup)
                    if found is not None:
                        return found
        return None

    def use_mode(self, use: Node) -> Tuple[Mode, bool]:
        """Return the capability a use needs and whether it is a direct operand.

        A direct operand is a use that must be written ``*name`` once the
        binding becomes a reference parameter.
        """
        node = use
        while True:
            parent = node.parent
            if parent is None:
                return Mode.BY_VALUE, False
            if parent.type == "field_expression" and _same(
                parent.child_by_field_name("value"), node
            ):
                grand = parent.parent
                if grand is not None and grand.type == "call_expression":
                    if _same(grand.child_by_field_name("function"), parent):
                        method = parent.child_by_field_name("field")
                        name = self.sf.text_of(method) if method is not None else ""
                        if self.semantics.is_mutating_method(name):
                            return Mode.MUT_REF, False
                        return Mode.BY_VALUE, False
                node = parent
                continue
            if parent.type == "index_expression" and parent.named_children:
                if _same(parent.named_children[0], node):
                    node = parent
                    continue
            break
        direct = node is use
        if parent.type in ("assignment_expression", "compound_assignment_expr"):
            if _same(parent.child_by_field_name("left"), node):
                return Mode.MUT_REF, direct
            return Mode.BY_VALUE, direct
        if parent.type == "reference_expression":
            if any(c.type == "mutable_specifier" for c in parent.children):
                return Mode.MUT_REF, direct
            return Mode.SHARED_REF, direct
        if parent.type == "binary_expression":
            return Mode.BY_VALUE, direct
        if parent.type == "unary_expression" and parent.children:
            return Mode.BY_VALUE, direct and parent.children[0].type != "*"
        return Mode.BY_VALUE, False


def build_config(
    source: str,
    start: int,
    end: int,
    path: Optional[str] = None,
    semantics: Optional[SemanticModel] = None,
    default_name: str = "extracted",
) -> ExtractionConfig:
    """Analyze ``source[start:end]`` and describe the function to extract.

    Raises :class:`NoEnclosingFunction` when the range is not inside one
    function body and :class:`EmptySelection` when nothing lies within it.
    The result depends only on the arguments, so repeated calls on the same
    text compare equal.
    """
    semantics = semantics or HeuristicSemantics()
    if start > end:
        start, end = end, start
    start, end = _trim(source, max(start, 0), min(end, len(source)))
    if start >= end:
        raise EmptySelection("selection is empty")
    sf = SourceFile(source)
    fn = enclosing_function(sf, start, end)
    if fn is None:
        raise NoEnclosingFunction("selection is not inside a single function body")
    block, nodes = _select_elements(sf, fn, start, end)
    analysis = _Analysis(sf, fn, semantics)
    function = _function_info(sf, fn)

    sel_start, sel_end = nodes[0].start_byte, nodes[-1].end_byte

    def inside(node: Node) -> bool:
        return sel_start <= node.start_byte and node.end_byte <= sel_end

    # Parameters, in order of first use.
    self_used = False
    self_mutated = False
    order: List[Binding] = []
    modes: Dict[Tuple[int, int], Mode] = {}
    direct_uses: Dict[Tuple[int, int], List[Node]] = {}
    for use in analysis.uses:
        if not inside(use):
            continue
        binding = resolve(use, analysis.bindings)
        if binding is None or inside(binding.node):
            continue
        mode, direct = analysis.use_mode(use)
        if binding.kind == "self":
            self_used = True
            self_mutated = self_mutated or mode is Mode.MUT_REF
            continue
        if binding.key not in modes:
            order.append(binding)
            modes[binding.key] = Mode.BY_VALUE
            direct_uses[binding.key] = []
        modes[binding.key] = max(modes[binding.key], mode)
        if direct:
            direct_uses[binding.key].append(use)

    after = [u for u in analysis.uses if u.start_byte >= sel_end]
    parameters: List[Parameter] = []
    if self_used:
        receiver = function.self_param or ""
        mutable = self_mutated and "mut" in receiver
        parameters.append(
            Parameter(
                name="self",
                type="&mut Self" if mutable else "&Self",
                is_self=True,
                is_self_mutable=mutable,
                mode=Mode.MUT_REF if mutable else Mode.SHARED_REF,
            )
        )
    deref_offsets: List[int] = []
    for binding in order:
        type_text = analysis.binding_type(binding) or UNKNOWN_TYPE
        mode = modes[binding.key]
        if type_text.startswith("&"):
            # Already a reference: pass it on (reborrow) rather than nest.
            mode = Mode.BY_VALUE
        elif mode is Mode.BY_VALUE and not semantics.is_copy(type_text):
            if any(resolve(u, analysis.bindings) is binding for u in after):
                mode = Mode.SHARED_REF
        if mode is not Mode.BY_VALUE:
            deref_offsets.extend(sf.start(u) for u in direct_uses[binding.key])
        parameters.append(Parameter(name=binding.name, type=type_text, mode=mode))

    return_value = _infer_return_value(
        analysis, block, nodes, function, inside, after
    )

    elements = tuple(
        SyntaxElement(
            kind=node.type,
            start=sf.start(node),
            end=sf.end(node),
            text=sf.text_of(node),
            is_statement=node.parent is not None
            and _same(node.parent, block)
            and is_statement(node),
        )
        for node in nodes
    )
    is_async = any(
        node.type == "await_expression" for n in nodes for node in walk(n)
    )
    return ExtractionConfig(
        source=source,
        function=function,
        elements=elements,
        parameters=parameters,
        return_value=return_value,
        name=default_name,
        is_async=is_async,
        deref_offsets=tuple(sorted(deref_offsets)),
        path=path,
    )


def _block_value_used(block: Node, body: Node, function: FunctionInfo) -> bool:
    """Return True if the value *block* evaluates to flows anywhere."""
    node = block
    while node.parent is not None and node.parent.type in _VALUE_WRAPPERS:
        node = node.parent
        if node.type == "if_expression" and node.child_by_field_name(
            "alternative"
        ) is None:
            return False
    parent = node.parent
    if parent is None or parent.type in _LOOPS:
        return False
    if parent.type == "expression_statement":
        if not is_tail_expression(parent):
            return False
        node, parent = parent, parent.parent
    if parent.type != "block":
        return True
    if _same(parent, body):
        return function.return_type is not None
    return is_tail_expression(node) and _block_value_used(parent, body, function)


def _infer_return_value(
    analysis: _Analysis,
    block: Node,
    nodes: List[Node],
    function: FunctionInfo,
    inside,
    after: List[Node],
) -> Optional[ReturnValue]:
    last = nodes[-1]
    in_block = last.parent is not None and _same(last.parent, block)
    if not in_block or is_tail_expression(last):
        body = analysis.fn.child_by_field_name("body")
        if in_block and _same(block, body):
            if function.return_type is None:
                return None
            return ReturnValue(None, function.return_type)
        if in_block and not _block_value_used(block, body, function):
            return None
        value = last
        if is_unterminated_expression_statement(last) and last.named_children:
            value = last.named_children[0]
        found = analysis.semantics.type_of(value, analysis.lookup)
        return ReturnValue(None, found or UNKNOWN_TYPE)

    outputs: List[Binding] = []
    for binding in analysis.bindings:
        if binding.kind != "let" or not inside(binding.node):
            continue
        if not _same(binding.scope, block):
            continue
        if any(resolve(u, analysis.bindings) is binding for u in after):
            outputs.append(binding)
    if not outputs:
        return None
    outputs.sort(key=lambda b: b.node.start_byte)
    patterns = [("mut " if b.mutable else "") + b.name for b in outputs]
    types = [analysis.binding_type(b) or UNKNOWN_TYPE for b in outputs]
    if len(outputs) == 1:
        return ReturnValue(patterns[0], types[0])
    return ReturnValue("(" + ", ".join(patterns) + ")", "(" + ", ".join(types) + ")")


def output_names(config: ExtractionConfig) -> List[str]:
    """Names the new function must return, in pattern order."""
    rv = config.return_value
    if rv is None or rv.expr_text is None:
        return []
    text = rv.expr_text.strip("()")
    return [part.replace("mut ", "").strip() for part in text.split(",")]


