"""Tests for rextract.semantics.HeuristicSemantics."""

import pytest

from rextract.semantics import (
    HeuristicSemantics,
    mutating_method_calls,
    strip_reference,
)
from rextract.syntax import SourceFile, walk


def _initializer_type(expr: str, known=None):
    sf = SourceFile(f"fn f() {{\n    let v = {expr};\n}}\n")
    decl = next(n for n in walk(sf.root) if n.type == "let_declaration")
    value = decl.child_by_field_name("value")
    known = known or {}

    def lookup(node):
        return known.get(node.text.decode("utf-8"))

    return HeuristicSemantics().type_of(value, lookup)


@pytest.mark.parametrize(
    "expr, expected",
    [
        ("1", "i32"),
        ("2u8", "u8"),
        ("1.5", "f64"),
        ("1.5f32", "f32"),
        ('"s"', "&str"),
        ("'c'", "char"),
        ("true", "bool"),
        ("1 < 2", "bool"),
        ("(1, 2.0)", "(i32, f64)"),
        ('format!("{}", 1)', "String"),
        ('String::from("a")', "String"),
        ('"a".to_string()', "String"),
        ("3 as u64", "u64"),
        ("Point { x: 1 }", "Point"),
        ("vec![1, 2]", "Vec<i32>"),
        ("Vec::new()", None),
        ("unknown_call()", None),
    ],
)
def test_type_of_literals_and_constructors(expr, expected):
    assert _initializer_type(expr) == expected


def test_type_of_uses_binding_types():
    known = {"a": "u64", "r": "&i64"}
    assert _initializer_type("a * 2", known) == "u64"
    assert _initializer_type("*r", known) == "i64"
    assert _initializer_type("&a", known) == "&u64"
    assert _initializer_type("a.clone()", known) == "u64"


def test_len_is_usize():
    assert _initializer_type("items.len()", {"items": "Vec<i32>"}) == "usize"


@pytest.mark.parametrize(
    "type_text, expected",
    [
        ("i32", True),
        ("bool", True),
        ("&String", True),
        ("&mut i32", False),
        ("String", False),
        ("(i32, bool)", True),
        ("(i32, String)", False),
    ],
)
def test_is_copy(type_text, expected):
    assert HeuristicSemantics().is_copy(type_text) is expected


def test_strip_reference():
    assert strip_reference("&mut Vec<u8>") == "Vec<u8>"
    assert strip_reference("&str") == "str"
    assert strip_reference("u8") == "u8"


def test_mutating_method_calls():
    text = (
        "fn extracted(v: &mut Vec<i32>) {\n"
        "    v.push(1);\n"
        "    let n = v.len();\n"
        "    v.sort();\n"
        "}"
    )
    assert mutating_method_calls(text) == ["v.push(1)", "v.sort()"]


@pytest.mark.parametrize(
    "name, expected",
    [("push", True), ("insert", True), ("replace", False), ("len", False)],
)
def test_is_mutating_method(name, expected):
    assert HeuristicSemantics().is_mutating_method(name) is expected
