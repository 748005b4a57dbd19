"""Tests for rextract.reconciler: user-edited parameter names."""

import pytest

from rextract.errors import InvalidIdentifier, RenameCollision
from rextract.reconciler import reconcile_parameters
from rextract.selection import build_config
from rextract.synthesizer import render_function


def _span(source: str, snippet: str):
    start = source.index(snippet)
    return start, start + len(snippet)


COUNTER = """fn main() {
    let mut counter = 0;
    counter += 1;
    println!("{}", counter);
}
"""


def test_no_renames_returns_text_unchanged():
    config = build_config(COUNTER, *_span(COUNTER, "counter += 1;"))
    text = render_function(config)
    assert reconcile_parameters(text, config) is text


def test_rename_updates_signature_and_body():
    config = build_config(COUNTER, *_span(COUNTER, "counter += 1;"))
    text = render_function(config)
    config.rename_parameters(["count"])
    assert reconcile_parameters(text, config) == (
        "fn extracted(count: &mut i32) {\n    *count += 1;\n}"
    )


def test_rename_leaves_unrelated_names_alone():
    text = (
        "fn extracted(a: i32) -> i32 {\n"
        "    let total = a + 1;\n"
        "    let other = |a: i32| a * 2;\n"
        "    total + other(3)\n"
        "}"
    )
    source = """fn main() {
    let a = 5;
    let total = a + 1;
    println!("{}", total);
}
"""
    config = build_config(source, *_span(source, "let total = a + 1;"))
    config.rename_parameters(["base"])
    result = reconcile_parameters(text, config)
    assert result.startswith("fn extracted(base: i32) -> i32 {\n")
    assert "let total = base + 1;" in result
    assert "|a: i32| a * 2" in result


def test_rename_expands_shorthand_field_initializer():
    source = """struct P {
    x: i32,
}

fn make(x: i32) -> P {
    let p = P { x };
    p
}
"""
    config = build_config(source, *_span(source, "let p = P { x };"))
    text = render_function(config)
    config.rename_parameters(["value"])
    assert reconcile_parameters(text, config) == (
        "fn extracted(value: i32) -> P {\n    let p = P { x: value };\n    p\n}"
    )


def test_rename_to_local_name_collides():
    source = """fn main() {
    let base = 10;
    let scaled = base * 2;
    let offset = scaled + 1;
    println!("{}", offset);
}
"""
    selected = "let scaled = base * 2;\n    let offset = scaled + 1;"
    config = build_config(source, *_span(source, selected))
    text = render_function(config)
    config.rename_parameters(["scaled"])
    with pytest.raises(RenameCollision):
        reconcile_parameters(text, config)


def test_rename_to_function_name_collides():
    config = build_config(COUNTER, *_span(COUNTER, "counter += 1;"))
    text = render_function(config)
    config.rename_parameters(["extracted"])
    with pytest.raises(RenameCollision):
        reconcile_parameters(text, config)


def test_duplicate_final_names_collide():
    source = """fn mix(a: i32, b: i32) -> i32 {
    let c = b - a;
    c
}
"""
    config = build_config(source, *_span(source, "let c = b - a;"))
    text = render_function(config)
    config.rename_parameters(["x", "x"])
    with pytest.raises(RenameCollision):
        reconcile_parameters(text, config)


def test_keyword_rename_is_rejected_before_reconciling():
    config = build_config(COUNTER, *_span(COUNTER, "counter += 1;"))
    with pytest.raises(InvalidIdentifier):
        config.rename_parameters(["loop"])
