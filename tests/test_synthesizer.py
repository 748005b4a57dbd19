"""Tests for rextract.synthesizer: function text, placement and imports."""

import pytest

from rextract.edits import EditTransaction
from rextract.errors import InvalidInsertionPoint
from rextract.selection import build_config
from rextract.synthesizer import (
    MappingImportResolver,
    import_edit,
    render_body,
    render_function,
    resolve_insertion,
    signature_types,
)


def _span(source: str, snippet: str):
    start = source.index(snippet)
    return start, start + len(snippet)


def _insert(config) -> str:
    txn = EditTransaction(config.source)
    txn.add(resolve_insertion(config, render_function(config)))
    return txn.commit()


SCENARIO_A = """fn main() {
    let x = 1;
    let y = x + 1;
    println!("{}", y);
}
"""


# ---------------------------------------------------------------------------
# render_function
# ---------------------------------------------------------------------------


def test_render_function_returns_outputs():
    config = build_config(
        SCENARIO_A, *_span(SCENARIO_A, "let x = 1;\n    let y = x + 1;")
    )
    assert render_function(config) == (
        "fn extracted() -> i32 {\n    let x = 1;\n    let y = x + 1;\n    y\n}"
    )


def test_render_function_dereferences_borrowed_operands():
    source = """fn main() {
    let mut counter = 0;
    counter += 1;
    println!("{}", counter);
}
"""
    config = build_config(source, *_span(source, "counter += 1;"))
    assert render_function(config) == (
        "fn extracted(counter: &mut i32) {\n    *counter += 1;\n}"
    )


def test_render_function_pub_async_signature():
    source = """async fn fetch(client: &Client) -> usize {
    let body = client.get().await;
    body.len()
}
"""
    config = build_config(source, *_span(source, "let body = client.get().await;"))
    config.visibility_is_public = True
    config.name = "load"
    assert render_function(config).startswith("pub async fn load(client: &Client)")


def test_render_body_keeps_relative_indentation():
    source = """fn main() {
    let v = 3;
    if v > 2 {
        println!("big");
    }
}
"""
    selected = 'if v > 2 {\n        println!("big");\n    }'
    config = build_config(source, *_span(source, selected))
    assert render_body(config) == 'if v > 2 {\n    println!("big");\n}'


# ---------------------------------------------------------------------------
# resolve_insertion
# ---------------------------------------------------------------------------


def test_free_function_helper_goes_after_it():
    config = build_config(
        SCENARIO_A, *_span(SCENARIO_A, "let x = 1;\n    let y = x + 1;")
    )
    assert _insert(config) == SCENARIO_A.rstrip("\n") + (
        "\n\nfn extracted() -> i32 {\n    let x = 1;\n    let y = x + 1;\n    y\n}\n"
    )


def test_method_helper_is_indented_inside_the_impl():
    source = """struct Calc;

impl Calc {
    fn run(&self, a: i32) -> i32 {
        let b = a + 1;
        b * 2
    }
}
"""
    config = build_config(source, *_span(source, "let b = a + 1;"))
    result = _insert(config)
    assert (
        "        b * 2\n    }\n\n    fn extracted(a: i32) -> i32 {\n"
        "        let b = a + 1;\n        b\n    }\n}\n"
    ) in result


TRAIT_IMPL = """struct Meters(f64);

impl std::fmt::Display for Meters {
    fn fmt(&self, f: &mut std::fmt::Formatter) -> std::fmt::Result {
        let value = self.0 * 2.0;
        write!(f, "{}", value)
    }
}
"""


def test_trait_impl_helper_gets_a_new_inherent_impl():
    config = build_config(TRAIT_IMPL, *_span(TRAIT_IMPL, "let value = self.0 * 2.0;"))
    result = _insert(config)
    assert result.endswith(
        "    }\n}\n\nimpl Meters {\n"
        "    fn extracted(&self) -> f64 {\n"
        "        let value = self.0 * 2.0;\n"
        "        value\n"
        "    }\n}\n"
    )


def test_trait_impl_helper_joins_existing_inherent_impl():
    source = (
        """struct Meters(f64);

impl Meters {
    fn new(v: f64) -> Self {
        Meters(v)
    }
}

"""
        + TRAIT_IMPL.split("\n\n", 1)[1]
    )
    config = build_config(source, *_span(source, "let value = self.0 * 2.0;"))
    result = _insert(config)
    assert result.count("impl Meters {") == 1
    assert (
        "        Meters(v)\n    }\n\n"
        "    fn extracted(&self) -> f64 {\n"
        "        let value = self.0 * 2.0;\n"
        "        value\n"
        "    }\n}\n"
    ) in result


def test_generic_inherent_impl_is_not_reused():
    source = """struct Wrap<T>(T);

impl<T> Wrap<T> {
    fn get(&self) -> &T {
        &self.0
    }
}

impl<T: Clone> Clone for Wrap<T> {
    fn clone(&self) -> Self {
        let inner = self.0.clone();
        Wrap(inner)
    }
}
"""
    config = build_config(source, *_span(source, "let inner = self.0.clone();"))
    result = _insert(config)
    assert result.count("impl<T: Clone> Wrap<T> {") == 1


def test_missing_closing_brace_is_invalid():
    config = build_config(
        SCENARIO_A, *_span(SCENARIO_A, "let x = 1;\n    let y = x + 1;")
    )
    config.source = config.source[: config.function.end - 1]
    with pytest.raises(InvalidInsertionPoint):
        resolve_insertion(config, "fn extracted() {}")


# ---------------------------------------------------------------------------
# Imports
# ---------------------------------------------------------------------------


def test_import_edit_after_last_use():
    source = "use std::fmt;\n\nfn main() {}\n"
    edit = import_edit(source, ["use std::collections::HashMap;"])
    txn = EditTransaction(source)
    txn.add(edit)
    assert txn.commit() == (
        "use std::fmt;\nuse std::collections::HashMap;\n\nfn main() {}\n"
    )


def test_import_edit_without_uses_goes_to_top():
    source = "fn main() {}\n"
    txn = EditTransaction(source)
    txn.add(import_edit(source, ["use std::rc::Rc;"]))
    assert txn.commit() == "use std::rc::Rc;\n\nfn main() {}\n"


def test_import_edit_after_inner_attributes():
    source = "#![allow(dead_code)]\n\nfn main() {}\n"
    txn = EditTransaction(source)
    txn.add(import_edit(source, ["use std::rc::Rc;"]))
    assert txn.commit() == "#![allow(dead_code)]\n\nuse std::rc::Rc;\n\nfn main() {}\n"


def test_import_edit_nothing_to_add():
    assert import_edit("fn main() {}\n", []) is None


def test_mapping_resolver_skips_known_names():
    resolver = MappingImportResolver(
        {"HashMap": "std::collections::HashMap", "Rc": "std::rc::Rc"}
    )
    source = "use std::rc::Rc;\n\nfn main() {}\n"
    assert resolver.use_declarations(["HashMap<String, Rc<i32>>"], source) == [
        "use std::collections::HashMap;"
    ]


def test_mapping_resolver_skips_local_definitions():
    resolver = MappingImportResolver({"Point": "geometry::Point"})
    source = "struct Point;\n\nfn main() {}\n"
    assert resolver.use_declarations(["Point"], source) == []


def test_signature_types_cover_params_and_return():
    source = """fn main() {
    let names = vec![1, 2, 3];
    let n = names.len();
    println!("{} {}", n, names.len());
}
"""
    config = build_config(source, *_span(source, "let n = names.len();"))
    assert signature_types(config) == ["Vec<i32>", "usize"]
