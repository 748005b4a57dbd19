"""Tests for rextract.edits.EditTransaction."""

import pytest

from rextract.edits import Edit, EditTransaction
from rextract.errors import EditConflict


def test_edits_apply_against_original_offsets():
    txn = EditTransaction("abcdef")
    txn.replace(4, 6, "EF")
    txn.replace(0, 1, "AA")
    txn.insert(3, "-")
    assert txn.commit() == "AAbc-dEF"


def test_same_offset_inserts_keep_their_order():
    txn = EditTransaction("ab")
    txn.insert(1, "1")
    txn.insert(1, "2")
    assert txn.commit() == "a12b"


def test_insert_before_replacement_at_same_offset():
    txn = EditTransaction("abc")
    txn.add(Edit(1, 2, "B"))
    txn.add(Edit(1, 1, "+"))
    assert txn.commit() == "a+Bc"


def test_overlapping_edits_conflict():
    txn = EditTransaction("abcdef")
    txn.replace(0, 3, "x")
    txn.replace(2, 4, "y")
    with pytest.raises(EditConflict):
        txn.commit()


def test_edit_outside_source_conflicts():
    txn = EditTransaction("abc")
    with pytest.raises(EditConflict):
        txn.replace(2, 5, "x")


def test_commit_only_once():
    txn = EditTransaction("abc")
    txn.insert(0, "x")
    assert txn.commit() == "xabc"
    with pytest.raises(EditConflict):
        txn.commit()
    with pytest.raises(EditConflict):
        txn.insert(0, "y")


def test_edits_are_listed_in_submission_order():
    txn = EditTransaction("abc")
    txn.insert(2, "x")
    txn.insert(0, "y")
    assert txn.edits == [Edit(2, 2, "x"), Edit(0, 0, "y")]
