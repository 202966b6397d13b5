"""Tests for edit-intent detection."""

from __future__ import annotations

import pytest

from expensechat.extraction.edits import FieldEdit, detect_field_edit, detect_field_name


class TestDetectFieldEdit:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("change the amount to $42", FieldEdit("amount", "$42")),
            ("Update merchant to Target", FieldEdit("merchant", "Target")),
            ("set date to yesterday", FieldEdit("date", "yesterday")),
            ("change the store to Whole Foods", FieldEdit("merchant", "Whole Foods")),
            ("fix the description to team lunch.", FieldEdit("description", "team lunch")),
            ("change category to Travel", FieldEdit("category", "Travel")),
            ("change the card to Visa", FieldEdit("payment_method", "Visa")),
            ("update notes: client dinner", FieldEdit("notes", "client dinner")),
        ],
    )
    def test_verb_and_keyword(self, text: str, expected: FieldEdit) -> None:
        assert detect_field_edit(text) == expected

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("amount: 42", FieldEdit("amount", "42")),
            ("Payment method: Visa", FieldEdit("payment_method", "Visa")),
            ("note = reimbursable", FieldEdit("notes", "reimbursable")),
            ("category:", FieldEdit("category")),
        ],
    )
    def test_prefix_syntax(self, text: str, expected: FieldEdit) -> None:
        assert detect_field_edit(text) == expected

    def test_field_without_value(self) -> None:
        assert detect_field_edit("update the category") == FieldEdit("category")

    def test_first_keyword_in_order_wins(self) -> None:
        edit = detect_field_edit("change the date and amount to 2025-01-02")
        assert edit is not None
        assert edit.field == "date"

    @pytest.mark.parametrize(
        "text",
        [
            "I bought lunch at Subway for $12",
            "change it",
            "yes",
            "the amount looks right",
        ],
    )
    def test_not_an_edit(self, text: str) -> None:
        assert detect_field_edit(text) is None


class TestDetectFieldName:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("the amount", "amount"),
            ("Merchant", "merchant"),
            ("payment method please", "payment_method"),
            ("notes", "notes"),
            ("date:", "date"),
        ],
    )
    def test_names(self, text: str, expected: str) -> None:
        assert detect_field_name(text) == expected

    def test_unknown(self) -> None:
        assert detect_field_name("hmm, not sure") is None
