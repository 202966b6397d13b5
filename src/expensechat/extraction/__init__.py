"""Rule-based extraction of expense fields and edit instructions."""

from expensechat.extraction.edits import FieldEdit, detect_field_edit, detect_field_name
from expensechat.extraction.fields import (
    extract_amount,
    extract_date,
    extract_description,
    extract_merchant,
    parse_amount_value,
    parse_date_value,
)

__all__ = [
    "FieldEdit",
    "detect_field_edit",
    "detect_field_name",
    "extract_amount",
    "extract_date",
    "extract_description",
    "extract_merchant",
    "parse_amount_value",
    "parse_date_value",
]
