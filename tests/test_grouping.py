from __future__ import annotations

import unittest

from roster_doctor.engine import CleaningChange, ValidationError
from roster_doctor.grouping import (
    flatten_grouped,
    group_changes_by_row,
    group_errors_by_row,
    grouped_field_messages,
)


ERRORS = [
    ValidationError(2, "email", "Invalid email format", "bad"),
    ValidationError(0, "firstName", "First name is required", None),
    ValidationError(2, "email", "Invalid email domain.", "bad2"),
    ValidationError(2, "country", "Country must be a 3-letter ISO code", "XX"),
]


class GroupingTests(unittest.TestCase):
    def test_rows_sorted_and_fields_in_first_seen_order(self):
        grouped = group_errors_by_row(ERRORS)
        self.assertEqual([group["row"] for group in grouped], [0, 2])
        row_two = grouped[1]["fields"]
        self.assertEqual([entry["field"] for entry in row_two], ["email", "country"])
        self.assertEqual(row_two[0]["messages"], ["Invalid email format", "Invalid email domain."])
        self.assertEqual(row_two[0]["value"], "bad2")

    def test_flatten_round_trip(self):
        flat = flatten_grouped(group_errors_by_row(ERRORS))
        self.assertEqual(sorted(flat), sorted((e.row, e.field, e.message) for e in ERRORS))

    def test_changes_group_by_description(self):
        changes = [CleaningChange(1, "email", " A", "a", ["trimmed"], "Cleaned value for email: trimmed whitespace")]
        grouped = group_changes_by_row(changes)
        self.assertEqual(grouped, [{
            "row": 1,
            "fields": [{
                "field": "email",
                "messages": ["Cleaned value for email: trimmed whitespace"],
                "value": "a",
            }],
        }])

    def test_field_lookup(self):
        grouped = group_errors_by_row(ERRORS)
        self.assertEqual(grouped_field_messages(grouped, 0, "firstName"), ["First name is required"])
        self.assertEqual(grouped_field_messages(grouped, 1, "firstName"), [])

    def test_empty(self):
        self.assertEqual(group_errors_by_row([]), [])


if __name__ == "__main__":
    unittest.main()
