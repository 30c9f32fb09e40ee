from __future__ import annotations

import unittest

from roster_doctor.mapping import (
    fields_available,
    find_best_match,
    header_quality,
    hybrid_headers,
    infer_mapping,
    map_row,
    map_row_hybrid,
    missing_required,
    set_mapping,
    split_headers,
)
from roster_doctor.schema import FIELDS, REQUIRED_FIELDS, ConfigurationError


class FindBestMatchTests(unittest.TestCase):
    def test_exact_variations(self):
        self.assertEqual(
            find_best_match("First Name"),
            {"field": "firstName", "exactMatch": True, "score": 0.0},
        )
        self.assertEqual(find_best_match("Emp ID")["field"], "employeeId")
        self.assertEqual(find_best_match("E-mail")["field"], "email")
        self.assertEqual(find_best_match("workPhoneNumber")["field"], "workPhoneNumber")

    def test_shared_variation_resolves_to_later_field(self):
        self.assertEqual(find_best_match("Division")["field"], "division")
        self.assertEqual(find_best_match("Dept")["field"], "department")

    def test_fuzzy_typo(self):
        match = find_best_match("Frist Name")
        self.assertEqual(match["field"], "firstName")
        self.assertFalse(match["exactMatch"])
        self.assertGreater(match["score"], 0.0)
        self.assertLess(match["score"], 0.35)

    def test_unrelated_header_has_no_match(self):
        self.assertIsNone(find_best_match("Unknown Thing"))

    def test_blank_and_short_headers(self):
        self.assertIsNone(find_best_match(None))
        self.assertIsNone(find_best_match("   "))
        self.assertIsNone(find_best_match("x"))

    def test_tighter_threshold_rejects_typos(self):
        self.assertIsNone(find_best_match("Frist Name", threshold=0.05))


class InferMappingTests(unittest.TestCase):
    def test_headers_map_in_input_order(self):
        mapping = infer_mapping(["Notes", "Surname", "Emp ID"])
        self.assertEqual(list(mapping.items()), [("Surname", "lastName"), ("Emp ID", "employeeId")])

    def test_first_exact_claim_is_kept(self):
        self.assertEqual(infer_mapping(["Mobile", "Cell"]), {"Mobile": "mobileNumber"})

    def test_exact_beats_fuzzy(self):
        self.assertEqual(infer_mapping(["Frist Name", "First Name"]), {"First Name": "firstName"})

    def test_blank_headers_are_skipped(self):
        self.assertEqual(infer_mapping([None, "", "Email"]), {"Email": "email"})

    def test_no_target_claimed_twice(self):
        mapping = infer_mapping(["Email", "E-mail", "Email Address", "Mail"])
        self.assertEqual(list(mapping.values()), ["email"])


class MappingEditTests(unittest.TestCase):
    def test_set_mapping_releases_field_elsewhere(self):
        mapping = {"A": "email", "B": "firstName"}
        updated = set_mapping(mapping, "B", "email")
        self.assertEqual(updated, {"B": "email"})
        self.assertEqual(mapping, {"A": "email", "B": "firstName"})

    def test_set_mapping_none_unmaps(self):
        self.assertEqual(set_mapping({"A": "email"}, "A", None), {})

    def test_set_mapping_rejects_unknown_field(self):
        with self.assertRaises(ConfigurationError):
            set_mapping({}, "A", "salary")

    def test_fields_available(self):
        mapping = {"A": "email"}
        self.assertNotIn("email", fields_available(mapping))
        self.assertIn("email", fields_available(mapping, "A"))
        self.assertEqual(len(fields_available({})), len(FIELDS))

    def test_missing_required(self):
        self.assertEqual(missing_required({}), list(REQUIRED_FIELDS))
        self.assertNotIn("workPhoneNumber", missing_required({}))
        full = {name: name for name in FIELDS}
        self.assertEqual(missing_required(full), [])

    def test_split_headers(self):
        result = split_headers({"Email": "email"}, ["Email", "Notes"])
        self.assertEqual(result["mapped"], {"Email": "email"})
        self.assertEqual(result["unmapped"], ["Notes"])
        self.assertEqual(result["allMappings"], {"Email": "email", "Notes": None})


class RowProjectionTests(unittest.TestCase):
    def test_map_row_and_hybrid(self):
        row = {"Email": "a@example.com", "Notes": "x"}
        mapping = {"Email": "email"}
        self.assertEqual(map_row(row, mapping), {"email": "a@example.com"})
        self.assertEqual(map_row_hybrid(row, mapping), {"email": "a@example.com", "Notes": "x"})
        self.assertEqual(hybrid_headers(["Email", "Notes"], mapping), ["email", "Notes"])

    def test_header_quality_prefers_named_headers(self):
        self.assertEqual(header_quality([]), 0)
        self.assertGreater(header_quality(["email", "city"]), header_quality(["", None]))


if __name__ == "__main__":
    unittest.main()
