from __future__ import annotations

import unittest

from roster_doctor.schema import FIELDS
from roster_doctor.worker import ValidationWorker


IDENTITY = {name: name for name in FIELDS}


class ValidationWorkerTests(unittest.TestCase):
    def test_submit_all_reports_progress_as_plain_dicts(self):
        rows = [{"employeeId": " E-1 ", "email": "a@example.com"}, {"employeeId": "e-1", "email": "b@example.com"}]
        updates = []
        with ValidationWorker() as worker:
            result = worker.submit_all(rows, IDENTITY, updates.append).result(timeout=60)

        self.assertTrue(result.is_complete)
        self.assertEqual(result.total_rows, 2)
        self.assertEqual(rows[0]["employeeId"], " E-1 ")
        self.assertIn("Duplicate value found in row 1", {error.message for error in result.errors})
        self.assertTrue(updates)
        self.assertIsInstance(updates[-1], dict)
        self.assertTrue(updates[-1]["isComplete"])
        self.assertNotIn("rows", updates[-1])

    def test_submit_chunk_keeps_global_offsets(self):
        with ValidationWorker() as worker:
            chunk = worker.submit_chunk([{"email": "not-an-email"}], {"email": "email"}, start_row=5).result(timeout=60)
        self.assertEqual(chunk.start_row, 5)
        self.assertTrue(chunk.errors)
        self.assertTrue(all(error.row == 5 for error in chunk.errors))

    def test_plan_is_cached_per_mapping(self):
        with ValidationWorker() as worker:
            first = worker.plan_for({"email": "email"})
            self.assertIs(worker.plan_for({"email": "email"}), first)
            self.assertIsNot(worker.plan_for({"mail": "email"}), first)


if __name__ == "__main__":
    unittest.main()
