import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from chat_store import StoreError, is_missing_procedure, is_not_found, is_unique_violation


class TestClassifier(unittest.TestCase):
    def test_not_found(self) -> None:
        self.assertTrue(is_not_found(StoreError("PGRST116", "no rows")))
        self.assertFalse(is_not_found(StoreError("23505", "dup")))
        self.assertFalse(is_not_found(RuntimeError("boom")))

    def test_unique_violation(self) -> None:
        self.assertTrue(is_unique_violation(StoreError("23505", "duplicate key")))
        self.assertFalse(is_unique_violation(StoreError("23503", "fk")))

    def test_missing_procedure_by_code(self) -> None:
        self.assertTrue(is_missing_procedure(StoreError("42883", "function does not exist")))
        self.assertTrue(is_missing_procedure(StoreError("PGRST202", "not found")))

    def test_missing_procedure_by_message(self) -> None:
        self.assertTrue(is_missing_procedure(StoreError(None, "Could not find CREATE_GROUP_CHATROOM")))
        self.assertTrue(is_missing_procedure(StoreError("XX000", "stale Schema Cache")))

    def test_other_errors_are_hard_failures(self) -> None:
        self.assertFalse(is_missing_procedure(None))
        self.assertFalse(is_missing_procedure(StoreError("42501", "permission denied for table chatrooms")))
        self.assertFalse(is_missing_procedure(RuntimeError("connection reset")))


if __name__ == "__main__":
    unittest.main()
