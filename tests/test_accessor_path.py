import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from fieldkit.accessor_path import (
    AccessorPathError,
    dynamic_accessor,
    is_dynamic_accessor,
    parse_dynamic_accessor,
    try_parse_dynamic_accessor,
)


class TestAccessorPath(unittest.TestCase):
    def test_parses_single_segment(self) -> None:
        self.assertEqual(parse_dynamic_accessor("dynamicFields.shirtSize"), "shirtSize")
        self.assertEqual(dynamic_accessor("shirtSize"), "dynamicFields.shirtSize")

    def test_core_keys_are_not_dynamic(self) -> None:
        self.assertFalse(is_dynamic_accessor("firstname"))
        self.assertFalse(is_dynamic_accessor("dynamicFields"))
        self.assertFalse(is_dynamic_accessor(None))

    def test_rejects_empty_and_nested_segments(self) -> None:
        for key in ("dynamicFields.", "dynamicFields.a.b", "dynamicFields. padded"):
            with self.subTest(key=key):
                self.assertTrue(is_dynamic_accessor(key))
                with self.assertRaises(AccessorPathError):
                    parse_dynamic_accessor(key)
                self.assertIsNone(try_parse_dynamic_accessor(key))

    def test_accessor_for_dotted_name_rejected(self) -> None:
        with self.assertRaises(AccessorPathError):
            dynamic_accessor("a.b")
        with self.assertRaises(AccessorPathError):
            dynamic_accessor("")


if __name__ == "__main__":
    unittest.main()
