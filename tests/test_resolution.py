import unittest

from clipforge.errors import ParseError, ValidationError
from clipforge.resolution import ExportResolution, normalize_resolution


class TestNormalizeResolution(unittest.TestCase):
    def test_defaults_to_720p(self):
        self.assertEqual(normalize_resolution(), ExportResolution(1280, 720))
        self.assertEqual(normalize_resolution(None, 1080), ExportResolution(1280, 1080))

    def test_rounds_down_to_even(self):
        self.assertEqual(normalize_resolution(1281, 721), ExportResolution(1280, 720))
        self.assertEqual(normalize_resolution(65, 65), ExportResolution(64, 64))

    def test_rejects_below_minimum(self):
        with self.assertRaises(ValidationError):
            normalize_resolution(30, 30)
        # 65 would pass, 63 rounds to 62
        with self.assertRaises(ValidationError):
            normalize_resolution(63, 720)

    def test_rejects_above_maximum(self):
        with self.assertRaises(ValidationError):
            normalize_resolution(8000, 5000)
        with self.assertRaises(ValidationError):
            normalize_resolution(1920, 4322)
        self.assertEqual(normalize_resolution(7681, 4321), ExportResolution(7680, 4320))

    def test_rejects_non_integer(self):
        with self.assertRaises(ParseError):
            normalize_resolution("wide", 720)
        with self.assertRaises(ParseError):
            normalize_resolution(True, 720)

    def test_str(self):
        self.assertEqual(str(ExportResolution(1920, 1080)), "1920x1080")


if __name__ == "__main__":
    unittest.main()
