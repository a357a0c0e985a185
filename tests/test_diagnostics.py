import unittest

from clipforge.diagnostics import (
    FAILURE_CODEC_INCOMPATIBLE,
    FAILURE_DISK_SPACE,
    FAILURE_GENERIC,
    FAILURE_INVALID_PARAMETERS,
    classify_failure,
)


class TestClassifyFailure(unittest.TestCase):
    def test_disk_space(self):
        err = classify_failure("av_interleaved_write_frame(): No space left on device\n", 1)
        self.assertEqual(err.kind, FAILURE_DISK_SPACE)
        self.assertEqual(str(err), "Not enough disk space to export video.")
        self.assertEqual(err.returncode, 1)

    def test_codec_not_found(self):
        err = classify_failure("Unknown encoder: codec 'libx264' not found\n")
        self.assertEqual(err.kind, FAILURE_CODEC_INCOMPATIBLE)
        self.assertEqual(str(err), "Video codec incompatibility. Try re-encoding (slower).")

    def test_invalid_argument_keeps_raw(self):
        raw = "[Parsed_scale_2 @ 0x1] Invalid argument\nError initializing complex filters.\n"
        err = classify_failure(raw, 234)
        self.assertEqual(err.kind, FAILURE_INVALID_PARAMETERS)
        self.assertEqual(str(err), f"Invalid export parameters. FFmpeg error:\n\n{raw}")
        self.assertEqual(err.raw, raw)

    def test_generic_keeps_raw_verbatim(self):
        raw = "x" * 5000 + "\nsomething odd happened\n"
        err = classify_failure(raw, 1)
        self.assertEqual(err.kind, FAILURE_GENERIC)
        self.assertEqual(err.raw, raw)
        self.assertTrue(str(err).startswith("Export failed. FFmpeg error:\n\n"))
        self.assertTrue(str(err).endswith(raw))

    def test_first_rule_wins(self):
        raw = "No space left on device\ncodec not found\nInvalid argument\n"
        self.assertEqual(classify_failure(raw).kind, FAILURE_DISK_SPACE)
        raw = "codec not found\nInvalid argument\n"
        self.assertEqual(classify_failure(raw).kind, FAILURE_CODEC_INCOMPATIBLE)

    def test_matching_is_case_sensitive(self):
        self.assertEqual(classify_failure("no space left").kind, FAILURE_GENERIC)
        self.assertEqual(classify_failure("invalid argument").kind, FAILURE_GENERIC)

    def test_full_diagnostic_is_logged(self):
        with self.assertLogs("clipforge.diagnostics", level="ERROR") as cm:
            classify_failure("line one\nline two\n", 1)
        self.assertIn("line two", cm.output[0])

    def test_empty_output(self):
        err = classify_failure("", 1)
        self.assertEqual(err.kind, FAILURE_GENERIC)
        self.assertEqual(err.raw, "")


if __name__ == "__main__":
    unittest.main()
