import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

from clipforge.audio import build_extract_command, extracted_audio
from clipforge.errors import EngineFailure, ValidationError


def _fake_run(returncode: int = 0, stderr: str = ""):
    def _run(cmd, **_kwargs):
        Path(cmd[-1]).write_bytes(b"RIFF")
        return Mock(returncode=returncode, stderr=stderr)

    return _run


class TestBuildExtractCommand(unittest.TestCase):
    def test_segment(self):
        cmd = build_extract_command("ffmpeg", "talk.mp4", "out.wav", 2.0, 9.5)
        self.assertEqual(cmd[:5], ["ffmpeg", "-ss", "2", "-i", "talk.mp4"])
        self.assertEqual(cmd[cmd.index("-t") + 1], "7.5")
        self.assertEqual(cmd[-9:], ["-vn", "-acodec", "pcm_s16le", "-ar", "16000", "-ac", "1", "-y", "out.wav"])

    def test_whole_file(self):
        cmd = build_extract_command("ffmpeg", "talk.mp4", "out.wav")
        self.assertNotIn("-ss", cmd)
        self.assertNotIn("-t", cmd)
        self.assertEqual(cmd[1:3], ["-i", "talk.mp4"])


class TestExtractedAudio(unittest.TestCase):
    def setUp(self):
        self._td = tempfile.TemporaryDirectory()
        self.root = Path(self._td.name)
        self.video = self.root / "talk.mp4"
        self.video.write_bytes(b"\x00")
        self.temp_root = self.root / "tmp"
        self.temp_root.mkdir()

    def tearDown(self):
        self._td.cleanup()

    @patch("clipforge.audio.subprocess.run")
    def test_removed_after_block(self, run):
        run.side_effect = _fake_run()
        with extracted_audio("ffmpeg", str(self.video), 1.0, 3.0, temp_root=str(self.temp_root)) as wav:
            self.assertTrue(wav.exists())
            self.assertEqual(wav.name, "talk.wav")
        self.assertFalse(wav.exists())
        self.assertEqual(list(self.temp_root.iterdir()), [])

    @patch("clipforge.audio.subprocess.run")
    def test_removed_when_block_raises(self, run):
        run.side_effect = _fake_run()
        with self.assertRaises(KeyError):
            with extracted_audio("ffmpeg", str(self.video), temp_root=str(self.temp_root)):
                raise KeyError("upload failed")
        self.assertEqual(list(self.temp_root.iterdir()), [])

    @patch("clipforge.audio.subprocess.run")
    def test_removed_when_ffmpeg_fails(self, run):
        run.side_effect = _fake_run(returncode=1, stderr="No space left on device\n")
        with self.assertLogs("clipforge.diagnostics", level="ERROR"):
            with self.assertRaises(EngineFailure) as cm:
                with extracted_audio("ffmpeg", str(self.video), temp_root=str(self.temp_root)):
                    self.fail("should not yield")
        self.assertEqual(cm.exception.kind, "disk_space")
        self.assertEqual(list(self.temp_root.iterdir()), [])

    def test_missing_video(self):
        with self.assertRaises(ValidationError):
            with extracted_audio("ffmpeg", str(self.root / "nope.mp4")):
                pass


if __name__ == "__main__":
    unittest.main()
