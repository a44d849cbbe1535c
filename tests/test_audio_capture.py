"""Tests for microphone capture and audio file helpers (sounddevice is mocked)."""
import wave
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from errors import CaptureError
from recorder.audio_capture import AudioRecorder
from recorder.audio_file import probe_duration, transcode


@pytest.fixture
def fake_sd():
    sd = MagicMock()
    sd.query_devices.return_value = [
        {"name": "Speakers", "max_input_channels": 0, "default_samplerate": 48000.0},
        {"name": "USB Mic", "max_input_channels": 1, "default_samplerate": 16000.0},
    ]
    with patch.object(AudioRecorder, "_get_sd", return_value=sd):
        yield sd


class TestAudioRecorder:
    def test_list_devices_only_inputs(self, fake_sd):
        devices = AudioRecorder().list_devices()
        assert devices == [{"index": 1, "name": "USB Mic", "maxInputChannels": 1, "defaultSampleRate": 16000.0}]

    def test_records_callback_frames(self, fake_sd, tmp_path):
        recorder = AudioRecorder(sample_rate=16000, channels=1)
        path = tmp_path / "capture.wav"
        recorder.start(path)
        assert recorder.is_recording

        block = np.full((1600, 1), 0.25, dtype=np.float32)
        for _ in range(5):
            recorder._callback(block, 1600, None, None)

        assert recorder.stop() == pytest.approx(0.5)
        assert not recorder.is_recording
        with wave.open(str(path), "rb") as wf:
            assert wf.getnframes() == 8000
            assert wf.getframerate() == 16000

    def test_stereo_input_is_downmixed(self, fake_sd, tmp_path):
        recorder = AudioRecorder(channels=2)
        path = tmp_path / "stereo.wav"
        recorder.start(path)
        recorder._callback(np.zeros((800, 2), dtype=np.float32), 800, None, None)
        recorder.stop()
        with wave.open(str(path), "rb") as wf:
            assert wf.getnchannels() == 1
            assert wf.getnframes() == 800

    def test_device_failure_raises_capture_error(self, fake_sd, tmp_path):
        fake_sd.InputStream.side_effect = RuntimeError("Invalid device")
        recorder = AudioRecorder()
        with pytest.raises(CaptureError, match="Invalid device"):
            recorder.start(tmp_path / "x.wav")
        assert not recorder.is_recording

    def test_stop_without_start(self):
        with pytest.raises(CaptureError):
            AudioRecorder().stop()


class TestAudioFile:
    def test_probe_wav(self, tmp_path):
        path = tmp_path / "a.wav"
        with wave.open(str(path), "wb") as wf:
            wf.setnchannels(1)
            wf.setsampwidth(2)
            wf.setframerate(8000)
            wf.writeframes(b"\x00\x00" * 4000)
        assert probe_duration(path) == pytest.approx(0.5)

    def test_probe_unreadable(self, tmp_path):
        path = tmp_path / "broken.wav"
        path.write_bytes(b"not audio")
        assert probe_duration(path) is None

    def test_transcode_wav_is_noop(self, tmp_path):
        path = tmp_path / "a.wav"
        path.write_bytes(b"")
        assert transcode(path, "wav") == path
        assert path.exists()

    def test_transcode_exports_and_removes_wav(self, tmp_path):
        path = tmp_path / "a.wav"
        path.write_bytes(b"")
        segment = MagicMock()
        with patch("recorder.audio_file.AudioSegment") as audio_segment:
            audio_segment.from_wav.return_value = segment
            target = transcode(path, "mp3")

        assert target == tmp_path / "a.mp3"
        segment.export.assert_called_once_with(str(target), format="mp3", bitrate="128k")
        assert not path.exists()
