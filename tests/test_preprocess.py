"""Tests for audio preprocessing."""
import sys
from unittest.mock import MagicMock, patch

import numpy as np

from processing.preprocess import TARGET_SAMPLE_RATE, TRIM_TOP_DB, normalize_volume, preprocess_audio


class TestNormalizeVolume:
    def test_scales_to_target_rms(self):
        audio = np.full(1000, 0.5, dtype=np.float32)
        out = normalize_volume(audio, target_rms=0.1)
        assert np.isclose(np.sqrt(np.mean(np.square(out))), 0.1)

    def test_silence_is_unchanged(self):
        audio = np.zeros(100, dtype=np.float32)
        assert np.array_equal(normalize_volume(audio), audio)

    def test_empty_input(self):
        audio = np.array([], dtype=np.float32)
        assert normalize_volume(audio).size == 0


class TestPreprocessAudio:
    def test_falls_back_to_path_without_librosa(self):
        with patch.dict(sys.modules, {"librosa": None}):
            assert preprocess_audio("/tmp/audio.wav") == "/tmp/audio.wav"

    def test_loads_normalizes_and_trims(self):
        fake_librosa = MagicMock()
        loaded = np.full(16000, 0.5, dtype=np.float64)
        fake_librosa.load.return_value = (loaded, TARGET_SAMPLE_RATE)
        fake_librosa.effects.trim.side_effect = lambda audio, top_db: (audio[:8000], (0, 8000))

        with patch.dict(sys.modules, {"librosa": fake_librosa}):
            out = preprocess_audio("/tmp/audio.wav")

        fake_librosa.load.assert_called_once_with("/tmp/audio.wav", sr=TARGET_SAMPLE_RATE)
        assert fake_librosa.effects.trim.call_args.kwargs["top_db"] == TRIM_TOP_DB
        assert out.dtype == np.float32
        assert len(out) == 8000
        assert np.isclose(np.sqrt(np.mean(np.square(out))), 0.1, atol=1e-5)
