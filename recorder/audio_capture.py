import logging
import threading
import wave
from pathlib import Path

import numpy as np

import config
from errors import CaptureError

logger = logging.getLogger(__name__)


class AudioRecorder:
    """Captura de microfono con sounddevice a un WAV mono de 16 bits."""

    def __init__(self, sample_rate: int = config.SAMPLE_RATE, channels: int = config.CHANNELS,
                 device_index: int | None = None):
        self.sample_rate = sample_rate
        self.channels = channels
        self.device_index = device_index
        self._stream = None
        self._wf: wave.Wave_write | None = None
        self._frames = 0
        self._lock = threading.Lock()

    @staticmethod
    def _get_sd():
        # PortAudio se carga al importar sounddevice
        import sounddevice as sd
        return sd

    def list_devices(self) -> list[dict]:
        sd = self._get_sd()
        devices = []
        for i, info in enumerate(sd.query_devices()):
            if info["max_input_channels"] > 0:
                devices.append({
                    "index": i,
                    "name": info["name"],
                    "maxInputChannels": info["max_input_channels"],
                    "defaultSampleRate": info["default_samplerate"],
                })
        return devices

    @property
    def is_recording(self) -> bool:
        return self._stream is not None

    def _callback(self, indata: np.ndarray, frames: int, time, status):
        if status:
            logger.debug("Estado del stream: %s", status)
        samples = np.clip(indata, -1.0, 1.0)
        if samples.ndim > 1 and samples.shape[1] > 1:
            samples = samples.mean(axis=1)
        pcm = (samples.reshape(-1) * 32767).astype("<i2").tobytes()
        with self._lock:
            if self._wf is not None:
                self._wf.writeframes(pcm)
                self._frames += frames

    def start(self, output_path: Path):
        if self._stream is not None:
            raise CaptureError("El dispositivo ya esta grabando")

        sd = self._get_sd()
        wf = wave.open(str(output_path), "wb")
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(self.sample_rate)

        with self._lock:
            self._wf = wf
            self._frames = 0

        try:
            stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="float32",
                device=self.device_index,
                callback=self._callback,
            )
            stream.start()
        except Exception as e:
            with self._lock:
                self._wf = None
            wf.close()
            raise CaptureError(f"No se pudo abrir el dispositivo de audio: {e}") from e

        self._stream = stream
        logger.info("Captura iniciada: %s", Path(output_path).name)

    def stop(self) -> float:
        if self._stream is None:
            raise CaptureError("No hay captura en curso")

        stream, self._stream = self._stream, None
        try:
            stream.stop()
            stream.close()
        finally:
            with self._lock:
                wf, self._wf = self._wf, None
                frames = self._frames
            if wf is not None:
                wf.close()

        return frames / self.sample_rate
