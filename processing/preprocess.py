import logging

import numpy as np

logger = logging.getLogger(__name__)

TARGET_SAMPLE_RATE = 16000
TARGET_RMS = 0.1
TRIM_TOP_DB = 30


def normalize_volume(audio: np.ndarray, target_rms: float = TARGET_RMS) -> np.ndarray:
    rms = float(np.sqrt(np.mean(np.square(audio)))) if audio.size else 0.0
    if rms > 0:
        return audio * (target_rms / rms)
    return audio


def preprocess_audio(audio_path: str):
    """Carga el audio a 16 kHz, normaliza el volumen (RMS 0.1) y recorta silencios.

    Si librosa no esta instalado devuelve la ruta tal cual para que el motor
    lea el archivo directamente.
    """
    try:
        import librosa
    except ImportError:
        logger.warning("librosa no disponible, se usa el archivo sin preprocesar")
        return audio_path

    logger.info("Preprocesando audio con librosa...")
    audio, _ = librosa.load(audio_path, sr=TARGET_SAMPLE_RATE)
    audio = normalize_volume(audio)
    audio, _ = librosa.effects.trim(audio, top_db=TRIM_TOP_DB)
    logger.info("Preprocesado completado: %d muestras", len(audio))
    return audio.astype(np.float32)
