import logging
import wave
from pathlib import Path

from pydub import AudioSegment

logger = logging.getLogger(__name__)


def probe_duration(audio_path: Path) -> float | None:
    """Duracion en segundos de un archivo de audio.
    WAV se lee por cabecera; el resto pasa por pydub/ffmpeg.
    Retorna None si no se puede determinar.
    """
    audio_path = Path(audio_path)
    if audio_path.suffix.lower() == ".wav":
        try:
            with wave.open(str(audio_path), "rb") as wf:
                rate = wf.getframerate()
                return wf.getnframes() / rate if rate else 0.0
        except (wave.Error, EOFError, OSError) as e:
            logger.warning("No se pudo leer la cabecera WAV de %s: %s", audio_path.name, e)
            return None

    try:
        return AudioSegment.from_file(str(audio_path)).duration_seconds
    except Exception as e:
        logger.warning("No se pudo obtener la duracion de %s: %s", audio_path.name, e)
        return None


def transcode(wav_path: Path, audio_format: str) -> Path:
    """Convierte un WAV al formato indicado usando pydub/ffmpeg y borra el WAV."""
    wav_path = Path(wav_path)
    if audio_format == "wav":
        return wav_path

    target = wav_path.with_suffix(f".{audio_format}")
    audio = AudioSegment.from_wav(str(wav_path))
    export_args = {"bitrate": "128k"} if audio_format == "mp3" else {}
    audio.export(str(target), format=audio_format, **export_args)
    wav_path.unlink()
    return target
