"""Worker del motor de reconocimiento.

Se ejecuta como subproceso: ``python -m processing.engine_worker <job.json>``.
Escribe un unico objeto JSON en stdout; los logs van a stderr.
"""
import json
import logging
import sys
import warnings
from pathlib import Path

from processing.preprocess import preprocess_audio

logger = logging.getLogger("meetscribe.engine")

_model_cache = {}


def load_model(model_size: str, device: str = "auto"):
    key = (model_size, device)
    if key in _model_cache:
        return _model_cache[key]

    from faster_whisper import WhisperModel

    compute_type = "int8"
    if device == "auto":
        # Detect best device
        device = "cpu"
        try:
            import torch
            if torch.cuda.is_available():
                device = "cuda"
        except ImportError:
            pass
    if device == "cuda":
        compute_type = "float16"

    logger.info("Cargando modelo Whisper '%s' en %s (compute_type=%s)...", model_size, device, compute_type)
    model = WhisperModel(model_size, device=device, compute_type=compute_type)
    _model_cache[key] = model
    return model


def run_job(job: dict) -> dict:
    audio_path = job["audio_path"]
    if not Path(audio_path).is_file():
        raise FileNotFoundError(f"Archivo de audio no encontrado: {audio_path}")

    file_size = Path(audio_path).stat().st_size
    model = load_model(job["model"], job.get("device", "auto"))
    logger.info("Procesando: %s (%d bytes)", audio_path, file_size)

    audio = audio_path
    if job.get("preprocess", True):
        audio = preprocess_audio(audio_path)
    preprocessed = not isinstance(audio, str)

    segments, info = model.transcribe(audio, **job.get("parameters", {}))

    all_segments = []
    low_confidence = 0
    for segment in segments:
        all_segments.append({
            "id": segment.id,
            "start": segment.start,
            "end": segment.end,
            "text": segment.text,
            "avg_logprob": segment.avg_logprob,
            "no_speech_prob": segment.no_speech_prob,
        })
        if segment.avg_logprob < -0.8:
            low_confidence += 1

    logger.info("Procesados %d segmentos", len(all_segments))
    if low_confidence:
        logger.warning("%d segmentos con confianza baja", low_confidence)

    text = "".join(s["text"] for s in all_segments).strip()
    if not text:
        logger.warning("No se reconocio texto en el audio")

    return {
        "text": text,
        "language": info.language,
        "duration": info.duration,
        "segments": all_segments,
        "preprocessed": preprocessed,
    }


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    logging.basicConfig(
        level=logging.INFO,
        stream=sys.stderr,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    warnings.filterwarnings("ignore")

    if len(argv) != 1:
        logger.error("Uso: python -m processing.engine_worker <job.json>")
        return 2

    try:
        job = json.loads(Path(argv[0]).read_text(encoding="utf-8"))
        output = run_job(job)
    except Exception:
        logger.exception("Error en el motor de reconocimiento")
        return 1

    sys.stdout.buffer.write(json.dumps(output, ensure_ascii=False).encode("utf-8"))
    sys.stdout.buffer.flush()
    return 0


if __name__ == "__main__":
    sys.exit(main())
