import json
import logging
import math
import re
import threading
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from pathlib import Path

import config
from db.models import RecordingStatus, Transcription
from db.recordings import RecordingStore
from db.transcriptions import TranscriptionStore
from errors import (
    AppError,
    ConflictError,
    EngineCancelled,
    EngineFailure,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from processing.engine import EngineJob, EngineResult, EngineSegment, TranscriptionEngine
from processing.formatter import postprocess_text, render
from processing.parameters import ResolvedParameters, resolve_parameters

logger = logging.getLogger(__name__)

LANGUAGE_RE = re.compile(r"[a-z]{2,3}(-[A-Za-z]{2,4})?")
CANCELLED_REASON = "cancelled"


def estimate_confidence(segments: list[EngineSegment]) -> float | None:
    probs = [math.exp(s.avg_logprob) for s in segments if s.avg_logprob is not None]
    if not probs:
        return None
    return round(sum(probs) / len(probs), 3)


def _failure_reason(error: EngineFailure) -> str:
    reason = str(error)
    last_lines = [line for line in error.diagnostic_log.strip().splitlines() if line.strip()]
    if last_lines:
        reason = f"{reason}: {last_lines[-1].strip()}"
    return reason


class Transcriber:
    def __init__(self, recordings: RecordingStore, transcriptions: TranscriptionStore,
                 engine: TranscriptionEngine, transcripts_dir: Path,
                 model_size: str = config.WHISPER_MODEL, device: str = config.WHISPER_DEVICE,
                 max_workers: int = config.MAX_CONCURRENT_TRANSCRIPTIONS,
                 max_file_size: int = config.MAX_AUDIO_FILE_SIZE):
        self.recordings = recordings
        self.transcriptions = transcriptions
        self.engine = engine
        self.transcripts_dir = Path(transcripts_dir)
        self.transcripts_dir.mkdir(parents=True, exist_ok=True)
        self.model_size = model_size
        self.device = device
        self.max_file_size = max_file_size
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers),
                                            thread_name_prefix="transcriber")
        self._futures: dict[str, Future] = {}
        self._running: set[str] = set()
        self._lock = threading.Lock()
        transcriptions.fail_interrupted()

    # -- Envio --

    def submit(self, recording_id: str, language: str = "ja", parameters: dict | None = None,
               skip_preprocessing: bool = False) -> Transcription:
        """Crea la transcripcion pendiente y la encola. No espera al motor."""
        if not LANGUAGE_RE.fullmatch(language or ""):
            raise ValidationError(f"Codigo de idioma invalido: {language!r}")

        rec = self.recordings.get(recording_id)
        if rec is None:
            raise NotFoundError(f"Grabacion no encontrada: {recording_id}")
        if rec.status is not RecordingStatus.COMPLETED:
            raise ConflictError(f"Grabacion en estado '{rec.status.value}', no se puede transcribir")

        audio_path = Path(rec.file_path)
        if not audio_path.is_file():
            raise ValidationError(f"Archivo de audio no encontrado: {audio_path.name}")
        if audio_path.stat().st_size > self.max_file_size:
            raise ValidationError(f"Archivo de audio demasiado grande: {audio_path.name}")

        resolved = resolve_parameters(language, self.model_size, parameters, skip_preprocessing)
        transcription = self.transcriptions.begin(recording_id, language)

        with self._lock:
            future = self._executor.submit(self._run, transcription.id, str(audio_path), language, resolved)
            self._futures[transcription.id] = future
        future.add_done_callback(lambda _f, tid=transcription.id: self._forget_future(tid))

        logger.info("Transcripcion %s encolada para %s", transcription.id, recording_id)
        return transcription

    def result(self, transcription_id: str, timeout: float | None = None) -> Transcription:
        """Espera a que termine la transcripcion y la devuelve (o propaga el error del motor)."""
        with self._lock:
            future = self._futures.get(transcription_id)
        if future is not None:
            try:
                return future.result(timeout=timeout)
            except CancelledError as e:
                raise EngineCancelled("Transcripcion cancelada") from e

        current = self.transcriptions.get(transcription_id)
        if current is None:
            raise NotFoundError(f"Transcripcion no encontrada: {transcription_id}")
        if current.status.kind == "failed":
            if current.status.reason == CANCELLED_REASON:
                raise EngineCancelled("Transcripcion cancelada")
            raise EngineFailure(current.status.reason)
        return current

    def transcribe(self, recording_id: str, language: str = "ja", parameters: dict | None = None,
                   skip_preprocessing: bool = False) -> Transcription:
        pending = self.submit(recording_id, language, parameters, skip_preprocessing)
        return self.result(pending.id)

    def _forget_future(self, transcription_id: str):
        with self._lock:
            self._futures.pop(transcription_id, None)

    # -- Ejecucion --

    def _run(self, transcription_id: str, audio_path: str, language: str,
             resolved: ResolvedParameters) -> Transcription:
        with self._lock:
            self._running.add(transcription_id)
        try:
            return self._execute(transcription_id, audio_path, language, resolved)
        finally:
            with self._lock:
                self._running.discard(transcription_id)
                self.engine.forget(transcription_id)

    def _execute(self, transcription_id: str, audio_path: str, language: str,
                 resolved: ResolvedParameters) -> Transcription:
        try:
            self.transcriptions.mark_processing(transcription_id)
        except ConflictError as e:
            # Cancelada mientras esperaba en la cola
            raise EngineCancelled("Transcripcion cancelada") from e
        except AppError as e:
            logger.error("No se pudo iniciar la transcripcion %s: %s", transcription_id, e)
            self._fail(transcription_id, str(e))
            raise

        job = EngineJob(
            audio_path=audio_path,
            model=resolved.model,
            parameters=resolved.engine_params,
            preprocess=resolved.preprocess,
            device=self.device,
        )
        try:
            result = self.engine.run(job, job_id=transcription_id)
            return self._complete(transcription_id, result, language, resolved.model)
        except EngineCancelled:
            self._fail(transcription_id, CANCELLED_REASON)
            raise
        except EngineFailure as e:
            logger.error("Error transcribiendo %s: %s", transcription_id, e)
            if e.diagnostic_log:
                logger.debug("Log del motor:\n%s", e.diagnostic_log)
            self._fail(transcription_id, _failure_reason(e))
            raise
        except AppError as e:
            logger.error("Error guardando la transcripcion %s: %s", transcription_id, e)
            self._fail(transcription_id, str(e))
            raise
        except Exception as e:
            logger.exception("Error inesperado transcribiendo %s", transcription_id)
            self._fail(transcription_id, f"Error inesperado: {e}")
            raise

    def _complete(self, transcription_id: str, result: EngineResult, language: str,
                  model: str) -> Transcription:
        staged = self._stage_export(transcription_id, result, language, model)
        text = postprocess_text(result.text, language)
        try:
            done = self.transcriptions.complete(
                transcription_id,
                text=text,
                language=result.language or language,
                confidence=estimate_confidence(result.segments),
                processing_time_ms=result.processing_time_ms,
            )
        except ConflictError as e:
            staged.unlink(missing_ok=True)
            raise EngineCancelled("Transcripcion cancelada") from e
        except Exception:
            staged.unlink(missing_ok=True)
            raise

        try:
            staged.replace(self._export_path(transcription_id))
        except OSError as e:
            # El texto ya esta guardado; solo se pierde la exportacion
            logger.error("No se pudo publicar la exportacion de %s: %s", transcription_id, e)
            staged.unlink(missing_ok=True)

        logger.info("Transcripcion completada: %s (%d caracteres, %dms)",
                    transcription_id, len(text), result.processing_time_ms)
        return done

    def _fail(self, transcription_id: str, reason: str):
        try:
            self.transcriptions.fail(transcription_id, reason)
        except (ConflictError, NotFoundError) as e:
            # Ya estaba terminada (p. ej. cancelada) o la grabacion fue borrada
            logger.debug("No se marca como fallida %s: %s", transcription_id, e)
        except PersistenceError as e:
            logger.error("No se pudo marcar como fallida %s: %s", transcription_id, e)

    # -- Cancelacion y limpieza --

    def cancel(self, recording_id: str) -> bool:
        current = self.transcriptions.in_flight(recording_id)
        if current is None:
            return False

        with self._lock:
            future = self._futures.get(current.id)
        if future is not None and future.cancel():
            logger.info("Transcripcion %s cancelada antes de empezar", current.id)
        else:
            with self._lock:
                if current.id in self._running:
                    self.engine.cancel(current.id)
        self._fail(current.id, CANCELLED_REASON)
        return True

    def discard(self, recording_id: str):
        self.cancel(recording_id)
        for t in self.transcriptions.list_for_recording(recording_id):
            self._export_path(t.id).unlink(missing_ok=True)

    def shutdown(self):
        with self._lock:
            for transcription_id in self._running:
                self.engine.cancel(transcription_id)
        self._executor.shutdown(wait=False, cancel_futures=True)

    # -- Exportacion --

    def _export_path(self, transcription_id: str) -> Path:
        return self.transcripts_dir / f"{transcription_id}.json"

    def _stage_export(self, transcription_id: str, result: EngineResult, language: str,
                      model: str) -> Path:
        """Escribe el resultado completo en un archivo temporal; se publica al completar."""
        data = {
            "model": model,
            "language": language,
            "result": result.model_dump(exclude={"diagnostic_log"}),
        }
        staged = self.transcripts_dir / f"{transcription_id}.json.tmp"
        try:
            staged.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError as e:
            staged.unlink(missing_ok=True)
            raise PersistenceError(f"No se pudo guardar el resultado de {transcription_id}: {e}") from e
        return staged

    def export(self, transcription_id: str, output_format: str = "text") -> str:
        path = self._export_path(transcription_id)
        if not path.exists():
            raise NotFoundError(f"No hay resultado exportable para {transcription_id}")
        data = json.loads(path.read_text(encoding="utf-8"))
        result = EngineResult.model_validate(data["result"])
        try:
            return render(result, output_format, data["language"], data["model"])
        except ValueError as e:
            raise ValidationError(str(e)) from e
