import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Protocol

from db.models import Recording, RecordingStatus
from db.recordings import RecordingStore
from errors import AppError, CaptureError, ConflictError, NotRecordingError
from recorder.audio_file import probe_duration, transcode

logger = logging.getLogger(__name__)


class CaptureBackend(Protocol):
    def start(self, output_path: Path) -> None: ...

    def stop(self) -> float | None: ...


class SessionState(Enum):
    IDLE = "idle"
    STARTING = "starting"
    RECORDING = "recording"
    STOPPING = "stopping"


@dataclass(frozen=True)
class ActiveSession:
    recording_id: str
    file_path: Path
    started_at: datetime


class RecordingSessionManager:
    """Maquina de estados de la grabacion: como mucho una grabacion activa por proceso.

    IDLE -> STARTING -> RECORDING -> STOPPING -> IDLE. Los cambios de estado se
    serializan con un unico lock, pero la apertura del dispositivo ocurre fuera de
    el: un start() concurrente falla en el acto con ConflictError.
    """

    def __init__(self, store: RecordingStore, capture: CaptureBackend,
                 recordings_dir: Path, audio_format: str = "wav"):
        self.store = store
        self.capture = capture
        self.recordings_dir = Path(recordings_dir)
        self.recordings_dir.mkdir(parents=True, exist_ok=True)
        self.audio_format = audio_format
        self._lock = threading.Lock()
        self._state = SessionState.IDLE
        self._session: ActiveSession | None = None
        store.fail_interrupted()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def current_recording_id(self) -> str | None:
        session = self._session
        return session.recording_id if session else None

    def is_recording(self) -> bool:
        return self._state is SessionState.RECORDING

    def start(self) -> str:
        with self._lock:
            if self._state is not SessionState.IDLE:
                raise ConflictError("Ya hay una grabacion en curso")

            recording_id = str(uuid.uuid4())
            started_at = datetime.now(timezone.utc)
            filename = f"recording_{started_at:%Y%m%d_%H%M%S}_{recording_id}.wav"
            session = ActiveSession(recording_id, self.recordings_dir / filename, started_at)
            self._session = session
            self._state = SessionState.STARTING

        # El dispositivo se abre fuera del lock; un start() concurrente ve STARTING
        try:
            self._open(session)
        except Exception:
            with self._lock:
                self._session = None
                self._state = SessionState.IDLE
            raise

        with self._lock:
            self._state = SessionState.RECORDING

        logger.info("Grabacion iniciada: %s", recording_id)
        return recording_id

    def _open(self, session: ActiveSession):
        try:
            self.capture.start(session.file_path)
        except AppError:
            raise
        except Exception as e:
            raise CaptureError(f"No se pudo iniciar la captura: {e}") from e

        try:
            self.store.create(Recording(
                id=session.recording_id,
                filename=session.file_path.name,
                file_path=str(session.file_path),
                status=RecordingStatus.RECORDING,
                created_at=session.started_at,
                updated_at=session.started_at,
            ))
        except Exception:
            self._abort_capture(session.file_path)
            raise

    def stop(self) -> Recording:
        with self._lock:
            if self._state is not SessionState.RECORDING:
                raise NotRecordingError("No hay grabacion en curso")
            self._state = SessionState.STOPPING
            session = self._session

        try:
            recording = self._finalize(session)
        except Exception as e:
            logger.error("Error finalizando la grabacion %s: %s", session.recording_id, e)
            self._mark_failed(session.recording_id, str(e))
            if isinstance(e, AppError):
                raise
            raise CaptureError(f"No se pudo finalizar la grabacion: {e}") from e
        finally:
            with self._lock:
                self._session = None
                self._state = SessionState.IDLE

        logger.info(
            "Grabacion finalizada: %s (%.1fs, %d bytes)",
            recording.id, recording.duration or 0, recording.file_size or 0,
        )
        return recording

    def _finalize(self, session: ActiveSession) -> Recording:
        self.store.update(session.recording_id, status=RecordingStatus.PROCESSING)

        duration = self.capture.stop()
        path = transcode(session.file_path, self.audio_format)
        if duration is None:
            duration = probe_duration(path)
        if duration is None:
            duration = (datetime.now(timezone.utc) - session.started_at).total_seconds()

        return self.store.update(
            session.recording_id,
            filename=path.name,
            file_path=str(path),
            file_size=path.stat().st_size,
            duration=round(duration, 2),
            status=RecordingStatus.COMPLETED,
        )

    def _mark_failed(self, recording_id: str, reason: str):
        try:
            self.store.update(recording_id, status=RecordingStatus.FAILED, error_message=reason)
        except AppError as e:
            logger.error("No se pudo marcar la grabacion %s como fallida: %s", recording_id, e)

    def _abort_capture(self, file_path: Path):
        try:
            self.capture.stop()
        except Exception as e:
            logger.warning("Error deteniendo la captura abortada: %s", e)
        file_path.unlink(missing_ok=True)

    def delete_recording(self, recording_id: str) -> bool:
        if self.current_recording_id == recording_id:
            raise ConflictError("No se puede borrar la grabacion en curso")

        rec = self.store.get(recording_id)
        if rec is None:
            return False

        file_path = Path(rec.file_path)
        if file_path.exists():
            file_path.unlink()
        return self.store.delete(recording_id)

    def shutdown(self):
        if self.is_recording():
            try:
                self.stop()
            except AppError as e:
                logger.error("Error deteniendo la grabacion al cerrar: %s", e)
