import json
import logging
import os
import subprocess
import tempfile
import threading
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path

import pydantic
from pydantic import BaseModel, ConfigDict

from errors import EngineCancelled, EngineFailure, EngineTimeout

logger = logging.getLogger(__name__)


class EngineSegment(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: int | None = None
    start: float
    end: float
    text: str
    avg_logprob: float | None = None
    no_speech_prob: float | None = None


class EngineOutput(BaseModel):
    """Esquema de la salida JSON del worker; cualquier otra forma se rechaza."""

    model_config = ConfigDict(extra="forbid")

    text: str
    language: str | None = None
    duration: float = 0.0
    segments: list[EngineSegment] = []
    preprocessed: bool = False


class EngineResult(EngineOutput):
    diagnostic_log: str = ""
    processing_time_ms: int = 0


@dataclass
class EngineJob:
    audio_path: str
    model: str
    parameters: dict = field(default_factory=dict)
    preprocess: bool = True
    device: str = "auto"


class TranscriptionEngine:
    """Lanza el motor de reconocimiento como subproceso.

    El trabajo se pasa como archivo JSON en el vector de argumentos; ningun
    valor del usuario se inserta en codigo ejecutable.
    """

    def __init__(self, command: list[str], timeout: float | None = None,
                 work_dir: Path | None = None, cwd: Path | None = None):
        self.command = list(command)
        self.cwd = cwd
        self.timeout = timeout or None
        self.work_dir = Path(work_dir) if work_dir else None
        self._processes: dict[str, subprocess.Popen] = {}
        self._cancelled: set[str] = set()
        self._lock = threading.Lock()

    def _write_job(self, job: EngineJob) -> Path:
        if self.work_dir:
            self.work_dir.mkdir(parents=True, exist_ok=True)
        fd, path = tempfile.mkstemp(prefix="job_", suffix=".json", dir=self.work_dir)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(asdict(job), f, ensure_ascii=False)
        return Path(path)

    def run(self, job: EngineJob, job_id: str | None = None) -> EngineResult:
        job_id = job_id or os.urandom(8).hex()
        job_path = self._write_job(job)
        env = dict(os.environ, PYTHONIOENCODING="utf-8")

        logger.info("Ejecutando motor (%s) para %s", job.model, Path(job.audio_path).name)
        start = time.monotonic()
        try:
            with self._lock:
                if job_id in self._cancelled:
                    self._cancelled.discard(job_id)
                    raise EngineCancelled("Transcripcion cancelada")
                try:
                    proc = subprocess.Popen(
                        [*self.command, str(job_path)],
                        stdin=subprocess.DEVNULL,
                        stdout=subprocess.PIPE,
                        stderr=subprocess.PIPE,
                        env=env,
                        cwd=self.cwd,
                    )
                except OSError as e:
                    raise EngineFailure(f"No se pudo ejecutar el motor: {e}") from e
                self._processes[job_id] = proc

            try:
                stdout_bytes, stderr_bytes = proc.communicate(timeout=self.timeout)
                timed_out = False
            except subprocess.TimeoutExpired:
                proc.kill()
                stdout_bytes, stderr_bytes = proc.communicate()
                timed_out = True
        finally:
            with self._lock:
                self._processes.pop(job_id, None)
                cancelled = job_id in self._cancelled
                self._cancelled.discard(job_id)
            job_path.unlink(missing_ok=True)

        elapsed_ms = round((time.monotonic() - start) * 1000)
        diagnostic_log = stderr_bytes.decode("utf-8", errors="replace")
        partial_stdout = stdout_bytes.decode("utf-8", errors="replace")

        if cancelled:
            raise EngineCancelled("Transcripcion cancelada", diagnostic_log, partial_stdout)
        if timed_out:
            raise EngineTimeout(
                f"El motor supero el limite de {self.timeout:g}s", diagnostic_log, partial_stdout
            )
        if proc.returncode != 0:
            logger.error("El motor termino con codigo %s", proc.returncode)
            raise EngineFailure(
                f"El motor termino con codigo {proc.returncode}", diagnostic_log, partial_stdout
            )

        try:
            stdout = stdout_bytes.decode("utf-8")
        except UnicodeDecodeError as e:
            raise EngineFailure("Salida del motor no es UTF-8 valido", diagnostic_log, partial_stdout) from e
        if not stdout.strip():
            raise EngineFailure("El motor no produjo ningun resultado", diagnostic_log, partial_stdout)

        try:
            output = EngineOutput.model_validate_json(stdout)
        except pydantic.ValidationError as e:
            raise EngineFailure(f"Resultado del motor mal formado: {e}", diagnostic_log, stdout) from e

        logger.info("Motor completado en %dms (%d segmentos)", elapsed_ms, len(output.segments))
        return EngineResult(
            **output.model_dump(),
            diagnostic_log=diagnostic_log,
            processing_time_ms=elapsed_ms,
        )

    def cancel(self, job_id: str) -> bool:
        """Cancela un trabajo; si aun no arranco, se cancela al lanzarlo."""
        with self._lock:
            self._cancelled.add(job_id)
            proc = self._processes.get(job_id)
        if proc is None:
            return False
        if proc.poll() is None:
            logger.info("Cancelando motor del trabajo %s", job_id)
            proc.kill()
        return True

    def forget(self, job_id: str):
        with self._lock:
            self._cancelled.discard(job_id)

    def is_running(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._processes
