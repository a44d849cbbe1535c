"""
Shared fixtures: temporary databases, a fake capture device and helpers to
build fake engine workers that run under the real interpreter.
"""
import sys
import textwrap
import threading
import uuid
import wave
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from db.database import Database
from db.models import Recording, RecordingStatus
from db.recordings import RecordingStore
from db.transcriptions import TranscriptionStore
from errors import EngineCancelled
from processing.engine import EngineResult, EngineSegment


def write_wav(path: Path, seconds: float = 1.0, sample_rate: int = 16000):
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(b"\x00\x00" * int(seconds * sample_rate))


class FakeCapture:
    """Capture backend that writes a silent WAV instead of opening a device."""

    def __init__(self, seconds: float = 1.5, fail_on_stop: bool = False):
        self.seconds = seconds
        self.fail_on_stop = fail_on_stop
        self.started: list[Path] = []
        self.stop_calls = 0

    def start(self, output_path: Path):
        write_wav(output_path, self.seconds)
        self.started.append(Path(output_path))

    def stop(self) -> float:
        self.stop_calls += 1
        if self.fail_on_stop:
            raise RuntimeError("device lost")
        return self.seconds


class FakeEngine:
    """In-process stand-in for TranscriptionEngine."""

    def __init__(self, result: EngineResult | None = None, error: Exception | None = None,
                 gate: threading.Event | None = None):
        self.result = result or make_result()
        self.error = error
        self.gate = gate
        self.timeout = None
        self.jobs = []
        self.started = threading.Event()
        self.cancelled: set[str] = set()

    def run(self, job, job_id=None):
        self.jobs.append(job)
        self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=10)
        if job_id in self.cancelled:
            raise EngineCancelled("Transcripcion cancelada")
        if self.error is not None:
            raise self.error
        return self.result

    def cancel(self, job_id):
        self.cancelled.add(job_id)
        if self.gate is not None:
            self.gate.set()
        return True

    def forget(self, job_id):
        self.cancelled.discard(job_id)


def make_result(text: str = " hello world", language: str = "en", segments=None,
                preprocessed: bool = True) -> EngineResult:
    if segments is None:
        segments = [
            EngineSegment(id=0, start=0.0, end=1.5, text=" hello", avg_logprob=-0.1),
            EngineSegment(id=1, start=1.5, end=3.0, text=" world", avg_logprob=-0.3),
        ]
    return EngineResult(
        text=text,
        language=language,
        duration=3.0,
        segments=segments,
        preprocessed=preprocessed,
        diagnostic_log="Loading model\n",
        processing_time_ms=42,
    )


def make_engine_script(tmp_path: Path, body: str) -> list[str]:
    """Writes a fake engine worker; the job dict is available as `job`."""
    script = tmp_path / f"fake_engine_{uuid.uuid4().hex[:8]}.py"
    script.write_text(
        "import json, sys, time\n"
        "job = json.load(open(sys.argv[1], encoding='utf-8'))\n"
        + textwrap.dedent(body),
        encoding="utf-8",
    )
    return [sys.executable, str(script)]


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "test.db")
    yield database
    database.close()


@pytest.fixture
def recording_store(db):
    return RecordingStore(db)


@pytest.fixture
def transcription_store(db):
    return TranscriptionStore(db)


@pytest.fixture
def make_recording(recording_store, tmp_path):
    """Creates a completed recording with a real audio file on disk."""
    counter = {"n": 0}

    def _make(status: RecordingStatus = RecordingStatus.COMPLETED, size: int | None = None) -> Recording:
        counter["n"] += 1
        recording_id = str(uuid.uuid4())
        path = tmp_path / f"rec_{counter['n']}_{recording_id}.wav"
        if size is None:
            write_wav(path, 1.0)
        else:
            with open(path, "wb") as f:
                f.truncate(size)
        created = datetime.now(timezone.utc) + timedelta(seconds=counter["n"])
        return recording_store.create(Recording(
            id=recording_id,
            filename=path.name,
            file_path=str(path),
            file_size=path.stat().st_size,
            duration=1.0,
            status=status,
            created_at=created,
            updated_at=created,
        ))

    return _make


@pytest.fixture
def engine_script(tmp_path):
    return lambda body: make_engine_script(tmp_path, body)


@pytest.fixture
def fake_capture():
    return FakeCapture()


@pytest.fixture
def make_fake_engine():
    return FakeEngine
