from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS recordings (
    id              TEXT PRIMARY KEY,
    filename        TEXT NOT NULL,
    file_path       TEXT NOT NULL UNIQUE,
    file_size       INTEGER,
    duration        REAL,
    status          TEXT NOT NULL DEFAULT 'recording',
    error_message   TEXT,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_recordings_created_at ON recordings(created_at DESC);

CREATE TABLE IF NOT EXISTS transcriptions (
    id                  TEXT PRIMARY KEY,
    recording_id        TEXT NOT NULL REFERENCES recordings(id) ON DELETE CASCADE,
    text                TEXT NOT NULL DEFAULT '',
    language            TEXT NOT NULL,
    confidence          REAL,
    processing_time_ms  INTEGER,
    status              TEXT NOT NULL DEFAULT 'pending',
    error_message       TEXT,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_transcriptions_recording_id ON transcriptions(recording_id);

-- Una sola transcripcion en curso por grabacion
CREATE UNIQUE INDEX IF NOT EXISTS idx_transcriptions_in_flight
    ON transcriptions(recording_id) WHERE status IN ('pending', 'processing');
"""


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class RecordingStatus(str, Enum):
    RECORDING = "recording"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Recording(BaseModel):
    id: str
    filename: str
    file_path: str
    file_size: int | None = None
    duration: float | None = None
    status: RecordingStatus = RecordingStatus.RECORDING
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime


class Pending(BaseModel):
    kind: Literal["pending"] = "pending"


class Processing(BaseModel):
    kind: Literal["processing"] = "processing"


class Completed(BaseModel):
    kind: Literal["completed"] = "completed"


class Failed(BaseModel):
    kind: Literal["failed"] = "failed"
    reason: str


TranscriptionStatus = Annotated[
    Union[Pending, Processing, Completed, Failed], Field(discriminator="kind")
]

IN_FLIGHT = ("pending", "processing")
TERMINAL = ("completed", "failed")


def status_from_row(status: str, error_message: str | None):
    if status == "pending":
        return Pending()
    if status == "processing":
        return Processing()
    if status == "completed":
        return Completed()
    if status == "failed":
        return Failed(reason=error_message or "")
    return Failed(reason=f"Estado desconocido: {status}")


class Transcription(BaseModel):
    id: str
    recording_id: str
    text: str = ""
    language: str
    confidence: float | None = None
    processing_time_ms: int | None = None
    status: TranscriptionStatus
    created_at: datetime
    updated_at: datetime

    @property
    def is_in_flight(self) -> bool:
        return self.status.kind in IN_FLIGHT

    @property
    def is_terminal(self) -> bool:
        return self.status.kind in TERMINAL
