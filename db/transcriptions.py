import logging
import sqlite3
import uuid

from db.database import Database
from db.models import IN_FLIGHT, Transcription, status_from_row, utcnow
from errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)


def _from_row(row: dict) -> Transcription:
    status = status_from_row(row.pop("status"), row.pop("error_message"))
    return Transcription(status=status, **row)


class TranscriptionStore:
    """Repositorio de transcripciones.

    Los cambios de estado solo avanzan: pending -> processing -> completed|failed.
    Una grabacion no puede tener mas de una transcripcion pendiente o en curso.
    """

    def __init__(self, db: Database):
        self.db = db

    def begin(self, recording_id: str, language: str) -> Transcription:
        transcription_id = str(uuid.uuid4())
        now = utcnow()
        with self.db.transaction() as conn:
            if conn.execute("SELECT 1 FROM recordings WHERE id = ?", (recording_id,)).fetchone() is None:
                raise NotFoundError(f"Grabacion no encontrada: {recording_id}")
            busy = conn.execute(
                "SELECT id FROM transcriptions WHERE recording_id = ? AND status IN (?, ?)",
                (recording_id, *IN_FLIGHT),
            ).fetchone()
            if busy is not None:
                raise ConflictError(f"La grabacion {recording_id} ya tiene una transcripcion en curso")
            try:
                conn.execute(
                    "INSERT INTO transcriptions (id, recording_id, language, status, created_at, updated_at) "
                    "VALUES (?, ?, ?, 'pending', ?, ?)",
                    (transcription_id, recording_id, language, now, now),
                )
            except sqlite3.IntegrityError as e:
                raise ConflictError(f"La grabacion {recording_id} ya tiene una transcripcion en curso") from e
        return self.get(transcription_id)

    def get(self, transcription_id: str) -> Transcription | None:
        row = self.db.fetchone("SELECT * FROM transcriptions WHERE id = ?", (transcription_id,))
        return _from_row(row) if row else None

    def list_for_recording(self, recording_id: str) -> list[Transcription]:
        rows = self.db.fetchall(
            "SELECT * FROM transcriptions WHERE recording_id = ? ORDER BY created_at DESC, rowid DESC",
            (recording_id,),
        )
        return [_from_row(row) for row in rows]

    def latest_for_recording(self, recording_id: str) -> Transcription | None:
        items = self.list_for_recording(recording_id)
        return items[0] if items else None

    def in_flight(self, recording_id: str) -> Transcription | None:
        row = self.db.fetchone(
            "SELECT * FROM transcriptions WHERE recording_id = ? AND status IN (?, ?)",
            (recording_id, *IN_FLIGHT),
        )
        return _from_row(row) if row else None

    def count(self) -> int:
        return self.db.fetchone("SELECT COUNT(*) AS n FROM transcriptions")["n"]

    def delete(self, transcription_id: str) -> bool:
        cursor = self.db.execute("DELETE FROM transcriptions WHERE id = ?", (transcription_id,))
        return cursor.rowcount > 0

    # -- Transiciones --

    def mark_processing(self, transcription_id: str) -> Transcription:
        return self._transition(transcription_id, ("pending",), status="processing")

    def complete(self, transcription_id: str, text: str, language: str,
                 confidence: float | None = None, processing_time_ms: int | None = None) -> Transcription:
        return self._transition(
            transcription_id,
            ("processing",),
            status="completed",
            text=text,
            language=language,
            confidence=confidence,
            processing_time_ms=processing_time_ms,
        )

    def fail(self, transcription_id: str, reason: str,
             processing_time_ms: int | None = None) -> Transcription:
        fields = {"status": "failed", "error_message": reason}
        if processing_time_ms is not None:
            fields["processing_time_ms"] = processing_time_ms
        return self._transition(transcription_id, IN_FLIGHT, **fields)

    def _transition(self, transcription_id: str, allowed_from: tuple, **fields) -> Transcription:
        fields["updated_at"] = utcnow()
        set_clause = ", ".join(f"{k} = ?" for k in fields)
        placeholders = ", ".join("?" for _ in allowed_from)
        cursor = self.db.execute(
            f"UPDATE transcriptions SET {set_clause} WHERE id = ? AND status IN ({placeholders})",
            (*fields.values(), transcription_id, *allowed_from),
        )
        current = self.get(transcription_id)
        if current is None:
            raise NotFoundError(f"Transcripcion no encontrada: {transcription_id}")
        if cursor.rowcount == 0:
            raise ConflictError(
                f"Transicion invalida {current.status.kind} -> {fields['status']} "
                f"para la transcripcion {transcription_id}"
            )
        return current

    def fail_interrupted(self) -> int:
        cursor = self.db.execute(
            "UPDATE transcriptions SET status = 'failed', error_message = ?, updated_at = ? "
            "WHERE status IN (?, ?)",
            ("interrupted", utcnow(), *IN_FLIGHT),
        )
        if cursor.rowcount:
            logger.warning("%d transcripciones interrumpidas marcadas como fallidas", cursor.rowcount)
        return cursor.rowcount
