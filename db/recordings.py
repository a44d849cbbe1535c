import logging

from db.database import Database
from db.models import Recording, RecordingStatus, utcnow

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = {"filename", "file_path", "file_size", "duration", "status", "error_message"}


class RecordingStore:
    def __init__(self, db: Database):
        self.db = db

    def create(self, recording: Recording) -> Recording:
        self.db.execute(
            "INSERT INTO recordings (id, filename, file_path, file_size, duration, status, "
            "error_message, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                recording.id,
                recording.filename,
                recording.file_path,
                recording.file_size,
                recording.duration,
                recording.status.value,
                recording.error_message,
                recording.created_at.isoformat(),
                recording.updated_at.isoformat(),
            ),
        )
        return self.get(recording.id)

    def get(self, recording_id: str) -> Recording | None:
        row = self.db.fetchone("SELECT * FROM recordings WHERE id = ?", (recording_id,))
        return Recording(**row) if row else None

    def list_all(self) -> list[Recording]:
        rows = self.db.fetchall("SELECT * FROM recordings ORDER BY created_at DESC, rowid DESC")
        return [Recording(**row) for row in rows]

    def count(self) -> int:
        row = self.db.fetchone("SELECT COUNT(*) AS n FROM recordings")
        return row["n"]

    def update(self, recording_id: str, **fields) -> Recording | None:
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Campos no actualizables: {', '.join(sorted(unknown))}")
        if not fields:
            return self.get(recording_id)
        if isinstance(fields.get("status"), RecordingStatus):
            fields["status"] = fields["status"].value
        fields["updated_at"] = utcnow()
        set_clause = ", ".join(f"{k} = ?" for k in fields)
        values = list(fields.values()) + [recording_id]
        self.db.execute(f"UPDATE recordings SET {set_clause} WHERE id = ?", tuple(values))
        return self.get(recording_id)

    def delete(self, recording_id: str) -> bool:
        # Las transcripciones se borran en cascada (ON DELETE CASCADE)
        cursor = self.db.execute("DELETE FROM recordings WHERE id = ?", (recording_id,))
        return cursor.rowcount > 0

    def fail_interrupted(self) -> int:
        cursor = self.db.execute(
            "UPDATE recordings SET status = 'failed', error_message = ?, updated_at = ? "
            "WHERE status IN ('recording', 'processing')",
            ("interrupted", utcnow()),
        )
        if cursor.rowcount:
            logger.warning("%d grabaciones interrumpidas marcadas como fallidas", cursor.rowcount)
        return cursor.rowcount
