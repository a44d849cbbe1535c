import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path

from db.models import SCHEMA_SQL
from errors import AppError, PersistenceError

logger = logging.getLogger(__name__)


class Database:
    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._write_lock = threading.RLock()
        self._init_schema()

    def _get_conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            try:
                conn = sqlite3.connect(str(self.db_path), timeout=30)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA foreign_keys=ON")
            except sqlite3.Error as e:
                raise PersistenceError(f"No se pudo abrir la base de datos {self.db_path}: {e}") from e
            self._local.conn = conn
        return conn

    def _init_schema(self):
        conn = self._get_conn()
        with self._write_lock:
            try:
                conn.executescript(SCHEMA_SQL)
                conn.commit()
            except sqlite3.Error as e:
                raise PersistenceError(f"Error inicializando esquema: {e}") from e

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        conn = self._get_conn()
        with self._write_lock:
            try:
                cursor = conn.execute(sql, params)
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise PersistenceError(f"Error de base de datos: {e}") from e
        return cursor

    def fetchone(self, sql: str, params: tuple = ()) -> dict | None:
        try:
            row = self._get_conn().execute(sql, params).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Error de base de datos: {e}") from e
        return dict(row) if row else None

    def fetchall(self, sql: str, params: tuple = ()) -> list[dict]:
        try:
            rows = self._get_conn().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Error de base de datos: {e}") from e
        return [dict(row) for row in rows]

    @contextmanager
    def transaction(self):
        """Transaccion de escritura exclusiva para secuencias leer-comprobar-escribir."""
        conn = self._get_conn()
        with self._write_lock:
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.commit()
            except AppError:
                conn.rollback()
                raise
            except sqlite3.Error as e:
                conn.rollback()
                raise PersistenceError(f"Error de base de datos: {e}") from e
            except BaseException:
                conn.rollback()
                raise

    def close(self):
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None
