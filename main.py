import logging
import socket
import sys

import uvicorn

import config
from db.database import Database
from db.recordings import RecordingStore
from db.transcriptions import TranscriptionStore
from processing.engine import TranscriptionEngine
from processing.transcriber import Transcriber
from recorder.audio_capture import AudioRecorder
from recorder.session import RecordingSessionManager
from server.app import create_app

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("meetscribe")


def find_available_port(start: int, end: int) -> int:
    for port in range(start, end + 1):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            try:
                s.bind((config.HOST, port))
                return port
            except OSError:
                continue
    raise RuntimeError(f"No se encontro un puerto disponible entre {start} y {end}")


def main():
    # Ensure data directories exist
    for d in [config.RECORDINGS_DIR, config.TRANSCRIPTS_DIR]:
        d.mkdir(parents=True, exist_ok=True)

    try:
        port = find_available_port(config.PORT, config.PORT + 13)
    except RuntimeError as e:
        logger.error(str(e))
        sys.exit(1)

    if port != config.PORT:
        logger.info("Puerto %d en uso, usando %d", config.PORT, port)

    # Initialize components
    db = Database(config.DB_PATH)
    recordings = RecordingStore(db)
    transcriptions = TranscriptionStore(db)
    capture = AudioRecorder(device_index=config.MIC_DEVICE_INDEX)
    sessions = RecordingSessionManager(
        recordings, capture, config.RECORDINGS_DIR, audio_format=config.AUDIO_FORMAT,
    )
    engine = TranscriptionEngine(
        config.ENGINE_COMMAND,
        timeout=config.ENGINE_TIMEOUT_SECS,
        work_dir=config.DATA_DIR / "jobs",
        cwd=config.BASE_DIR,
    )
    transcriber = Transcriber(recordings, transcriptions, engine, config.TRANSCRIPTS_DIR)

    app = create_app(sessions, transcriber, capture)

    logger.info("MeetScribe iniciado en http://%s:%d", config.HOST, port)
    try:
        uvicorn.run(app, host=config.HOST, port=port, log_level="warning")
    finally:
        logger.info("Cerrando MeetScribe...")
        sessions.shutdown()
        transcriber.shutdown()


if __name__ == "__main__":
    main()
