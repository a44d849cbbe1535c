import os
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Rutas
BASE_DIR = Path(__file__).parent
DATA_DIR = Path(os.getenv("MEETSCRIBE_DATA_DIR", BASE_DIR / "data"))
RECORDINGS_DIR = DATA_DIR / "recordings"
TRANSCRIPTS_DIR = DATA_DIR / "transcripts"
DB_PATH = DATA_DIR / "meetscribe.db"

# Servidor
HOST = "127.0.0.1"
PORT = int(os.getenv("MEETSCRIBE_PORT", "8787"))

# Audio
SAMPLE_RATE = 16000
CHANNELS = 1
AUDIO_FORMAT = os.getenv("MEETSCRIBE_AUDIO_FORMAT", "wav")
AUDIO_EXTENSIONS = (".wav", ".mp3", ".m4a", ".flac", ".ogg", ".aac", ".mp4", ".mov", ".avi")
MAX_AUDIO_FILE_SIZE = 500 * 1024 * 1024

# Whisper
WHISPER_MODEL = os.getenv("MEETSCRIBE_WHISPER_MODEL", "small")
WHISPER_LANGUAGE = os.getenv("MEETSCRIBE_LANGUAGE", "ja")
WHISPER_DEVICE = os.getenv("MEETSCRIBE_WHISPER_DEVICE", "auto")  # "cuda" si hay GPU, sino "cpu"
AVAILABLE_MODELS = ("tiny", "base", "small", "medium", "large")
SUPPORTED_LANGUAGES = ("ja", "en", "zh", "ko", "es", "fr", "de", "it", "pt", "ru", "ar", "hi")

# Motor de reconocimiento (subproceso)
ENGINE_COMMAND = [sys.executable, "-m", "processing.engine_worker"]
ENGINE_TIMEOUT_SECS = float(os.getenv("MEETSCRIBE_ENGINE_TIMEOUT", "1800"))  # 0 = sin limite
MAX_CONCURRENT_TRANSCRIPTIONS = int(os.getenv("MEETSCRIBE_MAX_TRANSCRIPTIONS", "2"))

# Dispositivo de captura (None = autodetectar)
MIC_DEVICE_INDEX = None
