class AppError(Exception):
    status_code = 500


class ValidationError(AppError):
    status_code = 400


class ConflictError(AppError):
    status_code = 409


class NotRecordingError(AppError):
    status_code = 409


class NotFoundError(AppError):
    status_code = 404


class PersistenceError(AppError):
    status_code = 500


class CaptureError(AppError):
    status_code = 500


class EngineFailure(AppError):
    """Fallo del subproceso de reconocimiento.

    Conserva el log de diagnostico (stderr) y la salida parcial (stdout)
    para poder mostrarlos o guardarlos junto a la transcripcion fallida.
    """

    status_code = 502

    def __init__(self, message: str, diagnostic_log: str = "", stdout: str = ""):
        super().__init__(message)
        self.diagnostic_log = diagnostic_log
        self.stdout = stdout


class EngineTimeout(EngineFailure):
    status_code = 504


class EngineCancelled(EngineFailure):
    status_code = 409
