import logging
from pathlib import Path

from fastapi import APIRouter, HTTPException
from fastapi.responses import FileResponse, PlainTextResponse, Response
from pydantic import BaseModel

import config
from db.models import Recording, Transcription
from processing.formatter import OUTPUT_FORMATS
from processing.transcriber import Transcriber
from recorder.audio_capture import AudioRecorder
from recorder.session import RecordingSessionManager

logger = logging.getLogger(__name__)


class TranscribeRequest(BaseModel):
    language: str = config.WHISPER_LANGUAGE
    parameters: dict = {}
    skip_preprocessing: bool = False
    wait: bool = True


def create_router(sessions: RecordingSessionManager, transcriber: Transcriber,
                  capture: AudioRecorder | None = None) -> APIRouter:
    router = APIRouter()
    recordings = sessions.store

    # -- Status --

    @router.get("/status")
    def get_status():
        return {
            "is_recording": sessions.is_recording(),
            "state": sessions.state.value,
            "current_recording_id": sessions.current_recording_id,
            "whisper_model": transcriber.model_size,
            "engine_timeout_secs": transcriber.engine.timeout,
        }

    @router.get("/models")
    def list_models():
        return {
            "models": list(config.AVAILABLE_MODELS),
            "current": transcriber.model_size,
            "languages": list(config.SUPPORTED_LANGUAGES),
        }

    # -- Devices --

    @router.get("/devices")
    def list_devices():
        if capture is None:
            return {"input": []}
        try:
            return {"input": capture.list_devices()}
        except OSError as e:
            raise HTTPException(503, f"Audio no disponible: {e}")

    # -- Recording control --

    @router.post("/recording/start")
    def start_recording():
        recording_id = sessions.start()
        return {"id": recording_id, "status": sessions.state.value}

    @router.post("/recording/stop", response_model=Recording)
    def stop_recording():
        return sessions.stop()

    # -- Recordings CRUD --

    @router.get("/recordings", response_model=list[Recording])
    def list_recordings():
        return recordings.list_all()

    @router.get("/recordings/count")
    def count_recordings():
        return {"count": recordings.count()}

    @router.get("/recordings/{recording_id}", response_model=Recording)
    def get_recording(recording_id: str):
        rec = recordings.get(recording_id)
        if not rec:
            raise HTTPException(404, "Grabacion no encontrada")
        return rec

    @router.get("/recordings/{recording_id}/audio")
    def get_audio(recording_id: str):
        rec = recordings.get(recording_id)
        if not rec:
            raise HTTPException(404, "Audio no encontrado")

        audio_path = Path(rec.file_path)
        if not audio_path.exists():
            raise HTTPException(404, "Archivo de audio no encontrado")

        return FileResponse(str(audio_path), filename=rec.filename)

    @router.delete("/recordings/{recording_id}")
    def delete_recording(recording_id: str):
        transcriber.discard(recording_id)
        return {"deleted": sessions.delete_recording(recording_id)}

    # -- Transcription --

    @router.post("/recordings/{recording_id}/transcribe", response_model=Transcription)
    def transcribe_recording(recording_id: str, body: TranscribeRequest = TranscribeRequest()):
        pending = transcriber.submit(
            recording_id,
            language=body.language,
            parameters=body.parameters,
            skip_preprocessing=body.skip_preprocessing,
        )
        if not body.wait:
            return pending
        return transcriber.result(pending.id)

    @router.post("/recordings/{recording_id}/transcribe/cancel")
    def cancel_transcription(recording_id: str):
        return {"cancelled": transcriber.cancel(recording_id)}

    @router.get("/recordings/{recording_id}/transcriptions", response_model=list[Transcription])
    def list_transcriptions(recording_id: str):
        if not recordings.get(recording_id):
            raise HTTPException(404, "Grabacion no encontrada")
        return transcriber.transcriptions.list_for_recording(recording_id)

    @router.get("/transcriptions/{transcription_id}", response_model=Transcription)
    def get_transcription(transcription_id: str):
        t = transcriber.transcriptions.get(transcription_id)
        if not t:
            raise HTTPException(404, "Transcripcion no encontrada")
        return t

    @router.get("/transcriptions/{transcription_id}/export")
    def export_transcription(transcription_id: str, format: str = "text"):
        if format not in OUTPUT_FORMATS:
            raise HTTPException(400, f"Formato no soportado: {format}")
        content = transcriber.export(transcription_id, format)
        if format == "json":
            return Response(content, media_type="application/json")
        return PlainTextResponse(content)

    return router
