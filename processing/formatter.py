import json
import re

from processing.engine import EngineResult

OUTPUT_FORMATS = ("text", "json", "srt")

# Frases del prompt que el motor a veces repite en lugar de transcribir.
# Las mas largas primero para que no queden restos como "以下は".
PROMPT_ECHO_PHRASES = (
    "以下は日本語の音声です：",
    "以下は日本語の音声です。",
    "日本語の音声です：",
    "日本語の音声です。",
)

NO_SPEECH_PLACEHOLDER = "音声を認識できませんでした。"


def postprocess_text(text: str, language: str) -> str:
    text = text.strip()
    if language != "ja":
        return text

    for phrase in PROMPT_ECHO_PHRASES:
        while phrase in text:
            text = text.replace(phrase, "", 1).strip()

    text = re.sub(r"\s+", " ", text).strip()
    if not text:
        text = NO_SPEECH_PLACEHOLDER
    return text


def format_timestamp(seconds: float) -> str:
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)
    millis = int((seconds % 1) * 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def render_text(result: EngineResult, language: str) -> str:
    return postprocess_text(result.text, language)


def render_json(result: EngineResult, language: str, model: str) -> str:
    output = {
        "text": postprocess_text(result.text, language),
        "language": result.language or language,
        "segments": [segment.model_dump() for segment in result.segments],
        "duration": result.duration,
        "model": model,
        "preprocessing": result.preprocessed,
    }
    return json.dumps(output, ensure_ascii=False, indent=2)


def render_srt(result: EngineResult) -> str:
    cues = []
    for index, segment in enumerate(result.segments, 1):
        cues.append(
            f"{index}\n"
            f"{format_timestamp(segment.start)} --> {format_timestamp(segment.end)}\n"
            f"{segment.text.strip()}\n"
        )
    return "\n".join(cues) + ("\n" if cues else "")


def render(result: EngineResult, output_format: str, language: str, model: str) -> str:
    if output_format == "json":
        return render_json(result, language, model)
    if output_format == "srt":
        return render_srt(result)
    if output_format == "text":
        return render_text(result, language)
    raise ValueError(f"Formato de salida no soportado: {output_format}")
