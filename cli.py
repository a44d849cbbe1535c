"""Herramienta de linea de comandos para probar la transcripcion de un archivo.

Ejemplos:
  meetscribe-transcribe recording.wav
  meetscribe-transcribe --language en --model large audio.mp3
  meetscribe-transcribe --format json --verbose meeting.m4a
  meetscribe-transcribe --format srt presentation.wav
"""
import argparse
import logging
import sys
from pathlib import Path

import config
from errors import EngineFailure, ValidationError
from processing.engine import EngineJob, TranscriptionEngine
from processing.formatter import OUTPUT_FORMATS, render
from processing.parameters import resolve_parameters

logger = logging.getLogger("meetscribe.cli")


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="meetscribe-transcribe",
        description="Transcribe un archivo de audio con el motor Whisper local.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"Formatos de audio: {', '.join(config.AUDIO_EXTENSIONS)}",
    )
    parser.add_argument("audio_file", nargs="?", help="Archivo de audio a transcribir")
    parser.add_argument("--language", "-l", default=config.WHISPER_LANGUAGE,
                        help=f"Codigo de idioma (default: {config.WHISPER_LANGUAGE})")
    parser.add_argument("--model", "-m", default=config.WHISPER_MODEL, choices=config.AVAILABLE_MODELS,
                        help="Modelo Whisper")
    parser.add_argument("--format", "-f", dest="output_format", default="text", choices=OUTPUT_FORMATS,
                        help="Formato de salida")
    parser.add_argument("--verbose", "-v", action="store_true", help="Salida detallada")
    parser.add_argument("--temperature", "-t", type=float, help="Temperatura de muestreo (0.0-1.0)")
    parser.add_argument("--best-of", "-b", type=int, help="Numero de candidatos")
    parser.add_argument("--beam-size", "-s", type=int, help="Tamano del beam search")
    parser.add_argument("--no-preprocessing", action="store_true", help="Omitir el preprocesado de audio")
    return parser


def format_file_size(size_bytes: int) -> str:
    units = ["B", "KB", "MB", "GB"]
    size = float(size_bytes)
    unit_index = 0
    while size >= 1024 and unit_index < len(units) - 1:
        size /= 1024
        unit_index += 1
    if unit_index == 0:
        return f"{int(size)} {units[0]}"
    return f"{round(size, 2)} {units[unit_index]}"


def validate_audio_file(file_path: str, max_size: int = config.MAX_AUDIO_FILE_SIZE) -> Path:
    path = Path(file_path)
    if not path.exists():
        raise ValidationError(f"Archivo no encontrado: {file_path}")
    if not path.is_file():
        raise ValidationError(f"Se indico un directorio: {file_path}")

    if path.suffix.lower() not in config.AUDIO_EXTENSIONS:
        logger.warning("Formato de archivo posiblemente no soportado: %s", path.suffix or "(sin extension)")
        logger.warning("Formatos soportados: %s", ", ".join(config.AUDIO_EXTENSIONS))

    file_size = path.stat().st_size
    if file_size > max_size:
        raise ValidationError(
            f"Archivo demasiado grande: {format_file_size(file_size)} "
            f"(maximo: {format_file_size(max_size)})"
        )

    logger.info("Archivo validado: %s", format_file_size(file_size))
    return path


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        stream=sys.stderr,
        format="%(levelname)s: %(message)s",
    )

    if not args.audio_file:
        parser.print_help()
        return 1

    overrides = {
        key: value
        for key, value in (
            ("temperature", args.temperature),
            ("best_of", args.best_of),
            ("beam_size", args.beam_size),
        )
        if value is not None
    }

    try:
        audio_path = validate_audio_file(args.audio_file)
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    logger.info("Archivo: %s", audio_path)
    logger.info("Idioma: %s", args.language)
    logger.info("Modelo: %s", args.model)

    resolved = resolve_parameters(args.language, args.model, overrides, args.no_preprocessing)
    engine = TranscriptionEngine(
        config.ENGINE_COMMAND,
        timeout=config.ENGINE_TIMEOUT_SECS,
        cwd=config.BASE_DIR,
    )
    job = EngineJob(
        audio_path=str(audio_path.resolve()),
        model=resolved.model,
        parameters=resolved.engine_params,
        preprocess=resolved.preprocess,
        device=config.WHISPER_DEVICE,
    )

    try:
        result = engine.run(job)
    except EngineFailure as e:
        print("Transcripcion fallida", file=sys.stderr)
        print(f"Error: {e}", file=sys.stderr)
        if e.diagnostic_log:
            print(e.diagnostic_log, file=sys.stderr)
        if e.stdout:
            print(f"stdout: {e.stdout}", file=sys.stderr)
        return 1

    logger.info("Transcripcion completada (%dms)", result.processing_time_ms)
    output = render(result, args.output_format, args.language, resolved.model)
    print(output, end="" if output.endswith("\n") else "\n")

    if args.verbose and result.diagnostic_log:
        print("\n--- Informacion de depuracion ---", file=sys.stderr)
        print(result.diagnostic_log, file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
