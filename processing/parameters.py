from dataclasses import dataclass, field

JAPANESE_DEFAULTS = {
    "temperature": 0.2,
    "best_of": 1,
    "beam_size": 1,
    "patience": 1.0,
    "length_penalty": 1.0,
    "suppress_tokens": [-1],
    "word_timestamps": False,
    "condition_on_previous_text": True,
}

GENERIC_DEFAULTS = {
    "temperature": 0.2,
    "best_of": 1,
    "beam_size": 1,
}

# Opciones que controlan el preprocesado, no el motor
PREPROCESSING_FLAGS = ("skip_preprocessing", "no_preprocessing")


@dataclass
class ResolvedParameters:
    model: str
    engine_params: dict = field(default_factory=dict)
    preprocess: bool = True


def resolve_parameters(language: str, model: str, overrides: dict | None = None,
                       skip_preprocessing: bool = False) -> ResolvedParameters:
    params = {"language": language, "task": "transcribe"}
    if language == "ja":
        params.update(JAPANESE_DEFAULTS)
    else:
        params.update(GENERIC_DEFAULTS)

    overrides = dict(overrides or {})
    for flag in PREPROCESSING_FLAGS:
        if overrides.pop(flag, False):
            skip_preprocessing = True

    params.update(overrides)
    return ResolvedParameters(model=model, engine_params=params, preprocess=not skip_preprocessing)
