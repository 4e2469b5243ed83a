"""Configuration loader and validation."""

import logging
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

logger = logging.getLogger(__name__)

__all__ = [
    "AudioConfig",
    "RecorderConfig",
    "TranscriptionConfig",
    "ModelConfig",
    "DeepgramConfig",
    "LLMConfig",
    "TranslationConfig",
    "SpeechConfig",
    "SessionConfig",
    "GeneralConfig",
    "Config",
    "ConfigError",
    "load_config",
    "discover_audio_devices",
]

CONFIG_ENV_VAR = "LIVE_TRANSLATE_CONFIG"
CONFIG_FILENAME = "live-translate.toml"

SECTIONS = (
    "audio",
    "recorder",
    "transcription",
    "model",
    "deepgram",
    "llm",
    "translation",
    "speech",
    "session",
    "general",
)


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


@dataclass
class AudioConfig:
    """Audio capture configuration."""

    sample_rate: int = 16000
    channels: int = 1
    chunk_size: int = 4096
    device: int | str | None = None


@dataclass
class RecorderConfig:
    """Segment rotation and encoding negotiation."""

    rotation_interval: float = 10.0
    encodings: list[str] = field(
        default_factory=lambda: ["audio/ogg;codecs=opus", "audio/flac", "audio/wav"]
    )


@dataclass
class TranscriptionConfig:
    """Speech-to-text settings."""

    backend: str = "faster_whisper"
    language: str = "en"
    timeout: float = 30.0


@dataclass
class ModelConfig:
    """Whisper model configuration (for faster-whisper backend)."""

    name: str = "base"
    device: str = "cpu"
    compute_type: str = "int8"
    model_directory: str | None = None
    beam_size: int = 5


@dataclass
class DeepgramConfig:
    """Deepgram API configuration (for deepgram backend)."""

    api_key: str | None = None
    model: str = "nova-3"
    smart_format: bool = True
    punctuate: bool = True
    utterances: bool = True


@dataclass
class LLMConfig:
    """OpenAI-compatible language model endpoint."""

    api_key: str | None = None
    model: str = "gpt-4o-mini"
    base_url: str | None = None
    timeout: float = 30.0
    temperature: float = 0.3


@dataclass
class TranslationConfig:
    """Incremental translation settings."""

    target_language: str = "ja"
    source_language: str = "en"
    context_window: int = 3


@dataclass
class SpeechConfig:
    """Spoken playback of translated segments."""

    enabled: bool = False
    backend: str = "espeak-ng"
    rate: float = 1.2
    pitch: float = 1.0
    volume: float = 0.8
    inter_task_pause: float = 0.1
    timeout: float = 60.0
    dry_run: bool = False


@dataclass
class SessionConfig:
    """Session controller and service retry settings."""

    max_retries: int = 3
    retry_base_delay: float = 0.5
    store_path: str | None = None


@dataclass
class GeneralConfig:
    """General application settings."""

    verbose: bool = False


@dataclass
class Config:
    """Main configuration container."""

    audio: AudioConfig = field(default_factory=AudioConfig)
    recorder: RecorderConfig = field(default_factory=RecorderConfig)
    transcription: TranscriptionConfig = field(default_factory=TranscriptionConfig)
    model: ModelConfig = field(default_factory=ModelConfig)
    deepgram: DeepgramConfig = field(default_factory=DeepgramConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    translation: TranslationConfig = field(default_factory=TranslationConfig)
    speech: SpeechConfig = field(default_factory=SpeechConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    general: GeneralConfig = field(default_factory=GeneralConfig)

    @classmethod
    def from_toml(
        cls,
        path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> "Config":
        """Load configuration from TOML file with environment overrides.

        Args:
            path: Explicit config file path. If None, searches in order:
                  1. LIVE_TRANSLATE_CONFIG env var
                  2. ./live-translate.toml
                  3. ~/.config/live-translate.toml
                  and falls back to defaults when none exists.
            env: Environment variables for overrides (defaults to os.environ)

        Returns:
            Loaded Config instance

        Raises:
            ConfigError: If an explicit config file is missing or values are invalid
        """
        if env is None:
            import os

            env = os.environ

        resolved_path = _resolve_config_path(path, env)
        raw_data = _load_toml_file(resolved_path) if resolved_path else {}

        try:
            coerced = _coerce_config_values(raw_data, env)
            return cls(
                audio=AudioConfig(**coerced["audio"]),
                recorder=RecorderConfig(**coerced["recorder"]),
                transcription=TranscriptionConfig(**coerced["transcription"]),
                model=ModelConfig(**coerced["model"]),
                deepgram=DeepgramConfig(**coerced["deepgram"]),
                llm=LLMConfig(**coerced["llm"]),
                translation=TranslationConfig(**coerced["translation"]),
                speech=SpeechConfig(**coerced["speech"]),
                session=SessionConfig(**coerced["session"]),
                general=GeneralConfig(**coerced["general"]),
            )
        except TypeError as e:
            raise ConfigError(f"Invalid configuration values: {e}") from e

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ConfigError: If any section is invalid
        """
        validate_audio_config(self.audio)
        validate_recorder_config(self.recorder)
        validate_transcription_config(self.transcription, self.deepgram)
        validate_model_config(self.model)
        validate_translation_config(self.translation)
        validate_speech_config(self.speech)
        validate_session_config(self.session)


def _resolve_config_path(
    cli_path: Path | None,
    env: Mapping[str, str],
) -> Path | None:
    """Resolve configuration file path following search order.

    Raises:
        ConfigError: If an explicitly requested file does not exist
    """
    if cli_path:
        cli_path = Path(cli_path)
        if cli_path.exists():
            logger.info("Using config file: %s", cli_path.resolve())
            return cli_path.resolve()
        raise ConfigError(f"Config file not found: {cli_path}")

    candidates = []
    if env_path := env.get(CONFIG_ENV_VAR):
        candidates.append(Path(env_path))
    candidates.append(Path(CONFIG_FILENAME))
    candidates.append(Path.home() / ".config" / CONFIG_FILENAME)

    for candidate in candidates:
        if candidate.exists():
            logger.info("Using config file: %s", candidate.resolve())
            return candidate.resolve()

    logger.info(
        "No config file found (searched: %s), using defaults",
        ", ".join(str(c) for c in candidates),
    )
    return None


def _load_toml_file(path: Path) -> dict:
    """Load and parse TOML configuration file.

    Raises:
        ConfigError: If file cannot be read or parsed
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except Exception as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e


def _coerce_config_values(raw_data: dict, env: Mapping[str, str]) -> dict:
    """Normalize raw TOML data for dataclass instantiation.

    Args:
        raw_data: Raw parsed TOML dictionary
        env: Environment variables for secrets

    Returns:
        Dictionary of section name to keyword arguments
    """
    unknown = set(raw_data) - set(SECTIONS)
    if unknown:
        raise ConfigError(f"Unknown config section(s): {', '.join(sorted(unknown))}")

    coerced = {}
    for section in SECTIONS:
        value = raw_data.get(section, {})
        if not isinstance(value, dict):
            raise ConfigError(f"Section [{section}] must be a table")
        coerced[section] = dict(value)

    encodings = coerced["recorder"].get("encodings")
    if encodings is not None:
        if isinstance(encodings, str):
            coerced["recorder"]["encodings"] = [encodings]
        elif not isinstance(encodings, list):
            raise ConfigError("recorder.encodings must be a list of encoding names")

    if not coerced["deepgram"].get("api_key"):
        coerced["deepgram"]["api_key"] = env.get("DEEPGRAM_API_KEY")

    if not coerced["llm"].get("api_key"):
        coerced["llm"]["api_key"] = env.get("OPENAI_API_KEY")

    if not coerced["llm"].get("base_url") and env.get("OPENAI_BASE_URL"):
        coerced["llm"]["base_url"] = env.get("OPENAI_BASE_URL")

    return coerced


def discover_audio_devices() -> list[dict]:
    """Enumerate available audio capture devices.

    Returns:
        List of device dicts with keys: index, name, channels, sample_rate
        Returns empty list if no devices found
    """
    import sounddevice

    devices = []
    try:
        device_list = sounddevice.query_devices()
        if isinstance(device_list, dict):
            device_list = [device_list]

        for idx, dev_info in enumerate(device_list):
            if dev_info.get("max_input_channels", 0) > 0:
                devices.append(
                    {
                        "index": idx,
                        "name": dev_info.get("name", f"Device {idx}"),
                        "channels": dev_info.get("max_input_channels", 0),
                        "sample_rate": dev_info.get("default_samplerate", 0),
                    }
                )
    except Exception as e:
        logger.warning("Error discovering audio devices: %s", e)

    return devices


def validate_audio_config(audio_cfg: AudioConfig) -> None:
    if audio_cfg.sample_rate <= 0:
        raise ConfigError(f"audio.sample_rate must be positive, got {audio_cfg.sample_rate}")
    if audio_cfg.channels not in (1, 2):
        raise ConfigError(f"audio.channels must be 1 or 2, got {audio_cfg.channels}")
    if audio_cfg.chunk_size <= 0:
        raise ConfigError(f"audio.chunk_size must be positive, got {audio_cfg.chunk_size}")


def validate_recorder_config(recorder_cfg: RecorderConfig) -> None:
    from live_translate.recorder import ENCODINGS

    if recorder_cfg.rotation_interval <= 0:
        raise ConfigError(
            f"recorder.rotation_interval must be positive, got {recorder_cfg.rotation_interval}"
        )
    unknown = [e for e in recorder_cfg.encodings if e not in ENCODINGS]
    if unknown:
        raise ConfigError(
            f"Unknown encoding(s) {', '.join(unknown)}. "
            f"Must be among: {', '.join(ENCODINGS)}"
        )


def validate_transcription_config(
    transcription_cfg: TranscriptionConfig, deepgram_cfg: DeepgramConfig
) -> None:
    """Validate speech-to-text backend selection.

    Raises:
        ConfigError: If backend is unknown or its credentials are missing
    """
    valid_backends = ("faster_whisper", "deepgram")
    if transcription_cfg.backend not in valid_backends:
        raise ConfigError(
            f"Invalid backend '{transcription_cfg.backend}'. "
            f"Must be one of: {', '.join(valid_backends)}"
        )

    if transcription_cfg.timeout <= 0:
        raise ConfigError(
            f"transcription.timeout must be positive, got {transcription_cfg.timeout}"
        )

    if transcription_cfg.backend == "deepgram" and not deepgram_cfg.api_key:
        raise ConfigError(
            "Deepgram API key is required when backend is 'deepgram'. "
            "Set it in config file or via DEEPGRAM_API_KEY environment variable."
        )


def validate_model_config(model_cfg: ModelConfig) -> None:
    """Validate model configuration.

    Raises:
        ConfigError: If model configuration is invalid
    """
    valid_compute_types = ("int8", "float16", "float32", "default")
    if model_cfg.compute_type not in valid_compute_types:
        raise ConfigError(
            f"Invalid compute_type '{model_cfg.compute_type}'. "
            f"Must be one of: {', '.join(valid_compute_types)}"
        )

    valid_devices = ("cpu", "cuda", "auto")
    if model_cfg.device not in valid_devices:
        raise ConfigError(
            f"Invalid device '{model_cfg.device}'. "
            f"Must be one of: {', '.join(valid_devices)}"
        )

    if model_cfg.beam_size <= 0:
        raise ConfigError(f"beam_size must be positive, got {model_cfg.beam_size}")


def validate_translation_config(translation_cfg: TranslationConfig) -> None:
    if not translation_cfg.target_language:
        raise ConfigError("translation.target_language cannot be empty")
    if translation_cfg.context_window < 1:
        raise ConfigError(
            f"translation.context_window must be at least 1, got {translation_cfg.context_window}"
        )


def validate_speech_config(speech_cfg: SpeechConfig) -> None:
    """Validate speech output configuration.

    Raises:
        ConfigError: If speech configuration is invalid
    """
    valid_backends = ("espeak-ng", "say", "spd-say")
    if speech_cfg.backend not in valid_backends:
        raise ConfigError(
            f"Invalid speech backend '{speech_cfg.backend}'. "
            f"Must be one of: {', '.join(valid_backends)}"
        )

    if not 0.1 <= speech_cfg.rate <= 10.0:
        raise ConfigError(f"speech.rate must be between 0.1 and 10, got {speech_cfg.rate}")
    if not 0.0 <= speech_cfg.pitch <= 2.0:
        raise ConfigError(f"speech.pitch must be between 0 and 2, got {speech_cfg.pitch}")
    if not 0.0 <= speech_cfg.volume <= 1.0:
        raise ConfigError(f"speech.volume must be between 0 and 1, got {speech_cfg.volume}")
    if speech_cfg.inter_task_pause < 0:
        raise ConfigError(
            f"speech.inter_task_pause must be non-negative, got {speech_cfg.inter_task_pause}"
        )
    if speech_cfg.timeout <= 0:
        raise ConfigError(f"speech.timeout must be positive, got {speech_cfg.timeout}")


def validate_session_config(session_cfg: SessionConfig) -> None:
    if session_cfg.max_retries < 1:
        raise ConfigError(f"session.max_retries must be at least 1, got {session_cfg.max_retries}")
    if session_cfg.retry_base_delay < 0:
        raise ConfigError(
            f"session.retry_base_delay must be non-negative, got {session_cfg.retry_base_delay}"
        )


def load_config(
    path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from TOML file.

    Convenience wrapper around Config.from_toml().
    """
    return Config.from_toml(path, env=env)
