"""Typer CLI entrypoint for live-translate."""

import asyncio
import json
import logging
import signal
from pathlib import Path

import typer

from live_translate._types import SessionState
from live_translate.config import Config, ConfigError, discover_audio_devices, load_config
from live_translate.controller import SessionController
from live_translate.llm import LanguageModelClient
from live_translate.recorder import ChunkRecorder, DeviceUnavailable, SoundDeviceCapture
from live_translate.retry import RetryPolicy
from live_translate.scheduler import AsyncioScheduler
from live_translate.speech import SpeechOutput, SpeechQueue
from live_translate.store import JsonlSessionStore, NullSessionStore
from live_translate.stt import RunningTranscriptionService, create_transcriber
from live_translate.summarizer import SUMMARY_TYPES, Summarizer
from live_translate.transcript import TranscriptAccumulator
from live_translate.translator import TranslationContextManager

app = typer.Typer(help="Live speech transcription and translation")

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Setup logging configuration."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _merge_config_overrides(
    cfg: Config,
    *,
    target_language: str | None = None,
    audio_device: int | None = None,
    speech: bool | None = None,
    backend: str | None = None,
) -> Config:
    """Apply CLI overrides to configuration.

    CLI options take precedence over config file values.

    Raises:
        ConfigError: If override values are invalid
    """
    if audio_device is not None:
        available = discover_audio_devices()
        valid_indices = {d["index"] for d in available}
        if audio_device not in valid_indices:
            available_str = ", ".join(str(d["index"]) for d in available)
            raise ConfigError(
                f"Invalid audio device index {audio_device}. "
                f"Available: {available_str or 'none'}"
            )
        logger.debug("Overriding audio device to index %d", audio_device)
        cfg.audio.device = audio_device

    if target_language is not None:
        logger.debug("Overriding target language to '%s'", target_language)
        cfg.translation.target_language = target_language

    if speech is not None:
        logger.debug("Overriding speech output to %s", speech)
        cfg.speech.enabled = speech

    if backend is not None:
        logger.debug("Overriding transcription backend to '%s'", backend)
        cfg.transcription.backend = backend

    return cfg


def build_controller(cfg: Config) -> tuple[SessionController, RunningTranscriptionService, LanguageModelClient]:
    """Wire every pipeline component from configuration."""
    retry = RetryPolicy(
        max_attempts=cfg.session.max_retries,
        base_delay=cfg.session.retry_base_delay,
    )
    scheduler = AsyncioScheduler()

    device = SoundDeviceCapture(
        sample_rate=cfg.audio.sample_rate,
        channels=cfg.audio.channels,
        chunk_size=cfg.audio.chunk_size,
        device=cfg.audio.device,
    )
    recorder = ChunkRecorder(
        device,
        scheduler,
        rotation_interval=cfg.recorder.rotation_interval,
        encoding_preferences=cfg.recorder.encodings,
    )

    stt_service = RunningTranscriptionService(
        create_transcriber(cfg),
        language=cfg.transcription.language,
        timeout=cfg.transcription.timeout,
        retry=retry,
    )
    llm = LanguageModelClient(
        api_key=cfg.llm.api_key,
        model=cfg.llm.model,
        base_url=cfg.llm.base_url,
        timeout=cfg.llm.timeout,
        temperature=cfg.llm.temperature,
        retry=retry,
    )
    translator = TranslationContextManager(
        llm,
        target_language=cfg.translation.target_language,
        source_language=cfg.translation.source_language,
        context_size=cfg.translation.context_window,
    )
    speech = SpeechQueue(
        SpeechOutput(
            backend=cfg.speech.backend,
            timeout=cfg.speech.timeout,
            dry_run=cfg.speech.dry_run,
        ),
        rate=cfg.speech.rate,
        pitch=cfg.speech.pitch,
        volume=cfg.speech.volume,
        inter_task_pause=cfg.speech.inter_task_pause,
    )
    store = (
        JsonlSessionStore(Path(cfg.session.store_path).expanduser())
        if cfg.session.store_path
        else NullSessionStore()
    )

    controller = SessionController(
        recorder=recorder,
        accumulator=TranscriptAccumulator(stt_service),
        translator=translator,
        speech=speech,
        scheduler=scheduler,
        store=store,
        speech_enabled=cfg.speech.enabled,
    )
    return controller, stt_service, llm


async def _run_session(
    cfg: Config,
    duration: float | None = None,
    summary: str | None = None,
) -> None:
    """Run one session until Ctrl+C, ``duration`` seconds, or a capture failure."""
    controller, stt_service, llm = build_controller(cfg)
    controller.on_transcript = lambda text: typer.echo(f"[transcript] {text}")
    controller.on_translation = lambda seg: typer.echo(
        f"[{seg.target_language} #{seg.position}] {seg.translated_text}"
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, stop_event.set)
    loop.add_signal_handler(signal.SIGTERM, stop_event.set)
    controller.on_failure = lambda error: stop_event.set()

    try:
        session = await controller.start()
        typer.echo(f"Session {session.id} recording. Press Ctrl+C to stop.")

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=duration)
        except asyncio.TimeoutError:
            logger.info("Duration limit of %.0fs reached", duration)

        if controller.state == SessionState.FAILED:
            error = controller.last_error
            raise DeviceUnavailable(f"Capture device failed: {error}") from error

        await controller.stop()
        if controller.speech_enabled:
            await controller.speech.wait_idle()

        if summary:
            try:
                text = await Summarizer(llm).summarize(
                    controller.accumulator.full_text,
                    summary_type=summary,
                    language=cfg.translation.target_language,
                )
                typer.echo(f"\nSummary ({summary}):\n{text}")
            except (ValueError, RuntimeError) as e:
                logger.warning("Summary not generated: %s", e)
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        loop.remove_signal_handler(signal.SIGTERM)
        await controller.shutdown()
        await stt_service.shutdown()
        await llm.shutdown()


@app.command()
def run(
    config: Path | None = typer.Option(
        None, "--config", help="Path to configuration file"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging"
    ),
    target_language: str | None = typer.Option(
        None, "--target", "-t", help="Target language code (ja, es, zh, fr, ...)"
    ),
    audio_device: int | None = typer.Option(
        None, "--audio-device", "-a", help="Override audio device by index"
    ),
    speech: bool | None = typer.Option(
        None, "--speech/--no-speech", help="Speak translations aloud"
    ),
    backend: str | None = typer.Option(
        None, "--backend", help="Transcription backend (faster_whisper, deepgram)"
    ),
    duration: float | None = typer.Option(
        None, "--duration", "-d", help="Stop automatically after this many seconds"
    ),
    summary: str | None = typer.Option(
        None, "--summary", help="Summarize the transcript afterwards (short, medium, detailed)"
    ),
) -> None:
    """Record, transcribe and translate one live session."""
    _setup_logging(verbose)
    try:
        if summary is not None and summary not in SUMMARY_TYPES:
            raise ConfigError(
                f"Invalid summary type '{summary}'. Must be one of: {', '.join(SUMMARY_TYPES)}"
            )

        cfg = load_config(config)
        cfg = _merge_config_overrides(
            cfg,
            target_language=target_language,
            audio_device=audio_device,
            speech=speech,
            backend=backend,
        )
        cfg.validate()
        logger.info("Configuration validated successfully")

        asyncio.run(_run_session(cfg, duration=duration, summary=summary))

    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        raise typer.Exit(1)
    except DeviceUnavailable as e:
        logger.error("Microphone unavailable: %s", e)
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        raise typer.Exit(0)
    except Exception as e:
        logger.error("Unexpected error: %s", e, exc_info=True)
        raise typer.Exit(1)


@app.command()
def list_audio(
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    json_output: bool = typer.Option(
        False, "--json", help="Output as JSON instead of table"
    ),
) -> None:
    """List available audio devices."""
    _setup_logging(verbose)
    devices = discover_audio_devices()
    if not devices:
        logger.warning("No audio devices found")
        return

    if json_output:
        typer.echo(json.dumps(devices, indent=2))
    else:
        typer.echo("Available audio devices:")
        for dev in devices:
            typer.echo(
                f"  [{dev['index']}] {dev['name']} "
                f"({dev['channels']}ch, {dev['sample_rate']}Hz)"
            )


@app.command()
def list_voices(
    backend: str = typer.Option(
        "espeak-ng", "--backend", help="Speech backend (espeak-ng, say, spd-say)"
    ),
    language: str | None = typer.Option(
        None, "--language", "-l", help="Only voices whose locale starts with this code"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """List voices offered by a speech backend."""
    _setup_logging(verbose)
    try:
        output = SpeechOutput(backend=backend)
    except ValueError as e:
        logger.error("%s", e)
        raise typer.Exit(1)

    voices = asyncio.run(output.list_voices())
    if language:
        voices = [v for v in voices if v.locale.lower().startswith(language.lower())]

    if not voices:
        logger.warning("No voices found for backend %s", backend)
        return

    for voice in voices:
        typer.echo(f"  {voice.locale:<12} {voice.name or ''}")


if __name__ == "__main__":
    app()
