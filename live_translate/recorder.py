"""Audio capture and fixed-cadence segment rotation."""

import io
import logging
import threading
from enum import Enum
from typing import Callable, Protocol, Sequence

import numpy as np
import sounddevice
import soundfile

from live_translate._types import AudioSegment
from live_translate.scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

# MIME-style encoding identifier -> (libsndfile format, subtype)
ENCODINGS: dict[str, tuple[str, str]] = {
    "audio/ogg;codecs=opus": ("OGG", "OPUS"),
    "audio/flac": ("FLAC", "PCM_16"),
    "audio/ogg;codecs=vorbis": ("OGG", "VORBIS"),
    "audio/wav": ("WAV", "PCM_16"),
}
DEFAULT_ENCODING = "audio/wav"
DEFAULT_ENCODING_PREFERENCES = ("audio/ogg;codecs=opus", "audio/flac", "audio/wav")

# libsndfile only encodes these subtypes at fixed rates
SUBTYPE_SAMPLE_RATES: dict[str, tuple[int, ...]] = {
    "OPUS": (8000, 12000, 16000, 24000, 48000),
}


class DeviceUnavailable(RuntimeError):
    """Capture permission denied or no capture device present."""

    pass


class EncodingUnsupported(RuntimeError):
    """Neither a preferred encoding nor the fallback can be produced."""

    pass


def _encoding_available(encoding: str, sample_rate: int | None = None) -> bool:
    entry = ENCODINGS.get(encoding)
    if entry is None:
        return False
    fmt, subtype = entry
    rates = SUBTYPE_SAMPLE_RATES.get(subtype)
    if sample_rate is not None and rates is not None and sample_rate not in rates:
        logger.debug("%s cannot encode at %d Hz", encoding, sample_rate)
        return False
    try:
        return bool(soundfile.check_format(fmt, subtype))
    except Exception as e:
        logger.debug("check_format(%s, %s) failed: %s", fmt, subtype, e)
        return False


def negotiate_encoding(
    preferences: Sequence[str] = DEFAULT_ENCODING_PREFERENCES,
    fallback: str = DEFAULT_ENCODING,
    sample_rate: int | None = None,
) -> str:
    """Pick the first producible encoding from an ordered preference list.

    Args:
        preferences: Encoding identifiers in order of preference
        fallback: Encoding used when no preference is producible
        sample_rate: Capture rate the encoding must support, if known

    Returns:
        The negotiated encoding identifier

    Raises:
        EncodingUnsupported: If the fallback itself cannot be produced
    """
    for encoding in preferences:
        if _encoding_available(encoding, sample_rate):
            logger.info("Negotiated audio encoding: %s", encoding)
            return encoding
        logger.debug("Encoding %s not available, trying next", encoding)

    if _encoding_available(fallback, sample_rate):
        logger.warning(
            "No preferred encoding available (%s), falling back to %s",
            ", ".join(preferences) or "none",
            fallback,
        )
        return fallback

    raise EncodingUnsupported(
        f"No usable audio encoding: preferences={list(preferences)}, fallback={fallback}"
    )


def encode_frames(frames: np.ndarray, sample_rate: int, encoding: str) -> bytes:
    """Encode float32 frames in memory using the given encoding."""
    try:
        fmt, subtype = ENCODINGS[encoding]
    except KeyError as e:
        raise EncodingUnsupported(f"Unknown encoding: {encoding}") from e

    buffer = io.BytesIO()
    soundfile.write(buffer, frames, sample_rate, format=fmt, subtype=subtype)
    return buffer.getvalue()


class CaptureDevice(Protocol):
    """Audio capture device that captures until stopped."""

    sample_rate: int

    def request_permission(self) -> None: ...

    def start(self) -> None: ...

    def stop(self) -> np.ndarray: ...

    def close(self) -> None: ...


class SoundDeviceCapture:
    """Capture device backed by a sounddevice InputStream.

    The stream stays open between segments. ``stop()`` swaps the frame buffer
    out under a lock, so blocks delivered while a rotation is in progress land
    in the next segment.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        chunk_size: int = 4096,
        device: int | str | None = None,
    ):
        """Initialize capture device.

        Args:
            sample_rate: Sample rate in Hz
            channels: Number of channels
            chunk_size: Block size for streaming
            device: Audio device index or name (None for default)
        """
        if sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        if channels not in (1, 2):
            raise ValueError("channels must be 1 or 2")
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")

        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_size = chunk_size
        self.device = device

        self._stream = None
        self._buffer: list[np.ndarray] = []
        self._lock = threading.Lock()
        self._resolved_device: int | None = None

    def request_permission(self) -> None:
        """Check that an input device exists and can be queried.

        Raises:
            DeviceUnavailable: If no capture device is usable
        """
        try:
            devices = sounddevice.query_devices()
        except Exception as e:
            raise DeviceUnavailable(f"Cannot query audio devices: {e}") from e

        if isinstance(devices, dict):
            devices = [devices]

        if not any(dev.get("max_input_channels", 0) > 0 for dev in devices):
            raise DeviceUnavailable("No audio input device available")

        self._resolved_device = self._resolve_device_selection(devices)

    def start(self) -> None:
        """Open the input stream if needed and begin buffering frames.

        Raises:
            DeviceUnavailable: If the stream cannot be opened
        """
        if self._stream is not None:
            return

        try:
            self._stream = sounddevice.InputStream(
                device=self._resolved_device,
                samplerate=self.sample_rate,
                channels=self.channels,
                blocksize=self.chunk_size,
                callback=self._callback,
                dtype="float32",
            )
            self._stream.start()
            logger.info(
                "Audio stream started (sample_rate=%d, channels=%d, device=%s)",
                self.sample_rate,
                self.channels,
                self._resolved_device if self._resolved_device is not None else "default",
            )
        except Exception as e:
            self._stream = None
            logger.error("Failed to start audio stream: %s", e)
            raise DeviceUnavailable(f"Failed to start audio stream: {e}") from e

    def stop(self) -> np.ndarray:
        """Return every frame captured since the previous stop."""
        with self._lock:
            blocks = self._buffer
            self._buffer = []

        if not blocks:
            return np.zeros((0, self.channels), dtype=np.float32)
        return np.concatenate(blocks)

    def close(self) -> None:
        """Stop and release the input stream."""
        if self._stream:
            try:
                self._stream.stop()
                self._stream.close()
            except Exception as e:
                logger.warning("Error closing stream: %s", e)
            finally:
                self._stream = None

        with self._lock:
            self._buffer = []

    def _callback(self, indata, frames, time_info, status):
        if status:
            logger.warning("Audio stream status: %s", status)

        with self._lock:
            self._buffer.append(indata.copy())

    def _resolve_device_selection(self, device_list: list) -> int | None:
        """Resolve configured device selection to a sounddevice index."""
        if self.device is None or isinstance(self.device, int):
            return self.device

        target = self.device.strip().lower()
        partial_matches: list[int] = []

        for idx, dev_info in enumerate(device_list):
            if dev_info.get("max_input_channels", 0) <= 0:
                continue
            normalized = dev_info.get("name", f"Device {idx}").strip().lower()
            if normalized == target:
                return idx
            if target in normalized:
                partial_matches.append(idx)

        if partial_matches:
            return partial_matches[0]

        logger.warning("Audio device '%s' not found, using default input", self.device)
        return None

    @staticmethod
    def list_devices() -> dict[int, str]:
        """List available audio capture devices.

        Returns:
            Dict mapping device index to name, empty on error
        """
        try:
            devices = sounddevice.query_devices()
            if isinstance(devices, dict):
                devices = [devices]
            return {
                idx: dev_info.get("name", f"Device {idx}")
                for idx, dev_info in enumerate(devices)
                if dev_info.get("max_input_channels", 0) > 0
            }
        except Exception as e:
            logger.warning("Error querying audio devices: %s", e)
            return {}


class _RecorderState(Enum):
    """Internal recorder state machine."""

    IDLE = "idle"
    RECORDING = "recording"


class ChunkRecorder:
    """Turns a capture-until-stopped device into a stream of bounded segments.

    Every ``rotation_interval`` seconds the in-flight segment is closed and a
    new one begins in the same synchronous step. Closed segments are handed to
    ``on_segment`` immediately; the recorder never waits on downstream work.
    """

    def __init__(
        self,
        device: CaptureDevice,
        scheduler: Scheduler,
        rotation_interval: float = 10.0,
        encoding_preferences: Sequence[str] = DEFAULT_ENCODING_PREFERENCES,
    ):
        if rotation_interval <= 0:
            raise ValueError("rotation_interval must be positive")

        self.device = device
        self.scheduler = scheduler
        self.rotation_interval = rotation_interval
        self.encoding_preferences = tuple(encoding_preferences)
        self.encoding: str | None = None

        self._state = _RecorderState.IDLE
        self._timer: TimerHandle | None = None
        self._next_index = 0
        self._segment_started_at = 0.0
        self._on_segment: Callable[[AudioSegment], None] | None = None
        self._on_error: Callable[[Exception], None] | None = None

        logger.info(
            "ChunkRecorder initialized: rotation_interval=%.1fs, encodings=%s",
            rotation_interval,
            ", ".join(self.encoding_preferences),
        )

    @property
    def is_recording(self) -> bool:
        return self._state == _RecorderState.RECORDING

    def start(
        self,
        on_segment: Callable[[AudioSegment], None],
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        """Acquire the capture device and begin rotating segments.

        Args:
            on_segment: Receives each closed segment
            on_error: Receives capture failures raised during rotation

        Raises:
            RuntimeError: If already recording
            DeviceUnavailable: If the device cannot be acquired
            EncodingUnsupported: If not even the fallback encoding is usable
        """
        if self._state != _RecorderState.IDLE:
            raise RuntimeError(
                f"Cannot start recording: recorder in {self._state.value} state"
            )

        self.encoding = negotiate_encoding(
            self.encoding_preferences, sample_rate=self.device.sample_rate
        )

        try:
            self.device.request_permission()
            self.device.start()
        except DeviceUnavailable:
            self.device.close()
            raise
        except Exception as e:
            self.device.close()
            raise DeviceUnavailable(f"Failed to acquire capture device: {e}") from e

        self._on_segment = on_segment
        self._on_error = on_error
        self._next_index = 0
        self._segment_started_at = self.scheduler.now()
        self._state = _RecorderState.RECORDING
        self._arm_timer()
        logger.info("Recording started (encoding=%s)", self.encoding)

    def stop(self) -> None:
        """Close the in-flight segment, emit it, and release the device."""
        if self._state != _RecorderState.RECORDING:
            raise RuntimeError(
                f"Cannot stop recording: recorder not recording (state={self._state.value})"
            )

        self._cancel_timer()
        self._state = _RecorderState.IDLE
        try:
            frames = self.device.stop()
            ended_at = self.scheduler.now()
        finally:
            self.device.close()

        self._emit(frames, self._segment_started_at, ended_at)
        logger.info("Recording stopped after %d segments", self._next_index)

    def abort(self) -> None:
        """Release the device without emitting the in-flight segment."""
        self._cancel_timer()
        if self._state == _RecorderState.RECORDING:
            logger.info("Recording aborted, discarding in-flight segment")
        self._state = _RecorderState.IDLE
        try:
            self.device.close()
        except Exception as e:
            logger.warning("Error closing capture device: %s", e)

    def _arm_timer(self) -> None:
        self._timer = self.scheduler.call_later(self.rotation_interval, self._rotate)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _rotate(self) -> None:
        self._timer = None
        if self._state != _RecorderState.RECORDING:
            return

        try:
            # Close segment k and open segment k+1 with no suspension in between.
            frames = self.device.stop()
            self.device.start()
        except Exception as e:
            logger.error("Capture device failed during rotation: %s", e, exc_info=True)
            self.abort()
            if self._on_error:
                self._on_error(e)
            return

        ended_at = self.scheduler.now()
        started_at = self._segment_started_at
        self._segment_started_at = ended_at
        self._arm_timer()
        self._emit(frames, started_at, ended_at)

    def _emit(self, frames: np.ndarray, started_at: float, ended_at: float) -> None:
        if len(frames) == 0:
            logger.debug("Skipping empty segment (%.2fs-%.2fs)", started_at, ended_at)
            return

        try:
            data = encode_frames(frames, self.device.sample_rate, self.encoding)
        except Exception as e:
            if self.encoding == DEFAULT_ENCODING:
                logger.error("Failed to encode segment %d: %s", self._next_index, e)
                return
            logger.warning(
                "Encoding %s failed for segment %d (%s), switching to %s",
                self.encoding,
                self._next_index,
                e,
                DEFAULT_ENCODING,
            )
            self.encoding = DEFAULT_ENCODING
            try:
                data = encode_frames(frames, self.device.sample_rate, self.encoding)
            except Exception as e:
                logger.error("Failed to encode segment %d: %s", self._next_index, e)
                return

        segment = AudioSegment(
            data=data,
            index=self._next_index,
            encoding=self.encoding,
            timestamp=started_at,
            duration=ended_at - started_at,
            sample_rate=self.device.sample_rate,
        )
        self._next_index += 1
        logger.debug(
            "Segment %d closed: %.2fs, %d bytes",
            segment.index,
            segment.duration,
            len(data),
        )
        if self._on_segment:
            self._on_segment(segment)
