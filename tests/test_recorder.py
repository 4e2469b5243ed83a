"""Tests for recorder module."""

import io
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
import soundfile

from conftest import FakeCaptureDevice
from live_translate.recorder import (
    ChunkRecorder,
    DeviceUnavailable,
    EncodingUnsupported,
    SoundDeviceCapture,
    encode_frames,
    negotiate_encoding,
)


class TestEncodingNegotiation:
    """Tests for encoding negotiation."""

    def test_first_available_preference_wins(self):
        """Test the first producible encoding is selected."""
        with patch(
            "live_translate.recorder.soundfile.check_format",
            side_effect=lambda fmt, subtype: subtype != "OPUS",
        ):
            assert negotiate_encoding(["audio/ogg;codecs=opus", "audio/flac"]) == "audio/flac"

    def test_falls_back_to_wav(self):
        """Test fallback when no preference can be produced."""
        with patch(
            "live_translate.recorder.soundfile.check_format",
            side_effect=lambda fmt, subtype: fmt == "WAV",
        ):
            assert negotiate_encoding(["audio/ogg;codecs=opus"]) == "audio/wav"

    def test_unknown_preferences_are_skipped(self):
        """Test unknown identifiers never match."""
        with patch("live_translate.recorder.soundfile.check_format", return_value=True):
            assert negotiate_encoding(["audio/mp3", "audio/flac"]) == "audio/flac"

    def test_nothing_producible_raises(self):
        """Test EncodingUnsupported when even the fallback is unavailable."""
        with patch("live_translate.recorder.soundfile.check_format", return_value=False):
            with pytest.raises(EncodingUnsupported):
                negotiate_encoding(["audio/flac"])

    def test_opus_skipped_at_unsupported_rate(self):
        """Test Opus is passed over when the capture rate is not one it encodes."""
        with patch("live_translate.recorder.soundfile.check_format", return_value=True):
            assert negotiate_encoding(sample_rate=44100) == "audio/flac"
            assert negotiate_encoding(sample_rate=48000) == "audio/ogg;codecs=opus"

    def test_rate_limited_fallback_still_wav(self):
        """Test WAV is reached when every preference is rate limited."""
        with patch("live_translate.recorder.soundfile.check_format", return_value=True):
            assert negotiate_encoding(["audio/ogg;codecs=opus"], sample_rate=22050) == "audio/wav"


class TestEncodeFrames:
    """Tests for in-memory segment encoding."""

    def test_wav_roundtrip_length(self):
        """Test encoded WAV decodes to the same number of frames."""
        frames = np.full((8000, 1), 0.25, dtype=np.float32)
        data = encode_frames(frames, 8000, "audio/wav")

        decoded, sample_rate = soundfile.read(io.BytesIO(data))
        assert sample_rate == 8000
        assert len(decoded) == 8000

    def test_unknown_encoding(self):
        """Test unknown encoding raises EncodingUnsupported."""
        with pytest.raises(EncodingUnsupported, match="Unknown encoding"):
            encode_frames(np.zeros((10, 1), dtype=np.float32), 8000, "audio/mp3")


class TestChunkRecorderInit:
    """Tests for ChunkRecorder initialization."""

    def test_invalid_rotation_interval(self, capture_device, scheduler):
        """Test non-positive rotation interval rejected."""
        with pytest.raises(ValueError, match="rotation_interval must be positive"):
            ChunkRecorder(capture_device, scheduler, rotation_interval=0)

    def test_defaults(self, capture_device, scheduler):
        """Test default rotation and encoding preferences."""
        recorder = ChunkRecorder(capture_device, scheduler)
        assert recorder.rotation_interval == 10.0
        assert recorder.encoding_preferences[0] == "audio/ogg;codecs=opus"
        assert recorder.is_recording is False


class TestChunkRecorderRotation:
    """Tests for fixed-cadence segment rotation."""

    def _start(self, device, scheduler, interval=10.0):
        segments = []
        recorder = ChunkRecorder(
            device, scheduler, rotation_interval=interval, encoding_preferences=["audio/wav"]
        )
        recorder.start(on_segment=segments.append)
        return recorder, segments

    def test_segment_emitted_every_interval(self, capture_device, scheduler):
        """Test a segment closes at each 10s boundary."""
        recorder, segments = self._start(capture_device, scheduler)

        scheduler.advance(10)
        assert [s.index for s in segments] == [0]
        assert segments[0].timestamp == 0
        assert segments[0].duration == pytest.approx(10)

        scheduler.advance(10)
        assert [s.index for s in segments] == [0, 1]
        assert segments[1].timestamp == 10
        assert recorder.is_recording

    def test_stop_before_first_rotation(self, capture_device, scheduler):
        """Test stopping at 7s yields exactly one 0-7s segment."""
        recorder, segments = self._start(capture_device, scheduler)

        scheduler.advance(7)
        recorder.stop()

        assert len(segments) == 1
        assert segments[0].index == 0
        assert segments[0].timestamp == 0
        assert segments[0].duration == pytest.approx(7)
        assert segments[0].encoding == "audio/wav"
        assert scheduler.pending == []
        assert recorder.is_recording is False

    def test_stop_flushes_partial_segment(self, capture_device, scheduler):
        """Test stop after rotations emits the in-flight tail."""
        recorder, segments = self._start(capture_device, scheduler)

        scheduler.advance(27)
        recorder.stop()

        assert [s.index for s in segments] == [0, 1, 2]
        assert segments[2].timestamp == 20
        assert segments[2].duration == pytest.approx(7)

    def test_segments_cover_capture_without_gaps(self, capture_device, scheduler):
        """Test consecutive segments tile the captured time."""
        recorder, segments = self._start(capture_device, scheduler)

        scheduler.advance(35)
        recorder.stop()

        total = sum(s.duration for s in segments)
        assert total == pytest.approx(35)
        assert capture_device.captured_seconds == pytest.approx(35)
        for previous, current in zip(segments, segments[1:]):
            assert current.index == previous.index + 1
            assert current.timestamp == pytest.approx(previous.timestamp + previous.duration)

    def test_segment_data_is_encoded_audio(self, capture_device, scheduler):
        """Test segment payload decodes to the captured frames."""
        recorder, segments = self._start(capture_device, scheduler)

        scheduler.advance(2)
        recorder.stop()

        decoded, sample_rate = soundfile.read(io.BytesIO(segments[0].data))
        assert sample_rate == capture_device.sample_rate
        assert len(decoded) == 2 * capture_device.sample_rate

    def test_default_preferences_at_44100(self, scheduler):
        """Test a 44.1 kHz capture negotiates an encoding it can actually write."""
        device = FakeCaptureDevice(scheduler, sample_rate=44100)
        segments = []
        recorder = ChunkRecorder(device, scheduler)
        recorder.start(on_segment=segments.append)

        scheduler.advance(12)
        recorder.stop()

        assert recorder.encoding != "audio/ogg;codecs=opus"
        assert [s.index for s in segments] == [0, 1]
        decoded, sample_rate = soundfile.read(io.BytesIO(segments[0].data))
        assert sample_rate == 44100
        assert len(decoded) == 10 * 44100

    def test_encode_failure_falls_back_to_wav(self, capture_device, scheduler):
        """Test a segment that fails to encode is re-encoded as WAV, not dropped."""

        def flaky_encode(frames, sample_rate, encoding):
            if encoding != "audio/wav":
                raise RuntimeError("encoder rejected parameters")
            return encode_frames(frames, sample_rate, encoding)

        segments = []
        recorder = ChunkRecorder(
            capture_device, scheduler, encoding_preferences=["audio/flac"]
        )
        with patch("live_translate.recorder.encode_frames", side_effect=flaky_encode):
            recorder.start(on_segment=segments.append)
            scheduler.advance(10)
            scheduler.advance(4)
            recorder.stop()

        assert [s.index for s in segments] == [0, 1]
        assert all(s.encoding == "audio/wav" for s in segments)
        assert recorder.encoding == "audio/wav"

    def test_empty_segment_skipped(self, capture_device, scheduler):
        """Test a segment with no audio is not emitted and keeps indices dense."""
        recorder, segments = self._start(capture_device, scheduler)

        recorder.stop()
        assert segments == []

        recorder.start(on_segment=segments.append)
        scheduler.advance(3)
        recorder.stop()
        assert [s.index for s in segments] == [0]

    def test_stop_releases_device(self, capture_device, scheduler):
        """Test stop closes the capture device."""
        recorder, _ = self._start(capture_device, scheduler)
        recorder.stop()
        assert capture_device.close_calls == 1

    def test_abort_discards_in_flight_segment(self, capture_device, scheduler):
        """Test abort emits nothing and cancels the rotation timer."""
        recorder, segments = self._start(capture_device, scheduler)

        scheduler.advance(5)
        recorder.abort()
        scheduler.advance(20)

        assert segments == []
        assert scheduler.pending == []
        assert recorder.is_recording is False


class TestChunkRecorderErrors:
    """Tests for recorder error paths."""

    def test_start_twice_raises(self, capture_device, scheduler):
        """Test starting while recording raises RuntimeError."""
        recorder = ChunkRecorder(capture_device, scheduler, encoding_preferences=["audio/wav"])
        recorder.start(on_segment=lambda s: None)

        with pytest.raises(RuntimeError, match="Cannot start recording"):
            recorder.start(on_segment=lambda s: None)

    def test_stop_when_idle_raises(self, capture_device, scheduler):
        """Test stopping while idle raises RuntimeError."""
        recorder = ChunkRecorder(capture_device, scheduler)
        with pytest.raises(RuntimeError, match="not recording"):
            recorder.stop()

    def test_permission_denied(self, scheduler):
        """Test DeviceUnavailable surfaces and device is released."""
        device = FakeCaptureDevice(scheduler, deny_permission=True)
        recorder = ChunkRecorder(device, scheduler, encoding_preferences=["audio/wav"])

        with pytest.raises(DeviceUnavailable, match="Permission denied"):
            recorder.start(on_segment=lambda s: None)

        assert device.close_calls == 1
        assert recorder.is_recording is False
        assert scheduler.pending == []

    def test_start_failure_wrapped(self, scheduler):
        """Test a generic device error on start becomes DeviceUnavailable."""
        device = FakeCaptureDevice(scheduler, fail_on_start=1)
        recorder = ChunkRecorder(device, scheduler, encoding_preferences=["audio/wav"])

        with pytest.raises(DeviceUnavailable, match="Device disconnected"):
            recorder.start(on_segment=lambda s: None)

    def test_device_failure_during_rotation(self, scheduler):
        """Test a device failure mid-session reports the error and stops."""
        device = FakeCaptureDevice(scheduler, fail_on_start=2)
        errors = []
        segments = []
        recorder = ChunkRecorder(device, scheduler, encoding_preferences=["audio/wav"])
        recorder.start(on_segment=segments.append, on_error=errors.append)

        scheduler.advance(25)

        assert len(errors) == 1
        assert isinstance(errors[0], OSError)
        assert segments == []
        assert recorder.is_recording is False
        assert scheduler.pending == []


class TestSoundDeviceCapture:
    """Tests for the sounddevice-backed capture device."""

    def test_invalid_params(self):
        """Test constructor validation."""
        with pytest.raises(ValueError, match="sample_rate must be positive"):
            SoundDeviceCapture(sample_rate=0)
        with pytest.raises(ValueError, match="channels must be 1 or 2"):
            SoundDeviceCapture(channels=3)
        with pytest.raises(ValueError, match="chunk_size must be positive"):
            SoundDeviceCapture(chunk_size=0)

    @patch("live_translate.recorder.sounddevice.query_devices")
    def test_request_permission_no_inputs(self, mock_query):
        """Test DeviceUnavailable when no input device exists."""
        mock_query.return_value = [{"name": "Speakers", "max_input_channels": 0}]

        with pytest.raises(DeviceUnavailable, match="No audio input device"):
            SoundDeviceCapture().request_permission()

    @patch("live_translate.recorder.sounddevice.query_devices")
    def test_request_permission_query_error(self, mock_query):
        """Test DeviceUnavailable when devices cannot be queried."""
        mock_query.side_effect = OSError("PortAudio not initialized")

        with pytest.raises(DeviceUnavailable, match="Cannot query audio devices"):
            SoundDeviceCapture().request_permission()

    @patch("live_translate.recorder.sounddevice.query_devices")
    def test_device_name_resolution(self, mock_query):
        """Test a device name resolves to its index."""
        mock_query.return_value = [
            {"name": "Speakers", "max_input_channels": 0},
            {"name": "USB Microphone", "max_input_channels": 1},
        ]
        capture = SoundDeviceCapture(device="usb")
        capture.request_permission()
        assert capture._resolved_device == 1

    @patch("live_translate.recorder.sounddevice.InputStream")
    def test_start_opens_stream_once(self, mock_stream_class):
        """Test the stream is opened once and reused."""
        capture = SoundDeviceCapture()
        capture.start()
        capture.start()

        mock_stream_class.assert_called_once()
        mock_stream_class.return_value.start.assert_called_once()

    @patch("live_translate.recorder.sounddevice.InputStream")
    def test_start_failure(self, mock_stream_class):
        """Test stream open errors raise DeviceUnavailable."""
        mock_stream_class.side_effect = OSError("Device busy")

        capture = SoundDeviceCapture()
        with pytest.raises(DeviceUnavailable, match="Device busy"):
            capture.start()
        assert capture._stream is None

    def test_stop_swaps_buffer(self):
        """Test stop returns buffered blocks and starts a fresh buffer."""
        capture = SoundDeviceCapture(channels=1)
        capture._callback(np.ones((4, 1), dtype=np.float32), 4, None, None)
        capture._callback(np.ones((4, 1), dtype=np.float32), 4, None, None)

        first = capture.stop()
        assert first.shape == (8, 1)

        capture._callback(np.ones((2, 1), dtype=np.float32), 2, None, None)
        assert capture.stop().shape == (2, 1)

    def test_stop_without_audio(self):
        """Test stop with no captured blocks returns an empty array."""
        assert SoundDeviceCapture(channels=2).stop().shape == (0, 2)

    def test_close_stops_stream(self):
        """Test close stops and releases the stream."""
        capture = SoundDeviceCapture()
        stream = MagicMock()
        capture._stream = stream

        capture.close()

        stream.stop.assert_called_once()
        stream.close.assert_called_once()
        assert capture._stream is None

    @patch("live_translate.recorder.sounddevice.query_devices")
    def test_list_devices(self, mock_query):
        """Test only input-capable devices are listed."""
        mock_query.return_value = [
            {"name": "Speakers", "max_input_channels": 0},
            {"name": "Mic", "max_input_channels": 2},
        ]
        assert SoundDeviceCapture.list_devices() == {1: "Mic"}
