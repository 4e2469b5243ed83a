"""Central async state machine for a live translation session."""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable

from live_translate._types import AudioSegment, Session, SessionState, TranslationSegment
from live_translate.recorder import ChunkRecorder
from live_translate.scheduler import Scheduler
from live_translate.speech import SpeechQueue
from live_translate.store import NullSessionStore, SessionStore
from live_translate.transcript import TranscriptAccumulator, TranscriptionFailed
from live_translate.translator import TranslationContextManager, TranslationFailed

logger = logging.getLogger(__name__)

# Queued after the last suffix to end a translation worker once it is idle.
_STOP = object()


class SessionController:
    """Coordinates recorder, transcript, translation, and speech for one session.

    The only component allowed to change session state. Pipeline:
    closed segment -> transcript suffix -> translation segment -> speech.
    Component-local failures are logged and skipped; only a capture-device
    failure while recording moves the session to FAILED.
    """

    def __init__(
        self,
        recorder: ChunkRecorder,
        accumulator: TranscriptAccumulator,
        translator: TranslationContextManager,
        speech: SpeechQueue,
        scheduler: Scheduler,
        store: SessionStore | None = None,
        speech_enabled: bool = False,
    ):
        """Initialize controller with components.

        Args:
            recorder: ChunkRecorder owning the capture device
            accumulator: TranscriptAccumulator for the running transcript
            translator: TranslationContextManager for incremental translation
            speech: SpeechQueue owning the speech-output device
            scheduler: Clock used for session duration
            store: Receives session start/finish notifications
            speech_enabled: Whether translations are also spoken
        """
        self.recorder = recorder
        self.accumulator = accumulator
        self.translator = translator
        self.speech = speech
        self.scheduler = scheduler
        self.store = store or NullSessionStore()
        self.speech_enabled = speech_enabled

        self.session: Session | None = None
        self.on_transcript: Callable[[str], None] | None = None
        self.on_translation: Callable[[TranslationSegment], None] | None = None
        self.on_failure: Callable[[Exception], None] | None = None

        self._segment_tasks: set[asyncio.Task] = set()
        self._translation_queue: asyncio.Queue | None = None
        self._translation_worker: asyncio.Task | None = None
        self._retired_workers: set[asyncio.Task] = set()
        self._failure_task: asyncio.Task | None = None
        self._started_at = 0.0
        self._last_error: Exception | None = None

        logger.info("SessionController initialized in IDLE state")

    @property
    def state(self) -> SessionState:
        return self.session.state if self.session else SessionState.IDLE

    @property
    def last_error(self) -> Exception | None:
        return self._last_error

    def _transition(self, new_state: SessionState) -> None:
        logger.info(
            "State transition: %s -> %s",
            self.state.value.upper(),
            new_state.value.upper(),
        )
        self.session.state = new_state

    async def start(self) -> Session:
        """Begin a new session: IDLE -> RECORDING.

        Returns:
            The new Session

        Raises:
            RuntimeError: If a session is already live
            DeviceUnavailable: If the capture device cannot be acquired
            EncodingUnsupported: If no audio encoding can be produced
        """
        if self.state != SessionState.IDLE:
            raise RuntimeError(f"Cannot start session: controller in {self.state.value} state")

        await self.speech.stop_all()
        self.accumulator.clear()
        self.translator.clear()
        self._last_error = None

        session = Session(
            id=uuid.uuid4().hex,
            state=SessionState.IDLE,
            created_at=datetime.now(timezone.utc),
            target_language=self.translator.target_language,
        )
        self.session = session
        self._translation_queue = asyncio.Queue()
        self._translation_worker = asyncio.create_task(
            self._translate_loop(session, self._translation_queue)
        )

        try:
            self.recorder.start(on_segment=self._on_segment, on_error=self._on_capture_error)
        except Exception as e:
            logger.error("Failed to start session %s: %s", session.id, e)
            await self._fail(e)
            raise

        self._started_at = self.scheduler.now()
        self._transition(SessionState.RECORDING)
        self._notify_started(session)
        return session

    async def stop(self) -> Session | None:
        """Stop capture and finish pending work: RECORDING -> PROCESSING -> COMPLETED.

        The final segment is flushed and waited on through transcription and
        translation. Queued speech keeps playing.
        """
        if self.state != SessionState.RECORDING:
            logger.warning("Stop requested while in %s state, ignoring", self.state.value)
            return self.session

        session = self.session
        try:
            self.recorder.stop()
        except Exception as e:
            logger.error("Capture device failed while stopping: %s", e, exc_info=True)
            await self._fail(e)
            raise

        session.duration = self.scheduler.now() - self._started_at
        self._transition(SessionState.PROCESSING)

        await self._drain()

        if self.session is not session or session.state != SessionState.PROCESSING:
            return session

        self._transition(SessionState.COMPLETED)
        logger.info(
            "Session %s completed: %.1fs, %d segments, %d translations",
            session.id,
            session.duration,
            session.segment_count,
            len(self.translator.segments),
        )
        self._notify_finished(session)
        return session

    async def clear(self) -> None:
        """Drop all per-session state and return to IDLE from any state.

        Interrupts speech immediately. Service calls already dispatched finish
        on their own; their results are discarded.
        """
        if self.session is None:
            return

        previous = self.state
        session = self.session
        self.recorder.abort()
        await self.speech.stop_all()
        await self._stop_translation_worker(wait=False)
        if previous in (SessionState.RECORDING, SessionState.PROCESSING):
            if previous == SessionState.RECORDING:
                session.duration = self.scheduler.now() - self._started_at
            logger.info("Session %s cleared while %s", session.id, previous.value)
            self._notify_finished(session)
        self.accumulator.clear()
        self.translator.clear()
        self.session = None
        logger.info("State transition: %s -> IDLE", previous.value.upper())

    async def set_speech_enabled(self, enabled: bool) -> None:
        """Gate spoken output; transcription and translation are unaffected."""
        self.speech_enabled = enabled
        if not enabled:
            await self.speech.stop_all()
        logger.info("Speech output %s", "enabled" if enabled else "disabled")

    async def shutdown(self) -> None:
        """Stop a live session if any, clear, and let detached translations finish."""
        if self.state == SessionState.RECORDING:
            try:
                await self.stop()
            except Exception as e:
                logger.warning("Error stopping session during shutdown: %s", e)
        await self.clear()
        if self._retired_workers:
            await asyncio.gather(*list(self._retired_workers), return_exceptions=True)

    def _on_segment(self, segment: AudioSegment) -> None:
        session = self.session
        if session is None or session.state != SessionState.RECORDING:
            logger.warning("Dropping segment %d: session is not recording", segment.index)
            return

        session.segment_count += 1
        task = asyncio.create_task(self._process_segment(session, segment))
        self._segment_tasks.add(task)
        task.add_done_callback(self._segment_tasks.discard)

    async def _process_segment(self, session: Session, segment: AudioSegment) -> None:
        try:
            update = await self.accumulator.submit(segment)
        except TranscriptionFailed as e:
            logger.warning("Segment %d skipped: %s", segment.index, e)
            return

        if self.session is not session or not update.suffix:
            return

        session.transcript = update.full_text
        session.detected_language = self.accumulator.detected_language
        # No await between apply and enqueue: suffixes reach the queue in apply order.
        if update.suffix.strip() and self._translation_queue is not None:
            self._translation_queue.put_nowait(update.suffix)

        if self.on_transcript:
            try:
                self.on_transcript(update.full_text)
            except Exception as e:
                logger.warning("Transcript listener failed: %s", e)

    async def _translate_loop(self, session: Session, queue: asyncio.Queue) -> None:
        while True:
            suffix = await queue.get()
            if suffix is _STOP:
                queue.task_done()
                return
            try:
                segment = await self.translator.translate_new(suffix, session.target_language)
            except TranslationFailed as e:
                logger.warning("Suffix dropped from translation: %s", e)
            else:
                if segment is not None and self.session is session:
                    self._publish_translation(segment)
            finally:
                queue.task_done()

    def _publish_translation(self, segment: TranslationSegment) -> None:
        if self.on_translation:
            try:
                self.on_translation(segment)
            except Exception as e:
                logger.warning("Translation listener failed: %s", e)

        if self.speech_enabled:
            self.speech.enqueue(segment.translated_text, segment.target_language)

    async def _drain(self) -> None:
        """Wait for in-flight segments and queued translations to finish."""
        while self._segment_tasks:
            await asyncio.gather(*list(self._segment_tasks), return_exceptions=True)

        queue = self._translation_queue
        worker = self._translation_worker
        if queue is not None and worker is not None and not worker.done():
            join_task = asyncio.create_task(queue.join())
            await asyncio.wait({join_task, worker}, return_when=asyncio.FIRST_COMPLETED)
            if not join_task.done():
                join_task.cancel()

        await self._stop_translation_worker()

    async def _stop_translation_worker(self, wait: bool = True) -> None:
        """End the translation worker without interrupting a dispatched call.

        Suffixes not yet dispatched are dropped. A call already in progress
        completes or fails on its own; with ``wait=False`` the worker is left
        to finish in the background.
        """
        worker = self._translation_worker
        queue = self._translation_queue
        self._translation_worker = None
        self._translation_queue = None
        if worker is None or worker.done():
            return

        while not queue.empty():
            queue.get_nowait()
            queue.task_done()
        queue.put_nowait(_STOP)

        if wait:
            await worker
        else:
            self._retired_workers.add(worker)
            worker.add_done_callback(self._retired_workers.discard)

    def _on_capture_error(self, error: Exception) -> None:
        logger.error("Capture device failure during recording: %s", error)
        self._failure_task = asyncio.create_task(self._fail(error))

    async def _fail(self, error: Exception) -> None:
        """Tear down owned components and move the session to FAILED."""
        self._last_error = error
        self.recorder.abort()
        await self._stop_translation_worker(wait=False)
        await self.speech.stop_all()

        session = self.session
        if session is None or session.state == SessionState.FAILED:
            return

        if session.state == SessionState.RECORDING:
            session.duration = self.scheduler.now() - self._started_at
        self._transition(SessionState.FAILED)
        self._notify_finished(session)
        if self.on_failure:
            try:
                self.on_failure(error)
            except Exception as e:
                logger.warning("Failure listener failed: %s", e)

    def _notify_started(self, session: Session) -> None:
        try:
            self.store.session_started(session)
        except Exception as e:
            logger.warning("Session store failed on start: %s", e)

    def _notify_finished(self, session: Session) -> None:
        try:
            self.store.session_finished(
                session,
                self.accumulator.full_text,
                list(self.translator.segments),
            )
        except Exception as e:
            logger.warning("Session store failed on finish: %s", e)
