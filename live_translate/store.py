"""Session store notifications."""

import json
import logging
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol, Sequence

from live_translate._types import Session, TranslationSegment

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    """Receives session start/finish notifications; never read mid-session."""

    def session_started(self, session: Session) -> None: ...

    def session_finished(
        self,
        session: Session,
        transcript: str,
        translations: Sequence[TranslationSegment],
    ) -> None: ...


class NullSessionStore:
    """Store that records nothing."""

    def session_started(self, session: Session) -> None:
        pass

    def session_finished(self, session, transcript, translations) -> None:
        pass


class JsonlSessionStore:
    """Appends one JSON record per session event to a file."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def session_started(self, session: Session) -> None:
        self._append(
            {
                "event": "session_started",
                "session_id": session.id,
                "status": session.state.value,
                "target_language": session.target_language,
                "created_at": session.created_at.isoformat(),
            }
        )

    def session_finished(
        self,
        session: Session,
        transcript: str,
        translations: Sequence[TranslationSegment],
    ) -> None:
        self._append(
            {
                "event": "session_finished",
                "session_id": session.id,
                "status": session.state.value,
                "total_duration": round(session.duration, 3),
                "chunk_count": session.segment_count,
                "language": session.detected_language,
                "transcript": transcript,
                "translations": [asdict(seg) for seg in translations],
            }
        )

    def _append(self, record: dict) -> None:
        record["recorded_at"] = datetime.now(timezone.utc).isoformat()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False) + "\n")
        logger.debug("Recorded %s for session %s", record["event"], record["session_id"])
