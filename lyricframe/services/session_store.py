"""Export sessions on the server: audio + an append-only JPEG frame sequence.

Each session owns a directory under ``settings.session_root``. Sessions live
in memory only (per process); expired sessions are purged lazily on access
and their ids remembered for a while so callers get "expired" rather than
"not found".
"""

import logging
import re
import shutil
import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from lyricframe.config import get_settings
from lyricframe.exceptions import ChunkOrderError, SessionError, SessionExpiredError
from lyricframe.render.encoder import audio_filename, frame_filename

logger = logging.getLogger(__name__)

_UNSAFE_ID_CHARS = re.compile(r"[^a-zA-Z0-9_-]")
_EXPIRED_MEMORY = 1024


def sanitize_id(raw: Optional[str]) -> str:
    """Keep only [a-zA-Z0-9_-] so an id can never escape the session root."""
    cleaned = _UNSAFE_ID_CHARS.sub("", raw or "")
    if not cleaned:
        raise SessionError(message="Missing or invalid session id")
    return cleaned


@dataclass
class RenderSession:
    session_id: str
    directory: Path
    audio_path: Path
    created_at: float = field(default_factory=time.monotonic)
    last_active: float = field(default_factory=time.monotonic)
    frame_count: int = 0
    finalized: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


@dataclass
class AppendResult:
    count: int
    frame_count: int
    duplicate: bool = False


class ExportSessionStore:
    """Thread-safe in-memory session registry with TTL-based expiration."""

    def __init__(self, root: Optional[str] = None, ttl_seconds: Optional[int] = None) -> None:
        settings = get_settings()
        self.root = Path(root or settings.session_root)
        self._ttl = ttl_seconds if ttl_seconds is not None else settings.session_ttl_seconds
        self._sessions: dict[str, RenderSession] = {}
        self._expired: OrderedDict[str, None] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def create(self, audio: bytes, filename: Optional[str]) -> RenderSession:
        """Create a session directory and store the audio track in it."""
        self.purge_expired()
        session_id = uuid.uuid4().hex
        directory = self.root / session_id
        directory.mkdir(parents=True, exist_ok=False)
        audio_path = directory / audio_filename(filename)
        audio_path.write_bytes(audio)

        session = RenderSession(session_id=session_id, directory=directory, audio_path=audio_path)
        with self._lock:
            self._sessions[session_id] = session
        logger.info(f"[SESSION] Created {session_id} ({len(audio)} bytes of audio)")
        return session

    def get(self, raw_session_id: Optional[str]) -> RenderSession:
        """Look up a live session.

        Raises:
            SessionExpiredError: The session's TTL elapsed
            SessionError: The session id is unknown
        """
        session_id = sanitize_id(raw_session_id)
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None and self._is_expired(session):
                self._expire(session)
                session = None
            if session is None:
                if session_id in self._expired:
                    raise SessionExpiredError(session_id)
                raise SessionError(session_id)
            return session

    def append_frames(self, raw_session_id: Optional[str], start_frame: int, frames: Sequence[bytes]) -> AppendResult:
        """Append a batch whose first frame has index ``start_frame``.

        A batch that starts exactly at the current frame count is appended.
        A batch entirely inside already-appended frames is a retry of an
        applied batch and is acknowledged without writing. Anything else
        would leave a gap or a partial overlap and is rejected.
        """
        session = self.get(raw_session_id)
        with session.lock:
            if session.finalized:
                raise SessionError(session.session_id, message=f"Export session already finalized: {session.session_id}")
            session.last_active = time.monotonic()

            if start_frame == session.frame_count:
                for offset, frame in enumerate(frames):
                    (session.directory / frame_filename(session.frame_count + offset + 1)).write_bytes(frame)
                session.frame_count += len(frames)
                return AppendResult(count=len(frames), frame_count=session.frame_count)

            if 0 <= start_frame and start_frame + len(frames) <= session.frame_count:
                logger.warning(
                    f"[SESSION] {session.session_id}: duplicate batch at {start_frame} "
                    f"({len(frames)} frames) ignored"
                )
                return AppendResult(count=0, frame_count=session.frame_count, duplicate=True)

            raise ChunkOrderError(session.session_id, start_frame, session.frame_count)

    def begin_finalize(self, raw_session_id: Optional[str]) -> RenderSession:
        """Detach a session for muxing; a second finalize sees it as unknown."""
        session = self.get(raw_session_id)
        with session.lock:
            if session.finalized:
                raise SessionError(session.session_id)
            session.finalized = True
        with self._lock:
            self._sessions.pop(session.session_id, None)
        return session

    def discard(self, session: RenderSession) -> None:
        """Remove a session and its files."""
        with self._lock:
            self._sessions.pop(session.session_id, None)
        shutil.rmtree(session.directory, ignore_errors=True)
        logger.info(f"[SESSION] Cleaned up {session.session_id}")

    def purge_expired(self) -> list[str]:
        """Drop every expired session; returns the purged ids."""
        with self._lock:
            expired = [s for s in self._sessions.values() if self._is_expired(s)]
            for session in expired:
                self._expire(session)
        return [s.session_id for s in expired]

    def _is_expired(self, session: RenderSession) -> bool:
        return time.monotonic() - session.last_active > self._ttl

    def _expire(self, session: RenderSession) -> None:
        """Forget an expired session (called under lock)."""
        del self._sessions[session.session_id]
        self._expired[session.session_id] = None
        while len(self._expired) > _EXPIRED_MEMORY:
            self._expired.popitem(last=False)
        shutil.rmtree(session.directory, ignore_errors=True)
        logger.info(f"[SESSION] Expired {session.session_id}")
