"""
In-process session store.

A session is a short-lived working set of images for one client. Sessions
live only in this process: nothing survives a restart, and each session's
image files sit in a private media directory that is removed together
with the session.

Locking:
- The session table is guarded by one lock (create/get/touch/delete/sweep).
- Each session has its own re-entrant lock serializing mutations of its
  image list. Requests against different sessions never contend.
- The sweeper pops expired sessions under the table lock and then closes
  each one under that session's lock, so a sweep never tears down a
  session halfway through a request's mutation. Once closed, further
  mutations raise InvalidSessionError.
"""

import asyncio
import logging
import shutil
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, Optional, Protocol
from uuid import uuid4

from ...core.annotation.models import AnnotatedImage, Shape

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class InvalidSessionError(Exception):
    """Raised when a session id is unknown, expired or already closed."""

    def __init__(self, session_id: Optional[str]) -> None:
        super().__init__(f"Invalid session ID: {session_id}")
        self.session_id = session_id


class ImageNotFoundError(Exception):
    """Raised when an image id is not part of the session."""

    def __init__(self, image_id: str) -> None:
        super().__init__(f"Image not found: {image_id}")
        self.image_id = image_id


class Session:
    """
    One client's working session.

    Images are kept in insertion order; that order drives paging and
    export. All mutation goes through methods that hold self.lock.
    """

    def __init__(self, session_id: str, media_dir: Path, expires_at: float) -> None:
        self.id = session_id
        self.media_dir = media_dir
        self.expires_at = expires_at
        self.lock = threading.RLock()
        self._images: list[AnnotatedImage] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def image_count(self) -> int:
        with self.lock:
            return len(self._images)

    def images(self) -> list[AnnotatedImage]:
        """Snapshot of the images in session order."""
        with self.lock:
            return list(self._images)

    def page(self, number: int, size: int) -> list[tuple[int, AnnotatedImage]]:
        """
        Return (absolute_index, image) pairs for a 1-based page.

        A page past the end is simply empty.
        """
        if number < 1:
            raise ValueError("Page numbers start at 1")
        start = (number - 1) * size
        with self.lock:
            chunk = self._images[start:start + size]
        return [(start + offset, image) for offset, image in enumerate(chunk)]

    def get_image(self, image_id: str) -> AnnotatedImage:
        with self.lock:
            for image in self._images:
                if image.id == image_id:
                    return image
        raise ImageNotFoundError(image_id)

    def add_image(
        self,
        data: bytes,
        suffix: str,
        original_name: str = "",
        metadata_reader: Optional[Callable[[Path], Optional[list[Shape]]]] = None,
    ) -> AnnotatedImage:
        """
        Store image bytes in the session and append the record.

        metadata_reader, when given, is called with the stored file path
        and its result becomes the image's metadata. If storing or reading
        fails, no file is left behind.
        """
        with self.lock:
            self._ensure_open()
            image_id = str(uuid4())
            path = self.media_dir / f"{image_id}{suffix}"
            try:
                path.write_bytes(data)
                metadata = metadata_reader(path) if metadata_reader else None
            except Exception:
                path.unlink(missing_ok=True)
                raise

            image = AnnotatedImage(
                id=image_id,
                path=path,
                suffix=suffix,
                original_name=original_name,
                metadata=metadata,
            )
            self._images.append(image)
            return image

    def remove_image(self, image_id: str) -> bool:
        """Drop an image if present. Returns whether anything was removed."""
        with self.lock:
            self._ensure_open()
            for index, image in enumerate(self._images):
                if image.id == image_id:
                    del self._images[index]
                    image.path.unlink(missing_ok=True)
                    return True
            return False

    def attach_metadata(
        self,
        image_id: str,
        shapes: list[Shape],
        writer: Callable[[Path, list[Shape]], None],
    ) -> AnnotatedImage:
        """
        Write shapes into the image file, then mirror them in memory.

        The in-memory record only changes if the writer succeeds.
        """
        with self.lock:
            self._ensure_open()
            image = self.get_image(image_id)
            writer(image.path, shapes)
            image.metadata = list(shapes)
            return image

    def close(self) -> None:
        """Release every image file. Safe to call more than once."""
        with self.lock:
            if self._closed:
                return
            self._closed = True
            self._images.clear()
            shutil.rmtree(self.media_dir, ignore_errors=True)

    def _ensure_open(self) -> None:
        if self._closed:
            raise InvalidSessionError(self.id)


class SessionStore(Protocol):
    """
    Interface for session storage.

    The in-process implementation below is the only one today; callers
    only see this surface so a sharded or external store can replace it.
    """

    def create(self) -> Session: ...
    def get(self, session_id: str) -> Session: ...
    def touch(self, session_id: str) -> Session: ...
    def delete(self, session_id: str) -> None: ...
    def sweep(self) -> int: ...
    def count(self) -> int: ...
    def close(self) -> None: ...


class InMemorySessionStore:
    """Session table held in a dict, guarded by a lock."""

    def __init__(
        self,
        media_root: Path,
        ttl_seconds: float = 900.0,
        clock: Clock = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._media_root = Path(media_root)
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: dict[str, Session] = {}

        self._media_root.mkdir(parents=True, exist_ok=True)
        logger.info(
            "Initialized in-memory session store",
            extra={"media_root": str(self._media_root), "ttl_seconds": ttl_seconds},
        )

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def create(self) -> Session:
        session_id = str(uuid4())
        media_dir = Path(tempfile.mkdtemp(prefix=f"session-{session_id}-", dir=self._media_root))
        session = Session(session_id, media_dir, self._clock() + self._ttl)

        with self._lock:
            self._sessions[session_id] = session

        logger.info("New session", extra={"session_id": session_id})
        return session

    def get(self, session_id: str) -> Session:
        """
        Look up a live session.

        A session past its expiry that the sweeper hasn't reached yet is
        treated as gone and released right away.
        """
        expired = None
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise InvalidSessionError(session_id)
            if self._is_expired(session):
                expired = self._sessions.pop(session_id)

        if expired is not None:
            expired.close()
            logger.info("Session expired on access", extra={"session_id": session_id})
            raise InvalidSessionError(session_id)

        return session

    def touch(self, session_id: str) -> Session:
        """Push the expiry out to now + ttl."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or self._is_expired(session):
                raise InvalidSessionError(session_id)
            session.expires_at = self._clock() + self._ttl
            return session

    def delete(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(session_id, None)

        if session is not None:
            session.close()
            logger.info("Deleted session", extra={"session_id": session_id})

    def sweep(self) -> int:
        """Remove every expired session. Returns how many were removed."""
        with self._lock:
            expired_ids = [sid for sid, s in self._sessions.items() if self._is_expired(s)]
            expired = [self._sessions.pop(sid) for sid in expired_ids]

        for session in expired:
            session.close()
            logger.info("Session expired and data cleared", extra={"session_id": session.id})

        return len(expired)

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def close(self) -> None:
        """Release every session; used on shutdown."""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()

        for session in sessions:
            session.close()

        logger.info("Session store closed", extra={"released": len(sessions)})

    def _is_expired(self, session: Session) -> bool:
        return self._clock() > session.expires_at


class SessionSweeper:
    """
    Periodic background task that expires sessions.

    Runs on the application's event loop. Each sweep only takes the
    store's locks briefly, so it can interleave with request handling.
    """

    def __init__(self, store: SessionStore, interval_seconds: float) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._store = store
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("Session sweeper started", extra={"interval_seconds": self._interval})

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Session sweeper stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                # closing a session waits on its lock and removes its files
                removed = await asyncio.to_thread(self._store.sweep)
            except Exception:
                logger.exception("Session sweep failed")
                continue
            if removed:
                logger.info("Swept expired sessions", extra={"count": removed})


def create_session_store(
    media_root: Path,
    ttl_seconds: float,
    clock: Clock = time.monotonic,
) -> SessionStore:
    """Factory for the session store used by the application."""
    return InMemorySessionStore(media_root=media_root, ttl_seconds=ttl_seconds, clock=clock)
