"""Per-client change feed holding the local view of a session."""

import logging
import threading
from dataclasses import dataclass, field

from study_rooms.domain.errors import RoomNotFound
from study_rooms.domain.sessions import Session
from study_rooms.services.store import SessionStore, SnapshotListener, Unsubscribe

_logger = logging.getLogger(__name__)


@dataclass
class SubscriptionManager:
    """Keeps at most one live subscription for a single client.

    Every snapshot replaces the local view wholesale; there is no merging.
    Snapshots older than the current view are dropped, so listeners that
    race each other never move the view backwards. A missing document means
    the session ended, which clears the view and drops the feed.
    """

    store: SessionStore
    on_snapshot: SnapshotListener | None = None
    _code: str | None = field(default=None, init=False)
    _view: Session | None = field(default=None, init=False)
    _ended: bool = field(default=False, init=False)
    _unsubscribe: Unsubscribe | None = field(default=None, init=False)
    _generation: int = field(default=0, init=False)
    _lock: threading.RLock = field(
        default_factory=threading.RLock, init=False, repr=False
    )

    @property
    def code(self) -> str | None:
        return self._code

    @property
    def view(self) -> Session | None:
        return self._view

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def attached(self) -> bool:
        return self._unsubscribe is not None

    def attach(self, code: str, on_snapshot: SnapshotListener | None = None) -> None:
        """Subscribe to a session, replacing any previous subscription."""
        self.detach()
        if on_snapshot is not None:
            self.on_snapshot = on_snapshot
        self._generation += 1
        generation = self._generation
        self._code = code
        self._ended = False

        def handle(session: Session | None) -> None:
            if generation != self._generation:
                return
            self._receive(session)

        unsubscribe = self.store.subscribe(code, handle)
        if self._ended:
            unsubscribe()
            self._code = None
            raise RoomNotFound(code)
        if generation != self._generation:
            unsubscribe()
            return
        self._unsubscribe = unsubscribe
        _logger.info("Attached to room: code=%s", code)

    def detach(self) -> None:
        """Tear down the live subscription, if any."""
        self._generation += 1
        unsubscribe = self._unsubscribe
        self._unsubscribe = None
        self._view = None
        self._code = None
        if unsubscribe is not None:
            unsubscribe()

    def _receive(self, session: Session | None) -> None:
        with self._lock:
            current = self._view
            if (
                session is not None
                and current is not None
                and session.version < current.version
            ):
                _logger.debug(
                    "Dropped stale snapshot: code=%s version=%s current=%s",
                    session.code,
                    session.version,
                    current.version,
                )
                return
            self._view = session
            if session is None:
                self._ended = True
                _logger.info("Room ended: code=%s", self._code)
                unsubscribe = self._unsubscribe
                self._unsubscribe = None
                self._generation += 1
                if unsubscribe is not None:
                    unsubscribe()
            if self.on_snapshot is not None:
                self.on_snapshot(session)
