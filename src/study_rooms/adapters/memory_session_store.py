"""In-process session store."""

import threading
from collections.abc import Sequence
from dataclasses import dataclass, field

from study_rooms.domain.errors import VersionConflict
from study_rooms.domain.sessions import Session
from study_rooms.services.store import (
    FieldMutation,
    SessionStore,
    SnapshotFanout,
    SnapshotListener,
    Unsubscribe,
    apply_mutations,
)


@dataclass
class InMemorySessionStore(SessionStore):
    """Session store holding documents in memory for a single process."""

    documents: dict[str, dict[str, object]] = field(default_factory=dict)
    fanout: SnapshotFanout = field(default_factory=SnapshotFanout)
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def create_if_absent(self, code: str, session: Session) -> bool:
        """Store the document unless the code is already taken."""
        with self._lock:
            if code in self.documents:
                return False
            document = session.to_document()
            document["version"] = 1
            self.documents[code] = document
            created = Session.from_document(document)
        self.fanout.publish(code, created)
        return True

    def read_once(self, code: str) -> Session | None:
        """Return the current document, if present."""
        with self._lock:
            document = self.documents.get(code)
            return Session.from_document(document) if document else None

    def update_fields(
        self,
        code: str,
        mutations: Sequence[FieldMutation],
        expected_version: int | None = None,
    ) -> Session | None:
        """Apply mutations atomically and bump the version."""
        with self._lock:
            document = self.documents.get(code)
            if document is None:
                return None
            version = int(document.get("version", 1))
            if expected_version is not None and expected_version != version:
                raise VersionConflict(code, expected_version, version)
            updated = apply_mutations(document, mutations)
            updated["version"] = version + 1
            session = Session.from_document(updated)
            self.documents[code] = updated
        self.fanout.publish(code, session)
        return session

    def delete(self, code: str, expected_version: int | None = None) -> bool:
        """Remove the document and notify subscribers."""
        with self._lock:
            document = self.documents.get(code)
            if document is None:
                return False
            version = int(document.get("version", 1))
            if expected_version is not None and expected_version != version:
                raise VersionConflict(code, expected_version, version)
            del self.documents[code]
        self.fanout.publish(code, None)
        return True

    def subscribe(self, code: str, on_change: SnapshotListener) -> Unsubscribe:
        """Register a listener and deliver the current document immediately."""
        unsubscribe = self.fanout.add(code, on_change)
        try:
            on_change(self.read_once(code))
        except Exception:
            unsubscribe()
            raise
        return unsubscribe
