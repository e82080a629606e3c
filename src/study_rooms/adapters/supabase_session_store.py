"""Supabase-backed session store."""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from study_rooms.domain.errors import StoreWriteFailed, VersionConflict
from study_rooms.domain.sessions import Session
from study_rooms.services.store import (
    FieldMutation,
    SessionStore,
    SnapshotFanout,
    SnapshotListener,
    Unsubscribe,
    apply_mutations,
)

_UNIQUE_VIOLATION = "23505"

_logger = logging.getLogger(__name__)


@dataclass
class SupabaseSessionStore(SessionStore):
    """Stores each session as one jsonb document row with a version column.

    Writes are compare-and-swap on the version column. Snapshots are pushed
    to subscribers registered in this process after each successful write.
    """

    client: Client
    table_name: str = "group_sessions"
    max_attempts: int = 5
    fanout: SnapshotFanout = field(default_factory=SnapshotFanout)

    def create_if_absent(self, code: str, session: Session) -> bool:
        """Insert the session row; a duplicate code means it is taken."""
        document = session.to_document()
        document["version"] = 1
        try:
            response = (
                self.client.table(self.table_name)
                .insert(
                    {
                        "code": code,
                        "document": document,
                        "version": 1,
                        "created_at": session.created_at.isoformat(),
                    }
                )
                .execute()
            )
        except APIError as exc:
            if exc.code == _UNIQUE_VIOLATION:
                return False
            raise StoreWriteFailed(f"Failed to create room {code}") from exc
        except httpx.HTTPError as exc:
            raise StoreWriteFailed(f"Failed to create room {code}") from exc
        if not response.data:
            raise StoreWriteFailed(f"Failed to create room {code}")
        self.fanout.publish(code, Session.from_document(document))
        return True

    def read_once(self, code: str) -> Session | None:
        """Return the session row, if present."""
        row = self._fetch_row(code)
        return _row_to_session(row) if row else None

    def update_fields(
        self,
        code: str,
        mutations: Sequence[FieldMutation],
        expected_version: int | None = None,
    ) -> Session | None:
        """Apply mutations to the latest document and write it back."""
        for _attempt in range(self.max_attempts):
            row = self._fetch_row(code)
            if row is None:
                return None
            version = int(row["version"])
            if expected_version is not None and expected_version != version:
                raise VersionConflict(code, expected_version, version)
            updated = apply_mutations(row["document"], mutations)
            updated["version"] = version + 1
            session = Session.from_document(updated)
            response = self._execute(
                lambda: self.client.table(self.table_name)
                .update(
                    {
                        "document": updated,
                        "version": version + 1,
                        "updated_at": datetime.now(tz=UTC).isoformat(),
                    }
                )
                .eq("code", code)
                .eq("version", version)
                .execute(),
                action=f"update room {code}",
            )
            if response.data:
                self.fanout.publish(code, session)
                return session
            _logger.info("Concurrent write on room, re-reading: code=%s", code)
        raise StoreWriteFailed(f"Gave up updating room {code} after contention")

    def delete(self, code: str, expected_version: int | None = None) -> bool:
        """Delete the session row, optionally only at a given version."""

        def run() -> Any:
            query = self.client.table(self.table_name).delete().eq("code", code)
            if expected_version is not None:
                query = query.eq("version", expected_version)
            return query.execute()

        response = self._execute(run, action=f"delete room {code}")
        if not response.data:
            if expected_version is not None:
                current = self._fetch_row(code)
                if current is not None:
                    raise VersionConflict(
                        code, expected_version, int(current["version"])
                    )
            return False
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

    def _fetch_row(self, code: str) -> dict[str, Any] | None:
        response = self._execute(
            lambda: self.client.table(self.table_name)
            .select("code, document, version")
            .eq("code", code)
            .limit(1)
            .execute(),
            action=f"read room {code}",
        )
        if not response.data:
            return None
        return response.data[0]

    def _execute(self, run: Callable[[], Any], action: str) -> Any:
        try:
            return run()
        except (APIError, httpx.HTTPError) as exc:
            raise StoreWriteFailed(f"Failed to {action}") from exc


def _row_to_session(row: dict[str, Any]) -> Session:
    document = dict(row["document"])
    document["version"] = int(row["version"])
    return Session.from_document(document)
