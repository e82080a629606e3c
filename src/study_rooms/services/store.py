"""Session store interface and field-level mutation helpers."""

import logging
from collections.abc import Callable, Hashable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Protocol, TypeVar

from study_rooms.domain.sessions import Session

_logger = logging.getLogger(__name__)

FieldPath = tuple[str, ...]
SnapshotListener = Callable[[Session | None], None]
Unsubscribe = Callable[[], None]

T = TypeVar("T")


@dataclass(frozen=True)
class SetField:
    """Replace the value at a document path."""

    path: FieldPath
    value: object


@dataclass(frozen=True)
class AppendItems:
    """Append items to the sequence at a document path."""

    path: FieldPath
    items: tuple[object, ...]


@dataclass(frozen=True)
class DeleteField:
    """Remove the key at a document path, if present."""

    path: FieldPath


FieldMutation = SetField | AppendItems | DeleteField


class SessionStore(Protocol):
    """Document storage for sessions keyed by room code."""

    def create_if_absent(self, code: str, session: Session) -> bool:
        """Persist a new session; return False if the code is taken."""

    def read_once(self, code: str) -> Session | None:
        """Return the current session, if present."""

    def update_fields(
        self,
        code: str,
        mutations: Sequence[FieldMutation],
        expected_version: int | None = None,
    ) -> Session | None:
        """Apply field mutations and return the written session.

        Returns None when the session does not exist. Raises VersionConflict
        when expected_version is given and no longer current.
        """

    def delete(self, code: str, expected_version: int | None = None) -> bool:
        """Delete a session; return False if it was already absent."""

    def subscribe(self, code: str, on_change: SnapshotListener) -> Unsubscribe:
        """Deliver the current session now and again after every write."""


def apply_mutations(
    document: Mapping[str, object], mutations: Iterable[FieldMutation]
) -> dict[str, object]:
    """Return a new document with the mutations applied in order.

    Only containers along each mutated path are copied; the input is never
    modified.
    """
    result = dict(document)
    for mutation in mutations:
        if not mutation.path:
            raise ValueError("Mutation path must not be empty")
        if isinstance(mutation, SetField):
            result = _set_path(result, mutation.path, mutation.value)
        elif isinstance(mutation, AppendItems):
            existing = _get_path(result, mutation.path)
            current = list(existing) if isinstance(existing, list | tuple) else []
            result = _set_path(result, mutation.path, [*current, *mutation.items])
        elif isinstance(mutation, DeleteField):
            result = _delete_path(result, mutation.path)
        else:
            raise TypeError(f"Unsupported mutation: {mutation!r}")
    return result


def _get_path(document: Mapping[str, object], path: FieldPath) -> object | None:
    node: object = document
    for key in path:
        if not isinstance(node, Mapping):
            return None
        node = node.get(key)
    return node


def _set_path(
    document: Mapping[str, object], path: FieldPath, value: object
) -> dict[str, object]:
    head, *rest = path
    copied = dict(document)
    if not rest:
        copied[head] = value
        return copied
    child = copied.get(head)
    copied[head] = _set_path(
        child if isinstance(child, Mapping) else {}, tuple(rest), value
    )
    return copied


def _delete_path(
    document: Mapping[str, object], path: FieldPath
) -> dict[str, object]:
    head, *rest = path
    copied = dict(document)
    if not rest:
        copied.pop(head, None)
        return copied
    child = copied.get(head)
    if not isinstance(child, Mapping):
        return copied
    copied[head] = _delete_path(child, tuple(rest))
    return copied


def append_if_absent(
    items: Sequence[T], item: T, key: Callable[[T], Hashable]
) -> tuple[T, ...]:
    """Return items with item appended unless an element has the same key."""
    item_key = key(item)
    if any(key(existing) == item_key for existing in items):
        return tuple(items)
    return (*items, item)


def remove_by_key(
    items: Sequence[T], item_key: Hashable, key: Callable[[T], Hashable]
) -> tuple[T, ...]:
    """Return items without the elements whose key matches."""
    return tuple(existing for existing in items if key(existing) != item_key)


def without_key(mapping: Mapping[str, T], item_key: str) -> dict[str, T]:
    """Return a copy of mapping without item_key."""
    return {key: value for key, value in mapping.items() if key != item_key}


@dataclass
class SnapshotFanout:
    """In-process registry of snapshot listeners per room code."""

    _listeners: dict[str, list[SnapshotListener]] = field(default_factory=dict)

    def add(self, code: str, listener: SnapshotListener) -> Unsubscribe:
        """Register a listener and return a handle that removes it."""
        self._listeners.setdefault(code, []).append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(code)
            if not listeners or listener not in listeners:
                return
            listeners.remove(listener)
            if not listeners:
                self._listeners.pop(code, None)

        return unsubscribe

    def publish(self, code: str, session: Session | None) -> None:
        """Deliver a snapshot to every listener of the code."""
        for listener in list(self._listeners.get(code, [])):
            try:
                listener(session)
            except Exception:
                _logger.exception("Snapshot listener failed: code=%s", code)

    def listener_count(self, code: str) -> int:
        return len(self._listeners.get(code, []))
