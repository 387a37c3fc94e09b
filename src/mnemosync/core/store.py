"""Memory Store: local persistence for events, conversations and visitors.

The analysis pipeline only depends on the narrow PersistenceStore protocol.
Two implementations are provided:

- InMemoryStore: dict-backed, used by tests and one-shot CLI runs.
- JsonFileStore: one JSON file per record kind under a data directory.
  Writes go to a temp file first and are atomically renamed into place.

Records are keyed by their ``id``. Visitor profiles are additionally indexed
by normalised name so ``upsert_visitor`` never creates duplicates.

Example:
    >>> store = JsonFileStore(Path("~/.mnemosync").expanduser())
    >>> store.upsert(StoreKind.EVENTS, event)
    >>> [e.label for e in store.list_all(StoreKind.EVENTS)]
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ValidationError

from mnemosync.core.models import (
    ConversationRecord,
    ScheduledEvent,
    StoreKind,
    VisitorProfile,
    normalize_label,
    utc_now,
)


RECORD_TYPES: dict[StoreKind, type[BaseModel]] = {
    StoreKind.EVENTS: ScheduledEvent,
    StoreKind.CONVERSATIONS: ConversationRecord,
    StoreKind.VISITORS: VisitorProfile,
}


class StoreError(Exception):
    """Raised when the store cannot read or write a record."""

    pass


@runtime_checkable
class PersistenceStore(Protocol):
    """Key-value store for the three record kinds."""

    def upsert(self, kind: StoreKind, record: BaseModel) -> None: ...

    def list_all(self, kind: StoreKind) -> list[BaseModel]: ...

    def get(self, kind: StoreKind, record_id: str) -> BaseModel | None: ...

    def delete(self, kind: StoreKind, record_id: str) -> bool: ...

    def clear(self, kind: StoreKind) -> int: ...

    def find_visitor(self, name: str) -> VisitorProfile | None: ...


def _check_type(kind: StoreKind, record: BaseModel) -> None:
    expected = RECORD_TYPES[kind]
    if not isinstance(record, expected):
        raise StoreError(f"{kind.value} store expects {expected.__name__}, got {type(record).__name__}")


def _sort_for_listing(kind: StoreKind, records: list[BaseModel]) -> list[BaseModel]:
    # Newest first for conversations and visitors, chronological for events
    if kind is StoreKind.EVENTS:
        return sorted(records, key=lambda r: (r.iso_date, r.created_at))
    if kind is StoreKind.CONVERSATIONS:
        return sorted(records, key=lambda r: r.timestamp, reverse=True)
    return sorted(records, key=lambda r: r.last_seen, reverse=True)


class InMemoryStore:
    """Dict-backed store. Nothing survives the process."""

    def __init__(self) -> None:
        self._records: dict[StoreKind, dict[str, BaseModel]] = {kind: {} for kind in StoreKind}

    def upsert(self, kind: StoreKind, record: BaseModel) -> None:
        _check_type(kind, record)
        self._records[kind][record.id] = record

    def list_all(self, kind: StoreKind) -> list[BaseModel]:
        return _sort_for_listing(kind, list(self._records[kind].values()))

    def get(self, kind: StoreKind, record_id: str) -> BaseModel | None:
        return self._records[kind].get(record_id)

    def delete(self, kind: StoreKind, record_id: str) -> bool:
        return self._records[kind].pop(record_id, None) is not None

    def clear(self, kind: StoreKind) -> int:
        count = len(self._records[kind])
        self._records[kind].clear()
        return count

    def find_visitor(self, name: str) -> VisitorProfile | None:
        return _find_visitor(self, name)


class JsonFileStore:
    """Store that keeps each record kind in ``<data_dir>/<kind>.json``.

    The whole collection is rewritten on every change; collections are
    small (tens to hundreds of records) so this keeps the format trivially
    inspectable.

    Attributes:
        data_dir: Directory holding the JSON files.
    """

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir).expanduser()
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Cannot create data directory {self.data_dir}: {e}") from e

    def _path(self, kind: StoreKind) -> Path:
        return self.data_dir / f"{kind.value}.json"

    def _load(self, kind: StoreKind) -> dict[str, BaseModel]:
        path = self._path(kind)
        if not path.exists():
            return {}

        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Failed to read {path.name}: {type(e).__name__}") from e
        if not isinstance(raw, list):
            raise StoreError(f"Failed to read {path.name}: expected a list, got {type(raw).__name__}")

        record_type = RECORD_TYPES[kind]
        records: dict[str, BaseModel] = {}
        for item in raw:
            try:
                record = record_type.model_validate(item)
            except ValidationError:
                self._logger.warning(f"Skipping malformed {kind.value} record in {path.name}")
                continue
            records[record.id] = record
        return records

    def _save(self, kind: StoreKind, records: dict[str, BaseModel]) -> None:
        path = self._path(kind)
        payload = json.dumps(
            [record.model_dump(mode="json") for record in records.values()],
            indent=2,
            ensure_ascii=False,
        )

        fd, temp_path = tempfile.mkstemp(dir=self.data_dir, suffix=".tmp", prefix=f".{kind.value}_")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            Path(temp_path).replace(path)
        except OSError as e:
            Path(temp_path).unlink(missing_ok=True)
            raise StoreError(f"Failed to write {path.name}: {type(e).__name__}") from e

    def upsert(self, kind: StoreKind, record: BaseModel) -> None:
        _check_type(kind, record)
        records = self._load(kind)
        records[record.id] = record
        self._save(kind, records)
        self._logger.debug(f"Stored {kind.value} record {record.id}")

    def list_all(self, kind: StoreKind) -> list[BaseModel]:
        return _sort_for_listing(kind, list(self._load(kind).values()))

    def get(self, kind: StoreKind, record_id: str) -> BaseModel | None:
        return self._load(kind).get(record_id)

    def delete(self, kind: StoreKind, record_id: str) -> bool:
        records = self._load(kind)
        if records.pop(record_id, None) is None:
            return False
        self._save(kind, records)
        return True

    def clear(self, kind: StoreKind) -> int:
        records = self._load(kind)
        if records:
            self._save(kind, {})
            self._logger.info(f"Cleared {len(records)} {kind.value} records")
        return len(records)

    def find_visitor(self, name: str) -> VisitorProfile | None:
        return _find_visitor(self, name)


def _find_visitor(store: PersistenceStore, name: str) -> VisitorProfile | None:
    key = normalize_label(name)
    for profile in store.list_all(StoreKind.VISITORS):
        if profile.normalized_name == key:
            return profile
    return None


def upsert_visitor(
    store: PersistenceStore,
    name: str,
    relation: str | None = None,
    context: str | None = None,
    seen_at: datetime | None = None,
) -> VisitorProfile:
    """Create or refresh the profile for a visitor.

    An existing profile (matched case-insensitively by name) keeps its id and
    ``first_seen``; ``last_seen`` is always updated. A relation of None or the
    generic "visitor" never overwrites a more specific stored relation.

    Args:
        store: The memory store.
        name: Visitor name as reported.
        relation: Relationship to the patient, if known.
        context: Latest conversation context to remember.
        seen_at: Time of the sighting (defaults to now).

    Returns:
        The stored profile.
    """
    seen_at = seen_at or utc_now()
    existing = store.find_visitor(name)

    if existing is None:
        profile = VisitorProfile(
            name=name.strip(),
            relation=relation or "visitor",
            first_seen=seen_at,
            last_seen=seen_at,
            context=context or "",
        )
    else:
        updates: dict[str, object] = {"last_seen": seen_at}
        if relation and relation.lower() != "visitor":
            updates["relation"] = relation
        if context:
            updates["context"] = context
        profile = existing.model_copy(update=updates)

    store.upsert(StoreKind.VISITORS, profile)
    return profile
