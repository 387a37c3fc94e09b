"""Core data model, memory store and event reconciliation."""

from mnemosync.core.models import (
    ConversationRecord,
    ConversationTurn,
    EventKind,
    ExtractedFacts,
    MemoryLogEntry,
    RawActionMention,
    RawDateMention,
    ScheduledEvent,
    StoreKind,
    VisitorIdentity,
    VisitorProfile,
)
from mnemosync.core.store import InMemoryStore, JsonFileStore, PersistenceStore, StoreError, upsert_visitor

__all__ = [
    "ConversationRecord",
    "ConversationTurn",
    "EventKind",
    "ExtractedFacts",
    "InMemoryStore",
    "JsonFileStore",
    "MemoryLogEntry",
    "PersistenceStore",
    "RawActionMention",
    "RawDateMention",
    "ScheduledEvent",
    "StoreError",
    "StoreKind",
    "VisitorIdentity",
    "VisitorProfile",
    "upsert_visitor",
]
