"""Event Reconciler: mentions to de-duplicated ScheduledEvents.

Each mention is resolved to a concrete date, cleaned of list markers and
turned into a candidate event. Candidates are dropped when:

- a candidate with the same normalised label was already accepted in this
  batch, or
- (with ``dedupe_against_existing``) a stored event has the same normalised
  label and the same date.

Output order follows input order. Reconciling the same mentions twice
against the events persisted by the first pass yields nothing new.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import date, datetime

from mnemosync.core.models import (
    RawMention,
    ScheduledEvent,
    StoreKind,
    local_now,
    normalize_label,
)
from mnemosync.core.store import PersistenceStore, StoreError
from mnemosync.parsers.dates import resolve_detailed
from mnemosync.parsers.response import strip_bullet

logger = logging.getLogger(__name__)


class EventReconciler:
    """Turns raw mentions into events worth persisting.

    Attributes:
        dedupe_against_existing: Also skip candidates matching a stored event
            on (normalised label, date).
    """

    def __init__(self, dedupe_against_existing: bool = True) -> None:
        self.dedupe_against_existing = dedupe_against_existing

    def reconcile(
        self,
        mentions: Iterable[RawMention],
        existing_events: Sequence[ScheduledEvent] = (),
        reference_now: date | datetime | None = None,
    ) -> list[ScheduledEvent]:
        """Build the events to persist for one batch of mentions.

        Args:
            mentions: Date and action mentions in extraction order.
            existing_events: Events already stored.
            reference_now: Moment the mentions were spoken. Defaults to the
                local time; aware datetimes are read on the local calendar.

        Returns:
            New events, in mention order.
        """
        reference_now = reference_now or local_now()
        known = set()
        if self.dedupe_against_existing:
            known = {(e.normalized_label, e.iso_date) for e in existing_events}

        accepted_labels: set[str] = set()
        events: list[ScheduledEvent] = []

        for mention in mentions:
            label = strip_bullet(mention.text)
            key = normalize_label(label)
            if not key:
                continue
            if key in accepted_labels:
                logger.debug("Skipping duplicate mention within batch")
                continue

            resolved = resolve_detailed(label, reference_now)
            iso_date = resolved.date.isoformat()
            if (key, iso_date) in known:
                logger.debug(f"Skipping mention already stored for {iso_date}")
                continue

            accepted_labels.add(key)
            events.append(
                ScheduledEvent(
                    iso_date=iso_date,
                    label=label,
                    kind=mention.kind,
                    needs_confirmation=not resolved.confident,
                )
            )

        if events:
            logger.info(f"Reconciled {len(events)} new event(s)")
        return events

    def persist(self, events: Iterable[ScheduledEvent], store: PersistenceStore) -> list[ScheduledEvent]:
        """Write events one by one; a failed write drops only that event.

        Returns:
            The events that were stored.
        """
        stored = []
        for event in events:
            try:
                store.upsert(StoreKind.EVENTS, event)
            except StoreError as e:
                logger.warning(f"Dropping event {event.id}: {e}")
                continue
            stored.append(event)
        return stored

    def reconcile_and_persist(
        self,
        mentions: Iterable[RawMention],
        store: PersistenceStore,
        reference_now: date | datetime | None = None,
    ) -> list[ScheduledEvent]:
        """Reconcile against the store's events and persist the result."""
        try:
            existing = store.list_all(StoreKind.EVENTS)
        except StoreError as e:
            logger.warning(f"Could not read stored events, deduplicating within batch only: {e}")
            existing = []
        events = self.reconcile(mentions, existing, reference_now)
        return self.persist(events, store)
