"""Tests for turning mentions into de-duplicated events."""

from __future__ import annotations

from datetime import date, datetime
from unittest.mock import MagicMock, patch

from mnemosync.core.models import EventKind, RawActionMention, RawDateMention, ScheduledEvent, StoreKind
from mnemosync.core.reconcile import EventReconciler
from mnemosync.core.store import InMemoryStore, StoreError


class TestReconcile:
    """Tests for EventReconciler.reconcile."""

    def test_dates_and_actions(self, reference_now: datetime) -> None:
        mentions = [RawDateMention(text="Dentist on Feb 16"), RawActionMention(text="take my pills")]
        events = EventReconciler().reconcile(mentions, reference_now=reference_now)

        assert [(e.label, e.iso_date, e.kind) for e in events] == [
            ("Dentist on Feb 16", "2026-02-16", EventKind.APPOINTMENT),
            ("take my pills", "2026-02-15", EventKind.REMINDER),
        ]
        assert events[0].needs_confirmation is False
        assert events[1].needs_confirmation is True

    def test_bullets_stripped_from_labels(self, reference_date: date) -> None:
        events = EventReconciler().reconcile([RawDateMention(text="📅 Dentist on Friday")], reference_now=reference_date)

        assert events[0].label == "Dentist on Friday"
        assert events[0].iso_date == "2026-02-20"

    def test_duplicates_within_batch(self, reference_date: date) -> None:
        mentions = [RawDateMention(text="Dentist on Friday"), RawDateMention(text="dentist on  friday.")]

        assert len(EventReconciler().reconcile(mentions, reference_now=reference_date)) == 1

    def test_empty_mentions_skipped(self, reference_date: date) -> None:
        mentions = [RawDateMention(text="   "), RawDateMention(text="📅")]

        assert EventReconciler().reconcile(mentions, reference_now=reference_date) == []

    def test_order_preserved(self, reference_date: date) -> None:
        mentions = [RawDateMention(text=label) for label in ("Lunch tomorrow", "Bingo on Monday", "Party next week")]
        events = EventReconciler().reconcile(mentions, reference_now=reference_date)

        assert [e.label for e in events] == ["Lunch tomorrow", "Bingo on Monday", "Party next week"]

    def test_existing_event_suppressed(self, reference_date: date) -> None:
        existing = [ScheduledEvent(iso_date="2026-02-16", label="Lunch tomorrow")]
        events = EventReconciler().reconcile([RawDateMention(text="lunch tomorrow")], existing, reference_date)

        assert events == []

    def test_same_label_other_date_kept(self, reference_date: date) -> None:
        """Test "lunch tomorrow" said on a later day is a new event."""
        existing = [ScheduledEvent(iso_date="2026-02-16", label="Lunch tomorrow")]
        events = EventReconciler().reconcile([RawDateMention(text="Lunch tomorrow")], existing, date(2026, 2, 16))

        assert [e.iso_date for e in events] == ["2026-02-17"]

    def test_dedupe_against_existing_disabled(self, reference_date: date) -> None:
        existing = [ScheduledEvent(iso_date="2026-02-16", label="Lunch tomorrow")]
        reconciler = EventReconciler(dedupe_against_existing=False)

        assert len(reconciler.reconcile([RawDateMention(text="Lunch tomorrow")], existing, reference_date)) == 1


class TestReconcileAndPersist:
    """Tests for persisting reconciled events."""

    def test_idempotent(self, memory_store: InMemoryStore, reference_date: date) -> None:
        """Test reconciling the same mentions twice stores nothing new."""
        mentions = [RawDateMention(text="Dentist on Friday"), RawActionMention(text="Water the plants")]
        reconciler = EventReconciler()

        first = reconciler.reconcile_and_persist(mentions, memory_store, reference_date)
        second = reconciler.reconcile_and_persist(mentions, memory_store, reference_date)

        assert len(first) == 2
        assert second == []
        assert len(memory_store.list_all(StoreKind.EVENTS)) == 2

    def test_failed_write_drops_only_that_event(self, reference_date: date) -> None:
        store = MagicMock()
        store.list_all.return_value = []
        store.upsert.side_effect = [StoreError("disk full"), None]
        mentions = [RawDateMention(text="Dentist on Friday"), RawDateMention(text="Lunch tomorrow")]

        stored = EventReconciler().reconcile_and_persist(mentions, store, reference_date)

        assert [e.label for e in stored] == ["Lunch tomorrow"]
        assert store.upsert.call_count == 2

    def test_unreadable_store_still_persists(self, reference_date: date) -> None:
        store = MagicMock()
        store.list_all.side_effect = StoreError("corrupt events.json")

        stored = EventReconciler().reconcile_and_persist([RawDateMention(text="Lunch tomorrow")], store, reference_date)

        assert len(stored) == 1
        store.upsert.assert_called_once_with(StoreKind.EVENTS, stored[0])


class TestReferenceTime:
    """Tests for the moment relative phrases are resolved against."""

    def test_defaults_to_local_now(self) -> None:
        late_evening = datetime(2026, 2, 15, 23, 30).astimezone()
        mentions = [RawDateMention(text="Lunch today"), RawDateMention(text="Bingo tomorrow")]

        with patch("mnemosync.core.reconcile.local_now", return_value=late_evening) as now:
            events = EventReconciler().reconcile(mentions)

        now.assert_called_once()
        assert [e.iso_date for e in events] == ["2026-02-15", "2026-02-16"]

    def test_explicit_reference_skips_clock(self, reference_now: datetime) -> None:
        with patch("mnemosync.core.reconcile.local_now") as now:
            events = EventReconciler().reconcile([RawDateMention(text="Lunch today")], reference_now=reference_now)

        now.assert_not_called()
        assert events[0].iso_date == "2026-02-15"
