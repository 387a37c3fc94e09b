"""Conversation companion: turn-taking, periodic analysis and stop handling.

A ``ConversationSession`` collects utterances into a transcript, decides who
is speaking, and periodically asks the information sources for a summary.

Speaker attribution is an explicit state machine:

    IDLE --start--> LISTENING_AS_PRIMARY <--silence / switch / sighting--> LISTENING_AS_VISITOR
      ^                                                                            |
      +------------------------------------stop------------------------------------+

Turn-taking is asymmetric: 1.2 s of silence after the patient is enough to
assume the visitor answered, but the visitor gets 4 s before the turn passes
back. A face sighting of someone other than the patient switches to the
visitor immediately; a sighting of the patient switches back only when the
speaker was not set by hand and the visitor has held the turn for 15 s.

Analysis runs on the first turn and then every N turns (default 3). At most
one analysis is in flight; requests arriving meanwhile are dropped. Each
analysis carries the session generation so results from a previous session
are discarded.

Analysis tiers: primary model -> secondary model -> heuristic extractor.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import datetime
from enum import Enum

from mnemosync.ai.prompts import CONVERSATION_SUMMARY_PROMPT
from mnemosync.ai.tiers import AnalysisRequest, InformationSource, TieredAnalyzer
from mnemosync.config import CompanionConfig
from mnemosync.core.models import (
    DEFAULT_SUMMARY,
    ConversationRecord,
    ConversationTurn,
    ExtractedFacts,
    ScheduledEvent,
    StoreKind,
    VisitorIdentity,
)
from mnemosync.core.reconcile import EventReconciler
from mnemosync.core.store import PersistenceStore, StoreError, upsert_visitor
from mnemosync.parsers import heuristics
from mnemosync.parsers.response import apply_transcript_corrections, merge_heuristic_dates, parse

logger = logging.getLogger(__name__)

PRIMARY_LABEL = "You"
VISITOR_LABEL = "Visitor"
FALLBACK_SUMMARY_CHARS = 200


# =============================================================================
# Speaker State Machine
# =============================================================================


class SpeakerState(str, Enum):
    """Who the companion believes is speaking."""

    IDLE = "idle"
    LISTENING_AS_PRIMARY = "listening_as_primary"
    LISTENING_AS_VISITOR = "listening_as_visitor"


class SpeakerStateMachine:
    """Tracks the current speaker.

    Attributes:
        state: Current SpeakerState.
        manual_lock: True after an explicit ``switch``; cleared by natural
            turn-taking or a new visitor sighting.
        primary_identity: Name of the first person seen while listening,
            taken to be the patient.
    """

    def __init__(
        self,
        primary_pause_seconds: float = 1.2,
        visitor_pause_seconds: float = 4.0,
        visitor_lock_seconds: float = 15.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.primary_pause_seconds = primary_pause_seconds
        self.visitor_pause_seconds = visitor_pause_seconds
        self.visitor_lock_seconds = visitor_lock_seconds
        self._clock = clock

        self.state = SpeakerState.IDLE
        self.manual_lock = False
        self.primary_identity: str | None = None
        self._last_change = clock()

    @property
    def listening(self) -> bool:
        return self.state is not SpeakerState.IDLE

    @property
    def speaker_label(self) -> str:
        return VISITOR_LABEL if self.state is SpeakerState.LISTENING_AS_VISITOR else PRIMARY_LABEL

    def _set(self, state: SpeakerState) -> bool:
        if state is self.state:
            return False
        logger.debug(f"Speaker: {self.state.value} -> {state.value}")
        self.state = state
        self._last_change = self._clock()
        return True

    def start(self) -> None:
        self.manual_lock = False
        self.primary_identity = None
        self._set(SpeakerState.LISTENING_AS_PRIMARY)

    def stop(self) -> None:
        self._set(SpeakerState.IDLE)

    def silence_elapsed(self, seconds: float) -> bool:
        """Hand the turn over if the pause exceeded the current speaker's threshold.

        Returns:
            True if the speaker changed.
        """
        if self.state is SpeakerState.LISTENING_AS_PRIMARY:
            threshold, target = self.primary_pause_seconds, SpeakerState.LISTENING_AS_VISITOR
        elif self.state is SpeakerState.LISTENING_AS_VISITOR:
            threshold, target = self.visitor_pause_seconds, SpeakerState.LISTENING_AS_PRIMARY
        else:
            return False

        if seconds <= threshold:
            return False
        self.manual_lock = False
        return self._set(target)

    def switch(self, target: SpeakerState | None = None) -> bool:
        """Set the speaker by hand (toggles when no target is given)."""
        if not self.listening:
            return False
        if target is None:
            target = (
                SpeakerState.LISTENING_AS_PRIMARY
                if self.state is SpeakerState.LISTENING_AS_VISITOR
                else SpeakerState.LISTENING_AS_VISITOR
            )
        if target is SpeakerState.IDLE:
            raise ValueError("Use stop() to stop listening")
        self.manual_lock = True
        self._last_change = self._clock()
        self.state = target
        return True

    def identity_seen(self, name: str) -> bool:
        """React to a face sighting.

        Returns:
            True if the sighting switched the speaker to the visitor.
        """
        if not self.listening or not name:
            return False

        if self.primary_identity is None:
            self.primary_identity = name
            self._set(SpeakerState.LISTENING_AS_PRIMARY)
            return False

        is_patient = name.lower() == self.primary_identity.lower()
        if not is_patient and self.state is SpeakerState.LISTENING_AS_PRIMARY:
            self.manual_lock = False
            return self._set(SpeakerState.LISTENING_AS_VISITOR)

        if is_patient and self.state is SpeakerState.LISTENING_AS_VISITOR:
            held_for = self._clock() - self._last_change
            if not self.manual_lock and held_for > self.visitor_lock_seconds:
                self._set(SpeakerState.LISTENING_AS_PRIMARY)
        return False


# =============================================================================
# Conversation Session
# =============================================================================


class ConversationSession:
    """One listening session with a visitor.

    Attributes:
        turns: Transcript so far.
        summary: Latest summary, None until an analysis produced one.
        visitor: Visitor identity, once known.
        generation: Incremented by ``start`` and ``clear``.
        events: Events persisted during this session.
        detected_tasks: Tasks spotted in individual utterances as they
            arrive, prefixed with a calendar or check-mark symbol.
        quota_exceeded: True if the last analysis hit a rate limit.
    """

    def __init__(
        self,
        store: PersistenceStore,
        primary: InformationSource | None = None,
        secondary: InformationSource | None = None,
        config: CompanionConfig | None = None,
        analyzer: TieredAnalyzer | None = None,
        reconciler: EventReconciler | None = None,
        on_update: Callable[[str, VisitorIdentity | None], None] | None = None,
        on_task: Callable[[str], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or CompanionConfig()
        self.store = store
        self.primary = primary
        self.secondary = secondary
        self.analyzer = analyzer or TieredAnalyzer()
        self.reconciler = reconciler or EventReconciler(self.config.dedupe_against_existing)
        self.on_update = on_update
        self.on_task = on_task
        self._clock = clock

        self.speaker = SpeakerStateMachine(
            self.config.primary_pause_seconds,
            self.config.visitor_pause_seconds,
            self.config.visitor_lock_seconds,
            clock=clock,
        )

        self.turns: list[ConversationTurn] = []
        self.summary: str | None = None
        self.visitor: VisitorIdentity | None = None
        self.generation = 0
        self.events: list[ScheduledEvent] = []
        self.detected_tasks: list[str] = []
        self.quota_exceeded = False

        self._in_flight = False
        self._pending: set[asyncio.Task[ExtractedFacts | None]] = set()
        self._last_speech: float | None = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def listening(self) -> bool:
        return self.speaker.listening

    @property
    def is_analyzing(self) -> bool:
        return self._in_flight

    def start(self) -> None:
        """Begin a new conversation, forgetting the previous one."""
        self.generation += 1
        self.turns = []
        self.summary = None
        self.visitor = None
        self.events = []
        self.detected_tasks = []
        self.quota_exceeded = False
        self._last_speech = None
        self.speaker.start()
        logger.info("Listening started")

    def clear(self) -> None:
        """Drop everything heard so far but keep listening.

        The visitor stays identified; stored events are not touched.
        """
        self.generation += 1
        self.turns = []
        self.summary = None
        self.events = []
        self.detected_tasks = []
        self._last_speech = None

    async def stop(self) -> ConversationRecord | None:
        """Stop listening and save the conversation.

        Waits for any analysis in flight. If no summary was produced yet, one
        more analysis runs; if that still yields nothing, a plain excerpt of
        the transcript is saved as the summary.

        Returns:
            The saved record, or None if nothing was said.
        """
        self.speaker.stop()
        await self.drain()
        if not self.turns:
            logger.info("Listening stopped; nothing was said")
            return None

        if self.summary is None:
            await self.analyze()
        summary = self.summary or self._fallback_summary()
        if self.summary is None:
            self.summary = summary
            self._notify(summary)

        record = ConversationRecord(
            participants=[PRIMARY_LABEL] + ([self.visitor.name] if self.visitor else []),
            summary=summary,
            transcript=list(self.turns),
        )
        try:
            self.store.upsert(StoreKind.CONVERSATIONS, record)
            if self.visitor:
                upsert_visitor(self.store, self.visitor.name, self.visitor.relation, context=summary)
        except StoreError as e:
            logger.warning(f"Could not save conversation: {e}")

        logger.info(f"Listening stopped; saved conversation with {len(self.turns)} turn(s)")
        return record

    async def drain(self) -> None:
        """Wait for background analyses to finish."""
        while self._pending:
            results = await asyncio.gather(*list(self._pending), return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error(f"Conversation analysis crashed: {type(result).__name__}: {result}")

    # -------------------------------------------------------------------------
    # Input
    # -------------------------------------------------------------------------

    async def hear(self, text: str, pause_seconds: float | None = None) -> ConversationTurn | None:
        """Add a finalised utterance to the transcript.

        Args:
            text: The utterance.
            pause_seconds: Silence before it. Measured with the session clock
                when not given.

        Returns:
            The new turn, or None when not listening or the text is blank.
        """
        text = text.strip()
        if not text or not self.listening:
            return None

        now = self._clock()
        if pause_seconds is None and self._last_speech is not None:
            pause_seconds = now - self._last_speech
        if self.turns and pause_seconds is not None:
            self.speaker.silence_elapsed(pause_seconds)
        self._last_speech = now

        turn = ConversationTurn(speaker=self._current_speaker_name(), text=text)
        self.turns.append(turn)

        self._extract_tasks(text)

        count = len(self.turns)
        if count == 1 or count % self.config.analyze_every_n_turns == 0:
            self._request_analysis()
        return turn

    def switch_speaker(self, target: SpeakerState | None = None) -> None:
        """Manual speaker switch from the user."""
        self.speaker.switch(target)

    def observe_identity(self, identity: VisitorIdentity) -> None:
        """React to a face identified by the scene companion."""
        if self.speaker.identity_seen(identity.name):
            self.set_visitor(identity)

    def set_visitor(self, identity: VisitorIdentity) -> None:
        """Record the visitor and relabel their earlier turns."""
        self.visitor = identity
        if identity.name.lower() in ("the visitor", VISITOR_LABEL.lower()):
            return
        self.turns = [
            turn.model_copy(update={"speaker": identity.name}) if turn.speaker == VISITOR_LABEL else turn
            for turn in self.turns
        ]

    def _current_speaker_name(self) -> str:
        if self.speaker.state is SpeakerState.LISTENING_AS_VISITOR:
            if self.visitor and self.visitor.name.lower() != "the visitor":
                return self.visitor.name
            return VISITOR_LABEL
        return PRIMARY_LABEL

    def _extract_tasks(self, text: str) -> None:
        found = heuristics.extract(text)
        tasks = [f"📅 {d}" for d in found.dates] + [f"✅ {a}" for a in found.actions]
        for task in tasks:
            if task not in self.detected_tasks:
                self.detected_tasks.append(task)
                logger.info(f"Detected task: {task}")
                if self.on_task:
                    self.on_task(task)

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------

    def _request_analysis(self) -> None:
        if self._in_flight:
            logger.debug("Analysis already in flight; request dropped")
            return
        self._in_flight = True
        task = asyncio.get_running_loop().create_task(self._run_analysis(list(self.turns), self.generation))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def analyze(self) -> ExtractedFacts | None:
        """Analyse the current transcript now.

        Returns:
            The applied facts, or None if an analysis was already in flight,
            nothing was said, or the session moved on meanwhile.
        """
        if self._in_flight or not self.turns:
            return None
        self._in_flight = True
        return await self._run_analysis(list(self.turns), self.generation)

    async def _run_analysis(self, turns: list[ConversationTurn], generation: int) -> ExtractedFacts | None:
        try:
            plain_text = ". ".join(turn.text.rstrip(".") for turn in turns)
            raw_text = await self._ask_sources(turns, plain_text)

            if generation != self.generation:
                logger.info("Discarding analysis from a previous session")
                return None

            facts = parse(raw_text)
            facts = merge_heuristic_dates(facts, heuristics.extract(plain_text).dates)
            self._apply(facts, turns[-1].timestamp if turns else None)
            return facts
        finally:
            self._in_flight = False

    async def _ask_sources(self, turns: list[ConversationTurn], plain_text: str) -> str:
        visitor = self.visitor
        if self.primary is not None:
            prompt = CONVERSATION_SUMMARY_PROMPT.render(
                patient_name=self.config.patient_name,
                visitor_name=visitor.name if visitor else "the visitor",
                visitor_relation=visitor.relation if visitor else "visitor",
                conversation="\n".join(turn.format_line() for turn in turns),
            )
            request = AnalysisRequest(purpose="conversation", prompt=prompt, context=plain_text)
            result = await self.analyzer.analyze(request, self.primary, self.secondary)
            self.quota_exceeded = result.quota_exceeded
            if result.ok:
                return result.raw_text
            logger.warning("All model tiers failed; using heuristic extraction")

        return heuristics.fallback_response(plain_text, visitor)

    def _apply(self, facts: ExtractedFacts, spoken_at: datetime | None = None) -> None:
        if facts.corrected_transcript:
            self.turns = apply_transcript_corrections(self.turns, facts.corrected_transcript)
        if facts.visitor and facts.visitor.name.lower() != "the visitor":
            self.set_visitor(facts.visitor)

        if facts.summary != DEFAULT_SUMMARY:
            self.summary = facts.summary
            self._notify(facts.summary)

        stored = self.reconciler.reconcile_and_persist(facts.mentions, self.store, spoken_at)
        self.events.extend(stored)

    def _notify(self, summary: str) -> None:
        if self.on_update:
            self.on_update(summary, self.visitor)

    def _fallback_summary(self) -> str:
        text = " | ".join(turn.format_line() for turn in self.turns)
        excerpt = text[:FALLBACK_SUMMARY_CHARS]
        if len(text) > FALLBACK_SUMMARY_CHARS:
            excerpt += "..."
        return f"Conversation recorded: {excerpt}"
