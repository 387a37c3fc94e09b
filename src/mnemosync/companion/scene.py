"""Scene companion: who is in front of the camera right now.

``SceneWatcher.scan`` captures one image, asks the information sources who
is visible and updates what the patient is shown:

- identification: remembered in the sighting history (sent as context on the
  next scan), stored as a visitor profile, logged to the memory log;
- no person: the summary is logged once, repeats are suppressed;
- rate limit: an advisory status, the previous identification stays;
- any other failure: "Vision error" status, nothing else changes.

Scene analysis has no heuristic tier. ``AutoScanner`` repeats ``scan`` on a
fixed interval.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from mnemosync.ai.prompts import SCENE_ANALYSIS_PROMPT
from mnemosync.ai.tiers import AnalysisRequest, InformationSource, TieredAnalyzer
from mnemosync.companion.capture import SceneCapture
from mnemosync.config import CompanionConfig
from mnemosync.core.models import DEFAULT_SUMMARY, MemoryLogEntry, StoreKind, VisitorIdentity, utc_now
from mnemosync.core.store import PersistenceStore, StoreError, upsert_visitor
from mnemosync.parsers.response import parse

logger = logging.getLogger(__name__)

STATUS_STANDBY = "Standby"
STATUS_WATCHING = "Watching"
STATUS_ANALYZING = "Analyzing..."
STATUS_QUOTA = "Quota exceeded: please wait a minute before scanning again."
STATUS_VISION_ERROR = "Vision error"
STATUS_NO_IMAGE = "Camera unavailable"


@dataclass(frozen=True)
class Identification:
    """A person recognised in a scan."""

    name: str
    relation: str
    summary: str


@dataclass(frozen=True)
class ScanOutcome:
    """What one scan produced.

    Attributes:
        status: Status text after the scan.
        identification: Person identified by this scan, if any.
        summary: Summary text of this scan (may describe an empty room).
        nudges: Routine reminders suggested by this scan.
        quota_exceeded: The scan was rate limited.
        used_fallback: The secondary source answered.
    """

    status: str
    identification: Identification | None = None
    summary: str = ""
    nudges: tuple[str, ...] = ()
    quota_exceeded: bool = False
    used_fallback: bool = False


class SceneWatcher:
    """Runs scene scans and keeps the last known good state.

    Attributes:
        status: Current status text.
        identified: Latest identification (kept across failed scans).
        nudges: Latest routine reminders.
        memory_log: Most recent activity, newest first.
        history: Sighting history sent as context with each scan.
    """

    def __init__(
        self,
        capture: SceneCapture,
        primary: InformationSource,
        store: PersistenceStore,
        secondary: InformationSource | None = None,
        config: CompanionConfig | None = None,
        analyzer: TieredAnalyzer | None = None,
        history: str = "",
        on_identified: Callable[[VisitorIdentity], None] | None = None,
    ) -> None:
        self.config = config or CompanionConfig()
        self.capture = capture
        self.primary = primary
        self.secondary = secondary
        self.store = store
        self.analyzer = analyzer or TieredAnalyzer()
        self.on_identified = on_identified

        self.status = STATUS_STANDBY
        self.identified: Identification | None = None
        self.nudges: list[str] = []
        self.memory_log: deque[MemoryLogEntry] = deque(maxlen=self.config.memory_log_size)
        self.history = history
        self._last_logged_summary = ""
        self._in_flight = False

    @property
    def is_scanning(self) -> bool:
        return self._in_flight

    def _log(self, event: str) -> None:
        self.memory_log.appendleft(MemoryLogEntry(event=event))

    def _known_people(self) -> str:
        try:
            profiles = self.store.list_all(StoreKind.VISITORS)
        except StoreError as e:
            logger.warning(f"Could not read visitor profiles: {e}")
            return ""
        lines = [f"- {p.name} ({p.relation}): {p.context or 'no conversations yet'}" for p in profiles]
        return "Face Database:\n" + "\n".join(lines) if lines else ""

    def build_request(self, image: bytes) -> AnalysisRequest:
        """Build the scene request from the image, known people and sightings."""
        context = "\n".join(part for part in (self._known_people(), self.history.strip()) if part)
        prompt = SCENE_ANALYSIS_PROMPT.render(
            patient_name=self.config.patient_name,
            history=context or "No one has been seen yet.",
        )
        return AnalysisRequest(
            purpose="scene",
            prompt=prompt,
            image=image,
            mime_type=self.capture.mime_type,
            context=context,
        )

    async def scan(self) -> ScanOutcome | None:
        """Capture and analyse one image.

        Returns:
            The outcome, or None if a scan was already in progress.
        """
        if self._in_flight:
            logger.debug("Scan already in progress; request dropped")
            return None

        self._in_flight = True
        self.status = STATUS_ANALYZING
        try:
            return await self._scan()
        finally:
            self._in_flight = False

    async def _scan(self) -> ScanOutcome:
        image = await asyncio.to_thread(self.capture.capture)
        if image is None:
            self.status = STATUS_NO_IMAGE
            return ScanOutcome(status=self.status)

        result = await self.analyzer.analyze(self.build_request(image), self.primary, self.secondary)

        if result.quota_exceeded and not result.ok:
            self.status = STATUS_QUOTA
            self._log("Quota exceeded - please wait a minute")
            return ScanOutcome(status=self.status, quota_exceeded=True)

        if not result.ok:
            self.status = STATUS_VISION_ERROR
            logger.warning(f"Scene analysis failed: {result.message}")
            return ScanOutcome(status=self.status)

        facts = parse(result.raw_text)
        summary = facts.summary if facts.summary != DEFAULT_SUMMARY else ""
        identification = None

        if facts.visitor is not None:
            identification = Identification(
                name=facts.visitor.name,
                relation=facts.visitor.relation,
                summary=summary or "No previous conversation found.",
            )
            self._record_identification(identification)
        else:
            self.identified = None
            if summary and summary != self._last_logged_summary:
                self._log(summary)
                self._last_logged_summary = summary

        if facts.nudges:
            self.nudges = list(facts.nudges)

        self.status = STATUS_WATCHING
        return ScanOutcome(
            status=self.status,
            identification=identification,
            summary=summary,
            nudges=tuple(facts.nudges),
            quota_exceeded=result.quota_exceeded,
            used_fallback=result.used_fallback,
        )

    def _record_identification(self, identification: Identification) -> None:
        self.identified = identification
        timestamp = utc_now().strftime("%H:%M:%S")
        self.history += (
            f"\nSeen at {timestamp}: Identified {identification.name} "
            f"({identification.relation}). Summary: {identification.summary}"
        )
        self._log(f"Identified {identification.name}")
        self._last_logged_summary = ""

        try:
            upsert_visitor(self.store, identification.name, identification.relation)
        except StoreError as e:
            logger.warning(f"Could not update visitor profile: {e}")

        if self.on_identified:
            self.on_identified(VisitorIdentity(name=identification.name, relation=identification.relation))


class AutoScanner:
    """Runs ``SceneWatcher.scan`` periodically on the event loop.

    The first scan happens shortly after ``start``; later scans follow every
    ``interval_seconds``.
    """

    def __init__(
        self,
        watcher: SceneWatcher,
        interval_seconds: float = 60.0,
        initial_delay_seconds: float = 1.0,
    ) -> None:
        self.watcher = watcher
        self.interval_seconds = interval_seconds
        self.initial_delay_seconds = initial_delay_seconds
        self.scans = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"Auto-scan active every {self.interval_seconds:.0f}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.wait({self._task})
        self._task = None
        logger.info("Auto-scan stopped")

    async def _run(self) -> None:
        await asyncio.sleep(self.initial_delay_seconds)
        while True:
            await self.watcher.scan()
            self.scans += 1
            await asyncio.sleep(self.interval_seconds)
