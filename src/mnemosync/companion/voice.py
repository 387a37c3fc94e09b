"""Voice output for the companion.

Only one utterance is active at a time: starting a new one cancels the one
in progress. ``ConsoleVoice`` "speaks" by printing to a Rich console, word
by word when a speaking rate is set.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable

from rich.console import Console
from rich.panel import Panel

from mnemosync.core.models import VisitorIdentity

logger = logging.getLogger(__name__)


def compose_greeting(patient_name: str, visitor: VisitorIdentity | None) -> str:
    """Build the sentence reminding the patient who they just spoke with.

    Example:
        >>> compose_greeting("Rose", VisitorIdentity(name="Jane", relation="daughter"))
        'Dear Rose, you were just speaking with Jane, your daughter.'
    """
    if visitor is None or not visitor.name:
        return ""
    greeting = f"Dear {patient_name}, you were just speaking with {visitor.name}"
    if visitor.relation and visitor.relation.lower() != "visitor":
        return f"{greeting}, your {visitor.relation}."
    return f"{greeting}."


@runtime_checkable
class VoiceOutput(Protocol):
    """Speaks text, optionally preceded by a greeting about the visitor."""

    def speak(self, text: str, greeting: VisitorIdentity | None = None) -> None: ...

    def cancel(self) -> None: ...


class ConsoleVoice:
    """VoiceOutput that prints to the terminal.

    Attributes:
        patient_name: Name used in greetings.
        seconds_per_word: Delay between words. 0 prints the whole utterance
            at once.
    """

    def __init__(
        self,
        patient_name: str = "User",
        console: Console | None = None,
        seconds_per_word: float = 0.0,
    ) -> None:
        self.patient_name = patient_name
        self.seconds_per_word = seconds_per_word
        self._console = console or Console()
        self._current: asyncio.Task[None] | None = None

    @property
    def is_speaking(self) -> bool:
        return self._current is not None and not self._current.done()

    def compose(self, text: str, greeting: VisitorIdentity | None = None) -> str:
        """Full utterance text: greeting (if any) followed by the message."""
        prefix = compose_greeting(self.patient_name, greeting)
        return f"{prefix} {text}".strip() if prefix else text.strip()

    def speak(self, text: str, greeting: VisitorIdentity | None = None) -> None:
        """Start speaking, interrupting anything still being spoken."""
        self.cancel()
        message = self.compose(text, greeting)
        if not message:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None or self.seconds_per_word <= 0:
            self._console.print(Panel(message, title="Mnemosync", border_style="magenta"))
            return

        self._current = loop.create_task(self._deliver(message))

    def cancel(self) -> None:
        """Stop the utterance in progress, if any."""
        if self.is_speaking:
            logger.debug("Interrupting previous utterance")
            self._current.cancel()
        self._current = None

    async def wait(self) -> None:
        """Wait until the current utterance has been fully spoken."""
        if self._current is not None:
            await asyncio.wait({self._current})

    async def _deliver(self, message: str) -> None:
        self._console.print("[magenta]Mnemosync:[/magenta]", end=" ")
        try:
            for word in message.split():
                self._console.print(word, end=" ", markup=False, highlight=False)
                await asyncio.sleep(self.seconds_per_word)
        finally:
            self._console.print()
