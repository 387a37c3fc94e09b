"""Companion runtime: capture, voice, conversation and scene handling."""

from mnemosync.companion.capture import ImageFileCapture, LineSpeechCapture, Utterance
from mnemosync.companion.conversation import ConversationSession, SpeakerState, SpeakerStateMachine
from mnemosync.companion.scene import AutoScanner, SceneWatcher, ScanOutcome
from mnemosync.companion.voice import ConsoleVoice, compose_greeting

__all__ = [
    "AutoScanner",
    "ConsoleVoice",
    "ConversationSession",
    "ImageFileCapture",
    "LineSpeechCapture",
    "ScanOutcome",
    "SceneWatcher",
    "SpeakerState",
    "SpeakerStateMachine",
    "Utterance",
    "compose_greeting",
]
