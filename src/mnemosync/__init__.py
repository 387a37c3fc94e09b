"""Mnemosync: a memory companion for people living with dementia.

Wraps Gemini scene and conversation analysis with a tiered fallback, turns
conversations into dated reminders and keeps them in a local memory store.
"""

__version__ = "0.1.0"
