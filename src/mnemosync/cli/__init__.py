"""Command line interface for Mnemosync."""
