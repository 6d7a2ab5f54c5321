"""Transcript summarisation through a chat-completion model."""
