"""Folding asynchronous call outcome events into call jobs."""
