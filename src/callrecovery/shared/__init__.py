"""Shared infrastructure: configuration-bound database, logging and errors."""
