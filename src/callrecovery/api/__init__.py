"""Operator-facing trigger endpoints."""
