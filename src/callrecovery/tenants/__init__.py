"""Merchant-wide data lifecycle."""
