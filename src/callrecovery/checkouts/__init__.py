"""Checkout records and lifecycle classification."""
