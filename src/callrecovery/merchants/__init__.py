"""Per-merchant settings."""
