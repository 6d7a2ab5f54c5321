"""Commerce platform webhooks."""
