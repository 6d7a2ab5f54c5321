"""Order events: checkout conversion, call cancellation and attribution."""
