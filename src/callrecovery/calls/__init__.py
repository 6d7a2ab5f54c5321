"""Call job lifecycle: enqueue, dispatch and persistence."""
