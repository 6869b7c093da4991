"""Build task queue: storage, lease, scheduling and batch processing."""
