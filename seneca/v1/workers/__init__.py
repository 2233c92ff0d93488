"""
Background workers for memory enrichment jobs.

This package provides:
- BackgroundWorker with bounded concurrency and per-job timeouts
- WorkerManager owning named workers within one process
- Poll backoff strategies and process signal guards
- Analytics sinks for job outcomes
"""
