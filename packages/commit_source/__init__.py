"""
Commit Source Package.

Checkpointed, windowed polling source that streams a GitHub repository's
commit history into a downstream pipeline.

Features:
- Bounded time windows planned from a monotonic cursor
- Records emitted with event timestamps, followed by a watermark per window
- Cursor snapshots consistent with emitted output (at-least-once on restart)
- Transient GitHub failures retried with optional bounded backoff
- Redis Streams sink and Redis-backed checkpoints
- APScheduler-driven periodic checkpointing
"""

__version__ = "1.0.0"
