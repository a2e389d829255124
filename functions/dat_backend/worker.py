"""
Worker loop that drains slug write-back jobs queued by the redirect middleware.

Jobs are delivered at least once. A failed job goes back on the queue with its
attempt count bumped until the configured limit, after which it is dropped
with an error log. The canonicalizer's writes are idempotent, so replays are
harmless.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from dat_backend.canonicalize import SlugCanonicalizer
from dat_backend.config import get_settings
from dat_backend.dependencies import get_canonicalizer, get_write_queue
from dat_backend.queue import SlugWriteJob, WriteQueue

logger = logging.getLogger(__name__)


def process_job(job: SlugWriteJob, canonicalizer: SlugCanonicalizer) -> bool:
    """Apply one job. Returns True if the sheet changed."""
    changed = canonicalizer.auto_canonicalize(job.old, job.next)
    logger.info(
        "Slug write %s -> %s (attempt %d): %s",
        job.old,
        job.next,
        job.attempts + 1,
        "updated" if changed else "no change",
    )
    return changed


def process_next(
    *,
    canonicalizer: Optional[SlugCanonicalizer] = None,
    queue: Optional[WriteQueue] = None,
    block: bool = True,
    timeout: Optional[int] = None,
    max_attempts: Optional[int] = None,
) -> bool:
    """
    Fetch and process one job from the queue. Returns True if a job was taken.
    """
    if queue is None:
        queue = get_write_queue()
    if max_attempts is None:
        max_attempts = get_settings().write_max_attempts

    job = queue.dequeue(block=block, timeout=timeout)
    if job is None:
        return False

    if canonicalizer is None:
        canonicalizer = get_canonicalizer()
    try:
        process_job(job, canonicalizer)
    except Exception:
        job.attempts += 1
        if job.attempts < max_attempts:
            logger.exception(
                "Slug write %s -> %s failed; requeueing (%d/%d)",
                job.old,
                job.next,
                job.attempts,
                max_attempts,
            )
            queue.enqueue(job)
        else:
            logger.exception(
                "Slug write %s -> %s failed %d times; dropping",
                job.old,
                job.next,
                job.attempts,
            )
    return True


def run_loop(poll_interval_seconds: float = 2.0) -> None:
    """
    Blocking loop over the write queue. Intended to be run under systemd/supervisor.
    """
    queue = get_write_queue()
    while True:
        processed = process_next(queue=queue, block=True, timeout=int(poll_interval_seconds))
        if not processed:
            time.sleep(poll_interval_seconds)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_loop()
