"""
Job Registry
============
Process-local store of submitted conversion jobs, keyed by a one-time token.

A job is created by an upload request and consumed by exactly one progress
stream. ``claim`` removes the job under the registry lock, so two streams
racing on the same token can never both obtain it. Unclaimed jobs expire
after ``ttl_seconds``.

Jobs are deliberately ephemeral: nothing survives a process restart.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from .errors import NotFoundError, ValidationError
from .models import Job, Tier

logger = logging.getLogger(__name__)

DEFAULT_JOB_TTL = 15 * 60


class JobRegistry:
    """Thread-safe token → Job map with atomic consume-once claim."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_JOB_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()

    def submit(
        self,
        file_bytes: Optional[bytes],
        file_name: Optional[str],
        mime_type: Optional[str],
        category: Optional[str],
        subcategory: Optional[str],
        target_tier: Tier,
        owner_id: Optional[str] = None,
    ) -> str:
        """
        Validate and register a new job.

        Returns:
            The job token to open the progress stream with.

        Raises:
            ValidationError: Missing file, category, or (for pending) uid.
        """
        if file_bytes is None or not file_name:
            raise ValidationError("Missing file.")
        if not category or not subcategory:
            raise ValidationError("Missing main category or subcategory.")
        if Tier(target_tier) is Tier.PENDING and not owner_id:
            raise ValidationError(
                "User ID (uid) is required for this operation.")

        job = Job(
            file_bytes=file_bytes,
            file_name=file_name,
            mime_type=mime_type or "application/pdf",
            target_tier=target_tier,
            owner_id=owner_id if Tier(target_tier) is Tier.PENDING else None,
            category=category,
            subcategory=subcategory,
            created_at=self._clock(),
        )

        with self._lock:
            self._purge_expired_locked()
            self._jobs[job.token] = job

        logger.info(
            f"Job created for collection '{job.target_tier.value}' "
            f"with ID: {job.token} ({job.file_name}, {job.size_bytes} bytes)"
        )
        return job.token

    def claim(self, token: str) -> Job:
        """
        Atomically remove and return the job for ``token``.

        Raises:
            NotFoundError: Unknown, already claimed, or expired token.
        """
        with self._lock:
            job = self._jobs.pop(token, None)

        if job is None:
            raise NotFoundError("Job not found or has expired.")
        if self._is_expired(job):
            logger.info(f"Job {token} expired before it was claimed")
            raise NotFoundError("Job not found or has expired.")

        logger.info(f"Job {token} claimed")
        return job

    def discard(self, token: str) -> bool:
        """Remove a job if still present. Safe to call more than once."""
        with self._lock:
            return self._jobs.pop(token, None) is not None

    def purge_expired(self) -> int:
        """Evict all jobs older than the TTL. Returns how many were evicted."""
        with self._lock:
            return self._purge_expired_locked()

    def __contains__(self, token: str) -> bool:
        with self._lock:
            return token in self._jobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def _is_expired(self, job: Job) -> bool:
        if self.ttl_seconds is None or self.ttl_seconds <= 0:
            return False
        return self._clock() - job.created_at > self.ttl_seconds

    def _purge_expired_locked(self) -> int:
        expired = [t for t, j in self._jobs.items() if self._is_expired(j)]
        for token in expired:
            del self._jobs[token]
        if expired:
            logger.info(f"Evicted {len(expired)} expired job(s)")
        return len(expired)
