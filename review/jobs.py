"""Background analysis job queue with a single worker.

Jobs are keyed by game id. The worker thread processes queued jobs one at
a time in submission order and exits when nothing is left; the next submit
starts a fresh worker. All job-table reads and writes happen under one
lock, and callers only ever receive snapshot copies.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone

from review.errors import ReviewError
from review.models import (
    COMPLETED,
    FAILED,
    PROCESSING,
    QUEUED,
    AnalysisJob,
    GameAnalysis,
)
from review.thresholds import DEFAULT_DEPTH_PRESET, DEPTH_PRESETS

logger = logging.getLogger(__name__)

# Rough seconds per job by depth preset
_SECONDS_PER_JOB = {
    "fast": 60,
    "balanced": 300,
    "thorough": 600,
}

_FALLBACK_SECONDS = 120

# Assumed remaining time for the job currently being processed
_PROCESSING_REMAINING = 60


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AnalysisQueue:
    """Serializes game analyses through one background worker."""

    def __init__(self, analyze: Callable[[str, str], GameAnalysis]) -> None:
        """Create an idle queue.

        Args:
            analyze: Callable taking (game_id, depth_preset) and returning
                the finished GameAnalysis, typically GameAnalyzer.analyze.
        """
        self._analyze = analyze
        self._jobs: dict[str, AnalysisJob] = {}
        self._order: dict[str, int] = {}
        self._sequence = itertools.count()
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._worker: threading.Thread | None = None

    # ── Submission ──────────────────────────────────────────────────

    def submit(self, game_id: str, depth_preset: str = DEFAULT_DEPTH_PRESET) -> AnalysisJob:
        """Queue a game for analysis.

        A game with a queued or processing job keeps that job unchanged.
        A finished job for the same game is replaced by a fresh one.

        Args:
            game_id: Id of the game to analyze.
            depth_preset: "fast", "balanced" or "thorough".

        Returns:
            Snapshot of the job for this game.

        Raises:
            ValueError: If the depth preset is unknown.
        """
        if depth_preset not in DEPTH_PRESETS:
            raise ValueError(f"Unknown depth preset: {depth_preset}")

        with self._lock:
            existing = self._jobs.get(game_id)
            if existing is not None and not existing.is_terminal:
                logger.info("Job already exists for game %s: %s", game_id, existing.status)
                return replace(existing)

            job = AnalysisJob(game_id=game_id, depth_preset=depth_preset, created_at=_now())
            self._jobs.pop(game_id, None)
            self._jobs[game_id] = job
            self._order[game_id] = next(self._sequence)
            logger.info("Added job to queue: %s (depth: %s)", game_id, depth_preset)

            if self._worker is None:
                self._worker = threading.Thread(
                    target=self._run, name="analysis-worker", daemon=True
                )
                self._worker.start()

            return replace(job)

    # ── Worker ──────────────────────────────────────────────────────

    def _next_queued(self) -> AnalysisJob | None:
        queued = [j for j in self._jobs.values() if j.status == QUEUED]
        if not queued:
            return None
        return min(queued, key=lambda j: self._order[j.game_id])

    def _run(self) -> None:
        """Process queued jobs until none remain."""
        logger.info("Starting queue processor")
        while True:
            with self._lock:
                job = self._next_queued()
                if job is None:
                    self._worker = None
                    self._idle.notify_all()
                    logger.info("Queue empty, stopping processor")
                    return
                job.status = PROCESSING
                job.started_at = _now()
                game_id, depth_preset = job.game_id, job.depth_preset

            logger.info("Processing job: %s (depth: %s)", game_id, depth_preset)
            try:
                result = self._analyze(game_id, depth_preset)
            except Exception as exc:
                logger.exception("Job failed: %s", game_id)
                with self._lock:
                    job.status = FAILED
                    job.completed_at = _now()
                    job.error = str(exc) or type(exc).__name__
                    job.permanent_failure = isinstance(exc, ReviewError) and exc.permanent
            else:
                with self._lock:
                    job.status = COMPLETED
                    job.completed_at = _now()
                    job.result_ref = result.analysis_id
                logger.info("Job completed: %s", game_id)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until the worker has drained the queue.

        Returns:
            True if the queue is idle, False if the timeout expired first.
        """
        with self._lock:
            return self._idle.wait_for(lambda: self._worker is None, timeout=timeout)

    # ── Queries ─────────────────────────────────────────────────────

    def status(self, game_id: str) -> AnalysisJob | None:
        """Snapshot of the job for a game, or None if there is none."""
        with self._lock:
            job = self._jobs.get(game_id)
            return replace(job) if job is not None else None

    def list_all(self) -> list[AnalysisJob]:
        """Snapshots of every job in submission order."""
        with self._lock:
            jobs = sorted(self._jobs.values(), key=lambda j: self._order[j.game_id])
            return [replace(j) for j in jobs]

    def stats(self) -> dict:
        """Job counts by status."""
        with self._lock:
            statuses = [j.status for j in self._jobs.values()]
            return {
                "total": len(statuses),
                QUEUED: statuses.count(QUEUED),
                PROCESSING: statuses.count(PROCESSING),
                COMPLETED: statuses.count(COMPLETED),
                FAILED: statuses.count(FAILED),
                "worker_running": self._worker is not None,
            }

    def estimate(self, game_id: str) -> int | None:
        """Very rough seconds-to-go estimate for a job.

        Finished jobs report 0 and the processing job a fixed guess. A
        queued job reports the per-preset time of every queued job ahead
        of it plus the processing job's remaining guess.

        Returns:
            Estimated seconds, or None for an unknown game id.
        """
        with self._lock:
            job = self._jobs.get(game_id)
            if job is None:
                return None
            if job.is_terminal:
                return 0
            if job.status == PROCESSING:
                return _PROCESSING_REMAINING

            position = self._order[game_id]
            ahead = [
                j for j in self._jobs.values()
                if j.status == QUEUED and self._order[j.game_id] < position
            ]
            busy = any(j.status == PROCESSING for j in self._jobs.values())

            seconds = sum(_SECONDS_PER_JOB.get(j.depth_preset, _FALLBACK_SECONDS) for j in ahead)
            if busy:
                seconds += _PROCESSING_REMAINING
            return seconds

    # ── Removal ─────────────────────────────────────────────────────

    def clear_finished(self) -> int:
        """Remove all completed and failed jobs.

        Returns:
            Number of jobs removed.
        """
        with self._lock:
            finished = [gid for gid, j in self._jobs.items() if j.is_terminal]
            for gid in finished:
                del self._jobs[gid]
                del self._order[gid]
        logger.info("Cleared %d finished jobs", len(finished))
        return len(finished)

    def remove_job(self, game_id: str) -> bool:
        """Remove a single job unless it is being processed.

        Returns:
            True if the job was removed.
        """
        with self._lock:
            job = self._jobs.get(game_id)
            if job is None:
                return False
            if job.status == PROCESSING:
                logger.warning("Cannot remove job %s: currently processing", game_id)
                return False
            del self._jobs[game_id]
            del self._order[game_id]
        logger.info("Removed job: %s", game_id)
        return True
