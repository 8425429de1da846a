"""Tests for the single-worker analysis queue.

The analyze callable blocks on an Event so tests can observe jobs while
one is processing.
"""

from __future__ import annotations

import threading
from types import SimpleNamespace

import pytest

from review.errors import EvaluatorFailure, NotFound
from review.jobs import AnalysisQueue
from review.models import COMPLETED, FAILED, PROCESSING, QUEUED

_WAIT = 5.0


class _GatedAnalyze:
    """Analyze stand-in that blocks until released and records call order."""

    def __init__(self, errors: dict[str, Exception] | None = None) -> None:
        self.release = threading.Event()
        self.started = threading.Event()
        self.errors = errors or {}
        self.calls: list[tuple[str, str]] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def __call__(self, game_id: str, depth_preset: str):
        with self._lock:
            self.calls.append((game_id, depth_preset))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.started.set()
        try:
            self.release.wait(_WAIT)
            if game_id in self.errors:
                raise self.errors[game_id]
            return SimpleNamespace(analysis_id=f"analysis-{game_id}")
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def gate():
    gated = _GatedAnalyze()
    yield gated
    gated.release.set()


@pytest.fixture
def queue(gate):
    q = AnalysisQueue(gate)
    yield q
    gate.release.set()
    q.wait_idle(_WAIT)


class TestSubmit:

    def test_unknown_preset_rejected(self, queue):
        with pytest.raises(ValueError):
            queue.submit("g1", "ludicrous")

    def test_duplicate_submissions_share_one_job(self, queue, gate):
        first = queue.submit("g1")
        queue.submit("g1")
        queue.submit("g1")
        assert len(queue.list_all()) == 1
        gate.release.set()
        assert queue.wait_idle(_WAIT)
        assert gate.calls == [("g1", "fast")]
        assert first.status == QUEUED

    def test_concurrent_submissions_start_one_worker(self, queue, gate):
        game_ids = ["g1", "g2", "g3"]
        barrier = threading.Barrier(12)

        def submit(index: int) -> None:
            barrier.wait(_WAIT)
            queue.submit(game_ids[index % len(game_ids)])

        threads = [threading.Thread(target=submit, args=(i,)) for i in range(12)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(_WAIT)

        assert sorted(job.game_id for job in queue.list_all()) == game_ids
        gate.release.set()
        assert queue.wait_idle(_WAIT)
        assert sorted(gid for gid, _ in gate.calls) == game_ids
        assert gate.max_active == 1

    def test_duplicate_keeps_original_preset(self, queue, gate):
        queue.submit("g1", "thorough")
        job = queue.submit("g1", "fast")
        assert job.depth_preset == "thorough"

    def test_returns_snapshot(self, queue):
        job = queue.submit("g1")
        job.status = FAILED
        assert queue.status("g1").status != FAILED

    def test_resubmitting_finished_job_runs_again(self, queue, gate):
        gate.release.set()
        queue.submit("g1")
        assert queue.wait_idle(_WAIT)
        queue.submit("g1", "balanced")
        assert queue.wait_idle(_WAIT)
        assert gate.calls == [("g1", "fast"), ("g1", "balanced")]
        assert queue.status("g1").status == COMPLETED


class TestProcessing:

    def test_fifo_single_worker(self, queue, gate):
        for gid in ("g1", "g2", "g3"):
            queue.submit(gid)
        assert gate.started.wait(_WAIT)
        assert queue.status("g1").status == PROCESSING
        assert queue.status("g2").status == QUEUED

        gate.release.set()
        assert queue.wait_idle(_WAIT)
        assert [gid for gid, _ in gate.calls] == ["g1", "g2", "g3"]
        assert gate.max_active == 1

    def test_completed_job_fields(self, queue, gate):
        gate.release.set()
        queue.submit("g1")
        assert queue.wait_idle(_WAIT)
        job = queue.status("g1")
        assert job.status == COMPLETED
        assert job.result_ref == "analysis-g1"
        assert job.started_at <= job.completed_at
        assert job.error is None

    def test_processing_job_has_no_completion_time(self, queue, gate):
        queue.submit("g1")
        assert gate.started.wait(_WAIT)
        job = queue.status("g1")
        assert job.status == PROCESSING
        assert job.started_at is not None
        assert job.completed_at is None

    def test_worker_restarts_after_idle(self, queue, gate):
        gate.release.set()
        queue.submit("g1")
        assert queue.wait_idle(_WAIT)
        assert queue.stats()["worker_running"] is False
        queue.submit("g2")
        assert queue.wait_idle(_WAIT)
        assert queue.status("g2").status == COMPLETED

    def test_wait_idle_times_out_while_busy(self, queue, gate):
        queue.submit("g1")
        assert gate.started.wait(_WAIT)
        assert queue.wait_idle(0.05) is False


class TestFailures:

    def test_failure_does_not_stop_queue(self):
        gate = _GatedAnalyze(errors={"g1": NotFound("Game not found: g1")})
        gate.release.set()
        queue = AnalysisQueue(gate)
        queue.submit("g1")
        queue.submit("g2")
        assert queue.wait_idle(_WAIT)

        failed = queue.status("g1")
        assert failed.status == FAILED
        assert failed.error == "Game not found: g1"
        assert failed.permanent_failure is True
        assert failed.completed_at is not None
        assert queue.status("g2").status == COMPLETED

    def test_transient_failure_is_retryable(self):
        gate = _GatedAnalyze(errors={"g1": EvaluatorFailure("timeout")})
        gate.release.set()
        queue = AnalysisQueue(gate)
        queue.submit("g1")
        assert queue.wait_idle(_WAIT)
        assert queue.status("g1").permanent_failure is False

    def test_unexpected_error_is_captured(self):
        gate = _GatedAnalyze(errors={"g1": RuntimeError()})
        gate.release.set()
        queue = AnalysisQueue(gate)
        queue.submit("g1")
        assert queue.wait_idle(_WAIT)
        job = queue.status("g1")
        assert job.status == FAILED
        assert job.error == "RuntimeError"


class TestEstimate:

    def test_unknown_game(self, queue):
        assert queue.estimate("ghost") is None

    def test_position_in_queue(self, queue, gate):
        queue.submit("g1", "fast")
        assert gate.started.wait(_WAIT)
        queue.submit("g2", "balanced")
        queue.submit("g3", "thorough")
        queue.submit("g3", "fast")

        assert queue.estimate("g1") == 60
        # Only the processing job is ahead
        assert queue.estimate("g2") == 60
        # Processing job plus g2
        assert queue.estimate("g3") == 60 + 300

    def test_finished_job_is_zero(self, queue, gate):
        gate.release.set()
        queue.submit("g1")
        assert queue.wait_idle(_WAIT)
        assert queue.estimate("g1") == 0


class TestStatsAndRemoval:

    def test_stats(self, queue, gate):
        queue.submit("g1")
        assert gate.started.wait(_WAIT)
        queue.submit("g2")
        stats = queue.stats()
        assert stats["total"] == 2
        assert stats[PROCESSING] == 1
        assert stats[QUEUED] == 1
        assert stats["worker_running"] is True

    def test_cannot_remove_processing_job(self, queue, gate):
        queue.submit("g1")
        assert gate.started.wait(_WAIT)
        assert queue.remove_job("g1") is False
        assert queue.status("g1") is not None

    def test_removed_queued_job_never_runs(self, queue, gate):
        queue.submit("g1")
        assert gate.started.wait(_WAIT)
        queue.submit("g2")
        assert queue.remove_job("g2") is True
        gate.release.set()
        assert queue.wait_idle(_WAIT)
        assert [gid for gid, _ in gate.calls] == ["g1"]

    def test_remove_unknown(self, queue):
        assert queue.remove_job("ghost") is False

    def test_clear_finished(self, queue, gate):
        gate.release.set()
        queue.submit("g1")
        queue.submit("g2")
        assert queue.wait_idle(_WAIT)
        assert queue.clear_finished() == 2
        assert queue.list_all() == []
        assert queue.clear_finished() == 0
