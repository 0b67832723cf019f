import concurrent.futures
import threading
from typing import Dict, Optional

import numpy as np

from andar_bahar.engine.simulation import PARALLEL_THRESHOLD, estimate, estimate_parallel
from andar_bahar.logging_utils import get_logger
from andar_bahar.models import EstimateRequest, EstimateResult, EstimateStatus

logger = get_logger(__name__)

MAX_FINISHED_JOBS = 100


class InMemoryEstimateRunner:
    """Runs estimator jobs in the background with progress and cancellation."""

    def __init__(
        self,
        max_workers: int = 4,
        parallel_threshold: int = PARALLEL_THRESHOLD,
        max_finished_jobs: int = MAX_FINISHED_JOBS,
    ) -> None:
        self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=max_workers)
        self._parallel_threshold = parallel_threshold
        self._max_finished_jobs = max_finished_jobs
        self._futures: Dict[str, concurrent.futures.Future] = {}
        self._progress: Dict[str, EstimateStatus] = {}
        self._cancel_flags: Dict[str, threading.Event] = {}

    def start(self, job_id: str, request: EstimateRequest) -> None:
        self._evict_finished()
        cancel_flag = threading.Event()
        self._cancel_flags[job_id] = cancel_flag
        self._progress[job_id] = EstimateStatus(
            status="queued", progress=0.0, trials_done=0, trials_total=request.trials
        )

        def _cancel_check() -> bool:
            return cancel_flag.is_set()

        def _progress_cb(done: int, total: int, andar: int, bahar: int) -> None:
            self._progress[job_id] = EstimateStatus(
                status="running",
                progress=done / total if total else 0.0,
                trials_done=done,
                trials_total=total,
                bahar_pct_est=bahar / done * 100 if done else None,
            )

        if request.trials >= self._parallel_threshold:
            future = self._executor.submit(
                estimate_parallel,
                request.marker,
                request.trials,
                request.seed,
                None,
                _progress_cb,
                _cancel_check,
                self._parallel_threshold,
            )
        else:
            future = self._executor.submit(
                estimate,
                request.marker,
                request.trials,
                np.random.default_rng(request.seed),
                _progress_cb,
                _cancel_check,
            )
        future.add_done_callback(lambda f: self._log_failure(job_id, f))
        self._futures[job_id] = future
        logger.info("Estimate %s started: marker %s, %d trials", job_id, request.marker.code, request.trials)

    def _evict_finished(self) -> None:
        # Oldest finished jobs go first; queued and running jobs are never dropped.
        finished = [job_id for job_id, future in self._futures.items() if future.done()]
        for job_id in finished[: max(0, len(finished) - self._max_finished_jobs)]:
            del self._futures[job_id]
            self._progress.pop(job_id, None)
            self._cancel_flags.pop(job_id, None)

    @staticmethod
    def _log_failure(job_id: str, future: concurrent.futures.Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("Estimate %s failed", job_id, exc_info=exc)

    def stop(self, job_id: str) -> bool:
        """Request cancellation; the job keeps the trials it already ran."""
        cancel_flag = self._cancel_flags.get(job_id)
        if cancel_flag:
            cancel_flag.set()
            return True
        return False

    def get(self, job_id: str) -> Optional[EstimateResult]:
        future = self._futures.get(job_id)
        if not future or not future.done() or future.exception() is not None:
            return None
        return future.result()

    def status(self, job_id: str) -> Optional[EstimateStatus]:
        future = self._futures.get(job_id)
        if not future:
            return None
        if not future.done():
            return self._progress.get(job_id)

        exc = future.exception()
        if exc is not None:
            prog = self._progress[job_id]
            return prog.model_copy(update={"status": "failed", "error": str(exc)})

        result: EstimateResult = future.result()
        stopped = result.trials < result.requested_trials
        return EstimateStatus(
            status="stopped" if stopped else "done",
            progress=result.trials / result.requested_trials,
            trials_done=result.trials,
            trials_total=result.requested_trials,
            bahar_pct_est=result.bahar_pct,
        )

    def shutdown(self) -> None:
        for flag in self._cancel_flags.values():
            flag.set()
        self._executor.shutdown(wait=True)
