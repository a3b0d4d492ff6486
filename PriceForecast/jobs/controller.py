"""Background execution of pipeline runs.

The controller keeps one :class:`TrainingJob` per fingerprint, runs the
pipeline on a thread pool and fans progress out to subscribed listeners.
Messages have the shape::

    {"type": "progress", "modelId": fp, "data": {"stage", "percent", "message", ...}}
    {"type": "status",   "modelId": fp, "data": {"stage": "complete" | "error" | "cancelled", ...}}

Exactly one ``status`` message is sent per job and no ``progress`` message
follows it.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
import warnings
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from PriceForecast.checkpoint.store import CheckpointStore
from PriceForecast.config.default import JOB_CFG
from PriceForecast.errors import AlreadyRunningError, CancelledError
from PriceForecast.models.base_trainer import ModelConfig, TrainConfig
from PriceForecast.pipeline import train_and_predict
from PriceForecast.preprocess.series import StockData
from PriceForecast.utils.cancel import CancelToken
from PriceForecast.utils.progress import ProgressEvent

logger = logging.getLogger(__name__)

Listener = Callable[[Dict[str, Any]], None]


class JobStatus(str, Enum):
    PENDING = "pending"
    TRAINING = "training"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETE, JobStatus.ERROR, JobStatus.CANCELLED)


@dataclass
class TrainingJob:
    fingerprint: str
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    last_message: str = ""
    job_index: Optional[int] = None
    total_jobs: Optional[int] = None
    created: float = field(default_factory=time.time)
    finished: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "modelId": self.fingerprint,
            "status": self.status.value,
            "progress": self.progress,
            "message": self.last_message,
            "jobIndex": self.job_index,
            "totalJobs": self.total_jobs,
            "created": self.created,
            "finished": self.finished,
            "error": self.error,
        }


class JobHandle:
    """Caller-side view of a submitted job."""

    def __init__(self, fingerprint: str, future: Future, controller: "JobController"):
        self.fingerprint = fingerprint
        self.future = future
        self._controller = controller

    def result(self, timeout: Optional[float] = None):
        """Block until the run ends; re-raises its error or ``CancelledError``."""
        return self.future.result(timeout)

    def done(self) -> bool:
        return self.future.done()

    def cancel(self) -> bool:
        return self._controller.cancel(self.fingerprint)

    @property
    def status(self) -> Optional[TrainingJob]:
        return self._controller.status(self.fingerprint)


class JobController:
    """Run at most one job per fingerprint on a bounded thread pool.

    Parameters
    ----------
    store : CheckpointStore, optional
        Shared checkpoint store handed to every run.
    runner : callable, optional
        Pipeline entry point, :func:`~PriceForecast.pipeline.train_and_predict`
        by default. Tests inject a blocking stand-in.
    max_workers : int, optional
        Concurrent runs; further jobs stay ``pending``.
    retention_seconds : float, optional
        How long finished jobs stay visible to :meth:`status`.
    """

    def __init__(
        self,
        store: Optional[CheckpointStore] = None,
        runner: Optional[Callable[..., Any]] = None,
        max_workers: Optional[int] = None,
        retention_seconds: Optional[float] = None,
        device: Optional[str] = None,
        train_cfg: Optional[TrainConfig] = None,
    ):
        self.store = store or CheckpointStore()
        self.runner = runner or train_and_predict
        self.retention_seconds = float(
            JOB_CFG["retention_seconds"] if retention_seconds is None else retention_seconds
        )
        self.device = device
        self.train_cfg = train_cfg
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or JOB_CFG["max_workers"],
            thread_name_prefix="priceforecast-job",
        )
        self._lock = threading.Lock()
        self._jobs: Dict[str, TrainingJob] = {}
        self._tokens: Dict[str, CancelToken] = {}
        # fingerprints whose worker has not returned yet, cancelled ones included
        self._running: Set[str] = set()
        self._listeners: List[Listener] = []
        # held while a message is produced and delivered; reentrant so that a
        # listener may call cancel() from inside a delivery
        self._emit_lock = threading.RLock()
        self._outbox: Deque[Dict[str, Any]] = deque()
        self._delivering = False

    # ------------------------------------------------------------------
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for every job message; returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _broadcast(self, message: Dict[str, Any]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(message)
            except Exception as exc:
                warnings.warn(
                    f"Progress listener {getattr(listener, '__name__', repr(listener))} failed: {exc}"
                )

    def _emit(self, message: Dict[str, Any]) -> None:
        """Deliver ``message`` after any earlier ones; caller holds ``_emit_lock``."""
        self._outbox.append(message)
        if self._delivering:
            return
        self._delivering = True
        try:
            while self._outbox:
                self._broadcast(self._outbox.popleft())
        finally:
            self._delivering = False

    # ------------------------------------------------------------------
    def start(
        self,
        fingerprint: str,
        config: ModelConfig,
        stock_data: StockData,
        *,
        force_train: bool = False,
        prediction_only: bool = False,
        predict_past_days: int = 0,
        days_to_predict: Optional[int] = None,
        job_index: Optional[int] = None,
        total_jobs: Optional[int] = None,
    ) -> JobHandle:
        """Submit a run for ``fingerprint``.

        Raises
        ------
        AlreadyRunningError
            If a job with the same fingerprint is pending or training.
        """

        with self._lock:
            self._prune_locked()
            current = self._jobs.get(fingerprint)
            if fingerprint in self._running or (current is not None and not current.status.terminal):
                raise AlreadyRunningError(fingerprint)
            token = CancelToken()
            self._jobs[fingerprint] = TrainingJob(fingerprint, job_index=job_index, total_jobs=total_jobs)
            self._tokens[fingerprint] = token
            self._running.add(fingerprint)
        options = dict(
            force_train=force_train,
            prediction_only=prediction_only,
            predict_past_days=predict_past_days,
            days_to_predict=days_to_predict,
        )
        try:
            future = self._executor.submit(self._run, fingerprint, token, config, stock_data, options)
        except RuntimeError:
            with self._lock:
                self._jobs.pop(fingerprint, None)
                self._tokens.pop(fingerprint, None)
                self._running.discard(fingerprint)
            raise
        logger.info("Queued job %s", fingerprint)
        return JobHandle(fingerprint, future, self)

    def start_batch(
        self,
        requests: Sequence[Tuple[str, ModelConfig, StockData]],
        **options: Any,
    ) -> List[JobHandle]:
        """Start a group of jobs tagged ``jobIndex``/``totalJobs`` (1-based).

        Fingerprints that are already running are skipped with a warning.
        """

        total = len(requests)
        handles = []
        for i, (fingerprint, config, stock_data) in enumerate(requests, start=1):
            try:
                handles.append(
                    self.start(fingerprint, config, stock_data, job_index=i, total_jobs=total, **options)
                )
            except AlreadyRunningError as e:
                logger.warning("Skipping batch job %d/%d: %s", i, total, e)
        return handles

    def _run(
        self,
        fingerprint: str,
        token: CancelToken,
        config: ModelConfig,
        stock_data: StockData,
        options: Dict[str, Any],
    ):
        try:
            with self._lock:
                job = self._jobs.get(fingerprint)
                if job is not None and job.status is JobStatus.PENDING:
                    job.status = JobStatus.TRAINING
            token.raise_if_cancelled()
            result = self.runner(
                stock_data,
                config,
                store=self.store,
                fingerprint=fingerprint,
                on_progress=lambda event: self._on_progress(fingerprint, event),
                cancel_token=token,
                train_cfg=self.train_cfg,
                device=self.device,
                **options,
            )
        except CancelledError as e:
            self._finish(fingerprint, JobStatus.CANCELLED, str(e))
            raise
        except Exception as e:
            logger.error("Job %s failed: %s", fingerprint, e)
            self._finish(fingerprint, JobStatus.ERROR, str(e), error=str(e))
            raise
        finally:
            with self._lock:
                self._running.discard(fingerprint)
        self._finish(fingerprint, JobStatus.COMPLETE, "Analysis complete")
        return result

    def _on_progress(self, fingerprint: str, event: ProgressEvent) -> None:
        data = event.to_dict()
        with self._emit_lock:
            with self._lock:
                job = self._jobs.get(fingerprint)
                if job is None or job.status.terminal:
                    return
                job.progress = event.percent
                job.last_message = event.message
                if job.job_index is not None:
                    data["jobIndex"] = job.job_index
                    data["totalJobs"] = job.total_jobs
            self._emit({"type": "progress", "modelId": fingerprint, "data": data})

    def _finish(self, fingerprint: str, status: JobStatus, message: str, error: Optional[str] = None) -> None:
        with self._emit_lock:
            with self._lock:
                job = self._jobs.get(fingerprint)
                if job is None or job.status.terminal:
                    return
                job.status = status
                job.last_message = message
                job.error = error
                job.finished = time.time()
                if status is JobStatus.COMPLETE:
                    job.progress = 100
                self._tokens.pop(fingerprint, None)
                data = self._status_data(job)
            logger.info("Job %s finished: %s", fingerprint, status.value)
            self._emit({"type": "status", "modelId": fingerprint, "data": data})

    @staticmethod
    def _status_data(job: TrainingJob) -> Dict[str, Any]:
        data: Dict[str, Any] = {"stage": job.status.value, "percent": job.progress, "message": job.last_message}
        if job.error:
            data["error"] = job.error
        if job.job_index is not None:
            data["jobIndex"] = job.job_index
            data["totalJobs"] = job.total_jobs
        return data

    # ------------------------------------------------------------------
    def cancel(self, fingerprint: str, reason: str = "Training was canceled") -> bool:
        """Request cancellation; the job reports ``cancelled`` immediately.

        Returns ``False`` when no pending or training job exists. Calling it
        again for the same job is a no-op.
        """

        with self._emit_lock:
            with self._lock:
                job = self._jobs.get(fingerprint)
                token = self._tokens.pop(fingerprint, None)
                if job is None or job.status.terminal or token is None:
                    return False
                job.status = JobStatus.CANCELLED
                job.last_message = reason
                job.finished = time.time()
                data = self._status_data(job)
            token.cancel(reason)
            logger.info("Cancelled job %s", fingerprint)
            self._emit({"type": "status", "modelId": fingerprint, "data": data})
        return True

    def status(self, fingerprint: str) -> Optional[TrainingJob]:
        with self._lock:
            self._prune_locked()
            job = self._jobs.get(fingerprint)
            return copy.copy(job) if job is not None else None

    def list_active(self) -> List[str]:
        with self._lock:
            return sorted(fp for fp, job in self._jobs.items() if not job.status.terminal)

    def jobs(self) -> List[TrainingJob]:
        with self._lock:
            self._prune_locked()
            return [copy.copy(job) for job in self._jobs.values()]

    def _prune_locked(self, now: Optional[float] = None) -> None:
        now = time.time() if now is None else now
        expired: Iterable[str] = [
            fp
            for fp, job in self._jobs.items()
            if job.status.terminal
            and job.finished is not None
            and now - job.finished >= self.retention_seconds
            and fp not in self._running
        ]
        for fp in expired:
            del self._jobs[fp]

    def shutdown(self, wait: bool = True, cancel_running: bool = False) -> None:
        if cancel_running:
            for fp in self.list_active():
                self.cancel(fp, "Server shutting down")
        self._executor.shutdown(wait=wait)


__all__ = ["JobController", "JobHandle", "JobStatus", "TrainingJob"]
