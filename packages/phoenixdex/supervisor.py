"""Runs long-lived workers in threads and restarts them when they exit."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

logger = logging.getLogger(__name__)

WorkerTarget = Callable[[threading.Event], None]


@dataclass
class _Worker:
    name: str
    target: WorkerTarget
    thread: Optional[threading.Thread] = None
    restarts: int = 0
    last_error: Optional[str] = None
    stopped: threading.Event = field(default_factory=threading.Event)


class Supervisor:
    """Keeps each registered worker running until ``stop()``.

    A worker receives the supervisor's stop event and is expected to return
    once it is set. Returning (or raising) before that counts as an
    unexpected exit: the error is logged and the worker is started again
    after ``restart_delay`` seconds. Workers are independent; one crashing
    never stops another.
    """

    def __init__(self, restart_delay: float = 5.0, max_restarts: Optional[int] = None):
        self.restart_delay = restart_delay
        self.max_restarts = max_restarts
        self.stop_event = threading.Event()
        self._workers: dict[str, _Worker] = {}
        self._lock = threading.Lock()

    def add(self, name: str, target: WorkerTarget) -> None:
        with self._lock:
            if name in self._workers:
                raise ValueError(f"worker {name!r} already registered")
            self._workers[name] = _Worker(name=name, target=target)

    def restarts(self, name: str) -> int:
        with self._lock:
            return self._workers[name].restarts

    def last_error(self, name: str) -> Optional[str]:
        with self._lock:
            return self._workers[name].last_error

    def _run_worker(self, worker: _Worker) -> None:
        while not self.stop_event.is_set():
            try:
                worker.target(self.stop_event)
            except Exception as exc:
                worker.last_error = repr(exc)
                logger.exception(f"Worker {worker.name} crashed")
            else:
                if self.stop_event.is_set():
                    break
                worker.last_error = "exited"
                logger.error(f"Worker {worker.name} exited unexpectedly")

            if self.max_restarts is not None and worker.restarts >= self.max_restarts:
                logger.error(f"Worker {worker.name} exceeded {self.max_restarts} restarts; giving up")
                break
            if self.stop_event.wait(self.restart_delay):
                break
            with self._lock:
                worker.restarts += 1
            logger.warning(f"Restarting worker {worker.name} (restart #{worker.restarts})")
        worker.stopped.set()

    def start(self) -> None:
        with self._lock:
            workers = list(self._workers.values())
        for worker in workers:
            worker.thread = threading.Thread(
                target=self._run_worker,
                args=(worker,),
                name=f"supervised-{worker.name}",
                daemon=True,
            )
            worker.thread.start()
            logger.info(f"Started worker {worker.name}")

    def stop(self, timeout: Optional[float] = None) -> None:
        self.stop_event.set()
        with self._lock:
            workers = list(self._workers.values())
        for worker in workers:
            if worker.thread is not None:
                worker.thread.join(timeout)

    def wait(self, name: str, timeout: Optional[float] = None) -> bool:
        """Block until the named worker has stopped for good."""
        with self._lock:
            worker = self._workers[name]
        return worker.stopped.wait(timeout)
