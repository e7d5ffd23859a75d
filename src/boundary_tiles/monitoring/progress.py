"""Progress tracking for long tiling jobs."""

import threading
import time
from typing import Optional

import structlog

from .metrics import MetricsCollector


class ProgressTracker:
    """
    Counts completed work items against a known total.

    Progress is logged every ``log_every_percent`` percent and on completion.
    Safe to increment from several threads.
    """

    def __init__(
        self,
        total: int,
        name: str,
        log_every_percent: float = 5.0,
        metrics: Optional[MetricsCollector] = None,
        boundary_type: Optional[str] = None
    ):
        self.total = total
        self.name = name
        self.boundary_type = boundary_type or name
        self.current = 0
        self.start_time = time.time()
        self.log_every_percent = log_every_percent
        self.metrics = metrics

        self._next_log_percent = log_every_percent
        self._lock = threading.Lock()
        self.logger = structlog.get_logger(component="ProgressTracker", task=name)

    @property
    def percent(self) -> float:
        if self.total <= 0:
            return 100.0
        return self.current / self.total * 100

    @property
    def elapsed(self) -> float:
        return time.time() - self.start_time

    def increment(self, amount: int = 1) -> None:
        with self._lock:
            self.current += amount
            should_log = self.percent >= self._next_log_percent
            if should_log:
                while self._next_log_percent <= self.percent:
                    self._next_log_percent += self.log_every_percent

        if self.metrics is not None:
            self.metrics.set_gauge(
                'tile_run_progress_ratio',
                self.percent / 100,
                {'boundary_type': self.boundary_type}
            )

        if should_log:
            self.log_progress()

    def log_progress(self) -> None:
        elapsed = self.elapsed
        rate = self.current / elapsed if elapsed > 0 else 0.0
        self.logger.info(
            "Progress",
            percent=round(self.percent, 1),
            current=self.current,
            total=self.total,
            items_per_second=round(rate, 1),
            elapsed_seconds=round(elapsed, 1)
        )

    def complete(self) -> None:
        self.logger.info(
            "Completed",
            processed=self.current,
            total=self.total,
            elapsed_seconds=round(self.elapsed, 1)
        )
