"""
EdgeWarden Task Scheduler

Runs periodic background tasks (heartbeat, update check, geo refresh,
expiry sweep) on a fixed interval, each on its own daemon thread.

A task that raises is logged and retried on its next tick; it never stops
the scheduler or the other tasks. Intervals are re-read from their source
on every tick, so config merges apply without restart.

Author: EdgeWarden Project
License: GNU GPL v3
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Union


IntervalSource = Union[float, Callable[[], float]]


@dataclass
class ScheduledTask:
    name: str
    interval: IntervalSource
    func: Callable[[], None]
    run_immediately: bool = False
    runs: int = 0
    failures: int = 0
    thread: Optional[threading.Thread] = None

    def current_interval(self) -> float:
        value = self.interval() if callable(self.interval) else self.interval
        return max(float(value), 0.1)


class Scheduler:
    """
    Interval scheduler backed by threading.Event waits.

    Usage:
        scheduler = Scheduler()
        scheduler.add("heartbeat", lambda: config.heartbeat_interval, send)
        scheduler.start()
        ...
        scheduler.stop()
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.tasks: List[ScheduledTask] = []
        self._stop_event = threading.Event()

    def add(self, name: str, interval: IntervalSource, func: Callable[[], None],
            run_immediately: bool = False) -> ScheduledTask:
        """
        Register a periodic task.

        Args:
            name: Task name used in logs and thread names
            interval: Seconds between runs, or a callable returning it
            func: Zero-argument function to run
            run_immediately: Run once at start instead of after one interval
        """
        task = ScheduledTask(name=name, interval=interval, func=func,
                             run_immediately=run_immediately)
        self.tasks.append(task)
        return task

    def start(self):
        """Start one thread per registered task."""
        self._stop_event.clear()
        for task in self.tasks:
            if task.thread is not None and task.thread.is_alive():
                continue
            task.thread = threading.Thread(
                target=self._run_task, args=(task,), name=f"task-{task.name}", daemon=True
            )
            task.thread.start()
        self.logger.info(f"Scheduler started ({len(self.tasks)} tasks)")

    def stop(self, timeout: float = 5.0):
        """Signal all tasks to stop and wait for their threads."""
        self._stop_event.set()
        for task in self.tasks:
            if task.thread is not None:
                task.thread.join(timeout=timeout)
                task.thread = None
        self.logger.info("Scheduler stopped")

    @property
    def running(self) -> bool:
        return not self._stop_event.is_set() and any(
            t.thread is not None and t.thread.is_alive() for t in self.tasks
        )

    def run_once(self, task: ScheduledTask) -> bool:
        """
        Run a task a single time, logging any failure.

        Returns:
            True if the task completed without raising
        """
        task.runs += 1
        try:
            task.func()
            return True
        except Exception as e:
            task.failures += 1
            self.logger.error(f"Scheduled task '{task.name}' failed: {e}")
            self.logger.debug("Task failure details", exc_info=True)
            return False

    def _run_task(self, task: ScheduledTask):
        if task.run_immediately and not self._stop_event.is_set():
            self.run_once(task)

        while not self._stop_event.wait(timeout=task.current_interval()):
            self.run_once(task)
