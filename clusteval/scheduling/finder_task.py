"""
Periodic finder task.

One thread per category: wait until the categories this one depends on have
completed a pass, run the category's finder, flip the "initialized" latch and
sleep until the next pass. A check-once task stops after its first pass.
"""

import threading
import time
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from clusteval.core.categories import CATEGORY_SPECS, ExtensionCategory
from clusteval.core.repository import Repository
from clusteval.finders import Finder, create_finder
from clusteval.utils.advanced_logging import get_logger
from clusteval.utils.error_handling import (
    DependencyError,
    DependencyWaitTimeoutError,
    ErrorTracker,
    MissingDependencyError,
    RepositoryConfigurationError,
)

if TYPE_CHECKING:
    from clusteval.scheduling.supervisor import RepositorySupervisor

logger = get_logger(__name__)

DEFAULT_SLEEP_TIME = 30.0

# Granularity of dependency waits, so a stopped task stops waiting promptly
WAIT_SLICE = 0.1


class TaskState(str, Enum):
    NOT_STARTED = "not_started"
    SCANNING = "scanning"
    IDLE = "idle"
    STOPPED = "stopped"


class FinderTask:
    """
    Runs the finder of one category periodically on its own thread.

    Hooks:
    - before_scan: block until every dependency category is initialized
    - run_scan: one pass of the category's finder
    - after_scan: mark the category initialized and release waiters
    """

    def __init__(
        self,
        supervisor: "RepositorySupervisor",
        repository: Repository,
        category: ExtensionCategory,
        sleep_time: float = DEFAULT_SLEEP_TIME,
        check_once: bool = False,
        wait_timeout: Optional[float] = None,
        sweep_missing: bool = True,
    ):
        """
        Initialize finder task.

        Args:
            supervisor: Supervisor owning the tasks of the repository
            repository: Repository to register found objects at
            category: Category this task scans
            sleep_time: Seconds between two passes
            check_once: Stop after the first pass
            wait_timeout: Maximum seconds to wait for a dependency (None = forever)
            sweep_missing: Unregister objects whose files disappeared
        """
        self.supervisor = supervisor
        self.repository = repository
        self.category = category
        self.spec = CATEGORY_SPECS[category]
        self.sleep_time = sleep_time
        self.check_once = check_once
        self.wait_timeout = wait_timeout
        self.sweep_missing = sweep_missing

        self.state = TaskState.NOT_STARTED
        self.error: Optional[Exception] = None
        self.waiting_on: Optional[ExtensionCategory] = None
        self.finder: Optional[Finder] = None
        self.error_tracker = ErrorTracker()

        self._initialized = threading.Event()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.stats = {
            "passes": 0,
            "loaded": 0,
            "errors": 0,
            "last_pass_time": None,
        }
        self.log = logger.bind(category=str(category), root=repository.root)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError(f"The finder task of {self.category} was already started")
        self._thread = threading.Thread(
            target=self.run,
            name=f"{self.category.value}FinderThread",
            daemon=True,
        )
        self._thread.start()

    def run(self) -> None:
        """Task loop; runs on the task's thread."""
        self.log.info("task_started", check_once=self.check_once, sleep_time=self.sleep_time)

        while not self._stop_event.is_set():
            self.state = TaskState.SCANNING
            try:
                if not self.before_scan():
                    break
                self.run_scan()
                self.after_scan()
            except DependencyError as e:
                self.error = e
                self.log.error("task_dependency_failed", error=str(e), **e.details)
                break
            except RepositoryConfigurationError as e:
                self.stats["errors"] += 1
                self.log.error("finder_pass_failed", error=str(e), **e.details)
            except Exception as e:
                self.stats["errors"] += 1
                self.log.error("finder_task_error", error=str(e), exc_info=True)

            if self.check_once:
                break
            self.state = TaskState.IDLE
            self._stop_event.wait(self.sleep_time)

        if self.check_once and self.error is None and not self._stop_event.is_set():
            self.state = TaskState.IDLE
        else:
            self.state = TaskState.STOPPED
        self.log.info("task_finished", state=self.state.value, passes=self.stats["passes"])

    def stop(self) -> None:
        """Stop the task after the current file; wakes a sleeping task."""
        self.log.info("task_stopping")
        self._stop_event.set()
        if self.finder is not None:
            self.finder.interrupt()
        if self._thread is None:
            self.state = TaskState.STOPPED

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def is_initialized(self) -> bool:
        return self._initialized.is_set()

    # =========================================================================
    # Hooks
    # =========================================================================

    def before_scan(self) -> bool:
        """
        Wait for every category this one depends on.

        Returns:
            False if the task was stopped while waiting

        Raises:
            MissingDependencyError: If no task provides a dependency
            DependencyWaitTimeoutError: If a dependency is not initialized in time
        """
        for dependency in self.spec.depends_on:
            if self.repository.is_category_initialized(dependency):
                continue

            task = self.supervisor.get_task(dependency)
            if task is None:
                parent = self.repository.parent
                if parent is not None and parent.is_category_initialized(dependency):
                    continue
                raise MissingDependencyError(
                    f"{self.category} depends on {dependency}, which has no finder task",
                    details={"category": str(self.category), "dependency": str(dependency)},
                )

            self.waiting_on = dependency
            self.log.info("task_waiting_for_dependency", dependency=str(dependency))
            try:
                if not task.wait_for(self.wait_timeout, waiter=self):
                    return False
            finally:
                self.waiting_on = None
        return True

    def run_scan(self) -> int:
        """One pass of this category's finder."""
        self.finder = create_finder(
            self.repository,
            self.category,
            sweep_missing=self.sweep_missing,
            error_tracker=self.error_tracker,
        )
        if self._stop_event.is_set():
            self.finder.interrupt()

        loaded = self.finder.find_and_register_objects()
        self.stats["passes"] += 1
        self.stats["loaded"] += loaded
        self.stats["last_pass_time"] = datetime.utcnow().isoformat()
        return loaded

    def after_scan(self) -> None:
        if self.finder is not None and self.finder.interrupted:
            return
        self.repository.set_category_initialized(self.category)
        self._initialized.set()

    # =========================================================================
    # Waiting
    # =========================================================================

    def wait_for(self, timeout: Optional[float] = None, waiter: Optional["FinderTask"] = None) -> bool:
        """
        Block until this task completed its first pass.

        Args:
            timeout: Maximum seconds to wait (None = forever)
            waiter: Waiting task; the wait ends early when it is stopped

        Returns:
            True once initialized, False if ``waiter`` was stopped meanwhile

        Raises:
            DependencyWaitTimeoutError: If not initialized within ``timeout``
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self._initialized.is_set():
            if waiter is not None and waiter.stopped:
                return False
            finished = self._thread is not None and not self._thread.is_alive()
            if self.error is not None or finished or (self.stopped and self._thread is None):
                remaining = 0.0
            elif deadline is None:
                remaining = WAIT_SLICE
            else:
                remaining = deadline - time.monotonic()
            if remaining <= 0:
                if self._initialized.is_set():
                    break
                chain = self.waiting_chain(waiter)
                reason = "timed out" if deadline is not None and self.error is None and not finished else "failed"
                raise DependencyWaitTimeoutError(
                    f"Waiting for {self.category} {reason} ({' -> '.join(chain)})",
                    details={
                        "category": str(self.category),
                        "timeout": timeout,
                        "chain": chain,
                    },
                )
            self._initialized.wait(min(remaining, WAIT_SLICE))
        return True

    def waiting_chain(self, waiter: Optional["FinderTask"] = None) -> List[str]:
        """Categories from ``waiter`` along the tasks currently waiting on each other."""
        chain = [str(waiter.category)] if waiter is not None else []
        task: Optional[FinderTask] = self
        seen = set()
        while task is not None and task.category not in seen:
            seen.add(task.category)
            chain.append(str(task.category))
            if task.waiting_on is None:
                break
            task = self.supervisor.get_task(task.waiting_on)
        return chain

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "category": str(self.category),
            "state": self.state.value,
            "initialized": self.is_initialized,
            "waiting_on": str(self.waiting_on) if self.waiting_on else None,
            "error": str(self.error) if self.error else None,
            "error_stats": self.error_tracker.get_stats(),
        }
