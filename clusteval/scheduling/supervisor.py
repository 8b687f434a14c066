"""
Supervisor of the finder tasks of one repository.

Builds one FinderTask per category, checks the declared dependency graph before
anything runs and starts the tasks in dependency order.
"""

import time
from typing import Dict, List, Optional, Sequence

from clusteval.config.settings_loader import Settings
from clusteval.core.categories import (
    ARTIFACT_CATEGORIES,
    CATEGORY_SPECS,
    FILE_CATEGORIES,
    ExtensionCategory,
)
from clusteval.core.repository import Repository
from clusteval.scheduling.finder_task import FinderTask
from clusteval.utils.advanced_logging import get_logger
from clusteval.utils.error_handling import (
    DependencyCycleError,
    DependencyWaitTimeoutError,
    MissingDependencyError,
    RepositoryConfigurationError,
)

logger = get_logger(__name__)


class RepositorySupervisor:
    """
    Owns the finder tasks of a repository.

    Example:
        supervisor = RepositorySupervisor(repository, settings, check_once=True)
        supervisor.start()
        supervisor.wait_until_initialized(timeout=60)
    """

    TASK_CATEGORIES: Sequence[ExtensionCategory] = ARTIFACT_CATEGORIES + FILE_CATEGORIES

    def __init__(
        self,
        repository: Repository,
        settings: Optional[Settings] = None,
        check_once: Optional[bool] = None,
    ):
        """
        Initialize supervisor.

        Args:
            repository: Repository the tasks register at
            settings: Settings (threading and repository sections are used)
            check_once: Overrides ``settings.threading.check_once``
        """
        self.repository = repository
        self.settings = settings or Settings()
        threading_settings = self.settings.threading
        self.check_once = threading_settings.check_once if check_once is None else check_once

        self.tasks: Dict[ExtensionCategory, FinderTask] = {
            category: FinderTask(
                self,
                repository,
                category,
                sleep_time=threading_settings.get_sleep_time(category),
                check_once=self.check_once,
                wait_timeout=threading_settings.wait_timeout_seconds,
                sweep_missing=self.settings.repository.sweep_missing,
            )
            for category in self.TASK_CATEGORIES
        }
        self._order: List[ExtensionCategory] = []

    def get_task(self, category: ExtensionCategory) -> Optional[FinderTask]:
        return self.tasks.get(category)

    def _provided_by_parent(self, category: ExtensionCategory) -> bool:
        parent = self.repository.parent
        return parent is not None and parent.is_category_initialized(category)

    def validate_dependencies(self) -> List[ExtensionCategory]:
        """
        Check the dependency graph of the tasks.

        Returns:
            Task categories in an order where every category follows its dependencies

        Raises:
            MissingDependencyError: If a dependency has neither a task nor an initialized parent category
            DependencyCycleError: If the dependencies are cyclic
        """
        for category in self.tasks:
            for dependency in CATEGORY_SPECS[category].depends_on:
                if dependency not in self.tasks and not self._provided_by_parent(dependency):
                    raise MissingDependencyError(
                        f"{category} depends on {dependency}, which has no finder task",
                        details={"category": str(category), "dependency": str(dependency)},
                    )

        order: List[ExtensionCategory] = []
        done = set()
        path: List[ExtensionCategory] = []

        def visit(category: ExtensionCategory) -> None:
            if category in done:
                return
            if category in path:
                cycle = path[path.index(category):] + [category]
                raise DependencyCycleError(
                    "Cyclic dependency: " + " -> ".join(str(c) for c in cycle),
                    details={"cycle": [str(c) for c in cycle]},
                )
            path.append(category)
            for dependency in CATEGORY_SPECS[category].depends_on:
                if dependency in self.tasks:
                    visit(dependency)
            path.pop()
            done.add(category)
            order.append(category)

        for category in self.tasks:
            visit(category)
        return order

    def start(self) -> None:
        """
        Validate the dependency graph and start all tasks.

        Raises:
            DependencyError: If the graph is invalid; no task is started then
        """
        self._order = self.validate_dependencies()
        logger.info(
            "supervisor_starting",
            root=self.repository.root,
            tasks=[str(c) for c in self._order],
            check_once=self.check_once,
        )
        for category in self._order:
            self.tasks[category].start()

    def wait_until_initialized(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every task completed its first pass.

        Returns:
            False if a task is not initialized within ``timeout`` seconds

        Raises:
            DependencyError: The error a task stopped with
        """
        order = self._order or list(self.tasks)
        deadline = None if timeout is None else time.monotonic() + timeout
        for category in order:
            task = self.tasks[category]
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            try:
                task.wait_for(remaining)
            except DependencyWaitTimeoutError:
                if task.error is not None:
                    raise task.error
                return False
        return True

    def stop(self) -> None:
        logger.info("supervisor_stopping", root=self.repository.root)
        for task in self.tasks.values():
            task.stop()

    def join(self, timeout: Optional[float] = None) -> None:
        for task in self.tasks.values():
            task.join(timeout)

    def get_stats(self) -> Dict[str, Dict]:
        return {str(c): t.get_stats() for c, t in self.tasks.items()}


class RunResultRepositorySupervisor(RepositorySupervisor):
    """
    Supervisor of a run result repository.

    Only datasets, dataset configs and runs are scanned locally; extension
    classes and the remaining objects come from the parent repository, which
    must be initialized before.
    """

    TASK_CATEGORIES = (
        ExtensionCategory.DATASET,
        ExtensionCategory.DATASET_CONFIG,
        ExtensionCategory.RUN,
    )

    def __init__(
        self,
        repository: Repository,
        settings: Optional[Settings] = None,
        check_once: Optional[bool] = None,
    ):
        if repository.parent is None:
            raise RepositoryConfigurationError(
                f"The run result repository {repository.root} has no parent repository",
                details={"root": repository.root},
            )
        super().__init__(repository, settings, check_once)
