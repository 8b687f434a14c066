"""
Finder base class and the two-level directory scanner.

A finder walks the base directory of one category (``<base>/<group>/<file>``),
offers every candidate file to ``do_on_file_found`` and keeps going when a
single file fails: the error is recorded at the repository and logged once per
distinct error for that file.
"""

import os
import threading
from abc import ABC, abstractmethod
from typing import Iterable, Iterator, List, Optional

from clusteval.core.categories import CATEGORY_SPECS, ExtensionCategory
from clusteval.core.repository import Repository
from clusteval.utils.advanced_logging import PerformanceLogger, get_logger
from clusteval.utils.error_handling import ErrorTracker, RepositoryConfigurationError

logger = get_logger(__name__)


class SubDirectoryIterator:
    """
    Iterate ``<base>/<group>/<file>`` in sorted order.

    Only regular files one level below the group directories are yielded;
    hidden entries and the ``excluded_groups`` are skipped.
    """

    def __init__(self, base_dir: str, excluded_groups: Iterable[str] = ()):
        self.base_dir = base_dir
        self.excluded_groups = set(excluded_groups)

    def __iter__(self) -> Iterator[str]:
        for group in sorted(os.listdir(self.base_dir)):
            group_dir = os.path.join(self.base_dir, group)
            if group.startswith(".") or group in self.excluded_groups or not os.path.isdir(group_dir):
                continue
            for file_name in sorted(os.listdir(group_dir)):
                path = os.path.join(group_dir, file_name)
                if file_name.startswith(".") or not os.path.isfile(path):
                    continue
                yield path


class Finder(ABC):
    """
    Scans the base directory of one category and registers what it finds.

    Subclasses implement ``check_file`` and ``do_on_file_found``.
    """

    def __init__(
        self,
        repository: Repository,
        category: ExtensionCategory,
        error_tracker: Optional[ErrorTracker] = None,
    ):
        self.repository = repository
        self.category = category
        self.spec = CATEGORY_SPECS[category]
        self.error_tracker = error_tracker or ErrorTracker()
        self._interrupted = threading.Event()
        self.log = logger.bind(category=str(category))

    def get_base_dir(self) -> str:
        return self.repository.get_base_path(self.category)

    def get_iterator(self) -> Iterable[str]:
        """
        Raises:
            RepositoryConfigurationError: If the base directory does not exist
        """
        base_dir = self.get_base_dir()
        if not os.path.isdir(base_dir):
            raise RepositoryConfigurationError(
                f"The base directory {base_dir} of {self.category} does not exist",
                details={"category": str(self.category), "base_dir": base_dir},
            )
        return SubDirectoryIterator(base_dir, self.spec.excluded_groups)

    def scan(self) -> Iterator[str]:
        """Candidate files of this category, until interrupted."""
        for path in self.get_iterator():
            if self.interrupted:
                return
            if self.check_file(path):
                yield path

    def check_file(self, path: str) -> bool:
        """Category-specific candidate predicate."""
        return self.spec.matches(os.path.basename(path))

    @abstractmethod
    def do_on_file_found(self, path: str) -> bool:
        """
        Process one candidate file.

        Returns:
            True if the file was (re)loaded, False if it was unchanged
        """
        pass

    def after_pass(self, seen: List[str]) -> None:
        """Hook run after a complete, uninterrupted pass with all files seen."""
        pass

    def find_and_register_objects(self) -> int:
        """
        Run one scan pass.

        Returns:
            Number of files (re)loaded during the pass

        Raises:
            RepositoryConfigurationError: If the base directory is missing
        """
        loaded = 0
        failed = 0
        seen: List[str] = []

        with PerformanceLogger("finder_pass", logger=self.log, log_level="debug") as perf:
            for path in self.scan():
                seen.append(path)
                try:
                    if self.do_on_file_found(path):
                        loaded += 1
                except Exception as e:
                    failed += 1
                    self.handle_error(path, e)

            if not self.interrupted:
                self.after_pass(seen)

        self.log.info(
            "finder_pass_completed",
            candidates=len(seen),
            loaded=loaded,
            failed=failed,
            interrupted=self.interrupted,
            duration_seconds=round(perf.elapsed_time, 3),
        )
        return loaded

    def handle_error(self, path: str, error: Exception) -> None:
        """Record a per-file error; log it only the first time it is seen for ``path``."""
        self.error_tracker.record(error)
        if self.repository.record_finder_exception(path, error):
            self.log.warning(
                "finder_file_failed",
                path=path,
                error=str(error),
                error_type=type(error).__name__,
            )

    def interrupt(self) -> None:
        self._interrupted.set()

    @property
    def interrupted(self) -> bool:
        return self._interrupted.is_set()
