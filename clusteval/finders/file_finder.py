"""
Finder for configuration and data files.

Parses candidate files into repository objects and registers them. A file
whose object is registered and unchanged is skipped; a changed file replaces
the registered object (dependents follow the replacement). A file that fails
to parse is retried on every pass until it succeeds; each distinct error is
logged once.
"""

import os
from typing import List, Optional

from clusteval.core.categories import ExtensionCategory
from clusteval.core.config_objects import CONFIG_OBJECT_TYPES
from clusteval.core.repository import Repository
from clusteval.finders.finder import Finder
from clusteval.utils.error_handling import ErrorTracker


class FileFinder(Finder):
    """Finder for the file categories (datasets, dataset configs, runs, ...)."""

    def __init__(
        self,
        repository: Repository,
        category: ExtensionCategory,
        sweep_missing: bool = True,
        error_tracker: Optional[ErrorTracker] = None,
    ):
        super().__init__(repository, category, error_tracker)
        if self.spec.is_artifact:
            raise ValueError(f"{category} is not a file category")
        self.object_type = CONFIG_OBJECT_TYPES[category]
        self.sweep_missing = sweep_missing

    def _registered_for(self, path: str):
        for obj in self.repository.get_objects(self.category):
            if obj.abs_path == os.path.abspath(path):
                return obj
        return None

    def do_on_file_found(self, path: str) -> bool:
        existing = self._registered_for(path)
        if existing is not None and os.path.getmtime(path) <= existing.change_date:
            return False

        try:
            obj = self.object_type.parse_from_file(self.repository, path)
        except Exception:
            if existing is not None:
                self.log.info("changed_object_invalid_unregistering", path=path, name=existing.name)
                existing.unregister()
            raise

        if existing is None:
            if not obj.register():
                taken = self.repository.get(self.category, obj.name)
                self.log.warning(
                    "object_name_taken",
                    path=path,
                    name=obj.name,
                    registered=getattr(taken, "abs_path", None),
                )
                return False
            self.log.info("object_registered", path=path, name=obj.name)
        else:
            self.repository.replace(self.category, existing.name, obj)
            self.log.info("object_replaced", path=path, name=obj.name)

        self.repository.clear_finder_exceptions(path)
        return True

    def after_pass(self, seen: List[str]) -> None:
        """Unregister objects whose files disappeared."""
        if not self.sweep_missing:
            return
        for obj in self.repository.get_objects(self.category):
            if not os.path.exists(obj.abs_path):
                self.log.info("object_removed", path=obj.abs_path, name=obj.name)
                obj.unregister()
                self.repository.clear_finder_exceptions(obj.abs_path)
