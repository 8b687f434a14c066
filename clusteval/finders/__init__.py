"""
Finders for the repository categories.

Exports:
- Finder: Base class scanning one category directory
- SubDirectoryIterator: Two-level directory walk
- ArtifactFinder: Loads extension artifacts
- FileFinder: Parses configuration and data files
- create_finder: Finder matching a category
"""

from typing import Optional

from clusteval.core.categories import CATEGORY_SPECS, ExtensionCategory
from clusteval.core.repository import Repository
from clusteval.finders.artifact_finder import ArtifactFinder
from clusteval.finders.file_finder import FileFinder
from clusteval.finders.finder import Finder, SubDirectoryIterator
from clusteval.utils.error_handling import ErrorTracker


def create_finder(
    repository: Repository,
    category: ExtensionCategory,
    sweep_missing: bool = True,
    error_tracker: Optional[ErrorTracker] = None,
) -> Finder:
    """Create the finder for ``category``."""
    if CATEGORY_SPECS[category].is_artifact:
        return ArtifactFinder(repository, category, sweep_missing, error_tracker)
    return FileFinder(repository, category, sweep_missing, error_tracker)


__all__ = [
    "Finder",
    "SubDirectoryIterator",
    "ArtifactFinder",
    "FileFinder",
    "create_finder",
]
