"""
Core registry module.

Exports:
- Repository: Thread-safe registry of extension classes and repository objects
- RepositoryObject: Base class of objects parsed from repository files
- ExtensionCategory: Category tags
- CATEGORY_SPECS: Static description of every category
"""

from clusteval.core.categories import (
    ARTIFACT_CATEGORIES,
    CATEGORY_SPECS,
    FILE_CATEGORIES,
    CategorySpec,
    ExtensionCategory,
)
from clusteval.core.repository import Repository
from clusteval.core.repository_object import (
    RepositoryObject,
    RepositoryRemoveEvent,
    RepositoryReplaceEvent,
)

__all__ = [
    "Repository",
    "RepositoryObject",
    "RepositoryRemoveEvent",
    "RepositoryReplaceEvent",
    "ExtensionCategory",
    "CategorySpec",
    "CATEGORY_SPECS",
    "ARTIFACT_CATEGORIES",
    "FILE_CATEGORIES",
]
