"""
Repository objects and repository events.

A ``RepositoryObject`` is anything registered at a repository that stems from
a file: datasets, configurations, runs. Two objects are equal when they have
the same concrete type and point at the same absolute path. Objects listen to
the objects they depend on; when a dependency is replaced they switch to the
replacement, when it is removed they unregister themselves.
"""

import os
import threading
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from clusteval.core.categories import ExtensionCategory
from clusteval.utils.advanced_logging import get_logger

if TYPE_CHECKING:
    from clusteval.core.repository import Repository

logger = get_logger(__name__)


class RepositoryEvent:
    """Base class of events sent to repository object listeners."""


class RepositoryReplaceEvent(RepositoryEvent):
    def __init__(self, old: "RepositoryObject", replacement: "RepositoryObject"):
        self.old = old
        self.replacement = replacement


class RepositoryRemoveEvent(RepositoryEvent):
    def __init__(self, removed: "RepositoryObject"):
        self.removed = removed


class RepositoryObject:
    """
    Base class for objects registered at a repository.

    Subclasses set ``category`` and keep references to the repository objects
    they depend on in ``self.dependencies`` (attribute name -> object).
    """

    category: Optional[ExtensionCategory] = None

    def __init__(
        self,
        repository: "Repository",
        abs_path: str,
        change_date: Optional[float] = None,
    ):
        self.repository = repository
        self.abs_path = os.path.abspath(abs_path)
        if change_date is None:
            change_date = os.path.getmtime(self.abs_path) if os.path.exists(self.abs_path) else 0.0
        self.change_date = change_date
        self.dependencies: Dict[str, "RepositoryObject"] = {}
        self._listeners: List["RepositoryObject"] = []
        self._listeners_lock = threading.Lock()

    @property
    def name(self) -> str:
        """Registration key: the file name without its extension."""
        return os.path.splitext(os.path.basename(self.abs_path))[0]

    def register(self) -> bool:
        return self.repository.register(self.category, self.name, self)

    def unregister(self) -> bool:
        return self.repository.unregister(self.category, self.name)

    def add_dependency(self, attribute: str, dependency: "RepositoryObject") -> None:
        """Keep a reference to ``dependency`` and listen to its changes."""
        self.dependencies[attribute] = dependency
        dependency.add_listener(self)

    def add_listener(self, listener: "RepositoryObject") -> None:
        # By identity: a replacement compares equal to the object it replaces.
        with self._listeners_lock:
            if not any(l is listener for l in self._listeners):
                self._listeners.append(listener)

    def remove_listener(self, listener: "RepositoryObject") -> None:
        with self._listeners_lock:
            self._listeners = [l for l in self._listeners if l is not listener]

    def get_listeners(self) -> List["RepositoryObject"]:
        with self._listeners_lock:
            return list(self._listeners)

    def notify(self, event: RepositoryEvent) -> None:
        """
        Handle an event about this object or one of its dependencies.

        Events about this object itself are forwarded to all listeners.
        """
        if isinstance(event, RepositoryReplaceEvent):
            if event.old is self:
                # The replacement listens to its own dependencies.
                for dependency in self.dependencies.values():
                    dependency.remove_listener(self)
                for listener in self.get_listeners():
                    listener.notify(event)
                return
            for attribute, dependency in list(self.dependencies.items()):
                if dependency is event.old:
                    self.dependencies[attribute] = event.replacement
                    event.old.remove_listener(self)
                    event.replacement.add_listener(self)
                    logger.debug(
                        "dependency_replaced",
                        object=self.name,
                        dependency=event.replacement.name,
                    )
        elif isinstance(event, RepositoryRemoveEvent):
            if event.removed is self:
                for listener in self.get_listeners():
                    listener.notify(event)
                return
            if any(dep is event.removed for dep in self.dependencies.values()):
                event.removed.remove_listener(self)
                logger.info(
                    "dependency_removed_unregistering",
                    object=self.name,
                    category=str(self.category),
                    dependency=event.removed.name,
                )
                self.unregister()

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, RepositoryObject):
            return NotImplemented
        return type(self) is type(other) and self.abs_path == other.abs_path

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.abs_path))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"
