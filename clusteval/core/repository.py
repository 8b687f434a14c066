"""
Repository Registry.

Process-wide typed store of everything discovered in a repository directory:
per category the loaded extension classes (fully-qualified name -> class) and
the registered repository objects (name -> object), the "category initialized"
latches set by the finder tasks, format versions, available format conversions
and the errors finders ran into.

All operations are serialized by one re-entrant lock; listeners of removed or
replaced objects are notified after the lock is released.
"""

import inspect
import os
import threading
from typing import Any, Dict, Iterable, List, Optional, Set

from clusteval.core.categories import CATEGORY_SPECS, ExtensionCategory
from clusteval.core.repository_object import (
    RepositoryEvent,
    RepositoryObject,
    RepositoryRemoveEvent,
    RepositoryReplaceEvent,
)
from clusteval.schemas.data_models import (
    CategorySnapshot,
    FormatConversion,
    LoadedArtifactRecord,
    RegistrySnapshot,
)
from clusteval.utils.advanced_logging import get_logger
from clusteval.utils.error_handling import (
    FormatVersionError,
    MalformedArtifactError,
    RepositoryConfigurationError,
    unknown_error_for,
)

logger = get_logger(__name__)


def declared_version(cls: type) -> Optional[int]:
    """Integer version declared on ``cls`` itself, or None."""
    version = vars(cls).get("version")
    if isinstance(version, bool) or not isinstance(version, int):
        return None
    return version


class Repository:
    """
    Registry of one evaluation session, or of a run result nested in a parent repository.

    Lookups of classes, format versions and objects fall back to the parent
    repository when nothing is registered locally.
    """

    def __init__(
        self,
        root: str,
        parent: Optional["Repository"] = None,
        paths: Optional[Dict[ExtensionCategory, str]] = None,
    ):
        """
        Initialize repository.

        Args:
            root: Repository root directory
            parent: Parent repository (for run result repositories)
            paths: Per-category base path overrides, absolute or relative to root
        """
        self.root = os.path.abspath(root)
        self.parent = parent
        self._paths = dict(paths or {})

        self._lock = threading.RLock()
        self._classes: Dict[ExtensionCategory, Dict[str, type]] = {c: {} for c in ExtensionCategory}
        self._parser_classes: Dict[ExtensionCategory, Dict[str, type]] = {
            c: {} for c in ExtensionCategory if CATEGORY_SPECS[c].is_paired
        }
        self._objects: Dict[ExtensionCategory, Dict[str, Any]] = {c: {} for c in ExtensionCategory}
        self._versions: Dict[ExtensionCategory, Dict[str, int]] = {c: {} for c in ExtensionCategory}
        self._initialized: Set[ExtensionCategory] = set()
        self._conversions: List[FormatConversion] = []
        self._finder_exceptions: Dict[str, List[Exception]] = {}
        self._artifact_records: Dict[ExtensionCategory, Dict[str, LoadedArtifactRecord]] = {
            c: {} for c in ExtensionCategory
        }

        logger.info("repository_created", root=self.root, parent=parent.root if parent else None)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def get_base_path(self, category: ExtensionCategory) -> str:
        """Directory the finder of ``category`` scans."""
        path = self._paths.get(category, CATEGORY_SPECS[category].default_path)
        if not os.path.isabs(path):
            path = os.path.join(self.root, path)
        return os.path.normpath(path)

    def ensure_layout(self) -> None:
        """Create missing base directories of all categories."""
        try:
            for category in ExtensionCategory:
                os.makedirs(self.get_base_path(category), exist_ok=True)
        except OSError as e:
            raise RepositoryConfigurationError(
                f"Cannot create repository layout under {self.root}: {e}",
                details={"root": self.root},
            ) from e

    # ------------------------------------------------------------------
    # Repository objects
    # ------------------------------------------------------------------

    def register(self, category: ExtensionCategory, name: str, obj: Any) -> bool:
        """
        Register an object unless it or an equal object is already registered.

        Returns:
            False without changing anything if ``name`` or an equal object is known
        """
        with self._lock:
            store = self._objects[category]
            if name in store or any(existing == obj for existing in store.values()):
                return False
            store[name] = obj
        logger.debug("object_registered", category=str(category), name=name)
        return True

    def unregister(self, category: ExtensionCategory, name: str) -> bool:
        """
        Remove a registered object; calling it again is harmless.

        Returns:
            False if nothing was registered under ``name``
        """
        with self._lock:
            obj = self._objects[category].pop(name, None)
        if obj is None:
            return False
        logger.debug("object_unregistered", category=str(category), name=name)
        self._notify(obj, RepositoryRemoveEvent(obj))
        return True

    def replace(self, category: ExtensionCategory, name: str, replacement: Any) -> bool:
        """
        Swap the object registered under ``name`` for ``replacement``.

        Returns:
            False if nothing was registered under ``name``
        """
        with self._lock:
            store = self._objects[category]
            old = store.get(name)
            if old is None:
                return False
            store[name] = replacement
        logger.debug("object_replaced", category=str(category), name=name)
        self._notify(old, RepositoryReplaceEvent(old, replacement))
        return True

    def _notify(self, obj: Any, event: RepositoryEvent) -> None:
        if isinstance(obj, RepositoryObject):
            obj.notify(event)

    def get(self, category: ExtensionCategory, name: str) -> Optional[Any]:
        """Object registered under ``name`` here or in a parent repository."""
        with self._lock:
            obj = self._objects[category].get(name)
        if obj is None and self.parent is not None:
            return self.parent.get(category, name)
        return obj

    def get_registered_object(
        self, category: ExtensionCategory, obj: Any, inherit: bool = True
    ) -> Optional[Any]:
        """The registered object equal to ``obj``, if any."""
        with self._lock:
            for existing in self._objects[category].values():
                if existing == obj:
                    return existing
        if inherit and self.parent is not None:
            return self.parent.get_registered_object(category, obj)
        return None

    def get_objects(self, category: ExtensionCategory) -> List[Any]:
        with self._lock:
            return list(self._objects[category].values())

    def is_registered(self, category: ExtensionCategory, name: str) -> bool:
        """
        True if a class (artifact categories) or object (file categories) is registered.

        Class names are fully-qualified; a simple class name is qualified first.
        """
        spec = CATEGORY_SPECS[category]
        if spec.is_artifact:
            return self.get_class(category, name) is not None
        return self.get(category, name) is not None

    # ------------------------------------------------------------------
    # Initialization latches
    # ------------------------------------------------------------------

    def set_category_initialized(self, category: ExtensionCategory) -> None:
        with self._lock:
            if category in self._initialized:
                return
            self._initialized.add(category)
        logger.info("category_initialized", category=str(category), root=self.root)

    def is_category_initialized(self, category: ExtensionCategory) -> bool:
        with self._lock:
            return category in self._initialized

    # ------------------------------------------------------------------
    # Extension classes
    # ------------------------------------------------------------------

    def _qualify(self, category: ExtensionCategory, name: str) -> str:
        spec = CATEGORY_SPECS[category]
        if "." in name:
            return name
        return spec.qualified_name(name)

    def get_classes(self, category: ExtensionCategory) -> List[type]:
        """Registered classes of ``category``, local ones shadowing the parent's."""
        with self._lock:
            classes = dict(self._classes[category])
        if self.parent is not None:
            for cls in self.parent.get_classes(category):
                classes.setdefault(CATEGORY_SPECS[category].qualified_name(cls.__name__), cls)
        return list(classes.values())

    def get_class(self, category: ExtensionCategory, name: str) -> Optional[type]:
        qualified = self._qualify(category, name)
        with self._lock:
            cls = self._classes[category].get(qualified)
        if cls is None and self.parent is not None:
            return self.parent.get_class(category, qualified)
        return cls

    def register_class(self, category: ExtensionCategory, cls: type) -> bool:
        """
        Register an extension class under its fully-qualified name.

        For format categories the class's declared version becomes the
        current version of the format.

        Returns:
            False if a class with the same name is already registered
        """
        spec = CATEGORY_SPECS[category]
        qualified = spec.qualified_name(cls.__name__)
        with self._lock:
            if qualified in self._classes[category]:
                return False
            self._classes[category][qualified] = cls
            if spec.is_paired:
                version = declared_version(cls)
                if version is not None:
                    self._versions[category][cls.__name__] = version
        logger.info("class_registered", category=str(category), name=qualified)
        return True

    def unregister_class(self, category: ExtensionCategory, cls: Any) -> bool:
        """
        Remove an extension class, given as class or name.

        Returns:
            False if it was not registered
        """
        spec = CATEGORY_SPECS[category]
        simple = cls.__name__ if inspect.isclass(cls) else spec.simple_name(cls)
        qualified = spec.qualified_name(simple)
        with self._lock:
            removed = self._classes[category].pop(qualified, None)
            if removed is None:
                return False
            self._versions[category].pop(simple, None)
        logger.info("class_unregistered", category=str(category), name=qualified)
        return True

    def put_current_version(self, category: ExtensionCategory, simple_name: str, version: int) -> None:
        with self._lock:
            self._versions[category][simple_name] = version

    def get_current_version(self, category: ExtensionCategory, simple_name: str) -> int:
        """
        Current version of a format.

        Raises:
            UnknownExtensionError: Category-specific subclass if the version is unknown
        """
        with self._lock:
            version = self._versions[category].get(simple_name)
        if version is not None:
            return version
        if self.parent is not None:
            return self.parent.get_current_version(category, simple_name)
        raise unknown_error_for(category)(
            f"{category} {simple_name} is not registered",
            details={"name": simple_name},
        )

    # ------------------------------------------------------------------
    # Paired parser classes
    # ------------------------------------------------------------------

    def register_parser_class(self, category: ExtensionCategory, parser_cls: type) -> bool:
        """
        Register the parser paired with a format of ``category``.

        Raises:
            UnknownExtensionError: Category-specific subclass if the format is not registered
            FormatVersionError: If the parser is older than the format
            MalformedArtifactError: If the parser declares no version

        Returns:
            False if the parser is already registered
        """
        spec = CATEGORY_SPECS[category]
        if not spec.is_paired:
            raise ValueError(f"{category} has no paired parser classes")

        parser_name = parser_cls.__name__
        format_name = parser_name[: -len(spec.paired_suffix)] if parser_name.endswith(spec.paired_suffix) else parser_name
        if self.get_class(category, format_name) is None:
            raise unknown_error_for(category)(
                f"The parser {parser_name} belongs to the unknown {category} {format_name}",
                details={"parser": parser_name, "format": format_name},
            )

        parser_version = declared_version(parser_cls)
        if parser_version is None:
            raise MalformedArtifactError(
                f"The parser class {parser_name} is missing the version information",
                details={"parser": parser_name},
            )

        format_version = self.get_current_version(category, format_name)
        if parser_version < format_version:
            raise FormatVersionError(
                f"The parser class {parser_name} is outdated "
                f"(was version {parser_version} but required is {format_version})",
                details={
                    "parser": parser_name,
                    "parser_version": parser_version,
                    "format_version": format_version,
                },
            )

        qualified = spec.qualified_name(parser_name)
        with self._lock:
            parsers = self._parser_classes[category]
            if qualified in parsers:
                return False
            parsers[qualified] = parser_cls
        logger.info("parser_registered", category=str(category), name=qualified, version=parser_version)
        return True

    def unregister_parser_class(self, category: ExtensionCategory, parser: Any) -> bool:
        spec = CATEGORY_SPECS[category]
        simple = parser.__name__ if inspect.isclass(parser) else spec.simple_name(parser)
        with self._lock:
            removed = self._parser_classes[category].pop(spec.qualified_name(simple), None)
        return removed is not None

    def get_parser_class(self, category: ExtensionCategory, format_name: str) -> Optional[type]:
        """Parser registered for the format ``format_name`` (simple or qualified)."""
        spec = CATEGORY_SPECS[category]
        qualified = spec.qualified_name(spec.simple_name(format_name) + spec.paired_suffix)
        with self._lock:
            parser = self._parser_classes[category].get(qualified)
        if parser is None and self.parent is not None:
            return self.parent.get_parser_class(category, format_name)
        return parser

    def get_parser_classes(self, category: ExtensionCategory) -> List[type]:
        with self._lock:
            return list(self._parser_classes.get(category, {}).values())

    # ------------------------------------------------------------------
    # Format conversions
    # ------------------------------------------------------------------

    def add_available_format_conversion(
        self, source_format: str, target_format: str, parser: str, method: str
    ) -> None:
        conversion = FormatConversion(
            source_format=source_format,
            target_format=target_format,
            parser=parser,
            method=method,
        )
        with self._lock:
            if conversion not in self._conversions:
                self._conversions.append(conversion)

    def remove_format_conversions(self, parser: str) -> None:
        with self._lock:
            self._conversions = [c for c in self._conversions if c.parser != parser]

    def get_available_format_conversions(self) -> List[FormatConversion]:
        with self._lock:
            return list(self._conversions)

    # ------------------------------------------------------------------
    # Known finder exceptions
    # ------------------------------------------------------------------

    def record_finder_exception(self, path: str, error: Exception) -> bool:
        """
        Remember an error a finder ran into for ``path``.

        Returns:
            True if this error was not known for ``path`` before
        """
        with self._lock:
            known = self._finder_exceptions.setdefault(path, [])
            for existing in known:
                if type(existing) is type(error) and str(existing) == str(error):
                    return False
            known.append(error)
            return True

    def clear_finder_exceptions(self, path: str) -> None:
        with self._lock:
            self._finder_exceptions.pop(path, None)

    def get_known_finder_exceptions(self) -> Dict[str, List[Exception]]:
        with self._lock:
            return {path: list(errors) for path, errors in self._finder_exceptions.items()}

    # ------------------------------------------------------------------
    # Loaded artifact records
    # ------------------------------------------------------------------

    def get_artifact_record(self, category: ExtensionCategory, path: str) -> Optional[LoadedArtifactRecord]:
        with self._lock:
            return self._artifact_records[category].get(path)

    def put_artifact_record(self, category: ExtensionCategory, record: LoadedArtifactRecord) -> None:
        with self._lock:
            self._artifact_records[category][record.path] = record

    def remove_artifact_record(self, category: ExtensionCategory, path: str) -> Optional[LoadedArtifactRecord]:
        with self._lock:
            return self._artifact_records[category].pop(path, None)

    def get_artifact_records(self, category: ExtensionCategory) -> List[LoadedArtifactRecord]:
        with self._lock:
            return list(self._artifact_records[category].values())

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def snapshot(self, categories: Optional[Iterable[ExtensionCategory]] = None) -> RegistrySnapshot:
        """Point-in-time view of the registry for reporting."""
        categories = list(categories or ExtensionCategory)
        with self._lock:
            category_snapshots = [
                CategorySnapshot(
                    category=str(category),
                    initialized=category in self._initialized,
                    classes=sorted(
                        list(self._classes[category]) + list(self._parser_classes.get(category, {}))
                    ),
                    objects=sorted(self._objects[category]),
                    versions=dict(self._versions[category]),
                )
                for category in categories
            ]
            return RegistrySnapshot(
                root=self.root,
                parent_root=self.parent.root if self.parent else None,
                categories=category_snapshots,
                conversions=list(self._conversions),
                known_errors={
                    path: [str(e) for e in errors]
                    for path, errors in self._finder_exceptions.items()
                },
            )

    def __repr__(self) -> str:
        return f"Repository({self.root!r})"
