"""
Dynamic loader for extension artifacts.

An artifact is a Python source file such as
``supp/distanceMeasures/default/FooDistanceMeasure.py``. It is executed into a
fresh module named ``<package prefix>.<file base name>`` and the classes it
defines are registered at the repository:

- the primary class named like the file (``FooDistanceMeasure``)
- for formats also the paired parser (``FooDataSetFormatParser``)
- or exactly the classes listed in a module-level ``__extensions__``

A loaded artifact is only reloaded once its modification time increases.
The reload first unregisters everything the previous load registered, then
executes the file into a brand-new module object.
"""

import ast
import importlib.util
import inspect
import os
import sys
from types import ModuleType
from typing import Dict, List, Optional, Set

from clusteval.core.categories import ExtensionCategory
from clusteval.core.repository import Repository, declared_version
from clusteval.finders.finder import Finder
from clusteval.schemas.data_models import LoadedArtifactRecord, LoadOutcome
from clusteval.utils.error_handling import (
    ErrorTracker,
    FormatVersionError,
    MalformedArtifactError,
    RegisterError,
)


def declared_parents(path: str) -> List[str]:
    """
    Simple names of the parent artifacts declared in a source file.

    Looks for class-level ``parent = "<SimpleName>"`` assignments without
    executing the file.
    """
    with open(path, "r") as f:
        tree = ast.parse(f.read(), filename=path)

    parents = []
    for node in ast.walk(tree):
        if not isinstance(node, ast.ClassDef):
            continue
        for stmt in node.body:
            if (
                isinstance(stmt, ast.Assign)
                and any(isinstance(t, ast.Name) and t.id == "parent" for t in stmt.targets)
                and isinstance(stmt.value, ast.Constant)
                and isinstance(stmt.value.value, str)
            ):
                if stmt.value.value not in parents:
                    parents.append(stmt.value.value)
    return parents


class ArtifactFinder(Finder):
    """Finder for the artifact categories (formats, measures, contexts, ...)."""

    def __init__(
        self,
        repository: Repository,
        category: ExtensionCategory,
        sweep_missing: bool = True,
        error_tracker: Optional[ErrorTracker] = None,
    ):
        super().__init__(repository, category, error_tracker)
        if not self.spec.is_artifact:
            raise ValueError(f"{category} is not an artifact category")
        self.sweep_missing = sweep_missing
        self._loading: Set[str] = set()

    # =========================================================================
    # Change detection
    # =========================================================================

    def primary_name(self, path: str) -> str:
        return self.spec.qualified_name(os.path.splitext(os.path.basename(path))[0])

    def is_loaded(self, path: str, mtime: float) -> bool:
        """
        True if ``path`` is unchanged since its last load.

        A successfully loaded artifact whose primary class has since been
        unregistered counts as not loaded.
        """
        record = self.repository.get_artifact_record(self.category, path)
        if record is None or not record.is_current(mtime):
            return False
        primary = self.primary_name(path)
        if record.outcome != LoadOutcome.FAILED and primary in record.class_names:
            return self.repository.get_class(self.category, primary) is not None
        return True

    def do_on_file_found(self, path: str) -> bool:
        mtime = os.path.getmtime(path)
        if self.is_loaded(path, mtime):
            return False

        record = self.repository.get_artifact_record(self.category, path)
        if record is not None:
            self.log.info("artifact_changed", path=path, old_mtime=record.mtime, mtime=mtime)
            self.remove_old_object(record)

        self.load_artifact(path, mtime)
        return True

    # =========================================================================
    # Unloading
    # =========================================================================

    def remove_old_object(self, record: LoadedArtifactRecord) -> None:
        """Unregister every class the previous load of an artifact registered."""
        for name in record.class_names:
            if self.spec.is_paired and name.endswith(self.spec.paired_suffix):
                self.repository.unregister_parser_class(self.category, name)
                self.repository.remove_format_conversions(self.spec.simple_name(name))
            else:
                self.repository.unregister_class(self.category, name)
                if self.spec.is_paired:
                    parser = self.spec.simple_name(name) + self.spec.paired_suffix
                    if self.repository.unregister_parser_class(self.category, parser):
                        self.repository.remove_format_conversions(parser)
            self.log.info("artifact_class_unregistered", name=name, path=record.path)

        sys.modules.pop(self.primary_name(record.path), None)

    def after_pass(self, seen: List[str]) -> None:
        """Unregister artifacts whose files disappeared."""
        if not self.sweep_missing:
            return
        for record in self.repository.get_artifact_records(self.category):
            if os.path.exists(record.path):
                continue
            self.log.info("artifact_removed", path=record.path, classes=record.class_names)
            self.remove_old_object(record)
            self.repository.remove_artifact_record(self.category, record.path)
            self.repository.clear_finder_exceptions(record.path)

    # =========================================================================
    # Loading
    # =========================================================================

    def class_names_for(self, path: str, module: ModuleType) -> List[str]:
        """Simple names of the classes an artifact must provide."""
        manifest = getattr(module, "__extensions__", None)
        if manifest is not None:
            if isinstance(manifest, str) or not all(isinstance(n, str) for n in manifest):
                raise MalformedArtifactError(
                    f"__extensions__ of {path} must be a list of class names",
                    details={"path": path},
                )
            return list(manifest)

        base = os.path.splitext(os.path.basename(path))[0]
        names = [base]
        if self.spec.is_paired:
            names.append(base + self.spec.paired_suffix)
        return names

    def load_module(self, path: str, parents: Dict[str, type]) -> ModuleType:
        """
        Execute ``path`` into a new module object.

        The classes in ``parents`` are visible in the module namespace so the
        artifact can subclass them by name.
        """
        module_name = self.primary_name(path)
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise MalformedArtifactError(f"Cannot load {path}", details={"path": path})

        module = importlib.util.module_from_spec(spec)
        for name, cls in parents.items():
            setattr(module, name, cls)

        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            sys.modules.pop(module_name, None)
            raise MalformedArtifactError(
                f"Loading {path} failed: {type(e).__name__}: {e}",
                details={"path": path},
            ) from e
        return module

    def load_parents(self, path: str) -> Dict[str, type]:
        """
        Load the sibling artifacts the classes of ``path`` derive from.

        Raises:
            MalformedArtifactError: If a parent cannot be loaded
        """
        try:
            parent_names = declared_parents(path)
        except SyntaxError as e:
            raise MalformedArtifactError(f"Cannot parse {path}: {e}", details={"path": path}) from e

        parents: Dict[str, type] = {}
        for parent_name in parent_names:
            cls = self.repository.get_class(self.category, parent_name)
            if cls is None:
                parent_path = os.path.join(os.path.dirname(path), parent_name + ".py")
                if parent_path in self._loading:
                    raise MalformedArtifactError(
                        f"Cyclic parent declaration between {path} and {parent_path}",
                        details={"path": path, "parent": parent_name},
                    )
                if os.path.isfile(parent_path):
                    try:
                        self.do_on_file_found(parent_path)
                    except Exception as e:
                        self.handle_error(parent_path, e)
                cls = self.repository.get_class(self.category, parent_name)
            if cls is None:
                raise MalformedArtifactError(
                    f"The parent {parent_name} of {path} could not be loaded",
                    details={"path": path, "parent": parent_name},
                )
            parents[parent_name] = cls
        return parents

    def validate_class(self, path: str, module: ModuleType, simple_name: str) -> type:
        """
        Raises:
            MalformedArtifactError: If the class is missing, abstract, of the wrong
                type or lacks the version information
        """
        cls = vars(module).get(simple_name)
        if cls is None or not inspect.isclass(cls):
            raise MalformedArtifactError(
                f"{path} does not define the class {simple_name}",
                details={"path": path, "class": simple_name},
            )

        is_parser = self.spec.is_paired and simple_name.endswith(self.spec.paired_suffix)
        capability = self.spec.paired_capability if is_parser else self.spec.capability
        if not issubclass(cls, capability):
            raise MalformedArtifactError(
                f"The class {simple_name} is not a {capability.__name__}",
                details={"path": path, "class": simple_name},
            )
        if inspect.isabstract(cls):
            raise MalformedArtifactError(
                f"The class {simple_name} is abstract",
                details={"path": path, "class": simple_name},
            )
        if self.spec.versioned and declared_version(cls) is None:
            raise MalformedArtifactError(
                f"The class {simple_name} is missing the version information",
                details={"path": path, "class": simple_name},
            )
        return cls

    def register_loaded_class(self, path: str, cls: type) -> None:
        """
        Raises:
            RegisterError: If a class of the same name stems from another artifact
        """
        is_parser = self.spec.is_paired and cls.__name__.endswith(self.spec.paired_suffix)
        if is_parser:
            registered = self.repository.register_parser_class(self.category, cls)
        else:
            registered = self.repository.register_class(self.category, cls)
        if not registered:
            raise RegisterError(
                f"The class {cls.__name__} of {path} is already registered by another artifact",
                details={"path": path, "class": cls.__name__},
            )

        if is_parser:
            self.register_conversions(cls)
        elif self.spec.versioned:
            self.repository.put_current_version(self.category, cls.__name__, declared_version(cls))

    def register_conversions(self, parser_cls: type) -> None:
        for method_name, member in vars(parser_cls).items():
            for source, target in getattr(member, "__parser_conversions__", ()):
                self.repository.add_available_format_conversion(
                    source, target, parser_cls.__name__, method_name
                )

    def load_artifact(self, path: str, mtime: float) -> LoadedArtifactRecord:
        """
        Load an artifact and register its classes.

        The record is stored whatever the outcome, so a failed artifact is
        only retried once it changes.
        """
        self._loading.add(path)
        class_names: List[str] = []
        errors: List[Exception] = []
        expected = 0
        try:
            try:
                parents = self.load_parents(path)
                module = self.load_module(path, parents)
                simple_names = self.class_names_for(path, module)
            except RegisterError as e:
                errors.append(e)
                simple_names = []

            expected = len(simple_names)
            for simple_name in simple_names:
                try:
                    cls = self.validate_class(path, module, simple_name)
                    self.register_loaded_class(path, cls)
                    class_names.append(self.spec.qualified_name(simple_name))
                except RegisterError as e:
                    if isinstance(e, FormatVersionError):
                        self.log.warning("parser_version_rejected", path=path, **e.details)
                    errors.append(e)
        finally:
            self._loading.discard(path)

        if not errors:
            outcome = LoadOutcome.LOADED
        elif class_names and len(class_names) < expected:
            outcome = LoadOutcome.PARTIAL
        else:
            outcome = LoadOutcome.FAILED

        record = LoadedArtifactRecord(
            path=path,
            mtime=mtime,
            class_names=class_names,
            outcome=outcome,
            errors=[str(e) for e in errors],
        )
        self.repository.put_artifact_record(self.category, record)

        if outcome == LoadOutcome.LOADED:
            self.repository.clear_finder_exceptions(path)
            self.log.info("artifact_loaded", path=path, classes=class_names)
        else:
            for error in errors:
                self.error_tracker.record(error)
                if self.repository.record_finder_exception(path, error):
                    self.log.warning(
                        "artifact_load_failed",
                        path=path,
                        outcome=outcome.value,
                        error=str(error),
                        error_type=type(error).__name__,
                    )
        return record
