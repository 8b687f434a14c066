"""
Repository objects parsed from configuration and data files.

Configuration files (``*.dsconfig``, ``*.gsconfig``, ``*.config``, ``*.run``)
carry a YAML mapping. Dataset files carry a header of ``// key = value`` lines
in front of the data. Every reference to an extension class or another
repository object is resolved against the repository while parsing; an
unresolvable reference raises the matching ``Unknown...Error``.
"""

import os
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Type

import yaml

from clusteval.core.categories import ExtensionCategory
from clusteval.core.repository_object import RepositoryObject
from clusteval.utils.error_handling import ConfigFileError, unknown_error_for

DEFAULT_CONTEXT = "ClusteringContext"
DEFAULT_DISTANCE_MEASURE = "EuclidianDistanceMeasure"

HEADER_PATTERN = re.compile(r"^//\s*([A-Za-z_][\w]*)\s*=\s*(.*?)\s*$")

RUN_MODES = ("clustering", "parameter_optimization", "data_analysis", "run_analysis")


# =============================================================================
# Helpers
# =============================================================================


def read_config_body(path: str) -> Dict[str, Any]:
    """
    Read the YAML mapping of a configuration file.

    Raises:
        ConfigFileError: If the file is unreadable or does not hold a mapping
    """
    try:
        with open(path, "r") as f:
            body = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigFileError(f"Cannot parse {path}: {e}", details={"path": path}) from e

    if not isinstance(body, dict):
        raise ConfigFileError(f"{path} does not contain a mapping", details={"path": path})
    return body


def require(body: Dict[str, Any], key: str, path: str) -> Any:
    if key not in body or body[key] in (None, ""):
        raise ConfigFileError(f"{path} is missing the entry '{key}'", details={"path": path, "key": key})
    return body[key]


def as_list(value: Any, separator: str = ",") -> List[str]:
    """Accept a YAML list or a separated string."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [v.strip() for v in str(value).split(separator) if v.strip()]


def resolve_class(repository, category: ExtensionCategory, name: str) -> type:
    """Registered extension class called ``name``, or the category's not-found error."""
    cls = repository.get_class(category, name)
    if cls is None:
        raise unknown_error_for(category)(
            f"\"{name}\" is not a registered {category}",
            details={"name": name, "category": str(category)},
        )
    return cls


def resolve_object(repository, category: ExtensionCategory, name: str) -> RepositoryObject:
    """Registered repository object called ``name``, or the category's not-found error."""
    obj = repository.get(category, name)
    if obj is None:
        raise unknown_error_for(category)(
            f"\"{name}\" is not a registered {category}",
            details={"name": name, "category": str(category)},
        )
    return obj


def data_dir(repository, category: ExtensionCategory) -> str:
    """Directory next to the configs of ``category`` holding their data files."""
    return os.path.dirname(repository.get_base_path(category))


# =============================================================================
# Config objects
# =============================================================================


class ConfigObject(RepositoryObject, ABC):
    """Repository object parsed from a file of its category."""

    @classmethod
    @abstractmethod
    def parse_from_file(cls, repository, path: str) -> "ConfigObject":
        """Parse and resolve the object stored at ``path``."""


class DataSet(ConfigObject):
    """
    A dataset file.

    The header names the dataset format, e.g.::

        // alias = Iris
        // dataSetFormat = RowSimDataSetFormat
        // dataSetFormatVersion = 1
    """

    category = ExtensionCategory.DATASET

    def __init__(
        self,
        repository,
        abs_path: str,
        alias: str,
        dataset_format: type,
        format_version: int,
        attributes: Optional[Dict[str, str]] = None,
        change_date: Optional[float] = None,
    ):
        super().__init__(repository, abs_path, change_date)
        self.alias = alias
        self.dataset_format = dataset_format
        self.format_version = format_version
        self.attributes = dict(attributes or {})

    @property
    def name(self) -> str:
        """``<group>/<file name>``, the way dataset configs refer to datasets."""
        group = os.path.basename(os.path.dirname(self.abs_path))
        return f"{group}/{os.path.basename(self.abs_path)}"

    @staticmethod
    def extract_header(path: str) -> Dict[str, str]:
        """Leading ``// key = value`` lines of a dataset file."""
        attributes: Dict[str, str] = {}
        with open(path, "r", errors="replace") as f:
            for line in f:
                match = HEADER_PATTERN.match(line.strip())
                if match is None:
                    break
                attributes[match.group(1)] = match.group(2)
        return attributes

    @classmethod
    def parse_from_file(cls, repository, path: str) -> "DataSet":
        """
        Parse a dataset file.

        Raises:
            ConfigFileError: If the header is missing, incomplete or the alias is taken
            UnknownDataSetFormatError: If the format is not registered
        """
        try:
            attributes = cls.extract_header(path)
        except OSError as e:
            raise ConfigFileError(f"Cannot read dataset {path}: {e}", details={"path": path}) from e

        if not attributes:
            raise ConfigFileError(f"The file {path} does not contain a dataset header", details={"path": path})

        alias = attributes.get("alias") or os.path.splitext(os.path.basename(path))[0]
        abs_path = os.path.abspath(path)
        for other in repository.get_objects(ExtensionCategory.DATASET):
            if other.alias == alias and other.abs_path != abs_path:
                raise ConfigFileError(
                    f"The alias ({alias}) of the data set {path} is already taken by {other.abs_path}",
                    details={"path": path, "alias": alias},
                )

        format_name = require(attributes, "dataSetFormat", path)
        dataset_format = resolve_class(repository, ExtensionCategory.DATASET_FORMAT, format_name)

        if "dataSetFormatVersion" in attributes:
            try:
                format_version = int(attributes["dataSetFormatVersion"])
            except ValueError:
                raise ConfigFileError(
                    f"Invalid dataSetFormatVersion in {path}",
                    details={"path": path, "value": attributes["dataSetFormatVersion"]},
                )
        else:
            format_version = repository.get_current_version(
                ExtensionCategory.DATASET_FORMAT, dataset_format.__name__
            )

        return cls(repository, path, alias, dataset_format, format_version, attributes)


class GoldStandard(RepositoryObject):
    """A gold standard clustering file. Equal to every gold standard with the same path."""

    category = None

    def register(self) -> bool:
        return False

    def unregister(self) -> bool:
        return False


class GoldStandardConfig(ConfigObject):
    category = ExtensionCategory.GOLDSTANDARD_CONFIG

    def __init__(self, repository, abs_path: str, gold_standard: GoldStandard, change_date=None):
        super().__init__(repository, abs_path, change_date)
        self.gold_standard = gold_standard

    @classmethod
    def parse_from_file(cls, repository, path: str) -> "GoldStandardConfig":
        body = read_config_body(path)
        gs_name = require(body, "goldstandardName", path)
        gs_file = require(body, "goldstandardFile", path)

        gs_path = os.path.join(data_dir(repository, cls.category), str(gs_name), str(gs_file))
        if not os.path.isfile(gs_path):
            raise ConfigFileError(
                f"The gold standard file {gs_path} does not exist",
                details={"path": path, "goldstandard": gs_path},
            )
        return cls(repository, path, GoldStandard(repository, gs_path))


class DataSetConfig(ConfigObject):
    category = ExtensionCategory.DATASET_CONFIG

    def __init__(self, repository, abs_path: str, dataset: DataSet, distance_measure: type, change_date=None):
        super().__init__(repository, abs_path, change_date)
        self.add_dependency("dataset", dataset)
        self.distance_measure = distance_measure

    @property
    def dataset(self) -> DataSet:
        return self.dependencies["dataset"]

    @classmethod
    def parse_from_file(cls, repository, path: str) -> "DataSetConfig":
        """
        Parse a dataset configuration.

        Raises:
            ConfigFileError: If a required entry is missing
            UnknownDataSetError: If the dataset is not registered
            UnknownDistanceMeasureError: If the distance measure is not registered
        """
        body = read_config_body(path)
        dataset_name = require(body, "datasetName", path)
        dataset_file = require(body, "datasetFile", path)
        dataset = resolve_object(repository, ExtensionCategory.DATASET, f"{dataset_name}/{dataset_file}")

        measure_name = body.get("distanceMeasureAbsoluteToRelative") or DEFAULT_DISTANCE_MEASURE
        distance_measure = resolve_class(repository, ExtensionCategory.DISTANCE_MEASURE, measure_name)
        return cls(repository, path, dataset, distance_measure)


class ProgramConfig(ConfigObject):
    """
    Configuration of a clustering program.

    ``type: standalone`` configs point at an executable below the programs
    directory; ``type: R`` configs name a registered R program.
    """

    category = ExtensionCategory.PROGRAM_CONFIG

    def __init__(
        self,
        repository,
        abs_path: str,
        program_type: str,
        program: Any,
        alias: str,
        parameters: List[str],
        compatible_formats: List[type],
        output_format: Optional[type],
        context: type,
        change_date: Optional[float] = None,
    ):
        super().__init__(repository, abs_path, change_date)
        self.program_type = program_type
        self.program = program
        self.alias = alias
        self.parameters = parameters
        self.compatible_formats = compatible_formats
        self.output_format = output_format
        self.context = context

    @classmethod
    def parse_from_file(cls, repository, path: str) -> "ProgramConfig":
        """
        Parse a program configuration.

        Raises:
            ConfigFileError: If an entry is missing, the type is unknown or the executable is missing
            UnknownContextError, UnknownRProgramError, UnknownRunResultFormatError,
            UnknownDataSetFormatError: If a referenced extension is not registered
        """
        body = read_config_body(path)
        C = ExtensionCategory

        context = resolve_class(repository, C.CONTEXT, body.get("context") or DEFAULT_CONTEXT)
        program_type = str(body.get("type") or "standalone")
        program_name = str(require(body, "program", path))

        if program_type == "standalone":
            program = os.path.join(data_dir(repository, cls.category), program_name)
            if not os.path.exists(program):
                raise ConfigFileError(
                    f"The given program executable does not exist: {program}",
                    details={"path": path, "program": program},
                )
            output_format = resolve_class(repository, C.RUN_RESULT_FORMAT, require(body, "outputFormat", path))
            format_names = as_list(require(body, "compatibleDataSetFormats", path), separator="|")
            alias = str(body.get("alias") or os.path.splitext(os.path.basename(path))[0])
        elif program_type == "R":
            program = resolve_class(repository, C.RPROGRAM, program_name)
            output_format = None
            if body.get("outputFormat"):
                output_format = resolve_class(repository, C.RUN_RESULT_FORMAT, body["outputFormat"])
            format_names = as_list(body.get("compatibleDataSetFormats"), separator="|")
            alias = str(body.get("alias") or program.get_alias())
        else:
            raise ConfigFileError(
                f"The program type {program_type} is unknown",
                details={"path": path, "type": program_type},
            )

        compatible_formats = [resolve_class(repository, C.DATASET_FORMAT, n) for n in format_names]
        parameters = as_list(body.get("parameters"))

        return cls(
            repository,
            path,
            program_type,
            program,
            alias,
            parameters,
            compatible_formats,
            output_format,
            context,
        )


class Run(ConfigObject):
    """An evaluation run combining program configs, data configs and measures."""

    category = ExtensionCategory.RUN

    def __init__(
        self,
        repository,
        abs_path: str,
        mode: str,
        program_configs: List[ProgramConfig],
        data_configs: List[DataSetConfig],
        goldstandard_configs: List[GoldStandardConfig],
        quality_measures: List[type],
        optimization_method: Optional[type],
        data_statistics: List[type],
        context: type,
        change_date: Optional[float] = None,
    ):
        super().__init__(repository, abs_path, change_date)
        self.mode = mode
        for i, config in enumerate(program_configs):
            self.add_dependency(f"programConfig{i}", config)
        for i, config in enumerate(data_configs):
            self.add_dependency(f"dataConfig{i}", config)
        for i, config in enumerate(goldstandard_configs):
            self.add_dependency(f"goldstandardConfig{i}", config)
        self.quality_measures = quality_measures
        self.optimization_method = optimization_method
        self.data_statistics = data_statistics
        self.context = context

    def _dependencies_of(self, prefix: str) -> List[RepositoryObject]:
        attrs = [a for a in self.dependencies if a.startswith(prefix)]
        return [self.dependencies[a] for a in sorted(attrs, key=lambda a: int(a[len(prefix):]))]

    @property
    def program_configs(self) -> List[ProgramConfig]:
        return self._dependencies_of("programConfig")

    @property
    def data_configs(self) -> List[DataSetConfig]:
        return self._dependencies_of("dataConfig")

    @property
    def goldstandard_configs(self) -> List[GoldStandardConfig]:
        return self._dependencies_of("goldstandardConfig")

    @classmethod
    def parse_from_file(cls, repository, path: str) -> "Run":
        body = read_config_body(path)
        C = ExtensionCategory

        mode = str(require(body, "mode", path))
        if mode not in RUN_MODES:
            raise ConfigFileError(f"Unknown run mode '{mode}' in {path}", details={"path": path, "mode": mode})

        program_configs = [
            resolve_object(repository, C.PROGRAM_CONFIG, n) for n in as_list(body.get("programConfig"))
        ]
        data_configs = [resolve_object(repository, C.DATASET_CONFIG, n) for n in as_list(body.get("dataConfig"))]
        if mode in ("clustering", "parameter_optimization") and not (program_configs and data_configs):
            raise ConfigFileError(
                f"A {mode} run needs at least one programConfig and one dataConfig",
                details={"path": path},
            )
        goldstandard_configs = [
            resolve_object(repository, C.GOLDSTANDARD_CONFIG, n) for n in as_list(body.get("goldstandardConfig"))
        ]
        quality_measures = [
            resolve_class(repository, C.QUALITY_MEASURE, n) for n in as_list(body.get("qualityMeasures"))
        ]

        optimization_method = None
        if mode == "parameter_optimization":
            optimization_method = resolve_class(
                repository, C.PARAMETER_OPTIMIZATION_METHOD, require(body, "optimizationMethod", path)
            )

        data_statistics = [
            resolve_class(repository, C.DATA_STATISTIC, n) for n in as_list(body.get("dataStatistics"))
        ]
        context = resolve_class(repository, C.CONTEXT, body.get("context") or DEFAULT_CONTEXT)

        return cls(
            repository,
            path,
            mode,
            program_configs,
            data_configs,
            goldstandard_configs,
            quality_measures,
            optimization_method,
            data_statistics,
            context,
        )


CONFIG_OBJECT_TYPES: Dict[ExtensionCategory, Type[ConfigObject]] = {
    ExtensionCategory.DATASET: DataSet,
    ExtensionCategory.DATASET_CONFIG: DataSetConfig,
    ExtensionCategory.GOLDSTANDARD_CONFIG: GoldStandardConfig,
    ExtensionCategory.PROGRAM_CONFIG: ProgramConfig,
    ExtensionCategory.RUN: Run,
}
