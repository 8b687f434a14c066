"""
Extension categories.

Every kind of pluggable artifact or configuration file the repository knows
about is an ``ExtensionCategory``. ``CATEGORY_SPECS`` holds, per category, where
its files live relative to the repository root, how candidate files are
recognized, which capability loaded classes must implement and which other
categories must be initialized before it can be scanned.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple, Type

from clusteval.core.extensions import (
    Context,
    DataSetFormat,
    DataSetFormatParser,
    DataStatistic,
    DistanceMeasure,
    Extension,
    ParameterOptimizationMethod,
    QualityMeasure,
    RProgram,
    RunResultFormat,
    RunResultFormatParser,
)

ARTIFACT_SUFFIX = ".py"


class ExtensionCategory(str, Enum):
    """Category tags; the value is the display name used in logs and settings."""

    CONTEXT = "Context"
    DATASET_FORMAT = "DataSetFormat"
    RUN_RESULT_FORMAT = "RunResultFormat"
    DISTANCE_MEASURE = "DistanceMeasure"
    QUALITY_MEASURE = "QualityMeasure"
    PARAMETER_OPTIMIZATION_METHOD = "ParameterOptimizationMethod"
    DATA_STATISTIC = "DataStatistic"
    RPROGRAM = "RProgram"
    DATASET = "DataSet"
    DATASET_CONFIG = "DataSetConfig"
    GOLDSTANDARD_CONFIG = "GoldStandardConfig"
    PROGRAM_CONFIG = "ProgramConfig"
    RUN = "Run"

    @classmethod
    def parse(cls, key: str) -> "ExtensionCategory":
        """
        Resolve a category from its member name or display name.

        Args:
            key: e.g. "DATASET_FORMAT", "DataSetFormat" or "dataSetFormat"

        Raises:
            ValueError: If no category matches
        """
        for member in cls:
            if key == member.name or key.lower() == member.value.lower():
                return member
        raise ValueError(f"Unknown extension category '{key}'")

    @property
    def spec(self) -> "CategorySpec":
        return CATEGORY_SPECS[self]

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class CategorySpec:
    """Static description of one extension category."""

    category: ExtensionCategory
    kind: str  # "artifact" or "file"
    default_path: str
    file_suffix: Optional[str] = None
    package_prefix: str = ""
    capability: Optional[Type[Extension]] = None
    paired_suffix: Optional[str] = None
    paired_capability: Optional[Type[Extension]] = None
    versioned: bool = False
    depends_on: Tuple[ExtensionCategory, ...] = ()
    excluded_groups: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_artifact(self) -> bool:
        return self.kind == "artifact"

    @property
    def is_paired(self) -> bool:
        return self.paired_suffix is not None

    def qualified_name(self, simple_name: str) -> str:
        """Fully-qualified extension name of a class of this category."""
        if not self.package_prefix:
            return simple_name
        return f"{self.package_prefix}.{simple_name}"

    def simple_name(self, qualified_name: str) -> str:
        return qualified_name.rsplit(".", 1)[-1]

    def matches(self, file_name: str) -> bool:
        """Category-specific candidate predicate on a file name."""
        if self.file_suffix is None:
            return True
        return file_name.endswith(self.file_suffix)


def _artifact(
    category: ExtensionCategory,
    default_path: str,
    package: str,
    capability: Type[Extension],
    paired_capability: Optional[Type[Extension]] = None,
) -> CategorySpec:
    return CategorySpec(
        category=category,
        kind="artifact",
        default_path=default_path,
        file_suffix=category.value + ARTIFACT_SUFFIX,
        package_prefix=f"clusteval.{package}",
        capability=capability,
        paired_suffix="Parser" if paired_capability is not None else None,
        paired_capability=paired_capability,
        versioned=True,
    )


C = ExtensionCategory

CATEGORY_SPECS: Dict[ExtensionCategory, CategorySpec] = {
    C.CONTEXT: _artifact(C.CONTEXT, "supp/contexts", "context", Context),
    C.DATASET_FORMAT: _artifact(
        C.DATASET_FORMAT,
        "supp/formats/dataset",
        "data.dataset.format",
        DataSetFormat,
        paired_capability=DataSetFormatParser,
    ),
    C.RUN_RESULT_FORMAT: _artifact(
        C.RUN_RESULT_FORMAT,
        "supp/formats/runresult",
        "run.result.format",
        RunResultFormat,
        paired_capability=RunResultFormatParser,
    ),
    C.DISTANCE_MEASURE: _artifact(
        C.DISTANCE_MEASURE, "supp/distanceMeasures", "data.distance", DistanceMeasure
    ),
    C.QUALITY_MEASURE: _artifact(
        C.QUALITY_MEASURE, "supp/clustering/qualityMeasures", "quality", QualityMeasure
    ),
    C.PARAMETER_OPTIMIZATION_METHOD: _artifact(
        C.PARAMETER_OPTIMIZATION_METHOD,
        "supp/clustering/paramOptimization",
        "paramOptimization",
        ParameterOptimizationMethod,
    ),
    C.DATA_STATISTIC: _artifact(
        C.DATA_STATISTIC, "supp/statistics/data", "data.statistics", DataStatistic
    ),
    C.RPROGRAM: _artifact(C.RPROGRAM, "supp/R/programs", "program.r", RProgram),
    C.DATASET: CategorySpec(
        category=C.DATASET,
        kind="file",
        default_path="data/datasets",
        depends_on=(C.DATASET_FORMAT,),
        excluded_groups=("configs",),
    ),
    C.DATASET_CONFIG: CategorySpec(
        category=C.DATASET_CONFIG,
        kind="file",
        default_path="data/datasets/configs",
        file_suffix=".dsconfig",
        depends_on=(C.DATASET, C.DISTANCE_MEASURE),
    ),
    C.GOLDSTANDARD_CONFIG: CategorySpec(
        category=C.GOLDSTANDARD_CONFIG,
        kind="file",
        default_path="data/goldstandards/configs",
        file_suffix=".gsconfig",
    ),
    C.PROGRAM_CONFIG: CategorySpec(
        category=C.PROGRAM_CONFIG,
        kind="file",
        default_path="programs/configs",
        file_suffix=".config",
        depends_on=(C.DATASET_FORMAT, C.RUN_RESULT_FORMAT, C.RPROGRAM, C.CONTEXT),
    ),
    C.RUN: CategorySpec(
        category=C.RUN,
        kind="file",
        default_path="runs",
        file_suffix=".run",
        depends_on=(
            C.DATASET_CONFIG,
            C.GOLDSTANDARD_CONFIG,
            C.PROGRAM_CONFIG,
            C.QUALITY_MEASURE,
            C.DATA_STATISTIC,
            C.PARAMETER_OPTIMIZATION_METHOD,
            C.CONTEXT,
        ),
    ),
}

ARTIFACT_CATEGORIES = tuple(c for c in ExtensionCategory if CATEGORY_SPECS[c].is_artifact)
FILE_CATEGORIES = tuple(c for c in ExtensionCategory if not CATEGORY_SPECS[c].is_artifact)
