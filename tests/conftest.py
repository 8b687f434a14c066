"""
Pytest configuration and shared fixtures for clusteval tests.

This module provides:
- Temporary repository fixtures
- Extension artifact source generators
- Fixtures writing artifacts and configuration files with controlled timestamps
- A fully populated repository for integration tests
"""

import os
import sys
import textwrap
import pytest
from typing import Callable, Optional

from clusteval.config.settings_loader import ConfigManager, Settings
from clusteval.core.categories import CATEGORY_SPECS, ExtensionCategory
from clusteval.core.repository import Repository

# Set test environment variables
os.environ["TESTING"] = "true"
os.environ["LOG_LEVEL"] = "DEBUG"

C = ExtensionCategory


# =============================================================================
# Artifact Source Generators
# =============================================================================

CAPABILITIES = {
    C.CONTEXT: (
        "Context",
        """
        def get_standard_input_format(self):
            return "MatrixDataSetFormat"

        def get_standard_output_format(self):
            return "TabSeparatedRunResultFormat"
        """,
    ),
    C.DATASET_FORMAT: ("DataSetFormat", "normalize = False\n"),
    C.RUN_RESULT_FORMAT: ("RunResultFormat", "pass\n"),
    C.DISTANCE_MEASURE: (
        "DistanceMeasure",
        """
        def get_distance(self, point1, point2):
            return float(np.linalg.norm(np.asarray(point1) - np.asarray(point2)))
        """,
    ),
    C.QUALITY_MEASURE: (
        "QualityMeasure",
        """
        def get_quality(self, clustering, gold_standard=None):
            return float(len(set(clustering.values())))
        """,
    ),
    C.PARAMETER_OPTIMIZATION_METHOD: (
        "ParameterOptimizationMethod",
        """
        def next_parameter_set(self, previous_results):
            return None
        """,
    ),
    C.DATA_STATISTIC: (
        "DataStatistic",
        """
        def calculate(self, data):
            return len(data)
        """,
    ),
    C.RPROGRAM: (
        "RProgram",
        """
        def get_invocation_format(self):
            return "kmeans(x, centers=k)"
        """,
    ),
}

PARSER_CAPABILITIES = {
    C.DATASET_FORMAT: (
        "DataSetFormatParser",
        """
        def parse(self, path):
            return np.loadtxt(path, comments="//")
        """,
    ),
    C.RUN_RESULT_FORMAT: (
        "RunResultFormatParser",
        """
        def convert_to_standard_format(self, path):
            return {}
        """,
    ),
}


def _class_source(name: str, base: str, body: str, version: Optional[int], extra: str = "") -> str:
    lines = [f"class {name}({base}):"]
    if version is not None:
        lines.append(f"    version = {version}")
    if extra:
        lines.append(textwrap.indent(textwrap.dedent(extra).strip("\n"), "    "))
    lines.append(textwrap.indent(textwrap.dedent(body).strip("\n"), "    "))
    return "\n".join(lines) + "\n"


def artifact_source(
    category: ExtensionCategory,
    name: str,
    version: Optional[int] = 1,
    parser_version: Optional[int] = None,
    with_parser: bool = True,
    base: Optional[str] = None,
    extra: str = "",
    parser_extra: str = "",
    header: str = "",
) -> str:
    """
    Python source of an extension artifact.

    Args:
        category: Artifact category
        name: Primary class name (the file base name)
        version: Declared version, None for no version
        parser_version: Version of the paired parser (defaults to ``version``)
        with_parser: Include the paired parser for format categories
        base: Base class expression (defaults to the category capability)
        extra: Additional class body of the primary class
        parser_extra: Additional class body of the parser
        header: Module-level code placed before the classes
    """
    capability, body = CAPABILITIES[category]
    parts = [
        "import numpy as np",
        "from clusteval.core import extensions as ext",
        "",
        textwrap.dedent(header).strip("\n"),
        "",
        _class_source(name, base or f"ext.{capability}", body, version, extra),
    ]
    if category in PARSER_CAPABILITIES and with_parser:
        parser_capability, parser_body = PARSER_CAPABILITIES[category]
        parts.append("")
        parts.append(
            _class_source(
                name + "Parser",
                f"ext.{parser_capability}",
                parser_body,
                version if parser_version is None else parser_version,
                parser_extra,
            )
        )
    return "\n".join(parts)


# =============================================================================
# File Helpers
# =============================================================================


def set_mtime(path: str, mtime: float) -> None:
    os.utime(path, (mtime, mtime))


def bump_mtime(path: str, seconds: float = 10.0) -> float:
    """Move the modification time of ``path`` forward and return it."""
    mtime = os.path.getmtime(path) + seconds
    set_mtime(path, mtime)
    return mtime


def write_file(path: str, content: str, mtime: Optional[float] = None) -> str:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        f.write(content)
    if mtime is not None:
        set_mtime(path, mtime)
    return path


# =============================================================================
# Repository Fixtures
# =============================================================================


@pytest.fixture
def repo_root(tmp_path):
    """Empty repository directory with all category directories."""
    root = tmp_path / "repository"
    Repository(str(root)).ensure_layout()
    return str(root)


@pytest.fixture
def repository(repo_root):
    """Repository over an empty layout."""
    return Repository(repo_root)


@pytest.fixture
def write_artifact(repository) -> Callable[..., str]:
    """
    Write an extension artifact into the repository.

    Usage:
        path = write_artifact(C.DISTANCE_MEASURE, "FooDistanceMeasure", group="group1")
    """
    def _write(
        category: ExtensionCategory,
        name: str,
        source: Optional[str] = None,
        group: str = "default",
        mtime: Optional[float] = None,
        **source_kwargs,
    ) -> str:
        if source is None:
            source = artifact_source(category, name, **source_kwargs)
        path = os.path.join(repository.get_base_path(category), group, name + ".py")
        return write_file(path, source, mtime)

    return _write


@pytest.fixture
def write_config(repository) -> Callable[..., str]:
    """
    Write a configuration or data file into the repository.

    Usage:
        path = write_config(C.RUN, "myrun.run", "mode: clustering\\n", group="runs")
    """
    def _write(
        category: ExtensionCategory,
        file_name: str,
        content: str,
        group: str = "default",
        mtime: Optional[float] = None,
    ) -> str:
        path = os.path.join(repository.get_base_path(category), group, file_name)
        return write_file(path, textwrap.dedent(content).lstrip("\n"), mtime)

    return _write


@pytest.fixture
def settings():
    """Settings with short waits for threaded tests."""
    return Settings(
        threading={
            "default_sleep_seconds": 0.2,
            "check_once": True,
            "wait_timeout_seconds": 10,
        }
    )


# =============================================================================
# Populated Repository
# =============================================================================

DATASET_CONTENT = """\
// alias = Iris
// dataSetFormat = MatrixDataSetFormat
// dataSetFormatVersion = 1
1.0 2.0
1.5 1.8
5.0 8.0
"""


@pytest.fixture
def populated_repository(repository, write_artifact, write_config):
    """
    Repository holding one extension of every artifact category and a
    consistent set of datasets, configurations and a run.
    """
    write_artifact(C.CONTEXT, "ClusteringContext")
    write_artifact(C.DATASET_FORMAT, "MatrixDataSetFormat")
    write_artifact(C.RUN_RESULT_FORMAT, "TabSeparatedRunResultFormat")
    write_artifact(C.DISTANCE_MEASURE, "EuclidianDistanceMeasure")
    write_artifact(C.QUALITY_MEASURE, "SilhouetteValueQualityMeasure")
    write_artifact(C.PARAMETER_OPTIMIZATION_METHOD, "LayeredParameterOptimizationMethod")
    write_artifact(C.DATA_STATISTIC, "NumberOfSamplesDataStatistic")
    write_artifact(C.RPROGRAM, "KMeansClusteringRProgram")

    write_config(C.DATASET, "iris.txt", DATASET_CONTENT, group="iris")
    write_config(
        C.DATASET_CONFIG,
        "iris.dsconfig",
        """
        datasetName: iris
        datasetFile: iris.txt
        distanceMeasureAbsoluteToRelative: EuclidianDistanceMeasure
        """,
    )

    gs_dir = os.path.join(os.path.dirname(repository.get_base_path(C.GOLDSTANDARD_CONFIG)), "iris")
    write_file(os.path.join(gs_dir, "iris_gs.txt"), "1\t1\n2\t1\n3\t2\n")
    write_config(
        C.GOLDSTANDARD_CONFIG,
        "iris_gs.gsconfig",
        """
        goldstandardName: iris
        goldstandardFile: iris_gs.txt
        """,
    )

    programs_dir = os.path.dirname(repository.get_base_path(C.PROGRAM_CONFIG))
    write_file(os.path.join(programs_dir, "standalone", "TransClust.jar"), "binary")
    write_config(
        C.PROGRAM_CONFIG,
        "TransClust.config",
        """
        program: standalone/TransClust.jar
        type: standalone
        alias: Transitivity Clustering
        parameters: [T, minT, maxT]
        compatibleDataSetFormats: MatrixDataSetFormat
        outputFormat: TabSeparatedRunResultFormat
        """,
    )
    write_config(
        C.PROGRAM_CONFIG,
        "KMeans_Clustering.config",
        """
        program: KMeansClusteringRProgram
        type: R
        parameters: [k]
        compatibleDataSetFormats: MatrixDataSetFormat
        outputFormat: TabSeparatedRunResultFormat
        """,
    )
    write_config(
        C.RUN,
        "iris_clustering.run",
        """
        mode: parameter_optimization
        programConfig: [TransClust, KMeans_Clustering]
        dataConfig: [iris]
        goldstandardConfig: [iris_gs]
        qualityMeasures: [SilhouetteValueQualityMeasure]
        optimizationMethod: LayeredParameterOptimizationMethod
        dataStatistics: [NumberOfSamplesDataStatistic]
        """,
    )
    return repository


@pytest.fixture(autouse=True)
def reset_settings():
    """Forget cached settings between tests."""
    yield
    ConfigManager.reset()


@pytest.fixture(autouse=True)
def forget_artifact_modules():
    """Drop artifact modules loaded by a test from sys.modules."""
    yield
    prefixes = tuple(spec.package_prefix + "." for spec in CATEGORY_SPECS.values() if spec.package_prefix)
    for name in [n for n in sys.modules if n.startswith(prefixes)]:
        del sys.modules[name]


# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests for individual components"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests for component interactions"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take >1 second"
    )
