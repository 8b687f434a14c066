"""
Unit tests for the configuration file finder and the parsed repository objects.

Tests:
- Datasets, dataset configs, gold standard configs, program configs and runs
- Unknown references raising the category's error
- Replace-on-change and removal cascades between objects
- Retrying failed files and logging each error once
"""

import os
import pytest
from unittest.mock import patch

from clusteval.core.categories import ARTIFACT_CATEGORIES, ExtensionCategory
from clusteval.core.config_objects import (
    ConfigObject,
    DataSet,
    DataSetConfig,
    ProgramConfig,
    Run,
    as_list,
)
from clusteval.finders import ArtifactFinder, FileFinder
from clusteval.utils.error_handling import (
    ConfigFileError,
    UnknownDataSetError,
    UnknownDataSetFormatError,
    UnknownDistanceMeasureError,
    UnknownProgramConfigError,
    UnknownRProgramError,
)

from conftest import DATASET_CONTENT, bump_mtime, write_file

C = ExtensionCategory

FILE_ORDER = (C.DATASET, C.DATASET_CONFIG, C.GOLDSTANDARD_CONFIG, C.PROGRAM_CONFIG, C.RUN)


def load_artifacts(repository):
    for category in ARTIFACT_CATEGORIES:
        ArtifactFinder(repository, category).find_and_register_objects()


def scan_files(repository, categories=FILE_ORDER):
    for category in categories:
        FileFinder(repository, category).find_and_register_objects()


def errors_of(repository, path):
    return repository.get_known_finder_exceptions().get(path, [])


@pytest.fixture
def loaded_repository(populated_repository):
    """Populated repository with all extension classes loaded."""
    load_artifacts(populated_repository)
    return populated_repository


@pytest.mark.unit
class TestDataSets:
    """Test dataset files and their headers."""

    def test_dataset_registered(self, loaded_repository):
        """Test a dataset is registered under group/file with its header values."""
        scan_files(loaded_repository, (C.DATASET,))

        dataset = loaded_repository.get(C.DATASET, "iris/iris.txt")
        assert isinstance(dataset, DataSet)
        assert dataset.alias == "Iris"
        assert dataset.dataset_format.__name__ == "MatrixDataSetFormat"
        assert dataset.format_version == 1

    def test_format_version_defaults_to_current(self, loaded_repository, write_config):
        """Test a dataset without version header uses the format's current version."""
        write_config(
            C.DATASET,
            "other.txt",
            "// dataSetFormat = MatrixDataSetFormat\n1 2\n",
            group="other",
        )
        scan_files(loaded_repository, (C.DATASET,))

        dataset = loaded_repository.get(C.DATASET, "other/other.txt")
        assert dataset.alias == "other"
        assert dataset.format_version == 1

    def test_missing_header(self, loaded_repository, write_config):
        """Test a dataset without header is not registered."""
        path = write_config(C.DATASET, "raw.txt", "1 2\n3 4\n", group="raw")
        scan_files(loaded_repository, (C.DATASET,))

        assert loaded_repository.get(C.DATASET, "raw/raw.txt") is None
        assert isinstance(errors_of(loaded_repository, path)[0], ConfigFileError)

    def test_unknown_format(self, loaded_repository, write_config):
        """Test a dataset of an unregistered format raises the format error."""
        path = write_config(C.DATASET, "x.txt", "// dataSetFormat = FooDataSetFormat\n1\n", group="x")
        scan_files(loaded_repository, (C.DATASET,))

        assert loaded_repository.get(C.DATASET, "x/x.txt") is None
        assert isinstance(errors_of(loaded_repository, path)[0], UnknownDataSetFormatError)

    def test_alias_taken(self, loaded_repository, write_config):
        """Test a second dataset with an existing alias is rejected."""
        path = write_config(C.DATASET, "zzz.txt", DATASET_CONTENT, group="zzz")
        scan_files(loaded_repository, (C.DATASET,))

        assert loaded_repository.get(C.DATASET, "iris/iris.txt") is not None
        assert loaded_repository.get(C.DATASET, "zzz/zzz.txt") is None
        assert "already taken" in str(errors_of(loaded_repository, path)[0])

    def test_configs_group_excluded(self, loaded_repository):
        """Test the dataset config directory is not scanned for datasets."""
        scan_files(loaded_repository, (C.DATASET,))
        assert [d.name for d in loaded_repository.get_objects(C.DATASET)] == ["iris/iris.txt"]


@pytest.mark.unit
class TestConfigObjects:
    """Test parsing of configuration files."""

    def test_all_configs_registered(self, loaded_repository):
        """Test the populated repository parses into a consistent object graph."""
        scan_files(loaded_repository)

        data_config = loaded_repository.get(C.DATASET_CONFIG, "iris")
        assert isinstance(data_config, DataSetConfig)
        assert data_config.dataset is loaded_repository.get(C.DATASET, "iris/iris.txt")
        assert data_config.distance_measure.__name__ == "EuclidianDistanceMeasure"

        gs_config = loaded_repository.get(C.GOLDSTANDARD_CONFIG, "iris_gs")
        assert gs_config.gold_standard.abs_path.endswith(os.path.join("goldstandards", "iris", "iris_gs.txt"))

        run = loaded_repository.get(C.RUN, "iris_clustering")
        assert isinstance(run, Run)
        assert run.mode == "parameter_optimization"
        assert [p.name for p in run.program_configs] == ["TransClust", "KMeans_Clustering"]
        assert run.data_configs == [data_config]
        assert run.goldstandard_configs == [gs_config]
        assert run.optimization_method.__name__ == "LayeredParameterOptimizationMethod"
        assert [q.__name__ for q in run.quality_measures] == ["SilhouetteValueQualityMeasure"]
        assert run.context.__name__ == "ClusteringContext"

    def test_standalone_program_config(self, loaded_repository):
        """Test a standalone program config points at its executable."""
        scan_files(loaded_repository, (C.PROGRAM_CONFIG,))

        config = loaded_repository.get(C.PROGRAM_CONFIG, "TransClust")
        assert isinstance(config, ProgramConfig)
        assert config.program_type == "standalone"
        assert config.program.endswith(os.path.join("standalone", "TransClust.jar"))
        assert config.alias == "Transitivity Clustering"
        assert config.parameters == ["T", "minT", "maxT"]
        assert [f.__name__ for f in config.compatible_formats] == ["MatrixDataSetFormat"]
        assert config.output_format.__name__ == "TabSeparatedRunResultFormat"

    def test_r_program_config(self, loaded_repository):
        """Test an R program config resolves its R program class."""
        scan_files(loaded_repository, (C.PROGRAM_CONFIG,))

        config = loaded_repository.get(C.PROGRAM_CONFIG, "KMeans_Clustering")
        assert config.program_type == "R"
        assert config.program.__name__ == "KMeansClusteringRProgram"
        assert config.alias == "KMeansClusteringRProgram"

    def test_missing_executable(self, loaded_repository, write_config):
        """Test a standalone config without executable is rejected."""
        path = write_config(
            C.PROGRAM_CONFIG,
            "Gone.config",
            """
            program: standalone/Gone.jar
            compatibleDataSetFormats: MatrixDataSetFormat
            outputFormat: TabSeparatedRunResultFormat
            """,
        )
        scan_files(loaded_repository, (C.PROGRAM_CONFIG,))

        assert loaded_repository.get(C.PROGRAM_CONFIG, "Gone") is None
        assert "does not exist" in str(errors_of(loaded_repository, path)[0])

    def test_unknown_r_program(self, loaded_repository, write_config):
        """Test an R config naming an unknown R program raises the R program error."""
        path = write_config(C.PROGRAM_CONFIG, "Foo.config", "program: FooRProgram\ntype: R\n")
        scan_files(loaded_repository, (C.PROGRAM_CONFIG,))

        assert isinstance(errors_of(loaded_repository, path)[0], UnknownRProgramError)

    def test_unknown_program_type(self, loaded_repository, write_config):
        """Test an unknown program type is rejected."""
        path = write_config(C.PROGRAM_CONFIG, "Foo.config", "program: foo\ntype: python\n")
        scan_files(loaded_repository, (C.PROGRAM_CONFIG,))

        assert "unknown" in str(errors_of(loaded_repository, path)[0])

    def test_unknown_distance_measure(self, loaded_repository, write_config):
        """Test a dataset config naming an unknown distance measure is rejected."""
        path = write_config(
            C.DATASET_CONFIG,
            "bad.dsconfig",
            """
            datasetName: iris
            datasetFile: iris.txt
            distanceMeasureAbsoluteToRelative: FooDistanceMeasure
            """,
        )
        scan_files(loaded_repository, (C.DATASET, C.DATASET_CONFIG))

        assert isinstance(errors_of(loaded_repository, path)[0], UnknownDistanceMeasureError)

    def test_unknown_program_config_in_run(self, loaded_repository, write_config):
        """Test a run naming an unknown program config is rejected."""
        path = write_config(C.RUN, "bad.run", "mode: clustering\nprogramConfig: [Nope]\ndataConfig: [iris]\n")
        scan_files(loaded_repository)

        assert loaded_repository.get(C.RUN, "bad") is None
        assert isinstance(errors_of(loaded_repository, path)[0], UnknownProgramConfigError)

    def test_invalid_run_mode(self, loaded_repository, write_config):
        """Test a run with an unknown mode is rejected."""
        path = write_config(C.RUN, "bad.run", "mode: nonsense\n")
        scan_files(loaded_repository)

        assert "Unknown run mode" in str(errors_of(loaded_repository, path)[0])

    def test_config_not_a_mapping(self, loaded_repository, write_config):
        """Test a config file without a YAML mapping is rejected."""
        path = write_config(C.GOLDSTANDARD_CONFIG, "bad.gsconfig", "- just\n- a list\n")
        scan_files(loaded_repository, (C.GOLDSTANDARD_CONFIG,))

        assert isinstance(errors_of(loaded_repository, path)[0], ConfigFileError)

    def test_as_list(self):
        """Test list entries are accepted as YAML lists or separated strings."""
        assert as_list(["a", " b "]) == ["a", "b"]
        assert as_list("a, b,,c") == ["a", "b", "c"]
        assert as_list("A|B", separator="|") == ["A", "B"]
        assert as_list(None) == []

    def test_config_object_is_abstract(self, repository):
        """Test config objects without a parser cannot be created."""
        class UnparsedConfig(ConfigObject):
            category = C.RUN

        with pytest.raises(TypeError):
            UnparsedConfig(repository, "unparsed.run")


@pytest.mark.unit
class TestFileFinderChanges:
    """Test changes, removals and retries."""

    def test_unchanged_file_skipped(self, loaded_repository):
        """Test an unchanged file is not parsed again."""
        scan_files(loaded_repository)
        data_config = loaded_repository.get(C.DATASET_CONFIG, "iris")

        with patch.object(DataSetConfig, "parse_from_file") as parse:
            assert FileFinder(loaded_repository, C.DATASET_CONFIG).find_and_register_objects() == 0
            parse.assert_not_called()
        assert loaded_repository.get(C.DATASET_CONFIG, "iris") is data_config

    def test_changed_file_replaces_object(self, loaded_repository):
        """Test a changed dataset config replaces the object and dependents follow."""
        scan_files(loaded_repository)
        old = loaded_repository.get(C.DATASET_CONFIG, "iris")
        run = loaded_repository.get(C.RUN, "iris_clustering")

        bump_mtime(old.abs_path)
        assert FileFinder(loaded_repository, C.DATASET_CONFIG).find_and_register_objects() == 1

        new = loaded_repository.get(C.DATASET_CONFIG, "iris")
        assert new is not old
        assert new == old
        assert run.data_configs == [new]
        assert run.data_configs[0] is new
        assert loaded_repository.get(C.RUN, "iris_clustering") is run

    def test_replaced_object_detached(self, loaded_repository):
        """Test a replaced object no longer reacts to its old dependencies."""
        scan_files(loaded_repository)
        old = loaded_repository.get(C.DATASET_CONFIG, "iris")
        dataset = old.dataset

        bump_mtime(old.abs_path)
        FileFinder(loaded_repository, C.DATASET_CONFIG).find_and_register_objects()

        new = loaded_repository.get(C.DATASET_CONFIG, "iris")
        assert not any(l is old for l in dataset.get_listeners())
        assert any(l is new for l in dataset.get_listeners())

    def test_removal_cascade_after_replace(self, loaded_repository):
        """Test a replaced config is still unregistered when its dataset is deleted."""
        scan_files(loaded_repository)
        old = loaded_repository.get(C.DATASET_CONFIG, "iris")
        dataset = old.dataset

        bump_mtime(old.abs_path)
        scan_files(loaded_repository, (C.DATASET_CONFIG,))
        assert loaded_repository.get(C.DATASET_CONFIG, "iris") is not old

        os.remove(dataset.abs_path)
        scan_files(loaded_repository, (C.DATASET,))

        assert loaded_repository.get(C.DATASET, "iris/iris.txt") is None
        assert loaded_repository.get(C.DATASET_CONFIG, "iris") is None
        assert loaded_repository.get(C.RUN, "iris_clustering") is None

    def test_changed_file_invalid_unregisters(self, loaded_repository, write_config):
        """Test an object whose changed file no longer parses is unregistered."""
        scan_files(loaded_repository)
        path = loaded_repository.get(C.DATASET_CONFIG, "iris").abs_path

        write_file(path, "datasetName: iris\ndatasetFile: missing.txt\n")
        bump_mtime(path)
        scan_files(loaded_repository, (C.DATASET_CONFIG,))

        assert loaded_repository.get(C.DATASET_CONFIG, "iris") is None
        assert isinstance(errors_of(loaded_repository, path)[0], UnknownDataSetError)
        assert loaded_repository.get(C.RUN, "iris_clustering") is None

    def test_removal_cascade(self, loaded_repository):
        """Test deleting a dataset unregisters the configs and runs depending on it."""
        scan_files(loaded_repository)
        dataset = loaded_repository.get(C.DATASET, "iris/iris.txt")

        os.remove(dataset.abs_path)
        scan_files(loaded_repository, (C.DATASET,))

        assert loaded_repository.get(C.DATASET, "iris/iris.txt") is None
        assert loaded_repository.get(C.DATASET_CONFIG, "iris") is None
        assert loaded_repository.get(C.RUN, "iris_clustering") is None
        assert loaded_repository.get(C.PROGRAM_CONFIG, "TransClust") is not None

    def test_failed_file_retried_every_pass(self, loaded_repository, write_config):
        """Test an unchanged failing config succeeds once its dependency appears."""
        path = write_config(
            C.DATASET_CONFIG,
            "late.dsconfig",
            "datasetName: late\ndatasetFile: late.txt\n",
        )
        scan_files(loaded_repository, (C.DATASET, C.DATASET_CONFIG))
        scan_files(loaded_repository, (C.DATASET, C.DATASET_CONFIG))
        assert loaded_repository.get(C.DATASET_CONFIG, "late") is None
        assert len(errors_of(loaded_repository, path)) == 1

        write_config(C.DATASET, "late.txt", "// alias = Late\n// dataSetFormat = MatrixDataSetFormat\n1\n", group="late")
        scan_files(loaded_repository, (C.DATASET, C.DATASET_CONFIG))

        assert loaded_repository.get(C.DATASET_CONFIG, "late") is not None
        assert errors_of(loaded_repository, path) == []

    def test_error_logged_once(self, loaded_repository, write_config):
        """Test the same failure is logged once across passes."""
        write_config(C.RUN, "bad.run", "mode: nonsense\n")
        finder = FileFinder(loaded_repository, C.RUN)

        with patch.object(finder, "log") as log:
            for _ in range(3):
                finder.find_and_register_objects()

        failures = [
            c for c in log.warning.call_args_list
            if c.args[0] == "finder_file_failed" and c.kwargs["path"].endswith("bad.run")
        ]
        assert len(failures) == 1

    def test_name_taken_in_other_group(self, loaded_repository, write_config):
        """Test a config with a registered name from another file is skipped."""
        scan_files(loaded_repository, (C.DATASET, C.DATASET_CONFIG))
        write_config(
            C.DATASET_CONFIG,
            "iris.dsconfig",
            "datasetName: iris\ndatasetFile: iris.txt\n",
            group="zzz",
        )
        original = loaded_repository.get(C.DATASET_CONFIG, "iris")

        assert FileFinder(loaded_repository, C.DATASET_CONFIG).find_and_register_objects() == 0
        assert loaded_repository.get(C.DATASET_CONFIG, "iris") is original
