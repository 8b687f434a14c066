"""
Extension Capability Interfaces.

Defines the contracts user-supplied extension artifacts implement. The finders
only check that a loaded class is a concrete subclass of the capability of its
category and that it declares an integer ``version``; everything else is used
by the evaluation framework once the class is registered.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np


def parser_conversions(*conversions: Tuple[str, str]) -> Callable:
    """
    Declare the format conversions a parser method performs.

    The dataset format finder records every declared ``(source, target)`` pair
    in the repository's table of available format conversions.

    Example:
        class MatrixDataSetFormatParser(DataSetFormatParser):
            @parser_conversions(("MatrixDataSetFormat", "SimMatrixDataSetFormat"))
            def to_similarities(self, dataset, target_format):
                ...
    """

    def decorator(func: Callable) -> Callable:
        func.__parser_conversions__ = tuple(conversions)
        return func

    return decorator


class Extension(ABC):
    """Common base of all loadable extension classes."""

    # Declared on every concrete extension class itself; never inherited.
    version: Optional[int] = None

    # Simple class name of a sibling artifact that must be loaded first.
    parent: Optional[str] = None

    @classmethod
    def get_alias(cls) -> str:
        """Human readable name, defaults to the class name."""
        return getattr(cls, "alias", None) or cls.__name__


class DataSetFormat(Extension):
    """A format datasets can be stored in."""

    normalize: bool = False

    @classmethod
    def get_parser_name(cls) -> str:
        return cls.__name__ + "Parser"


class DataSetFormatParser(Extension):
    """Reads datasets of its paired format."""

    @abstractmethod
    def parse(self, path: str) -> np.ndarray:
        """
        Parse a dataset file.

        Args:
            path: Absolute path of the dataset file

        Returns:
            Data matrix (N x D) or similarity matrix (N x N)
        """
        pass


class RunResultFormat(Extension):
    """Output format of a clustering program."""


class RunResultFormatParser(Extension):
    """Converts program output of its paired format to the standard clustering format."""

    @abstractmethod
    def convert_to_standard_format(self, path: str) -> Dict[str, int]:
        """
        Parse a program output file.

        Args:
            path: Absolute path of the program output

        Returns:
            Mapping object id -> cluster id
        """
        pass


class DistanceMeasure(Extension):
    """Distance between two data points."""

    @abstractmethod
    def get_distance(self, point1: np.ndarray, point2: np.ndarray) -> float:
        pass

    def supports_matrix(self) -> bool:
        return False

    def get_distances(self, matrix: np.ndarray) -> np.ndarray:
        """
        Pairwise distances between all rows of ``matrix``.

        Args:
            matrix: Data matrix (N x D)

        Returns:
            Symmetric distance matrix (N x N)
        """
        n = matrix.shape[0]
        distances = np.zeros((n, n), dtype=float)
        for i in range(n):
            for j in range(i + 1, n):
                d = self.get_distance(matrix[i], matrix[j])
                distances[i, j] = d
                distances[j, i] = d
        return distances


class QualityMeasure(Extension):
    """Quality of a clustering, optionally against a gold standard."""

    requires_gold_standard: bool = False

    @abstractmethod
    def get_quality(
        self,
        clustering: Dict[str, int],
        gold_standard: Optional[Dict[str, int]] = None,
    ) -> float:
        pass

    def is_better_than(self, quality1: float, quality2: float) -> bool:
        return quality1 > quality2


class ParameterOptimizationMethod(Extension):
    """Proposes parameter sets for a parameter sweep."""

    @abstractmethod
    def next_parameter_set(
        self,
        previous_results: List[Tuple[Dict[str, Any], float]],
    ) -> Optional[Dict[str, Any]]:
        """
        Return the next parameter set to evaluate, or None when finished.
        """
        pass


class DataStatistic(Extension):
    """Statistic calculated on a dataset."""

    @abstractmethod
    def calculate(self, data: np.ndarray) -> Any:
        pass


class Context(Extension):
    """Standard input and output formats of a family of programs."""

    @abstractmethod
    def get_standard_input_format(self) -> str:
        pass

    @abstractmethod
    def get_standard_output_format(self) -> str:
        pass


class RProgram(Extension):
    """Clustering program implemented in R."""

    @abstractmethod
    def get_invocation_format(self) -> str:
        pass
