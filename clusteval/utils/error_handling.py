"""
Error Handling Module

Provides the exception hierarchy of the extension registry:
- Repository configuration errors (fatal to a finder pass)
- Registration errors (unknown extensions, stale parser versions, malformed artifacts)
- Dependency errors between finder tasks
- Error tracking for repeated finder failures
"""

import time
from typing import Any, Optional, Type

import structlog


logger = structlog.get_logger(__name__)


# =============================================================================
# Custom Exception Hierarchy
# =============================================================================


class ClusEvalError(Exception):
    """Base exception for all clusteval errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.timestamp = time.time()

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp,
        }


# Configuration Errors
class RepositoryConfigurationError(ClusEvalError):
    """Error in repository configuration or layout."""
    pass


# Registration Errors
class RegisterError(ClusEvalError):
    """Base class for errors while registering objects at a repository."""
    pass


class UnknownExtensionError(RegisterError):
    """A referenced extension or repository object is not registered."""
    pass


class UnknownDataSetFormatError(UnknownExtensionError):
    pass


class UnknownRunResultFormatError(UnknownExtensionError):
    pass


class UnknownDistanceMeasureError(UnknownExtensionError):
    pass


class UnknownQualityMeasureError(UnknownExtensionError):
    pass


class UnknownParameterOptimizationMethodError(UnknownExtensionError):
    pass


class UnknownDataStatisticError(UnknownExtensionError):
    pass


class UnknownContextError(UnknownExtensionError):
    pass


class UnknownRProgramError(UnknownExtensionError):
    pass


class UnknownDataSetError(UnknownExtensionError):
    pass


class UnknownDataSetConfigError(UnknownExtensionError):
    pass


class UnknownGoldStandardConfigError(UnknownExtensionError):
    pass


class UnknownProgramConfigError(UnknownExtensionError):
    pass


class FormatVersionError(RegisterError):
    """A parser is older than the newest version of its format."""
    pass


class MalformedArtifactError(RegisterError):
    """Artifact has the wrong base class, lacks metadata or fails to load."""
    pass


class ConfigFileError(RegisterError):
    """A configuration file body could not be parsed."""
    pass


# Dependency Errors
class DependencyError(ClusEvalError):
    """Base class for errors in the finder task dependency graph."""
    pass


class DependencyWaitTimeoutError(DependencyError):
    """Waiting for a prerequisite finder task timed out."""
    pass


class DependencyCycleError(DependencyError):
    """The declared finder task dependencies contain a cycle."""
    pass


class MissingDependencyError(DependencyError):
    """A finder task depends on a category no task is responsible for."""
    pass


_UNKNOWN_ERRORS: dict[str, Type[UnknownExtensionError]] = {
    "DATASET_FORMAT": UnknownDataSetFormatError,
    "RUN_RESULT_FORMAT": UnknownRunResultFormatError,
    "DISTANCE_MEASURE": UnknownDistanceMeasureError,
    "QUALITY_MEASURE": UnknownQualityMeasureError,
    "PARAMETER_OPTIMIZATION_METHOD": UnknownParameterOptimizationMethodError,
    "DATA_STATISTIC": UnknownDataStatisticError,
    "CONTEXT": UnknownContextError,
    "RPROGRAM": UnknownRProgramError,
    "DATASET": UnknownDataSetError,
    "DATASET_CONFIG": UnknownDataSetConfigError,
    "GOLDSTANDARD_CONFIG": UnknownGoldStandardConfigError,
    "PROGRAM_CONFIG": UnknownProgramConfigError,
}


def unknown_error_for(category: Any) -> Type[UnknownExtensionError]:
    """
    Map an extension category to its not-found exception type.

    Args:
        category: ExtensionCategory member or its name

    Returns:
        Exception class, UnknownExtensionError for categories without a dedicated one
    """
    name = getattr(category, "name", category)
    return _UNKNOWN_ERRORS.get(name, UnknownExtensionError)


# =============================================================================
# Error Tracker
# =============================================================================


class ErrorTracker:
    """
    Track errors and generate alerts when thresholds exceeded.

    Used by finders to report when a single pass produces many failures.
    """

    def __init__(
        self,
        window_size: float = 300.0,  # 5 minutes
        alert_threshold: int = 10,
    ):
        """
        Initialize error tracker.

        Args:
            window_size: Time window in seconds
            alert_threshold: Number of errors before alert
        """
        self.window_size = window_size
        self.alert_threshold = alert_threshold
        self.errors: list[tuple[float, Exception]] = []
        self._logger = structlog.get_logger(__name__)

    def record(self, error: Exception) -> None:
        """
        Record an error occurrence.

        Args:
            error: Exception that occurred
        """
        current_time = time.time()
        self.errors.append((current_time, error))

        self._clean_old_errors(current_time)

        if len(self.errors) >= self.alert_threshold:
            self._trigger_alert()

    def _clean_old_errors(self, current_time: float) -> None:
        """Remove errors outside time window."""
        cutoff_time = current_time - self.window_size
        self.errors = [
            (ts, err) for ts, err in self.errors if ts >= cutoff_time
        ]

    def _error_types(self) -> dict[str, int]:
        error_types: dict[str, int] = {}
        for _, error in self.errors:
            error_type = type(error).__name__
            error_types[error_type] = error_types.get(error_type, 0) + 1
        return error_types

    def _trigger_alert(self) -> None:
        """Trigger alert when threshold exceeded."""
        self._logger.error(
            "error_threshold_exceeded",
            error_count=len(self.errors),
            threshold=self.alert_threshold,
            window_size=self.window_size,
            error_types=self._error_types(),
        )

    def get_stats(self) -> dict[str, Any]:
        """Get error statistics."""
        self._clean_old_errors(time.time())

        return {
            "total_errors": len(self.errors),
            "error_types": self._error_types(),
            "window_size": self.window_size,
            "alert_threshold": self.alert_threshold,
        }

    def reset(self) -> None:
        """Clear all recorded errors."""
        self.errors.clear()
