"""
Custom Exceptions for epifit

Provides specific exception types for parameter, data and configuration
failures. Non-finite results and optimizer non-convergence are advisory and
are reported as values, not raised.
"""


class EpiFitError(Exception):
    """Base exception for all epifit errors."""
    pass


class InvalidParameterError(EpiFitError):
    """A model parameter is missing or unusable for integration."""
    def __init__(self, parameter: str, reason: str):
        self.parameter = parameter
        self.reason = reason
        super().__init__(f"Invalid parameter '{parameter}': {reason}")


class DimensionMismatchError(EpiFitError):
    """Observed and simulated series do not line up."""
    def __init__(self, expected: int, actual: int, reason: str = "length mismatch"):
        self.expected = expected
        self.actual = actual
        self.reason = reason
        super().__init__(
            f"Dimension mismatch ({reason}): observed has {expected} points, "
            f"simulated has {actual}"
        )


class DataLoadError(EpiFitError):
    """Error loading or parsing data files."""
    def __init__(self, filepath: str, reason: str):
        self.filepath = filepath
        self.reason = reason
        super().__init__(f"Failed to load {filepath}: {reason}")


class DataValidationError(EpiFitError):
    """Error validating data integrity."""
    def __init__(self, issues: list):
        self.issues = issues
        super().__init__(f"Data validation failed: {', '.join(issues[:3])}")


class ConfigurationError(EpiFitError):
    """Error in configuration."""
    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Configuration error for '{key}': {reason}")
