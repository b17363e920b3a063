"""Utility modules for logging, configuration, and error types."""

from epifit.utils.exceptions import (
    EpiFitError,
    InvalidParameterError,
    DimensionMismatchError,
    DataLoadError,
    DataValidationError,
    ConfigurationError,
)

__all__ = [
    'EpiFitError',
    'InvalidParameterError',
    'DimensionMismatchError',
    'DataLoadError',
    'DataValidationError',
    'ConfigurationError',
]
