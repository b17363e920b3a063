"""Loading and validation of observed case series."""

from epifit.preprocessing.case_series import (
    TimeSeries,
    CaseSeriesLoader,
    load_case_series,
)

__all__ = [
    "TimeSeries",
    "CaseSeriesLoader",
    "load_case_series",
]
