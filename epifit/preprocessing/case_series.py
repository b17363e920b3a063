"""
Case Series Loader

Loads observed daily case counts (columns ``Day`` and ``COVID19`` by default)
into an immutable TimeSeries aligned by observation day.
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple, Union

from epifit.utils.logger import get_logger
from epifit.utils.exceptions import DataLoadError, DataValidationError


def _series_issues(times: np.ndarray, values: np.ndarray) -> List[str]:
    issues: List[str] = []

    if times.ndim != 1 or values.ndim != 1:
        issues.append("times and values must be one-dimensional")
        return issues
    if len(times) != len(values):
        issues.append(f"{len(times)} time points but {len(values)} values")
        return issues
    if len(times) == 0:
        issues.append("series is empty")
        return issues

    if not np.all(np.isfinite(times)):
        issues.append("non-finite time points")
    elif np.any(np.diff(times) <= 0):
        issues.append("time points are not strictly increasing")

    if not np.all(np.isfinite(values)):
        issues.append(f"found {int((~np.isfinite(values)).sum())} non-finite counts")
    elif np.any(values < 0):
        issues.append(f"found {int((values < 0).sum())} negative counts")

    return issues


@dataclass(frozen=True)
class TimeSeries:
    """Observed counts indexed by strictly increasing observation days."""
    times: np.ndarray
    values: np.ndarray

    def __post_init__(self):
        """Validate and freeze the arrays."""
        times = np.array(self.times, dtype=float)
        values = np.array(self.values, dtype=float)

        issues = _series_issues(times, values)
        if issues:
            raise DataValidationError(issues)

        times.setflags(write=False)
        values.setflags(write=False)
        object.__setattr__(self, 'times', times)
        object.__setattr__(self, 'values', values)

    def __len__(self) -> int:
        return len(self.times)

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        time_col: str = 'Day',
        value_col: str = 'COVID19'
    ) -> 'TimeSeries':
        """Build a series from two DataFrame columns."""
        return cls(
            times=df[time_col].to_numpy(dtype=float),
            values=df[value_col].to_numpy(dtype=float)
        )

    def to_frame(self, time_col: str = 'Day', value_col: str = 'COVID19') -> pd.DataFrame:
        return pd.DataFrame({time_col: self.times, value_col: self.values})


class CaseSeriesLoader:
    """Load and validate observed case count tables."""

    def __init__(self, time_col: str = 'Day', value_col: str = 'COVID19'):
        """
        Initialize loader.

        Args:
            time_col: Column holding the observation day
            value_col: Column holding the observed count
        """
        self.time_col = time_col
        self.value_col = value_col
        self.logger = get_logger(__name__)

    def validate(self, df: pd.DataFrame) -> Tuple[bool, List[str]]:
        """
        Check that a table can be turned into a TimeSeries.

        Returns:
            Tuple of (is_valid, list_of_issues)
        """
        missing = {self.time_col, self.value_col} - set(df.columns)
        if missing:
            return False, [f"Missing required columns: {sorted(missing)}"]

        try:
            times = pd.to_numeric(df[self.time_col]).to_numpy(dtype=float)
            values = pd.to_numeric(df[self.value_col]).to_numpy(dtype=float)
        except (TypeError, ValueError) as e:
            return False, [f"Non-numeric data: {e}"]

        issues = _series_issues(times, values)
        return len(issues) == 0, issues

    def load(self, filepath: Union[str, Path]) -> TimeSeries:
        """
        Load a CSV file of observed counts.

        Args:
            filepath: Path to CSV with the configured day and count columns

        Returns:
            TimeSeries of the observations, in file order

        Raises:
            DataLoadError: File missing, unreadable, or lacking required columns
            DataValidationError: Days not strictly increasing or counts invalid
        """
        filepath = Path(filepath)
        self.logger.info(f"Loading case series from {filepath}")

        if not filepath.exists():
            raise DataLoadError(str(filepath), "File not found")

        try:
            df = pd.read_csv(filepath)
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            raise DataLoadError(str(filepath), str(e)) from e

        missing = {self.time_col, self.value_col} - set(df.columns)
        if missing:
            raise DataLoadError(str(filepath), f"missing columns {sorted(missing)}")

        is_valid, issues = self.validate(df)
        if not is_valid:
            raise DataValidationError(issues)

        series = TimeSeries.from_frame(df, self.time_col, self.value_col)
        self.logger.info(
            f"Loaded {len(series)} observations "
            f"(days {series.times[0]:g}-{series.times[-1]:g})"
        )
        return series


def load_case_series(
    filepath: Union[str, Path],
    time_col: str = 'Day',
    value_col: str = 'COVID19'
) -> TimeSeries:
    """Convenience wrapper around CaseSeriesLoader.load."""
    return CaseSeriesLoader(time_col, value_col).load(filepath)
