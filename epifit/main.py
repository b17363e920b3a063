#!/usr/bin/env python
"""
epifit Main Pipeline

Command-line interface for fitting a compartmental epidemic model to an
observed case series.

Usage:
    python -m epifit.main --config configs/config.yaml --phase all
    python -m epifit.main --phase scan --data data/cases.csv
    python -m epifit.main --phase grid --n-workers 4
    python -m epifit.main --phase optimize --output-dir results
"""

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np

from epifit.utils.logger import get_logger, setup_logger, set_level
from epifit.utils.config_manager import ConfigManager
from epifit.utils.exceptions import ConfigurationError, EpiFitError
from epifit.epidemic_model.compartmental import (
    IntegratorSettings,
    ModelVariant,
    integrate,
    summarize_trajectory,
)
from epifit.estimation.search import (
    OptimizationResult,
    ScanResult,
    SearchSurface,
    grid_scan,
    optimize_parameters,
    scan_parameter,
)
from epifit.preprocessing.case_series import CaseSeriesLoader, TimeSeries


PHASES = ['all', 'scan', 'grid', 'optimize']


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="epifit: least-squares fitting of SIR/SEIR models to case counts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run every search strategy
    python -m epifit.main --phase all

    # 1-D scan of the configured parameter
    python -m epifit.main --phase scan --data data/cases.csv

    # 2-D SSE surface with 4 worker processes
    python -m epifit.main --phase grid --n-workers 4
        """
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        default='configs/config.yaml',
        help='Path to configuration file'
    )

    parser.add_argument(
        '--phase', '-p',
        type=str,
        choices=PHASES,
        default='all',
        help='Search strategy to run'
    )

    parser.add_argument(
        '--data', '-d',
        type=str,
        default=None,
        help='Case series CSV (overrides data.path)'
    )

    parser.add_argument(
        '--output-dir',
        type=str,
        default='results',
        help='Output directory for results'
    )

    parser.add_argument(
        '--n-workers',
        type=int,
        default=None,
        help='Worker processes for the grid scan (overrides grid.n_workers)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )

    return parser.parse_args(argv)


class FittingPipeline:
    """Orchestrates loading, searching and exporting for one outbreak."""

    def __init__(
        self,
        config_path: str,
        data_path: Optional[str] = None,
        output_dir: str = 'results',
        n_workers: Optional[int] = None
    ):
        """
        Initialize the pipeline.

        Args:
            config_path: Path to configuration file
            data_path: Case series CSV (defaults to data.path)
            output_dir: Output directory
            n_workers: Grid-scan worker processes (defaults to grid.n_workers)
        """
        self.config = ConfigManager()
        self.config.load(config_path)
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        self.logger = get_logger(__name__)

        self.variant = ModelVariant.coerce(self.config.get('model.variant', 'SIR'))
        self.parameters = self._fixed_parameters()
        self.settings = IntegratorSettings(
            method=str(self.config.get('integrator.method', 'DOP853')),
            rtol=float(self.config.get('integrator.rtol', 1e-13)),
            atol=float(self.config.get('integrator.atol', 1e-12)),
            max_steps=int(self.config.get('integrator.max_steps', 50000)),
        )
        self.data_path = data_path or self.config.get('data.path')
        self.n_workers = n_workers if n_workers is not None else self.config.get('grid.n_workers', 1)

        self._observed: Optional[TimeSeries] = None
        self._scan: Optional[ScanResult] = None
        self._surface: Optional[SearchSurface] = None
        self._optimum: Optional[OptimizationResult] = None

    def _fixed_parameters(self) -> Dict[str, float]:
        params = self.config.require('model.parameters')
        if not isinstance(params, dict):
            raise ConfigurationError('model.parameters', "must be a mapping of name to value")
        try:
            return {name: float(value) for name, value in params.items()}
        except (TypeError, ValueError) as e:
            raise ConfigurationError('model.parameters', str(e)) from e

    @property
    def observed(self) -> TimeSeries:
        """Observed case series, loaded once on first use."""
        if self._observed is None:
            if not self.data_path:
                raise ConfigurationError('data.path', "no case series file given")
            loader = CaseSeriesLoader(
                time_col=self.config.get('data.time_column', 'Day'),
                value_col=self.config.get('data.value_column', 'COVID19'),
            )
            self._observed = loader.load(self.data_path)
        return self._observed

    def run_scan(self) -> ScanResult:
        """Linear scan of a single parameter."""
        self.logger.info("=" * 60)
        self.logger.info("1-D PARAMETER SCAN")
        self.logger.info("=" * 60)

        self._scan = scan_parameter(
            self.variant,
            self.parameters,
            self.observed,
            parameter=self.config.get('scan.parameter', 'Beta'),
            lower=float(self.config.require('scan.lower')),
            upper=float(self.config.require('scan.upper')),
            step=float(self.config.require('scan.step')),
            settings=self.settings,
        )

        self._scan.to_frame().to_csv(self.output_dir / 'scan.csv', index=False)
        return self._scan

    def run_grid(self) -> SearchSurface:
        """Two-parameter SSE surface for inspecting the loss landscape."""
        self.logger.info("=" * 60)
        self.logger.info("2-D GRID SCAN")
        self.logger.info("=" * 60)

        names = self.config.get('grid.parameters', ['Beta', 'alpha'])
        ranges = self.config.require('grid.ranges')
        if len(names) != 2 or len(ranges) != 2:
            raise ConfigurationError('grid', "exactly two parameters and two ranges are required")
        for r in ranges:
            if len(r) != 3:
                raise ConfigurationError('grid.ranges', f"expected [lower, upper, n_points], got {r}")

        self._surface = grid_scan(
            self.variant,
            self.parameters,
            self.observed,
            parameters=(names[0], names[1]),
            first_range=(float(ranges[0][0]), float(ranges[0][1]), int(ranges[0][2])),
            second_range=(float(ranges[1][0]), float(ranges[1][1]), int(ranges[1][2])),
            settings=self.settings,
            n_workers=self.n_workers,
            show_progress=True,
        )

        self._surface.to_frame().to_csv(self.output_dir / 'surface.csv', index=False)
        return self._surface

    def run_optimize(self) -> OptimizationResult:
        """Nelder-Mead from the configured start point."""
        self.logger.info("=" * 60)
        self.logger.info("NELDER-MEAD OPTIMIZATION")
        self.logger.info("=" * 60)

        self._optimum = optimize_parameters(
            self.variant,
            self.parameters,
            self.observed,
            free_parameters=self.config.get('optimizer.free_parameters', ['Beta', 'alpha']),
            start=self.config.get('optimizer.start'),
            xatol=float(self.config.get('optimizer.xatol', 1e-4)),
            fatol=float(self.config.get('optimizer.fatol', 1e-4)),
            max_iterations=self.config.get('optimizer.max_iterations'),
            max_evaluations=self.config.get('optimizer.max_evaluations'),
            settings=self.settings,
        )

        self.logger.info("Fitted parameters:")
        for name in self._optimum.free_parameters:
            self.logger.info(f"  {name} = {self._optimum.params[name]:.6g}")
        self.logger.info(f"  SSE = {self._optimum.sse:.6g}")
        self.logger.info(f"  R₀ = {self._optimum.r0():.3f}")

        with open(self.output_dir / 'optimization.json', 'w') as f:
            json.dump(self._optimum.to_dict(), f, indent=2, default=float)

        return self._optimum

    def best_parameters(self) -> Dict[str, float]:
        """Best available fit: optimizer result, else scan minimum, else configured values."""
        if self._optimum is not None and np.isfinite(self._optimum.sse):
            return dict(self._optimum.params)
        params = dict(self.parameters)
        if self._scan is not None and np.isfinite(self._scan.best_sse):
            params[self._scan.parameter] = self._scan.best_value
        return params

    def export_trajectory(self) -> Path:
        """Write the best-fit trajectory on the observed days."""
        params = self.best_parameters()
        trajectory = integrate(
            self.variant, params, 0.0, self.observed.times, self.settings
        )
        df = trajectory.to_frame()
        df['observed'] = self.observed.values

        output_file = self.output_dir / 'trajectory.csv'
        df.to_csv(output_file, index=False)

        summary = summarize_trajectory(trajectory)
        self.logger.info(
            f"Best-fit trajectory: peak I={summary['peak_infected']:.1f} "
            f"on day {summary['peak_day']:g}, R₀={self.variant.r0(params):.3f}"
        )
        return output_file

    def run(self, phase: str = 'all') -> None:
        """Run one search strategy, or all of them, then export the trajectory."""
        start_time = datetime.now()

        if phase in ('all', 'scan'):
            self.run_scan()
        if phase in ('all', 'grid'):
            self.run_grid()
        if phase in ('all', 'optimize'):
            self.run_optimize()

        self.export_trajectory()

        elapsed = datetime.now() - start_time
        self.logger.info(f"Completed '{phase}' in {elapsed}")
        self.logger.info(f"Results saved to: {self.output_dir}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    log_level = 'DEBUG' if args.verbose else 'INFO'
    setup_logger('epifit', log_level)
    set_level(log_level)

    logger = get_logger(__name__)
    logger.info("epifit pipeline starting...")
    logger.info(f"Configuration: {args.config}")
    logger.info(f"Phase: {args.phase}")

    try:
        pipeline = FittingPipeline(
            config_path=args.config,
            data_path=args.data,
            output_dir=args.output_dir,
            n_workers=args.n_workers,
        )
        if not args.verbose:
            log_level = pipeline.config.get('logging.level', 'INFO')
        log_file = pipeline.config.get('logging.file')
        if log_file:
            setup_logger('epifit', log_level, log_file=log_file)
        set_level(log_level)
        pipeline.run(args.phase)
    except (EpiFitError, FileNotFoundError) as e:
        logger.error(str(e))
        return 1

    logger.info("Pipeline complete.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
