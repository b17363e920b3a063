"""Deterministic compartmental (SIR / SEIR) epidemic models."""

from epifit.epidemic_model.compartmental import (
    ModelVariant,
    IntegratorSettings,
    Trajectory,
    SOLVERS,
    check_required_parameters,
    resolve_parameters,
    integrate,
    simulate,
    summarize_trajectory,
    sir_derivatives,
    seir_derivatives,
)

__all__ = [
    "ModelVariant",
    "IntegratorSettings",
    "Trajectory",
    "SOLVERS",
    "check_required_parameters",
    "resolve_parameters",
    "integrate",
    "simulate",
    "summarize_trajectory",
    "sir_derivatives",
    "seir_derivatives",
]
