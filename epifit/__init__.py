"""
epifit: Compartmental Epidemic Model Fitting

This package fits deterministic SIR and SEIR models to observed daily case
counts by least squares, using 1-D scans, 2-D grid scans and Nelder-Mead
optimization over an ODE trajectory simulator.
"""

__version__ = "1.0.0"
__author__ = "epifit contributors"
