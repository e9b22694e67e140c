"""
Gas module.

Estimates gas for draft bundles and caches the result across blocks.
"""

from bundler.gas.estimator import GasEstimator, GasEstimateCache, EstimationError

__all__ = [
    "GasEstimator",
    "GasEstimateCache",
    "EstimationError",
]
