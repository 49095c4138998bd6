"""Proportional weighting of packages across a dependency tree."""

from pkgweight.engine import WeightPropagator, compute_weights
from pkgweight.registry import RegistryResolver, default_registries

__version__ = "0.1.0"

__all__ = [
    "RegistryResolver",
    "WeightPropagator",
    "__version__",
    "compute_weights",
    "default_registries",
]
