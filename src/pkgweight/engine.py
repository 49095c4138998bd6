"""Weight propagation over a package dependency graph.

A unit of mass (1.0) is split evenly among the top-level packages. Every
package keeps one share of what it receives and hands the remaining shares
to its dependencies, one each. Packages on the no-comp list keep nothing
and pass their whole weight through to their dependencies.

Subdivision stops once a share would fall below ``epsilon``: a regular
package then keeps everything it received, and a no-comp package drops it.
That cutoff is also what bounds traversal of cyclic graphs.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Collection, Sequence
from dataclasses import asdict, dataclass, field

from pkgweight.models.schemas import PackageSpec
from pkgweight.resolvers.base import BaseResolver

logger = logging.getLogger(__name__)

DEFAULT_EPSILON = 0.01


@dataclass
class WorkItem:
    """A batch of packages sharing one weight."""

    packages: list[PackageSpec]
    weight: float


@dataclass
class TraversalStats:
    """Counters describing one propagation run."""

    batches: int = 0
    packages_processed: int = 0
    dependency_fetches: int = 0
    cache_hits: int = 0
    skipped_specs: int = 0
    fetch_failures: int = 0
    # Mass dropped below epsilon, or handed to a no-comp package with no dependencies
    discarded_weight: float = 0.0
    skipped: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def validate_epsilon(epsilon: float) -> float:
    """Reject epsilons that would let the traversal run forever."""
    if not epsilon > 0:
        raise ValueError(f"epsilon must be a positive number, got {epsilon!r}")
    return float(epsilon)


class WeightPropagator:
    """Computes package weights for one resolver.

    Each call to ``run`` starts with an empty weight map and dependency
    cache. Dependency lookups are memoized per spec key for the duration of
    the run, so every (name, version constraint) pair hits the registry at
    most once.

    Usage:
        propagator = WeightPropagator(NpmResolver(), epsilon=0.01, no_comp={"react"})
        weights = await propagator.run(["express@^4", "lodash"])
        print(propagator.stats.discarded_weight)
    """

    def __init__(
        self,
        resolver: BaseResolver,
        epsilon: float = DEFAULT_EPSILON,
        no_comp: Collection[str] = (),
    ) -> None:
        """Initialize the propagator.

        Args:
            resolver: Registry resolver for the packages' ecosystem.
            epsilon: Smallest share worth subdividing further. Must be > 0.
            no_comp: Names of packages whose weight passes through to
                their dependencies instead of accumulating on them.

        Raises:
            ValueError: If epsilon is not positive.
        """
        self.resolver = resolver
        self.epsilon = validate_epsilon(epsilon)
        # Matched against PackageSpec.name, so use the resolver's spelling
        self.no_comp = frozenset(resolver.normalize_name(name) for name in no_comp)
        self.stats = TraversalStats()
        self._weights: dict[str, float] = {}
        self._cache: dict[str, asyncio.Task[list[PackageSpec]]] = {}

    async def run(self, top_level_specs: Sequence[str]) -> dict[str, float]:
        """Distribute a unit of weight over the dependency graph.

        Args:
            top_level_specs: Raw specifiers of the top-level packages.
                Unparseable entries are skipped and don't count towards
                the initial split.

        Returns:
            Mapping of package name to accumulated weight.
        """
        self.stats = TraversalStats()
        self._weights = {}
        self._cache = {}

        if self.resolver.stateful:
            self.resolver.init()

        initial = []
        for raw in top_level_specs:
            spec = self._get_spec(raw)
            if spec is not None:
                initial.append(spec)

        if not initial:
            logger.info("No resolvable top-level packages; nothing to weigh")
            return {}

        queue = [WorkItem(initial, 1 / len(initial))]
        while queue:
            item = queue.pop()
            self.stats.batches += 1
            logger.debug(f"Batch {self.stats.batches}: {len(item.packages)} packages at {item.weight:.6g}")
            children = await asyncio.gather(
                *(self._process_package(pkg, item.weight) for pkg in item.packages)
            )
            queue.extend(child for child in children if child is not None)

        logger.info(
            f"Weighed {len(self._weights)} packages in {self.stats.batches} batches "
            f"({self.stats.dependency_fetches} fetches, {self.stats.cache_hits} cache hits)"
        )
        return self._weights

    async def _process_package(self, pkg: PackageSpec, weight: float) -> WorkItem | None:
        """Record this package's share and return the batch for its dependencies."""
        # Resolvers may keep per-call state, so re-resolve rather than reuse
        spec = self._get_spec(str(pkg))
        if spec is None:
            self.stats.discarded_weight += weight
            return None
        self.stats.packages_processed += 1

        deps = await self._dependencies_of(spec)

        no_comp_deps = [dep for dep in deps if dep.name in self.no_comp]
        if no_comp_deps:
            grandchildren = await asyncio.gather(
                *(self._dependencies_of(dep) for dep in no_comp_deps)
            )
            # A no-comp dependency with nothing below it can't pass weight on
            dead_ends = {
                dep.name for dep, below in zip(no_comp_deps, grandchildren) if not below
            }
            deps = [dep for dep in deps if dep.name not in dead_ends]

        if spec.name in self.no_comp:
            split_weight = weight / max(1, len(deps))
            if split_weight < self.epsilon:
                self.stats.discarded_weight += weight
                return None
            if not deps:
                self.stats.discarded_weight += weight
            return WorkItem(deps, split_weight)

        # One share for the package itself, one per dependency
        split_weight = weight / (len(deps) + 1)
        if split_weight < self.epsilon:
            self._add_weight(spec.name, weight)
            return None
        self._add_weight(spec.name, split_weight)
        return WorkItem(deps, split_weight)

    def _add_weight(self, name: str, weight: float) -> None:
        # No await between read and write
        self._weights[name] = self._weights.get(name, 0.0) + weight

    def _get_spec(self, raw: str) -> PackageSpec | None:
        # InvalidSpecError is a ValueError; third-party resolvers may raise plain ones
        try:
            return self.resolver.get_spec(raw)
        except ValueError as e:
            logger.warning(f"Unable to resolve package spec: {e}")
            self.stats.skipped_specs += 1
            self.stats.skipped.append(raw)
            return None

    async def _dependencies_of(self, spec: PackageSpec) -> list[PackageSpec]:
        """Look up dependencies through the per-run cache.

        Concurrent lookups of the same key share a single fetch.
        """
        key = str(spec)
        task = self._cache.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch_dependencies(spec))
            self._cache[key] = task
        else:
            self.stats.cache_hits += 1
            logger.debug(f"Cache hit for {key}")
        return await task

    async def _fetch_dependencies(self, spec: PackageSpec) -> list[PackageSpec]:
        self.stats.dependency_fetches += 1
        try:
            return list(await self.resolver.get_dependencies(spec))
        except Exception as e:
            # One package's failure must not take down its siblings
            logger.warning(f"Dependency lookup failed for {spec}; treating as a leaf: {e}")
            self.stats.fetch_failures += 1
            return []


async def compute_weights(
    top_level_specs: Sequence[str],
    resolver: BaseResolver,
    epsilon: float = DEFAULT_EPSILON,
    no_comp: Collection[str] = (),
) -> dict[str, float]:
    """Compute the weight map for a set of top-level packages.

    Args:
        top_level_specs: Raw specifiers of the top-level packages.
        resolver: Registry resolver for their ecosystem.
        epsilon: Smallest share worth subdividing further. Must be > 0.
        no_comp: Names of packages that pass their weight through.

    Returns:
        Mapping of package name to accumulated weight.

    Raises:
        ValueError: If epsilon is not positive.
    """
    propagator = WeightPropagator(resolver, epsilon=epsilon, no_comp=no_comp)
    return await propagator.run(top_level_specs)
