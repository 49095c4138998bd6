"""Language/registry lookup table and the operations routed through it."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Collection, Mapping, Sequence

import httpx

from pkgweight.config import Settings
from pkgweight.engine import WeightPropagator, validate_epsilon
from pkgweight.models.schemas import (
    Language,
    ManifestDependencies,
    ManifestPatterns,
    Registry,
    SupportedManifest,
)
from pkgweight.resolvers.base import BaseResolver, UnsupportedRegistryError
from pkgweight.resolvers.npm import NpmResolver
from pkgweight.resolvers.pypi import PyPiResolver
from pkgweight.resolvers.rubygems import RubyGemsResolver

logger = logging.getLogger(__name__)

RegistryTable = Mapping[str, Mapping[str, BaseResolver]]


def default_registries(
    settings: Settings | None = None,
    client: httpx.AsyncClient | None = None,
) -> dict[str, dict[str, BaseResolver]]:
    """Build the built-in language -> registry -> resolver table.

    Args:
        settings: Settings handed to every resolver.
        client: Optional httpx client shared by every resolver.
    """
    settings = settings or Settings()
    return {
        Language.JAVASCRIPT.value: {
            Registry.NPM.value: NpmResolver(client=client, settings=settings),
        },
        Language.PYTHON.value: {
            Registry.PYPI.value: PyPiResolver(client=client, settings=settings),
        },
        Language.RUBY.value: {
            Registry.RUBYGEMS.value: RubyGemsResolver(client=client, settings=settings),
        },
    }


class RegistryResolver:
    """Routes manifest, locking and weighting operations to the right resolver.

    The resolver table is supplied by the caller, which makes it easy to
    add private registries or swap in test doubles:

        resolver = RegistryResolver(registries={"zig": {"zzz": MyResolver()}})
        weights = await resolver.compute_package_weight(["a", "b"], "zig", "zzz")
    """

    def __init__(
        self,
        registries: RegistryTable | None = None,
        epsilon: float | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the registry resolver.

        Args:
            registries: language -> registry -> resolver table. Defaults to
                the built-in npm, PyPI and RubyGems resolvers.
            epsilon: Smallest share worth subdividing. Defaults to
                ``settings.epsilon``.
            settings: Settings used for defaults.

        Raises:
            ValueError: If epsilon is not positive.
        """
        self.settings = settings or Settings()
        self.registries = (
            registries if registries is not None else default_registries(self.settings)
        )
        self._epsilon = validate_epsilon(
            self.settings.epsilon if epsilon is None else epsilon
        )

    @property
    def epsilon(self) -> float:
        return self._epsilon

    def set_epsilon(self, value: float) -> None:
        self._epsilon = validate_epsilon(value)

    def get_supported_registry(self, language: str, registry: str) -> BaseResolver | None:
        """Return the resolver for a language/registry pair, if any."""
        return self.registries.get(language, {}).get(registry)

    def _require_registry(self, language: str, registry: str) -> BaseResolver:
        resolver = self.get_supported_registry(language, registry)
        if resolver is None:
            raise UnsupportedRegistryError(language, registry)
        return resolver

    def get_supported_manifest_patterns(self) -> list[ManifestPatterns]:
        return [
            ManifestPatterns(
                language=language,
                registry=registry,
                patterns=resolver.get_manifest_patterns(),
            )
            for language, registries in self.registries.items()
            for registry, resolver in registries.items()
        ]

    def extract_dependencies_from_manifest(self, manifest: SupportedManifest) -> list[str]:
        """Return the dependency specifiers of one manifest.

        Unsupported language/registry pairs yield no dependencies.
        """
        resolver = self.get_supported_registry(manifest.language, manifest.registry)
        if resolver is None:
            logger.warning(
                f"No resolver for {manifest.language} / {manifest.registry}; skipping manifest"
            )
            return []
        return resolver.extract_dependencies_from_manifest(manifest.manifest)

    def extract_dependencies_from_manifests(
        self, manifests: Sequence[SupportedManifest]
    ) -> list[ManifestDependencies]:
        """Extract dependencies from many manifests, grouped by language/registry.

        Groups keep the order in which their pair was first seen.
        """
        groups: dict[tuple[str, str], list[str]] = {}
        for manifest in manifests:
            deps = self.extract_dependencies_from_manifest(manifest)
            groups.setdefault((manifest.language, manifest.registry), []).extend(deps)

        return [
            ManifestDependencies(language=language, registry=registry, deps=deps)
            for (language, registry), deps in groups.items()
        ]

    def build_latest_spec(self, name: str, language: str, registry: str) -> str:
        """Return a specifier for the latest release of ``name``.

        Raises:
            UnsupportedRegistryError: If the pair has no resolver.
        """
        return self._require_registry(language, registry).build_latest_spec(name)

    async def compute_package_weight(
        self,
        top_level_packages: Sequence[str],
        language: str,
        registry: str,
        no_comp: Collection[str] = (),
    ) -> dict[str, float]:
        """Weigh every package in the dependency tree of the top-level packages.

        Raises:
            UnsupportedRegistryError: If the pair has no resolver. Raised
                before any registry is contacted.
        """
        resolver = self._require_registry(language, registry)
        propagator = WeightPropagator(resolver, epsilon=self.epsilon, no_comp=no_comp)
        return await propagator.run(top_level_packages)

    async def resolve_to_spec(
        self, packages: Sequence[str], language: str, registry: str
    ) -> list[str]:
        """Lock every specifier to a concrete version.

        Raises:
            UnsupportedRegistryError: If the pair has no resolver.
        """
        resolver = self._require_registry(language, registry)
        return list(await asyncio.gather(*(resolver.resolve_to_spec(p) for p in packages)))
