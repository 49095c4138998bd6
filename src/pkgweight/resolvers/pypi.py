"""PyPI registry resolver."""

import logging
import re

import httpx
from packaging.requirements import InvalidRequirement, Requirement
from packaging.specifiers import SpecifierSet
from packaging.utils import canonicalize_name
from packaging.version import InvalidVersion, Version

from pkgweight.models.schemas import PackageSpec, PyPiSpec
from pkgweight.resolvers.base import BaseResolver, InvalidSpecError, RegistryError

logger = logging.getLogger(__name__)

# "~=2" is not valid PEP 440 but shows up in the wild; treat as >=2,<3
SINGLE_COMPONENT_COMPATIBLE_RE = re.compile(r"~=\s*(\d+)(?=\s*(?:[,);]|$))")


class PyPiResolver(BaseResolver):
    """Resolver for the Python Package Index (PyPI).

    Specifiers are PEP 508 requirement strings (``django>=3.0``). Names are
    normalized per PEP 503 and extras and markers are dropped, so the key is
    just the name plus the canonical specifier set.

    Data sources:
    - Release list: {pypi_url}/{package}/json
    - Version metadata: {pypi_url}/{package}/{version}/json
    """

    stateful = True

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._versions_cache: dict[str, list[Version]] = {}

    @property
    def language(self) -> str:
        return "python"

    @property
    def registry(self) -> str:
        return "pypi"

    def init(self) -> None:
        self._versions_cache = {}

    def normalize_name(self, name: str) -> str:
        return canonicalize_name(name)

    def get_manifest_patterns(self) -> list[str]:
        return [r".*requirements.*\.txt"]

    def build_latest_spec(self, name: str) -> str:
        return name

    def extract_dependencies_from_manifest(self, manifest: str) -> list[str]:
        """Return the requirement lines of a requirements.txt file.

        Skips blank lines, comments, pip options (``-r``, ``-e``, ...) and
        ``git+`` URLs, and strips trailing comments.
        """
        if not manifest:
            return []

        deps = []
        for line in manifest.splitlines():
            line = line.strip().lower()
            if not line or line.startswith(("#", "-", "git+")):
                continue
            line = line.split(" #", 1)[0].strip()
            if line:
                deps.append(line)
        return deps

    def get_spec(self, specifier: str) -> PyPiSpec:
        """Parse a requirement string such as ``django (>=3.0) ; python_version>'3'``."""
        text = specifier.split("#", 1)[0].strip()
        text = SINGLE_COMPONENT_COMPATIBLE_RE.sub(
            lambda m: f">={m.group(1)},<{int(m.group(1)) + 1}", text
        )
        try:
            requirement = Requirement(text)
        except InvalidRequirement as e:
            raise InvalidSpecError(specifier, str(e)) from e

        return PyPiSpec(
            name=canonicalize_name(requirement.name),
            specifier=str(requirement.specifier),
        )

    async def get_dependencies(self, spec: PackageSpec) -> list[PackageSpec]:
        """Return the runtime requirements of the release ``spec`` selects.

        Requirements gated on an extra are skipped.
        """
        try:
            version = await self._resolve(spec)
            url = f"{self.settings.pypi_url}/{spec.name}/{version}/json"
            data = await self._fetch_json(url, spec.name)
        except (RegistryError, httpx.HTTPError, ValueError) as e:
            logger.warning(f"Unable to get dependencies for {spec}: {e}")
            return []

        requires_dist = (data.get("info") or {}).get("requires_dist") or []
        dependencies = []
        for requirement in requires_dist:
            if _is_extra_requirement(requirement):
                continue
            try:
                dependencies.append(self.get_spec(requirement))
            except InvalidSpecError as e:
                logger.debug(f"Skipping requirement of {spec}: {e}")
        return dependencies

    async def resolve_to_spec(self, specifier: str) -> str:
        """Given ``django>=3.0`` return e.g. ``django==4.2.7``."""
        try:
            spec = self.get_spec(specifier)
            version = await self._resolve(spec)
        except (InvalidSpecError, RegistryError, httpx.HTTPError, ValueError) as e:
            logger.warning(f"Unable to lock {specifier}: {e}")
            return specifier
        return f"{spec.name}=={version}"

    async def _resolve(self, spec: PackageSpec) -> Version:
        """Pick the highest release allowed by ``spec.specifier``.

        Pre-releases are only considered when no final release matches.

        Raises:
            RegistryError: If the package has no matching release.
        """
        specifier = SpecifierSet(getattr(spec, "specifier", ""))

        # An exact pin needs no release list
        pinned = _exact_pin(specifier)
        if pinned is not None:
            return pinned

        releases = await self._get_releases(spec.name)
        if not releases:
            raise RegistryError(f"No releases found for {spec.name}")

        matching = list(specifier.filter(releases))
        if not matching:
            raise RegistryError(f"No release of {spec.name} satisfies '{specifier}'")
        return max(matching)

    async def _get_releases(self, name: str) -> list[Version]:
        if name not in self._versions_cache:
            data = await self._fetch_json(f"{self.settings.pypi_url}/{name}/json", name)
            releases = []
            for release, files in (data.get("releases") or {}).items():
                # Releases with every file yanked are not installable
                if files and all(f.get("yanked") for f in files):
                    continue
                try:
                    releases.append(Version(release))
                except InvalidVersion:
                    logger.debug(f"Ignoring invalid version {release!r} of {name}")
            self._versions_cache[name] = sorted(releases, reverse=True)
        return self._versions_cache[name]


def _exact_pin(specifier: SpecifierSet) -> Version | None:
    """Return the version of a lone ``==X`` specifier without wildcards."""
    specs = list(specifier)
    if len(specs) != 1 or specs[0].operator not in ("==", "==="):
        return None
    if specs[0].version.endswith("*"):
        return None
    try:
        return Version(specs[0].version)
    except InvalidVersion:
        return None


def _is_extra_requirement(requirement: str) -> bool:
    _, _, marker = requirement.partition(";")
    return re.search(r"\bextra\s*==", marker) is not None
