"""RubyGems registry resolver."""

import logging
import re

import httpx
from packaging.version import InvalidVersion, Version

from pkgweight.models.schemas import PackageSpec, RubyGemsSpec
from pkgweight.resolvers.base import BaseResolver, InvalidSpecError, RegistryError

logger = logging.getLogger(__name__)

OPERATORS = ("==", "=", ">=", ">", "<=", "<", "~>", "!=")
GEM_NAME_RE = re.compile(r"^[A-Za-z0-9._-]+$")
GEMFILE_VERSION_RE = re.compile(
    r"""^(['"])(==|=|>=|>|<=|<|~>|!=)?\s*([A-Za-z0-9.-]+)(['"])$"""
)
CANONICAL_RE = re.compile(r"^([A-Za-z0-9._-]+)@(==|=|>=|>|<=|<|~>|!=)?\s*([A-Za-z0-9.-]*)$")


class RubyGemsResolver(BaseResolver):
    """Resolver for rubygems.org.

    Accepts Gemfile lines (``gem 'puma', '~> 3.7'``) and canonical keys
    (``puma@~>3.7``). Only the first version constraint of a Gemfile line
    is honoured; a gem without one means its latest release.

    Data sources:
    - Release list: {rubygems_url}/api/v1/versions/{gem}.json
    - Version metadata: {rubygems_url}/api/v2/rubygems/{gem}/versions/{version}.json
    """

    stateful = True

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._versions_cache: dict[str, list[tuple[Version, str, bool]]] = {}

    @property
    def language(self) -> str:
        return "ruby"

    @property
    def registry(self) -> str:
        return "rubygems"

    def init(self) -> None:
        self._versions_cache = {}

    def get_manifest_patterns(self) -> list[str]:
        return ["Gemfile"]

    def build_latest_spec(self, name: str) -> str:
        return name

    def extract_dependencies_from_manifest(self, manifest: str) -> list[str]:
        """Return every ``gem ...`` line of a Gemfile, from every group.

        Lines are lowercased and stripped of trailing comments.
        """
        if not manifest:
            return []

        deps = []
        for line in manifest.splitlines():
            line = line.strip().lower()
            if not line or line.startswith("#"):
                continue
            if line.startswith("gem"):
                deps.append(line.split("#", 1)[0].strip())
        return deps

    def get_spec(self, specifier: str) -> RubyGemsSpec:
        text = specifier.strip()
        if re.match(r"^gem\s", text):
            return self._parse_gemfile_line(specifier, text)

        match = CANONICAL_RE.match(text)
        if match:
            name, operator, version = match.groups()
            return self._make_spec(specifier, name, operator, version)

        return self._make_spec(specifier, text, None, None)

    def _parse_gemfile_line(self, specifier: str, line: str) -> RubyGemsSpec:
        # Version always comes right after the name, if there is one
        name_part, _, rest = line.partition(",")
        name = re.sub(r"^gem\s+", "", name_part).strip().strip("'\"")

        version_part = rest.split(",", 1)[0].strip()
        match = GEMFILE_VERSION_RE.match(version_part)
        if not match:
            # Either no version, or options like `require: false`
            return self._make_spec(specifier, name, None, None)
        _, operator, version, _ = match.groups()
        return self._make_spec(specifier, name, operator, version)

    def _make_spec(
        self,
        specifier: str,
        name: str,
        operator: str | None,
        version: str | None,
    ) -> RubyGemsSpec:
        if not name or not GEM_NAME_RE.match(name):
            raise InvalidSpecError(specifier, "invalid gem name")
        return RubyGemsSpec(
            name=name,
            operator=operator or "=",
            version=version or "latest",
        )

    async def get_dependencies(self, spec: PackageSpec) -> list[PackageSpec]:
        """Return runtime and development dependencies of the selected release.

        A requirement like ``>= 3.0.18, < 4.0`` is reduced to its last
        constraint (``< 4.0``).
        """
        try:
            version = await self._resolve(spec)
            url = (
                f"{self.settings.rubygems_url}/api/v2/rubygems/"
                f"{spec.name}/versions/{version}.json"
            )
            data = await self._fetch_json(url, spec.name)
        except (RegistryError, httpx.HTTPError, ValueError) as e:
            logger.error(f"Unable to get dependencies for {spec}: {e}")
            return []

        dependencies = []
        for group, entries in (data.get("dependencies") or {}).items():
            for entry in entries or []:
                dep = self._dependency_spec(entry, group)
                if dep is not None:
                    dependencies.append(dep)
        return dependencies

    def _dependency_spec(self, entry: dict, group: str) -> RubyGemsSpec | None:
        name = entry.get("name", "")
        requirements = entry.get("requirements") or ""
        tokens = requirements.split()

        version = tokens[-1] if tokens else ""
        operator = tokens[-2] if len(tokens) > 1 else ""
        if not version:
            logger.warning(f"Unable to determine version from '{requirements}' of {name} -- defaulting to latest")
            version = "latest"
        if operator not in OPERATORS:
            logger.warning(f"Unable to determine operator from '{requirements}' of {name} -- defaulting to '='")
            operator = "="

        try:
            return self._make_spec(name, name, operator, version.rstrip(","))
        except InvalidSpecError as e:
            logger.warning(f"Skipping {group} dependency: {e}")
            return None

    async def resolve_to_spec(self, specifier: str) -> str:
        """Given ``gem 'rubocop', '>= 1.0'`` return e.g. ``rubocop@=1.57.2``."""
        try:
            spec = self.get_spec(specifier)
            version = await self._resolve(spec)
        except (InvalidSpecError, RegistryError, httpx.HTTPError, ValueError) as e:
            logger.warning(f"Unable to lock {specifier}: {e}")
            return specifier
        return f"{spec.name}@={version}"

    async def _resolve(self, spec: PackageSpec) -> str:
        """Pick the highest release satisfying ``<operator> <version>``.

        Raises:
            RegistryError: If no release satisfies the constraint.
        """
        operator = getattr(spec, "operator", "=")
        wanted = getattr(spec, "version", "latest")

        if operator in ("=", "==") and wanted != "latest":
            return wanted

        releases = await self._get_releases(spec.name)
        if not releases:
            raise RegistryError(f"No releases found for {spec.name}")

        if wanted == "latest":
            stable = [number for _, number, prerelease in releases if not prerelease]
            return stable[0] if stable else releases[0][1]

        try:
            target = Version(wanted)
        except InvalidVersion as e:
            raise RegistryError(f"Unable to parse version: {operator} {wanted}") from e

        accepts = _constraint(operator, wanted, target)
        for parsed, number, prerelease in releases:
            if prerelease and not target.is_prerelease:
                continue
            if accepts(parsed):
                return number

        raise RegistryError(
            f"No release satisfies requirements: {spec.name} {operator} {wanted}"
        )

    async def _get_releases(self, name: str) -> list[tuple[Version, str, bool]]:
        """Return ``(parsed, number, prerelease)`` for every release, newest first."""
        if name not in self._versions_cache:
            url = f"{self.settings.rubygems_url}/api/v1/versions/{name}.json"
            data = await self._fetch_json(url, name)
            releases = []
            for release in data or []:
                number = release.get("number", "")
                try:
                    parsed = Version(number)
                except InvalidVersion:
                    logger.debug(f"Ignoring unparseable version {number!r} of {name}")
                    continue
                prerelease = release.get("prerelease", parsed.is_prerelease)
                releases.append((parsed, number, bool(prerelease)))
            releases.sort(key=lambda r: r[0], reverse=True)
            self._versions_cache[name] = releases
        return self._versions_cache[name]


def _constraint(operator: str, wanted: str, target: Version):
    """Return a predicate for one RubyGems version constraint."""
    if operator == "!=":
        return lambda v: v != target
    if operator == ">=":
        return lambda v: v >= target
    if operator == ">":
        return lambda v: v > target
    if operator == "<=":
        return lambda v: v <= target
    if operator == "<":
        return lambda v: v < target
    if operator in ("=", "=="):
        return lambda v: v == target
    if operator == "~>":
        upper = _pessimistic_upper_bound(wanted)
        return lambda v: target <= v < upper
    raise RegistryError(f"Unable to parse version: {operator} {wanted}")


def _pessimistic_upper_bound(version: str) -> Version:
    """``~> 3.7`` allows < 4.0; ``~> 3.7.1`` allows < 3.8; ``~> 3`` allows < 4."""
    segments = [s for s in version.split(".") if s.isdigit()]
    if not segments:
        raise RegistryError(f"Unable to parse version: ~> {version}")
    if len(segments) > 1:
        segments = segments[:-1]
    segments[-1] = str(int(segments[-1]) + 1)
    return Version(".".join(segments))
