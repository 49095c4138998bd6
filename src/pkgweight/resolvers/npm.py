"""NPM registry resolver."""

import json
import logging
import re

import httpx
import semantic_version

from pkgweight.models.schemas import NpmSpec, NpmSpecType, PackageSpec
from pkgweight.resolvers.base import BaseResolver, InvalidSpecError, RegistryError

logger = logging.getLogger(__name__)

# Characters encodeURIComponent leaves alone
URL_SAFE_RE = re.compile(r"^[A-Za-z0-9._~!*'()-]+$")
GIT_PREFIXES = ("git+", "git://", "github:", "gitlab:", "bitbucket:", "gist:")
GIT_SHORTHAND_RE = re.compile(r"^[^@/\s:#]+/[^@/\s:#]+(?:#.*)?$")
TARBALL_SUFFIXES = (".tgz", ".tar.gz", ".tar")
# "~1.2.0" is a range, "~/pkg" is a path
LOCAL_PREFIXES = ("file:", "./", "../", "/", "~/")
RESERVED_NAMES = {"node_modules", "favicon.ico"}
MAX_NAME_LENGTH = 214

# Abbreviated packument: only what installs need, dependencies included
ABBREVIATED_METADATA = {"Accept": "application/vnd.npm.install-v1+json"}


class NpmResolver(BaseResolver):
    """Resolver for the NPM package registry.

    Specifiers follow npm-package-arg: ``name``, ``name@tag``,
    ``name@1.2.3``, ``name@^1.2.3``, ``@scope/name@range``,
    ``alias@npm:real@range`` plus git, remote tarball and file specs.
    Only registry-hosted specs have resolvable dependencies.

    Data sources:
    - Packument: {npm_registry_url}/{package}
    """

    @property
    def language(self) -> str:
        return "javascript"

    @property
    def registry(self) -> str:
        return "npm"

    def get_manifest_patterns(self) -> list[str]:
        return ["package.json"]

    def build_latest_spec(self, name: str) -> str:
        return f"{name}@latest"

    def extract_dependencies_from_manifest(self, manifest: str) -> list[str]:
        """Return ``name@range`` for every dependency and devDependency."""
        try:
            parsed = json.loads(manifest)
        except ValueError as e:
            logger.warning(f"Unable to parse package.json manifest: {e}")
            return []
        if not isinstance(parsed, dict):
            logger.warning("Unable to parse package.json manifest: not an object")
            return []

        deps = []
        for group in ("dependencies", "devDependencies"):
            for name, spec in (parsed.get(group) or {}).items():
                deps.append(f"{name}@{spec}")
        return deps

    def get_spec(self, specifier: str) -> NpmSpec:
        """Parse an npm specifier such as ``react@^16.0.0``.

        A bare name means the ``latest`` dist-tag.
        """
        raw = specifier.strip()
        name, _, rest = self._split_name(raw)
        self._validate_name(raw, name)
        return self._classify(raw, name, rest)

    def _split_name(self, raw: str) -> tuple[str, str, str]:
        # Scoped names carry their own leading '@'
        if raw.startswith("@"):
            at = raw.find("@", 1)
            if at == -1:
                return raw, "", ""
            return raw[:at], "@", raw[at + 1:]
        return raw.partition("@")

    def _validate_name(self, raw: str, name: str) -> None:
        """Apply npm's package name rules (lenient about legacy uppercase)."""
        if not name:
            raise InvalidSpecError(raw, "missing package name")
        if len(name) > MAX_NAME_LENGTH:
            raise InvalidSpecError(raw, "name too long")
        if name.lower() in RESERVED_NAMES:
            raise InvalidSpecError(raw, f"'{name}' is a reserved name")

        if name.startswith("@"):
            scope, slash, pkg = name[1:].partition("/")
            parts = [scope, pkg]
            if not slash or not scope or not pkg:
                raise InvalidSpecError(raw, "malformed scoped name")
        else:
            parts = [name]

        for part in parts:
            if part.startswith((".", "_")):
                raise InvalidSpecError(raw, "name cannot start with '.' or '_'")
            if not URL_SAFE_RE.match(part):
                raise InvalidSpecError(raw, "name must be URL-safe")

    def _classify(self, raw: str, name: str, rest: str) -> NpmSpec:
        rest = rest.strip()

        if rest == "":
            return NpmSpec(name=name, spec_type=NpmSpecType.TAG, fetch_spec="latest")

        if rest.startswith("npm:"):
            target = self.get_spec(rest[4:])
            if target.spec_type == NpmSpecType.ALIAS or not target.registry:
                raise InvalidSpecError(raw, "aliases must point to a registry package")
            return NpmSpec(
                name=name,
                spec_type=NpmSpecType.ALIAS,
                fetch_spec=rest,
                target=target.key,
            )

        # Paths first: "../x" would otherwise look like a user/repo shorthand
        if rest.startswith(LOCAL_PREFIXES):
            spec_type = (
                NpmSpecType.FILE if rest.endswith(TARBALL_SUFFIXES) else NpmSpecType.DIRECTORY
            )
            return NpmSpec(name=name, spec_type=spec_type, fetch_spec=rest)

        if rest.startswith(GIT_PREFIXES) or GIT_SHORTHAND_RE.match(rest):
            return NpmSpec(name=name, spec_type=NpmSpecType.GIT, fetch_spec=rest)

        if rest.startswith(("http://", "https://")):
            return NpmSpec(name=name, spec_type=NpmSpecType.REMOTE, fetch_spec=rest)

        version = _parse_version(rest)
        if version is not None:
            return NpmSpec(name=name, spec_type=NpmSpecType.VERSION, fetch_spec=str(version))

        try:
            semantic_version.NpmSpec(rest)
        except ValueError:
            pass
        else:
            return NpmSpec(name=name, spec_type=NpmSpecType.RANGE, fetch_spec=rest)

        if URL_SAFE_RE.match(rest):
            return NpmSpec(name=name, spec_type=NpmSpecType.TAG, fetch_spec=rest)

        raise InvalidSpecError(raw, f"unrecognised version spec '{rest}'")

    async def get_dependencies(self, spec: PackageSpec) -> list[PackageSpec]:
        """Return the dependencies declared by the version ``spec`` selects.

        Git, remote and file specs don't live on the registry, so they are
        treated as leaves.
        """
        if not isinstance(spec, NpmSpec) or not spec.registry:
            return []

        try:
            manifest = await self._fetch_manifest(spec)
        except (RegistryError, httpx.HTTPError, ValueError) as e:
            logger.warning(f"Unable to get manifest for {spec}: {e}")
            return []

        dependencies = []
        for name, range_ in (manifest.get("dependencies") or {}).items():
            entry = f"{name}@{range_}" if range_ else name
            try:
                dependencies.append(self.get_spec(entry))
            except InvalidSpecError as e:
                logger.warning(f"Unable to resolve dependency {name} of {spec}: {e}")
        return dependencies

    async def resolve_to_spec(self, specifier: str) -> str:
        """Given ``standard@latest`` return e.g. ``standard@13.1.0``."""
        try:
            manifest = await self._fetch_manifest(self.get_spec(specifier))
        except (RegistryError, httpx.HTTPError, ValueError) as e:
            logger.warning(f"Unable to lock {specifier}: {e}")
            return specifier

        name = manifest.get("name")
        version = manifest.get("version")
        if name and version:
            return f"{name}@{version}"
        return specifier

    async def _fetch_manifest(self, spec: NpmSpec) -> dict:
        """Fetch the manifest of the version ``spec`` selects on the registry."""
        if spec.spec_type == NpmSpecType.ALIAS:
            spec = self.get_spec(spec.target or "")
        if not spec.registry:
            raise RegistryError(f"{spec} is not hosted on the npm registry")

        encoded_name = spec.name.replace("/", "%2F")
        url = f"{self.settings.npm_registry_url}/{encoded_name}"
        packument = await self._fetch_json(url, spec.name, headers=ABBREVIATED_METADATA)

        versions = packument.get("versions") or {}
        dist_tags = packument.get("dist-tags") or {}
        version = self._pick_version(spec, versions, dist_tags)
        if version is None:
            raise RegistryError(f"No version of {spec.name} satisfies '{spec.fetch_spec}'")

        manifest = dict(versions[version])
        manifest.setdefault("name", spec.name)
        manifest.setdefault("version", version)
        return manifest

    def _pick_version(self, spec: NpmSpec, versions: dict, dist_tags: dict) -> str | None:
        """Select a version the way npm does for a single spec."""
        if spec.spec_type == NpmSpecType.TAG:
            tagged = dist_tags.get(spec.fetch_spec)
            return tagged if tagged in versions else None

        if spec.spec_type == NpmSpecType.VERSION:
            for candidate in versions:
                parsed = _parse_version(candidate)
                if parsed is not None and str(parsed) == spec.fetch_spec:
                    return candidate
            return None

        wanted = semantic_version.NpmSpec(spec.fetch_spec)

        # npm prefers the latest tag whenever it satisfies the range
        latest = dist_tags.get("latest")
        if latest in versions:
            parsed_latest = _parse_version(latest)
            if parsed_latest is not None and parsed_latest in wanted:
                return latest

        by_version = {}
        for candidate in versions:
            parsed = _parse_version(candidate)
            if parsed is not None:
                by_version[parsed] = candidate

        best = wanted.select(by_version.keys())
        return by_version[best] if best is not None else None


def _parse_version(value: str) -> semantic_version.Version | None:
    """Parse a loose semver string (``v1.2.3``, ``=1.2.3``)."""
    cleaned = value.strip().lstrip("=v").strip()
    try:
        return semantic_version.Version(cleaned)
    except ValueError:
        return None
