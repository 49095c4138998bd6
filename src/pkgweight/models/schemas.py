"""Pydantic models for package specs and manifest data."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Language(str, Enum):
    """Languages with a built-in registry resolver."""

    JAVASCRIPT = "javascript"
    PYTHON = "python"
    RUBY = "ruby"


class Registry(str, Enum):
    """Package registries with a built-in resolver."""

    NPM = "npm"
    PYPI = "pypi"
    RUBYGEMS = "rubygems"


class PackageSpec(BaseModel):
    """A specifier resolved to a canonically identified package unit.

    ``name`` is the bare package identity. ``key`` identifies the
    (name, version constraint) pair and is what ``str()`` returns; it is
    also a valid specifier for the resolver that produced it.
    """

    model_config = ConfigDict(frozen=True)

    name: str

    @property
    def key(self) -> str:
        return self.name

    def __str__(self) -> str:
        return self.key


class NpmSpecType(str, Enum):
    """Kinds of npm specifiers, as classified by npm-package-arg."""

    TAG = "tag"
    VERSION = "version"
    RANGE = "range"
    ALIAS = "alias"
    GIT = "git"
    REMOTE = "remote"
    FILE = "file"
    DIRECTORY = "directory"


class NpmSpec(PackageSpec):
    """An npm package specifier."""

    spec_type: NpmSpecType
    fetch_spec: str
    # For aliases (``foo@npm:bar@^1``) the package actually fetched
    target: str | None = None

    @property
    def registry(self) -> bool:
        """Whether the package lives on the npm registry."""
        return self.spec_type in (
            NpmSpecType.TAG,
            NpmSpecType.VERSION,
            NpmSpecType.RANGE,
            NpmSpecType.ALIAS,
        )

    @property
    def key(self) -> str:
        return f"{self.name}@{self.fetch_spec}"


class PyPiSpec(PackageSpec):
    """A PEP 508 requirement, reduced to name and version specifier."""

    specifier: str = ""

    @property
    def key(self) -> str:
        return f"{self.name}{self.specifier}"


class RubyGemsSpec(PackageSpec):
    """A gem with (at most) one version constraint."""

    operator: str = "="
    version: str = "latest"

    @property
    def is_latest(self) -> bool:
        return self.version == "latest"

    @property
    def key(self) -> str:
        if self.is_latest:
            return f"{self.name}@"
        return f"{self.name}@{self.operator}{self.version}"


class SupportedManifest(BaseModel):
    """Raw manifest text for a language/registry pair."""

    language: str
    registry: str
    manifest: str


class ManifestDependencies(BaseModel):
    """Dependency specifiers extracted from one or more manifests."""

    language: str
    registry: str
    deps: list[str] = Field(default_factory=list)


class ManifestPatterns(BaseModel):
    """Manifest file patterns a language/registry pair understands."""

    language: str
    registry: str
    patterns: list[str] = Field(default_factory=list)
