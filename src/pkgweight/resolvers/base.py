"""Abstract base class for registry resolvers."""

import asyncio
from abc import ABC, abstractmethod
from typing import ClassVar

import httpx

from pkgweight.config import Settings
from pkgweight.models.schemas import PackageSpec


class BaseResolver(ABC):
    """Base class for registry resolvers.

    Each resolver understands the specifier syntax of one
    (language, registry) pair and knows how to look up the immediate
    dependencies of a package on that registry.

    Resolvers that keep caches across calls set ``stateful = True`` and
    override ``init``; the weight engine calls ``init`` once at the start
    of every run for those resolvers.
    """

    stateful: ClassVar[bool] = False

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            client: Optional httpx client shared across requests.
            settings: Registry URLs, timeout and concurrency cap.
        """
        self._client = client
        self.settings = settings or Settings()
        self._semaphore: asyncio.Semaphore | None = None
        self._semaphore_loop: asyncio.AbstractEventLoop | None = None

    @property
    @abstractmethod
    def language(self) -> str:
        """Return the language this resolver handles."""
        ...

    @property
    @abstractmethod
    def registry(self) -> str:
        """Return the registry this resolver talks to."""
        ...

    def init(self) -> None:
        """Reset per-session caches. Only called when ``stateful`` is set."""

    def normalize_name(self, name: str) -> str:
        """Return ``name`` in the form this resolver uses for ``PackageSpec.name``."""
        return name

    @abstractmethod
    def get_spec(self, specifier: str) -> PackageSpec:
        """Parse a raw specifier into a spec.

        Args:
            specifier: Package name with an optional version constraint,
                in this registry's syntax. ``str()`` of a spec returned by
                this resolver is always accepted.

        Returns:
            The resolved spec.

        Raises:
            InvalidSpecError: If the specifier cannot be parsed. Callers
                treat any ``ValueError`` the same way.
        """
        ...

    @abstractmethod
    async def get_dependencies(self, spec: PackageSpec) -> list[PackageSpec]:
        """Return the immediate dependencies of a spec.

        Packages that cannot be found, or that do not live on the registry,
        are treated as leaves and return an empty list.
        """
        ...

    @abstractmethod
    def get_manifest_patterns(self) -> list[str]:
        """Return file patterns matching this registry's manifest files."""
        ...

    @abstractmethod
    def extract_dependencies_from_manifest(self, manifest: str) -> list[str]:
        """Return the raw dependency specifiers declared in a manifest.

        Every entry is consumable by ``get_spec``.
        """
        ...

    @abstractmethod
    def build_latest_spec(self, name: str) -> str:
        """Return a specifier selecting the latest release of ``name``."""
        ...

    @abstractmethod
    async def resolve_to_spec(self, specifier: str) -> str:
        """Lock a specifier to a concrete version.

        Falls back to returning the input when it cannot be resolved.
        """
        ...

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create an HTTP client."""
        if self._client is not None:
            return self._client
        return httpx.AsyncClient(timeout=self.settings.http_timeout)

    def _get_semaphore(self) -> asyncio.Semaphore:
        # A semaphore is bound to one event loop; rebuild it for each new loop
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._semaphore_loop is not loop:
            self._semaphore = asyncio.Semaphore(self.settings.max_concurrency)
            self._semaphore_loop = loop
        return self._semaphore

    async def _fetch_json(
        self, url: str, name: str, headers: dict | None = None
    ) -> dict | list:
        """Fetch JSON from a registry URL.

        Args:
            url: URL to fetch.
            name: Package the request is about, for error reporting.
            headers: Extra request headers.

        Raises:
            PackageNotFoundError: If the registry answers 404.
            httpx.HTTPError: On other transport or status errors.
        """
        async with self._get_semaphore():
            client = await self._get_client()
            try:
                response = await client.get(url, headers=headers or {})
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as e:
                if e.response.status_code == 404:
                    raise PackageNotFoundError(self.registry, name) from e
                raise
            finally:
                if self._client is None:
                    await client.aclose()


class InvalidSpecError(ValueError):
    """Raised when a specifier cannot be parsed."""

    def __init__(self, specifier: str, reason: str = "unparseable specifier") -> None:
        self.specifier = specifier
        self.reason = reason
        super().__init__(f"Invalid spec '{specifier}': {reason}")


class RegistryError(Exception):
    """Raised when a registry lookup fails for a reason other than 404."""


class PackageNotFoundError(RegistryError):
    """Raised when a package cannot be found."""

    def __init__(self, registry: str, name: str) -> None:
        self.registry = registry
        self.name = name
        super().__init__(f"Package '{name}' not found in {registry}")


class UnsupportedRegistryError(LookupError):
    """Raised when no resolver is configured for a language/registry pair."""

    def __init__(self, language: str, registry: str) -> None:
        self.language = language
        self.registry = registry
        super().__init__(f"Unsupported language/registry: {language} / {registry}")
