"""Shared fixtures: an in-memory resolver and mocked registry transports."""

import json

import httpx
import pytest

from pkgweight.config import Settings
from pkgweight.models.schemas import PackageSpec
from pkgweight.resolvers.base import BaseResolver, InvalidSpecError


class StubResolver(BaseResolver):
    """Resolver backed by a dict of name -> dependency names."""

    stateful = True

    def __init__(self) -> None:
        super().__init__()
        self.pkg_deps: dict[str, list[PackageSpec]] = {}
        self.dep_call_count: dict[str, int] = {}
        self.init_calls = 0
        self.failing: set[str] = set()

    @property
    def language(self) -> str:
        return "zig"

    @property
    def registry(self) -> str:
        return "zzz"

    def init(self) -> None:
        self.init_calls += 1

    def get_spec(self, specifier: str) -> PackageSpec:
        if specifier == "invalid-spec":
            raise InvalidSpecError(specifier, "invalid spec!")
        if specifier == "value-error-spec":
            raise ValueError(f"cannot parse {specifier}")
        return PackageSpec(name=specifier)

    async def get_dependencies(self, spec: PackageSpec) -> list[PackageSpec]:
        self.dep_call_count[spec.name] = self.dep_call_count.get(spec.name, 0) + 1
        if spec.name in self.failing:
            raise httpx.ConnectError(f"registry unreachable for {spec.name}")
        if spec.name not in self.pkg_deps:
            raise AssertionError(f"unexpected call to get_dependencies for {spec}")
        return self.pkg_deps[spec.name]

    def get_manifest_patterns(self) -> list[str]:
        return ["zig.manifest"]

    def extract_dependencies_from_manifest(self, manifest: str) -> list[str]:
        return [line.strip() for line in manifest.splitlines() if line.strip()]

    def build_latest_spec(self, name: str) -> str:
        return f"{name}@latest&greatest"

    async def resolve_to_spec(self, specifier: str) -> str:
        return f"{specifier}@1.0.0"

    def set_dependencies(self, name: str, deps: list[str]) -> None:
        self.pkg_deps[name] = [self.get_spec(dep) for dep in deps]


@pytest.fixture
def stub_resolver() -> StubResolver:
    return StubResolver()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        npm_registry_url="https://npm.test",
        pypi_url="https://pypi.test/pypi",
        rubygems_url="https://gems.test",
        max_concurrency=4,
    )


def make_client(routes: dict[str, object], calls: list[str] | None = None) -> httpx.AsyncClient:
    """Build an httpx client answering ``routes`` (URL -> JSON body) and 404 otherwise.

    A route value that is an int is returned as a bare status code.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if calls is not None:
            calls.append(url)
        if url not in routes:
            return httpx.Response(404, json={"error": "not found"})
        body = routes[url]
        if isinstance(body, int):
            return httpx.Response(body)
        return httpx.Response(200, content=json.dumps(body).encode(), headers={"content-type": "application/json"})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))
