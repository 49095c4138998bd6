"""Tests for the npm resolver."""

import asyncio
import json

import pytest

from conftest import make_client
from pkgweight.models.schemas import NpmSpec, NpmSpecType, PackageSpec
from pkgweight.resolvers.base import InvalidSpecError
from pkgweight.resolvers.npm import NpmResolver

PACKUMENT = {
    "name": "js-deep-equals",
    "dist-tags": {"latest": "2.1.1", "next": "3.0.0-beta.1"},
    "versions": {
        "1.0.0": {"name": "js-deep-equals", "version": "1.0.0", "dependencies": {}},
        "2.0.0": {"name": "js-deep-equals", "version": "2.0.0", "dependencies": {"murmurhash": "0.0.1"}},
        "2.1.1": {
            "name": "js-deep-equals",
            "version": "2.1.1",
            "dependencies": {"murmurhash": "0.0.2"},
            "devDependencies": {"ava": "^0.25.0"},
        },
        "3.0.0-beta.1": {
            "name": "js-deep-equals",
            "version": "3.0.0-beta.1",
            "dependencies": {"murmurhash": "^1.0.0", "lodash": "~4.17.0"},
        },
    },
}


@pytest.fixture
def npm(settings):
    return NpmResolver(settings=settings)


def resolver_with(settings, routes, calls=None):
    return NpmResolver(client=make_client(routes, calls), settings=settings)


class TestManifest:

    def test_manifest_patterns(self, npm):
        assert npm.get_manifest_patterns() == ["package.json"]

    def test_extract_dependencies(self, npm):
        manifest = json.dumps({
            "dependencies": {"js-deep-equals": "1.0.0"},
            "devDependencies": {"standard": "^12.1.1"},
        })

        assert npm.extract_dependencies_from_manifest(manifest) == [
            "js-deep-equals@1.0.0",
            "standard@^12.1.1",
        ]

    def test_extract_bad_manifest(self, npm):
        assert npm.extract_dependencies_from_manifest("undefined") == []
        assert npm.extract_dependencies_from_manifest("[1, 2]") == []

    def test_build_latest_spec(self, npm):
        assert npm.build_latest_spec("sodium-native") == "sodium-native@latest"


class TestGetSpec:

    def test_bare_name_means_latest(self, npm):
        spec = npm.get_spec("sodium-native")
        assert spec.spec_type == NpmSpecType.TAG
        assert str(spec) == "sodium-native@latest"

    def test_exact_version(self, npm):
        spec = npm.get_spec("js-deep-equals@v1.0.0")
        assert spec.spec_type == NpmSpecType.VERSION
        assert str(spec) == "js-deep-equals@1.0.0"

    def test_range(self, npm):
        spec = npm.get_spec("react@^16.0.0")
        assert spec.spec_type == NpmSpecType.RANGE
        assert spec.name == "react"
        assert str(spec) == "react@^16.0.0"

    def test_scoped_package(self, npm):
        spec = npm.get_spec("@types/node@>=18")
        assert spec.name == "@types/node"
        assert spec.spec_type == NpmSpecType.RANGE

        bare = npm.get_spec("@babel/core")
        assert str(bare) == "@babel/core@latest"

    def test_tag(self, npm):
        spec = npm.get_spec("react@next")
        assert spec.spec_type == NpmSpecType.TAG
        assert spec.fetch_spec == "next"

    @pytest.mark.parametrize(
        "specifier,spec_type",
        [
            ("blah@git+https://github.com/stripedpajamas/blah", NpmSpecType.GIT),
            ("blah@github:stripedpajamas/blah", NpmSpecType.GIT),
            ("blah@stripedpajamas/blah#main", NpmSpecType.GIT),
            ("blah@https://example.com/blah.tgz", NpmSpecType.REMOTE),
            ("blah@file:../blah.tgz", NpmSpecType.FILE),
            ("blah@../blah", NpmSpecType.DIRECTORY),
        ],
    )
    def test_non_registry_specs(self, npm, specifier, spec_type):
        spec = npm.get_spec(specifier)
        assert spec.spec_type == spec_type
        assert not spec.registry

    def test_alias(self, npm):
        spec = npm.get_spec("my-react@npm:react@^16.0.0")
        assert spec.spec_type == NpmSpecType.ALIAS
        assert spec.name == "my-react"
        assert spec.target == "react@^16.0.0"
        assert spec.registry

    @pytest.mark.parametrize(
        "specifier",
        ["react^15", "", "@scope", ".hidden", "_private", "node_modules", "has space@1.0.0", "x" * 215],
    )
    def test_invalid_specs(self, npm, specifier):
        with pytest.raises(InvalidSpecError):
            npm.get_spec(specifier)

    def test_round_trips_through_key(self, npm):
        for specifier in ["react", "react@^16.0.0", "@types/node@18.1.0", "a@npm:b@~1.2.0", "x@github:u/r"]:
            spec = npm.get_spec(specifier)
            assert npm.get_spec(str(spec)) == spec


class TestGetDependencies:

    def test_returns_dependencies_of_latest(self, settings):
        calls = []
        npm = resolver_with(settings, {"https://npm.test/js-deep-equals": PACKUMENT}, calls)

        deps = asyncio.run(npm.get_dependencies(npm.get_spec("js-deep-equals")))

        assert deps == [npm.get_spec("murmurhash@0.0.2")]
        assert calls == ["https://npm.test/js-deep-equals"]

    def test_exact_version(self, settings):
        npm = resolver_with(settings, {"https://npm.test/js-deep-equals": PACKUMENT})

        deps = asyncio.run(npm.get_dependencies(npm.get_spec("js-deep-equals@2.0.0")))

        assert [str(d) for d in deps] == ["murmurhash@0.0.1"]

    def test_range_prefers_latest_tag(self, settings):
        npm = resolver_with(settings, {"https://npm.test/js-deep-equals": PACKUMENT})

        deps = asyncio.run(npm.get_dependencies(npm.get_spec("js-deep-equals@^2.0.0")))

        assert [str(d) for d in deps] == ["murmurhash@0.0.2"]

    def test_range_outside_latest(self, settings):
        npm = resolver_with(settings, {"https://npm.test/js-deep-equals": PACKUMENT})

        deps = asyncio.run(npm.get_dependencies(npm.get_spec("js-deep-equals@<2.0.0")))

        assert deps == []

    def test_dist_tag(self, settings):
        npm = resolver_with(settings, {"https://npm.test/js-deep-equals": PACKUMENT})

        deps = asyncio.run(npm.get_dependencies(npm.get_spec("js-deep-equals@next")))

        assert sorted(str(d) for d in deps) == ["lodash@~4.17.0", "murmurhash@^1.0.0"]

    def test_alias_fetches_target(self, settings):
        npm = resolver_with(settings, {"https://npm.test/js-deep-equals": PACKUMENT})

        deps = asyncio.run(npm.get_dependencies(npm.get_spec("jde@npm:js-deep-equals@2.0.0")))

        assert [str(d) for d in deps] == ["murmurhash@0.0.1"]

    def test_package_not_on_registry(self, settings):
        calls = []
        npm = resolver_with(settings, {}, calls)

        spec = npm.get_spec("blah@git+https://github.com/stripedpajamas/blah")
        deps = asyncio.run(npm.get_dependencies(spec))

        assert deps == []
        assert calls == []

    def test_missing_package(self, settings):
        npm = resolver_with(settings, {})
        assert asyncio.run(npm.get_dependencies(npm.get_spec("does-not-exist"))) == []

    def test_registry_error(self, settings):
        npm = resolver_with(settings, {"https://npm.test/broken": 500})
        assert asyncio.run(npm.get_dependencies(npm.get_spec("broken"))) == []

    def test_skips_invalid_dependency_names(self, settings):
        packument = {
            "dist-tags": {"latest": "1.0.0"},
            "versions": {"1.0.0": {"dependencies": {"good": "^1.0.0", "bad name": "1.0.0"}}},
        }
        npm = resolver_with(settings, {"https://npm.test/mixed": packument})

        deps = asyncio.run(npm.get_dependencies(npm.get_spec("mixed")))

        assert [str(d) for d in deps] == ["good@^1.0.0"]

    def test_non_npm_spec_is_leaf(self, npm):
        assert asyncio.run(npm.get_dependencies(PackageSpec(name="react"))) == []


class TestResolveToSpec:

    def test_locks_latest(self, settings):
        npm = resolver_with(settings, {"https://npm.test/js-deep-equals": PACKUMENT})
        assert asyncio.run(npm.resolve_to_spec("js-deep-equals@latest")) == "js-deep-equals@2.1.1"

    def test_falls_back_to_input(self, settings):
        npm = resolver_with(settings, {})
        assert asyncio.run(npm.resolve_to_spec("does-not-exist@^1.0.0")) == "does-not-exist@^1.0.0"

    def test_spec_model(self):
        spec = NpmSpec(name="react", spec_type=NpmSpecType.RANGE, fetch_spec="^16")
        assert spec.key == "react@^16"
        assert spec.registry
