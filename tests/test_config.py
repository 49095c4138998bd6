"""Tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from pkgweight.config import Settings


class TestSettings:

    def test_defaults(self):
        settings = Settings()
        assert settings.epsilon == 0.01
        assert settings.npm_registry_url == "https://registry.npmjs.org"
        assert settings.log_level == "WARNING"

    def test_from_env(self):
        settings = Settings.from_env({
            "PKGWEIGHT_EPSILON": "0.05",
            "PKGWEIGHT_NPM_REGISTRY_URL": "https://npm.example.com/",
            "PKGWEIGHT_LOG_LEVEL": "debug",
            "PKGWEIGHT_MAX_CONCURRENCY": "",
            "UNRELATED": "ignored",
        })

        assert settings.epsilon == 0.05
        assert settings.npm_registry_url == "https://npm.example.com"
        assert settings.log_level == "DEBUG"
        assert settings.max_concurrency == 30

    def test_reads_os_environ(self, monkeypatch):
        monkeypatch.setenv("PKGWEIGHT_PYPI_URL", "https://mirror.example.com/pypi")
        assert Settings.from_env().pypi_url == "https://mirror.example.com/pypi"

    @pytest.mark.parametrize(
        "name,value",
        [
            ("PKGWEIGHT_EPSILON", "0"),
            ("PKGWEIGHT_EPSILON", "lots"),
            ("PKGWEIGHT_MAX_CONCURRENCY", "0"),
            ("PKGWEIGHT_HTTP_TIMEOUT", "-1"),
        ],
    )
    def test_rejects_invalid_values(self, name, value):
        with pytest.raises(ValidationError):
            Settings.from_env({name: value})
