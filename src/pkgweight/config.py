"""Runtime settings, read from ``PKGWEIGHT_*`` environment variables."""

import os

from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "PKGWEIGHT_"


class Settings(BaseModel):
    """Settings shared by the weight engine and the registry resolvers."""

    # Smallest weight worth subdividing further
    epsilon: float = Field(default=0.01, gt=0)
    # Concurrent outbound requests per resolver
    max_concurrency: int = Field(default=30, ge=1)
    http_timeout: float = Field(default=30.0, gt=0)
    npm_registry_url: str = "https://registry.npmjs.org"
    pypi_url: str = "https://pypi.org/pypi"
    rubygems_url: str = "https://rubygems.org"
    log_level: str = "WARNING"

    @field_validator("npm_registry_url", "pypi_url", "rubygems_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "Settings":
        """Build settings from the environment.

        Args:
            environ: Mapping to read from. Defaults to ``os.environ``.

        Returns:
            Settings with every ``PKGWEIGHT_<FIELD>`` variable applied.

        Raises:
            pydantic.ValidationError: If a variable holds an invalid value.
        """
        environ = os.environ if environ is None else environ
        values = {}
        for field_name in cls.model_fields:
            raw = environ.get(f"{ENV_PREFIX}{field_name.upper()}")
            if raw is not None and raw != "":
                values[field_name] = raw
        return cls(**values)
