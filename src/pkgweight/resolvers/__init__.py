"""Registry resolvers."""

from pkgweight.resolvers.base import (
    BaseResolver,
    InvalidSpecError,
    PackageNotFoundError,
    RegistryError,
    UnsupportedRegistryError,
)
from pkgweight.resolvers.npm import NpmResolver
from pkgweight.resolvers.pypi import PyPiResolver
from pkgweight.resolvers.rubygems import RubyGemsResolver

__all__ = [
    "BaseResolver",
    "InvalidSpecError",
    "NpmResolver",
    "PackageNotFoundError",
    "PyPiResolver",
    "RegistryError",
    "RubyGemsResolver",
    "UnsupportedRegistryError",
]
