"""Data models and schemas."""

from pkgweight.models.schemas import (
    Language,
    ManifestDependencies,
    ManifestPatterns,
    NpmSpec,
    NpmSpecType,
    PackageSpec,
    PyPiSpec,
    Registry,
    RubyGemsSpec,
    SupportedManifest,
)

__all__ = [
    "Language",
    "ManifestDependencies",
    "ManifestPatterns",
    "NpmSpec",
    "NpmSpecType",
    "PackageSpec",
    "PyPiSpec",
    "Registry",
    "RubyGemsSpec",
    "SupportedManifest",
]
