"""CLI entry point for pkgweight."""

import asyncio
import json
import logging
from pathlib import Path

# Load .env file if it exists
from dotenv import load_dotenv
load_dotenv()

import httpx
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from pkgweight.config import Settings
from pkgweight.engine import WeightPropagator
from pkgweight.registry import RegistryResolver, default_registries
from pkgweight.resolvers.base import UnsupportedRegistryError

app = typer.Typer(help="Split a unit of weight across a package dependency tree.")

console = Console()


def _load_settings() -> Settings:
    """Read settings from the environment and set up logging."""
    try:
        settings = Settings.from_env()
    except ValidationError as e:
        console.print(f"[red]Invalid PKGWEIGHT_* setting: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    logging.basicConfig(
        level=settings.log_level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    return settings


@app.command()
def weigh(
    packages: list[str] | None = typer.Argument(None, help="Top-level package specifiers"),
    language: str = typer.Option("javascript", "--language", "-l", help="Package language"),
    registry: str = typer.Option("npm", "--registry", "-r", help="Package registry"),
    manifest: list[Path] | None = typer.Option(
        None, "--manifest", "-m", help="Manifest file to read top-level packages from"
    ),
    epsilon: float | None = typer.Option(None, "--epsilon", "-e", help="Smallest share worth splitting"),
    no_comp: list[str] | None = typer.Option(
        None, "--no-comp", "-x", help="Package whose weight passes through to its dependencies"
    ),
    output: Path | None = typer.Option(None, "--output", "-o", help="Output JSON file"),
    top: int = typer.Option(20, "--top", "-n", help="Number of packages to show"),
) -> None:
    """Compute package weights for a set of top-level packages."""
    asyncio.run(
        _weigh(
            packages or [],
            language,
            registry,
            manifest or [],
            epsilon,
            set(no_comp or []),
            output,
            top,
        )
    )


async def _weigh(
    packages: list[str],
    language: str,
    registry: str,
    manifests: list[Path],
    epsilon: float | None,
    no_comp: set[str],
    output: Path | None,
    top: int,
) -> None:
    """Async implementation of weigh."""
    settings = _load_settings()

    async with httpx.AsyncClient(timeout=settings.http_timeout) as client:
        try:
            registries = RegistryResolver(
                registries=default_registries(settings, client),
                epsilon=epsilon,
                settings=settings,
            )
        except ValueError as e:
            console.print(f"[red]{escape(str(e))}[/red]")
            raise typer.Exit(1)

        resolver = registries.get_supported_registry(language, registry)
        if resolver is None:
            console.print(f"[red]{UnsupportedRegistryError(language, registry)}[/red]")
            raise typer.Exit(1)

        specs = list(packages)
        for path in manifests:
            try:
                text = path.read_text()
            except OSError as e:
                console.print(f"[red]Unable to read manifest {path}: {escape(str(e))}[/red]")
                raise typer.Exit(1)
            specs.extend(resolver.extract_dependencies_from_manifest(text))

        if not specs:
            console.print("[red]No packages given; pass specifiers or --manifest[/red]")
            raise typer.Exit(1)

        propagator = WeightPropagator(resolver, epsilon=registries.epsilon, no_comp=no_comp)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            progress.add_task(f"Weighing {len(specs)} top-level packages...", total=None)
            weights = await propagator.run(specs)

    stats = propagator.stats
    ranked = sorted(weights.items(), key=lambda kv: (-kv[1], kv[0]))

    table = Table(title=f"Package weights ({language} / {registry})")
    table.add_column("Rank", style="dim", width=6)
    table.add_column("Package", style="cyan")
    table.add_column("Weight", justify="right", style="green")
    table.add_column("Share", justify="right")

    for i, (name, weight) in enumerate(ranked[:top], 1):
        table.add_row(str(i), escape(name), f"{weight:.6f}", f"{weight:.2%}")

    console.print(table)
    if len(ranked) > top:
        console.print(f"[dim]... and {len(ranked) - top} more[/dim]")

    console.print(
        f"[dim]{len(ranked)} packages, total {sum(weights.values()):.6f}, "
        f"discarded {stats.discarded_weight:.6f}, "
        f"{stats.dependency_fetches} registry lookups[/dim]"
    )
    if stats.skipped:
        console.print(f"[yellow]Skipped unparseable specs: {escape(', '.join(stats.skipped))}[/yellow]")

    if output:
        data = {
            "language": language,
            "registry": registry,
            "epsilon": registries.epsilon,
            "weights": dict(ranked),
            "stats": stats.to_dict(),
        }
        output.write_text(json.dumps(data, indent=2))
        console.print(f"\n[green]Saved to {output}[/green]")


@app.command()
def patterns() -> None:
    """List the manifest files each registry understands."""
    settings = _load_settings()
    registries = RegistryResolver(settings=settings)

    table = Table(title="Supported manifests")
    table.add_column("Language", style="cyan")
    table.add_column("Registry", style="cyan")
    table.add_column("Patterns")

    for entry in registries.get_supported_manifest_patterns():
        table.add_row(entry.language, entry.registry, ", ".join(entry.patterns))

    console.print(table)


@app.command()
def lock(
    packages: list[str] = typer.Argument(..., help="Package specifiers to lock"),
    language: str = typer.Option("javascript", "--language", "-l", help="Package language"),
    registry: str = typer.Option("npm", "--registry", "-r", help="Package registry"),
) -> None:
    """Resolve specifiers to concrete versions."""
    asyncio.run(_lock(packages, language, registry))


async def _lock(packages: list[str], language: str, registry: str) -> None:
    """Async implementation of lock."""
    settings = _load_settings()

    async with httpx.AsyncClient(timeout=settings.http_timeout) as client:
        registries = RegistryResolver(
            registries=default_registries(settings, client), settings=settings
        )
        try:
            locked = await registries.resolve_to_spec(packages, language, registry)
        except UnsupportedRegistryError as e:
            console.print(f"[red]{escape(str(e))}[/red]")
            raise typer.Exit(1)

    for original, resolved in zip(packages, locked):
        marker = "" if original != resolved else " [dim](unchanged)[/dim]"
        console.print(f"{escape(original)} -> [cyan]{escape(resolved)}[/cyan]{marker}")


@app.command()
def version() -> None:
    """Show version information."""
    from pkgweight import __version__

    console.print(f"pkgweight v{__version__}")


if __name__ == "__main__":
    app()
