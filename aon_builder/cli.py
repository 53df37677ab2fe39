"""Thin CLI wrapper for aon_builder.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import logging
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from aon_builder import __version__
from aon_builder.config import get_settings, print_settings_json
from aon_builder.errors import PipelineError

app = typer.Typer(
    name="aon-build",
    help="Always-online node builder - build the node once, wrap it per bundle set",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"aon-builder version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Send log records to stderr through Rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _fail(error: PipelineError, json_output: bool) -> None:
    """Report a pipeline error and exit non-zero."""
    if json_output:
        console.print_json(data=error.to_dict())
    else:
        console.print(f"[red]Error ({error.code}): {escape(str(error))}[/red]")
    raise typer.Exit(code=1) from error


def _print_json(data: Any) -> None:
    console.print_json(data=data)


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Always-online node builder - build the node once, wrap it per bundle set."""
    configure_logging(get_settings().log_level)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), soft_wrap=True)
    else:
        tmp_dir_display = (
            str(settings.tmp_dir) if settings.tmp_dir else "(system default)"
        )
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Paths:[/bold]")
        console.print(f"  Store directory:     {settings.cache_dir}")
        console.print(f"  Artifacts directory: {settings.artifacts_dir}")
        console.print(f"  Wrappers directory:  {settings.wrappers_dir}")
        console.print(f"  Temp directory:      {tmp_dir_display}")
        console.print()
        console.print("[bold]Toolchain:[/bold]")
        console.print(f"  Store URL:           {settings.store_url}")
        console.print(f"  Compiler version:    {settings.compiler_version}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Offline mode:        {settings.offline}")
        console.print(f"  Log level:           {settings.log_level}")
        console.print(f"  Max parallel wraps:  {settings.max_concurrent_wraps}")
        console.print()
        console.print("[bold]Timeouts (seconds):[/bold]")
        console.print(f"  Fetch timeout:       {settings.fetch_timeout}")
        console.print(f"  Build timeout:       {settings.build_timeout}")


def _platform_or_host(platform: str | None) -> str:
    from aon_builder.toolchain.platforms import host_platform

    if platform:
        return platform
    return host_platform().system


toolchain_app = typer.Typer(help="Resolve build toolchains")
app.add_typer(toolchain_app, name="toolchain")


@toolchain_app.command("resolve")
def toolchain_resolve(
    platform: Annotated[
        str | None,
        typer.Option("--platform", "-p", help="System name or target triple"),
    ] = None,
    compiler_version: Annotated[
        str | None,
        typer.Option("--compiler-version", "-c", help="Rust compiler version"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Resolve (and fetch) the toolchain for a platform."""
    from aon_builder.pipeline import NodePipeline

    settings = get_settings()
    pipeline = NodePipeline(settings=settings, compiler_version=compiler_version)
    try:
        spec = pipeline.resolve_toolchain(_platform_or_host(platform))
    except PipelineError as e:
        _fail(e, json_output)

    if json_output:
        data = spec.fingerprint()
        data["library_search_paths"] = [str(p) for p in spec.library_search_paths]
        _print_json(data)
    else:
        console.print(
            f"[green]Resolved {spec.compiler} {spec.compiler_version} "
            f"for {spec.platform}[/green]"
        )
        for comp in spec.components:
            console.print(f"  {comp.kind.value:<9} {comp.name:<16} {comp.digest[:16]}")


artifact_app = typer.Typer(help="Build and inspect node artifacts")
app.add_typer(artifact_app, name="artifact")


@artifact_app.command("build")
def artifact_build(
    source: Annotated[Path, typer.Argument(help="Crate source tree")],
    platform: Annotated[
        str | None,
        typer.Option("--platform", "-p", help="System name or target triple"),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Force rebuild even if cached"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Build the node artifact for a platform."""
    from aon_builder.pipeline import NodePipeline

    pipeline = NodePipeline(source_tree=source, settings=get_settings())
    try:
        artifact = pipeline.build_artifact(_platform_or_host(platform), force_rebuild=force)
    except PipelineError as e:
        _fail(e, json_output)

    if json_output:
        _print_json(artifact.to_dict())
    else:
        console.print(f"[green]Built {artifact.tag} for {artifact.platform}[/green]")
        console.print(f"  Executable: {artifact.executable}")
        console.print(f"  SHA-256:    {artifact.content_hash}")


@artifact_app.command("show")
def artifact_show(
    artifact_dir: Annotated[Path, typer.Argument(help="Artifact directory")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show a built artifact."""
    from aon_builder.pipeline import NodePipeline

    try:
        artifact = NodePipeline.from_artifact(artifact_dir, get_settings()).artifact
    except PipelineError as e:
        _fail(e, json_output)

    if json_output:
        _print_json(artifact.to_dict())
    else:
        console.print(f"[bold]{artifact.tag}[/bold]")
        console.print(f"  Platform:   {artifact.platform}")
        console.print(f"  Executable: {artifact.executable}")
        console.print(f"  SHA-256:    {artifact.content_hash}")
        console.print(f"  Cache key:  {artifact.cache_key}")


@app.command("wrap")
def wrap_cmd(
    artifact_dir: Annotated[Path, typer.Argument(help="Artifact directory")],
    bundles: Annotated[
        list[str] | None,
        typer.Argument(help="Bundle identifiers, in order"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Wrap an artifact for an ordered list of bundles."""
    from aon_builder.pipeline import NodePipeline

    try:
        pipeline = NodePipeline.from_artifact(artifact_dir, get_settings())
        wrapped = pipeline.wrap_for_bundles(bundles or [])
    except PipelineError as e:
        _fail(e, json_output)

    if json_output:
        _print_json(wrapped.to_dict())
    else:
        console.print(f"[green]Wrote wrapper {wrapped.path}[/green]")
        console.print(f"  Bundles: {escape(str(list(wrapped.bundle_ids)))}")


@app.command("inspect")
def inspect_cmd(
    wrapper: Annotated[Path, typer.Argument(help="Wrapper executable")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the artifact and bundle ids a wrapper embeds."""
    from aon_builder.wrappers.service import inspect_wrapper

    try:
        artifact_path, bundle_ids = inspect_wrapper(wrapper)
    except PipelineError as e:
        _fail(e, json_output)

    if json_output:
        _print_json({"artifact": str(artifact_path), "bundle_ids": list(bundle_ids)})
    else:
        console.print(f"  Artifact: {artifact_path}")
        console.print(f"  Bundles:  {escape(str(list(bundle_ids)))}")


@app.command("validate")
def validate_cmd(
    artifact_dir: Annotated[
        Path | None,
        typer.Option("--artifact", "-a", help="Validate an existing artifact"),
    ] = None,
    source: Annotated[
        Path | None,
        typer.Option("--source", "-s", help="Build from this source tree first"),
    ] = None,
    platform: Annotated[
        str | None,
        typer.Option("--platform", "-p", help="Platform to build for with --source"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Check that a wrapper can be produced for a synthetic bundle.

    Exits 0 on pass and 1 on fail.
    """
    from aon_builder.pipeline import NodePipeline
    from aon_builder.validation import run_validation

    if artifact_dir is None and source is None:
        console.print("[red]Error: --artifact or --source is required[/red]")
        raise typer.Exit(code=1)

    settings = get_settings()
    try:
        if artifact_dir is not None:
            pipeline = NodePipeline.from_artifact(artifact_dir, settings)
        else:
            pipeline = NodePipeline(source_tree=source, settings=settings)
            pipeline.build_artifact(_platform_or_host(platform))
    except PipelineError as e:
        _fail(e, json_output)

    result = run_validation(pipeline)

    if json_output:
        _print_json(
            {
                "status": result.status.value,
                "reason": result.reason,
                "wrapper": str(result.wrapper.path) if result.wrapper else None,
            }
        )
    elif result.passed:
        console.print("[green]✓ Validation passed[/green]")
    else:
        console.print(f"[red]✗ Validation failed: {escape(result.reason or '')}[/red]")

    if not result.passed:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
