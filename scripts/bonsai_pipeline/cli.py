"""
Command-line interface for the bonsai build pipeline.
Provides the build command plus single-stage commands for atlas, shaders and natives.
"""

import os
import sys
import time
from importlib import metadata
from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich.markup import escape
from rich.table import Table

from .config import PipelineConfig
from .errors import PipelineError, ValidationError
from .pipeline import PipelineDriver, PipelineState
from .process import ProcessSupervisor
from .processing.atlas import AtlasConfig, AtlasPacker
from .processing.native import NativeBuildMatrix
from .processing.shaders import ShaderCompiler
from .toolchains.base import HostPlatform, Profile, Target
from .toolchains.shdc import ShdcInstaller
from . import __version__
from .utils.console import configure_logging, console

app = typer.Typer(
    name="bonsai-pipeline",
    help="Build pipeline for bonsai games - pack sprites, compile shaders and native libraries, build desktop and web targets",
    add_completion=False,
    rich_markup_mode="rich",
    epilog="""
[bold]Examples:[/bold]
  [cyan]python -m bonsai_pipeline build[/cyan]                       Build the project in the current directory
  [cyan]python -m bonsai_pipeline build my_game --web[/cyan]         Build the web target
  [cyan]python -m bonsai_pipeline build --profile release --clean[/cyan]  Clean release build
  [cyan]python -m bonsai_pipeline atlas --force[/cyan]               Repack the sprite atlas

[bold]Environment Variables:[/bold]
  Use [cyan]python -m bonsai_pipeline config --env-vars[/cyan] to see all available variables.
    """
)

DirArgument = typer.Argument(Path("."), help="Project directory (must contain bonsai.toml)")
ConfigOption = typer.Option(None, "--config", "-c", help="Configuration file path")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Show debug output")


@app.command()
def build(
    directory: Path = DirArgument,
    web: bool = typer.Option(False, "--web", help="Build for the web (WebAssembly) instead of desktop"),
    profile: Profile = typer.Option(Profile.DEBUG, "--profile", "-p", case_sensitive=False, help="Build profile"),
    clean: bool = typer.Option(False, "--clean", help="Remove previous outputs and rebuild native libraries"),
    config_file: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
    show_summary: bool = typer.Option(False, "--summary/--no-summary", help="Show execution summary"),
):
    """Build the game for desktop or web."""
    configure_logging(verbose)
    config = _load_config(config_file, directory)
    target = Target.WEB if web else Target.DESKTOP

    driver = None
    try:
        driver = PipelineDriver(config)
        result = driver.build(target, profile, clean=clean)
    except PipelineError as e:
        if show_summary and driver is not None:
            _display_pipeline_summary(driver.state)
        _fail(e, "build")

    console.print(f"[green]✓[/green] Output: {result.output_path}")
    if show_summary:
        _display_pipeline_summary(result.state)


@app.command()
def atlas(
    directory: Path = DirArgument,
    force: bool = typer.Option(False, "--force", "-f", help="Repack even when the atlas is up to date"),
    config_file: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
):
    """Pack sprites and tilesets into the texture atlas."""
    configure_logging(verbose)
    config = _load_config(config_file, directory)

    try:
        _require_project(config)
        packer = AtlasPacker(AtlasConfig.from_pipeline_config(config))
        output = packer.pack(config.resolve(config.images_dir), config.resolve(config.atlas_dir), force=force)
    except PipelineError as e:
        _fail(e, "atlas")

    if output is None:
        console.print("[green]✓[/green] Atlas is up to date")
    else:
        console.print(f"[green]✓[/green] Packed {len(output.sprites)} sprites into {output.width}×{output.height} atlas")


@app.command()
def shaders(
    directory: Path = DirArgument,
    config_file: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
):
    """Compile the core shader and stale game shaders with sokol-shdc."""
    configure_logging(verbose)
    config = _load_config(config_file, directory)

    try:
        _require_project(config)
        host = HostPlatform.detect()
        installer = ShdcInstaller(config.tools_path, host)
        compiler = ShaderCompiler.from_config(config, ProcessSupervisor(config.tool_timeout),
                                              installer.get_or_install, host)
        compiled = compiler.compile_all(config.resolve(config.core_shader),
                                        config.resolve(config.game_shader_dir))
    except PipelineError as e:
        _fail(e, "shaders")

    console.print(f"[green]✓[/green] Compiled {len(compiled)} shaders")


@app.command()
def natives(
    directory: Path = DirArgument,
    web: bool = typer.Option(False, "--web", help="Build the WebAssembly libraries"),
    profile: Profile = typer.Option(Profile.DEBUG, "--profile", "-p", case_sensitive=False, help="Build profile"),
    clean: bool = typer.Option(False, "--clean", help="Purge previous artifacts first"),
    config_file: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
):
    """Compile the sokol static libraries for a target."""
    configure_logging(verbose)
    config = _load_config(config_file, directory)
    target = Target.WEB if web else Target.DESKTOP

    try:
        _require_project(config)
        matrix = NativeBuildMatrix.from_config(config, ProcessSupervisor(config.tool_timeout))
        libraries = matrix.compile(target, profile, force_clean=clean)
    except PipelineError as e:
        _fail(e, "natives")

    if libraries:
        console.print(f"[green]✓[/green] Built {len(libraries)} libraries")
    else:
        console.print("[green]✓[/green] Native libraries are up to date")


@app.command()
def clean(
    directory: Path = DirArgument,
    config_file: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
):
    """Remove build outputs, the compiled core shader and script caches."""
    configure_logging(verbose)
    config = _load_config(config_file, directory)

    try:
        _require_project(config)
        removed = PipelineDriver(config).clean_build()
    except PipelineError as e:
        _fail(e, "clean")

    for path in removed:
        console.print(f"[dim]Removed {path}[/dim]")
    console.print("[green]✓[/green] Clean complete")


@app.command()
def config(
    show: bool = typer.Option(False, "--show", help="Show current configuration"),
    validate_config: bool = typer.Option(False, "--validate", help="Validate configuration file"),
    config_file: Optional[Path] = ConfigOption,
    env_vars: bool = typer.Option(False, "--env-vars", help="Show available environment variables")
):
    """Manage pipeline configuration."""
    if env_vars:
        _display_env_vars()
        return

    if not (show or validate_config):
        console.print("Use --show to display configuration, --validate to check it, or --env-vars to see environment variables.")
        return

    pipeline_config = _load_config(config_file, None)

    if show:
        _display_config(pipeline_config)

    if validate_config:
        errors = pipeline_config.validate()
        if errors:
            console.print("[red]Configuration validation errors:[/red]")
            for error in errors:
                console.print(f"  • {error}")
            raise typer.Exit(1)
        console.print("[green]✓ Configuration is valid[/green]")


@app.command()
def version():
    """Show pipeline version information."""
    console.print("[bold]Bonsai Build Pipeline[/bold]")
    console.print(f"Version: {__version__}")
    console.print("Python: " + sys.version.split()[0])

    table = Table(show_header=False)
    table.add_column("Status", width=3)
    table.add_column("Package", style="cyan")
    table.add_column("Version", style="green")

    for package in ("Pillow", "numpy", "jinja2", "requests", "rich", "typer", "tomli_w"):
        try:
            table.add_row("[green]✓[/green]", package, metadata.version(package))
        except metadata.PackageNotFoundError:
            table.add_row("[red]✗[/red]", package, "Not installed")

    console.print("\n[bold]Dependencies:[/bold]")
    console.print(table)


def _fail(error: PipelineError, context: str) -> NoReturn:
    """Report a pipeline error the way every command does and exit with status 1."""
    stage = error.stage or context
    console.print(f"[red]{escape(f'[ERROR] ({stage}): {error}')}[/red]")
    raise typer.Exit(1)


def _require_project(config: PipelineConfig) -> None:
    project_dir = config.project_path
    if not project_dir.is_dir():
        raise ValidationError(f"Directory '{project_dir}' does not exist")
    if not (project_dir / config.manifest_name).is_file():
        raise ValidationError(f"Not a bonsai project: '{project_dir}'. (Missing {config.manifest_name})")


def _load_config(config_file: Optional[Path], project_dir: Optional[Path]) -> PipelineConfig:
    """
    Load configuration from file or use defaults with environment variable support.

    A project directory given on the command line overrides the configured one.
    """
    config = None
    search_root = project_dir or Path(".")

    if config_file:
        if not config_file.exists():
            console.print(f"[red]Configuration file not found:[/red] {config_file}")
            raise typer.Exit(1)
        config = _read_config(config_file)
    else:
        for name in ("bonsai_pipeline.toml", "bonsai_pipeline.json"):
            config_path = search_root / name
            if config_path.exists():
                config = _read_config(config_path)
                break

    if config is None:
        config = PipelineConfig()

    config = PipelineConfig._apply_env_overrides(config)
    if project_dir is not None:
        config.project_dir = str(project_dir)

    env_vars_used = [key for key in os.environ if key.startswith('BONSAI_')]
    if env_vars_used:
        console.print(f"[dim]Environment overrides applied: {len(env_vars_used)} variables[/dim]")

    return config


def _read_config(config_path: Path) -> PipelineConfig:
    console.print(f"[dim]Using configuration: {config_path}[/dim]")
    try:
        return PipelineConfig.from_file(config_path)
    except (ValueError, OSError) as e:
        console.print(f"[red]Invalid configuration {config_path}:[/red] {e}")
        raise typer.Exit(1)


def _display_pipeline_summary(state: PipelineState) -> None:
    """Display pipeline execution summary."""
    total_duration = 0.0
    if state.start_time:
        total_duration = time.time() - state.start_time

    console.print("\n[bold]Pipeline Execution Summary[/bold]")

    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Total execution time", f"{total_duration:.2f}s")
    table.add_row("Steps completed", str(len(state.completed_steps)))
    table.add_row("Steps failed", str(len(state.failed_steps)))
    console.print(table)

    if state.step_results:
        step_table = Table()
        step_table.add_column("Step", style="cyan")
        step_table.add_column("Status", width=8)
        step_table.add_column("Duration", style="yellow")
        step_table.add_column("Message", style="dim")

        for step, result in state.step_results.items():
            status = "[green]✓[/green]" if result.success else "[red]✗[/red]"
            message = result.message[:50] + "..." if len(result.message) > 50 else result.message
            step_table.add_row(step.value, status, f"{result.duration:.2f}s", escape(message))

        console.print(step_table)


def _display_config(config: PipelineConfig) -> None:
    """Display configuration in a formatted table."""
    table = Table(title="Bonsai Pipeline Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Project Directory", config.project_dir)
    table.add_row("Images Directory", config.images_dir)
    table.add_row("Atlas Directory", config.atlas_dir)
    table.add_row("Build Directory", config.build_dir)

    table.add_row("Atlas Max Size", f"{config.atlas_max_size[0]}×{config.atlas_max_size[1]}")
    table.add_row("Atlas Border Padding", str(config.atlas_border_padding))
    table.add_row("Atlas Texture Padding", str(config.atlas_texture_padding))
    table.add_row("Default Tile Size", str(config.default_tile_size))
    table.add_row("Extrude Sprites", str(config.extrude_sprites))
    table.add_row("Metadata Format", config.metadata_format)

    table.add_row("Core Shader", config.core_shader)
    table.add_row("Game Shaders", config.game_shader_dir)
    table.add_row("Shader Extensions", ", ".join(config.shader_extensions))

    table.add_row("Sokol Directory", config.sokol_dir)
    table.add_row("Sokol Modules", ", ".join(config.sokol_modules))
    table.add_row("Workers", str(config.worker_count()))

    table.add_row("Tools Directory", config.tools_dir)
    table.add_row("Tool Timeout", str(config.tool_timeout) if config.tool_timeout else "none")

    console.print(table)


def _display_env_vars() -> None:
    """Display available environment variables for configuration."""
    table = Table(title="Bonsai Pipeline Environment Variables")
    table.add_column("Environment Variable", style="cyan")
    table.add_column("Description", style="white")
    table.add_column("Example", style="green")

    env_vars = [
        ("BONSAI_PROJECT_DIR", "Project directory path", "."),
        ("BONSAI_IMAGES_DIR", "Sprite source directory", "assets/images"),
        ("BONSAI_ATLAS_DIR", "Atlas output directory", "bonsai/core/render/atlas"),
        ("BONSAI_SOKOL_DIR", "Sokol sources and libraries", "bonsai/libs/sokol"),
        ("BONSAI_BUILD_DIR", "Build output directory", "build"),
        ("BONSAI_ATLAS_PADDING", "Padding between sprites in pixels", "2"),
        ("BONSAI_ATLAS_BORDER_PADDING", "Padding around the atlas edge in pixels", "2"),
        ("BONSAI_ATLAS_MAX_WIDTH", "Maximum atlas width", "2048"),
        ("BONSAI_ATLAS_MAX_HEIGHT", "Maximum atlas height", "2048"),
        ("BONSAI_TILE_SIZE", "Tile size for tilesets without a size suffix", "16"),
        ("BONSAI_EXTRUDE_SPRITES", "Extrude flat sprites (true/false)", "true"),
        ("BONSAI_METADATA_FORMAT", "Atlas frame map format (json/toml)", "json"),
        ("BONSAI_MAX_WORKERS", "Parallel native compile workers", "8"),
        ("BONSAI_TOOL_TIMEOUT", "Per-tool timeout in seconds", "600"),
        ("BONSAI_TOOLS_DIR", "Install directory for downloaded tools", "~/.bonsai/bin"),
    ]

    for var_name, description, example in env_vars:
        table.add_row(var_name, description, example)

    console.print(table)
    console.print("\n[dim]Set these environment variables to override configuration file settings.[/dim]")
    console.print("[dim]Example: export BONSAI_MAX_WORKERS=4[/dim]")


if __name__ == "__main__":
    app()
