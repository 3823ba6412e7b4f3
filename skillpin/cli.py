"""skillpin CLI - Install and pin agent skills from Git, HTTP and registries."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from skillpin import __version__
from skillpin.agents import get_all_agent_types
from skillpin.cache import ContentCache
from skillpin.config import (
    ConfigError,
    InstallMode,
    LogLevel,
    ProjectConfig,
    ProjectDefaults,
    get_config,
)
from skillpin.errors import ConsistencyError, SkillpinError
from skillpin.manager import BatchResult, InstallOutcome, SkillManager

app = typer.Typer(
    name="skillpin",
    help="Install, pin and update agent skills.",
    no_args_is_help=True,
)
cache_app = typer.Typer(help="Inspect and clear the content cache.", no_args_is_help=True)
app.add_typer(cache_app, name="cache")

console = Console()
err_console = Console(stderr=True)


def setup_logging(verbose: bool = False) -> None:
    """Route skillpin's log records through Rich."""
    try:
        level_name = get_config().log_level.value
    except ConfigError as e:
        err_console.print(f"[yellow]Warning:[/yellow] {e}")
        level_name = LogLevel.WARNING.value

    level = logging.DEBUG if verbose else getattr(logging, level_name.upper())
    logger = logging.getLogger("skillpin")
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
    logger.addHandler(RichHandler(console=err_console, show_time=False, show_path=False))
    logger.setLevel(level)


def get_manager(is_global: bool = False) -> SkillManager:
    """Create a manager for the current directory."""
    try:
        return SkillManager(Path.cwd(), is_global=is_global)
    except SkillpinError as e:
        fail(str(e))


def fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(code=1)


def version_callback(value: bool) -> None:
    if value:
        console.print(f"skillpin {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
    version: bool = typer.Option(
        False, "--version", callback=version_callback, is_eager=True, help="Show version"
    ),
) -> None:
    """Install, pin and update agent skills."""
    setup_logging(verbose)


# =============================================================================
# Project
# =============================================================================


@app.command()
def init(
    install_dir: str = typer.Option(
        ".skills",
        "--install-dir",
        "-d",
        help="Directory for installed skills",
    ),
    agents: Optional[list[str]] = typer.Option(
        None,
        "--agent",
        "-a",
        help="Default target agent (repeatable)",
    ),
    mode: InstallMode = typer.Option(
        InstallMode.SYMLINK,
        "--mode",
        "-m",
        help="Default install mode",
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing skills.yaml"),
) -> None:
    """Create a skills.yaml in the current directory.

    Example:

    \b
        skillpin init
        skillpin init -a claude-code -a cursor --mode copy
    """
    project = ProjectConfig(Path.cwd())
    if project.exists() and not force:
        console.print(f"[yellow]{project.config_path.name} already exists[/yellow]")
        console.print("[dim]Use --force to overwrite[/dim]")
        raise typer.Exit(code=1)

    invalid = [a for a in agents or [] if a not in get_all_agent_types()]
    if invalid:
        fail(f"Unknown agent(s): {', '.join(invalid)}")

    project.create(ProjectDefaults(install_dir=install_dir, target_agents=list(agents or []), install_mode=mode))
    console.print(f"[green]✓ Created:[/green] {project.config_path}")


# =============================================================================
# Install
# =============================================================================


def _print_outcome(outcome: InstallOutcome) -> None:
    skill = outcome.skill
    if outcome.skipped:
        console.print(f"[dim]Already installed:[/dim] {skill.name}@{skill.version}")
        return

    console.print(f"[green]✓ Installed:[/green] {skill.name}@{skill.version}")
    console.print(f"  [dim]Location: {skill.path}[/dim]")
    for target, result in outcome.results.items():
        if not result.success:
            console.print(f"  [red]✗ {target}:[/red] {result.error}")
        elif result.symlink_failed:
            console.print(f"  [yellow]✓ {target}:[/yellow] {result.path} [dim](copied, symlink failed)[/dim]")
        else:
            console.print(f"  [green]✓ {target}:[/green] {result.path}")


def _print_batch(batch: BatchResult) -> None:
    for outcome in batch.succeeded:
        _print_outcome(outcome)
    for ref, error in batch.failed:
        console.print(f"[red]✗ Failed:[/red] {ref} ({error})")

    console.print()
    console.print(
        f"[bold]{len(batch.succeeded)} succeeded[/bold], "
        f"[bold]{len(batch.failed)} failed[/bold]"
    )


@app.command()
def install(
    refs: Optional[list[str]] = typer.Argument(
        None,
        help="Skill references (default: everything in skills.yaml)",
    ),
    agents: Optional[list[str]] = typer.Option(
        None,
        "--agent",
        "-a",
        help="Target agent (repeatable)",
    ),
    mode: Optional[InstallMode] = typer.Option(
        None,
        "--mode",
        "-m",
        help="Install mode (default from skills.yaml, else symlink)",
    ),
    is_global: bool = typer.Option(
        False,
        "--global",
        "-g",
        help="Install for the user instead of the project",
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Reinstall even if up to date"),
    skills: Optional[list[str]] = typer.Option(
        None,
        "--skill",
        "-s",
        help="Skill to pick from a multi-skill repository (repeatable)",
    ),
    list_skills: bool = typer.Option(
        False,
        "--list",
        help="List the skills in a repository without installing",
    ),
) -> None:
    """Install skills.

    Example:

    \b
        skillpin install github:org/skills/pdf@^1.0.0
        skillpin install git@gitlab.company.com:team/skills.git@v2.0.0 -a cursor
        skillpin install org/monorepo --skill pdf --skill docx
        skillpin install org/monorepo --list
        skillpin install
    """
    manager = get_manager(is_global)
    refs = list(refs or [])

    try:
        if skills or list_skills:
            if len(refs) != 1:
                fail("--skill and --list take exactly one repository reference")
            repo = manager.install_skills_from_repo(
                refs[0], list(skills or []), targets=agents, mode=mode, list_only=list_skills
            )
            if list_skills:
                table = Table(title="Skills", show_header=True, header_style="bold")
                table.add_column("Name", style="cyan")
                table.add_column("Description")
                for skill in repo.discovered:
                    table.add_row(skill.name, skill.manifest.description)
                console.print(table)
                return
            for outcome in repo.installed:
                _print_outcome(outcome)
            return

        if len(refs) == 1:
            _print_outcome(manager.install(refs[0], targets=agents, mode=mode, force=force))
            return

        if refs:
            batch = manager.install_many(refs, targets=agents, mode=mode, force=force)
        else:
            if not manager.project.exists():
                fail("No skills.yaml found. Run 'skillpin init' or pass a reference.")
            batch = manager.install_all(targets=agents, mode=mode, force=force)

        _print_batch(batch)
        if not batch.ok:
            raise typer.Exit(code=1)

    except ConsistencyError as e:
        console.print(f"[red]Error:[/red] {e}")
        if e.available:
            console.print(f"[dim]Available: {', '.join(e.available)}[/dim]")
        raise typer.Exit(code=1)
    except SkillpinError as e:
        fail(str(e))


@app.command()
def uninstall(
    name: str = typer.Argument(..., help="Name of the skill"),
    agents: Optional[list[str]] = typer.Option(
        None,
        "--agent",
        "-a",
        help="Only remove from these agents",
    ),
    is_global: bool = typer.Option(False, "--global", "-g", help="Uninstall a user-level skill"),
) -> None:
    """Uninstall a skill."""
    manager = get_manager(is_global)
    try:
        removed = manager.uninstall(name, targets=agents)
    except SkillpinError as e:
        fail(str(e))

    if not removed:
        console.print(f"[yellow]Not found:[/yellow] {name}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓ Uninstalled:[/green] {name}")


@app.command()
def update(
    name: Optional[str] = typer.Argument(None, help="Skill to update (default: all)"),
) -> None:
    """Update skills whose upstream commit changed."""
    manager = get_manager()
    try:
        updated = manager.update(name)
    except SkillpinError as e:
        fail(str(e))

    if not updated:
        console.print("[green]All skills are up to date[/green]")
        return
    for skill in updated:
        console.print(f"[green]✓ Updated:[/green] {skill.name}@{skill.version}")


@app.command()
def outdated() -> None:
    """Show skills with newer versions available."""
    manager = get_manager()
    try:
        results = manager.check_outdated()
    except SkillpinError as e:
        fail(str(e))

    if not results:
        console.print("[yellow]No skills declared in skills.yaml[/yellow]")
        return

    table = Table(title="Outdated Skills", show_header=True, header_style="bold")
    table.add_column("Name", style="cyan")
    table.add_column("Current")
    table.add_column("Latest")
    table.add_column("Status")
    for info in results:
        status = "[yellow]update available[/yellow]" if info.update_available else "[green]up to date[/green]"
        table.add_row(info.name, info.current, info.latest, status)
    console.print(table)


# =============================================================================
# Inspect
# =============================================================================


@app.command("list")
def list_skills(
    is_global: bool = typer.Option(False, "--global", "-g", help="List user-level skills"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """List installed skills."""
    manager = get_manager(is_global)
    try:
        skills = manager.list()
    except SkillpinError as e:
        fail(str(e))

    if as_json:
        typer.echo(json.dumps([s.to_dict() for s in skills], indent=2))
        return

    if not skills:
        console.print("[yellow]No skills installed[/yellow]")
        return

    table = Table(title="Installed Skills", show_header=True, header_style="bold")
    table.add_column("Name", style="cyan")
    table.add_column("Version")
    table.add_column("Source", style="dim")
    for skill in skills:
        version = "[magenta]local[/magenta]" if skill.is_linked else skill.version
        table.add_row(skill.name, version, skill.source)
    console.print(table)


@app.command()
def info(
    name: str = typer.Argument(..., help="Name of the skill"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
) -> None:
    """Show install, lock and config details for a skill."""
    manager = get_manager()
    try:
        details = manager.get_info(name)
    except SkillpinError as e:
        fail(str(e))

    if as_json:
        typer.echo(
            json.dumps(
                {
                    "name": details.name,
                    "installed": details.installed.to_dict() if details.installed else None,
                    "locked": details.locked.to_dict() if details.locked else None,
                    "config": details.config_ref,
                },
                indent=2,
            )
        )
        return

    if not details.installed and not details.locked and not details.config_ref:
        console.print(f"[yellow]Not found:[/yellow] {name}")
        raise typer.Exit(code=1)

    console.print(f"[bold cyan]{name}[/bold cyan]")
    if details.config_ref:
        console.print(f"  Reference: {details.config_ref}")
    if details.installed:
        console.print(f"  Path:      {details.installed.path}")
        console.print(f"  Version:   {details.installed.version}")
    if details.locked:
        console.print(f"  Ref:       {details.locked.ref}")
        console.print(f"  Commit:    {details.locked.commit or '-'}")
        console.print(f"  Resolved:  {details.locked.resolved}")


# =============================================================================
# Local development
# =============================================================================


@app.command()
def link(
    path: Path = typer.Argument(..., help="Local skill directory"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Name to link as"),
) -> None:
    """Link a local skill directory for development."""
    manager = get_manager()
    try:
        skill = manager.link(path, name)
    except SkillpinError as e:
        fail(str(e))
    console.print(f"[green]✓ Linked:[/green] {skill.name} → {skill.source}")


@app.command()
def unlink(name: str = typer.Argument(..., help="Name of the linked skill")) -> None:
    """Remove a linked skill."""
    manager = get_manager()
    try:
        unlinked = manager.unlink(name)
    except SkillpinError as e:
        fail(str(e))

    if not unlinked:
        console.print(f"[yellow]Not a linked skill:[/yellow] {name}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓ Unlinked:[/green] {name}")


# =============================================================================
# Cache
# =============================================================================


@cache_app.command("stats")
def cache_stats() -> None:
    """Show cache location and size."""
    try:
        stats = ContentCache().get_stats()
    except SkillpinError as e:
        fail(str(e))
    console.print(f"[bold]Cache:[/bold] {stats.cache_dir}")
    console.print(f"  Entries:    {stats.total_skills}")
    console.print(f"  Registries: {', '.join(stats.registries) or '-'}")


@cache_app.command("clear")
def cache_clear() -> None:
    """Remove every cached skill."""
    try:
        cache = ContentCache()
        cache.clear_all()
    except SkillpinError as e:
        fail(str(e))
    console.print(f"[green]✓ Cleared:[/green] {cache.cache_dir}")


if __name__ == "__main__":
    app()
