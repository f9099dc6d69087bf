"""
CONTILOOP CLI — The Interface

  contiloop run --repo <path> "<task>"     (run the loop against a repo)

Plus utilities:
  - contiloop status        (check config, API keys, tools)
  - contiloop init <path>   (bootstrap .contiloop in a repo)
  - contiloop notes         (tail the iteration ledger)
  - contiloop note "<text>" (leave an instruction for the next iteration)
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from loguru import logger
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from contiloop.audit_logger import AuditLogger
from contiloop.config_loader import ConfigurationError, load_config, validate_api_keys
from contiloop.context_notes import ContextNotes
from contiloop.controller import build_controller
from contiloop.event_bus import EventBus
from contiloop.identity import __codename__, __tagline__, __version__, BANNER
from contiloop.ledger import NotesLedger

# Load .env from current directory or home
load_dotenv()
load_dotenv(Path.home() / ".contiloop" / ".env")

app = typer.Typer(
    name="contiloop",
    help=f"{__codename__} — {__tagline__}\nThe continuous development loop.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__codename__} v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
):
    pass


# ---------------------------------------------------------------------------
# Banner
# ---------------------------------------------------------------------------


def _print_banner():
    console.print(f"[bright_green]{BANNER}[/]")
    console.print(f"  [dim]v{__version__} — {__tagline__}[/]\n")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def run(
    task: str = typer.Argument(..., help="What the loop should work towards"),
    repo: Path = typer.Option(Path("."), "--repo", "-r", help="Path to the target repository"),
    max_iterations: Optional[int] = typer.Option(None, "--max-iterations", "-n", help="Iteration cap (0 = unlimited)"),
    max_duration: Optional[float] = typer.Option(None, "--max-duration", help="Wall-clock cap in seconds (0 = unlimited)"),
    max_cost: Optional[float] = typer.Option(None, "--max-cost", help="Cost cap in dollars (0 = unlimited)"),
    merge_strategy: Optional[str] = typer.Option(None, "--merge-strategy", "-m", help="squash | merge | rebase"),
    completion_signal: Optional[str] = typer.Option(None, "--completion-signal", "--signal", help="Token that marks the task done"),
    completion_threshold: Optional[int] = typer.Option(
        None, "--completion-threshold", "--threshold", help="Consecutive signals needed to stop"
    ),
    check_timeout: Optional[float] = typer.Option(None, "--check-timeout", help="Seconds to wait for PR checks"),
    poll_interval: Optional[float] = typer.Option(None, "--poll-interval", help="Seconds between PR check polls"),
    no_generate: bool = typer.Option(
        False, "--no-generate", help="Skip the model call and record placeholder summaries"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Run the continuous loop on a task."""
    _print_banner()
    _configure_logging(verbose)

    repo = repo.resolve()
    if not repo.exists():
        console.print(f"[red]Repository not found: {repo}[/]")
        raise typer.Exit(1)

    try:
        config = load_config(repo, loop_overrides={
            "max_iterations": max_iterations,
            "max_duration_seconds": max_duration,
            "max_cost": max_cost,
            "merge_strategy": merge_strategy,
            "completion_signal": completion_signal,
            "completion_threshold": completion_threshold,
        }, review_overrides={
            "check_timeout_seconds": check_timeout,
            "poll_interval_seconds": poll_interval,
        })
    except ValidationError as e:
        console.print(f"[red]Invalid configuration:[/]\n{escape(str(e))}")
        raise typer.Exit(1)

    bus = EventBus()
    AuditLogger(repo / config.workspace.log_dir / "events.jsonl", bus)
    controller = build_controller(repo, config, bus=bus, generate=not no_generate)

    try:
        summary = controller.run(task, config.loop)
    except ConfigurationError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/]")
        raise typer.Exit(130)

    status_color = {
        "task complete": "green",
        "max iterations reached": "yellow",
        "max duration reached": "yellow",
        "max cost reached": "yellow",
    }.get(summary.reason, "red")

    console.print(f"\n[bold {status_color}]Status: {summary.reason}[/]")


@app.command()
def status(
    repo: Optional[Path] = typer.Option(None, "--repo", "-r"),
):
    """Check CONTILOOP configuration and readiness."""
    _print_banner()

    # API Keys
    keys = validate_api_keys()
    key_table = Table(title="API Keys", border_style="cyan")
    key_table.add_column("Key")
    key_table.add_column("Status")

    for key, available in keys.items():
        status_str = "[green]✓ Available[/]" if available else "[red]✗ Missing[/]"
        key_table.add_row(key, status_str)

    console.print(key_table)

    # Config
    if repo:
        try:
            config = load_config(repo.resolve())
        except ValidationError as e:
            console.print(f"[red]Invalid configuration:[/]\n{escape(str(e))}")
            raise typer.Exit(1)
        loop = config.loop
        console.print(f"\n[bold]Loop:[/]")
        console.print(f"  Max iterations: {loop.max_iterations or '∞'}")
        console.print(f"  Max duration:   {f'{loop.max_duration_seconds:g}s' if loop.max_duration_seconds else '∞'}")
        console.print(f"  Max cost:       {f'${loop.max_cost:g}' if loop.max_cost else '∞'}")
        console.print(f"  Merge:          {loop.merge_strategy}")
        console.print(f"  Signal:         {loop.completion_signal} ×{loop.completion_threshold}")

        console.print(f"\n[bold]Review:[/]")
        console.print(f"  Base branch:    {config.review.base_branch}")
        console.print(f"  Check timeout:  {config.review.check_timeout_seconds:g}s")
        console.print(f"  Poll interval:  {config.review.poll_interval_seconds:g}s")

        console.print(f"\n[bold]Generation:[/]")
        console.print(f"  Model:          {config.generation.model}")

    # Tools
    tools_table = Table(title="System Tools", border_style="cyan")
    tools_table.add_column("Tool")
    tools_table.add_column("Status")

    for tool in ["git", "gh"]:
        found = shutil.which(tool)
        s = f"[green]✓ {found}[/]" if found else "[red]✗ Not found[/]"
        tools_table.add_row(tool, s)

    console.print(tools_table)


@app.command()
def init(
    repo: Optional[Path] = typer.Argument(None, help="Path to repository"),
):
    """Initialize .contiloop directory in a repository."""
    _print_banner()

    repo = (repo or Path.cwd()).resolve()
    cl_dir = repo / ".contiloop"
    cl_dir.mkdir(exist_ok=True)
    (cl_dir / "logs").mkdir(exist_ok=True)

    # Create default config
    config_path = cl_dir / "config.yaml"
    if not config_path.exists():
        config_path.write_text("""# CONTILOOP repo-level config overrides
# These merge with the built-in defaults.

# Termination caps (at least one must be non-zero):
# loop:
#   max_iterations: 10
#   max_duration_seconds: 3600
#   max_cost: 2.0
#   merge_strategy: squash
#   completion_signal: ITERATION_COMPLETE
#   completion_threshold: 2

# Review platform:
# review:
#   base_branch: main
#   check_timeout_seconds: 1800

# Production repos add an instruction to keep changes minimal:
# environment:
#   is_production: true
""")

    # Add to .gitignore
    gitignore = repo / ".gitignore"
    ignore_entries = [".contiloop/logs/", ".contiloop/notes.md", ".contiloop/context.jsonl"]
    if gitignore.exists():
        content = gitignore.read_text()
        additions = [e for e in ignore_entries if e not in content]
        if additions:
            with open(gitignore, "a") as f:
                f.write("\n# CONTILOOP\n")
                for e in additions:
                    f.write(f"{e}\n")
    else:
        gitignore.write_text("# CONTILOOP\n" + "\n".join(ignore_entries) + "\n")

    console.print(f"[green]✅ Initialized CONTILOOP in {cl_dir}[/]")
    console.print(f"  Config:  {config_path}")
    console.print(f"  Logs:    {cl_dir / 'logs'}")


@app.command()
def notes(
    repo: Path = typer.Option(Path("."), "--repo", "-r", help="Path to the target repository"),
    chars: Optional[int] = typer.Option(None, "--chars", "-c", help="How much of the ledger tail to show"),
):
    """Show the most recent iteration notes."""
    repo = repo.resolve()
    config = load_config(repo)

    tail = NotesLedger(repo / config.notes.path).read_tail(chars or config.notes.tail_chars)
    if not tail:
        console.print("[dim]No iteration notes yet. Run the loop first.[/]")
        return

    console.print(tail, markup=False, highlight=False)


@app.command()
def note(
    text: str = typer.Argument(..., help="Instruction for upcoming iterations"),
    repo: Path = typer.Option(Path("."), "--repo", "-r", help="Path to the target repository"),
):
    """Leave a free-form note that the next iterations will see."""
    text = text.strip()
    if not text:
        console.print("[red]Empty note.[/]")
        raise typer.Exit(1)

    repo = repo.resolve()
    config = load_config(repo)
    ContextNotes(repo / config.context.path).add(text)
    console.print("[green]📝 Noted.[/]")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _configure_logging(verbose: bool) -> None:
    logger.remove()
    if verbose:
        logger.add(
            lambda msg: console.print(f"[dim]{msg}[/]", highlight=False),
            level="DEBUG",
            format="{time:HH:mm:ss} | {level:<7} | {message}",
        )
    else:
        logger.add(
            lambda msg: console.print(f"[dim]{msg}[/]", highlight=False),
            level="WARNING",
            format="{message}",
        )


# ---------------------------------------------------------------------------
# Entry
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    app()
