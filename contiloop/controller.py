"""
CONTILOOP Controller — The Brainstem

It is NOT smart. It is deterministic.

Responsibilities:
  - Reject configurations with no termination cap
  - Own the run-scoped counters (RunState)
  - Check the iteration / duration / cost caps before every pass
  - Drive one iteration at a time through the IterationExecutor
  - Track the consecutive completion-signal streak
  - Always print the final accounting, however the run ends

It never writes code and never touches git. It only decides whether
to go round again.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Callable

from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from contiloop.agents.implementer import ImplementerAgent
from contiloop.config_loader import ConfigurationError, ContiloopConfig, LoopConfig
from contiloop.context_notes import ContextNotes
from contiloop.event_bus import EventBus
from contiloop.executor import IterationExecutor
from contiloop.ledger import NotesLedger
from contiloop.review import GitHubReviewPlatform, ReviewGateway
from contiloop.router import Router
from contiloop.snapshot import SnapshotCollector
from contiloop.state import IterationResult, LoopPhase, RunState, RunSummary
from contiloop.workspace import GitWorkspace

console = Console()

REASON_MAX_ITERATIONS = "max iterations reached"
REASON_MAX_DURATION = "max duration reached"
REASON_MAX_COST = "max cost reached"
REASON_COMPLETE = "task complete"
REASON_INTERRUPTED = "interrupted"


def should_continue(state: RunState, config: LoopConfig, now: float) -> tuple[bool, str | None]:
    """
    Evaluate each termination cap independently.
    A zero cap is uncapped. Returns (continue?, stop reason).
    """
    if config.max_iterations > 0 and state.iterations >= config.max_iterations:
        return False, REASON_MAX_ITERATIONS

    if config.max_duration_seconds > 0 and state.elapsed(now) >= config.max_duration_seconds:
        return False, REASON_MAX_DURATION

    if config.max_cost > 0 and state.total_cost >= config.max_cost:
        return False, REASON_MAX_COST

    return True, None


class LoopController:
    """
    Runs a task through repeated iterations until a cap is reached or
    the change generator reports completion enough times in a row.
    """

    def __init__(
        self,
        executor: IterationExecutor,
        bus: EventBus | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.executor = executor
        self.bus = bus or EventBus()
        self._clock = clock
        self.phase = LoopPhase.IDLE
        self.state: RunState | None = None

    def run(self, task: str, config: LoopConfig) -> RunSummary:
        if not config.has_cap:
            self.phase = LoopPhase.CONFIG_REJECTED
            raise ConfigurationError(
                "Must specify at least one limit: max_iterations, max_duration_seconds, or max_cost"
            )

        state = RunState(start_time=self._clock())
        self.state = state
        self.phase = LoopPhase.RUNNING
        results: list[IterationResult] = []
        reason = REASON_INTERRUPTED

        self._print_header(task, config)

        try:
            while True:
                keep_going, stop_reason = should_continue(state, config, self._clock())
                if not keep_going:
                    reason = stop_reason
                    logger.info(f"[LOOP] Stopping: {reason}")
                    self.phase = LoopPhase.EXHAUSTED
                    break

                state.iterations += 1
                cap = config.max_iterations or "∞"
                console.rule(f"[bold]Iteration {state.iterations}/{cap}")
                self.bus.emit("iteration_started", "controller", {"number": state.iterations})

                result = self._run_iteration(task, state, config)
                results.append(result)
                state.add_cost(result.cost)

                self.bus.emit("iteration_finished", "controller", {
                    "number": result.number,
                    "success": result.success,
                    "review_id": result.review_id,
                    "changed_files": len(result.changed_files),
                    "cost": result.cost,
                    "error": result.error,
                })

                if self._completion_reached(result, state, config):
                    reason = REASON_COMPLETE
                    self.phase = LoopPhase.COMPLETED
                    console.print("\n[bold green]✨ Task complete.[/]")
                    break
        finally:
            summary = RunSummary(
                iterations=state.iterations,
                total_cost=round(state.total_cost, 4),
                elapsed_seconds=state.elapsed(self._clock()),
                reason=reason,
                phase=self.phase,
                results=results,
            )
            self._print_summary(summary)
            self.bus.emit("run_finished", "controller", summary.model_dump(exclude={"results"}, mode="json"))

        return summary

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def _run_iteration(self, task: str, state: RunState, config: LoopConfig) -> IterationResult:
        try:
            result = self.executor.execute_iteration(task, state, config)
        except Exception as e:
            logger.exception(f"[LOOP] Iteration {state.iterations} raised")
            result = IterationResult(number=state.iterations, success=False, error=str(e))

        if result.success:
            console.print(f"[green]✅ Iteration {result.number} completed[/]")
        else:
            logger.warning(f"[LOOP] Iteration {result.number} failed: {result.error}")
            console.print(f"[red]❌ Iteration {result.number} failed: {escape(str(result.error))}[/]")
        return result

    def _completion_reached(self, result: IterationResult, state: RunState, config: LoopConfig) -> bool:
        """Update the signal streak. Only consecutive signalling successes count."""
        if result.success and config.completion_signal in result.summary:
            state.consecutive_signal_count += 1
            console.print(
                f"[magenta]🏁 Completion signal detected "
                f"({state.consecutive_signal_count}/{config.completion_threshold})[/]"
            )
            return state.consecutive_signal_count >= config.completion_threshold

        state.consecutive_signal_count = 0
        return False

    # -----------------------------------------------------------------------
    # Display Helpers
    # -----------------------------------------------------------------------

    @staticmethod
    def _print_header(task: str, config: LoopConfig) -> None:
        console.print(Panel(
            f"[bold green]Task:[/] {escape(task[:120])}\n"
            f"[bold]Max iterations:[/] {config.max_iterations or '∞'}  |  "
            f"[bold]Max duration:[/] {f'{config.max_duration_seconds:g}s' if config.max_duration_seconds else '∞'}  |  "
            f"[bold]Max cost:[/] {f'${config.max_cost:g}' if config.max_cost else '∞'}\n"
            f"[bold]Merge:[/] {config.merge_strategy}  |  "
            f"[bold]Signal:[/] {config.completion_signal} ×{config.completion_threshold}",
            title="🔄 CONTILOOP",
            border_style="bright_green",
        ))

    @staticmethod
    def _print_summary(summary: RunSummary) -> None:
        minutes, seconds = divmod(int(summary.elapsed_seconds), 60)

        table = Table(title="🎉 Loop Complete", border_style="green")
        table.add_column("Metric")
        table.add_column("Value")
        table.add_row("Iterations", str(summary.iterations))
        table.add_row("Succeeded", str(summary.succeeded))
        table.add_row("Total cost", f"${summary.total_cost:.2f}")
        table.add_row("Elapsed", f"{minutes}m {seconds}s")
        table.add_row("Reason", escape(summary.reason))
        console.print(table)

        logger.info(
            f"[LOOP] Finished: {summary.iterations} iterations, "
            f"${summary.total_cost:.2f}, {summary.elapsed_seconds:.1f}s, reason={summary.reason}"
        )


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

def build_controller(
    repo_path: Path,
    config: ContiloopConfig,
    bus: EventBus | None = None,
    generate: bool = True,
) -> LoopController:
    """Assemble a controller backed by git, the gh CLI and LiteLLM for `repo_path`."""
    repo_path = repo_path.resolve()
    state_prefix = config.workspace.state_dir.rstrip("/") + "/"

    vcs = GitWorkspace(repo_path, remote=config.review.remote, ignored_prefixes=(state_prefix,))
    platform = GitHubReviewPlatform(
        repo_path,
        base_branch=config.review.base_branch,
        delete_branch=config.review.delete_branch_on_merge,
    )
    generator = None
    if generate:
        generator = ImplementerAgent(Router(config.generation), max_steps=config.generation.max_steps)

    executor = IterationExecutor(
        vcs=vcs,
        review=ReviewGateway(platform),
        ledger=NotesLedger(repo_path / config.notes.path),
        generator=generator,
        config=config,
        snapshots=SnapshotCollector(repo_path, vcs, config.environment),
        context_notes=ContextNotes(repo_path / config.context.path),
        working_dir=repo_path,
    )
    return LoopController(executor, bus=bus)
