"""
CONTILOOP Iteration Executor

One full pass: branch → context → generate → commit/push → review →
poll checks → merge or close → record.

Nothing raised by a step leaves `execute_iteration`; every failure is
captured in the returned IterationResult so the controller can move on.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path

from loguru import logger
from rich.console import Console
from rich.markup import escape

from contiloop.agents import ChangeGenerator, GenerationResult
from contiloop.config_loader import ContiloopConfig, LoopConfig
from contiloop.context_builder import ContextAssembler
from contiloop.context_notes import ContextNote, ContextNotes
from contiloop.ledger import LedgerEntry, NotesLedger
from contiloop.review import ReviewGateway
from contiloop.snapshot import SnapshotCollector, WorkspaceSnapshot
from contiloop.state import IterationResult, RunState
from contiloop.workspace import VersionControl

console = Console()

FALLBACK_SUMMARY = "Completed iteration without AI summary"
COMMIT_HEADLINE_CHARS = 50
CHECKS_FAILED_ERROR = "PR checks failed"
CHECKS_FAILED_REASON = "Checks failed"


# ---------------------------------------------------------------------------
# Cost accounting
# ---------------------------------------------------------------------------

class CostModel(ABC):
    """Assigns a cost to an iteration once its generation step has run."""

    @abstractmethod
    def cost_for(self, generation: GenerationResult | None) -> float:
        ...


class FixedCostModel(CostModel):
    """Flat per-iteration placeholder; not derived from real usage."""

    def __init__(self, per_iteration: float = 0.05):
        self.per_iteration = per_iteration

    def cost_for(self, generation: GenerationResult | None) -> float:
        return self.per_iteration


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------

def make_branch_name(prefix: str, number: int, now: datetime | None = None) -> str:
    ts = (now or datetime.now(timezone.utc)).strftime("%Y%m%d-%H%M%S")
    salt = uuid.uuid4().hex[:8]
    return f"{prefix}/iteration-{number}/{ts}-{salt}"


def commit_message_for(number: int, summary: str) -> str:
    lines = summary.strip().splitlines()
    headline = lines[0].strip() if lines else ""
    return f"[Iteration {number}] {headline[:COMMIT_HEADLINE_CHARS]}".rstrip()


class IterationExecutor:
    def __init__(
        self,
        vcs: VersionControl,
        review: ReviewGateway,
        ledger: NotesLedger,
        generator: ChangeGenerator | None,
        config: ContiloopConfig,
        snapshots: SnapshotCollector | None = None,
        context_notes: ContextNotes | None = None,
        cost_model: CostModel | None = None,
        working_dir: Path | None = None,
    ):
        self.vcs = vcs
        self.review = review
        self.ledger = ledger
        self.generator = generator
        self.config = config
        self.snapshots = snapshots
        self.context_notes = context_notes
        self.cost_model = cost_model or FixedCostModel(config.generation.cost_per_iteration)
        self.working_dir = working_dir or getattr(vcs, "path", None) or Path.cwd()

    def execute_iteration(self, task: str, state: RunState, loop: LoopConfig | None = None) -> IterationResult:
        loop = loop or self.config.loop
        result = IterationResult(number=state.iterations)
        trunk = self.config.review.base_branch

        # ── 1. Branch ──
        branch = make_branch_name(self.config.workspace.branch_prefix, result.number)
        try:
            self.vcs.create_branch(branch, trunk)
        except Exception as e:
            result.error = f"Branch creation failed: {e}"
            logger.error(f"[ITERATION] {result.error}")
            return result
        result.branch = branch
        console.print(f"[green]🌿 Branch:[/] {branch}")

        try:
            # ── 2. Context ──
            prompt = self._build_prompt(task, loop)

            # ── 3. Generate ──
            generation = self._generate(prompt)
            result.summary = generation.summary if generation else FALLBACK_SUMMARY
            result.cost = self.cost_model.cost_for(generation)
            console.print(f"[dim]💰 Cost: ${result.cost:.2f}  📝 {escape(result.headline[:100])}[/]")

            # ── 4. Changed files ──
            result.changed_files = self.vcs.changed_files()
            console.print(f"[dim]📂 Changed files: {len(result.changed_files)}[/]")

            if result.changed_files:
                # ── 5. Commit → push → review → checks → merge/close ──
                if not self._integrate(result, branch, trunk, loop):
                    return result
            else:
                console.print("[yellow]⚠ No changes detected, skipping review.[/]")

            result.success = True

            # ── 6. Record ──
            self.ledger.append(LedgerEntry(
                number=result.number,
                success=True,
                review_id=result.review_id,
                headline=result.headline,
                changed_files=len(result.changed_files),
                cost=result.cost,
            ))
        except Exception as e:
            logger.exception(f"[ITERATION] Iteration {result.number} failed")
            result.success = False
            result.error = str(e)

        return result

    # -----------------------------------------------------------------------
    # Steps
    # -----------------------------------------------------------------------

    def _build_prompt(self, task: str, loop: LoopConfig) -> str:
        snapshot = WorkspaceSnapshot()
        if self.snapshots:
            try:
                snapshot = self.snapshots.collect()
            except Exception as e:
                logger.warning(f"[ITERATION] Snapshot unavailable: {e}")

        notes_tail = self.ledger.read_tail(self.config.notes.tail_chars)

        recent: list[ContextNote] = []
        if self.context_notes:
            try:
                recent = self.context_notes.recent(self.config.context.chat_entries)
            except Exception as e:
                logger.warning(f"[ITERATION] Free-form context unavailable: {e}")

        assembler = ContextAssembler(self.config.context, completion_signal=loop.completion_signal)
        return assembler.build(task, snapshot, notes_tail, recent)

    def _generate(self, prompt: str) -> GenerationResult | None:
        if self.generator is None:
            logger.warning("[ITERATION] No change generator configured, using placeholder summary")
            return None

        console.print(f"[bold blue]🤖 Generating change ({self.generator.name})...[/]")
        try:
            generation = self.generator.generate(prompt, self.working_dir)
        except Exception as e:
            logger.warning(f"[ITERATION] Change generator unavailable, using placeholder summary: {e}")
            return None

        if not generation or not generation.summary.strip():
            logger.warning("[ITERATION] Change generator returned an empty summary, using placeholder")
            return None
        return generation

    def _integrate(self, result: IterationResult, branch: str, trunk: str, loop: LoopConfig) -> bool:
        """Commit, push, review, and merge. Returns False if the iteration failed."""
        review_cfg = self.config.review

        message = commit_message_for(result.number, result.summary)
        self.vcs.commit(message)
        console.print(f"[cyan]💬 Committed:[/] {escape(message)}")

        self.vcs.push(branch)
        console.print("[cyan]📤 Pushed branch[/]")

        result.review_id = self.review.submit(branch, message, result.summary)
        console.print(f"[cyan]🔀 Opened PR #{result.review_id}[/]")

        passed = self.review.poll_checks(
            result.review_id,
            review_cfg.check_timeout_seconds,
            review_cfg.poll_interval_seconds,
        )

        if not passed:
            self.review.close(result.review_id, CHECKS_FAILED_REASON)
            result.success = False
            result.error = CHECKS_FAILED_ERROR
            console.print(f"[red]❌ PR #{result.review_id} closed: {CHECKS_FAILED_REASON}[/]")
            return False

        self.review.merge(result.review_id, loop.merge_strategy)
        console.print(f"[green]✅ PR #{result.review_id} merged ({loop.merge_strategy})[/]")

        self.vcs.checkout(trunk)
        self.vcs.pull(trunk)
        console.print(f"[dim]📥 Pulled latest {trunk}[/]")
        return True
