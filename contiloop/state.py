from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class LoopPhase(str, Enum):
    """Lifecycle of a single LoopController.run call."""
    IDLE = "idle"
    RUNNING = "running"
    EXHAUSTED = "exhausted"
    COMPLETED = "completed"
    CONFIG_REJECTED = "config_rejected"


class IterationResult(BaseModel):
    """Outcome of one propose → validate → integrate pass."""
    model_config = ConfigDict(validate_assignment=True)

    number: int = Field(ge=1)
    success: bool = False
    cost: float = Field(default=0.0, ge=0)
    summary: str = ""
    review_id: str | None = None
    branch: str | None = None
    changed_files: list[str] = Field(default_factory=list)
    error: str | None = None

    @property
    def headline(self) -> str:
        lines = self.summary.strip().splitlines()
        return lines[0].strip() if lines else ""


class RunState(BaseModel):
    """
    Run-scoped counters owned by the LoopController.
    A new instance is created for every run and dropped when it ends.
    """
    iterations: int = 0
    start_time: float = 0.0
    total_cost: float = 0.0
    consecutive_signal_count: int = 0

    def add_cost(self, cost: float) -> None:
        if cost < 0:
            raise ValueError(f"Iteration cost must be non-negative, got {cost}")
        self.total_cost += cost

    def elapsed(self, now: float) -> float:
        return max(0.0, now - self.start_time)


class RunSummary(BaseModel):
    """Final accounting emitted when a run exits."""
    iterations: int
    total_cost: float
    elapsed_seconds: float
    reason: str
    phase: LoopPhase
    results: list[IterationResult] = Field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)
