"""
Configuration loader for CONTILOOP.
Merges defaults with per-repo .contiloop/config.yaml overrides.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field


class ConfigurationError(Exception):
    """Raised when a run is requested with an unusable loop configuration."""
    pass


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

MergeStrategy = Literal["squash", "merge", "rebase"]


class LoopConfig(BaseModel):
    """Termination policy for a single run. Immutable once a run starts."""

    model_config = ConfigDict(frozen=True)

    max_iterations: int = Field(default=5, ge=0)
    max_duration_seconds: float = Field(default=0, ge=0)
    max_cost: float = Field(default=0, ge=0)
    merge_strategy: MergeStrategy = "squash"
    completion_signal: str = Field(default="ITERATION_COMPLETE", min_length=1)
    completion_threshold: int = Field(default=1, ge=1)

    @property
    def has_cap(self) -> bool:
        return bool(self.max_iterations or self.max_duration_seconds or self.max_cost)


class ReviewConfig(BaseModel):
    base_branch: str = "main"
    remote: str = "origin"
    check_timeout_seconds: float = Field(default=1800, ge=0)
    poll_interval_seconds: float = Field(default=10, ge=0)
    delete_branch_on_merge: bool = True


class NotesConfig(BaseModel):
    path: str = ".contiloop/notes.md"
    tail_chars: int = Field(default=1000, ge=0)


class ContextConfig(BaseModel):
    path: str = ".contiloop/context.jsonl"
    history_entries: int = Field(default=3, ge=0)
    chat_entries: int = Field(default=3, ge=0)
    max_directories: int = Field(default=5, ge=0)
    max_context_entry_chars: int = Field(default=500, ge=0)


class GenerationConfig(BaseModel):
    model: str = "anthropic/claude-sonnet-4-20250514"
    max_steps: int = Field(default=15, ge=1)
    max_tokens: int = 4096
    cost_per_iteration: float = Field(default=0.05, ge=0)


class WorkspaceConfig(BaseModel):
    state_dir: str = ".contiloop"
    branch_prefix: str = "contiloop"
    log_dir: str = ".contiloop/logs"


class EnvironmentConfig(BaseModel):
    is_production: bool = False
    mode: str = "feature-development"


class ContiloopConfig(BaseModel):
    loop: LoopConfig = Field(default_factory=LoopConfig)
    review: ReviewConfig = Field(default_factory=ReviewConfig)
    notes: NotesConfig = Field(default_factory=NotesConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    environment: EnvironmentConfig = Field(default_factory=EnvironmentConfig)


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(
    repo_path: Path | None = None,
    loop_overrides: dict[str, Any] | None = None,
    review_overrides: dict[str, Any] | None = None,
) -> ContiloopConfig:
    """
    Load config by merging:
      1. Built-in defaults (contiloop/config.yaml)
      2. Repo-level overrides (<repo>/.contiloop/config.yaml)
      3. Explicit loop / review overrides (CLI flags); None values are ignored
    """
    with open(_DEFAULT_CONFIG_PATH, "r") as f:
        base: dict[str, Any] = yaml.safe_load(f) or {}

    if repo_path:
        repo_config = repo_path / ".contiloop" / "config.yaml"
        if repo_config.exists():
            with open(repo_config, "r") as f:
                overrides: dict[str, Any] = yaml.safe_load(f) or {}
            base = _deep_merge(base, overrides)

    for section, section_flags in (("loop", loop_overrides), ("review", review_overrides)):
        flags = {k: v for k, v in (section_flags or {}).items() if v is not None}
        if flags:
            base = _deep_merge(base, {section: flags})

    return ContiloopConfig(**base)


def validate_api_keys() -> dict[str, bool]:
    """Check which API keys are available."""
    return {
        "ANTHROPIC_API_KEY": bool(os.environ.get("ANTHROPIC_API_KEY")),
        "OPENAI_API_KEY":    bool(os.environ.get("OPENAI_API_KEY")),
        "GEMINI_API_KEY":    bool(os.environ.get("GEMINI_API_KEY")),
        "GITHUB_TOKEN":      bool(os.environ.get("GITHUB_TOKEN") or os.environ.get("GH_TOKEN")),
    }
