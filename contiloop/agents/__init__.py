"""
CONTILOOP Change Generation

A change generator is:
  - Given the assembled iteration prompt and the working directory
  - Expected to edit files in place
  - Required to return a short natural-language summary

Generators are stateless between iterations. State lives in the repo
and in the notes ledger.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import BaseModel


class GenerationResult(BaseModel):
    summary: str
    changed_files: list[str] = []
    tokens_used: int = 0


class ChangeGenerator(ABC):
    """
    External capability: turn a prompt into edits plus a summary.

    Implementations raise `GenerationUnavailableError` (or any exception)
    when the backend cannot be used; the loop degrades to a fallback
    summary instead of failing the iteration.
    """

    name: str = "unknown"

    @abstractmethod
    def generate(self, prompt: str, working_dir: Path) -> GenerationResult:
        ...
