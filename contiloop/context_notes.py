"""
Free-form context notes.

Operator-supplied instructions ("focus on the parser next", "blocked on
API key") kept in an append-only JSONL file and replayed into each
iteration's prompt. Only the most recent entries are ever read.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, Field, ValidationError


class ContextNote(BaseModel):
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat(timespec="seconds"))
    text: str

    def render(self) -> str:
        return f"[{self.timestamp}] {self.text}"


class ContextNotes:
    def __init__(self, path: Path):
        self.path = path

    def add(self, text: str) -> ContextNote:
        note = ContextNote(text=text.strip())
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(note.model_dump_json() + "\n")
        return note

    def recent(self, limit: int) -> list[ContextNote]:
        if limit <= 0 or not self.path.exists():
            return []

        notes: list[ContextNote] = []
        try:
            lines = self.path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            logger.warning(f"[CONTEXT] Could not read {self.path}: {e}")
            return []

        for line in lines:
            if not line.strip():
                continue
            try:
                notes.append(ContextNote(**json.loads(line)))
            except (json.JSONDecodeError, TypeError, ValidationError):
                logger.debug(f"[CONTEXT] Skipping malformed note line: {line[:60]}")
        return notes[-limit:]
