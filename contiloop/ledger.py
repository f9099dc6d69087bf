"""
CONTILOOP Notes Ledger

Append-only markdown log of iteration outcomes. This is the loop's
memory between iterations: the tail of this file is fed back into the
next prompt, so reads are always bounded.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, Field

LEDGER_HEADER = "# CONTILOOP Iteration Notes\n"


class LedgerEntry(BaseModel):
    number: int
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat(timespec="seconds"))
    success: bool
    review_id: str | None = None
    headline: str = ""
    changed_files: int = 0
    cost: float = 0.0

    def render(self) -> str:
        status = "✅ Success" if self.success else "❌ Failed"
        review = f"#{self.review_id}" if self.review_id else "none"
        return (
            f"\n## Iteration {self.number}\n"
            f"**Timestamp:** {self.timestamp}\n"
            f"**Status:** {status}\n"
            f"**Review:** {review}\n"
            f"**Summary:** {self.headline or '(no summary)'}\n"
            f"**Changed Files:** {self.changed_files}\n"
            f"**Cost:** ${self.cost:.2f}\n"
            f"\n---\n"
        )


class NotesLedger:
    def __init__(self, path: Path):
        self.path = path

    def append(self, entry: LedgerEntry) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        is_new = not self.path.exists() or self.path.stat().st_size == 0
        with open(self.path, "a", encoding="utf-8") as f:
            if is_new:
                f.write(LEDGER_HEADER)
            f.write(entry.render())
        logger.debug(f"[LEDGER] Recorded iteration {entry.number} in {self.path}")

    def read_tail(self, max_chars: int) -> str:
        """Return at most `max_chars` of the most recent ledger content."""
        if max_chars <= 0:
            return ""
        try:
            content = self.path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return ""
        except OSError as e:
            logger.warning(f"[LEDGER] Could not read {self.path}: {e}")
            return ""
        return content[-max_chars:]
