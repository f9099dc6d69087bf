"""
CONTILOOP Context Assembler

Builds the single prompt handed to the change generator each iteration.
Every section is capped so the prompt does not grow with the number of
iterations already run.
"""

from __future__ import annotations

from contiloop.config_loader import ContextConfig
from contiloop.context_notes import ContextNote
from contiloop.snapshot import WorkspaceSnapshot

PRODUCTION_INSTRUCTION = (
    "4. This is a production workspace: keep changes minimal and backwards compatible, "
    "and do not touch deployment or release configuration."
)


def _clip(text: str, limit: int) -> str:
    text = text.strip()
    if limit <= 0 or len(text) <= limit:
        return text
    return text[: max(0, limit - 3)].rstrip() + "..."


class ContextAssembler:
    def __init__(self, config: ContextConfig | None = None, completion_signal: str = "ITERATION_COMPLETE"):
        self.config = config or ContextConfig()
        self.completion_signal = completion_signal

    def build(
        self,
        task: str,
        snapshot: WorkspaceSnapshot | None = None,
        notes_tail: str = "",
        recent_context: list[ContextNote] | None = None,
    ) -> str:
        snapshot = snapshot or WorkspaceSnapshot()
        parts = ["You are part of an autonomous development loop iteration."]

        if notes_tail.strip():
            parts.append(f"## Context from Previous Iterations\n{notes_tail.strip()}")

        parts.append(self._workspace_section(snapshot))

        directories = snapshot.directories[: self.config.max_directories]
        key_files = snapshot.key_files[: self.config.max_directories]
        if directories or key_files:
            structure = ["## Project Structure"]
            if directories:
                structure.append("```\n" + "\n".join(directories) + "\n```")
            if key_files:
                structure.append("**Key files:** " + ", ".join(key_files))
            parts.append("\n".join(structure))

        commits = snapshot.recent_commits[: self.config.history_entries]
        if commits:
            parts.append(
                "## Recent Commits\n" + "\n".join(f"- {c.hash[:7]}: {c.message}" for c in commits)
            )

        notes = (recent_context or [])[-self.config.chat_entries:] if self.config.chat_entries else []
        if notes:
            parts.append(
                "## Recent User Context\n"
                + "\n".join(f"- {_clip(n.render(), self.config.max_context_entry_chars)}" for n in notes)
            )

        parts.append(f"## Your Task\n{task.strip()}")
        instructions = [
            "1. Make focused changes that move the task forward.",
            f"2. Only when the whole task is complete, output exactly: {self.completion_signal}",
            "3. Finish with a brief summary of what you did; its first line becomes the commit title.",
        ]
        if snapshot.is_production:
            instructions.append(PRODUCTION_INSTRUCTION)
        parts.append("## Instructions\n" + "\n".join(instructions))

        return "\n\n".join(parts)

    @staticmethod
    def _workspace_section(snapshot: WorkspaceSnapshot) -> str:
        environment = "production" if snapshot.is_production else "non-production"
        if snapshot.mode:
            environment += f" ({snapshot.mode})"
        return (
            "## Current Project State\n"
            f"**Workspace:** {snapshot.name}\n"
            f"**Language:** {snapshot.main_language}\n"
            f"**Branch:** {snapshot.branch}\n"
            f"**Modified Files:** {len(snapshot.modified_files)}\n"
            f"**Environment:** {environment}"
        )
