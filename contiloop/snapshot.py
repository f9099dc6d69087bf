"""
CONTILOOP Snapshot Collector

Point-in-time description of the workspace and its version-control
state, consumed once per iteration by the context assembler.

Every probe degrades to a default: a missing manifest, an unreadable
directory or a failing git call never aborts an iteration.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from loguru import logger

from contiloop.config_loader import EnvironmentConfig
from contiloop.workspace import VersionControl

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SKIP_DIRS = {
    ".git", ".contiloop", ".context", ".venv", "venv", "env",
    "node_modules", "target", "dist", "build", "__pycache__",
    ".tox", ".mypy_cache", ".pytest_cache", ".ruff_cache",
    ".next", ".nuxt", "coverage", ".cargo", "vendor",
}

# Manifest → language. Checked in order; the first hit wins.
MANIFEST_LANGUAGES = [
    ("tsconfig.json", "typescript"),
    ("package.json", "javascript/typescript"),
    ("pyproject.toml", "python"),
    ("setup.py", "python"),
    ("Cargo.toml", "rust"),
    ("go.mod", "go"),
    ("pom.xml", "java"),
]

EXTENSION_LANGUAGES = {
    ".py": "python",
    ".rs": "rust",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".go": "go",
    ".java": "java",
    ".rb": "ruby",
}

KEY_FILE_SUFFIXES = (".md", ".json", ".toml", ".yml", ".yaml")

# ---------------------------------------------------------------------------
# Data Models
# ---------------------------------------------------------------------------

@dataclass
class CommitInfo:
    hash: str
    message: str

@dataclass
class WorkspaceSnapshot:
    name: str = "unknown"
    main_language: str = "unknown"
    branch: str = "unknown"
    recent_commits: List[CommitInfo] = field(default_factory=list)
    modified_files: List[str] = field(default_factory=list)
    directories: List[str] = field(default_factory=list)
    key_files: List[str] = field(default_factory=list)
    is_production: bool = False
    mode: str = ""

# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------

def _parse_commit(line: str) -> CommitInfo:
    sha, _, message = line.strip().partition(" ")
    return CommitInfo(hash=sha[:8], message=message)


def detect_language(repo_path: Path, tracked_files: List[str] | None = None) -> str:
    """Manifest files first, then the most common tracked source extension."""
    for manifest, language in MANIFEST_LANGUAGES:
        if (repo_path / manifest).exists():
            return language

    counts: Dict[str, int] = {}
    for rel in tracked_files or []:
        if any(part in SKIP_DIRS for part in Path(rel).parts):
            continue
        language = EXTENSION_LANGUAGES.get(Path(rel).suffix)
        if language:
            counts[language] = counts.get(language, 0) + 1

    if not counts:
        return "unknown"
    return max(counts.items(), key=lambda x: x[1])[0]


class SnapshotCollector:
    def __init__(
        self,
        repo_path: Path,
        vcs: VersionControl,
        environment: EnvironmentConfig | None = None,
        commit_count: int = 5,
    ):
        self.repo_path = repo_path.resolve()
        self.vcs = vcs
        self.environment = environment or EnvironmentConfig()
        self.commit_count = commit_count

    def collect(self) -> WorkspaceSnapshot:
        snapshot = WorkspaceSnapshot(
            name=self.repo_path.name,
            is_production=self.environment.is_production,
            mode=self.environment.mode,
        )

        directories, key_files = self._structure()
        snapshot.directories = directories
        snapshot.key_files = key_files

        tracked: List[str] = []
        try:
            tracked = self.vcs.tracked_files()
            snapshot.branch = self.vcs.current_branch()
            snapshot.recent_commits = [_parse_commit(c) for c in self.vcs.recent_commits(self.commit_count)]
            snapshot.modified_files = self.vcs.changed_files()
        except Exception as e:
            logger.warning(f"[SNAPSHOT] Version-control probe failed: {e}")

        snapshot.main_language = detect_language(self.repo_path, tracked)

        logger.debug(
            f"[SNAPSHOT] {snapshot.name}: {snapshot.main_language}, "
            f"branch={snapshot.branch}, {len(snapshot.modified_files)} modified"
        )
        return snapshot

    def _structure(self) -> tuple[List[str], List[str]]:
        directories: List[str] = []
        key_files: List[str] = []
        try:
            for entry in sorted(self.repo_path.iterdir()):
                if entry.is_dir() and not entry.name.startswith(".") and entry.name not in SKIP_DIRS:
                    directories.append(entry.name)
                elif entry.is_file() and entry.name.endswith(KEY_FILE_SUFFIXES):
                    key_files.append(entry.name)
        except OSError as e:
            logger.debug(f"[SNAPSHOT] Could not list {self.repo_path}: {e}")
        return directories, key_files
