"""
CONTILOOP Workspace — The Change Integrator

Wraps the version-control primitives one iteration needs:
branch, status, commit, push, checkout, pull.

The loop owns the checkout exclusively and mutates it sequentially,
so there is no locking here. Branch names carry a timestamp and a
random salt to avoid collisions between runs.
"""

from __future__ import annotations

import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

from loguru import logger


class WorkspaceError(Exception):
    """A version-control operation failed. Fatal to the current iteration only."""
    pass


class VersionControl(ABC):
    """Narrow interface the iteration executor drives."""

    @abstractmethod
    def create_branch(self, name: str, start_point: str) -> None:
        """Create `name` from `start_point` and check it out."""
        ...

    @abstractmethod
    def changed_files(self) -> list[str]:
        """Paths with uncommitted changes, in `git status` order."""
        ...

    @abstractmethod
    def commit(self, message: str) -> str | None:
        """Stage everything and commit. Returns the new sha, or None if clean."""
        ...

    @abstractmethod
    def push(self, branch: str) -> None:
        ...

    @abstractmethod
    def checkout(self, ref: str) -> None:
        ...

    @abstractmethod
    def pull(self, branch: str) -> None:
        """Fast-forward the current branch from the remote."""
        ...

    def current_branch(self) -> str:
        return "unknown"

    def recent_commits(self, count: int = 5) -> list[str]:
        return []

    def tracked_files(self) -> list[str]:
        return []


class GitWorkspace(VersionControl):
    """
    Drives the git CLI inside a single repository checkout.
    """

    def __init__(
        self,
        repo_path: Path,
        remote: str = "origin",
        ignored_prefixes: tuple[str, ...] = (".contiloop/",),
        timeout: int = 60,
    ):
        self.repo_path = repo_path.resolve()
        self.remote = remote
        self.ignored_prefixes = ignored_prefixes
        self.timeout = timeout

    @property
    def path(self) -> Path:
        return self.repo_path

    def create_branch(self, name: str, start_point: str) -> None:
        self._git("checkout", "-b", name, start_point)
        logger.info(f"[WORKSPACE] Created branch {name} from {start_point}")

    def changed_files(self) -> list[str]:
        status = self._git("status", "--porcelain", "--untracked-files=all", capture=True)
        files = []
        for line in status.splitlines():
            if len(line) < 4:
                continue
            path = line[3:]
            # Renames are reported as "old -> new"
            if " -> " in path:
                path = path.split(" -> ", 1)[1]
            path = path.strip('"')
            if path.startswith(self.ignored_prefixes):
                continue
            files.append(path)
        return files

    def commit(self, message: str) -> str | None:
        """Stage and commit everything except the loop's own state directory."""
        self._git("add", "-A")
        for prefix in self.ignored_prefixes:
            self._git("reset", "-q", "--", prefix.rstrip("/"), check=False)

        staged = self._git("diff", "--cached", "--name-only", capture=True)
        if not staged.strip():
            logger.info("[WORKSPACE] Nothing to commit.")
            return None

        self._git("commit", "-m", message)
        sha = self._git("rev-parse", "HEAD", capture=True).strip()
        logger.info(f"[WORKSPACE] Committed {sha[:8]}: {message}")
        return sha

    def push(self, branch: str) -> None:
        self._git("push", "-u", self.remote, branch)
        logger.info(f"[WORKSPACE] Pushed {branch} to {self.remote}")

    def checkout(self, ref: str) -> None:
        self._git("checkout", ref)

    def pull(self, branch: str) -> None:
        self._git("pull", "--ff-only", self.remote, branch)
        logger.info(f"[WORKSPACE] Fast-forwarded from {self.remote}/{branch}")

    def current_branch(self) -> str:
        try:
            return self._git("rev-parse", "--abbrev-ref", "HEAD", capture=True).strip() or "unknown"
        except WorkspaceError:
            return "unknown"

    def recent_commits(self, count: int = 5) -> list[str]:
        try:
            log = self._git("log", "--oneline", f"-{count}", capture=True)
        except WorkspaceError:
            return []
        return [line for line in log.splitlines() if line.strip()]

    def tracked_files(self) -> list[str]:
        try:
            return self._git("ls-files", capture=True).splitlines()
        except WorkspaceError:
            return []

    def _git(self, *args: str, check: bool = True, capture: bool = False) -> str:
        return self._run_cmd(["git", *args], cwd=self.repo_path, check=check, capture=capture, timeout=self.timeout)

    @staticmethod
    def _run_cmd(cmd: list[str], cwd: Path, check: bool = True, capture: bool = False, timeout: int = 60) -> str:
        try:
            result = subprocess.run(cmd, cwd=cwd, capture_output=True, text=True, timeout=timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise WorkspaceError(f"Git failed: {' '.join(cmd)}\n{e}") from e
        if check and result.returncode != 0:
            raise WorkspaceError(f"Git failed: {' '.join(cmd)}\n{result.stderr}")
        return result.stdout if capture else ""
