from __future__ import annotations

from pathlib import Path

import pytest

from contiloop.agents import ChangeGenerator, GenerationResult
from contiloop.config_loader import ContiloopConfig, ReviewConfig
from contiloop.executor import IterationExecutor
from contiloop.ledger import NotesLedger
from contiloop.review import CheckStatus, ReviewError, ReviewGateway, ReviewPlatform, ReviewRecord
from contiloop.workspace import VersionControl, WorkspaceError


class FakeClock:
    """Monotonic clock whose sleep just moves time forward."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeVersionControl(VersionControl):
    def __init__(self, fail_on: set[str] | None = None):
        self.fail_on = fail_on or set()
        self.pending: list[str] = []
        self.calls: list[tuple] = []
        self.commits: list[str] = []
        self.branch = "main"

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if name in self.fail_on:
            raise WorkspaceError(f"{name} exploded")

    def create_branch(self, name: str, start_point: str) -> None:
        self._record("create_branch", name, start_point)
        self.branch = name

    def changed_files(self) -> list[str]:
        self._record("changed_files")
        return list(self.pending)

    def commit(self, message: str) -> str | None:
        self._record("commit", message)
        if not self.pending:
            return None
        self.commits.append(message)
        self.pending = []
        return f"{len(self.commits):040x}"

    def push(self, branch: str) -> None:
        self._record("push", branch)

    def checkout(self, ref: str) -> None:
        self._record("checkout", ref)
        self.branch = ref

    def pull(self, branch: str) -> None:
        self._record("pull", branch)

    def current_branch(self) -> str:
        self._record("current_branch")
        return self.branch

    def recent_commits(self, count: int = 5) -> list[str]:
        return ["abc1234def first commit", "0123456789 second commit"][:count]


class FakeReviewPlatform(ReviewPlatform):
    """
    Scripted review platform. `statuses` is consumed one per poll; the
    last one repeats. Exceptions in the script are raised instead.
    """

    def __init__(self, statuses: list | None = None, fail_submit: bool = False, fail_close: bool = False):
        self.statuses = list(statuses or [CheckStatus(success=1)])
        self.fail_submit = fail_submit
        self.fail_close = fail_close
        self.submitted: list[tuple[str, str, str]] = []
        self.status_calls = 0
        self.merged: list[tuple[str, str]] = []
        self.closed: list[tuple[str, str]] = []
        self._next_id = 101

    def submit(self, branch: str, title: str, body: str) -> str:
        if self.fail_submit:
            raise ReviewError("gh pr create failed")
        self.submitted.append((branch, title, body))
        review_id = str(self._next_id)
        self._next_id += 1
        return review_id

    def status(self, review_id: str) -> ReviewRecord:
        self.status_calls += 1
        item = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(item, Exception):
            raise item
        return ReviewRecord(id=review_id, checks=item)

    def merge(self, review_id: str, strategy: str) -> None:
        self.merged.append((review_id, strategy))

    def close(self, review_id: str, reason: str) -> None:
        if self.fail_close:
            raise RuntimeError("gh pr close failed")
        self.closed.append((review_id, reason))


class FakeGenerator(ChangeGenerator):
    """
    Returns scripted summaries in order (the last one repeats) and
    optionally "writes" files by marking them pending on the fake VCS.
    """

    name = "fake"

    def __init__(self, summaries: list | None = None, vcs: FakeVersionControl | None = None,
                 writes: list[str] | None = None):
        self.summaries = list(summaries or ["Did some work"])
        self.vcs = vcs
        self.writes = writes or []
        self.prompts: list[str] = []

    def generate(self, prompt: str, working_dir: Path) -> GenerationResult:
        self.prompts.append(prompt)
        item = self.summaries.pop(0) if len(self.summaries) > 1 else self.summaries[0]
        if isinstance(item, Exception):
            raise item
        if self.vcs is not None and self.writes:
            self.vcs.pending = list(self.writes)
        return GenerationResult(summary=item, changed_files=list(self.writes))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> ContiloopConfig:
    return ContiloopConfig(review=ReviewConfig(check_timeout_seconds=60, poll_interval_seconds=10))


@pytest.fixture
def make_executor(tmp_path, config, clock):
    def _make(vcs, platform, generator, **kwargs) -> IterationExecutor:
        return IterationExecutor(
            vcs=vcs,
            review=ReviewGateway(platform, clock=clock, sleep=clock.sleep),
            ledger=NotesLedger(tmp_path / ".contiloop" / "notes.md"),
            generator=generator,
            config=kwargs.pop("config", config),
            working_dir=tmp_path,
            **kwargs,
        )
    return _make
