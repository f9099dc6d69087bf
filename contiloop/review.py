"""
CONTILOOP Review Gateway — The Checkpoint

Wraps the hosted review/CI lifecycle of one iteration:
submit → poll checks → merge or close.

The platform itself sits behind `ReviewPlatform` so the gateway can be
driven by fakes. Polling runs on an injectable clock/sleep pair so
timeouts and fail-fast behaviour are deterministic under test.
"""

from __future__ import annotations

import json
import re
import subprocess
import time
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Literal

from loguru import logger
from pydantic import BaseModel, Field

from contiloop.config_loader import MergeStrategy


class ReviewError(Exception):
    """A review-platform operation failed."""
    pass


class TransientReviewError(ReviewError):
    """A status fetch failed in a way worth retrying on the next poll."""
    pass


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class CheckStatus(BaseModel):
    pending: int = 0
    success: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.success + self.failed

    @property
    def has_failures(self) -> bool:
        return self.failed > 0

    @property
    def passed(self) -> bool:
        return self.pending == 0 and self.success >= 1 and self.failed == 0


class ReviewRecord(BaseModel):
    id: str
    state: Literal["open", "closed", "merged"] = "open"
    checks: CheckStatus = Field(default_factory=CheckStatus)


_SUCCESS_CONCLUSIONS = {"success", "neutral", "skipped"}
_PENDING_STATES = {"queued", "in_progress", "pending", "waiting", "requested", "expected"}


def tally_checks(raw_checks: list[dict[str, Any]] | None) -> CheckStatus:
    """
    Classify raw check records into pending / success / failed counts.

    Accepts both GitHub CheckRun records (`status` + `conclusion`) and
    legacy StatusContext records (`state`).
    """
    status = CheckStatus()
    for check in raw_checks or []:
        conclusion = (check.get("conclusion") or "").lower()
        run_status = (check.get("status") or "").lower()
        state = (check.get("state") or "").lower()

        if state and not run_status:
            # StatusContext: SUCCESS / PENDING / EXPECTED / FAILURE / ERROR
            if state in _SUCCESS_CONCLUSIONS:
                status.success += 1
            elif state in _PENDING_STATES:
                status.pending += 1
            else:
                status.failed += 1
            continue

        if run_status in _PENDING_STATES or not conclusion:
            status.pending += 1
        elif conclusion in _SUCCESS_CONCLUSIONS:
            status.success += 1
        else:
            status.failed += 1
    return status


# ---------------------------------------------------------------------------
# Platform interface
# ---------------------------------------------------------------------------

class ReviewPlatform(ABC):
    """Hosted review platform: submit, status, merge, close."""

    @abstractmethod
    def submit(self, branch: str, title: str, body: str) -> str:
        ...

    @abstractmethod
    def status(self, review_id: str) -> ReviewRecord:
        ...

    @abstractmethod
    def merge(self, review_id: str, strategy: MergeStrategy) -> None:
        ...

    @abstractmethod
    def close(self, review_id: str, reason: str) -> None:
        ...


_MERGE_FLAGS = {
    "squash": "--squash",
    "merge": "--merge",
    "rebase": "--rebase",
}

_PR_URL = re.compile(r"/pull/(\d+)")


class GitHubReviewPlatform(ReviewPlatform):
    """Pull requests and checks through the GitHub CLI (`gh`)."""

    def __init__(
        self,
        repo_path: Path,
        base_branch: str = "main",
        delete_branch: bool = True,
        timeout: int = 60,
    ):
        self.repo_path = repo_path.resolve()
        self.base_branch = base_branch
        self.delete_branch = delete_branch
        self.timeout = timeout

    def submit(self, branch: str, title: str, body: str) -> str:
        out = self._gh(
            "pr", "create",
            "--title", title,
            "--body", body,
            "--head", branch,
            "--base", self.base_branch,
        )
        match = _PR_URL.search(out)
        if not match:
            raise ReviewError(f"Failed to extract PR number from: {out.strip()}")
        return match.group(1)

    def status(self, review_id: str) -> ReviewRecord:
        try:
            out = self._gh("pr", "view", review_id, "--json", "number,state,statusCheckRollup")
            data = json.loads(out)
        except (ReviewError, json.JSONDecodeError) as e:
            raise TransientReviewError(f"Failed to get PR #{review_id} status: {e}") from e

        state = str(data.get("state") or "open").lower()
        if state not in ("open", "closed", "merged"):
            state = "open"
        return ReviewRecord(
            id=str(data.get("number", review_id)),
            state=state,
            checks=tally_checks(data.get("statusCheckRollup")),
        )

    def merge(self, review_id: str, strategy: MergeStrategy) -> None:
        args = ["pr", "merge", review_id, _MERGE_FLAGS[strategy]]
        if self.delete_branch:
            args.append("--delete-branch")
        self._gh(*args)
        logger.info(f"[REVIEW] PR #{review_id} merged ({strategy})")

    def close(self, review_id: str, reason: str) -> None:
        self._gh("pr", "close", review_id, "--comment", reason)
        logger.info(f"[REVIEW] PR #{review_id} closed: {reason}")

    def _gh(self, *args: str) -> str:
        cmd = ["gh", *args]
        try:
            result = subprocess.run(
                cmd,
                cwd=self.repo_path,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ReviewError(f"gh failed: {' '.join(cmd[:3])}: {e}") from e
        if result.returncode != 0:
            raise ReviewError(f"gh failed: {' '.join(cmd[:3])}\n{result.stderr.strip()}")
        return result.stdout


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class PollState(str, Enum):
    POLLING = "polling"
    PASSED = "passed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class ReviewGateway:
    """
    Review lifecycle for one iteration, on top of a ReviewPlatform.
    """

    def __init__(
        self,
        platform: ReviewPlatform,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.platform = platform
        self._clock = clock
        self._sleep = sleep
        self.last_poll_state: PollState | None = None

    def submit(self, branch: str, title: str, body: str) -> str:
        review_id = self.platform.submit(branch, title, body)
        logger.info(f"[REVIEW] Submitted PR #{review_id} for {branch}")
        return review_id

    def poll_checks(self, review_id: str, timeout_seconds: float, interval_seconds: float) -> bool:
        """
        Wait for the checks on `review_id` to settle.

        Returns False on the first failed check, True once nothing is
        pending and at least one check succeeded, and False once
        `timeout_seconds` has elapsed. Status-fetch errors are retried
        after `interval_seconds`.
        """
        start = self._clock()
        state = PollState.POLLING
        polls = 0

        logger.info(f"[REVIEW] PR #{review_id}: waiting for checks (max {timeout_seconds:g}s)")

        while state is PollState.POLLING:
            if self._clock() - start >= timeout_seconds:
                state = PollState.TIMED_OUT
                break

            polls += 1
            try:
                checks = self.platform.status(review_id).checks
            except ReviewError as e:
                logger.warning(f"[REVIEW] PR #{review_id}: status fetch failed (poll {polls}): {e}")
                self._sleep(interval_seconds)
                continue

            logger.info(
                f"[REVIEW] PR #{review_id} checks: {checks.success} passed / "
                f"{checks.pending} pending / {checks.failed} failed ({checks.total} total)"
            )

            if checks.has_failures:
                state = PollState.FAILED
            elif checks.passed:
                state = PollState.PASSED
            else:
                self._sleep(interval_seconds)

        self.last_poll_state = state
        elapsed = self._clock() - start
        if state is PollState.PASSED:
            logger.info(f"[REVIEW] PR #{review_id}: all checks passed after {elapsed:.0f}s")
        elif state is PollState.FAILED:
            logger.warning(f"[REVIEW] PR #{review_id}: checks failed after {elapsed:.0f}s")
        else:
            logger.warning(f"[REVIEW] PR #{review_id}: timed out waiting for checks ({elapsed:.0f}s)")
        return state is PollState.PASSED

    def merge(self, review_id: str, strategy: MergeStrategy) -> None:
        self.platform.merge(review_id, strategy)

    def close(self, review_id: str, reason: str) -> None:
        """Best effort; a failed close never changes the iteration outcome."""
        try:
            self.platform.close(review_id, reason)
        except Exception as e:
            logger.warning(f"[REVIEW] Failed to close PR #{review_id}: {e}")
