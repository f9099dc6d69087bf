import json
import subprocess

import pytest
from conftest import FakeClock, FakeReviewPlatform

from contiloop.review import (
    CheckStatus,
    GitHubReviewPlatform,
    PollState,
    ReviewError,
    ReviewGateway,
    TransientReviewError,
    tally_checks,
)


# ---------------------------------------------------------------------------
# Check classification
# ---------------------------------------------------------------------------

def test_tally_check_runs():
    status = tally_checks([
        {"status": "COMPLETED", "conclusion": "SUCCESS"},
        {"status": "COMPLETED", "conclusion": "SKIPPED"},
        {"status": "IN_PROGRESS", "conclusion": ""},
        {"status": "QUEUED"},
        {"status": "COMPLETED", "conclusion": "FAILURE"},
        {"status": "COMPLETED", "conclusion": "TIMED_OUT"},
    ])
    assert status == CheckStatus(pending=2, success=2, failed=2)


def test_tally_status_contexts():
    status = tally_checks([
        {"state": "SUCCESS"},
        {"state": "PENDING"},
        {"state": "ERROR"},
    ])
    assert status == CheckStatus(pending=1, success=1, failed=1)


def test_no_checks_is_not_a_pass():
    status = tally_checks(None)
    assert status.total == 0
    assert not status.passed
    assert not status.has_failures


def test_pass_requires_no_pending_and_one_success():
    assert CheckStatus(success=1).passed
    assert not CheckStatus(success=1, pending=1).passed
    assert not CheckStatus(success=3, failed=1).passed


# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------

def _gateway(platform, clock):
    return ReviewGateway(platform, clock=clock, sleep=clock.sleep)


def test_poll_fails_fast_on_first_failed_check():
    clock = FakeClock()
    platform = FakeReviewPlatform([
        CheckStatus(pending=3),
        CheckStatus(pending=2, failed=1),
        CheckStatus(success=3),
    ])
    gateway = _gateway(platform, clock)

    assert gateway.poll_checks("7", timeout_seconds=600, interval_seconds=10) is False
    assert gateway.last_poll_state is PollState.FAILED
    assert platform.status_calls == 2
    assert clock.sleeps == [10]


def test_poll_passes_once_checks_settle():
    clock = FakeClock()
    platform = FakeReviewPlatform([CheckStatus(pending=1), CheckStatus(pending=1), CheckStatus(success=2)])
    gateway = _gateway(platform, clock)

    assert gateway.poll_checks("7", timeout_seconds=600, interval_seconds=5) is True
    assert gateway.last_poll_state is PollState.PASSED
    assert platform.status_calls == 3


def test_poll_times_out_when_no_checks_report():
    clock = FakeClock()
    platform = FakeReviewPlatform([CheckStatus()])
    gateway = _gateway(platform, clock)

    assert gateway.poll_checks("7", timeout_seconds=30, interval_seconds=10) is False
    assert gateway.last_poll_state is PollState.TIMED_OUT
    assert platform.status_calls == 3


def test_poll_retries_transient_status_errors():
    clock = FakeClock()
    platform = FakeReviewPlatform([TransientReviewError("502"), CheckStatus(success=1)])
    gateway = _gateway(platform, clock)

    assert gateway.poll_checks("7", timeout_seconds=60, interval_seconds=10) is True
    assert platform.status_calls == 2


def test_close_is_best_effort():
    gateway = ReviewGateway(FakeReviewPlatform(fail_close=True))
    gateway.close("7", "Checks failed")


# ---------------------------------------------------------------------------
# GitHub platform (gh CLI)
# ---------------------------------------------------------------------------

@pytest.fixture
def gh(monkeypatch, tmp_path):
    calls = []
    replies = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        stdout, returncode = replies.pop(0) if replies else ("", 0)
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr="gh: error")

    monkeypatch.setattr("contiloop.review.subprocess.run", fake_run)
    platform = GitHubReviewPlatform(tmp_path, base_branch="trunk")
    return platform, calls, replies


def test_gh_submit_parses_pr_number(gh):
    platform, calls, replies = gh
    replies.append(("https://github.com/acme/widgets/pull/42\n", 0))

    assert platform.submit("contiloop/iteration-1/x", "[Iteration 1] Add", "body") == "42"
    assert calls[0][:3] == ["gh", "pr", "create"]
    assert calls[0][calls[0].index("--base") + 1] == "trunk"
    assert calls[0][calls[0].index("--head") + 1] == "contiloop/iteration-1/x"


def test_gh_submit_without_url_raises(gh):
    platform, _, replies = gh
    replies.append(("something unexpected", 0))

    with pytest.raises(ReviewError):
        platform.submit("b", "t", "body")


def test_gh_status_reads_check_rollup(gh):
    platform, calls, replies = gh
    replies.append((json.dumps({
        "number": 42,
        "state": "OPEN",
        "statusCheckRollup": [
            {"status": "COMPLETED", "conclusion": "SUCCESS"},
            {"status": "IN_PROGRESS", "conclusion": None},
        ],
    }), 0))

    record = platform.status("42")

    assert record.id == "42"
    assert record.state == "open"
    assert record.checks == CheckStatus(pending=1, success=1)
    assert "statusCheckRollup" in calls[0][-1]


def test_gh_status_failure_is_transient(gh):
    platform, _, replies = gh
    replies.append(("", 1))

    with pytest.raises(TransientReviewError):
        platform.status("42")


def test_gh_merge_uses_strategy_flag(gh):
    platform, calls, _ = gh

    platform.merge("42", "rebase")

    assert calls[0] == ["gh", "pr", "merge", "42", "--rebase", "--delete-branch"]


def test_gh_close_posts_reason(gh):
    platform, calls, _ = gh

    platform.close("42", "Checks failed")

    assert calls[0] == ["gh", "pr", "close", "42", "--comment", "Checks failed"]


def test_gh_command_failure_raises(gh):
    platform, _, replies = gh
    replies.append(("", 1))

    with pytest.raises(ReviewError, match="gh: error"):
        platform.merge("42", "squash")


def test_poll_stops_on_failure_before_the_timeout():
    clock = FakeClock()
    platform = FakeReviewPlatform([
        CheckStatus(pending=2),
        CheckStatus(pending=2),
        CheckStatus(success=1, failed=1),
    ])
    gateway = _gateway(platform, clock)
    start = clock()

    assert gateway.poll_checks("7", timeout_seconds=30, interval_seconds=10) is False
    assert gateway.last_poll_state is PollState.FAILED
    assert platform.status_calls == 3
    assert clock() - start == 20
