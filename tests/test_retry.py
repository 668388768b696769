from __future__ import annotations

import logging

import pytest

from vfioswap.core.model import RetryPolicy
from vfioswap.core.retry import wait_until


def test_wait_until_returns_true_without_sleeping_when_already_met() -> None:
    sleeps: list[float] = []
    assert wait_until(lambda: True, RetryPolicy(5, 0.2), "ready", sleep=sleeps.append)
    assert sleeps == []


def test_wait_until_polls_until_condition_met() -> None:
    answers = iter([False, False, True])
    sleeps: list[float] = []
    assert wait_until(lambda: next(answers), RetryPolicy(5, 0.2), "ready", sleep=sleeps.append)
    assert sleeps == [0.2, 0.2]


def test_wait_until_timeout_is_a_warning(caplog: pytest.LogCaptureFixture) -> None:
    calls: list[int] = []
    sleeps: list[float] = []

    def predicate() -> bool:
        calls.append(1)
        return False

    with caplog.at_level(logging.WARNING, logger="vfioswap"):
        assert not wait_until(predicate, RetryPolicy(3, 0.5), "device release", sleep=sleeps.append)

    assert len(calls) == 3
    assert sleeps == [0.5, 0.5, 0.5]
    assert "Timeout waiting for: device release" in caplog.text
