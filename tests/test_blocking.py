"""Tests for the isolated blocking-call runner."""

from __future__ import annotations

import asyncio
import threading
from typing import Iterator

import pytest

from wrought.blocking import BlockingRunner, in_blocking_call
from wrought.errors import ReentrancyError


@pytest.fixture
def runner() -> Iterator[BlockingRunner]:
    r = BlockingRunner()
    yield r
    r.close()


def test_runs_plain_callables_on_worker(runner: BlockingRunner) -> None:
    caller = threading.current_thread().name
    name = runner.run(lambda: threading.current_thread().name)
    assert name != caller
    assert not in_blocking_call()


def test_runs_coroutines_on_worker_loop(runner: BlockingRunner) -> None:
    async def answer(x: int) -> int:
        await asyncio.sleep(0)
        return x * 2

    assert runner.run(answer, 21) == 42
    assert runner.run(answer, 1) == 2


def test_safe_inside_a_running_event_loop(runner: BlockingRunner) -> None:
    async def slow_service(prompt: str) -> str:
        await asyncio.sleep(0)
        return prompt[::-1]

    async def driver() -> str:
        # A synchronous host call made while this loop is running
        return runner.run(slow_service, "abc")

    assert asyncio.run(driver()) == "cba"


def test_errors_propagate(runner: BlockingRunner) -> None:
    def boom() -> None:
        raise KeyError("nope")

    with pytest.raises(KeyError):
        runner.run(boom)
    assert runner.run(lambda: "still usable") == "still usable"


def test_nested_blocking_call_is_rejected(runner: BlockingRunner) -> None:
    other = BlockingRunner("other")
    try:
        with pytest.raises(ReentrancyError):
            runner.run(lambda: other.run(lambda: None))
        with pytest.raises(ReentrancyError):
            runner.run(lambda: runner.run(lambda: None))
    finally:
        other.close()


def test_closed_runner_refuses_work() -> None:
    r = BlockingRunner()
    r.close()
    r.close()
    with pytest.raises(RuntimeError, match="closed"):
        r.run(lambda: None)
