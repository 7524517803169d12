"""Isolated iteration -- run an async step per item without letting one failure stop the rest.

Each item produces an Outcome carrying either the step's value or the
exception it raised. Callers reduce the outcome list at the end instead of
keeping counters inside except blocks. Cancellation is never captured.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Generic, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class Outcome(Generic[T, R]):
    """Result of one isolated step: ``value`` on success, ``error`` on failure."""

    item: T
    value: R | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_isolated(
    items: Iterable[T],
    step: Callable[[T], Awaitable[R]],
    *,
    delay_seconds: float = 0.0,
    event: str = "isolation.step_failed",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> list[Outcome[T, R]]:
    """Apply ``step`` to every item sequentially, capturing per-item failures.

    Args:
        items: Items to process, in order.
        step: Async callable applied to each item.
        delay_seconds: Pause between consecutive items (not after the last).
        event: structlog event name used when a step fails.
        sleep: Sleep coroutine, replaceable in tests.

    Returns:
        One Outcome per item, in input order.
    """
    outcomes: list[Outcome[T, R]] = []
    for index, item in enumerate(items):
        if index and delay_seconds > 0:
            await sleep(delay_seconds)
        try:
            value = await step(item)
        except Exception as exc:
            logger.warning(event, error=str(exc), error_type=type(exc).__name__)
            outcomes.append(Outcome(item=item, error=exc))
        else:
            outcomes.append(Outcome(item=item, value=value))
    return outcomes


def partition(outcomes: Iterable[Outcome[T, R]]) -> tuple[list[Outcome[T, R]], list[Outcome[T, R]]]:
    """Split outcomes into (succeeded, failed)."""
    succeeded: list[Outcome[T, R]] = []
    failed: list[Outcome[T, R]] = []
    for outcome in outcomes:
        (succeeded if outcome.ok else failed).append(outcome)
    return succeeded, failed
