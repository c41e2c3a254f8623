"""Bounded-batch fan-out/fan-in over independent units of work."""
import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class Outcome(Generic[T, R]):
    """Settled result of one unit: either a value or the exception it raised."""

    item: T
    value: R | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_in_batches(
    items: Sequence[T],
    worker: Callable[[T], R],
    batch_size: int,
    should_stop: Callable[[list[Outcome[T, R]]], bool] | None = None,
) -> list[Outcome[T, R]]:
    """Run ``worker`` over ``items`` in batches of at most ``batch_size`` concurrent calls.

    Every unit in a batch settles before the next batch starts. A failing unit
    is captured as an ``Outcome`` with ``error`` set and never affects its
    neighbours. ``should_stop`` is consulted between batches only, so work
    already in flight always completes.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    outcomes: list[Outcome[T, R]] = []
    if not items:
        return outcomes

    with ThreadPoolExecutor(max_workers=min(batch_size, len(items))) as executor:
        for offset in range(0, len(items), batch_size):
            batch = items[offset:offset + batch_size]
            futures = [executor.submit(worker, item) for item in batch]

            batch_outcomes = []
            for item, future in zip(batch, futures):
                try:
                    batch_outcomes.append(Outcome(item=item, value=future.result()))
                except Exception as exc:
                    batch_outcomes.append(Outcome(item=item, error=exc))
            outcomes.extend(batch_outcomes)

            failed = sum(1 for outcome in batch_outcomes if not outcome.ok)
            logger.debug(
                f"Batch {offset // batch_size + 1}: {len(batch_outcomes) - failed} ok, {failed} failed"
            )

            remaining = len(items) - (offset + len(batch))
            if remaining and should_stop is not None and should_stop(outcomes):
                logger.warning(f"Stopping early; {remaining} units not started")
                break

    return outcomes
