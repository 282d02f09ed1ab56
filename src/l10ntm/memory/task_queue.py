# Copyright 2025 KTTC AI (https://github.com/kttc-ai)
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Bounded-concurrency task queue for pair-scoped work."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_PARALLELISM = 4


class TaskQueue:
    """Runs coroutine factories with at most ``parallelism`` in flight.

    Every submitted task runs to completion. Results come back in submission
    order; if any task failed, the first failure in submission order is
    raised once the whole batch has settled.

    Example:
        >>> queue = TaskQueue(parallelism=2)
        >>> results = await queue.run([lambda: fetch(pair) for pair in pairs])
    """

    def __init__(self, parallelism: int = DEFAULT_PARALLELISM):
        if parallelism < 1:
            raise ValueError(f"parallelism must be >= 1, got {parallelism}")
        self.parallelism = parallelism
        self._in_flight = 0
        self.max_in_flight = 0

    @property
    def in_flight(self) -> int:
        """Number of tasks currently running."""
        return self._in_flight

    async def run(self, factories: Sequence[Callable[[], Awaitable[T]]]) -> list[T]:
        """Run all factories and return their results in order.

        Args:
            factories: Zero-argument callables returning awaitables

        Returns:
            Results in submission order

        Raises:
            Exception: First failure in submission order, after all tasks settled
        """
        semaphore = asyncio.Semaphore(self.parallelism)

        async def worker(index: int, factory: Callable[[], Awaitable[T]]) -> T:
            async with semaphore:
                self._in_flight += 1
                self.max_in_flight = max(self.max_in_flight, self._in_flight)
                try:
                    return await factory()
                except Exception as e:
                    logger.error(f"Task {index} failed: {e}")
                    raise
                finally:
                    self._in_flight -= 1

        results: list[Any] = await asyncio.gather(
            *[worker(i, factory) for i, factory in enumerate(factories)],
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return results

    async def map(self, func: Callable[[T], Awaitable[R]], items: Iterable[T]) -> list[R]:
        """Apply ``func`` to each item under the concurrency bound."""
        return await self.run([lambda item=item: func(item) for item in items])


__all__ = ["DEFAULT_PARALLELISM", "TaskQueue"]
