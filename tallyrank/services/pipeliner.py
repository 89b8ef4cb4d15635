from __future__ import annotations

from typing import Awaitable, Callable, Sequence, TypeVar

from ..logging_config import logger

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_MAX_PIPELINE_SIZE = 48


class BatchPipeliner:
    """Submit independent store operations in bounded round trips.

    Batches run one after another; the operations inside a batch go out
    together. Results come back in request order.
    """

    def __init__(self, max_size: int = DEFAULT_MAX_PIPELINE_SIZE) -> None:
        if max_size <= 0:
            raise ValueError(f"max_size must be > 0, got {max_size}")
        self.max_size = max_size

    async def run(
        self,
        items: Sequence[T],
        submit: Callable[[Sequence[T]], Awaitable[list[R]]],
        *,
        max_size: int | None = None,
    ) -> list[R]:
        size = self.max_size if max_size is None else max_size
        if size <= 0:
            raise ValueError(f"max_size must be > 0, got {size}")
        results: list[R] = []
        for offset in range(0, len(items), size):
            batch = items[offset : offset + size]
            replies = await submit(batch)
            if len(replies) != len(batch):
                raise RuntimeError(f"Pipeline returned {len(replies)} replies for {len(batch)} requests")
            logger.debug("pipeline.batch", offset=offset, size=len(batch))
            results.extend(replies)
        return results
