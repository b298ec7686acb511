"""Worker pool used to fan out independent (fold, penalty) fits."""

import logging
from concurrent.futures import (
    Executor,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
)
from types import TracebackType
from typing import Any, Callable, Iterable, List, Optional, Type, Union

from penalized_cv.core.config import PoolKind

logger = logging.getLogger(__name__)


class WorkerPool:
    """Bounded pool around `concurrent.futures` with a scoped lifetime.

    The executor only exists between `__enter__` and `__exit__`; leaving
    the block shuts it down whether the body succeeded or raised. With
    ``worker_count == 1`` no executor is created and items run in-process.
    Results are always returned in submission order, so the outcome does
    not depend on how many workers ran them.

    Usage:
        with WorkerPool(worker_count=4) as pool:
            scores = pool.map(handler, items)
    """

    def __init__(
        self,
        worker_count: int = 1,
        kind: Union[PoolKind, str] = PoolKind.THREAD,
    ) -> None:
        if int(worker_count) < 1:
            raise ValueError(
                f"worker_count must be at least 1, got {worker_count}"
            )
        self.worker_count = int(worker_count)
        self.kind = kind if isinstance(kind, PoolKind) else PoolKind(kind)
        self._executor: Optional[Executor] = None

    def __repr__(self) -> str:
        return (
            f"WorkerPool(worker_count={self.worker_count}, "
            f"kind={self.kind.value})"
        )

    @property
    def active(self) -> bool:
        return self._executor is not None

    def __enter__(self) -> "WorkerPool":
        if self._executor is not None:
            raise RuntimeError("WorkerPool is already running")
        if self.worker_count > 1:
            if self.kind is PoolKind.PROCESS:
                self._executor = ProcessPoolExecutor(
                    max_workers=self.worker_count
                )
            else:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.worker_count
                )
            logger.debug("Started %r", self)
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True, cancel_futures=exc is not None)
            logger.debug("Stopped %r", self)

    def map(
        self, handler: Callable[[Any], Any], items: Iterable[Any]
    ) -> List[Any]:
        """Apply `handler` to every item, returning results in item order."""
        items = list(items)
        if not items:
            return []

        if self._executor is None:
            if self.worker_count == 1:
                return [handler(item) for item in items]
            with self:
                return self.map(handler, items)

        logger.debug(
            "Dispatching %d item(s) to %d %s worker(s)",
            len(items),
            min(self.worker_count, len(items)),
            self.kind.value,
        )
        futures = [self._executor.submit(handler, item) for item in items]
        return [future.result() for future in futures]
