import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def run_bounded(
    items: Sequence[T],
    worker: Callable[[T], R],
    *,
    max_workers: int,
    on_crash: Callable[[T, BaseException], R],
    describe: Callable[[T], str] = repr,
) -> list[R]:
    """
    Run `worker` once per item on a fixed-size thread pool and collect the outcomes.

    Each worker returns an outcome for its own item only; callers reduce the list
    once every item is done, so workers never share counters. A worker that
    raises is converted with `on_crash` and never cancels the others.
    Outcomes come back in completion order.
    """
    if not items:
        return []

    def _guarded(item: T) -> R:
        try:
            return worker(item)
        except Exception as e:
            logger.exception("Unexpected error processing %s", describe(item))
            return on_crash(item, e)

    workers = max(1, min(int(max_workers), len(items)))
    if workers == 1:
        return [_guarded(item) for item in items]

    outcomes: list[R] = []
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="powermatch-batch") as pool:
        futures = [pool.submit(_guarded, item) for item in items]
        for fut in as_completed(futures):
            outcomes.append(fut.result())
    return outcomes
