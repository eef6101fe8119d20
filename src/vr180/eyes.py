"""Eye identity and left/right fan-out helper."""

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Eye(str, Enum):
    """Semantic eye identity of a camera stream."""

    LEFT = "left"
    RIGHT = "right"

    @property
    def other(self) -> "Eye":
        """The opposite eye."""
        return Eye.RIGHT if self is Eye.LEFT else Eye.LEFT


EYES = (Eye.LEFT, Eye.RIGHT)


def for_each_eye(func: Callable[[Eye], T], parallel: bool = True) -> dict[Eye, T]:
    """Run ``func`` once per eye and collect the results.

    Left and right work reads disjoint inputs and writes disjoint files, so
    the two calls may overlap. With ``parallel`` they run on a two-worker
    thread pool; both are awaited and the first failure (left before right)
    is re-raised.

    Args:
        func: Callable taking the eye to process.
        parallel: Run both eyes concurrently.

    Returns:
        Mapping of eye to the callable's result.
    """
    if not parallel:
        return {eye: func(eye) for eye in EYES}

    with ThreadPoolExecutor(max_workers=len(EYES)) as pool:
        futures = {eye: pool.submit(func, eye) for eye in EYES}

    results = {}
    for eye, future in futures.items():
        exc = future.exception()
        if exc is not None:
            logger.debug("%s eye failed: %s", eye.value, exc)
            raise exc
        results[eye] = future.result()
    return results
