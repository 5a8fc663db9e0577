"""Apply-then-reconcile helper for local projections of durable state.

The local object is changed first so that whatever is broadcast next sees
the new value; if the durable write fails the object is restored to its
previous state and the error propagates.
"""

from __future__ import annotations

import copy
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

T = TypeVar("T")


async def apply_optimistic(
    target: Any,
    mutate: Callable[[Any], None],
    persist: Callable[[], Awaitable[T]],
) -> T:
    """Mutate ``target`` in place, then await ``persist()``.

    Args:
        target: Object with instance attributes (e.g., a dataclass).
        mutate: Applies the change to ``target``.
        persist: Performs the durable write.

    Returns:
        Whatever ``persist()`` returns.

    Raises:
        Exception: Anything ``persist()`` raises, after ``target`` has been
            restored.
    """
    snapshot = copy.deepcopy(vars(target))
    mutate(target)
    try:
        return await persist()
    except Exception:
        state = vars(target)
        state.clear()
        state.update(snapshot)
        raise
