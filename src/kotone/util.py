from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import SupportsFloat, SupportsInt

from anyio.abc import TaskGroup


@asynccontextmanager
async def cancel_on_close(group: TaskGroup) -> AsyncGenerator[TaskGroup, None]:
    """
    Context manager that cancels the provided task group on exit.
    """

    async with group:
        try:
            yield group
        finally:
            group.cancel_scope.cancel()


def maybe_int(what: SupportsInt | str | None) -> int | None:
    """
    Converts any ``int``-able type into an int, or short circuits into a None.
    """

    if what is None:
        return None

    return int(what)


def maybe_float(what: SupportsFloat | str | None) -> float | None:
    """
    Converts any ``float``-able type into a float, or short circuits into a None.
    """

    if what is None:
        return None

    return float(what)
