import asyncio
from typing import Awaitable, Callable, Iterable, List, TypeVar

T = TypeVar("T")


async def bounded_gather(
    factories: Iterable[Callable[[], Awaitable[T]]],
    limit: int,
) -> List[T]:
    """
    Run coroutine factories concurrently, at most ``limit`` at a time.

    Factories (not coroutines) are taken so nothing starts before a slot is
    free. Results keep the input order; the first exception propagates after
    the in-flight tasks settle.
    """
    if limit < 1:
        raise ValueError("limit must be at least 1")

    semaphore = asyncio.Semaphore(limit)

    async def _run(factory: Callable[[], Awaitable[T]]) -> T:
        async with semaphore:
            return await factory()

    tasks = [asyncio.ensure_future(_run(factory)) for factory in factories]
    if not tasks:
        return []
    await asyncio.wait(tasks)
    errors = [task.exception() for task in tasks]
    for error in errors:
        if error is not None:
            raise error
    return [task.result() for task in tasks]
