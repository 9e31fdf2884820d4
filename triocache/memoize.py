from typing import Awaitable, Callable

from triocache.cache.engine import Hasher, create_cache
from triocache.cache.timing import maybe_await
from triocache.config import CacheOptions
from triocache.types import K, V, ValueForCaching


def memoize(
    hasher: Hasher,
    behaviour: Callable[[K], V | Awaitable[V]],
    options: CacheOptions | None = None,
    **overrides,
) -> Callable[[K], Awaitable[V]]:
    """
    Caches the results of behaviour, one call per key hash.

    The backing cache is exposed as the `cache` attribute of the returned
    function, e.g. to call `run_services` when an expiry is set.
    """

    async def create(key: K) -> ValueForCaching[V]:
        return ValueForCaching(value=await maybe_await(behaviour(key)))

    cache = create_cache(hasher, create, options, **overrides)

    async def memoized(key: K) -> V:
        return await cache.get(key)

    memoized.cache = cache  # type: ignore[attr-defined]
    return memoized
