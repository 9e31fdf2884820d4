"""
In-process cache engine.
Wraps a value factory with single-flight creation, reference counted locking of
in-use entries and size/expiry trimming. Implements 'Read-Through': caller -> cache -> factory.
"""

import logging
from contextlib import contextmanager
from dataclasses import replace
from typing import Awaitable, Callable, Generic, Sequence, TypeVar

import trio

from triocache.cache.inflight import InflightCoalescer
from triocache.cache.timing import TrioTimer, maybe_await
from triocache.config import CacheOptions
from triocache.types import CacheEntry, K, KeyAndValue, Timestamp, V, ValueForCaching

logger = logging.getLogger(__name__)

W = TypeVar("W")

Hasher = Callable[[K], str]
Factory = Callable[[K], ValueForCaching[V] | Awaitable[ValueForCaching[V]]]


@contextmanager
def _unwrap_single_error():
    """
    A batch with one failing fetch raises that error, like get() would.
    Several simultaneous failures stay grouped.
    """
    try:
        yield
    except ExceptionGroup as group:
        if len(group.exceptions) == 1:
            raise group.exceptions[0]
        raise


class Cache(Generic[K, V]):
    def __init__(self, hasher: Hasher, factory: Factory, options: CacheOptions | None = None):
        """
        :param hasher: maps a key to the string the entry is stored under.
            Keys with the same hash share one cache slot.
        :param factory: produces a ValueForCaching for a key. May be sync or async.
        :param options: size, expiry, cleanup interval, clock and timer.
        """
        self._hasher = hasher
        self._factory = factory
        self.options = options if options is not None else CacheOptions()

        self._store: dict[str, CacheEntry[V]] = {}
        "hash -> entry"
        self._inflight: InflightCoalescer[str] = InflightCoalescer()
        "hashes whose factory call has not finished yet"
        self._trimming = False

        self._timer = self.options.timer
        if self.options.expiry is not None and self._timer is not None:
            self._schedule_cleanup()

    def run_services(self, nursery: trio.Nursery):
        """Starts the periodic expiry sweep, unless there is no expiry or a timer was injected"""
        if self.options.expiry is None or self._timer is not None:
            return
        self._timer = TrioTimer(nursery)
        self._schedule_cleanup()

    # =========================================================================
    # Public API
    # =========================================================================

    async def get(self, key: K) -> V:
        return (await self._get_entry(key)).value

    async def get_multiple(self, keys: Sequence[K]) -> list[KeyAndValue[K, V]]:
        """Fetches all keys concurrently. The result follows the order of keys."""
        entries: dict[int, CacheEntry[V]] = {}
        with _unwrap_single_error():
            async with trio.open_nursery() as nursery:
                for index, key in enumerate(keys):
                    nursery.start_soon(self._fetch_into, key, index, entries, False)
        return [KeyAndValue(key, entries[index].value) for index, key in enumerate(keys)]

    async def get_with(self, key: K, transformer: Callable[[V], W | Awaitable[W]]) -> W:
        """
        Runs transformer on the cached value. The entry cannot be evicted until
        the transformer returns or raises.
        """
        entry = await self._get_entry(key)
        entry.lock_count += 1
        try:
            return await maybe_await(transformer(entry.value))
        finally:
            entry.lock_count -= 1

    async def get_multiple_with(
        self,
        keys: Sequence[K],
        transformer: Callable[[list[KeyAndValue[K, V]]], W | Awaitable[W]],
    ) -> W:
        """
        Like get_with, for several keys. Each entry is locked as soon as it is
        fetched and all locks are released once the transformer is done, or as
        soon as any fetch fails.
        """
        locked: dict[int, CacheEntry[V]] = {}
        try:
            with _unwrap_single_error():
                async with trio.open_nursery() as nursery:
                    for index, key in enumerate(keys):
                        nursery.start_soon(self._fetch_into, key, index, locked, True)
            keys_and_values = [
                KeyAndValue(key, locked[index].value) for index, key in enumerate(keys)
            ]
            return await maybe_await(transformer(keys_and_values))
        finally:
            for entry in locked.values():
                entry.lock_count -= 1

    def current_size(self) -> int:
        return len(self._store)

    # =========================================================================
    # Lookup and creation
    # =========================================================================

    async def _fetch_into(
        self, key: K, index: int, out_dict: dict[int, CacheEntry[V]], lock: bool
    ):
        entry = await self._get_entry(key)
        if lock:
            entry.lock_count += 1
        out_dict[index] = entry

    def _is_expired(self, entry: CacheEntry[V], now: Timestamp) -> bool:
        expiry = self.options.expiry
        return expiry is not None and entry.insertion_timestamp + expiry < now

    async def _get_entry(self, key: K) -> CacheEntry[V]:
        hash_ = self._hasher(key)
        now = self.options.clock()
        waited = False
        stale: CacheEntry[V] | None = None
        while True:
            entry = self._store.get(hash_)
            # An entry published while we waited is accepted even if it looks
            # expired at our `now`.
            if (
                entry is not None
                and not entry.evicting
                and entry is not stale
                and hash_ not in self._inflight
                and (waited or not self._is_expired(entry, now))
            ):
                entry.last_access_timestamp = now
                return entry

            wait_event, leader = self._inflight.join_or_lead(hash_)
            if leader:
                return await self._add_to_store(hash_, key, now)

            if entry is not None and self._is_expired(entry, now):
                stale = entry
            await wait_event.wait()
            # Wake up: the leader either published an entry or failed, in which case we lead next round
            waited = True

    async def _add_to_store(self, hash_: str, key: K, now: Timestamp) -> CacheEntry[V]:
        try:
            created = await maybe_await(self._factory(key))
            entry = CacheEntry(
                value=created.value,
                insertion_timestamp=now,
                last_access_timestamp=now,
                destroy=created.destroy,
            )
            self._store[hash_] = entry
            logger.debug(f"Created entry {hash_}")
            await self._shrink(now)
            return entry
        finally:
            self._inflight.notify_done(hash_)

    # =========================================================================
    # Trimming
    # =========================================================================

    def _schedule_cleanup(self):
        self._timer(self.options.cleanup_interval, self._scheduled_cleanup)

    async def _scheduled_cleanup(self):
        logger.debug(f"Scheduled sweep of {len(self._store)} entries")
        try:
            await self._shrink(self.options.clock())
        except Exception:
            logger.exception("Scheduled cache sweep failed")
        self._schedule_cleanup()

    async def _shrink(self, now: Timestamp):
        if self._trimming:
            return
        size = self.options.size
        if (size is not None and len(self._store) > size) or self.options.expiry is not None:
            self._trimming = True
            try:
                await self._trim(now)
            finally:
                self._trimming = False

    async def _trim(self, now: Timestamp):
        candidates: dict[str, CacheEntry[V]] = {}
        size = self.options.size
        if size is not None and len(self._store) > size:
            # keep the `size` most recently accessed entries. Ties keep the latest inserted.
            by_recency = sorted(
                reversed(self._store.items()),
                key=lambda item: item[1].last_access_timestamp,
                reverse=True,
            )
            candidates.update(by_recency[size:])
        if self.options.expiry is not None:
            candidates.update(
                (hash_, entry)
                for hash_, entry in self._store.items()
                if self._is_expired(entry, now)
            )
        if not candidates:
            return

        logger.debug(f"Trimming {len(candidates)} of {len(self._store)} entries")
        async with trio.open_nursery() as nursery:
            for hash_, entry in candidates.items():
                nursery.start_soon(self._evict, hash_, entry)

    async def _evict(self, hash_: str, entry: CacheEntry[V]):
        if entry.lock_count > 0:
            logger.debug(f"Entry {hash_} is locked ({entry.lock_count}), not evicting")
            return
        if self._store.get(hash_) is not entry or entry.evicting:
            # already evicted or replaced by a newer entry
            return
        if entry.destroy is not None:
            # No lookup returns the entry from here on, so nobody can lock it mid-destroy
            entry.evicting = True
            try:
                await maybe_await(entry.destroy())
            except Exception:
                # Best effort: keep the entry, a later trim will try again
                entry.evicting = False
                logger.warning(f"Failed to destroy entry {hash_}, keeping it", exc_info=True)
                return
        if self._store.get(hash_) is entry:
            del self._store[hash_]
            logger.debug(f"Evicted: {hash_}")


def create_cache(
    hasher: Hasher, factory: Factory, options: CacheOptions | None = None, **overrides
) -> Cache:
    """
    Builds a cache. Keyword overrides (size=..., expiry=...) are applied on top of options.

    :raises CacheConfigError: if the options are invalid
    """
    if options is None:
        options = CacheOptions(**overrides)
    elif overrides:
        options = replace(options, **overrides)
    return Cache(hasher, factory, options)
