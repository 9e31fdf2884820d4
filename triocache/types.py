from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")

Timestamp = float

Destroyer = Callable[[], Awaitable[None] | None]
"Cleanup callback, sync or async, run when an entry is evicted"

Timer = Callable[[float, Callable[[], Awaitable[None]]], Any]
"Schedules an async callback to run after a delay"


@dataclass
class ValueForCaching(Generic[V]):
    """What a factory hands to the cache for one key."""
    value: V
    destroy: Destroyer | None = None


@dataclass(frozen=True)
class KeyAndValue(Generic[K, V]):
    key: K
    value: V


@dataclass
class CacheEntry(Generic[V]):
    value: V
    insertion_timestamp: Timestamp
    "set once, when the factory result is published. Drives expiry"
    last_access_timestamp: Timestamp
    "refreshed on every fetch. Drives size based eviction"
    lock_count: int = 0
    "number of transformers currently using the value. Locked entries are never evicted"
    destroy: Destroyer | None = None
    evicting: bool = False
    "set while destroy runs. Lookups treat the entry as missing"
