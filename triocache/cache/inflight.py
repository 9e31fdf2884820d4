import trio
from typing import Generic, Tuple, TypeVar

_InflightKey = TypeVar("_InflightKey")


class InflightCoalescer(Generic[_InflightKey]):
    """
    Elects one leader per key while its work is running; everyone else gets the
    leader's event to wait on.

    Both methods are synchronous and never yield to the scheduler. A caller that
    checks the cache and then calls join_or_lead cannot be overtaken in between,
    so trio tasks need no lock around it.
    """

    def __init__(self) -> None:
        self._inflight: dict[_InflightKey, trio.Event] = {}
        "key -> event set when the leader finishes"

    def __contains__(self, key: _InflightKey) -> bool:
        return key in self._inflight

    def __len__(self) -> int:
        return len(self._inflight)

    def join_or_lead(self, key: _InflightKey) -> Tuple[trio.Event, bool]:
        """
        Returns (event, is_leader). The leader must call notify_done(key) on
        success and on failure alike. Followers await the event and then look
        at the cache again; finding nothing there means the leader failed.
        """
        leader = key not in self._inflight
        if leader:
            self._inflight[key] = trio.Event()
        return self._inflight[key], leader

    def notify_done(self, key: _InflightKey) -> None:
        ev = self._inflight.pop(key, None)
        if ev is not None:
            ev.set()
