"""
In-process keyed state storage

A sharded map with one lock per shard. Every read-modify-write on a key runs
under its shard lock, so concurrent requests for the same key never lose updates.
"""

import logging
import threading
from typing import Any, Callable, Dict, Generic, Hashable, Iterator, List, Optional, Tuple, TypeVar


V = TypeVar("V")
R = TypeVar("R")

DEFAULT_SHARDS = 16


class _Shard:
    """Dict plus its lock"""

    __slots__ = ("data", "lock")

    def __init__(self):
        self.data: Dict[Hashable, Any] = {}
        self.lock = threading.Lock()


class ShardedStore(Generic[V]):
    """Thread-safe keyed store with per-shard locking"""

    def __init__(self, shards: int = DEFAULT_SHARDS):
        if shards < 1:
            raise ValueError("shards must be positive")
        self._shards = [_Shard() for _ in range(shards)]

    def _shard(self, key: Hashable) -> _Shard:
        return self._shards[hash(key) % len(self._shards)]

    def get(self, key: Hashable) -> Optional[V]:
        """Get value by key"""
        shard = self._shard(key)
        with shard.lock:
            return shard.data.get(key)

    def compute(self, key: Hashable, fn: Callable[[Optional[V]], Tuple[Optional[V], R]]) -> R:
        """
        Atomically transform the value stored at key.

        fn receives the current value (or None) and returns (new_value, result).
        A new_value of None removes the key. The result is returned to the caller.
        """
        shard = self._shard(key)
        with shard.lock:
            new_value, result = fn(shard.data.get(key))
            if new_value is None:
                shard.data.pop(key, None)
            else:
                shard.data[key] = new_value
            return result

    def update(self, key: Hashable, fn: Callable[[Optional[V]], Optional[V]]) -> Optional[V]:
        """Atomically replace the value at key with fn(current)"""
        def apply(current):
            new_value = fn(current)
            return new_value, new_value

        return self.compute(key, apply)

    def set(self, key: Hashable, value: V) -> None:
        shard = self._shard(key)
        with shard.lock:
            shard.data[key] = value

    def delete(self, key: Hashable) -> bool:
        """Delete key, return True if it existed"""
        shard = self._shard(key)
        with shard.lock:
            return shard.data.pop(key, None) is not None

    def sweep(self, expired: Callable[[Hashable, V], bool]) -> int:
        """Remove every entry for which expired(key, value) is true"""
        removed = 0
        for shard in self._shards:
            with shard.lock:
                stale = [key for key, value in shard.data.items() if expired(key, value)]
                for key in stale:
                    del shard.data[key]
                removed += len(stale)
        return removed

    def items(self) -> List[Tuple[Hashable, V]]:
        """Snapshot of all entries"""
        snapshot: List[Tuple[Hashable, V]] = []
        for shard in self._shards:
            with shard.lock:
                snapshot.extend(shard.data.items())
        return snapshot

    def values(self) -> Iterator[V]:
        return (value for _, value in self.items())

    def clear(self) -> None:
        for shard in self._shards:
            with shard.lock:
                shard.data.clear()

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.data)
        return total

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None


class PeriodicSweeper:
    """Background thread running cleanup callbacks at a fixed interval"""

    def __init__(self, interval: float, callbacks: List[Callable[[], int]]):
        self.interval = interval
        self.callbacks = callbacks
        self.logger = logging.getLogger(__name__)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "PeriodicSweeper":
        if self._thread is None:
            self._thread = threading.Thread(target=self._run, name="rasp-guard-sweeper", daemon=True)
            self._thread.start()
        return self

    def _run(self):
        """Cleanup expired entries periodically"""
        while not self._stop.wait(self.interval):
            for callback in self.callbacks:
                try:
                    removed = callback()
                except Exception:
                    self.logger.exception("Sweep callback failed")
                    continue
                if removed:
                    self.logger.debug(f"Swept {removed} expired entries")

    def stop(self, timeout: Optional[float] = None):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
