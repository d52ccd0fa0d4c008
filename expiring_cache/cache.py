import logging
import threading
import time
import weakref
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, Generic, Hashable, List, Optional, Tuple, TypeVar, Union

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .settings import CacheSettings

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    """A stored value and the instant (on the cache clock) after which it is dead."""

    value: V
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


def _sweep_job(cache_ref: "weakref.ReferenceType[ExpiringCache]") -> None:
    cache = cache_ref()
    if cache is not None:
        cache._sweep()


def _stop_scheduler(scheduler: BackgroundScheduler) -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)


class ExpiringCache(Generic[K, V]):
    """Thread-safe key-value cache with a fixed TTL and a background sweep.

    Parameters
    ----------
    ttl : float | timedelta
        Time-to-live of every entry, in seconds or as a `timedelta`. Must be > 0.
        Also the period of the background sweep.
    clock : Callable[[], float]
        Source of the current instant in seconds. Defaults to `time.monotonic`.
    name : Optional[str]
        Suffix for the sweep job id and log records.

    Raises
    ------
    pydantic.ValidationError
        If `ttl` is not a finite, positive number of seconds.

    Notes
    -----
    - Expiration is checked on every `get` (lazy) and by a sweep that runs every
      `ttl` seconds (eager). Reads are correct without the sweep; the sweep only
      bounds memory held by keys that are never read again.
    - An expired entry may stay in memory up to one extra `ttl` before the sweep
      reclaims it.
    - Every check-then-delete runs under one lock and only deletes the entry it
      inspected, so a concurrent `put` is never lost.
    - Each cache owns a one-thread APScheduler `BackgroundScheduler`. Its job only
      holds a weak reference to the cache, so a cache that is never shut down can
      still be garbage-collected, which also stops its scheduler.
    """

    def __init__(
        self,
        ttl: Union[float, timedelta],
        *,
        clock: Callable[[], float] = time.monotonic,
        name: Optional[str] = None,
    ):
        if isinstance(ttl, timedelta):
            ttl = ttl.total_seconds()
        self.settings = CacheSettings(ttl_seconds=ttl)
        self.name = name or f"{id(self):x}"
        self.job_id = f"{self.settings.job_id_prefix}-{self.name}"
        self._clock = clock
        self._store: Dict[K, CacheEntry[V]] = {}
        self._lock = threading.Lock()
        self._shutdown_lock = threading.Lock()

        self._scheduler = BackgroundScheduler(executors={"default": ThreadPoolExecutor(1)})
        # first run one full interval after start; overrun slots collapse into one
        self._scheduler.add_job(
            _sweep_job,
            IntervalTrigger(seconds=self.settings.ttl_seconds),
            args=[weakref.ref(self)],
            id=self.job_id,
            name=f"Sweep expired entries of {self.job_id}",
            coalesce=True,
            max_instances=1,
        )
        self._scheduler.start()
        self._finalizer = weakref.finalize(self, _stop_scheduler, self._scheduler)
        logger.debug("%s: sweep scheduled every %ss", self.job_id, self.ttl)

    @property
    def ttl(self) -> float:
        return self.settings.ttl_seconds

    @property
    def closed(self) -> bool:
        return not self._finalizer.alive

    def put(self, key: K, value: V) -> None:
        """Insert or replace the value for `key`, expiring `ttl` seconds from now.

        Any previous entry for `key` is discarded, even one that already expired.
        """

        entry = CacheEntry(value, self._clock() + self.ttl)
        with self._lock:
            self._store[key] = entry

    def get(self, key: K, default: Optional[V] = None) -> Optional[V]:
        """Return the live value for `key`, or `default`.

        Parameters
        ----------
        key : K
            Cache key.
        default : Optional[V]
            Returned when the key is missing or expired. Pass a sentinel to tell a
            stored `None` apart from a miss.

        Returns
        -------
        Optional[V]
            The stored value, or `default`.

        Notes
        -----
        - Performs lazy eviction: a dead entry is removed before returning `default`.
        """

        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return default
            if entry.is_expired(now):
                del self._store[key]
                return default
            return entry.value

    def remove(self, key: K) -> None:
        with self._lock:
            self._store.pop(key, None)

    def clear(self) -> None:
        """Remove all entries in one step."""

        with self._lock:
            self._store.clear()

    def shutdown(self) -> None:
        """Stop the background sweep for good.

        Safe to call more than once and from several threads; every call returns only
        after any sweep in progress has finished. The cache keeps serving every
        operation afterwards; expired entries are then only reclaimed when read.
        """

        with self._shutdown_lock:
            if self._finalizer.detach() is None:
                return
            self._scheduler.shutdown(wait=True)
        logger.debug("%s: sweep stopped", self.job_id)

    def _sweep(self) -> int:
        now = self._clock()
        with self._lock:
            snapshot: List[Tuple[K, CacheEntry[V]]] = list(self._store.items())
        removed = 0
        for key, entry in snapshot:
            if not entry.is_expired(now):
                continue
            with self._lock:
                # a re-put after the snapshot holds a different entry
                if self._store.get(key) is entry:
                    del self._store[key]
                    removed += 1
        if removed:
            logger.debug("%s: sweep removed %d expired entries", self.job_id, removed)
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __contains__(self, key: object) -> bool:
        missing = object()
        return self.get(key, missing) is not missing

    def __enter__(self) -> "ExpiringCache[K, V]":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    def __repr__(self) -> str:
        return f"ExpiringCache(ttl={self.ttl}, size={len(self)}, closed={self.closed})"
