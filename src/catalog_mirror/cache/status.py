"""Cache status model and its publish/subscribe channel."""

import dataclasses
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, Optional, TypeVar

from catalog_mirror.errors import SerializationFailure
from catalog_mirror.utils.formatters import utc_now_iso

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheState(str, Enum):
    IDLE = "idle"
    DOWNLOADING = "downloading"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class CacheStatus:
    """Snapshot of the bulk cache; replaced, never mutated in place."""

    is_downloading: bool = False
    download_progress: int = 0  # 0-100
    total_items: int = 0
    downloaded_items: int = 0
    cache_size: int = 0  # bytes
    last_updated: str = dataclasses.field(default_factory=utc_now_iso)
    is_complete: bool = False
    error: Optional[str] = None

    @property
    def state(self) -> CacheState:
        if self.is_downloading:
            return CacheState.DOWNLOADING
        if self.error:
            return CacheState.ERROR
        if self.is_complete:
            return CacheState.COMPLETE
        return CacheState.IDLE

    @property
    def is_ready_for_offline(self) -> bool:
        return (self.is_complete and self.downloaded_items > 0
                and not self.error)

    def updated(self, **changes) -> "CacheStatus":
        """Copy with ``changes`` applied and ``last_updated`` refreshed."""
        changes.setdefault("last_updated", utc_now_iso())
        return dataclasses.replace(self, **changes)

    def to_json(self) -> str:
        return json.dumps(dataclasses.asdict(self))

    @classmethod
    def from_json(cls, payload: str) -> "CacheStatus":
        """Parse a persisted status; raises SerializationFailure."""
        try:
            data = json.loads(payload)
            known = {f.name for f in dataclasses.fields(cls)}
            return cls(**{k: v for k, v in data.items() if k in known})
        except (TypeError, ValueError, AttributeError) as e:
            raise SerializationFailure(f"Bad cache status payload: {e}") from e


@dataclass(frozen=True)
class CacheMetrics:
    record_count: int = 0
    image_ref_count: int = 0
    rating_count: int = 0
    total_cache_size: int = 0
    cache_health: str = "poor"
    last_sync_time: str = ""


class StatusPublisher(Generic[T]):
    """Holds the current value and fans every change out to listeners.

    ``subscribe`` replays the current value to the new listener at once.
    Listeners run synchronously in registration order; one listener
    raising does not stop the others.
    """

    def __init__(self, initial: T):
        self._current = initial
        self._listeners: list[Callable[[T], None]] = []

    @property
    def current(self) -> T:
        return self._current

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Callable[[T], None]) -> Callable[[], None]:
        self._listeners.append(listener)
        self._call(listener, self._current)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, value: T):
        self._current = value
        for listener in list(self._listeners):
            self._call(listener, value)

    @staticmethod
    def _call(listener: Callable[[T], None], value: T):
        try:
            listener(value)
        except Exception as e:
            logger.error(f"Error notifying status listener: {e}")
