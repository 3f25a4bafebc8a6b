import threading
import time
import uuid
from typing import Optional, Protocol


class OrderNumberGenerator(Protocol):
    def next_number(self, buyer_id: Optional[int] = None) -> str: ...


class TimestampOrderNumbers:
    """
    ORD-<epoch millis>[-<buyer id>].

    Millis are strictly increasing per instance, so one process never hands
    out the same timestamp twice. Separate processes can still collide; the
    unique index on order_number turns that into a failed insert.
    """

    def __init__(self, clock=time.time):
        self._clock = clock
        self._last = 0
        self._lock = threading.Lock()

    def _next_millis(self) -> int:
        with self._lock:
            now = int(self._clock() * 1000)
            self._last = max(now, self._last + 1)
            return self._last

    def next_number(self, buyer_id: Optional[int] = None) -> str:
        number = f"ORD-{self._next_millis()}"
        if buyer_id is not None:
            number = f"{number}-{buyer_id}"
        return number


class RandomOrderNumbers:
    def next_number(self, buyer_id: Optional[int] = None) -> str:
        return f"ORD-{uuid.uuid4().hex.upper()}"


def make_generator(strategy: str) -> OrderNumberGenerator:
    if strategy == "timestamp":
        return TimestampOrderNumbers()
    if strategy == "random":
        return RandomOrderNumbers()
    raise RuntimeError(f"Unsupported ORDER_NUMBER_STRATEGY={strategy}")
