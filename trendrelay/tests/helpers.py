import heapq
import itertools

CONTROLLER_KEY = "controller_test_key_2025"
BOT_KEY = "bot_test_access_key_alpha92"
START_MS = 1_700_000_000_000


class FakeClock:
    def __init__(self, start_ms: int = START_MS):
        self.ms = start_ms

    def now_ms(self) -> int:
        return self.ms

    def advance(self, seconds: float) -> None:
        self.ms += int(round(seconds * 1000))


class ManualScheduler:
    """Timers driven by FakeClock; advance() fires everything that came due."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self._queue = []
        self._seq = itertools.count()

    def call_later(self, delay_seconds, callback):
        due = self.clock.now_ms() + int(round(delay_seconds * 1000))
        heapq.heappush(self._queue, (due, next(self._seq), callback))

    def call_every(self, interval_seconds, callback):
        def _tick():
            try:
                callback()
            finally:
                self.call_later(interval_seconds, _tick)

        self.call_later(interval_seconds, _tick)

    def cancel_all(self):
        self._queue.clear()

    def advance(self, seconds: float) -> None:
        target = self.clock.ms + int(round(seconds * 1000))
        while self._queue and self._queue[0][0] <= target:
            due, _, callback = heapq.heappop(self._queue)
            self.clock.ms = max(self.clock.ms, due)
            callback()
        self.clock.ms = target

    @property
    def pending(self) -> int:
        return len(self._queue)
