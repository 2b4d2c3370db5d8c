import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

log = logging.getLogger(__name__)

TimerKey = Tuple[str, str, str]  # (session_id, participant_id, question_id)


class QuestionTimer:
    """Single-shot countdown for one participant's question window.

    Either ``cancel()`` wins (an answer was recorded) or ``fire()`` runs the
    time-up callback exactly once. The countdown itself runs through
    ``spawn`` so the web app can hand it to Socket.IO's background tasks.
    """

    def __init__(self, key: TimerKey, duration: float, on_time_up: Callable[[TimerKey], None], *,
                 spawn: Callable, sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.time) -> None:
        self.key = key
        self.duration = duration
        self.deadline: Optional[float] = None
        self._on_time_up = on_time_up
        self._spawn = spawn
        self._sleep = sleep
        self._clock = clock
        self._lock = threading.Lock()
        self._started = False
        self._cancelled = False
        self._fired = False

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def active(self) -> bool:
        return self._started and not (self._fired or self._cancelled)

    def start(self) -> float:
        with self._lock:
            if self._started:
                raise RuntimeError(f'Timer {self.key} already started')
            self._started = True
            self.deadline = self._clock() + self.duration
        self._spawn(self._countdown)
        return self.deadline

    def cancel(self) -> bool:
        """Stop the countdown. Returns False when the timer already fired."""
        with self._lock:
            if self._fired:
                return False
            self._cancelled = True
            return True

    def fire(self) -> bool:
        with self._lock:
            if self._fired or self._cancelled:
                return False
            self._fired = True
        self._on_time_up(self.key)
        return True

    def _countdown(self) -> None:
        self._sleep(self.duration)
        if not self.fire():
            log.debug('[timer-abort] key=%s cancelled before expiry', self.key)


class TimerRegistry:
    """At most one live timer per (session, participant, question)."""

    def __init__(self, *, spawn: Callable, sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.time, grace: float = 0.0) -> None:
        self._spawn = spawn
        self._sleep = sleep
        self._clock = clock
        self.grace = grace
        self._lock = threading.Lock()
        self._timers: Dict[TimerKey, QuestionTimer] = {}

    def start(self, key: TimerKey, duration: float, on_time_up: Callable[[TimerKey], None]) -> QuestionTimer:
        with self._lock:
            existing = self._timers.get(key)
            if existing is not None and existing.active:
                log.info('[timer-skip] key=%s already scheduled', key)
                return existing

            def _expire(expired_key: TimerKey) -> None:
                with self._lock:
                    if self._timers.get(expired_key) is timer:
                        del self._timers[expired_key]
                log.info('[timer-fire] key=%s', expired_key)
                on_time_up(expired_key)

            timer = QuestionTimer(key, duration + self.grace, _expire,
                                  spawn=self._spawn, sleep=self._sleep, clock=self._clock)
            self._timers[key] = timer
        timer.start()
        log.info('[timer-set] key=%s duration=%ss deadline=%s', key, timer.duration, timer.deadline)
        return timer

    def get(self, key: TimerKey) -> Optional[QuestionTimer]:
        with self._lock:
            return self._timers.get(key)

    def cancel(self, key: TimerKey) -> bool:
        with self._lock:
            timer = self._timers.pop(key, None)
        return timer.cancel() if timer is not None else False

    def cancel_session(self, session_id: str) -> int:
        with self._lock:
            keys = [k for k in self._timers if k[0] == session_id]
            timers = [self._timers.pop(k) for k in keys]
        return sum(1 for t in timers if t.cancel())

    def expire(self, key: TimerKey) -> bool:
        """Fire a timer now, as if its countdown had elapsed."""
        timer = self.get(key)
        return timer.fire() if timer is not None else False
