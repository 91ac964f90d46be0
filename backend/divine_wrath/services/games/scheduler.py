import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

TimerCallback = Callable[[str, int], Any]


class RoundTimerScheduler:
    """Cancellable auto-advance timers for rooms in round_transition.

    - At most one pending timer per room, keyed by the room's transition
      generation
    - ``cancel`` or a newer ``schedule`` makes an older timer stale
    - A stale or duplicate firing is a no-op; the callback re-checks the
      room itself as well
    - No threads are spawned when disabled (tests drive ``fire`` directly)
    """

    def __init__(self, spawn: Optional[Callable[..., Any]] = None, delay: float = 3.0,
                 heartbeat: int = 0, enabled: bool = True):
        self._spawn = spawn
        self.delay = delay
        self.heartbeat = heartbeat
        self.enabled = enabled and spawn is not None
        self._lock = threading.Lock()
        self._pending: Dict[str, int] = {}

    def schedule(self, code: str, generation: int, callback: TimerCallback) -> None:
        with self._lock:
            if self._pending.get(code) == generation:
                logger.info(f"[timer-skip] room={code} generation={generation} already scheduled")
                return
            self._pending[code] = generation
        logger.info(f"[timer-set] room={code} generation={generation} delay={self.delay}s")
        if self.enabled:
            self._spawn(self._worker, code, generation, callback)

    def cancel(self, code: str) -> None:
        with self._lock:
            generation = self._pending.pop(code, None)
        if generation is not None:
            logger.info(f"[timer-cancel] room={code} generation={generation}")

    def pending(self, code: str) -> Optional[int]:
        with self._lock:
            return self._pending.get(code)

    def fire(self, code: str, generation: int, callback: TimerCallback) -> Any:
        with self._lock:
            current = self._pending.get(code)
            if current == generation:
                self._pending.pop(code)
        logger.info(f"[timer-fire] room={code} generation={generation} pending={current}")
        if current != generation:
            logger.info(f"[timer-abort] room={code} generation={generation} stale or cancelled")
            return None
        return callback(code, generation)

    def _worker(self, code: str, generation: int, callback: TimerCallback) -> None:
        if self.heartbeat and self.heartbeat > 0:
            slept = 0.0
            while slept < self.delay:
                step = min(self.heartbeat, self.delay - slept)
                time.sleep(step)
                slept += step
                logger.info(f"[timer-heartbeat] room={code} generation={generation} remaining={max(0, self.delay - slept)}s")
        else:
            time.sleep(self.delay)
        self.fire(code, generation, callback)
