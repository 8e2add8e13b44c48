"""
Rate limiting for auth endpoints (login, OTP verification).
Prevents brute-force attacks using exponential backoff.
"""
import time
from threading import Lock


class RateLimiter:
    """
    In-memory rate limiter with exponential backoff.
    Tracks failed attempts per key (email, "otp:<email>").
    """

    def __init__(self, max_attempts: int = 5, base_delay: float = 2.0, max_delay: float = 300.0, clock=time.time):
        self._attempts: dict[str, dict] = {}
        self._lock = Lock()
        self._clock = clock

        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay

    def _entry(self, key: str) -> dict:
        return self._attempts.setdefault(key, {"count": 0, "last_time": 0.0})

    def _required_delay(self, count: int) -> float:
        return min(self.base_delay * (2 ** (count - self.max_attempts)), self.max_delay)

    def retry_after(self, key: str) -> float:
        """Seconds to wait before the next attempt, 0 if allowed."""
        with self._lock:
            entry = self._attempts.get(key)
            if entry is None or entry["count"] < self.max_attempts:
                return 0.0

            elapsed = self._clock() - entry["last_time"]
            # Forget keys idle for long enough
            if elapsed > self.max_delay * 2:
                del self._attempts[key]
                return 0.0
            return max(0.0, self._required_delay(entry["count"]) - elapsed)

    def record_attempt(self, key: str, success: bool = False) -> None:
        """Record an attempt (failed by default). Success resets the counter."""
        with self._lock:
            if success:
                self._attempts.pop(key, None)
                return
            entry = self._entry(key)
            entry["count"] += 1
            entry["last_time"] = self._clock()
