from __future__ import annotations

import time


class Deadline:
    """A monotonic time budget, optionally capped by a parent budget."""

    def __init__(self, budget_s: float, parent: Deadline | None = None) -> None:
        expires_at = time.monotonic() + max(0.0, budget_s)
        if parent is not None:
            expires_at = min(expires_at, parent.expires_at)
        self.expires_at = expires_at

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0

    def child(self, budget_s: float) -> Deadline:
        return Deadline(budget_s, parent=self)

    def clip(self, timeout_s: float) -> float:
        return min(timeout_s, self.remaining())

    def sleep(self, seconds: float) -> bool:
        """Sleep at most until expiry. Returns False once the budget is spent."""
        pause = self.clip(seconds)
        if pause > 0:
            time.sleep(pause)
        return not self.expired
