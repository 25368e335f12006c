"""
Per-call deadline threaded through outbound requests and store writes.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

from coverlink.exceptions import DeadlineExceededError


@dataclass(frozen=True)
class Deadline:
    """An absolute expiry on the monotonic clock."""

    expires_at: float

    @classmethod
    def after(cls, seconds: float) -> "Deadline":
        return cls(time.monotonic() + seconds)

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at

    def check(self, step: str) -> float:
        """Raise if expired, otherwise return the seconds left for `step`."""
        if self.expired():
            raise DeadlineExceededError(f"deadline exceeded before {step}")
        return self.remaining()


def timeout_for(
    deadline: Optional[Deadline], step: str, default: Optional[float] = None
) -> Optional[float]:
    """
    Timeout to hand to a blocking call: the smaller of `default` and what is
    left of the deadline. Raises DeadlineExceededError once it has passed.
    """
    if deadline is None:
        return default
    remaining = deadline.check(step)
    if default is None:
        return remaining
    return min(default, remaining)
