"""SpreadGuard – block entries when the quoted spread is too wide.

The spread is measured in instrument points, ``(ask - bid) / point_size``,
and compared against ``max_points``.  A threshold of ``0`` (or below)
disables the guard.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class SpreadGuardResult:
    """Outcome of a spread check."""

    blocked: bool
    spread_points: float = 0.0
    threshold: float = 0.0


class SpreadGuard:
    def __init__(self, *, max_points: float, point_size: float) -> None:
        if point_size <= 0:
            raise ValueError("point_size must be > 0")
        self.max_points = float(max_points)
        self.point_size = float(point_size)

    @property
    def enabled(self) -> bool:
        return self.max_points > 0

    def spread_points(self, bid: float, ask: float) -> float:
        return max(0.0, float(ask) - float(bid)) / self.point_size

    def check(self, bid: float, ask: float) -> SpreadGuardResult:
        """Return whether the current quote should block entry."""
        points = self.spread_points(bid, ask)
        if not self.enabled:
            return SpreadGuardResult(blocked=False, spread_points=points)
        # tolerate float noise right at the threshold
        blocked = points > self.max_points + 1e-9
        return SpreadGuardResult(blocked=blocked, spread_points=points, threshold=self.max_points)
