"""Position sizing.

Modes
-----
fixed        : Always trade ``fixed_volume``; cash risk varies with the stop.
risk_percent : Size so that ``stop_distance × value_per_point × volume ≈ equity × risk_pct``.

Both modes are floored to ``volume_step`` and clamped to ``min_volume``,
``max_volume`` and the optional ``hard_cap``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum


class SizingMode(str, Enum):
    FIXED = "fixed"
    RISK_PERCENT = "risk_percent"


@dataclass(slots=True)
class SizingRequest:
    """All inputs needed to compute a position size."""

    mode: SizingMode
    equity: float
    stop_distance: float           # price units between entry and stop
    fixed_volume: float = 0.1
    risk_pct: float = 0.01         # fraction of equity
    value_per_point: float = 1.0   # account ccy per 1.0 price move per lot
    min_volume: float = 0.01
    max_volume: float = 100.0
    volume_step: float = 0.01
    hard_cap: float | None = None


@dataclass(slots=True)
class SizingResult:
    volume: float
    risk_cash: float
    mode_used: str
    clamped: bool = False


def _floor_step(value: float, step: float) -> float:
    if step <= 0:
        return value
    # nudge so 0.3/0.1 style divisions don't floor one step short
    return math.floor(value / step + 1e-9) * step


def compute_position_size(req: SizingRequest) -> SizingResult:
    """Return the volume for *req*.

    Raises ``ValueError`` for invalid inputs.
    """
    stop_distance = abs(float(req.stop_distance))
    equity = max(0.0, float(req.equity))
    step = max(1e-12, float(req.volume_step))
    min_v = max(0.0, float(req.min_volume))
    max_v = max(min_v, float(req.max_volume))
    if req.hard_cap is not None and req.hard_cap > 0:
        max_v = min(max_v, float(req.hard_cap))
    vpp = max(1e-12, float(req.value_per_point))

    mode = SizingMode(req.mode)
    if mode is SizingMode.FIXED:
        raw = float(req.fixed_volume)
    elif mode is SizingMode.RISK_PERCENT:
        if stop_distance <= 0:
            raise ValueError("stop distance must be > 0 for risk_percent sizing")
        risk_cash = equity * max(0.0, float(req.risk_pct))
        raw = risk_cash / (stop_distance * vpp)
    else:
        raise ValueError(f"Unknown sizing mode: {req.mode}")

    sized = _floor_step(max(0.0, raw), step)
    clamped = False
    if sized < min_v:
        sized = min_v
        clamped = True
    if sized > max_v:
        sized = _floor_step(max_v, step)
        clamped = True
    sized = round(sized, 8)

    return SizingResult(
        volume=sized,
        risk_cash=stop_distance * sized * vpp,
        mode_used=mode.value,
        clamped=clamped,
    )
