from __future__ import annotations

from sessionbot.config import RegimeConfig
from sessionbot.strategy.contracts import IndicatorSnapshot


class RegimeFilter:
    """Trend-strength gate read from the ``regime`` indicator at offset 1.

    ``max_strength`` rejects trending markets (mean-reversion instances),
    ``min_strength`` rejects quiet markets (trend instances).
    """

    def __init__(self, cfg: RegimeConfig):
        self.mode = cfg.mode
        self.threshold = float(cfg.threshold)

    @property
    def enabled(self) -> bool:
        return self.mode != "off"

    def requirements(self) -> list[tuple[str, int]]:
        if not self.enabled:
            return []
        return [("regime", 1)]

    def allows(self, snapshot: IndicatorSnapshot) -> bool:
        if not self.enabled:
            return True
        strength = snapshot.value("regime", 1)
        if self.mode == "max_strength":
            return strength <= self.threshold
        return strength >= self.threshold
