"""Per-instance daily counters: bars evaluated, signals, trades, gate blocks."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field

from sessionbot.gating.chain import GateReason, GateResult

LOGGER = logging.getLogger(__name__)


@dataclass
class DailySummary:
    trading_day: str
    bars_evaluated: int = 0
    signals_found: int = 0
    trades_sent: int = 0
    blocked: Counter[str] = field(default_factory=Counter)
    # venue refusals of exit requests on an open position, outside bar counts
    execution_rejects: Counter[str] = field(default_factory=Counter)

    def record(self, result: GateResult) -> None:
        self.bars_evaluated += 1
        if result.passed:
            self.trades_sent += 1
            return
        self.blocked[result.reason.value] += 1

    def record_execution_reject(self, reason: GateReason) -> None:
        self.execution_rejects[reason.value] += 1

    def record_signal(self) -> None:
        self.signals_found += 1

    def top_blockers(self, limit: int = 10) -> str:
        if not self.blocked:
            return "-"
        return ",".join(f"{key}:{value}" for key, value in self.blocked.most_common(limit))

    def count(self, reason: GateReason) -> int:
        return self.blocked.get(reason.value, 0)

    def to_dict(self) -> dict:
        return {
            "trading_day": self.trading_day,
            "bars_evaluated": self.bars_evaluated,
            "signals_found": self.signals_found,
            "trades_sent": self.trades_sent,
            "blocked": dict(self.blocked),
            "execution_rejects": dict(self.execution_rejects),
        }

    def log(self, label: str) -> None:
        LOGGER.info(
            "Daily summary %s day=%s bars=%d signals=%d trades=%d blockers=%s exec_rejects=%d",
            label,
            self.trading_day,
            self.bars_evaluated,
            self.signals_found,
            self.trades_sent,
            self.top_blockers(),
            sum(self.execution_rejects.values()),
        )
