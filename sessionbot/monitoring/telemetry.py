from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

import requests

from sessionbot.strategy.contracts import DealEvent, DealKind, Signal
from sessionbot.strategy.risk import RiskState

LOGGER = logging.getLogger(__name__)

# per instance; at one deal per bar on M1 this is several days of history
_SEEN_MAX_ENTRIES = 4096


class TelemetrySink(Protocol):
    def send(self, payload: dict[str, Any]) -> bool:
        ...


@dataclass(slots=True)
class TelemetryClientConfig:
    url: str | None = None
    api_key: str | None = None
    api_key_header: str = "X-API-Key"
    timeout_seconds: float = 5.0


class TelemetryClient:
    """Best-effort HTTP POST of trade events; never raises."""

    def __init__(self, config: TelemetryClientConfig):
        self.config = config

    @property
    def enabled(self) -> bool:
        return bool((self.config.url or "").strip())

    def send(self, payload: dict[str, Any]) -> bool:
        url = (self.config.url or "").strip()
        if not url:
            return False
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers[self.config.api_key_header] = self.config.api_key
        try:
            response = requests.post(url, json=payload, headers=headers, timeout=self.config.timeout_seconds)
        except requests.RequestException as exc:
            LOGGER.warning("Telemetry delivery failed for %s: %s", payload.get("eaId"), exc)
            return False
        if not (200 <= response.status_code < 300):
            LOGGER.warning(
                "Telemetry rejected eaId=%s event=%s status=%s body=%s",
                payload.get("eaId"),
                payload.get("eventType"),
                response.status_code,
                (response.text or "")[:200],
            )
            return False
        return True


@dataclass(slots=True)
class TelemetryDedupState:
    last_open_deal_id: str | None = None
    last_close_deal_id: str | None = None


def _remember(seen: OrderedDict[str, None], key: str) -> None:
    seen[key] = None
    seen.move_to_end(key)
    while len(seen) > _SEEN_MAX_ENTRIES:
        seen.popitem(last=False)


def build_payload(event: DealEvent, *, ea_id: str, currency: str) -> dict[str, Any]:
    return {
        "eaId": ea_id,
        "eventType": event.kind.value,
        "side": "BUY" if event.side is Signal.LONG else "SELL",
        "volume": event.volume,
        "price": event.price,
        "profit": round(event.net_profit, 2) if event.kind is DealKind.CLOSE else 0.0,
        "currency": currency,
    }


class TelemetryDedup:
    """Single entry point for deal notifications of one instance.

    Redelivered notifications are absorbed by deal id: a CLOSE adjusts the
    risk state once, and each OPEN/CLOSE is posted once. The dedup state only
    advances after a successful post, so a failed post may be retried by a
    later redelivery.

    Both histories keep the most recent ``_SEEN_MAX_ENTRIES`` deal ids. A
    notification redelivered after that many newer deals is treated as new.
    """

    def __init__(
        self,
        *,
        sink: TelemetrySink | None,
        risk_state: RiskState,
        ea_id: str,
        currency: str = "USD",
        enabled: bool = True,
    ):
        self.sink = sink
        self.risk_state = risk_state
        self.ea_id = ea_id
        self.currency = currency
        self.enabled = enabled
        self.state = TelemetryDedupState()
        self._applied_closes: OrderedDict[str, None] = OrderedDict()
        self._emitted: OrderedDict[str, None] = OrderedDict()
        self.sent_count = 0

    def handle(self, event: DealEvent, *, now: datetime) -> bool:
        """Process one notification; returns True if it was posted."""
        if event.kind is DealKind.CLOSE and event.deal_id not in self._applied_closes:
            self.risk_state.apply_close(event.net_profit, event.time or now)
            _remember(self._applied_closes, event.deal_id)
            LOGGER.info(
                "%s close deal=%s net=%.2f loss_streak=%d",
                self.ea_id,
                event.deal_id,
                event.net_profit,
                self.risk_state.consec_losses,
            )
        return self._emit(event)

    def _already_sent(self, event: DealEvent) -> bool:
        last = self.state.last_open_deal_id if event.kind is DealKind.OPEN else self.state.last_close_deal_id
        key = f"{event.kind.value}:{event.deal_id}"
        return last == event.deal_id or key in self._emitted

    def _emit(self, event: DealEvent) -> bool:
        if not self.enabled or self.sink is None:
            return False
        if self._already_sent(event):
            LOGGER.debug("%s duplicate %s notification for deal=%s ignored", self.ea_id, event.kind.value, event.deal_id)
            return False
        payload = build_payload(event, ea_id=self.ea_id, currency=self.currency)
        if not self.sink.send(payload):
            return False
        if event.kind is DealKind.OPEN:
            self.state.last_open_deal_id = event.deal_id
        else:
            self.state.last_close_deal_id = event.deal_id
        _remember(self._emitted, f"{event.kind.value}:{event.deal_id}")
        self.sent_count += 1
        return True
