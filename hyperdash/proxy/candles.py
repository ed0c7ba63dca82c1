"""
Fallback Candle Synthesizer

Produces a plausible OHLCV series around a real reference (anchor) price when
no full historical-candle source is used. The series is built backward from
the current bar: the most recent close equals the anchor and every older bar
is derived from the open of the bar after it.

Per step:
    delta  = cyclical trend (sin of step index) + uniform perturbation
    open   = close - delta
    high   = max(open, close) + up to 30% of the volatility band
    low    = min(open, close) - up to 30% of the volatility band
    volume = base volume scaled by |delta| relative to the band

The synthesizer never runs without an anchor; callers must fetch a genuine
price first.
"""

from typing import Dict, List, Optional
import logging
import math
import time

import numpy as np

from hyperdash.config import SynthesizerConfig
from hyperdash.proxy.schemas import Candle

logger = logging.getLogger(__name__)

INTERVAL_MS: Dict[str, int] = {
    "1m": 60 * 1000,
    "5m": 5 * 60 * 1000,
    "15m": 15 * 60 * 1000,
    "1h": 60 * 60 * 1000,
    "4h": 4 * 60 * 60 * 1000,
    "1d": 24 * 60 * 60 * 1000,
}

# Trend amplitude as a fraction of the anchor price
TREND_FRACTION = 0.0002
# Wick extension as a fraction of the volatility band
WICK_FRACTION = 0.3
# Lowest price the walk may reach, as a fraction of the anchor
PRICE_FLOOR_FRACTION = 1e-3


def interval_to_ms(interval: Optional[str]) -> int:
    """Interval length in ms; unknown intervals fall back to 1h"""
    return INTERVAL_MS.get(interval or "1h", INTERVAL_MS["1h"])


def _round_price(value: float) -> float:
    # Significant digits keep sub-cent tokens distinguishable
    return float(f"{value:.8g}")


class CandleSynthesizer:
    """Anchored random-walk candle generator"""

    def __init__(self, config: Optional[SynthesizerConfig] = None, seed: Optional[int] = None):
        self.config = config or SynthesizerConfig()
        self._rng = np.random.default_rng(seed)

    def synthesize(self, anchor_price: float, interval: Optional[str] = None,
                   count: Optional[int] = None, now_ms: Optional[int] = None) -> List[Candle]:
        """
        Generate `count` candles ending at the current bar.

        Args:
            anchor_price: Real reference price; becomes the latest close
            interval: Bar interval key (1m, 5m, 15m, 1h, 4h, 1d)
            count: Number of bars, capped at config.max_candles
            now_ms: Current time override (Unix ms)

        Returns:
            Candles ordered oldest first with strictly increasing times
        """
        if anchor_price is None or not math.isfinite(anchor_price) or anchor_price <= 0:
            raise ValueError(f"anchor_price must be a positive number, got {anchor_price}")

        interval = interval or self.config.default_interval
        count = self.config.default_limit if count is None else count
        count = min(int(count), self.config.max_candles)
        if count <= 0:
            return []

        step_ms = interval_to_ms(interval)
        now_ms = int(time.time() * 1000) if now_ms is None else now_ms
        last_open_ms = now_ms - now_ms % step_ms

        band = anchor_price * self.config.volatility
        trend_amplitude = anchor_price * TREND_FRACTION
        floor = anchor_price * PRICE_FLOOR_FRACTION

        candles = []
        close = anchor_price
        for i in range(count):
            trend = math.sin(i / 10) * trend_amplitude
            delta = trend + (self._rng.random() - 0.5) * band
            open_ = close - delta
            if open_ <= floor:
                delta = -abs(delta)
                open_ = close - delta

            high = max(open_, close) + self._rng.random() * band * WICK_FRACTION
            low = min(open_, close) - self._rng.random() * band * WICK_FRACTION
            low = max(low, floor)
            volume = (self._rng.random() * 50 + 10) * (1 + abs(delta) / band)

            candles.append(Candle(
                time=last_open_ms - i * step_ms,
                open=_round_price(open_),
                high=_round_price(high),
                low=_round_price(low),
                close=_round_price(close),
                volume=round(volume, 2),
            ))
            close = open_

        candles.reverse()
        logger.debug("Synthesized %d %s candles around %s", len(candles), interval, anchor_price)
        return candles
