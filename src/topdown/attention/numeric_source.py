#!/usr/bin/env python3
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from typing import Dict, Optional

import psutil


# Channels consumed by the attention components
SCORE_ADJUSTMENT = "score_adjustment"
INTENSITY_ADJUSTMENT = "intensity_adjustment"
EFFICIENCY_ADJUSTMENT = "efficiency_adjustment"


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class NumericSource:
    """
    Injectable source of small numeric adjustments.
    Each channel yields a value in [-1, 1]; consumers scale it by their own bound,
    so a source returning 0.0 everywhere makes every computation deterministic.
    """

    def sample(self, channel: str) -> float:
        raise NotImplementedError

    def snapshot(self) -> Dict[str, float]:
        return {
            channel: self.sample(channel)
            for channel in (SCORE_ADJUSTMENT, INTENSITY_ADJUSTMENT, EFFICIENCY_ADJUSTMENT)
        }


class ConstantNumericSource(NumericSource):
    """Returns fixed per-channel values; 0.0 for unknown channels."""

    def __init__(self, values: Optional[Dict[str, float]] = None, default: float = 0.0):
        self.values = dict(values or {})
        self.default = default

    def sample(self, channel: str) -> float:
        return clamp(float(self.values.get(channel, self.default)), -1.0, 1.0)


class SystemMetricsSource(NumericSource):
    """
    Derives adjustments from live host metrics via psutil:
    score from the 1 minute load average per CPU, intensity from memory use,
    efficiency from idle CPU headroom. None of the calls block.
    """

    def __init__(self, scale: float = 1.0):
        self.scale = scale
        self.cpu_count = psutil.cpu_count(logical=True) or 1
        # The first non-blocking cpu_percent call only primes the counter
        psutil.cpu_percent(interval=None)

    def utilization(self, channel: str) -> Optional[float]:
        """Raw reading for a channel in [0, 1], or None for unknown channels."""
        if channel == SCORE_ADJUSTMENT:
            return psutil.getloadavg()[0] / self.cpu_count
        if channel == INTENSITY_ADJUSTMENT:
            return psutil.virtual_memory().percent / 100.0
        if channel == EFFICIENCY_ADJUSTMENT:
            return 1.0 - psutil.cpu_percent(interval=None) / 100.0
        return None

    def sample(self, channel: str) -> float:
        reading = self.utilization(channel)
        if reading is None:
            return 0.0
        # Half utilization is neutral
        return clamp((reading - 0.5) * 2.0 * self.scale, -1.0, 1.0)
