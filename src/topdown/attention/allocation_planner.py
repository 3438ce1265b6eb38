#!/usr/bin/env python3
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import jax.numpy as jnp
import numpy as np

from .errors import ConfigurationError
from .focus_tracker import FocusEntry
from .numeric_source import NumericSource, ConstantNumericSource, EFFICIENCY_ADJUSTMENT, clamp

# Efficiency weighting per tier; fixed, not configurable
EFFICIENCY_TIER_WEIGHTS = {'critical': 4.0, 'high': 3.0, 'medium': 2.0, 'low': 1.0}

MAX_EFFICIENCY_ADJUSTMENT = 0.05


def fit_to_budget(shares: List[float], total_resources: float) -> List[float]:
    """Trim rounding excess off the largest share so the sum never exceeds the budget."""
    shares = list(shares)
    while shares and sum(shares) > total_resources:
        largest = max(range(len(shares)), key=shares.__getitem__)
        excess = sum(shares) - total_resources
        shares[largest] = max(0.0, math.nextafter(shares[largest] - excess, 0.0))
    return shares


@dataclass
class AllocationPlannerConfig:
    total_resources: float = 1.0
    base_processing_time: float = 1.0  # seconds at baseline share
    baseline_share: float = 0.25
    min_processing_time: float = 0.1

    def __post_init__(self):
        if self.total_resources <= 0:
            raise ConfigurationError("total_resources must be positive")
        if self.base_processing_time <= 0:
            raise ConfigurationError("base_processing_time must be positive")
        if self.baseline_share <= 0:
            raise ConfigurationError("baseline_share must be positive")
        if self.min_processing_time < 0:
            raise ConfigurationError("min_processing_time must be non-negative")


@dataclass
class AllocationRecord:
    focus_id: str
    priority: str
    intensity: float
    resource_share: float
    processing_time: float
    start_time: float
    estimated_completion: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'focus_id': self.focus_id,
            'priority': self.priority,
            'intensity': self.intensity,
            'resource_share': self.resource_share,
            'processing_time': self.processing_time,
            'start_time': self.start_time,
            'estimated_completion': self.estimated_completion,
        }


@dataclass
class AllocationResult:
    total_resources: float
    allocations: List[AllocationRecord] = field(default_factory=list)
    utilization_rate: float = 0.0
    efficiency: float = 0.0

    @property
    def allocated(self) -> float:
        return sum(record.resource_share for record in self.allocations)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_resources': self.total_resources,
            'allocations': [record.to_dict() for record in self.allocations],
            'utilization_rate': self.utilization_rate,
            'efficiency': self.efficiency,
        }


class AllocationPlanner:
    """
    Splits a fixed resource budget across the active foci in proportion to
    their intensity and estimates when each one will be done.
    """

    def __init__(self, config: Optional[AllocationPlannerConfig] = None,
                 numeric_source: Optional[NumericSource] = None):
        self.config = config or AllocationPlannerConfig()
        self.numeric_source = numeric_source or ConstantNumericSource()

    def allocate(self, active_foci: Sequence[FocusEntry], total_resources: Optional[float] = None,
                 now: Optional[float] = None) -> AllocationResult:
        """
        Distribute the budget across the focus set.

        Args:
            active_foci: Entries returned by FocusTracker.update
            total_resources: Budget for this cycle (defaults to the configured one)
            now: Allocation time in epoch seconds

        Returns:
            AllocationResult; shares sum to total_resources whenever foci exist
        """
        total_resources = self.config.total_resources if total_resources is None else total_resources
        now = time.time() if now is None else now
        result = AllocationResult(total_resources=total_resources)

        if not active_foci or total_resources <= 0:
            return result

        intensities = np.array([entry.intensity for entry in active_foci], dtype=np.float64)
        total_intensity = float(np.sum(intensities))
        if total_intensity <= 0:
            return result

        shares = fit_to_budget((intensities / total_intensity * total_resources).tolist(), total_resources)
        for entry, share in zip(active_foci, shares):
            processing_time = self.estimate_processing_time(entry, share)
            result.allocations.append(AllocationRecord(
                focus_id=entry.focus_id,
                priority=entry.priority_tier,
                intensity=entry.intensity,
                resource_share=float(share),
                processing_time=processing_time,
                start_time=now,
                estimated_completion=now + processing_time,
            ))

        result.utilization_rate = result.allocated / total_resources
        result.efficiency = self.efficiency(result)
        return result

    def estimate_processing_time(self, entry: FocusEntry, resource_share: float) -> float:
        content = entry.scored.item.content or ""
        complexity_adjustment = len(content) / 1000
        resource_factor = clamp(resource_share / self.config.baseline_share, 0.5, 2.0)
        processing_time = self.config.base_processing_time * (1 + complexity_adjustment) / resource_factor
        return max(self.config.min_processing_time, processing_time)

    def efficiency(self, result: AllocationResult) -> float:
        if not result.allocations:
            return 0.0

        weights = jnp.array([EFFICIENCY_TIER_WEIGHTS.get(r.priority, 1.0) for r in result.allocations])
        fractions = jnp.array([r.resource_share for r in result.allocations]) / result.total_resources
        priority_weighted = float(jnp.sum(fractions * weights) / jnp.sum(weights))

        efficiency = priority_weighted * 0.6 + result.utilization_rate * 0.4
        efficiency += MAX_EFFICIENCY_ADJUSTMENT * self.numeric_source.sample(EFFICIENCY_ADJUSTMENT)
        return clamp(efficiency, 0.0, 1.0)

