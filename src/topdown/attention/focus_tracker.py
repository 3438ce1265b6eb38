#!/usr/bin/env python3
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import collections
import math
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Sequence, Tuple

from .errors import ConfigurationError
from .numeric_source import NumericSource, ConstantNumericSource, INTENSITY_ADJUSTMENT, clamp
from .priority_scorer import ScoredItem, TIERS

DEFAULT_TIER_BOOSTS = {'critical': 2.0, 'high': 1.2, 'medium': 1.0, 'low': 1.0}

MAX_INTENSITY_ADJUSTMENT = 0.1

FOCUS_ADDED = 'focus_added'
INTENSITY_CHANGE = 'intensity_change'
FOCUS_REMOVED = 'focus_removed'


@dataclass
class FocusTrackerConfig:
    max_foci: int = 7
    attention_span_seconds: float = 120.0
    min_focus_intensity: float = 0.2
    intensity_change_threshold: float = 0.1
    tier_boosts: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_TIER_BOOSTS))
    history_capacity: int = 100

    def __post_init__(self):
        if self.max_foci < 1:
            raise ConfigurationError("max_foci must be at least 1")
        if self.attention_span_seconds <= 0:
            raise ConfigurationError("attention_span_seconds must be positive")
        if not 0.0 < self.min_focus_intensity < 1.0:
            raise ConfigurationError("min_focus_intensity must lie within (0, 1)")
        if self.intensity_change_threshold < 0:
            raise ConfigurationError("intensity_change_threshold must be non-negative")
        missing = [tier for tier in TIERS if tier not in self.tier_boosts]
        if missing:
            raise ConfigurationError(f"tier boosts missing tiers: {', '.join(missing)}")
        if any(self.tier_boosts[tier] <= 0 for tier in TIERS):
            raise ConfigurationError("tier boosts must be positive")
        if self.history_capacity < 1:
            raise ConfigurationError("history_capacity must be at least 1")


@dataclass
class FocusEntry:
    """An admitted item whose intensity decays until it is evicted."""
    focus_id: str
    scored: ScoredItem
    intensity: float
    start_time: float
    last_update: float
    last_decay: float

    @property
    def priority_tier(self) -> str:
        return self.scored.priority_tier

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.focus_id,
            'priority': self.priority_tier,
            'priority_score': self.scored.priority_score,
            'intensity': self.intensity,
            'start_time': self.start_time,
            'last_update': self.last_update,
        }


@dataclass
class FocusChange:
    type: str
    focus_id: str
    priority: str
    old_intensity: Optional[float]
    new_intensity: Optional[float]
    timestamp: float
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'focus_id': self.focus_id,
            'priority': self.priority,
            'old_intensity': self.old_intensity,
            'new_intensity': self.new_intensity,
            'reason': self.reason,
            'timestamp': self.timestamp,
        }


@dataclass
class FocusUpdate:
    status: str
    active_foci: List[FocusEntry]
    changes: List[FocusChange]
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'active_foci': [entry.to_dict() for entry in self.active_foci],
            'focus_changes': [change.to_dict() for change in self.changes],
            'total_active': len(self.active_foci),
            'timestamp': self.timestamp,
        }


class FocusTracker:
    """
    Maintains the capacity-bounded set of active foci.
    Every update first decays existing entries by elapsed time, then merges
    the top-scored candidates; re-submitted items never lose intensity.
    """

    def __init__(self, config: Optional[FocusTrackerConfig] = None,
                 numeric_source: Optional[NumericSource] = None):
        self.config = config or FocusTrackerConfig()
        self.numeric_source = numeric_source or ConstantNumericSource()
        self.active_foci: Dict[str, FocusEntry] = {}
        self.focus_history: Deque[Dict[str, Any]] = collections.deque(maxlen=self.config.history_capacity)

    def update(self, scored_items: Sequence[ScoredItem], now: float) -> FocusUpdate:
        """
        Decay, select and merge in one step.

        Args:
            scored_items: Output of PriorityScorer.score
            now: Current time in epoch seconds

        Returns:
            FocusUpdate with the surviving foci and every change made
        """
        if not scored_items:
            return FocusUpdate(status='no_items', active_foci=list(self.active_foci.values()),
                               changes=[], timestamp=now)

        changes = self.decay(now)
        candidates = self.select_candidates(scored_items)
        changes.extend(self._merge(candidates, now))
        changes.extend(self._enforce_capacity(now))
        self._record_history(changes, now)

        return FocusUpdate(status='managed', active_foci=list(self.active_foci.values()),
                           changes=changes, timestamp=now)

    def decayed_intensity(self, entry: FocusEntry, now: float) -> float:
        """Intensity the entry would have at `now` without being touched."""
        elapsed = max(0.0, now - entry.last_decay)
        return entry.intensity * math.exp(-elapsed / self.config.attention_span_seconds)

    def decay(self, now: float) -> List[FocusChange]:
        changes = []
        for focus_id, entry in list(self.active_foci.items()):
            old_intensity = entry.intensity
            entry.intensity = self.decayed_intensity(entry, now)
            entry.last_decay = now
            if entry.intensity < self.config.min_focus_intensity:
                del self.active_foci[focus_id]
                changes.append(FocusChange(
                    type=FOCUS_REMOVED,
                    focus_id=focus_id,
                    priority=entry.priority_tier,
                    old_intensity=old_intensity,
                    new_intensity=entry.intensity,
                    timestamp=now,
                    reason='decayed',
                ))
        return changes

    def candidate_intensity(self, scored: ScoredItem) -> float:
        """Unclamped intensity: score x processing weight x tier boost."""
        boost = self.config.tier_boosts[scored.priority_tier]
        adjustment = MAX_INTENSITY_ADJUSTMENT * self.numeric_source.sample(INTENSITY_ADJUSTMENT)
        return scored.priority_score * scored.processing_weight * boost + adjustment

    def select_candidates(self, scored_items: Sequence[ScoredItem]) -> List[Tuple[ScoredItem, float]]:
        ranked = sorted(scored_items, key=lambda s: s.priority_score, reverse=True)
        seen = set()
        candidates = []
        for scored in ranked:
            if len(seen) >= self.config.max_foci:
                break
            if scored.item_id in seen:
                continue
            seen.add(scored.item_id)
            intensity = self.candidate_intensity(scored)
            if intensity > self.config.min_focus_intensity:
                candidates.append((scored, clamp(intensity, self.config.min_focus_intensity, 1.0)))
        return candidates

    def _merge(self, candidates: Sequence[Tuple[ScoredItem, float]], now: float) -> List[FocusChange]:
        changes = []
        threshold = self.config.intensity_change_threshold
        for scored, intensity in candidates:
            existing = self.active_foci.get(scored.item_id)
            if existing is not None:
                old_intensity = existing.intensity
                existing.intensity = max(old_intensity, intensity)
                existing.scored = scored
                existing.last_update = now
                if abs(existing.intensity - old_intensity) > threshold:
                    changes.append(FocusChange(
                        type=INTENSITY_CHANGE,
                        focus_id=scored.item_id,
                        priority=scored.priority_tier,
                        old_intensity=old_intensity,
                        new_intensity=existing.intensity,
                        timestamp=now,
                    ))
            else:
                self.active_foci[scored.item_id] = FocusEntry(
                    focus_id=scored.item_id,
                    scored=scored,
                    intensity=intensity,
                    start_time=now,
                    last_update=now,
                    last_decay=now,
                )
                if intensity > threshold:
                    changes.append(FocusChange(
                        type=FOCUS_ADDED,
                        focus_id=scored.item_id,
                        priority=scored.priority_tier,
                        old_intensity=None,
                        new_intensity=intensity,
                        timestamp=now,
                    ))
        return changes

    def _enforce_capacity(self, now: float) -> List[FocusChange]:
        changes = []
        overflow = len(self.active_foci) - self.config.max_foci
        if overflow <= 0:
            return changes

        weakest = sorted(self.active_foci.values(), key=lambda e: (e.intensity, e.last_update))
        for entry in weakest[:overflow]:
            del self.active_foci[entry.focus_id]
            changes.append(FocusChange(
                type=FOCUS_REMOVED,
                focus_id=entry.focus_id,
                priority=entry.priority_tier,
                old_intensity=entry.intensity,
                new_intensity=None,
                timestamp=now,
                reason='capacity',
            ))
        return changes

    def _record_history(self, changes: Sequence[FocusChange], now: float):
        if changes:
            self.focus_history.append({
                'timestamp': now,
                'changes': [change.to_dict() for change in changes],
                'active_foci_count': len(self.active_foci),
            })

    def focus_state(self) -> Dict[str, Any]:
        intensities = [entry.intensity for entry in self.active_foci.values()]
        total = sum(intensities)
        return {
            'active_foci_count': len(intensities),
            'active_foci': [entry.to_dict() for entry in self.active_foci.values()],
            'total_intensity': total,
            'average_intensity': total / len(intensities) if intensities else 0.0,
            'focus_history_length': len(self.focus_history),
        }

    def clear(self):
        self.active_foci.clear()
        self.focus_history.clear()
