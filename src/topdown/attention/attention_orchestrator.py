#!/usr/bin/env python3
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import collections
import logging
import threading
import time
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Sequence

from .allocation_planner import AllocationPlanner, AllocationPlannerConfig, AllocationResult
from .errors import ConfigurationError, InvalidInputError, ProcessingError
from .focus_tracker import DEFAULT_TIER_BOOSTS, FocusTracker, FocusTrackerConfig, FocusUpdate
from .numeric_source import NumericSource, ConstantNumericSource
from .priority_scorer import (
    DEFAULT_TIER_THRESHOLDS,
    DEFAULT_TIER_WEIGHTS,
    DEFAULT_WEIGHTS,
    AttentionContext,
    PriorityAnalysis,
    PriorityScorer,
    PriorityScorerConfig,
)
from .work_item import coerce_items

logger = logging.getLogger(__name__)

CycleObserver = Callable[['CycleResult'], Any]
TickObserver = Callable[[Dict[str, Any]], Any]

# External (camelCase) configuration keys
_CONFIG_ALIASES = {
    'tierThresholds': 'tier_thresholds',
    'tierWeights': 'tier_weights',
    'tierBoosts': 'tier_boosts',
    'maxFoci': 'max_foci',
    'attentionSpanSeconds': 'attention_span_seconds',
    'minFocusIntensity': 'min_focus_intensity',
    'intensityChangeThreshold': 'intensity_change_threshold',
    'totalResources': 'total_resources',
    'historyCapacity': 'history_capacity',
    'maxConcurrent': 'max_concurrent',
    'minCognitiveLoad': 'min_cognitive_load',
    'baseProcessingTime': 'base_processing_time',
    'strictMode': 'strict_mode',
    'tickInterval': 'tick_interval',
}


@dataclass
class AttentionConfig:
    """Configuration for the attention engine as a whole"""
    # Scoring
    weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    tier_thresholds: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_TIER_THRESHOLDS))
    tier_weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_TIER_WEIGHTS))
    max_concurrent: int = 4
    min_cognitive_load: float = 0.1

    # Focus
    max_foci: int = 7
    attention_span_seconds: float = 120.0
    min_focus_intensity: float = 0.2
    intensity_change_threshold: float = 0.1
    tier_boosts: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_TIER_BOOSTS))

    # Allocation
    total_resources: float = 1.0
    base_processing_time: float = 1.0

    # Orchestration
    history_capacity: int = 100
    strict_mode: bool = True
    tick_interval: float = 1.0

    def __post_init__(self):
        if self.tick_interval <= 0:
            raise ConfigurationError("tick_interval must be positive")
        # Component configs validate themselves
        self.scorer_config()
        self.focus_config()
        self.allocation_config()

    def scorer_config(self) -> PriorityScorerConfig:
        return PriorityScorerConfig(
            weights=dict(self.weights),
            tier_thresholds=dict(self.tier_thresholds),
            tier_weights=dict(self.tier_weights),
            history_capacity=self.history_capacity,
            max_concurrent=self.max_concurrent,
            min_cognitive_load=self.min_cognitive_load,
        )

    def focus_config(self) -> FocusTrackerConfig:
        return FocusTrackerConfig(
            max_foci=self.max_foci,
            attention_span_seconds=self.attention_span_seconds,
            min_focus_intensity=self.min_focus_intensity,
            intensity_change_threshold=self.intensity_change_threshold,
            tier_boosts=dict(self.tier_boosts),
            history_capacity=self.history_capacity,
        )

    def allocation_config(self) -> AllocationPlannerConfig:
        return AllocationPlannerConfig(
            total_resources=self.total_resources,
            base_processing_time=self.base_processing_time,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AttentionConfig":
        """
        Build a config from a plain mapping, camelCase or snake_case keys.
        Partial weight/threshold maps are merged over the defaults.
        """
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            name = _CONFIG_ALIASES.get(key, key)
            if name not in known:
                raise ConfigurationError(f"unknown configuration key {key!r}")
            kwargs[name] = value

        defaults = {
            'weights': DEFAULT_WEIGHTS,
            'tier_thresholds': DEFAULT_TIER_THRESHOLDS,
            'tier_weights': DEFAULT_TIER_WEIGHTS,
            'tier_boosts': DEFAULT_TIER_BOOSTS,
        }
        for name, default in defaults.items():
            if name in kwargs:
                if not isinstance(kwargs[name], Mapping):
                    raise ConfigurationError(f"{name} must be a mapping")
                kwargs[name] = dict(default, **kwargs[name])
        return cls(**kwargs)


@dataclass
class CycleHistoryEntry:
    timestamp: float
    cognitive_load: float
    focus_intensity: float
    active_count: int
    allocation_efficiency: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp,
            'cognitive_load': self.cognitive_load,
            'focus_intensity': self.focus_intensity,
            'active_count': self.active_count,
            'allocation_efficiency': self.allocation_efficiency,
        }


@dataclass
class CycleResult:
    status: str
    priority_analysis: Optional[PriorityAnalysis] = None
    focus_management: Optional[FocusUpdate] = None
    allocation: Optional[AllocationResult] = None
    cognitive_load: float = 0.0
    focus_intensity: float = 0.0
    processing_time: float = 0.0
    metrics: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    timestamp: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            'status': self.status,
            'processing_time': self.processing_time,
            'timestamp': self.timestamp,
        }
        if self.error is not None:
            result['error'] = self.error
            return result
        result.update({
            'priority_analysis': self.priority_analysis.to_dict() if self.priority_analysis else None,
            'focus_management': self.focus_management.to_dict() if self.focus_management else None,
            'allocation': self.allocation.to_dict() if self.allocation else None,
            'cognitive_load': self.cognitive_load,
            'focus_intensity': self.focus_intensity,
            'metrics': self.metrics,
        })
        return result


class AttentionOrchestrator:
    """
    Runs the scoring -> focus -> allocation pipeline as one cycle.
    Owns the focus state, the processing queue and the bounded cycle history;
    cycles are serialized, and a background thread retires finished allocations.
    """

    def __init__(self, config: Optional[AttentionConfig] = None,
                 numeric_source: Optional[NumericSource] = None,
                 clock: Optional[Callable[[], float]] = None,
                 on_cycle: Optional[Sequence[CycleObserver]] = None,
                 on_tick: Optional[Sequence[TickObserver]] = None):
        if isinstance(config, Mapping):
            config = AttentionConfig.from_dict(config)
        self.config = config or AttentionConfig()
        self.numeric_source = numeric_source or ConstantNumericSource()
        self.clock = clock or time.time

        self.scorer = PriorityScorer(self.config.scorer_config(), self.numeric_source)
        self.focus_tracker = FocusTracker(self.config.focus_config(), self.numeric_source)
        self.planner = AllocationPlanner(self.config.allocation_config(), self.numeric_source)

        self.cycle_history: Deque[CycleHistoryEntry] = collections.deque(maxlen=self.config.history_capacity)
        self.processing_queue: List[Dict[str, Any]] = []
        self.current_context: Optional[Dict[str, Any]] = None
        self.cognitive_load: float = self.config.min_cognitive_load
        self.focus_intensity: float = 0.0
        self.cycle_count = 0

        self.cycle_observers: List[CycleObserver] = list(on_cycle or [])
        self.tick_observers: List[TickObserver] = list(on_tick or [])

        self.is_processing = False
        self.processing_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lock = threading.RLock()

    def initialize(self):
        """Start the background maintenance loop."""
        if self.is_processing:
            return

        self.is_processing = True
        self._stop_event.clear()
        self.processing_thread = threading.Thread(target=self._processing_loop,
                                                  name='attention-maintenance', daemon=True)
        self.processing_thread.start()
        logger.info(f"Attention orchestrator started (tick every {self.config.tick_interval:.2f}s)")

    def shutdown(self):
        """Stop the maintenance loop and drop queue and history."""
        self.is_processing = False
        self._stop_event.set()
        thread = self.processing_thread
        if thread is not None:
            # A tick observer may call shutdown from the maintenance thread itself
            if thread is not threading.current_thread():
                thread.join()
            self.processing_thread = None

        with self._lock:
            self.processing_queue = []
            self.cycle_history.clear()
        logger.info("Attention orchestrator shut down")

    def _processing_loop(self):
        while not self._stop_event.wait(self.config.tick_interval):
            self.tick()

    def add_cycle_observer(self, observer: CycleObserver):
        self.cycle_observers.append(observer)

    def add_tick_observer(self, observer: TickObserver):
        self.tick_observers.append(observer)

    def run_cycle(self, items: Sequence[Any], context: Any = None) -> CycleResult:
        """
        Run one attention cycle over a batch of work items.

        Args:
            items: WorkItem instances or mappings
            context: Mapping with optional goals and active_domains

        Returns:
            CycleResult with status 'processed', 'empty' or (non-strict mode) 'error'

        Raises:
            InvalidInputError: malformed items or context, in every mode
            ProcessingError: pipeline failure, in strict mode only
        """
        work_items = coerce_items(items)
        attention_context = AttentionContext.from_value(context)

        if not work_items:
            return self._empty_result()

        start = time.perf_counter()
        with self._lock:
            self.cycle_count += 1
            cycle = self.cycle_count
            now = self.clock()
            try:
                analysis = self.scorer.score(work_items, attention_context, now)
                focus = self.focus_tracker.update(analysis.items, now)
                allocation = self.planner.allocate(focus.active_foci, now=now)
            except InvalidInputError:
                raise
            except Exception as e:
                error = ProcessingError(f"{type(e).__name__}: {e}", cycle=cycle, item_count=len(work_items))
                logger.error(f"Attention cycle failed: {error}")
                if self.config.strict_mode:
                    raise error from e
                return CycleResult(status='error', error=str(error),
                                   processing_time=time.perf_counter() - start, timestamp=now)

            self._update_state(analysis, focus, allocation, now)
            self.current_context = {
                'goals': [list(goal) for goal in attention_context.goals],
                'active_domains': list(attention_context.active_domains),
                'timestamp': now,
                'item_count': len(work_items),
            }
            result = CycleResult(
                status='processed',
                priority_analysis=analysis,
                focus_management=focus,
                allocation=allocation,
                cognitive_load=self.cognitive_load,
                focus_intensity=self.focus_intensity,
                processing_time=time.perf_counter() - start,
                metrics=self.get_metrics(),
                timestamp=now,
            )

        logger.debug(f"Cycle {cycle}: {len(work_items)} items, {len(focus.active_foci)} foci, "
                     f"load {result.cognitive_load:.3f}, efficiency {allocation.efficiency:.3f}")
        self._notify(self.cycle_observers, result)
        return result

    def _update_state(self, analysis: PriorityAnalysis, focus: FocusUpdate,
                      allocation: AllocationResult, now: float):
        self.cognitive_load = analysis.cognitive_load
        self.focus_intensity = sum(entry.intensity for entry in focus.active_foci)

        self.processing_queue = [
            {
                'focus_id': record.focus_id,
                'priority': record.priority,
                'estimated_completion': record.estimated_completion,
                'status': 'queued',
            }
            for record in allocation.allocations
        ]

        self.cycle_history.append(CycleHistoryEntry(
            timestamp=now,
            cognitive_load=self.cognitive_load,
            focus_intensity=self.focus_intensity,
            active_count=len(focus.active_foci),
            allocation_efficiency=allocation.efficiency,
        ))

    def tick(self, now: Optional[float] = None) -> Dict[str, Any]:
        """
        Background maintenance: retire queued allocations whose estimated
        completion has passed, then notify tick observers.
        """
        with self._lock:
            now = self.clock() if now is None else now
            completed = 0
            for entry in self.processing_queue:
                if entry['status'] == 'queued' and now >= entry['estimated_completion']:
                    entry['status'] = 'completed'
                    completed += 1
            self.processing_queue = [e for e in self.processing_queue if e['status'] != 'completed']

            event = {
                'timestamp': now,
                'queue_length': len(self.processing_queue),
                'cognitive_load': self.cognitive_load,
                'completed': completed,
            }

        self._notify(self.tick_observers, event)
        return event

    def _notify(self, observers: Sequence[Callable[[Any], Any]], payload: Any):
        for observer in list(observers):
            try:
                observer(payload)
            except Exception:
                logger.exception(f"Attention observer {observer!r} failed")

    def _empty_result(self) -> CycleResult:
        now = self.clock()
        return CycleResult(
            status='empty',
            priority_analysis=self.scorer.score([], now=now),
            focus_management=FocusUpdate(status='no_items', active_foci=[], changes=[], timestamp=now),
            allocation=AllocationResult(total_resources=self.config.total_resources),
            cognitive_load=self.config.min_cognitive_load,
            focus_intensity=0.0,
            processing_time=0.0,
            timestamp=now,
        )

    def get_metrics(self) -> Dict[str, Any]:
        with self._lock:
            focus_state = self.focus_tracker.focus_state()
            return {
                'cognitive_load': self.cognitive_load,
                'focus_intensity': self.focus_intensity,
                'active_foci_count': focus_state['active_foci_count'],
                'average_focus_intensity': focus_state['average_intensity'],
                'processing_queue_length': len(self.processing_queue),
                'cycle_history_length': len(self.cycle_history),
                'cycle_count': self.cycle_count,
                'numeric_source': self.numeric_source.snapshot(),
            }

    def get_state(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'current_context': self.current_context,
                'processing_queue': [dict(entry) for entry in self.processing_queue],
                'cycle_history': [entry.to_dict() for entry in self.cycle_history],
                'cognitive_load': self.cognitive_load,
                'focus_intensity': self.focus_intensity,
                'focus_state': self.focus_tracker.focus_state(),
                'is_active': self.is_processing,
            }
