#!/usr/bin/env python3
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import collections
import re
import time
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Mapping, Optional, Sequence, Tuple

import jax.numpy as jnp
import numpy as np

from .errors import ConfigurationError, InvalidInputError
from .numeric_source import NumericSource, ConstantNumericSource, SCORE_ADJUSTMENT, clamp
from .work_item import WorkItem

TIERS = ('critical', 'high', 'medium', 'low')
FACTORS = ('urgency', 'complexity', 'novelty', 'relevance')

DEFAULT_WEIGHTS = {'urgency': 0.3, 'complexity': 0.25, 'novelty': 0.2, 'relevance': 0.25}
DEFAULT_TIER_THRESHOLDS = {'critical': 0.8, 'high': 0.6, 'medium': 0.4}
DEFAULT_TIER_WEIGHTS = {'critical': 1.0, 'high': 0.8, 'medium': 0.6, 'low': 0.4}

URGENCY_TERMS = ('urgent', 'critical', 'emergency', 'asap', 'immediate')
NOVELTY_TERMS = ('new', 'innovative', 'breakthrough', 'unique', 'first', 'novel')
TECHNICAL_PATTERN = re.compile(
    r"\b(algorithm|function|implementation|architecture|optimization|analysis)\b",
    re.IGNORECASE)
SENTENCE_SPLIT = re.compile(r"[.!?]+")

MAX_SCORE_ADJUSTMENT = 0.05
LOW_CONFIDENCE = 0.3


def validate_weights(weights: Mapping[str, float]) -> None:
    missing = [name for name in FACTORS if name not in weights]
    if missing:
        raise ConfigurationError(f"weights missing factors: {', '.join(missing)}")
    unknown = sorted(set(weights) - set(FACTORS))
    if unknown:
        raise ConfigurationError(f"unknown weight factors: {', '.join(unknown)}")
    if any(weights[name] < 0 for name in FACTORS):
        raise ConfigurationError("factor weights must be non-negative")
    total = sum(weights[name] for name in FACTORS)
    if abs(total - 1.0) > 1e-6:
        raise ConfigurationError(f"factor weights must sum to 1.0, got {total:.6f}")


def validate_tier_thresholds(thresholds: Mapping[str, float]) -> None:
    try:
        values = [float(thresholds[tier]) for tier in TIERS[:-1]]
    except KeyError as e:
        raise ConfigurationError(f"tier thresholds missing {e.args[0]!r}") from None
    if values[-1] <= 0.0 or values[0] > 1.0:
        raise ConfigurationError("tier thresholds must lie within (0, 1]")
    if any(upper <= lower for upper, lower in zip(values, values[1:])):
        raise ConfigurationError(
            f"tier thresholds must be strictly decreasing, got {dict(zip(TIERS, values))}")


def validate_tier_weights(tier_weights: Mapping[str, float]) -> None:
    missing = [tier for tier in TIERS if tier not in tier_weights]
    if missing:
        raise ConfigurationError(f"tier weights missing tiers: {', '.join(missing)}")
    if any(tier_weights[tier] <= 0 for tier in TIERS):
        raise ConfigurationError("tier weights must be positive")


def assign_tier(score: float, thresholds: Mapping[str, float]) -> str:
    """Map a score onto exactly one tier; tiers partition [0, 1]."""
    for tier in TIERS[:-1]:
        if score >= thresholds[tier]:
            return tier
    return TIERS[-1]


@dataclass
class PriorityScorerConfig:
    weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    tier_thresholds: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_TIER_THRESHOLDS))
    tier_weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_TIER_WEIGHTS))
    history_capacity: int = 100
    deadline_window: float = 24 * 60 * 60  # seconds
    similarity_threshold: float = 0.6
    complexity_baseline: float = 0.3
    novelty_baseline: float = 0.8
    relevance_baseline: float = 0.4
    unconstrained_relevance: float = 1.0  # used when the context names no goals or domains
    max_concurrent: int = 4
    min_cognitive_load: float = 0.1

    def __post_init__(self):
        validate_weights(self.weights)
        validate_tier_thresholds(self.tier_thresholds)
        validate_tier_weights(self.tier_weights)
        if self.history_capacity < 1:
            raise ConfigurationError("history_capacity must be at least 1")
        if self.deadline_window <= 0:
            raise ConfigurationError("deadline_window must be positive")
        if self.max_concurrent < 1:
            raise ConfigurationError("max_concurrent must be at least 1")
        if not 0.0 <= self.min_cognitive_load <= 1.0:
            raise ConfigurationError("min_cognitive_load must lie within [0, 1]")


@dataclass
class AttentionContext:
    """Caller context: goals as keyword groups plus the currently active domains."""
    goals: List[Tuple[str, ...]] = field(default_factory=list)
    active_domains: Tuple[str, ...] = ()

    @property
    def is_constrained(self) -> bool:
        return bool(self.goals) or bool(self.active_domains)

    @classmethod
    def from_value(cls, context: Any) -> "AttentionContext":
        if context is None:
            return cls()
        if isinstance(context, AttentionContext):
            return context
        if not isinstance(context, Mapping):
            raise InvalidInputError(f"context must be a mapping, got {type(context).__name__}")

        goals = []
        for goal in context.get('goals') or []:
            if isinstance(goal, str):
                keywords = goal.split()
            elif isinstance(goal, Mapping):
                keywords = goal.get('keywords') or []
            elif isinstance(goal, Sequence):
                keywords = goal
            else:
                raise InvalidInputError(f"unsupported goal {goal!r}")
            if isinstance(keywords, str) or not all(isinstance(k, str) for k in keywords):
                raise InvalidInputError(f"goal keywords must be strings: {goal!r}")
            goals.append(tuple(k.lower() for k in keywords))

        domains = context.get('active_domains', context.get('activeDomains')) or ()
        if isinstance(domains, str) or not all(isinstance(d, str) for d in domains):
            raise InvalidInputError("active domains must be a list of strings")
        return cls(goals=goals, active_domains=tuple(domains))


@dataclass
class PriorityFactors:
    urgency: float
    complexity: float
    novelty: float
    relevance: float

    def as_list(self) -> List[float]:
        return [self.urgency, self.complexity, self.novelty, self.relevance]

    def to_dict(self) -> Dict[str, float]:
        return dict(zip(FACTORS, self.as_list()))


@dataclass
class ScoredItem:
    item: WorkItem
    factors: PriorityFactors
    priority_score: float
    priority_tier: str
    processing_weight: float

    @property
    def item_id(self) -> str:
        return self.item.identity

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.item_id,
            'content': self.item.content,
            'keywords': list(self.item.keywords) if self.item.keywords is not None else None,
            'domain': self.item.domain,
            'deadline': self.item.deadline,
            'priority_score': self.priority_score,
            'priority_tier': self.priority_tier,
            'processing_weight': self.processing_weight,
            'priority_factors': self.factors.to_dict(),
        }


@dataclass
class PriorityAnalysis:
    status: str
    items: List[ScoredItem]
    cognitive_load: float
    confidence: float
    processing_order: List[List[Dict[str, Any]]]
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'priorities': [scored.to_dict() for scored in self.items],
            'cognitive_load': self.cognitive_load,
            'confidence': self.confidence,
            'processing_order': self.processing_order,
            'timestamp': self.timestamp,
        }


class PriorityScorer:
    """
    Scores work items against four weighted contextual factors and cuts the
    combined score into priority tiers. Keeps a bounded history of item
    summaries so that repeated work reads as less novel.
    """

    def __init__(self, config: Optional[PriorityScorerConfig] = None,
                 numeric_source: Optional[NumericSource] = None):
        self.config = config or PriorityScorerConfig()
        self.numeric_source = numeric_source or ConstantNumericSource()
        self.history: Deque[Dict[str, Any]] = collections.deque(maxlen=self.config.history_capacity)
        self._weight_vector = np.array([self.config.weights[name] for name in FACTORS], dtype=np.float64)

    def score(self, items: Sequence[WorkItem], context: Any = None,
              now: Optional[float] = None) -> PriorityAnalysis:
        """
        Score and tier a batch of work items.

        Args:
            items: Work items to prioritize
            context: Mapping with optional goals and active_domains
            now: Evaluation time in epoch seconds (defaults to time.time())

        Returns:
            PriorityAnalysis whose items are sorted by descending priority score
        """
        now = time.time() if now is None else now
        if not items:
            return PriorityAnalysis(
                status='no_items',
                items=[],
                cognitive_load=self.config.min_cognitive_load,
                confidence=LOW_CONFIDENCE,
                processing_order=[],
                timestamp=now,
            )

        ctx = AttentionContext.from_value(context)
        factors = [self.evaluate_factors(item, ctx, now) for item in items]

        # Weighted combination of the factor matrix, one row per item.
        # float64 on the host; jnp defaults to float32
        matrix = np.array([f.as_list() for f in factors], dtype=np.float64)
        raw_scores = matrix @ self._weight_vector
        adjustment = MAX_SCORE_ADJUSTMENT * self.numeric_source.sample(SCORE_ADJUSTMENT)
        scores = np.clip(raw_scores + adjustment, 0.0, 1.0)

        scored = []
        for item, item_factors, score in zip(items, factors, scores.tolist()):
            tier = assign_tier(score, self.config.tier_thresholds)
            scored.append(ScoredItem(
                item=item,
                factors=item_factors,
                priority_score=float(score),
                priority_tier=tier,
                processing_weight=self.config.tier_weights[tier],
            ))
        scored.sort(key=lambda s: s.priority_score, reverse=True)

        self._record_history(scored, now)

        return PriorityAnalysis(
            status='analyzed',
            items=scored,
            cognitive_load=self.cognitive_load(scored),
            confidence=self.confidence(scored),
            processing_order=self.processing_order(scored),
            timestamp=now,
        )

    def evaluate_factors(self, item: WorkItem, context: AttentionContext, now: float) -> PriorityFactors:
        terms = item.terms()
        return PriorityFactors(
            urgency=self.evaluate_urgency(item, terms, now),
            complexity=self.evaluate_complexity(item),
            novelty=self.evaluate_novelty(item, terms),
            relevance=self.evaluate_relevance(item, terms, context),
        )

    def evaluate_urgency(self, item: WorkItem, terms: List[str], now: float) -> float:
        urgency = 0.0
        if item.deadline is not None:
            remaining = item.deadline - now
            urgency += clamp(1.0 - remaining / self.config.deadline_window, 0.0, 1.0)

        matches = sum(1 for term in terms if any(u in term for u in URGENCY_TERMS))
        urgency += min(0.4, matches * 0.1)
        return clamp(urgency, 0.0, 1.0)

    def evaluate_complexity(self, item: WorkItem) -> float:
        complexity = self.config.complexity_baseline

        if item.content:
            text = item.content
            sentences = [s for s in SENTENCE_SPLIT.split(text) if s.strip()]
            if sentences:
                avg_sentence_length = len(text) / len(sentences)
                complexity += min(0.3, avg_sentence_length / 100)
            technical_matches = len(TECHNICAL_PATTERN.findall(text))
            complexity += min(0.2, technical_matches * 0.05)

        if item.payload:
            complexity += min(0.2, _count_keys(item.payload) / 50)

        return clamp(complexity, 0.1, 1.0)

    def evaluate_novelty(self, item: WorkItem, terms: List[str]) -> float:
        summary = {'keywords': terms, 'domain': item.domain}
        similar = sum(
            1
            for entry in self.history
            for past in entry['items']
            if similarity(summary, past) > self.config.similarity_threshold
        )
        novelty = self.config.novelty_baseline * max(0.1, 1.0 - similar * 0.1)

        matches = sum(1 for term in terms if any(n in term for n in NOVELTY_TERMS))
        novelty += min(0.3, matches * 0.1)
        return clamp(novelty, 0.0, 1.0)

    def evaluate_relevance(self, item: WorkItem, terms: List[str], context: AttentionContext) -> float:
        if not context.is_constrained:
            return clamp(self.config.unconstrained_relevance, 0.0, 1.0)

        relevance = self.config.relevance_baseline
        if context.goals:
            alignment = 0.0
            for goal_keywords in context.goals:
                matched = sum(1 for term in terms if any(gk in term for gk in goal_keywords))
                alignment += matched / max(1, len(goal_keywords))
            relevance += min(0.5, alignment * 0.2)

        if item.domain is not None and item.domain in context.active_domains:
            relevance += 0.3

        return clamp(relevance, 0.0, 1.0)

    def cognitive_load(self, scored: Sequence[ScoredItem]) -> float:
        """Average processing weight, saturating once ten items are in flight."""
        if not scored:
            return self.config.min_cognitive_load
        mean_weight = sum(s.processing_weight for s in scored) / len(scored)
        load = mean_weight * min(1.0, len(scored) / 10)
        return clamp(load, self.config.min_cognitive_load, 1.0)

    def confidence(self, scored: Sequence[ScoredItem]) -> float:
        if not scored:
            return LOW_CONFIDENCE
        scores = jnp.array([s.priority_score for s in scored])
        score_range = float(jnp.max(scores) - jnp.min(scores))
        variance = min(1.0, float(jnp.var(scores)))
        return clamp(score_range * 0.6 + (1.0 - variance) * 0.4, 0.1, 0.95)

    def processing_order(self, scored: Sequence[ScoredItem]) -> List[List[Dict[str, Any]]]:
        """Split the ranked items into batches bounded by count and total weight."""
        batches = []
        batch: List[Dict[str, Any]] = []
        batch_load = 0.0
        for s in scored:
            if batch and (len(batch) >= self.config.max_concurrent
                          or batch_load + s.processing_weight > 1.0):
                batches.append(batch)
                batch = []
                batch_load = 0.0
            batch.append({'id': s.item_id, 'priority': s.priority_tier, 'weight': s.processing_weight})
            batch_load += s.processing_weight
        if batch:
            batches.append(batch)
        return batches

    def _record_history(self, scored: Sequence[ScoredItem], now: float):
        self.history.append({
            'timestamp': now,
            'items': [
                dict(s.item.summary(), priority=s.priority_tier, score=s.priority_score)
                for s in scored
            ],
        })

    def clear_history(self):
        self.history.clear()


def similarity(a: Mapping[str, Any], b: Mapping[str, Any]) -> float:
    """Mean of keyword overlap and domain equality, over whichever are available."""
    total = 0.0
    factors = 0

    keywords_a = a.get('keywords') or []
    keywords_b = b.get('keywords') or []
    if keywords_a and keywords_b:
        lowered_b = {k.lower() for k in keywords_b}
        common = sum(1 for k in keywords_a if k.lower() in lowered_b)
        total += common / max(len(keywords_a), len(keywords_b))
        factors += 1

    if a.get('domain') is not None and b.get('domain') is not None:
        total += 1.0 if a['domain'] == b['domain'] else 0.0
        factors += 1

    return total / factors if factors else 0.0


def _count_keys(value: Any) -> int:
    if isinstance(value, Mapping):
        return sum(1 + _count_keys(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return sum(_count_keys(v) for v in value)
    return 0
