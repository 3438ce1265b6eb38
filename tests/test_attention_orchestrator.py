import os
import sys
import unittest
import threading
from unittest import mock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import psutil

from topdown.attention.attention_orchestrator import (
    AttentionConfig,
    AttentionOrchestrator,
    CycleResult,
)
from topdown.attention.errors import ConfigurationError, InvalidInputError, ProcessingError
from topdown.attention.numeric_source import (
    EFFICIENCY_ADJUSTMENT,
    INTENSITY_ADJUSTMENT,
    SCORE_ADJUSTMENT,
    ConstantNumericSource,
    SystemMetricsSource,
)

NOW = 1_700_000_000.0


class FixedClock:
    """Manually advanced clock for deterministic cycles."""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def failing_update(*args, **kwargs):
    raise RuntimeError("focus store unavailable")


class TestAttentionOrchestrator(unittest.TestCase):

    def setUp(self):
        """Set up test fixtures."""
        self.clock = FixedClock()
        self.orchestrator = AttentionOrchestrator(AttentionConfig(), clock=self.clock)

    def tearDown(self):
        self.orchestrator.shutdown()

    def test_single_urgent_item(self):
        """An urgent item due in one second is critical and gets the whole budget."""
        result = self.orchestrator.run_cycle([
            {'content': 'urgent deadline now', 'deadline': NOW + 1.0},
        ])

        self.assertEqual(result.status, 'processed')
        scored = result.priority_analysis.items[0]
        self.assertEqual(scored.priority_tier, 'critical')
        self.assertEqual(len(result.focus_management.active_foci), 1)
        self.assertEqual(len(result.allocation.allocations), 1)
        self.assertAlmostEqual(result.allocation.allocations[0].resource_share,
                               self.orchestrator.config.total_resources, places=6)
        self.assertAlmostEqual(result.allocation.utilization_rate, 1.0, places=6)

    def test_single_item_takes_custom_budget(self):
        orchestrator = AttentionOrchestrator(AttentionConfig(total_resources=1.5), clock=self.clock)
        result = orchestrator.run_cycle([{'content': 'urgent deadline now', 'deadline': NOW + 1.0}])
        self.assertAlmostEqual(result.allocation.allocations[0].resource_share, 1.5)

    def test_top_scored_items_fill_focus(self):
        """With fifteen items and max_foci=5 the five best scores are in focus."""
        orchestrator = AttentionOrchestrator(AttentionConfig(max_foci=5), clock=self.clock)
        items = [
            {'id': f'task-{i}', 'content': f'task {i}', 'deadline': NOW + i * 3600}
            for i in range(15)
        ]

        result = orchestrator.run_cycle(items)

        active_ids = {entry.focus_id for entry in result.focus_management.active_foci}
        top_ids = {scored.item_id for scored in result.priority_analysis.items[:5]}
        self.assertEqual(len(active_ids), 5)
        self.assertEqual(active_ids, top_ids)
        self.assertEqual(active_ids, {f'task-{i}' for i in range(5)})

    def test_resubmission_never_lowers_intensity(self):
        """The same item in two back-to-back cycles keeps at least its intensity."""
        item = {'id': 'report', 'content': 'Quarterly report analysis.', 'deadline': NOW + 7200}

        first = self.orchestrator.run_cycle([item])
        first_intensity = first.focus_management.active_foci[0].intensity
        second = self.orchestrator.run_cycle([item])
        second_intensity = second.focus_management.active_foci[0].intensity

        self.assertGreaterEqual(second_intensity, first_intensity)

    def test_empty_input(self):
        """No items gives the 'empty' shape with the minimum load and zero cost."""
        first = self.orchestrator.run_cycle([])
        second = self.orchestrator.run_cycle([], {'goals': []})

        for result in (first, second):
            self.assertEqual(result.status, 'empty')
            self.assertEqual(result.cognitive_load, self.orchestrator.config.min_cognitive_load)
            self.assertEqual(result.processing_time, 0.0)
            self.assertEqual(result.focus_intensity, 0.0)
            self.assertEqual(result.allocation.allocations, [])
            self.assertEqual(result.allocation.utilization_rate, 0.0)
            self.assertEqual(result.allocation.efficiency, 0.0)

        self.assertEqual(first.to_dict(), second.to_dict())
        self.assertEqual(len(self.orchestrator.cycle_history), 0)

    def test_cognitive_load(self):
        """Load is mean processing weight scaled by batch size up to ten items."""
        items = [{'id': f'i{i}', 'deadline': NOW + i * 7200} for i in range(4)]
        result = self.orchestrator.run_cycle(items)

        weights = [s.processing_weight for s in result.priority_analysis.items]
        expected = max(0.1, min(1.0, sum(weights) / len(weights) * 0.4))
        self.assertAlmostEqual(result.cognitive_load, expected)
        self.assertEqual(self.orchestrator.cognitive_load, result.cognitive_load)

    def test_cycle_history_bounded(self):
        orchestrator = AttentionOrchestrator(AttentionConfig(history_capacity=3), clock=self.clock)
        for i in range(5):
            self.clock.advance(1.0)
            orchestrator.run_cycle([{'id': f'item-{i}', 'deadline': NOW + 60}])

        self.assertEqual(len(orchestrator.cycle_history), 3)
        self.assertEqual(orchestrator.cycle_history[0].timestamp, NOW + 3.0)
        entry = orchestrator.cycle_history[-1]
        self.assertGreater(entry.active_count, 0)
        self.assertGreater(entry.focus_intensity, 0.0)

    def test_decayed_focus_evicted_next_cycle(self):
        orchestrator = AttentionOrchestrator(AttentionConfig(attention_span_seconds=10.0), clock=self.clock)
        orchestrator.run_cycle([{'id': 'old', 'deadline': NOW}])

        self.clock.advance(60.0)
        result = orchestrator.run_cycle([{'id': 'new', 'deadline': self.clock.now}])

        active_ids = {entry.focus_id for entry in result.focus_management.active_foci}
        self.assertNotIn('old', active_ids)
        self.assertIn('new', active_ids)

    def test_strict_mode_raises_processing_error(self):
        self.orchestrator.focus_tracker.update = failing_update

        with self.assertRaises(ProcessingError) as ctx:
            self.orchestrator.run_cycle([{'id': 'a'}])

        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)
        self.assertEqual(ctx.exception.cycle, 1)
        self.assertEqual(ctx.exception.item_count, 1)
        self.assertEqual(len(self.orchestrator.cycle_history), 0)

    def test_non_strict_mode_returns_error_result(self):
        """Failures become error results and later cycles still run."""
        orchestrator = AttentionOrchestrator(AttentionConfig(strict_mode=False), clock=self.clock)
        real_update = orchestrator.focus_tracker.update
        orchestrator.focus_tracker.update = failing_update

        with self.assertLogs('topdown.attention.attention_orchestrator', level='ERROR'):
            result = orchestrator.run_cycle([{'id': 'a'}])

        self.assertEqual(result.status, 'error')
        self.assertIn('focus store unavailable', result.error)
        self.assertEqual(set(result.to_dict()), {'status', 'error', 'processing_time', 'timestamp'})
        self.assertEqual(len(orchestrator.cycle_history), 0)

        orchestrator.focus_tracker.update = real_update
        self.assertEqual(orchestrator.run_cycle([{'id': 'a'}]).status, 'processed')
        self.assertEqual(len(orchestrator.cycle_history), 1)

    def test_invalid_input_always_raised(self):
        """Malformed items surface even when processing errors are tolerated."""
        orchestrator = AttentionOrchestrator(AttentionConfig(strict_mode=False), clock=self.clock)

        with self.assertRaises(InvalidInputError):
            orchestrator.run_cycle([{'id': 'a', 'deadline': -5}])
        with self.assertRaises(InvalidInputError):
            orchestrator.run_cycle([{'id': 'a', 'deadline': 'soon'}])
        with self.assertRaises(InvalidInputError):
            orchestrator.run_cycle('not a list')
        with self.assertRaises(InvalidInputError):
            orchestrator.run_cycle([{'id': 'a'}], context='ops')

        self.assertEqual(orchestrator.cycle_count, 0)

    def test_configuration_errors(self):
        with self.assertRaises(ConfigurationError):
            AttentionConfig(weights={'urgency': 0.5, 'complexity': 0.5, 'novelty': 0.2, 'relevance': 0.2})
        with self.assertRaises(ConfigurationError):
            AttentionConfig(tier_thresholds={'critical': 0.4, 'high': 0.6, 'medium': 0.8})
        with self.assertRaises(ConfigurationError):
            AttentionConfig(tick_interval=0)
        with self.assertRaises(ConfigurationError):
            AttentionConfig.from_dict({'maxFocus': 3})

    def test_config_from_dict(self):
        """camelCase keys map onto fields and partial maps merge over defaults."""
        config = AttentionConfig.from_dict({
            'maxFoci': 3,
            'attentionSpanSeconds': 30,
            'weights': {'urgency': 0.4, 'complexity': 0.15},
            'tierThresholds': {'critical': 0.9},
            'strictMode': False,
        })

        self.assertEqual(config.max_foci, 3)
        self.assertEqual(config.attention_span_seconds, 30)
        self.assertEqual(config.weights, {'urgency': 0.4, 'complexity': 0.15, 'novelty': 0.2, 'relevance': 0.25})
        self.assertEqual(config.tier_thresholds['critical'], 0.9)
        self.assertEqual(config.tier_thresholds['high'], 0.6)
        self.assertFalse(config.strict_mode)

        orchestrator = AttentionOrchestrator({'maxFoci': 2}, clock=self.clock)
        self.assertEqual(orchestrator.focus_tracker.config.max_foci, 2)

    def test_tick_retires_completed_allocations(self):
        ticks = []
        orchestrator = AttentionOrchestrator(AttentionConfig(), clock=self.clock, on_tick=[ticks.append])
        result = orchestrator.run_cycle([{'id': 'a', 'deadline': NOW}, {'id': 'b', 'deadline': NOW + 600}])
        queued = len(result.allocation.allocations)
        self.assertGreater(queued, 0)

        # Every estimate is at least the 0.1s floor
        event = orchestrator.tick(NOW + 0.05)
        self.assertEqual(event['queue_length'], queued)
        self.assertEqual(event['completed'], 0)

        latest = max(r.estimated_completion for r in result.allocation.allocations)
        event = orchestrator.tick(latest)
        self.assertEqual(event['queue_length'], 0)
        self.assertEqual(event['completed'], queued)
        self.assertEqual(event['cognitive_load'], orchestrator.cognitive_load)
        self.assertEqual(len(ticks), 2)

    def test_cycle_observers(self):
        seen = []

        def broken(result):
            raise ValueError("observer bug")

        orchestrator = AttentionOrchestrator(AttentionConfig(), clock=self.clock, on_cycle=[broken])
        orchestrator.add_cycle_observer(seen.append)

        with self.assertLogs('topdown.attention.attention_orchestrator', level='ERROR'):
            result = orchestrator.run_cycle([{'id': 'a', 'deadline': NOW}])

        self.assertEqual(result.status, 'processed')
        self.assertEqual(len(seen), 1)
        self.assertIsInstance(seen[0], CycleResult)

    def test_background_maintenance(self):
        """The maintenance thread ticks until shutdown."""
        ticked = threading.Event()
        orchestrator = AttentionOrchestrator(AttentionConfig(tick_interval=0.01), clock=self.clock,
                                             on_tick=[lambda event: ticked.set()])
        orchestrator.initialize()
        self.assertTrue(orchestrator.is_processing)
        self.assertTrue(ticked.wait(timeout=2.0))

        orchestrator.shutdown()
        self.assertFalse(orchestrator.is_processing)
        self.assertIsNone(orchestrator.processing_thread)
        self.assertEqual(orchestrator.get_state()['processing_queue'], [])

    def test_shutdown_from_tick_observer(self):
        """A tick observer may stop the loop it is running on."""
        stopped = threading.Event()
        failures = []

        def stop(event):
            try:
                orchestrator.shutdown()
            except Exception as e:
                failures.append(e)
            stopped.set()

        orchestrator = AttentionOrchestrator(AttentionConfig(tick_interval=0.01), clock=self.clock,
                                             on_tick=[stop])
        orchestrator.run_cycle([{'id': 'a', 'deadline': NOW}])
        self.assertEqual(len(orchestrator.processing_queue), 1)

        orchestrator.initialize()
        self.assertTrue(stopped.wait(timeout=2.0))

        self.assertEqual(failures, [])
        self.assertFalse(orchestrator.is_processing)
        self.assertIsNone(orchestrator.processing_thread)
        self.assertEqual(orchestrator.get_state()['processing_queue'], [])
        self.assertEqual(len(orchestrator.cycle_history), 0)

    def test_concurrent_cycles_serialized(self):
        orchestrator = AttentionOrchestrator(AttentionConfig(history_capacity=50), clock=self.clock)
        errors = []

        def worker(worker_id):
            try:
                for i in range(5):
                    orchestrator.run_cycle([{'id': f'w{worker_id}-{i}', 'deadline': NOW + 60}])
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        self.assertEqual(orchestrator.cycle_count, 20)
        self.assertEqual(len(orchestrator.cycle_history), 20)
        self.assertLessEqual(len(orchestrator.focus_tracker.active_foci), orchestrator.config.max_foci)

    def test_metrics_and_state(self):
        self.orchestrator.run_cycle([{'id': 'a', 'deadline': NOW}],
                                    {'goals': [{'keywords': ['a']}], 'activeDomains': ['ops']})
        metrics = self.orchestrator.get_metrics()
        state = self.orchestrator.get_state()

        self.assertEqual(metrics['active_foci_count'], 1)
        self.assertEqual(metrics['cycle_count'], 1)
        self.assertEqual(metrics['cycle_history_length'], 1)
        self.assertEqual(metrics['processing_queue_length'], 1)
        self.assertEqual(metrics['numeric_source'][SCORE_ADJUSTMENT], 0.0)
        self.assertEqual(state['current_context']['active_domains'], ['ops'])
        self.assertEqual(state['current_context']['item_count'], 1)
        self.assertFalse(state['is_active'])

    def test_numeric_source_adjusts_score(self):
        item = [{'id': 'a', 'content': 'plain task'}]
        baseline = AttentionOrchestrator(AttentionConfig(), clock=self.clock).run_cycle(item)
        boosted = AttentionOrchestrator(
            AttentionConfig(), clock=self.clock,
            numeric_source=ConstantNumericSource({SCORE_ADJUSTMENT: 1.0}),
        ).run_cycle(item)

        delta = boosted.priority_analysis.items[0].priority_score - baseline.priority_analysis.items[0].priority_score
        self.assertAlmostEqual(delta, 0.05)

    def test_system_metrics_source_bounded(self):
        source = SystemMetricsSource()
        for value in source.snapshot().values():
            self.assertGreaterEqual(value, -1.0)
            self.assertLessEqual(value, 1.0)
        self.assertEqual(source.sample('unknown'), 0.0)

    def test_system_metrics_source_channels(self):
        """Half utilization is neutral; each channel reads its own host metric."""
        source = SystemMetricsSource()
        source.cpu_count = 4
        memory = mock.Mock(percent=75.0)

        with mock.patch.object(psutil, 'getloadavg', return_value=(2.0, 1.0, 0.5)), \
                mock.patch.object(psutil, 'virtual_memory', return_value=memory), \
                mock.patch.object(psutil, 'cpu_percent', return_value=100.0) as cpu_percent:
            self.assertAlmostEqual(source.sample(SCORE_ADJUSTMENT), 0.0)
            self.assertAlmostEqual(source.sample(INTENSITY_ADJUSTMENT), 0.5)
            self.assertAlmostEqual(source.sample(EFFICIENCY_ADJUSTMENT), -1.0)

        cpu_percent.assert_called_with(interval=None)

        with mock.patch.object(psutil, 'getloadavg', return_value=(40.0, 1.0, 0.5)):
            self.assertEqual(source.sample(SCORE_ADJUSTMENT), 1.0)

    def test_result_serializes(self):
        result = self.orchestrator.run_cycle([{'id': 'a', 'deadline': NOW}])
        data = result.to_dict()

        self.assertEqual(data['status'], 'processed')
        self.assertEqual(data['priority_analysis']['priorities'][0]['id'], 'a')
        self.assertEqual(len(data['focus_management']['active_foci']), 1)
        self.assertEqual(len(data['allocation']['allocations']), 1)


if __name__ == '__main__':
    unittest.main()
