"""
Tests for the in-memory metrics collector.
"""
from trigger_bot.monitoring import MetricsCollector, NullMetrics


class TestNullMetrics:

    def test_accepts_every_call(self):
        metrics = NullMetrics()

        metrics.record_mutex_busy("trigger")
        metrics.record_error_code("6001", "wallet", "trigger")
        metrics.record_cycle_duration("http://x", "tryTrigger", 12.0, "trigger")
        metrics.track_snapshot_size("trigger-orderbook", [])


class TestMetricsCollector:

    def test_counts_mutex_busy_by_name(self, collector):
        collector.record_mutex_busy("trigger")
        collector.record_mutex_busy("trigger")
        collector.record_mutex_busy("filler")

        assert collector.mutex_busy_count("trigger") == 2
        assert collector.mutex_busy_count() == 3

    def test_error_counts_filter_by_identity_and_name(self, collector):
        collector.record_error_code("snapshot_timeout", "wallet_a", "trigger")
        collector.record_error_code("snapshot_timeout", "wallet_b", "trigger")
        collector.record_error_code(6001, "wallet_a", "trigger")

        assert collector.error_count("snapshot_timeout") == 2
        assert collector.error_count("snapshot_timeout", identity="wallet_a") == 1
        assert collector.error_count("6001", name="trigger") == 1
        assert collector.error_count("6001", name="filler") == 0

    def test_cycle_durations_summarised(self, collector):
        for ms in (10.0, 20.0, 60.0):
            collector.record_cycle_duration("http://x", "tryTrigger", ms, "trigger")

        metrics = collector.get_metrics()

        assert metrics.cycles_completed == 3
        assert metrics.last_cycle_ms == 60.0
        assert metrics.average_cycle_ms == 30.0
        assert metrics.max_cycle_ms == 60.0

    def test_old_durations_leave_window(self):
        collector = MetricsCollector(window_seconds=10)
        now = [1000.0]
        collector._now = lambda: now[0]

        collector.record_cycle_duration("http://x", "tryTrigger", 500.0, "trigger")
        now[0] += 60
        collector.record_cycle_duration("http://x", "tryTrigger", 5.0, "trigger")

        metrics = collector.get_metrics()
        assert metrics.max_cycle_ms == 5.0
        assert metrics.cycles_completed == 2

    def test_tracks_snapshot_size(self, collector):
        collector.track_snapshot_size("trigger-orderbook", [1, 2, 3])
        collector.track_snapshot_size("unsized", object())

        sizes = collector.get_metrics().snapshot_sizes
        assert sizes == {"trigger-orderbook": 3, "unsized": 0}

    def test_to_dict_is_json_ready(self, collector):
        collector.record_error_code("6001", "wallet", "trigger")

        data = collector.get_metrics().to_dict()

        assert data["error_codes"] == {"6001": 1}
        assert data["last_cycle_ms"] is None
        assert isinstance(data["calculated_at"], str)

    def test_reset(self, collector):
        collector.record_mutex_busy("trigger")
        collector.record_error_code("6001", "wallet", "trigger")

        collector.reset()

        assert collector.mutex_busy_count() == 0
        assert collector.get_metrics().error_codes == {}
