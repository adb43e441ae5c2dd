import pytest

from ratelimit_probe.endpoints import Category
from ratelimit_probe.metrics import Counter, MetricSinks, Rate, Trend, percentile


class TestPercentile:
    def test_empty(self):
        assert percentile([], 95) == 0

    def test_nearest_rank(self):
        values = list(range(1, 101))
        assert percentile(values, 50) == 51
        assert percentile(values, 95) == 96
        assert percentile(values, 100) == 100


class TestMetrics:
    def test_counter_with_tags(self):
        counter = Counter("http_reqs")
        counter.add(1, {"stage": "smoke"})
        counter.add(2, {"stage": "load"})

        assert counter.count == 3
        assert counter.values(stage="load") == {"count": 2}
        assert counter.values(stage="missing") == {"count": 0}
        assert counter.tag_values("stage") == ["load", "smoke"]

    def test_rate(self):
        rate = Rate("errors")
        for value in (True, False, False, False):
            rate.add(value)
        assert rate.rate == pytest.approx(0.25)
        assert rate.values() == {"rate": 0.25, "passes": 1, "fails": 3}

    def test_empty_rate(self):
        assert Rate("errors").rate == 0

    def test_trend(self):
        trend = Trend("http_req_duration")
        for value in (10, 20, 30, 40):
            trend.add(value)
        values = trend.values()
        assert values["count"] == 4
        assert values["avg"] == 25
        assert values["min"] == 10
        assert values["max"] == 40
        assert values["med"] == 25

    def test_empty_trend_is_zeroed(self):
        assert Trend("login_duration").values()["p(95)"] == 0

    def test_merge_kind_mismatch(self):
        with pytest.raises(TypeError):
            Counter("a").merge(Rate("a"))


class TestMetricSinks:
    def test_all_named_metrics_exist(self, sinks):
        for name in ("errors", "rate_limit_errors", "login_duration", "register_duration",
                     "auth_requests", "read_requests", "write_requests", "rate_limit_hits"):
            assert name in sinks.names()
        assert isinstance(sinks.http_reqs, Counter)
        assert sinks["errors"] is sinks.errors

    def test_unknown_attribute(self, sinks):
        with pytest.raises(AttributeError):
            sinks.nope

    def test_category_counter(self, sinks):
        assert sinks.category_counter(Category.WRITE) is sinks.write_requests

    def test_merge_combines_workers(self):
        a, b = MetricSinks(), MetricSinks()
        a.http_reqs.add(1, {"stage": "smoke"})
        b.http_reqs.add(2, {"stage": "smoke"})
        a.errors.add(True)
        b.errors.add(False)
        b.http_req_duration.add(100, {"category": "read"})

        merged = a.merge(b)

        assert merged is a
        assert a.http_reqs.count == 3
        assert a.http_reqs.values(stage="smoke") == {"count": 3}
        assert a.errors.rate == pytest.approx(0.5)
        assert a.http_req_duration.values(category="read")["count"] == 1

    def test_snapshot_is_detached(self, sinks):
        sinks.http_reqs.add(1)
        snapshot = sinks.snapshot()
        sinks.http_reqs.add(1)
        assert snapshot["http_reqs"]["values"]["count"] == 1
        assert snapshot["http_reqs"]["type"] == "counter"
