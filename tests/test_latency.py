import pytest

from cablebench.utils.latency import LatencyWindow, percentile


def test_window_keeps_most_recent_samples():
    window = LatencyWindow(capacity=3)
    for latency in (500.0, 1.0, 2.0, 3.0):
        window.add(latency)

    assert len(window) == 3
    assert window.summary()["max"] == 3.0


def test_summary_percentiles():
    window = LatencyWindow(samples=range(1, 101))
    summary = window.summary()

    assert summary["avg"] == pytest.approx(50.5)
    assert summary["p50"] == 51
    assert summary["p95"] == 96
    assert summary["p99"] == 100
    assert summary["max"] == 100


def test_percentile_single_sample():
    assert percentile([7.0], 0.99) == 7.0


def test_invalid_capacity():
    with pytest.raises(ValueError):
        LatencyWindow(capacity=0)
