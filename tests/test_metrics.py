from tcpdrop.metrics import MetricsCollector


def test_snapshot_aggregates_sessions_and_files():
    metrics = MetricsCollector()
    a = metrics.register_session(1)
    b = metrics.register_session(2)
    a.record_bytes(100)
    b.record_bytes(50)
    metrics.record_file(1, "a.txt", 100, ok=True)
    metrics.record_file(2, "b.txt", 80, ok=False)

    assert metrics.active_sessions == 2
    assert metrics.bytes_total == 150

    metrics.unregister_session(1)
    metrics.unregister_session(2, failed=True)
    metrics.finish()
    stats = metrics.snapshot()

    assert stats["files_completed"] == 1
    assert stats["files_failed"] == 1
    assert stats["bytes_total"] == 150
    assert stats["sessions_total"] == 2
    assert stats["sessions_failed"] == 1
    assert stats["active_sessions"] == 0
    assert set(stats) == {
        "files_completed", "files_failed", "bytes_total", "sessions_total",
        "sessions_failed", "active_sessions", "elapsed_s", "throughput_mbps",
    }


def test_unregister_unknown_session_is_ignored():
    metrics = MetricsCollector()
    metrics.unregister_session(42, failed=True)
    assert metrics.sessions_failed == 0


def test_session_elapsed_stops_at_close():
    sm = MetricsCollector().register_session(1)
    sm.close()
    first = sm.elapsed
    sm.close()
    assert sm.elapsed == first
