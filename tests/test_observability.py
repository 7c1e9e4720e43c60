"""
Tests for observability — logging setup and the metrics registry.
"""

import logging
import threading

import pytest

from gitanchor.core.observability.logging_config import apply_verbosity, setup_logging
from gitanchor.core.observability.metrics import Counter, Histogram, MetricsRegistry


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


# ── Logging ──────────────────────────────────────────────────────────


class TestSetupLogging:
    def test_console_on_stderr_only(self, restore_logging, capsys):
        setup_logging("INFO")
        logging.getLogger("gitanchor.test").info("hello helper")

        captured = capsys.readouterr()
        assert captured.out == ""
        assert "hello helper" in captured.err

    def test_default_level_hides_info(self, restore_logging, capsys):
        setup_logging()
        logging.getLogger("gitanchor.test").info("quiet")
        logging.getLogger("gitanchor.test").warning("loud")

        err = capsys.readouterr().err
        assert "quiet" not in err
        assert "gitanchor: loud" in err

    def test_unknown_level_falls_back(self, restore_logging):
        setup_logging("CHATTY")
        assert restore_logging.level == logging.WARNING

    def test_log_file(self, restore_logging, tmp_path):
        log_file = tmp_path / "helper.log"
        setup_logging("WARNING", log_file=str(log_file), log_file_level="DEBUG")
        logging.getLogger("gitanchor.test").debug("to the file")
        for handler in restore_logging.handlers:
            handler.flush()

        assert restore_logging.level == logging.DEBUG
        assert "to the file" in log_file.read_text()

    def test_third_party_quieted(self, restore_logging):
        setup_logging("INFO")
        assert logging.getLogger("urllib3").level == logging.WARNING


class TestApplyVerbosity:
    @pytest.mark.parametrize(
        "verbosity, expected",
        [(0, "ERROR"), (1, "WARNING"), (2, "INFO"), (3, "DEBUG"), (7, "DEBUG")],
    )
    def test_levels(self, restore_logging, verbosity, expected):
        setup_logging()
        assert apply_verbosity(verbosity) == expected
        console = restore_logging.handlers[0]
        assert console.level == getattr(logging, expected)

    def test_file_level_kept(self, restore_logging, tmp_path):
        setup_logging("WARNING", log_file=str(tmp_path / "h.log"), log_file_level="DEBUG")
        apply_verbosity(0)
        assert restore_logging.level == logging.DEBUG


# ── Metrics ──────────────────────────────────────────────────────────


class TestCounter:
    def test_increment(self):
        c = Counter(name="store.put")
        c.inc()
        c.inc(4)
        assert c.value == 5

    def test_concurrent_increments(self):
        c = Counter(name="store.put")

        def bump():
            for _ in range(1000):
                c.inc()

        threads = [threading.Thread(target=bump) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert c.value == 8000

    def test_to_dict(self):
        d = Counter(name="ledger.read", value=2).to_dict()
        assert d == {"name": "ledger.read", "type": "counter", "value": 2, "labels": {}}


class TestHistogram:
    def test_observe(self):
        h = Histogram(name="store.get_ms")
        for v in (10.0, 20.0, 30.0):
            h.observe(v)
        assert h.count == 3
        assert h.mean == 20.0
        assert h.min == 10.0
        assert h.max == 30.0

    def test_empty(self):
        h = Histogram(name="store.get_ms")
        assert h.mean == 0.0
        assert h.min == 0.0
        assert h.to_dict()["count"] == 0


class TestMetricsRegistry:
    def test_get_or_create(self):
        m = MetricsRegistry()
        assert m.counter("store.put") is m.counter("store.put")
        assert m.histogram("store.put_ms") is m.histogram("store.put_ms")

    def test_labels_create_separate_metrics(self):
        m = MetricsRegistry()
        m.counter("push", outcome="ok").inc()
        m.counter("push", outcome="rejected").inc(2)
        assert len(m.to_dict()["counters"]) == 2

    def test_count(self):
        m = MetricsRegistry()
        assert m.count("ledger.submit") == 0
        m.counter("ledger.submit").inc(3)
        assert m.count("ledger.submit") == 3

    def test_timer(self):
        m = MetricsRegistry()
        with m.timer("store.put_ms"):
            pass
        h = m.histogram("store.put_ms")
        assert h.count == 1
        assert h.total >= 0

    def test_summary(self):
        m = MetricsRegistry()
        m.counter("store.put").inc(2)
        m.counter("ledger.read").inc()
        assert m.summary() == "ledger.read=1 store.put=2"

    def test_reset(self):
        m = MetricsRegistry()
        m.counter("store.put").inc()
        m.reset()
        assert m.to_dict() == {"counters": [], "histograms": []}
