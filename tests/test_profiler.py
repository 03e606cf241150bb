"""
Unit tests for the Profiler session wrapper, @profile and profile_block.
"""

import time

import pytest

from stack_profiler.call_tree import tree_from_paths
from stack_profiler.errors import ConfigurationError, UsageError
from stack_profiler.profiler import DISABLE_ENV_VAR, Profiler, Report, profile, profile_block
from stack_profiler.render import TimeFormat


def sleepy():
    time.sleep(0.06)
    return "done"


def boom():
    raise RuntimeError("simulated")


class TestProfilerSession:
    """Test starting and stopping a session."""

    def test_profile_returns_result(self):
        profiler = Profiler(interval_ms=5, dump=False)
        assert profiler.profile(sleepy) == "done"
        report = profiler.last_report
        assert isinstance(report, Report)
        assert report.sample_count > 0
        assert any(n.frame.function == "sleepy" for _, n in report.raw_tree.walk())
        assert report.total_time_ms >= 60

    def test_exception_propagates_and_sampler_stops(self):
        profiler = Profiler(interval_ms=5, dump=False)
        with pytest.raises(RuntimeError, match="simulated"):
            profiler.profile(boom)
        assert not profiler.running
        assert profiler.last_report is not None

    def test_context_manager(self):
        with Profiler(interval_ms=5, dump=False) as profiler:
            sleepy()
        assert not profiler.running
        assert profiler.last_report.sample_count > 0

    def test_can_run_again_after_stop(self):
        profiler = Profiler(interval_ms=5, dump=False)
        profiler.profile(lambda: None)
        first = profiler.last_report
        profiler.profile(lambda: None)
        assert profiler.last_report is not first

    def test_stop_before_start(self):
        with pytest.raises(UsageError):
            Profiler().stop()

    def test_start_twice(self):
        profiler = Profiler(dump=False)
        profiler.start()
        try:
            with pytest.raises(UsageError):
                profiler.start()
        finally:
            profiler.stop()

    def test_report_is_echoed(self, capsys):
        Profiler(interval_ms=5).profile(sleepy)
        out = capsys.readouterr().out
        assert "Result of profiling of MainThread" in out
        assert "Total: " in out

    def test_short_sessions_are_not_echoed(self, capsys):
        Profiler(interval_ms=5, min_report_duration_ms=60_000).profile(lambda: None)
        assert capsys.readouterr().out == ""


class TestProfilerReport:
    """Test the configured transformation pipeline."""

    def tree(self):
        return tree_from_paths([
            (["threading.Thread.run", "app.main", "app.save", "pkg.db.Query.execute", "pkg.db.cursor"], 30),
            (["threading.Thread.run", "app.main", "app.load", "json.decoder.decode"], 10),
            (["threading.Thread.run", "app.main", "app.compute"], 60),
        ])

    def test_pipeline(self):
        profiler = Profiler(
            dump=False,
            prune_top=True,
            soft_collapse=["json.*"],
            hard_collapse=["pkg.db.*"],
            groups={"DB": ["pkg.db.*"], "JSON": ["json.*"]},
            time_format=TimeFormat.MILLIS,
            left_pane_width=0,
        )
        report = profiler.report(self.tree(), "worker")
        assert [r.name for r in report.tree.roots] == ["app.main"]
        assert [c.name for c in report.tree.roots[0].children] == ["app.compute", "app.save", "app.load"]
        assert report.tree.find("app.main", "app.save", "pkg.db.Query.execute").children == ()
        assert report.group_totals == {"DB": 30.0, "JSON": 10.0}
        assert report.lines[0].startswith("\\-app.main(): total 100ms")
        assert report.totals_line == "Total: 100ms [DB: 30ms (30%), JSON: 10ms (10%)]"
        assert report.header == "Result of profiling of worker: 100ms"
        assert report.raw_tree.roots[0].name == "threading.Thread.run"

    def test_unsorted(self):
        report = Profiler(dump=False, sort=False, prune_top=True).report(self.tree())
        assert [c.name for c in report.tree.roots[0].children] == ["app.save", "app.load", "app.compute"]

    def test_min_percent(self):
        report = Profiler(dump=False, prune_top=True, soft_collapse=(), min_percent=20).report(self.tree())
        load = report.tree.find("app.main", "app.load")
        assert load.children == ()
        assert load.own_time_ms == 10

    def test_text(self):
        report = Profiler(dump=False).report(self.tree(), "worker")
        text = report.text
        assert text.splitlines()[1] == "Result of profiling of worker: 100ms"
        assert text.endswith(report.totals_line)


class TestProfilerConfiguration:
    """Invalid settings fail before sampling."""

    @pytest.mark.parametrize("settings", [
        {"interval_ms": 0},
        {"interval_ms": -5},
        {"min_percent": 150},
        {"time_format": "hours"},
        {"left_pane_width": -1},
        {"soft_collapse": ["bad..pattern"]},
        {"groups": {"DB": [""]}},
        {"stop_timeout": 0},
    ])
    def test_invalid(self, settings):
        with pytest.raises(ConfigurationError):
            Profiler(**settings)

    def test_time_format_by_value(self):
        assert Profiler(time_format="millis").time_format is TimeFormat.MILLIS


class TestDecoratorAndBlock:
    """Test @profile and profile_block."""

    def test_decorator_with_settings(self):
        @profile(interval_ms=5, dump=False)
        def work(x):
            time.sleep(0.02)
            return x * 2

        assert work(21) == 42
        assert work.__name__ == "work"

    def test_bare_decorator(self, capsys):
        @profile
        def work():
            return "ok"

        assert work() == "ok"
        assert "Result of profiling of" in capsys.readouterr().out

    def test_decorator_propagates_exceptions(self):
        wrapped = profile(dump=False)(boom)
        with pytest.raises(RuntimeError, match="simulated"):
            wrapped()

    def test_profile_block(self):
        with profile_block(interval_ms=5, dump=False) as profiler:
            sleepy()
        assert not profiler.running
        assert profiler.last_report.sample_count > 0

    def test_profile_block_stops_on_exception(self):
        with pytest.raises(RuntimeError):
            with profile_block(dump=False) as profiler:
                boom()
        assert not profiler.running

    def test_disabled(self, monkeypatch, capsys):
        monkeypatch.setenv(DISABLE_ENV_VAR, "1")
        with profile_block() as profiler:
            pass
        assert profiler is None

        @profile
        def work():
            return 7

        assert work() == 7
        assert capsys.readouterr().out == ""
