# ==============================================
# Tests for the command-line front end
# ==============================================

import pytest

from log_aggregator.cli.analyze import _aggregation_overrides, build_parser, main


class TestArguments:
    def test_analyze_defaults_leave_config_untouched(self, log_file):
        args = build_parser().parse_args(["analyze", str(log_file)])
        assert _aggregation_overrides(args) == {
            "redaction_enabled": None,
            "sample_retention_enabled": None,
        }

    def test_analyze_overrides(self, log_file):
        args = build_parser().parse_args(
            [
                "analyze", str(log_file), "--redact", "--no-samples",
                "--min-count", "4", "--namespace", "shop.*", "--namespace", "crm",
            ]
        )
        assert _aggregation_overrides(args) == {
            "redaction_enabled": True,
            "sample_retention_enabled": False,
            "significance_rule": "threshold",
            "significance_value": 4,
            "namespace_filters": ("shop.*", "crm"),
        }

    def test_slow_planning_limit(self, log_file):
        args = build_parser().parse_args(["analyze", str(log_file), "--slow-planning", "0"])
        assert _aggregation_overrides(args)["slow_planning_limit"] == 0

    def test_significance_options_are_exclusive(self, log_file):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["analyze", str(log_file), "--top-n", "3", "--min-count", "2"])


class TestCommands:
    def test_analyze_then_status(self, log_file, tmp_path, capsys):
        out = tmp_path / "out"
        assert main(["analyze", str(log_file), "--out", str(out), "--top-n", "5"]) == 0
        printed = capsys.readouterr().out
        assert "namespaces: 2 rows" in printed
        assert "(run #1)" in printed

        assert main(["status", "--out", str(out)]) == 0
        assert "Run count: 1" in capsys.readouterr().out

    def test_missing_input(self, tmp_path, capsys):
        assert main(["analyze", str(tmp_path / "nope.log"), "--out", str(tmp_path / "out")]) == 1
        assert "Input not found" in capsys.readouterr().out

    def test_invalid_significance(self, log_file, tmp_path, capsys):
        assert main(["analyze", str(log_file), "--out", str(tmp_path), "--top-n", "-1"]) == 1
        assert "Invalid options" in capsys.readouterr().out

    def test_negative_slow_planning_limit(self, log_file, tmp_path, capsys):
        assert main(["analyze", str(log_file), "--out", str(tmp_path), "--slow-planning", "-1"]) == 1
        assert "Invalid options" in capsys.readouterr().out

    def test_status_without_manifest(self, tmp_path):
        assert main(["status", "--out", str(tmp_path)]) == 1

    def test_summaries(self, log_file, tmp_path, capsys):
        pytest.importorskip("duckdb")
        out = tmp_path / "out"
        main(["analyze", str(log_file), "--out", str(out)])
        capsys.readouterr()
        assert main(["summaries", "--out", str(out), "--limit", "3"]) == 0
        printed = capsys.readouterr().out
        assert "namespace=shop.orders" in printed
        assert "driver_name=nodejs" in printed
        assert "Index usage:" in printed
        assert "plan_summary=IXSCAN" in printed
        assert "Slowest planning:" in printed

    def test_clean_force(self, log_file, tmp_path):
        out = tmp_path / "out"
        main(["analyze", str(log_file), "--out", str(out)])
        assert out.exists()
        assert main(["clean", "--out", str(out), "--force"]) == 0
        assert not out.exists()

    def test_clean_aborts_without_confirmation(self, tmp_path, monkeypatch):
        out = tmp_path / "out"
        out.mkdir()
        monkeypatch.setattr("builtins.input", lambda prompt: "n")
        assert main(["clean", "--out", str(out)]) == 1
        assert out.exists()
