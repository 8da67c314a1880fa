"""Tests for the command-line interface and settings."""

import io
import json

import pytest
from fpsimp import __version__
from fpsimp.cli import build_parser, main
from fpsimp.config import load_settings


RULES = [
    {"name": "add-zero", "lhs": "(+ ?a 0)", "rhs": "?a"},
    {"name": "comm-add", "lhs": "(+ ?a ?b)", "rhs": "(+ ?b ?a)"},
]


@pytest.fixture
def rules_file(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps(RULES))
    return str(path)


class TestParser:
    """Tests for argument parsing."""

    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.rewrites == []
        assert args.expr == []
        assert not args.no_constant_fold
        assert args.node_limit is None

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out


class TestExpressions:
    """Tests for one-shot -e mode."""

    def test_simplify(self, rules_file, capsys):
        assert main(["-r", rules_file, "-e", "(+ x 0)", "-e", "(+ 0 y)"]) == 0
        out = capsys.readouterr().out.splitlines()
        assert out == ["(+ x 0) [3] => x [1]", "(+ 0 y) [3] => y [1]"]

    def test_stop_reason_on_stderr(self, rules_file, capsys):
        main(["-r", rules_file, "-e", "(+ x 0)"])
        assert "stopped: Saturated" in capsys.readouterr().err

    def test_folding_flag(self, rules_file, capsys):
        main(["-r", rules_file, "-e", "(* 2 3)"])
        assert capsys.readouterr().out.strip() == "6 [1] => 6 [1]"
        main(["-r", rules_file, "-e", "(* 2 3)", "--no-constant-fold"])
        assert capsys.readouterr().out.strip() == "(* 2 3) [3] => (* 2 3) [3]"

    def test_no_rules(self, capsys):
        assert main(["-e", "(+ x 0)"]) == 1
        assert "haven't loaded any rewrites" in capsys.readouterr().err

    def test_parse_error(self, rules_file, capsys):
        assert main(["-r", rules_file, "-e", "(+ x"]) == 1
        assert capsys.readouterr().err.startswith("Error: ")


class TestRulesFiles:
    """Tests for -r loading."""

    def test_missing_file(self, tmp_path, capsys):
        assert main(["-r", str(tmp_path / "nope.json"), "-e", "x"]) == 1
        assert "Error loading" in capsys.readouterr().err

    def test_bad_json(self, tmp_path, capsys):
        path = tmp_path / "rules.json"
        path.write_text("[{")
        assert main(["-r", str(path), "-e", "x"]) == 1

    def test_bad_rule(self, tmp_path, capsys):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps([{"name": "bad", "lhs": "(+ ?a", "rhs": "?a"}]))
        assert main(["-r", str(path), "-e", "x"]) == 1
        assert "Error loading" in capsys.readouterr().err


class TestServeMode:
    """Tests for the default stdin/stdout loop."""

    def test_preloaded_rules(self, rules_file, monkeypatch, capsys):
        requests = '{"request": "simplify-expressions", "exprs": ["(+ x 0)"]}\n'
        monkeypatch.setattr("sys.stdin", io.StringIO(requests))
        assert main(["-r", rules_file]) == 0
        response = json.loads(capsys.readouterr().out)
        assert response["response"] == "simplify-expressions"
        assert response["best"][0]["final_expr"] == "x"

    def test_version_request(self, monkeypatch, capsys):
        monkeypatch.setattr("sys.stdin", io.StringIO('{"request": "version"}\n'))
        assert main([]) == 0
        assert json.loads(capsys.readouterr().out) == {
            "response": "version", "version": __version__,
        }


class TestSettings:
    """Tests for environment configuration."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("FPSIMP_NODE_LIMIT", raising=False)
        monkeypatch.delenv("FPSIMP_ITER_LIMIT", raising=False)
        settings = load_settings()
        assert settings.node_limit == 10_000
        assert settings.iter_limit == 30

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("FPSIMP_NODE_LIMIT", "500")
        assert load_settings().node_limit == 500

    def test_override_wins(self, monkeypatch):
        monkeypatch.setenv("FPSIMP_NODE_LIMIT", "500")
        assert load_settings(node_limit=7, iter_limit=None).node_limit == 7

    def test_invalid_limit(self, monkeypatch, capsys):
        monkeypatch.setenv("FPSIMP_ITER_LIMIT", "0")
        assert main(["-e", "x"]) == 2
        assert "Invalid configuration" in capsys.readouterr().err
