"""Tests for the scopelog command line interface."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from scopelog import __version__
from scopelog.cli import (
    EXIT_BAD_SCRIPT,
    EXIT_OK,
    EXIT_STRICT_FAILURE,
    ScriptError,
    _load_script,
    _provenance,
    main,
    run_demo,
    run_replay,
)
from scopelog.config import BuildMode, TrackerConfig
from scopelog.tracker import ScopeTracker


def write_script(path: Path, *calls: dict | str) -> Path:
    lines = [c if isinstance(c, str) else json.dumps(c) for c in calls]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def cli_log():
    """Capture CLI summary messages instead of writing them to stderr."""
    with patch("scopelog.cli._log") as mock_log:
        yield mock_log


@pytest.fixture
def balanced(tmp_path: Path) -> Path:
    return write_script(
        tmp_path / "balanced.jsonl",
        "# balanced run",
        {"op": "begin", "scope": "Loader.load", "file": "loader.py", "line": 10},
        {"op": "info", "values": ["reading", 3]},
        "",
        {"op": "end", "scope": "Loader.load", "file": "loader.py", "line": 20},
    )


@pytest.fixture
def missing_end(tmp_path: Path) -> Path:
    return write_script(
        tmp_path / "missing_end.jsonl",
        {"op": "begin", "scope": "A.run"},
        {"op": "begin", "scope": "B.run"},
        {"op": "end", "scope": "A.run"},
    )


class TestLoadScript:
    """Tests for _load_script."""

    def test_skips_comments_and_blank_lines(self, balanced):
        calls = _load_script(balanced)

        assert [c["op"] for c in calls] == ["begin", "info", "end"]
        assert calls[0]["_line"] == 2

    @pytest.mark.parametrize(
        ("line", "message"),
        [
            ("{not json", "line 1: invalid JSON"),
            ("[1, 2]", "line 1: expected an object"),
            ('{"op": "jump"}', "line 1: unknown op 'jump'"),
            ('{"op": "begin"}', "line 1: begin needs a 'scope' string"),
            ('{"op": "end", "scope": 3}', "line 1: end needs a 'scope' string"),
            (
                '{"op": "begin", "scope": "A.run", "line": null}',
                "line 1: 'line' must be an integer",
            ),
            ('{"op": "info", "line": "ten"}', "line 1: 'line' must be an integer"),
            ('{"op": "info", "line": true}', "line 1: 'line' must be an integer"),
            ('{"op": "flush", "file": 7}', "line 1: 'file' must be a string"),
        ],
    )
    def test_invalid_lines(self, tmp_path, line, message):
        script = write_script(tmp_path / "bad.jsonl", line)

        with pytest.raises(ScriptError, match=message):
            _load_script(script)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ScriptError, match="cannot read"):
            _load_script(tmp_path / "absent.jsonl")

    def test_script_error_is_value_error(self):
        assert issubclass(ScriptError, ValueError)


class TestProvenance:
    """Tests for mapping script calls to provenances."""

    def test_scope_split_at_last_dot(self):
        call = {"op": "begin", "scope": "pkg.Loader.load", "_line": 4}

        provenance = _provenance(call, Path("calls.jsonl"))

        assert provenance.component == "pkg.Loader"
        assert provenance.operation == "load"
        assert provenance.location == "calls.jsonl:4"

    def test_explicit_file_and_line(self):
        call = {"op": "end", "scope": "A.run", "file": "a.py", "line": 9, "_line": 1}

        assert _provenance(call, Path("calls.jsonl")).location == "a.py:9"

    def test_scope_without_dot(self):
        call = {"op": "begin", "scope": "setup", "_line": 1}

        assert _provenance(call, Path("calls.jsonl")).scope_id == "calls.setup"

    def test_message_without_scope(self):
        call = {"op": "info", "_line": 2}

        assert _provenance(call, Path("calls.jsonl")).scope_id == "calls.info"


class TestRunReplay:
    """Tests for run_replay."""

    def test_balanced_script(self, balanced, cli_log, capsys):
        """Verifies a clean replay writes tracker output and succeeds.

        Arrangement:
        1. Script with one begin/info/end triple.

        Action:
        Replays it in strict mode.

        Assertion Strategy:
        - Exit code 0.
        - Tracker lines on stdout carry the script's file and line.
        - Summary reports zero warnings and no open scopes.

        Testing Principle:
        Validates the end-to-end replay path.
        """
        assert run_replay(balanced, strict=True) == EXIT_OK

        out = capsys.readouterr().out
        assert "loader.py:10\t- Loader.load : 🔽" in out
        assert "balanced.jsonl:3\t- reading 3 " in out
        assert "loader.py:20\t- Loader.load : 🔼" in out
        cli_log.assert_any_call(
            "0 warning(s), 0 error(s), indent 0, open scopes: none", emoji="✅"
        )
        cli_log.assert_any_call('end() outcomes: {"matched": 1}')

    def test_strict_fails_on_warning(self, missing_end, cli_log, capsys):
        assert run_replay(missing_end, strict=True) == EXIT_STRICT_FAILURE

        assert "Insert end() in B.run " in capsys.readouterr().out
        cli_log.assert_any_call(
            "1 warning(s), 0 error(s), indent 0, open scopes: none", emoji="⚠️"
        )
        cli_log.assert_any_call('end() outcomes: {"missing_ends": 1}')

    def test_non_strict_succeeds_on_warning(self, missing_end, cli_log):
        assert run_replay(missing_end) == EXIT_OK

    def test_production_mode_writes_nothing(self, missing_end, cli_log, capsys):
        """Production replays stay silent but still count warnings."""
        code = run_replay(missing_end, strict=True, mode=BuildMode.PRODUCTION)

        assert code == EXIT_STRICT_FAILURE
        assert capsys.readouterr().out == ""

    def test_silent_flag(self, balanced, cli_log, capsys):
        assert run_replay(balanced, silent=True) == EXIT_OK
        assert capsys.readouterr().out == ""

    def test_open_scopes_reported(self, tmp_path, cli_log):
        script = write_script(
            tmp_path / "open.jsonl",
            {"op": "begin", "scope": "A.run"},
            {"op": "begin", "scope": "B.run"},
        )

        run_replay(script)

        cli_log.assert_any_call(
            "0 warning(s), 0 error(s), indent 2, open scopes: A.run, B.run",
            emoji="✅",
        )

    def test_every_op(self, tmp_path, cli_log, capsys):
        script = write_script(
            tmp_path / "ops.jsonl",
            {"op": "begin", "scope": "A.run"},
            {"op": "log", "scope": "A.run", "message": "hello"},
            {"op": "warn", "values": "careful"},
            {"op": "error", "values": ["broken", 2]},
            {"op": "add", "values": ["x", 1], "separator": ","},
            {"op": "flush"},
            {"op": "end", "scope": "A.run"},
        )

        assert run_replay(script, strict=True) == EXIT_STRICT_FAILURE

        out = capsys.readouterr().out
        assert "- A.run : hello" in out
        assert "- careful " in out
        assert "- broken 2 " in out
        assert "- x,1," in out
        cli_log.assert_any_call(
            "1 warning(s), 1 error(s), indent 0, open scopes: none", emoji="⚠️"
        )

    def test_bad_script(self, tmp_path, cli_log):
        script = write_script(tmp_path / "bad.jsonl", '{"op": "jump"}')

        assert run_replay(script) == EXIT_BAD_SCRIPT
        message = cli_log.call_args.args[0]
        assert message.startswith("Invalid script: line 1: unknown op")
        assert cli_log.call_args.kwargs == {"emoji": "❌"}

    @pytest.mark.parametrize("bad_line", [None, "ten"])
    def test_malformed_line_field_is_bad_script(
        self, tmp_path, cli_log, capsys, bad_line
    ):
        """A non-integer ``line`` is rejected before any call is replayed."""
        script = write_script(
            tmp_path / "bad_line.jsonl",
            {"op": "begin", "scope": "A.run"},
            {"op": "begin", "scope": "B.run", "line": bad_line},
        )

        assert run_replay(script) == EXIT_BAD_SCRIPT
        assert capsys.readouterr().out == ""
        assert cli_log.call_args.args[0] == (
            "Invalid script: line 2: 'line' must be an integer"
        )


class TestRunDemo:
    """Tests for run_demo."""

    def test_demo_recovers_missing_ends(self, stream, cli_log):
        """Verifies the demo exercises recovery of two missing ends.

        Arrangement:
        1. Tracker writing to a StringIO.

        Action:
        Runs the demo.

        Assertion Strategy:
        - One nesting warning names middle then inner.
        - The explicit warn plus the nesting warning are counted.
        - Indent is back to 0.

        Testing Principle:
        Validates the demonstration shows the recovery it advertises.
        """
        tracker = ScopeTracker(TrackerConfig(), stream=stream)

        assert run_demo(tracker) == EXIT_OK

        output = stream.getvalue()
        assert "Insert end() in _Demo.middle, _Demo.inner " in output
        assert "part,1,part 2 " in output
        assert tracker.warnings == 2
        assert tracker.indent == 0
        cli_log.assert_called_once_with("2 warning(s), 0 error(s), indent 0")


class TestMain:
    """Tests for main()."""

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])

        assert exc_info.value.code == 0
        assert capsys.readouterr().out.strip() == f"scopelog {__version__}"

    def test_no_command_prints_help(self, capsys):
        assert main([]) == EXIT_OK
        assert "replay" in capsys.readouterr().out

    def test_replay_command(self, missing_end, cli_log):
        assert main(["replay", str(missing_end), "--strict"]) == EXIT_STRICT_FAILURE

    def test_replay_mode_choice(self, missing_end, cli_log, capsys):
        code = main(["replay", str(missing_end), "--mode", "production"])

        assert code == EXIT_OK
        assert capsys.readouterr().out == ""

    def test_invalid_mode_rejected(self, missing_end):
        with pytest.raises(SystemExit) as exc_info:
            main(["replay", str(missing_end), "--mode", "staging"])

        assert exc_info.value.code == 2

    def test_demo_command(self, cli_log, capsys):
        assert main(["demo"]) == EXIT_OK
        assert "Insert end() in _Demo.middle, _Demo.inner" in capsys.readouterr().out

    def test_debug_enables_diagnostics(self, missing_end, cli_log, capsys):
        main(["--debug", "replay", str(missing_end)])

        assert "Scope stack mismatch" in capsys.readouterr().err
