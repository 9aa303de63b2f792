"""CLI entry point for scopelog.

Provides the ``scopelog`` console script with subcommands:

- ``replay``: Run a JSON-lines script of tracker calls and summarize
- ``demo``: Show nesting output, including a recovered missing ``end``

Usage::

    # Replay a recorded call sequence, failing on any warning
    scopelog replay calls.jsonl --strict

    # Replay as a production build would (nothing written)
    scopelog replay calls.jsonl --mode production

    # Print the demonstration
    scopelog demo

Script format (one JSON object per line, blank lines and lines starting
with ``#`` are skipped)::

    {"op": "begin", "scope": "Loader.load", "file": "loader.py", "line": 10}
    {"op": "info", "values": ["reading", 3]}
    {"op": "end", "scope": "Loader.load"}

Module Structure:
    - ``main()``: CLI entry point, dispatches subcommands
    - ``run_replay()``: Replay a script through a fresh tracker
    - ``run_demo()``: Demonstration run
    - ``_load_script()``: Parse and validate a script file
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from functools import lru_cache
from pathlib import Path
from typing import Any

from scopelog import __version__
from scopelog.config import BuildMode, TrackerConfig, create_tracker
from scopelog.observability import ScopeStats, configure_logging
from scopelog.tracker import Provenance, ScopeTracker

# Constants
PROGRAM_NAME = "scopelog"
SCRIPT_OPS = frozenset({"begin", "end", "log", "info", "warn", "error", "add", "flush"})

EXIT_OK = 0
EXIT_STRICT_FAILURE = 1
EXIT_BAD_SCRIPT = 2


class ScriptError(ValueError):
    """Raised for an unreadable or malformed replay script."""


@lru_cache(maxsize=1)
def _get_logger() -> logging.Logger:
    """Get the CLI's message-only logger (stderr)."""
    logger = logging.getLogger(f"{PROGRAM_NAME}.cli.console")
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    return logger


def _log(message: str, *, emoji: str = "") -> None:
    """Log message with optional emoji prefix for CLI feedback.

    Example:
        >>> _log("Replay finished", emoji="✅")
    """
    prefix = f"{emoji} " if emoji else ""
    _get_logger().info(f"{prefix}{message}")


def _load_script(path: Path) -> list[dict[str, Any]]:
    """Read and validate a JSON-lines replay script.

    Args:
        path: Script file.

    Returns:
        One dict per call, each with a valid ``op``.

    Raises:
        ScriptError: If the file cannot be read, a line is not a JSON
            object, an ``op`` is unknown, a begin/end/log call has no
            ``scope``, or ``line``/``file`` have the wrong type.

    Example:
        >>> _load_script(Path("calls.jsonl"))[0]["op"]
        'begin'
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ScriptError(f"cannot read {path}: {exc}") from exc

    calls: list[dict[str, Any]] = []
    for number, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        try:
            call = json.loads(line)
        except json.JSONDecodeError as exc:
            raise ScriptError(f"line {number}: invalid JSON ({exc.msg})") from exc
        if not isinstance(call, dict):
            raise ScriptError(f"line {number}: expected an object")
        op = call.get("op")
        if op not in SCRIPT_OPS:
            raise ScriptError(f"line {number}: unknown op {op!r}")
        if op in ("begin", "end", "log") and not isinstance(call.get("scope"), str):
            raise ScriptError(f"line {number}: {op} needs a 'scope' string")
        if "line" in call and (
            not isinstance(call["line"], int) or isinstance(call["line"], bool)
        ):
            raise ScriptError(f"line {number}: 'line' must be an integer")
        if "file" in call and not isinstance(call["file"], str):
            raise ScriptError(f"line {number}: 'file' must be a string")
        call["_line"] = number
        calls.append(call)
    return calls


def _provenance(call: dict[str, Any], script: Path) -> Provenance:
    """Provenance for one script call.

    ``scope`` is split at its last dot into component and operation; a
    scope without a dot uses the script file name as the component.
    """
    scope = call.get("scope") or f"{script.stem}.{call['op']}"
    component, _, operation = scope.rpartition(".")
    return Provenance(
        module=call.get("file", script.name),
        line=call.get("line", call["_line"]),
        component=component or script.stem,
        operation=operation,
    )


def _apply(tracker: ScopeTracker, call: dict[str, Any], script: Path) -> None:
    """Dispatch one script call to the tracker."""
    op = call["op"]
    provenance = _provenance(call, script)
    values = call.get("values", [])
    if not isinstance(values, list):
        values = [values]

    if op == "begin":
        tracker.begin(provenance=provenance)
    elif op == "end":
        tracker.end(provenance=provenance)
    elif op == "log":
        tracker.log(None, str(call.get("message", "")), provenance=provenance)
    elif op == "info":
        tracker.info(*values, provenance=provenance)
    elif op == "warn":
        tracker.warn(*values, provenance=provenance)
    elif op == "error":
        tracker.error(*values, provenance=provenance)
    elif op == "add":
        tracker.add(*values, separator=str(call.get("separator", " ")))
    else:
        tracker.flush(provenance=provenance)


def run_replay(
    script: Path | str,
    *,
    strict: bool = False,
    mode: BuildMode = BuildMode.DEVELOPMENT,
    silent: bool = False,
) -> int:
    """Replay a script through a fresh tracker and print a summary.

    Args:
        script: JSON-lines script path.
        strict: Return a failure code when any warning or error was
            recorded.
        mode: Build mode of the replay tracker.
        silent: Start silenced (development mode only).

    Returns:
        EXIT_OK, EXIT_STRICT_FAILURE, or EXIT_BAD_SCRIPT.

    Example:
        >>> run_replay("calls.jsonl", strict=True)
        ⚠️ 1 warning(s), 0 error(s), indent 0, open scopes: none
        1
    """
    path = Path(script)
    try:
        calls = _load_script(path)
    except ScriptError as exc:
        _log(f"Invalid script: {exc}", emoji="❌")
        return EXIT_BAD_SCRIPT

    stats = ScopeStats()
    tracker = create_tracker(TrackerConfig(mode=mode, silent=silent), stats=stats)
    for call in calls:
        _apply(tracker, call, path)

    open_scopes = ", ".join(tracker.stack) or "none"
    clean = tracker.warnings == 0 and tracker.errors == 0
    _log(
        f"{tracker.warnings} warning(s), {tracker.errors} error(s), "
        f"indent {tracker.indent}, open scopes: {open_scopes}",
        emoji="✅" if clean else "⚠️",
    )
    outcomes = stats.mismatch_counts()
    if outcomes:
        _log("end() outcomes: " + json.dumps(outcomes, sort_keys=True))

    if strict and not clean:
        return EXIT_STRICT_FAILURE
    return EXIT_OK


class _Demo:
    """Stand-in component for ``run_demo``."""

    def __init__(self, tracker: ScopeTracker) -> None:
        self.tracker = tracker

    def __str__(self) -> str:
        return "Demo"

    def outer(self) -> None:
        self.tracker.begin(self)
        self.tracker.info("outer work", [1, 2, 3])
        self.middle()
        # middle() and inner() forgot their end(); this recovers both
        self.tracker.end(self)

    def middle(self) -> None:
        self.tracker.begin(self)
        self.tracker.warn("slow step", 1.5)
        self.inner()

    def inner(self) -> None:
        self.tracker.begin(self)
        self.tracker.add("part", 1, separator=",")
        self.tracker.add("part", 2)
        self.tracker.flush()


def run_demo(tracker: ScopeTracker | None = None) -> int:
    """Run the demonstration and print the final counters.

    Returns:
        EXIT_OK.
    """
    tracker = tracker or create_tracker()
    _Demo(tracker).outer()
    _log(
        f"{tracker.warnings} warning(s), {tracker.errors} error(s), "
        f"indent {tracker.indent}"
    )
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point for scopelog.

    Args:
        argv: Arguments without the program name. None reads sys.argv.

    Returns:
        Exit code.

    Raises:
        SystemExit: On --help, --version or argument parsing errors.
    """
    parser = argparse.ArgumentParser(
        prog=PROGRAM_NAME,
        description="Nesting-aware scope logging: replay and demo tools",
    )
    parser.add_argument(
        "--version", action="version", version=f"{PROGRAM_NAME} {__version__}"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Show scopelog's own diagnostic log (DEBUG) on stderr",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    replay_parser = subparsers.add_parser(
        "replay", help="Replay a JSON-lines script of tracker calls"
    )
    replay_parser.add_argument("script", type=Path, help="Script file")
    replay_parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit with 1 when any warning or error was recorded",
    )
    replay_parser.add_argument(
        "--mode",
        choices=[m.value for m in BuildMode],
        default=BuildMode.DEVELOPMENT.value,
        help="Build mode (production never writes output)",
    )
    replay_parser.add_argument(
        "--silent", action="store_true", help="Start silenced (development mode)"
    )

    subparsers.add_parser("demo", help="Show a nesting demonstration")

    args = parser.parse_args(argv)

    if args.debug:
        configure_logging(level=logging.DEBUG, force=True)

    if args.command == "replay":
        return run_replay(
            args.script,
            strict=args.strict,
            mode=BuildMode(args.mode),
            silent=args.silent,
        )
    if args.command == "demo":
        return run_demo()

    parser.print_help()
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
