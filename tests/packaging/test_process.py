"""Tests for the external command runner."""

import pytest

from aatm.packaging.process import (
    ProcessError,
    get_progress_parser,
    is_executable_available,
    no_progress,
    percent_progress,
    register_progress_parser,
    run_command,
    run_with_progress,
)


class TestProgressParsers:
    """Tests for turning tool output lines into percentages."""

    @pytest.mark.parametrize("line,expected", [
        ("Hashed 10 of 20 pieces (50%)", 50),
        ("100% done", 100),
        ("weird 250% value", 100),
        ("Hashing /media/movie.mkv", None),
    ])
    def test_percent_progress(self, line, expected):
        """The last percentage on a line is used, capped at 100."""
        assert percent_progress(line) == expected

    def test_lookup_by_basename(self):
        """Parsers are looked up by executable name, not full path."""
        assert get_progress_parser("/usr/local/bin/mktorrent") is percent_progress

    def test_registered_parser_wins(self):
        """A parser registered for a tool name overrides the default."""
        register_progress_parser("quiet-tool", no_progress)
        assert get_progress_parser("/opt/quiet-tool") is no_progress

    def test_unknown_tool_defaults_to_percentages(self):
        """Unregistered tools are parsed for percentages."""
        assert get_progress_parser("something-else") is percent_progress


class TestRunCommand:
    """Tests for one-shot commands."""

    def test_returns_stdout(self, script):
        """Arguments reach the tool and its stdout is returned."""
        exe = script("hello", "#!/bin/sh\necho \"hello $1\"\n")
        assert run_command(exe, ["world"]).strip() == "hello world"

    def test_nonzero_exit_uses_stderr(self, script):
        """The error message is the tool's stderr."""
        exe = script("broken", "#!/bin/sh\necho 'bad input' 1>&2\nexit 3\n")
        with pytest.raises(ProcessError) as exc_info:
            run_command(exe, [])
        assert str(exc_info.value) == "bad input"
        assert exc_info.value.returncode == 3

    def test_nonzero_exit_without_stderr(self, script):
        """Without stderr the exit code names the failure."""
        exe = script("silent", "#!/bin/sh\nexit 2\n")
        with pytest.raises(ProcessError, match="exited with 2"):
            run_command(exe, [])

    def test_missing_executable(self, tmp_path):
        """A missing binary is a ProcessError, not an OSError."""
        with pytest.raises(ProcessError, match="not found"):
            run_command(str(tmp_path / "missing"), [])


class TestRunWithProgress:
    """Tests for streaming commands with progress callbacks."""

    def test_reports_lines_from_both_streams(self, script):
        """stdout and stderr lines both reach the callback; blank lines are skipped."""
        exe = script("worker", (
            "#!/bin/sh\n"
            "echo 'step (10%)'\n"
            "echo ''\n"
            "echo 'warning (60%)' 1>&2\n"
            "echo 'done'\n"
        ))
        seen = []

        run_with_progress(exe, [], lambda line, progress: seen.append((line, progress)))

        assert sorted(seen, key=lambda item: item[0]) == [
            ("done", None),
            ("step (10%)", 10),
            ("warning (60%)", 60),
        ]

    def test_custom_parser(self, script):
        """An explicit parser replaces the registered one."""
        exe = script("worker", "#!/bin/sh\necho 'half (50%)'\n")
        seen = []

        run_with_progress(exe, [], lambda line, progress: seen.append(progress), progress_parser=no_progress)

        assert seen == [None]

    def test_failure_reports_last_stderr_line(self, script):
        """The last stderr line is the most useful failure message."""
        exe = script("worker", (
            "#!/bin/sh\n"
            "echo 'first problem' 1>&2\n"
            "echo 'fatal: cannot read source' 1>&2\n"
            "exit 1\n"
        ))
        with pytest.raises(ProcessError) as exc_info:
            run_with_progress(exe, [], lambda line, progress: None)
        assert str(exc_info.value) == "fatal: cannot read source"
        assert exc_info.value.returncode == 1

    def test_failure_without_stderr(self, script):
        """A streaming run without stderr also reports the exit code."""
        exe = script("worker", "#!/bin/sh\necho 'working'\nexit 4\n")
        with pytest.raises(ProcessError, match="exited with 4"):
            run_with_progress(exe, [], lambda line, progress: None)

    def test_timeout_kills_process(self, script):
        """A hung tool is killed once the timeout elapses."""
        exe = script("sleeper", "#!/bin/sh\nexec sleep 30\n")
        with pytest.raises(ProcessError, match="timed out"):
            run_with_progress(exe, [], lambda line, progress: None, timeout=0.5)

    def test_callback_error_propagates(self, script):
        """An exception in the callback stops the run and is re-raised."""
        exe = script("worker", "#!/bin/sh\necho 'one'\nexec sleep 30\n")

        def explode(line, progress):
            raise RuntimeError("subscriber crashed")

        with pytest.raises(RuntimeError, match="subscriber crashed"):
            run_with_progress(exe, [], explode, timeout=10)

    def test_missing_executable(self, tmp_path):
        with pytest.raises(ProcessError, match="not found"):
            run_with_progress(str(tmp_path / "missing"), [], lambda line, progress: None)


class TestAvailability:
    """Tests for detecting installed tools."""

    def test_available(self, script):
        exe = script("tool", "#!/bin/sh\nexit 0\n")
        assert is_executable_available(exe) is True

    def test_version_check_failure(self, script):
        """A tool that exits non-zero on its version check is unavailable."""
        exe = script("tool", "#!/bin/sh\nexit 1\n")
        assert is_executable_available(exe) is False

    def test_missing(self, tmp_path):
        assert is_executable_available(str(tmp_path / "missing")) is False
